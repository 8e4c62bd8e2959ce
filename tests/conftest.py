"""Shared fixtures for the companion test suite."""

from __future__ import annotations

import pytest

from companion.processing.emergency import EmergencyClassifier, SafetyCatalog

from fakes import SleepRecorder


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def classifier() -> EmergencyClassifier:
    return EmergencyClassifier(SafetyCatalog.load())
