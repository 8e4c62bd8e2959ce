"""Concurrent-limit cleanup against the avatar provider."""

from __future__ import annotations

import pytest

from companion.core.config import AvatarConfig
from companion.core.errors import TransientProviderError
from companion.services.cleanup import CapacityCleaner

from fakes import NOW, FakeAvatarProvider, SleepRecorder, capacity


def make_cleaner(provider, sleeper=None, **cfg):
    params = dict(max_concurrent_sessions=None, probe_on_cleanup=False)
    params.update(cfg)
    return CapacityCleaner(
        provider,
        AvatarConfig(**params),
        probe_replica="r-sage",
        clock=lambda: NOW,
        sleep=sleeper or SleepRecorder(),
    )


class TestCleanup:
    @pytest.mark.asyncio
    async def test_only_sessions_past_threshold_are_ended(self):
        provider = FakeAvatarProvider()
        provider.add_session("old", 45)
        provider.add_session("older", 120)
        provider.add_session("young", 10)
        provider.add_session("done", 300, status="ended")

        resolved = await make_cleaner(provider).cleanup()

        assert resolved is True
        assert provider.end_calls == ["old", "older"]
        assert provider.active_ids == ["young"]

    @pytest.mark.asyncio
    async def test_end_calls_are_spaced_and_followed_by_propagation_wait(self):
        sleeper = SleepRecorder()
        provider = FakeAvatarProvider()
        for sid in ("a", "b", "c"):
            provider.add_session(sid, 60)

        await make_cleaner(provider, sleeper).cleanup()

        assert sleeper.delays == [0.5, 0.5, 2.0]

    @pytest.mark.asyncio
    async def test_second_run_ends_nothing_new(self):
        provider = FakeAvatarProvider()
        provider.add_session("old", 45)
        provider.add_session("young", 2)
        cleaner = make_cleaner(provider)

        await cleaner.cleanup()
        await cleaner.cleanup()

        assert provider.end_calls == ["old"]

    @pytest.mark.asyncio
    async def test_unresolved_pass_escalates_to_aggressive_threshold(self):
        provider = FakeAvatarProvider()
        provider.add_session("ten_minutes", 10)

        resolved = await make_cleaner(provider).cleanup()

        assert resolved is True
        assert provider.end_calls == ["ten_minutes"]

    @pytest.mark.asyncio
    async def test_young_sessions_survive_both_passes(self):
        provider = FakeAvatarProvider()
        provider.add_session("fresh", 2)

        resolved = await make_cleaner(provider).cleanup()

        assert resolved is False
        assert provider.end_calls == []

    @pytest.mark.asyncio
    async def test_aggressive_pass_when_still_at_known_cap(self):
        provider = FakeAvatarProvider()
        provider.add_session("a", 45)
        provider.add_session("b", 10)
        provider.add_session("c", 8)

        resolved = await make_cleaner(provider, max_concurrent_sessions=2).cleanup()

        assert resolved is True
        assert provider.end_calls == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_sessions_without_timestamp_are_left_alone(self):
        provider = FakeAvatarProvider()
        provider.add_session("mystery", None)

        await make_cleaner(provider).cleanup()

        assert provider.end_calls == []

    @pytest.mark.asyncio
    async def test_listing_failure_is_unresolved(self):
        provider = FakeAvatarProvider()

        async def broken():
            raise TransientProviderError("down")

        provider.list_sessions = broken
        assert await make_cleaner(provider).cleanup() is False


class TestCheckLimit:
    @pytest.mark.asyncio
    async def test_listing_against_known_cap(self):
        provider = FakeAvatarProvider()
        provider.add_session("a", 1)
        provider.add_session("b", 1)

        status = await make_cleaner(provider, max_concurrent_sessions=2).check_limit()

        assert status.method == "listing"
        assert status.at_limit is True
        assert status.active_count == 2

    @pytest.mark.asyncio
    async def test_unknown_cap(self):
        status = await make_cleaner(FakeAvatarProvider()).check_limit()
        assert status.at_limit is None

    @pytest.mark.asyncio
    async def test_probe_success_is_ended_immediately(self):
        provider = FakeAvatarProvider()
        status = await make_cleaner(provider, probe_on_cleanup=True).check_limit()

        assert status.method == "probe"
        assert status.at_limit is False
        assert provider.end_calls == ["c1"]

    @pytest.mark.asyncio
    async def test_probe_capacity_error_means_at_limit(self):
        provider = FakeAvatarProvider(create_script=[capacity()])
        status = await make_cleaner(provider, probe_on_cleanup=True).check_limit()
        assert status.at_limit is True


class TestEndAll:
    @pytest.mark.asyncio
    async def test_ends_every_active_session(self):
        provider = FakeAvatarProvider()
        provider.add_session("a", 1)
        provider.add_session("b", 100)
        provider.add_session("c", 100, status="ended")

        ended = await make_cleaner(provider).end_all()

        assert ended == 2
        assert provider.active_ids == []
