"""
Sage Companion — Emergency Classifier

Coarse crisis filter run on every inbound user message before anything
else touches it. Deterministic, synchronous, no network: a case-insensitive
substring scan against a fixed phrase list.

The phrases, the safety copy and the hotline resources are configuration
data (core/safety.json, or COMPANION_SAFETY_FILE) so they can be audited and
updated without touching code. They are read once, from local disk, when
the classifier is built.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from ..core.config import safety_cfg
from ..core.errors import ConfigurationError
from ..core.models import CrisisResource, EmergencyAssessment

logger = logging.getLogger("companion.emergency")


@dataclass(frozen=True)
class SafetyCatalog:
    phrases: Tuple[str, ...]
    message: str
    resources: Tuple[CrisisResource, ...] = ()
    confidence: float = 0.9

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SafetyCatalog":
        phrases = tuple(p.strip().lower() for p in data.get("phrases", ()) if p and p.strip())
        message = (data.get("message") or "").strip()
        if not phrases:
            raise ConfigurationError("safety catalog has no crisis phrases")
        if not message:
            raise ConfigurationError("safety catalog has no safety message")
        resources = tuple(
            CrisisResource(
                title=r.get("title", ""),
                phone=r.get("phone", ""),
                description=r.get("description", ""),
            )
            for r in data.get("resources", ())
        )
        return cls(
            phrases=phrases,
            message=message,
            resources=resources,
            confidence=float(data.get("confidence", 0.9)),
        )

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "SafetyCatalog":
        path = Path(path or safety_cfg.safety_file)
        try:
            with path.open("r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"cannot read safety catalog {path}: {e}") from e
        catalog = cls.from_dict(data)
        logger.info(f"Safety catalog loaded: {len(catalog.phrases)} phrases from {path}")
        return catalog


class EmergencyClassifier:
    """
    Keyword/phrase risk scanner.

    False negatives are expected (coarse filter); false positives are safe
    because they only produce the supportive safety message.
    """

    def __init__(self, catalog: Optional[SafetyCatalog] = None) -> None:
        self._catalog = catalog or SafetyCatalog.load()

    @property
    def catalog(self) -> SafetyCatalog:
        return self._catalog

    @property
    def safety_message(self) -> str:
        return self._catalog.message

    def assess(self, message: str) -> EmergencyAssessment:
        lowered = (message or "").lower()
        matched = frozenset(p for p in self._catalog.phrases if p in lowered)

        if not matched:
            return EmergencyAssessment()

        # Never log the message itself
        logger.warning(f"Crisis signals detected: {sorted(matched)}")
        return EmergencyAssessment(
            is_emergency=True,
            confidence=self._catalog.confidence,
            matched_signals=matched,
            recommended_action=self._catalog.message,
            resources=self._catalog.resources,
        )
