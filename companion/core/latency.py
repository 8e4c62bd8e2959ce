"""
Sage Companion — Exchange Latency Tracer

Records wall-clock timestamps for the milestones of one user message:
  received → assessed → reply_ready → audio_ready

Computes and logs latency deltas. Audio is measured separately because
it completes after the text reply has already been returned.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

logger = logging.getLogger("companion.latency")

_MILESTONES = ("received", "assessed", "reply_ready", "audio_ready")


@dataclass
class ExchangeTrace:
    """Record of one exchange's milestones (wall-clock seconds)."""

    session_id: str = ""
    message_id: str = ""

    received: float = 0.0
    assessed: float = 0.0
    reply_ready: float = 0.0
    audio_ready: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "session_id": self.session_id,
            "message_id": self.message_id,
        }
        for name in _MILESTONES:
            ts = getattr(self, name)
            if ts > 0:
                d[name] = ts
        d["deltas"] = self.deltas()
        return d

    def deltas(self) -> Dict[str, Optional[float]]:
        """Compute latency deltas between milestones (milliseconds)."""
        def _delta(a: float, b: float) -> Optional[float]:
            if a > 0 and b > 0:
                return round((b - a) * 1000, 1)
            return None

        return {
            "assessment_ms": _delta(self.received, self.assessed),
            "reply_ms": _delta(self.received, self.reply_ready),
            "audio_after_reply_ms": _delta(self.reply_ready, self.audio_ready),
        }


class ExchangeTracer:
    """
    Mutable tracer for one exchange.

    Usage:
        tracer = ExchangeTracer("conv_abc")
        tracer.mark("assessed")
        tracer.mark("reply_ready")
        tracer.mark("audio_ready")
    """

    def __init__(self, session_id: str, message_id: str = "") -> None:
        self._trace = ExchangeTrace(session_id=session_id, message_id=message_id)
        self._trace.received = time.time()

    @property
    def trace(self) -> ExchangeTrace:
        return self._trace

    def mark(self, milestone: str) -> None:
        if milestone not in _MILESTONES:
            raise ValueError(f"unknown milestone: {milestone}")
        if getattr(self._trace, milestone) > 0:
            return  # Already marked
        setattr(self._trace, milestone, time.time())
        if milestone == "reply_ready":
            logger.info(
                f"[{self._trace.session_id}] LATENCY reply_ready "
                f"(reply: {self._trace.deltas()['reply_ms']}ms)"
            )
        elif milestone == "audio_ready":
            logger.info(
                f"[{self._trace.session_id}] LATENCY audio_ready "
                f"(after reply: {self._trace.deltas()['audio_after_reply_ms']}ms)"
            )

    def summary(self) -> Dict[str, Any]:
        return self._trace.to_dict()
