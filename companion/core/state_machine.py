"""
Sage Companion — Avatar Session State Machine

Enforces the lifecycle: INITIALIZING → ACTIVE | ERROR, ACTIVE → ENDED.
All status changes go through this module so illegitimate states
are impossible and every transition is logged.
"""

from __future__ import annotations

import logging
import time
from enum import Enum
from typing import Dict, List, Set

logger = logging.getLogger("companion.state")


class AvatarStatus(str, Enum):
    """Strict avatar session lifecycle states."""
    INITIALIZING = "initializing"   # Creation requested, nothing confirmed yet
    ACTIVE = "active"               # Provider conversation is live
    ENDED = "ended"                 # Closed by us or timed out provider-side
    ERROR = "error"                 # Every creation strategy failed


# Legal state transitions
_TRANSITIONS: Dict[AvatarStatus, Set[AvatarStatus]] = {
    AvatarStatus.INITIALIZING: {AvatarStatus.ACTIVE, AvatarStatus.ERROR},
    AvatarStatus.ACTIVE:       {AvatarStatus.ENDED},
    AvatarStatus.ENDED:        set(),
    AvatarStatus.ERROR:        set(),
}


class AvatarLifecycle:
    """
    Enforces legal state transitions and keeps their history.

    Usage:
        lc = AvatarLifecycle()
        lc.transition(AvatarStatus.ACTIVE)     # OK
        lc.transition(AvatarStatus.ENDED)      # OK
        lc.transition(AvatarStatus.ACTIVE)     # illegal from ENDED → raises
    """

    def __init__(self) -> None:
        self._state = AvatarStatus.INITIALIZING
        self._history: List[Dict] = []
        self._entered_at = time.time()

    @property
    def state(self) -> AvatarStatus:
        return self._state

    @property
    def history(self) -> List[Dict]:
        return list(self._history)

    @property
    def is_terminal(self) -> bool:
        return not _TRANSITIONS[self._state]

    def transition(self, target: AvatarStatus, reason: str = "") -> None:
        """
        Attempt a state transition. Raises ValueError on illegal transitions.
        """
        if target == self._state:
            return  # same state: no-op

        allowed = _TRANSITIONS.get(self._state, set())
        if target not in allowed:
            raise ValueError(
                f"Illegal avatar transition: {self._state.value} → {target.value}. "
                f"Allowed from {self._state.value}: {[s.value for s in allowed]}. "
                f"Reason: {reason}"
            )

        prev = self._state
        now = time.time()
        self._history.append({
            "from": prev.value,
            "to": target.value,
            "reason": reason,
            "timestamp": now,
            "duration_in_prev_ms": round((now - self._entered_at) * 1000, 1),
        })
        self._state = target
        self._entered_at = now

        logger.info(
            f"AVATAR: {prev.value} → {target.value}"
            + (f" ({reason})" if reason else "")
        )
