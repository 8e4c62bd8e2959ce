"""
Sage Companion — Concurrent-Limit Cleanup

The avatar provider caps concurrent conversations per account, and sessions
abandoned by closed browser tabs keep counting against that cap until they
time out provider-side. This module reclaims capacity:

  1. List provider sessions, split into active / ended.
  2. End active sessions older than the age threshold, one at a time with a
     short pause between calls (provider rate limits).
  3. Wait for the provider to propagate, then re-check the limit.
  4. Still at the limit → aggressive pass with a much shorter threshold.

Young sessions are never touched. `end_all()` is a manual operator tool and
is never called from here.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..core.config import AvatarConfig, avatar_cfg, provider_cfg
from ..core.errors import CapacityError, CompanionError
from ..core.interfaces import AvatarProvider
from ..core.models import ProviderSession

logger = logging.getLogger("companion.cleanup")

Clock = Callable[[], datetime]
Sleep = Callable[[float], Awaitable[None]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class LimitStatus:
    """Result of a capacity check. `at_limit` is None when it can't be known."""
    method: str                         # "probe" | "listing"
    at_limit: Optional[bool] = None
    active_count: Optional[int] = None
    max_concurrent: Optional[int] = None
    detail: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "method": self.method,
            "at_limit": self.at_limit,
            "active_count": self.active_count,
            "max_concurrent": self.max_concurrent,
            "detail": self.detail,
        }


class CapacityCleaner:
    def __init__(
        self,
        provider: AvatarProvider,
        config: AvatarConfig = avatar_cfg,
        probe_replica: Optional[str] = None,
        clock: Optional[Clock] = None,
        sleep: Optional[Sleep] = None,
    ) -> None:
        self._provider = provider
        self._cfg = config
        self._probe_replica = probe_replica or provider_cfg.tavus_replica_id
        self._clock = clock or _utcnow
        self._sleep = sleep or asyncio.sleep

    # ── Public API ──────────────────────────────────────────────────────

    async def cleanup(self) -> bool:
        """Reclaim capacity. True when the limit looks resolved afterwards."""
        logger.info(f"Cleanup: ending sessions older than {self._cfg.cleanup_age_minutes} min")
        if await self._pass(self._cfg.cleanup_age_minutes):
            return True

        logger.warning(
            f"Cleanup: still at limit — aggressive pass "
            f"(older than {self._cfg.aggressive_age_minutes} min)"
        )
        resolved = await self._pass(self._cfg.aggressive_age_minutes)
        if not resolved:
            logger.error("Cleanup: capacity not recovered; manual force cleanup may be needed")
        return resolved

    async def check_limit(self) -> LimitStatus:
        if self._cfg.probe_on_cleanup and self._probe_replica:
            return await self._probe()
        return await self._listing_status()

    async def end_all(self) -> int:
        """End every active provider session. Operator use only."""
        logger.warning("Force cleanup: ending ALL active provider sessions")
        sessions = await self._provider.list_sessions()
        ended = await self._end_sequentially([s for s in sessions if s.is_active])
        logger.warning(f"Force cleanup: ended {len(ended)} session(s)")
        return len(ended)

    # ── Internals ───────────────────────────────────────────────────────

    async def _pass(self, age_minutes: float) -> bool:
        try:
            sessions = await self._provider.list_sessions()
        except CompanionError as e:
            logger.error(f"Cleanup: cannot list provider sessions: {e}")
            return False

        active = [s for s in sessions if s.is_active]
        stale = self.stale_sessions(active, age_minutes)
        logger.info(
            f"Cleanup: {len(active)} active / {len(sessions) - len(active)} ended, "
            f"{len(stale)} older than {age_minutes} min"
        )
        ended = await self._end_sequentially(stale)

        await self._sleep(self._cfg.propagation_delay)

        try:
            status = await self.check_limit()
        except CompanionError as e:
            logger.error(f"Cleanup: limit re-check failed: {e}")
            return False

        if status.at_limit is None:
            return bool(ended)
        return not status.at_limit

    def stale_sessions(self, sessions: List[ProviderSession], age_minutes: float) -> List[ProviderSession]:
        cutoff = self._clock() - timedelta(minutes=age_minutes)
        # No timestamp → age unknown → leave it alone
        return [s for s in sessions if s.created_at is not None and s.created_at < cutoff]

    async def _end_sequentially(self, sessions: List[ProviderSession]) -> List[str]:
        ended: List[str] = []
        for i, session in enumerate(sessions):
            if i:
                await self._sleep(self._cfg.cleanup_call_delay)
            try:
                await self._provider.end_session(session.id)
                ended.append(session.id)
            except CompanionError as e:
                logger.warning(f"Cleanup: failed to end {session.id}: {e}")
        return ended

    async def _listing_status(self) -> LimitStatus:
        sessions = await self._provider.list_sessions()
        active = sum(1 for s in sessions if s.is_active)
        cap = self._cfg.max_concurrent_sessions
        if cap is None:
            return LimitStatus(method="listing", active_count=active, detail="cap unknown")
        return LimitStatus(
            method="listing",
            at_limit=active >= cap,
            active_count=active,
            max_concurrent=cap,
        )

    async def _probe(self) -> LimitStatus:
        try:
            created = await self._provider.create_session(
                self._probe_replica,
                None,
                f"{self._cfg.conversation_prefix} capacity probe",
            )
        except CapacityError as e:
            return LimitStatus(method="probe", at_limit=True, detail=str(e))

        try:
            await self._provider.end_session(created["id"])
        except CompanionError as e:
            logger.warning(f"Cleanup: failed to end probe {created['id']}: {e}")
        return LimitStatus(method="probe", at_limit=False)
