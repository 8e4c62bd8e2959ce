"""
Sage Companion — Avatar Session Broker

================================================================================
VIDEO AVATAR LIFECYCLE AGAINST A CAPPED PROVIDER
================================================================================

Opens and closes live video-avatar conversations. The provider enforces a
hard concurrent-session cap, so creation is a two-generation chain:

  Generation 1 — PreferredAvatarStrategy
      Validate the replica exists, create with persona + personalized
      greeting + call limits. On CapacityError run cleanup() once and
      retry the same request once more.

  Generation 2 — LegacyAvatarStrategy (only if generation 1 raised)
      (i) full request → (ii) simple request → (iii) simple request again
      after a pause. (iii) is skipped when (ii) was a configuration error.

If both generations fail the broker returns an AvatarSession in `error`
state carrying the last error message. It never invents a session.
================================================================================
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from ..core.chain import BaseStrategy, StrategyChain
from ..core.config import AvatarConfig, ProviderConfig, avatar_cfg, provider_cfg
from ..core.errors import (
    CapacityError,
    ChainExhaustedError,
    CompanionError,
    ConfigurationError,
)
from ..core.interfaces import AvatarProvider
from ..core.models import AvatarSession, ConversationSession, SessionContext
from ..core.retry import RetryPolicy
from ..core.state_machine import AvatarStatus
from ..processing.templates import avatar_greeting
from .cleanup import CapacityCleaner

logger = logging.getLogger("companion.avatar")

Sleep = Callable[[float], Awaitable[None]]


@dataclass
class AvatarRequest:
    """Everything one open() needs, shared by both generations."""
    replica_id: str
    persona_id: Optional[str]
    name: str
    greeting: str
    cleanup_done: bool = False


def _call_limits(cfg: AvatarConfig) -> Dict[str, Any]:
    return {
        "max_call_duration": cfg.max_call_duration,
        "participant_left_timeout": cfg.participant_left_timeout,
        "participant_absent_timeout": cfg.participant_absent_timeout,
    }


# ---------------------------------------------------------------------------
# Generation 1
# ---------------------------------------------------------------------------

class PreferredAvatarStrategy(BaseStrategy[AvatarRequest, Dict[str, str]]):
    name = "preferred"

    def __init__(
        self,
        provider: AvatarProvider,
        cleaner: Optional[CapacityCleaner],
        config: AvatarConfig = avatar_cfg,
        retry_policy: Optional[RetryPolicy] = None,
    ) -> None:
        super().__init__(retry_policy or RetryPolicy.from_config())
        self._provider = provider
        self._cleaner = cleaner
        self._cfg = config

    async def _validate_replica(self, replica_id: str) -> None:
        replicas = await self._provider.list_replicas()
        if not any(r.get("replica_id") == replica_id for r in replicas):
            raise ConfigurationError(
                f"replica {replica_id} not found among {len(replicas)} available replica(s)",
                provider="tavus",
            )

    async def _create(self, req: AvatarRequest) -> Dict[str, str]:
        return await self._provider.create_session(
            req.replica_id,
            req.persona_id,
            req.name,
            greeting=req.greeting,
            limits=_call_limits(self._cfg),
        )

    async def attempt(self, req: AvatarRequest) -> Optional[Dict[str, str]]:
        await self._validate_replica(req.replica_id)
        try:
            return await self._create(req)
        except CapacityError:
            if req.cleanup_done or self._cleaner is None:
                raise
            req.cleanup_done = True
            logger.warning("Avatar: concurrent limit reached — running cleanup before retrying")
            await self._cleaner.cleanup()
            return await self._create(req)


# ---------------------------------------------------------------------------
# Generation 2
# ---------------------------------------------------------------------------

class LegacyAvatarStrategy(BaseStrategy[AvatarRequest, Dict[str, str]]):
    name = "legacy"

    def __init__(
        self,
        provider: AvatarProvider,
        config: AvatarConfig = avatar_cfg,
        sleep: Optional[Sleep] = None,
    ) -> None:
        super().__init__()
        self._provider = provider
        self._cfg = config
        self._sleep = sleep or asyncio.sleep

    async def _full(self, req: AvatarRequest) -> Dict[str, str]:
        limits = _call_limits(self._cfg)
        limits.update(enable_recording=False, enable_closed_captions=True)
        return await self._provider.create_session(
            req.replica_id, req.persona_id, req.name, limits=limits
        )

    async def _simple(self, req: AvatarRequest) -> Dict[str, str]:
        return await self._provider.create_session(req.replica_id, None, req.name)

    async def attempt(self, req: AvatarRequest) -> Optional[Dict[str, str]]:
        try:
            return await self._full(req)
        except CompanionError as e:
            logger.warning(f"Avatar legacy: full request failed: {e}")

        try:
            return await self._simple(req)
        except ConfigurationError as e:
            logger.error(f"Avatar legacy: simple request misconfigured, not retrying: {e}")
            raise
        except CompanionError as e:
            logger.warning(
                f"Avatar legacy: simple request failed ({e}) — "
                f"retrying in {self._cfg.legacy_retry_delay}s"
            )

        await self._sleep(self._cfg.legacy_retry_delay)
        return await self._simple(req)


# ---------------------------------------------------------------------------
# Broker
# ---------------------------------------------------------------------------

class AvatarSessionBroker:
    """
    Owns at most one live avatar session at a time.

    Usage:
        broker = AvatarSessionBroker(TavusClient())
        avatar = await broker.open(session.context, session)
        ...
        await broker.close(avatar)
    """

    def __init__(
        self,
        provider: AvatarProvider,
        cleaner: Optional[CapacityCleaner] = None,
        config: AvatarConfig = avatar_cfg,
        provider_config: ProviderConfig = provider_cfg,
        retry_policy: Optional[RetryPolicy] = None,
        sleep: Optional[Sleep] = None,
    ) -> None:
        self._provider = provider
        self._cfg = config
        self._replica_id = provider_config.tavus_replica_id
        self._persona_id = provider_config.tavus_persona_id or None
        self.cleaner = cleaner or CapacityCleaner(
            provider, config, probe_replica=self._replica_id, sleep=sleep
        )
        self._chain: StrategyChain = StrategyChain(
            "avatar",
            [
                PreferredAvatarStrategy(provider, self.cleaner, config, retry_policy),
                LegacyAvatarStrategy(provider, config, sleep=sleep),
            ],
            accept=lambda created: bool(created.get("id") and created.get("url")),
        )
        self._current: Optional[AvatarSession] = None

    @property
    def current(self) -> Optional[AvatarSession]:
        return self._current

    def _session_name(self) -> str:
        return f"{self._cfg.conversation_prefix} Session {time.strftime('%Y-%m-%dT%H:%M:%S')}"

    async def open(
        self,
        context: Optional[SessionContext],
        session: Optional[ConversationSession] = None,
    ) -> AvatarSession:
        await self.refresh()
        if self._current is not None and self._current.status == AvatarStatus.ACTIVE:
            logger.info(f"Avatar: ending previous session {self._current.external_conversation_id}")
            await self.close(self._current)

        avatar = AvatarSession()
        tag = f"[{session.id}] " if session else ""

        if not self._replica_id:
            avatar.error_message = "avatar replica is not configured"
            avatar.lifecycle.transition(AvatarStatus.ERROR, avatar.error_message)
            logger.error(f"{tag}Avatar: {avatar.error_message}")
            return avatar

        request = AvatarRequest(
            replica_id=self._replica_id,
            persona_id=self._persona_id,
            name=self._session_name(),
            greeting=avatar_greeting(context),
        )

        try:
            outcome = await self._chain.run(request)
        except ChainExhaustedError as e:
            avatar.error_message = e.failures[-1][1] if e.failures else str(e)
            avatar.lifecycle.transition(AvatarStatus.ERROR, "all creation strategies failed")
            logger.error(f"{tag}Avatar: could not open a session: {avatar.error_message}")
            return avatar

        avatar.external_conversation_id = outcome.result["id"]
        avatar.url = outcome.result["url"]
        avatar.strategy = outcome.strategy
        avatar.lifecycle.transition(AvatarStatus.ACTIVE, f"created via {outcome.strategy}")
        self._current = avatar

        if session is not None:
            session.avatar_session_ref = avatar.external_conversation_id
        logger.info(f"{tag}Avatar: session {avatar.external_conversation_id} active ({outcome.strategy})")
        return avatar

    async def close(self, avatar: Optional[AvatarSession] = None) -> None:
        avatar = avatar or self._current
        if avatar is None:
            return
        if avatar.status == AvatarStatus.ACTIVE:
            try:
                await self._provider.end_session(avatar.external_conversation_id)
            except Exception as e:
                logger.warning(f"Avatar: end {avatar.external_conversation_id} failed: {e}")
            avatar.lifecycle.transition(AvatarStatus.ENDED, "closed")
        if self._current is avatar:
            self._current = None

    async def refresh(self, avatar: Optional[AvatarSession] = None) -> Optional[AvatarSession]:
        """Sync an active session with the provider (it may have timed out remotely)."""
        avatar = avatar or self._current
        if avatar is None or avatar.status != AvatarStatus.ACTIVE:
            return avatar
        try:
            remote = await self._provider.get_session(avatar.external_conversation_id)
        except CompanionError as e:
            logger.warning(f"Avatar: status check for {avatar.external_conversation_id} failed: {e}")
            return avatar
        if remote.status == "ended":
            avatar.lifecycle.transition(AvatarStatus.ENDED, "ended by provider")
            if self._current is avatar:
                self._current = None
        return avatar
