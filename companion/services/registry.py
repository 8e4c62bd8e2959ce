"""
Sage Companion — Service Registry

Maps connection_id → SessionManager. Providers, the safety classifier, the
session store and the capacity cleaner are built once and shared; each
connection gets its own manager and avatar broker.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional

from ..core.config import provider_cfg
from ..processing.audio import AudioSynthesizer
from ..processing.conversation import SessionManager
from ..processing.emergency import EmergencyClassifier
from ..processing.responder import ResponseGenerator
from .avatar import AvatarSessionBroker
from .cleanup import CapacityCleaner
from .store import InMemorySessionStore

logger = logging.getLogger("companion.registry")


class ServiceRegistry:
    """Maps connection_id → SessionManager."""

    def __init__(
        self,
        store: Optional[InMemorySessionStore] = None,
        generator: Optional[ResponseGenerator] = None,
        synthesizer: Optional[AudioSynthesizer] = None,
        classifier: Optional[EmergencyClassifier] = None,
        avatar_provider: Any = None,
        cleaner: Optional[CapacityCleaner] = None,
    ) -> None:
        self.store = store or InMemorySessionStore()
        self.classifier = classifier or EmergencyClassifier()
        self.generator = generator
        self.synthesizer = synthesizer
        self.avatar_provider = avatar_provider
        self.cleaner = cleaner
        if self.cleaner is None and avatar_provider is not None:
            self.cleaner = CapacityCleaner(avatar_provider)
        self._managers: Dict[str, SessionManager] = {}

    @classmethod
    def from_env(cls) -> "ServiceRegistry":
        """Wire the real providers for whichever keys are configured."""
        gemini = elevenlabs = tavus = None
        if provider_cfg.has_generation:
            from .gemini import GeminiProvider
            gemini = GeminiProvider()
        if provider_cfg.has_speech:
            from .elevenlabs import ElevenLabsProvider
            elevenlabs = ElevenLabsProvider()
        if provider_cfg.has_avatar:
            from .tavus import TavusClient
            tavus = TavusClient()

        logger.info(f"ServiceRegistry: providers {provider_cfg.summary()}")
        return cls(
            generator=ResponseGenerator.default(gemini),
            synthesizer=AudioSynthesizer(elevenlabs),
            avatar_provider=tavus,
        )

    def create(
        self,
        connection_id: str,
        on_message: Optional[Callable] = None,
        on_audio: Optional[Callable] = None,
    ) -> SessionManager:
        broker = None
        if self.avatar_provider is not None:
            broker = AvatarSessionBroker(self.avatar_provider, cleaner=self.cleaner)

        manager = SessionManager(
            store=self.store,
            generator=self.generator or ResponseGenerator.default(),
            synthesizer=self.synthesizer,
            classifier=self.classifier,
            broker=broker,
            on_message=on_message,
            on_audio=on_audio,
        )
        self._managers[connection_id] = manager
        logger.info(f"ServiceRegistry: created {connection_id} (total: {len(self._managers)})")
        return manager

    async def stop(self, connection_id: str) -> Optional[Dict[str, Any]]:
        manager = self._managers.pop(connection_id, None)
        if manager:
            summary = await manager.end_session()
            logger.info(f"ServiceRegistry: removed {connection_id} (total: {len(self._managers)})")
            return summary
        return None

    async def stop_all(self) -> None:
        for cid in list(self._managers.keys()):
            await self.stop(cid)
        closer = getattr(self.avatar_provider, "aclose", None)
        if closer is not None:
            await closer()

    def get(self, connection_id: str) -> Optional[SessionManager]:
        return self._managers.get(connection_id)

    @property
    def active_count(self) -> int:
        return len(self._managers)

    @property
    def connection_ids(self) -> List[str]:
        return list(self._managers.keys())
