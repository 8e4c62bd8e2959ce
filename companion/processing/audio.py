"""
Sage Companion — Audio Synthesizer

Turns an assistant reply into a voice clip. Strictly best-effort: the text
reply has already been delivered by the time this runs, so every failure is
logged and reported as "no audio".
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from ..core.config import AudioConfig, audio_cfg
from ..core.errors import ConfigurationError
from ..core.interfaces import SpeechProvider
from ..core.models import AudioClip
from ..services.elevenlabs import VoiceProfile

logger = logging.getLogger("companion.audio")


class AudioSynthesizer:
    """Calls the speech provider with the companion's voice under a timeout."""

    def __init__(
        self,
        provider: Optional[SpeechProvider],
        voice: Optional[VoiceProfile] = None,
        config: AudioConfig = audio_cfg,
    ) -> None:
        self._provider = provider
        self._cfg = config
        self.voice = voice or VoiceProfile.from_config(config)

    @property
    def available(self) -> bool:
        return self._cfg.enabled and self._provider is not None

    async def synthesize(self, text: str) -> Optional[AudioClip]:
        if not self.available or not (text or "").strip():
            return None

        try:
            data = await asyncio.wait_for(
                self._provider.synthesize(text, self.voice),
                timeout=self._cfg.timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Speech synthesis timed out ({self._cfg.timeout}s)")
            return None
        except ConfigurationError as e:
            logger.error(f"Speech synthesis misconfigured: {e}")
            return None
        except Exception as e:
            logger.warning(f"Speech synthesis failed: {e}")
            return None

        if not data:
            logger.warning("Speech synthesis returned no audio")
            return None

        return AudioClip(data=data, voice_id=self.voice.voice_id)
