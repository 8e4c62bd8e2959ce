"""
Sage Companion — ElevenLabs Speech Provider

Text-to-speech through the official `elevenlabs` async client. The SDK is
imported lazily so the rest of the companion runs without it installed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from ..core.config import AudioConfig, audio_cfg, provider_cfg
from ..core.errors import ConfigurationError, TransientProviderError

logger = logging.getLogger("companion.elevenlabs")


@dataclass(frozen=True)
class VoiceProfile:
    voice_id: str
    name: str = ""
    model_id: str = "eleven_turbo_v2_5"
    output_format: str = "mp3_44100_128"
    stability: float = 0.8
    similarity_boost: float = 0.75
    style: float = 0.3
    use_speaker_boost: bool = True

    @classmethod
    def from_config(cls, cfg: AudioConfig = audio_cfg) -> "VoiceProfile":
        return cls(
            voice_id=cfg.voice_id,
            name=cfg.voice_name,
            model_id=cfg.tts_model,
            output_format=cfg.output_format,
            stability=cfg.stability,
            similarity_boost=cfg.similarity_boost,
            style=cfg.style,
            use_speaker_boost=cfg.use_speaker_boost,
        )


class ElevenLabsProvider:
    """SpeechProvider backed by ElevenLabs."""

    def __init__(self, api_key: Optional[str] = None, client: Any = None) -> None:
        self._api_key = api_key if api_key is not None else provider_cfg.elevenlabs_api_key
        self._client = client

    def _get_client(self) -> Any:
        if self._client is None:
            if not self._api_key:
                raise ConfigurationError("ELEVENLABS_API_KEY is not set", provider="elevenlabs")
            from elevenlabs.client import AsyncElevenLabs

            self._client = AsyncElevenLabs(api_key=self._api_key)
        return self._client

    async def synthesize(self, text: str, voice: VoiceProfile) -> bytes:
        client = self._get_client()
        from elevenlabs import VoiceSettings

        settings = VoiceSettings(
            stability=voice.stability,
            similarity_boost=voice.similarity_boost,
            style=voice.style,
            use_speaker_boost=voice.use_speaker_boost,
        )
        try:
            chunks = []
            async for chunk in client.text_to_speech.convert(
                voice_id=voice.voice_id,
                text=text,
                model_id=voice.model_id,
                output_format=voice.output_format,
                voice_settings=settings,
            ):
                if chunk:
                    chunks.append(chunk)
        except Exception as e:
            status = getattr(e, "status_code", None)
            if status in (401, 403):
                raise ConfigurationError(
                    f"ElevenLabs rejected credentials: {e}",
                    provider="elevenlabs",
                    status_code=status,
                ) from e
            raise TransientProviderError(
                f"ElevenLabs synthesis failed: {e}",
                provider="elevenlabs",
                status_code=status,
            ) from e

        audio = b"".join(chunks)
        logger.debug(f"ElevenLabs: {len(audio)} bytes for {len(text)} chars ({voice.name or voice.voice_id})")
        return audio
