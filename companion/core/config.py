"""
Sage Companion — Configuration

Centralised settings from environment variables.
All tuneable constants live here — zero magic numbers in other files.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
import certifi

os.environ.setdefault("SSL_CERT_FILE", certifi.where())
os.environ.setdefault("REQUESTS_CA_BUNDLE", certifi.where())

load_dotenv()

# ── Bridge env-var naming: Gemini SDK reads GOOGLE_API_KEY ──────────────
_gemini_key = os.getenv("GEMINI_API_KEY", "")
if _gemini_key and not os.getenv("GOOGLE_API_KEY"):
    os.environ["GOOGLE_API_KEY"] = _gemini_key


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_optional_int(name: str) -> Optional[int]:
    raw = os.getenv(name, "").strip()
    return int(raw) if raw else None


# ---------------------------------------------------------------------------
# Server
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ServerConfig:
    host: str = os.getenv("HOST", "0.0.0.0")
    port: int = int(os.getenv("PORT", "8080"))
    cors_origins: tuple[str, ...] = (
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:5173",
    )


# ---------------------------------------------------------------------------
# Provider keys
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ProviderConfig:
    """API keys and remote resource identifiers."""
    gemini_api_key: str = os.getenv("GEMINI_API_KEY", "")
    elevenlabs_api_key: str = os.getenv("ELEVENLABS_API_KEY", "")
    tavus_api_key: str = os.getenv("TAVUS_API_KEY", "")
    tavus_base_url: str = os.getenv("TAVUS_BASE_URL", "https://tavusapi.com/v2")
    tavus_replica_id: str = os.getenv("TAVUS_REPLICA_ID", "")
    tavus_persona_id: str = os.getenv("TAVUS_PERSONA_ID", "")

    @property
    def has_generation(self) -> bool:
        return bool(self.gemini_api_key)

    @property
    def has_speech(self) -> bool:
        return bool(self.elevenlabs_api_key)

    @property
    def has_avatar(self) -> bool:
        return bool(self.tavus_api_key and self.tavus_replica_id)

    def summary(self) -> dict[str, bool]:
        return {
            "generation": self.has_generation,
            "speech": self.has_speech,
            "avatar": self.has_avatar,
        }


# ---------------------------------------------------------------------------
# Retry / backoff
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RetryConfig:
    # Hard cap on attempts per remote call (first try included)
    max_attempts: int = int(os.getenv("COMPANION_RETRY_ATTEMPTS", "3"))
    # Delay before the first retry (seconds)
    base_delay: float = float(os.getenv("COMPANION_RETRY_BASE_DELAY", "1.0"))
    # Growth factor applied per retry
    multiplier: float = 1.5
    # Ceiling for a single backoff sleep
    max_delay: float = 4.0


# ---------------------------------------------------------------------------
# Response generation
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class GenerationConfig:
    llm_model: str = os.getenv("COMPANION_LLM_MODEL", "gemini-2.0-flash")
    llm_temperature: float = 0.7
    max_output_tokens: int = 400
    # Hard timeout for a single generation call (seconds)
    llm_timeout: float = float(os.getenv("COMPANION_LLM_TIMEOUT", "15.0"))
    # How many recent non-system messages go into the prompt
    context_window: int = 8
    # Replies at or below this length are treated as unusable
    min_reply_chars: int = 20
    # Local pattern strategy answers unmatched messages with its default family
    pattern_default_reply: bool = _env_bool("COMPANION_PATTERN_DEFAULT_REPLY", True)
    system_prompt: str = (
        "You are Sage, a compassionate AI mental health companion designed to provide "
        "emotional support and guidance. Your core principles:\n\n"
        "1. SAFETY FIRST: Always prioritize user safety. If someone expresses suicidal "
        "thoughts or self-harm, provide crisis resources immediately.\n\n"
        "2. EMPATHETIC LISTENING: Validate feelings, use reflective listening, and never "
        "dismiss concerns.\n\n"
        "3. STRENGTH-BASED: Focus on the user's strengths, resilience, and coping strategies.\n\n"
        "4. ACCESSIBILITY-AWARE: Use clear, simple language. Be mindful that users may have "
        "learning differences.\n\n"
        "5. BOUNDARIES: You're a supportive companion, not a replacement for professional "
        "therapy. Encourage professional help when appropriate.\n\n"
        "6. PERSONALIZATION: Adapt your tone based on the user's mood and conversation context.\n\n"
        "Response styles based on user mood:\n"
        "- Mood 1-3: Extremely gentle, validating, crisis-aware\n"
        "- Mood 4-5: Supportive, encouraging, solution-focused\n"
        "- Mood 6-7: Positive reinforcement, skill-building\n"
        "- Mood 8-10: Celebratory, goal-setting, gratitude-focused\n\n"
        "Always end responses with a gentle question to continue the conversation."
    )
    reply_instructions: str = (
        "As Sage, provide a compassionate, therapeutic response that:\n"
        "- Acknowledges the user's feelings and experiences\n"
        "- Uses empathetic language and validation\n"
        "- Offers gentle support or coping strategies when appropriate\n"
        "- Asks a thoughtful follow-up question to continue the conversation\n"
        "- Keeps the response under 250 words\n"
        "- Sounds natural and conversational"
    )


# ---------------------------------------------------------------------------
# Voice synthesis
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class AudioConfig:
    enabled: bool = _env_bool("COMPANION_AUDIO_ENABLED", True)
    # "Rachel": calm, professional delivery
    voice_id: str = os.getenv("COMPANION_VOICE_ID", "21m00Tcm4TlvDq8ikWAM")
    voice_name: str = "Rachel"
    tts_model: str = "eleven_turbo_v2_5"
    output_format: str = "mp3_44100_128"
    stability: float = 0.8
    similarity_boost: float = 0.75
    style: float = 0.3  # more conversational
    use_speaker_boost: bool = True
    # Synthesis is abandoned after this many seconds
    timeout: float = 15.0


# ---------------------------------------------------------------------------
# Avatar video sessions
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class AvatarConfig:
    conversation_prefix: str = "Sage"
    max_call_duration: int = 3600       # 1 hour
    participant_left_timeout: int = 60
    participant_absent_timeout: int = 120
    request_timeout: float = 20.0
    # Legacy generation: pause before the last-resort simple request
    legacy_retry_delay: float = 5.0
    # Cleanup: active sessions older than this are ended
    cleanup_age_minutes: float = float(os.getenv("COMPANION_CLEANUP_AGE_MINUTES", "30"))
    aggressive_age_minutes: float = 5.0
    # Pause between sequential end calls (provider rate limits)
    cleanup_call_delay: float = 0.5
    # Pause after a cleanup pass before re-checking the limit
    propagation_delay: float = 2.0
    # Provider concurrency cap, when known for the account
    max_concurrent_sessions: Optional[int] = _env_optional_int("TAVUS_MAX_CONCURRENT")
    # Re-check capacity with a disposable probe conversation
    probe_on_cleanup: bool = _env_bool("COMPANION_CLEANUP_PROBE", False)


# ---------------------------------------------------------------------------
# Crisis safety data
# ---------------------------------------------------------------------------

_DEFAULT_SAFETY_FILE = Path(__file__).with_name("safety.json")


@dataclass(frozen=True)
class SafetyConfig:
    safety_file: Path = Path(os.getenv("COMPANION_SAFETY_FILE", str(_DEFAULT_SAFETY_FILE)))


# ---------------------------------------------------------------------------
# Singletons
# ---------------------------------------------------------------------------

server_cfg = ServerConfig()
provider_cfg = ProviderConfig()
retry_cfg = RetryConfig()
generation_cfg = GenerationConfig()
audio_cfg = AudioConfig()
avatar_cfg = AvatarConfig()
safety_cfg = SafetyConfig()
