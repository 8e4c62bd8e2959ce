"""
Sage Companion — Data Models

Dataclasses for every piece of data flowing through the orchestrator.
The `source` field on replies records which strategy produced them.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Set, Tuple

from .state_machine import AvatarLifecycle, AvatarStatus

logger = logging.getLogger("companion.models")


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


# ---------------------------------------------------------------------------
# Audio
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class AudioClip:
    """Synthesized speech for one assistant message."""
    id: str = field(default_factory=lambda: new_id("audio"))
    data: bytes = field(default=b"", repr=False)
    mime_type: str = "audio/mpeg"
    voice_id: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "mime_type": self.mime_type,
            "voice_id": self.voice_id,
            "size": len(self.data),
        }


# ---------------------------------------------------------------------------
# Conversation
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ConversationMessage:
    """A single message in the conversation. Never mutated once created."""
    role: str                           # "user" | "assistant" | "system"
    content: str
    id: str = field(default_factory=lambda: new_id("msg"))
    timestamp: float = field(default_factory=time.time)
    emotion_tag: Optional[str] = None   # supportive | calming | warm | celebratory | urgent
    audio_ref: Optional[AudioClip] = None

    def with_audio(self, clip: AudioClip) -> "ConversationMessage":
        return replace(self, audio_ref=clip)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp,
            "emotion_tag": self.emotion_tag,
            "audio": self.audio_ref.to_dict() if self.audio_ref else None,
        }


_MOOD_KEYS = ("recent_mood", "recentMood")
_ACTIVITY_KEYS = ("completed_activities", "completedActivities", "completed_courses", "completedCourses")


@dataclass
class SessionContext:
    """What the companion knows about the user when the session starts."""
    recent_mood: Optional[int] = None
    completed_activities: Set[str] = field(default_factory=set)
    preferences: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "SessionContext":
        ctx = cls()
        ctx.merge(data or {})
        return ctx

    def merge(self, data: Mapping[str, Any]) -> None:
        if not isinstance(data, Mapping):
            raise TypeError(f"context must be an object, got {type(data).__name__}")
        for key, value in data.items():
            if key in _MOOD_KEYS:
                self._set_mood(value)
            elif key in _ACTIVITY_KEYS:
                self._add_activities(value)
            else:
                self.preferences[key] = value

    def _set_mood(self, value: Any) -> None:
        if value is None:
            self.recent_mood = None
            return
        try:
            self.recent_mood = int(value)
        except (TypeError, ValueError):
            logger.warning(f"Ignoring non-numeric mood value {value!r}")

    def _add_activities(self, value: Any) -> None:
        if value is None:
            return
        if not isinstance(value, (list, tuple, set, frozenset)):
            value = [value]
        self.completed_activities |= {str(v) for v in value}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "recent_mood": self.recent_mood,
            "completed_activities": sorted(self.completed_activities),
            "preferences": dict(self.preferences),
        }


@dataclass
class ConversationSession:
    """One continuous conversation held in memory."""
    user_id: str
    id: str = field(default_factory=lambda: new_id("conv"))
    messages: List[ConversationMessage] = field(default_factory=list)
    context: SessionContext = field(default_factory=SessionContext)
    started_at: float = field(default_factory=time.time)
    last_message_at: float = field(default_factory=time.time)
    avatar_session_ref: Optional[str] = None

    def append(self, message: ConversationMessage) -> ConversationMessage:
        self.messages.append(message)
        return message

    def replace_message(self, message: ConversationMessage) -> bool:
        """Swap in a newer copy of a message (same id). False if absent."""
        for i, existing in enumerate(self.messages):
            if existing.id == message.id:
                self.messages[i] = message
                return True
        return False

    def find(self, message_id: str) -> Optional[ConversationMessage]:
        for message in self.messages:
            if message.id == message_id:
                return message
        return None

    @property
    def dialogue(self) -> List[ConversationMessage]:
        """Messages without the system preamble."""
        return [m for m in self.messages if m.role != "system"]

    @property
    def latest_user_message(self) -> str:
        for message in reversed(self.messages):
            if message.role == "user":
                return message.content
        return ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "messages": [m.to_dict() for m in self.messages],
            "context": self.context.to_dict(),
            "started_at": self.started_at,
            "last_message_at": self.last_message_at,
            "avatar_session_ref": self.avatar_session_ref,
        }


# ---------------------------------------------------------------------------
# Safety
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CrisisResource:
    title: str
    phone: str
    description: str = ""


@dataclass(frozen=True)
class EmergencyAssessment:
    is_emergency: bool = False
    confidence: float = 0.0
    matched_signals: FrozenSet[str] = frozenset()
    recommended_action: str = ""
    resources: Tuple[CrisisResource, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["matched_signals"] = sorted(self.matched_signals)
        return d


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class GeneratedReply:
    content: str
    emotion_tag: str = "supportive"
    source: str = "unknown"     # "local_pattern" | "remote_generative" | "static_fallback"


# ---------------------------------------------------------------------------
# Avatar video
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ProviderSession:
    """One row of the avatar provider's conversation listing."""
    id: str
    status: str
    created_at: Optional[datetime] = None
    name: str = ""

    @property
    def is_active(self) -> bool:
        return self.status == "active"


@dataclass
class AvatarSession:
    id: str = field(default_factory=lambda: new_id("avatar"))
    external_conversation_id: str = ""
    url: str = ""
    created_at: float = field(default_factory=time.time)
    error_message: Optional[str] = None
    strategy: str = ""
    lifecycle: AvatarLifecycle = field(default_factory=AvatarLifecycle, repr=False)

    @property
    def status(self) -> AvatarStatus:
        return self.lifecycle.state

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "external_conversation_id": self.external_conversation_id,
            "url": self.url,
            "status": self.status.value,
            "created_at": self.created_at,
            "error_message": self.error_message,
            "strategy": self.strategy,
        }
