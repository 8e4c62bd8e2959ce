"""
Sage Companion — Collaborator Interfaces

Protocol definitions for everything the orchestrator consumes but does
not own:
  1. Providers  — generative text, text-to-speech, avatar video
  2. Strategies — interchangeable implementations of one capability
  3. Storage    — where conversation sessions live while open

Each component talks to collaborators through these protocols — never by
reaching into a vendor SDK directly.
"""

from __future__ import annotations

import asyncio
from typing import (
    Any,
    Dict,
    List,
    Optional,
    Protocol,
    TypeVar,
    runtime_checkable,
)

from .models import ConversationSession, ProviderSession
from .retry import RetryPolicy

In_contra = TypeVar("In_contra", contravariant=True)
Out_co = TypeVar("Out_co", covariant=True)


# ═══════════════════════════════════════════════════════════════════════════
# Providers
# ═══════════════════════════════════════════════════════════════════════════

@runtime_checkable
class GenerativeProvider(Protocol):
    """Remote text generation. Raises taxonomy errors on failure."""

    async def generate(self, prompt: str) -> str:
        ...


@runtime_checkable
class SpeechProvider(Protocol):
    """Remote text-to-speech."""

    async def synthesize(self, text: str, voice: Any) -> bytes:
        ...


@runtime_checkable
class AvatarProvider(Protocol):
    """Remote video-avatar conversations with a concurrent-session cap."""

    async def list_replicas(self) -> List[Dict[str, Any]]:
        ...

    async def create_session(
        self,
        replica_ref: str,
        persona_ref: Optional[str],
        name: str,
        greeting: Optional[str] = None,
        limits: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, str]:
        """Returns {"id": ..., "url": ...}."""
        ...

    async def end_session(self, session_id: str) -> None:
        ...

    async def list_sessions(self) -> List[ProviderSession]:
        ...

    async def get_session(self, session_id: str) -> ProviderSession:
        ...


# ═══════════════════════════════════════════════════════════════════════════
# Strategies
# ═══════════════════════════════════════════════════════════════════════════

@runtime_checkable
class Strategy(Protocol[In_contra, Out_co]):
    """One alternative implementation inside a strategy chain."""

    name: str
    retry_policy: RetryPolicy

    async def attempt(self, value: In_contra) -> Optional[Out_co]:
        """Produce a result, return None for 'nothing usable', or raise."""
        ...


# ═══════════════════════════════════════════════════════════════════════════
# Storage
# ═══════════════════════════════════════════════════════════════════════════

@runtime_checkable
class SessionStore(Protocol):
    """Conversation sessions keyed by id, with per-session serialization."""

    def get(self, session_id: str) -> Optional[ConversationSession]:
        ...

    def put(self, session: ConversationSession) -> None:
        ...

    def delete(self, session_id: str) -> Optional[ConversationSession]:
        ...

    def all(self) -> List[ConversationSession]:
        ...

    def lock(self, session_id: str) -> asyncio.Lock:
        ...
