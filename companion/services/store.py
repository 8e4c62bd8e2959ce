"""
Sage Companion — Session Store

Conversation sessions keyed by id, held in process memory for as long as
they are open. Each session gets its own asyncio.Lock so concurrent sends
to the same conversation are applied one at a time.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional

from ..core.models import ConversationSession

logger = logging.getLogger("companion.store")


class InMemorySessionStore:
    """SessionStore kept in a dict. Nothing survives a restart."""

    def __init__(self) -> None:
        self._sessions: Dict[str, ConversationSession] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def get(self, session_id: str) -> Optional[ConversationSession]:
        return self._sessions.get(session_id)

    def put(self, session: ConversationSession) -> None:
        self._sessions[session.id] = session

    def delete(self, session_id: str) -> Optional[ConversationSession]:
        self._locks.pop(session_id, None)
        session = self._sessions.pop(session_id, None)
        if session:
            logger.debug(f"[{session_id}] Session discarded (remaining: {len(self._sessions)})")
        return session

    def all(self) -> List[ConversationSession]:
        return list(self._sessions.values())

    def lock(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = self._locks[session_id] = asyncio.Lock()
        return lock

    def __len__(self) -> int:
        return len(self._sessions)
