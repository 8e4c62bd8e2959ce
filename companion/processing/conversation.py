"""
Sage Companion — Session Manager

================================================================================
ONE CONVERSATION, END TO END
================================================================================

Owns the current conversation session and runs every user message through
the pipeline:

  1. Append the user message.
  2. Crisis check (EmergencyClassifier). A hit short-circuits everything:
     the pre-approved safety message goes out tagged "urgent", with no
     generation and no audio.
  3. ResponseGenerator → assistant message appended and returned.
  4. Voice synthesis in a background task. When the clip is ready the
     stored message is replaced by a copy carrying it, and `on_audio` fires.

Text is never held back waiting for audio. Mutations of one session are
serialised through the store's per-session lock.
================================================================================
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, List, Mapping, Optional

from ..core.config import generation_cfg
from ..core.errors import NoActiveSessionError
from ..core.interfaces import SessionStore
from ..core.latency import ExchangeTracer
from ..core.models import (
    AvatarSession,
    ConversationMessage,
    ConversationSession,
    SessionContext,
)
from ..core.state_machine import AvatarStatus
from .audio import AudioSynthesizer
from .emergency import EmergencyClassifier
from .emotion import infer_emotion
from .responder import ResponseGenerator
from .templates import PIPELINE_ERROR_REPLY, welcome_message

logger = logging.getLogger("companion.conversation")

URGENT = "urgent"

MessageCallback = Callable[[ConversationMessage], Any]


class SessionManager:
    """
    Runs the companion pipeline for one logical user session.

    Usage:
        manager = SessionManager(store, generator, synthesizer, classifier)
        await manager.start("user-1", {"recent_mood": 4})
        reply = await manager.send("I'm anxious about work")
    """

    def __init__(
        self,
        store: SessionStore,
        generator: ResponseGenerator,
        synthesizer: Optional[AudioSynthesizer],
        classifier: EmergencyClassifier,
        broker: Any = None,
        on_message: Optional[MessageCallback] = None,
        on_audio: Optional[MessageCallback] = None,
    ) -> None:
        self._store = store
        self._generator = generator
        self._synthesizer = synthesizer
        self._classifier = classifier
        self._broker = broker
        self._on_message = on_message
        self._on_audio = on_audio

        self._session_id: Optional[str] = None
        self._audio_tasks: Dict[str, asyncio.Task] = {}
        self._last_tracer: Optional[ExchangeTracer] = None

    # ── State ───────────────────────────────────────────────────────────

    @property
    def last_trace(self) -> Optional[Dict[str, Any]]:
        """Milestones of the most recent exchange (audio_ready once voiced)."""
        return self._last_tracer.summary() if self._last_tracer else None

    @property
    def current_session(self) -> Optional[ConversationSession]:
        if self._session_id is None:
            return None
        return self._store.get(self._session_id)

    @property
    def messages(self) -> List[ConversationMessage]:
        session = self.current_session
        return list(session.messages) if session else []

    @property
    def avatar(self) -> Optional[AvatarSession]:
        return self._broker.current if self._broker is not None else None

    def _require_session(self) -> ConversationSession:
        session = self.current_session
        if session is None:
            raise NoActiveSessionError("no conversation session is open")
        return session

    # ── Lifecycle ───────────────────────────────────────────────────────

    async def start(
        self,
        user_id: str,
        context: Optional[Mapping[str, Any]] = None,
    ) -> ConversationSession:
        """Open a fresh session (ending any current one) seeded with a welcome."""
        if self._session_id is not None:
            await self.end_session()

        session = ConversationSession(
            user_id=user_id,
            context=SessionContext.from_mapping(context),
        )
        session.append(ConversationMessage(role="system", content=generation_cfg.system_prompt))
        welcome = welcome_message(session.context)
        session.append(ConversationMessage(
            role="assistant",
            content=welcome,
            emotion_tag=infer_emotion(welcome),
        ))

        self._store.put(session)
        self._session_id = session.id
        logger.info(
            f"[{session.id}] Session started for {user_id} "
            f"(mood={session.context.recent_mood})"
        )
        return session

    async def end_session(self) -> Optional[Dict[str, Any]]:
        session = self.current_session
        if session is None:
            return None

        pending = [t for t in self._audio_tasks.values() if not t.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._audio_tasks.clear()

        if self._broker is not None:
            try:
                await self._broker.close()
            except Exception as e:
                logger.warning(f"[{session.id}] Avatar close failed: {e}")

        self._store.delete(session.id)
        self._session_id = None

        summary = {
            "session_id": session.id,
            "total_messages": len(session.messages),
            "user_messages": sum(1 for m in session.messages if m.role == "user"),
            "audio_cancelled": len(pending),
        }
        logger.info(f"[{session.id}] Session ended: {summary}")
        return summary

    def update_context(self, data: Mapping[str, Any]) -> SessionContext:
        session = self._require_session()
        session.context.merge(data)
        logger.info(f"[{session.id}] Context updated: {sorted(data.keys())}")
        return session.context

    # ── Messages ────────────────────────────────────────────────────────

    async def send(self, text: str) -> Optional[ConversationMessage]:
        """
        Process one user message. Returns the assistant reply, or None for
        blank input. Raises NoActiveSessionError only when no session is open.
        """
        session = self._require_session()
        text = (text or "").strip()
        if not text:
            return None

        tracer = ExchangeTracer(session.id)
        speak = True

        async with self._store.lock(session.id):
            try:
                user_msg = session.append(ConversationMessage(role="user", content=text))
                tracer.trace.message_id = user_msg.id
                await self._emit(self._on_message, user_msg)

                assessment = self._classifier.assess(text)
                tracer.mark("assessed")

                if assessment.is_emergency:
                    speak = False
                    reply = ConversationMessage(
                        role="assistant",
                        content=assessment.recommended_action,
                        emotion_tag=URGENT,
                    )
                    logger.warning(
                        f"[{session.id}] Safety response sent "
                        f"(confidence {assessment.confidence:.2f})"
                    )
                else:
                    generated = await self._generator.generate(session)
                    reply = ConversationMessage(
                        role="assistant",
                        content=generated.content,
                        emotion_tag=generated.emotion_tag,
                    )
            except Exception as e:
                logger.error(f"[{session.id}] Message pipeline failed: {e}", exc_info=True)
                speak = False
                reply = ConversationMessage(
                    role="assistant",
                    content=PIPELINE_ERROR_REPLY,
                    emotion_tag="supportive",
                )

            session.append(reply)
            session.last_message_at = reply.timestamp
            tracer.mark("reply_ready")
            self._last_tracer = tracer

        await self._emit(self._on_message, reply)
        if speak:
            self._schedule_audio(session.id, reply, tracer)
        return reply

    # ── Audio ───────────────────────────────────────────────────────────

    def _schedule_audio(
        self,
        session_id: str,
        message: ConversationMessage,
        tracer: ExchangeTracer,
    ) -> None:
        if self._synthesizer is None or not self._synthesizer.available:
            return
        task = asyncio.create_task(
            self._attach_audio(session_id, message, tracer),
            name=f"audio-{message.id}",
        )
        self._audio_tasks[message.id] = task
        task.add_done_callback(lambda t, mid=message.id: self._audio_tasks.pop(mid, None))

    async def _attach_audio(
        self,
        session_id: str,
        message: ConversationMessage,
        tracer: ExchangeTracer,
    ) -> Optional[ConversationMessage]:
        clip = await self._synthesizer.synthesize(message.content)
        if clip is None:
            return None

        session = self._store.get(session_id)
        if session is None:
            return None

        async with self._store.lock(session_id):
            updated = message.with_audio(clip)
            if not session.replace_message(updated):
                return None

        tracer.mark("audio_ready")
        logger.debug(f"[{session_id}] Exchange trace: {tracer.summary()}")
        await self._emit(self._on_audio, updated)
        return updated

    async def wait_for_audio(self, message_id: str) -> Optional[ConversationMessage]:
        """Wait for a pending clip; returns the message with audio, or None."""
        task = self._audio_tasks.get(message_id)
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                return None
        session = self.current_session
        message = session.find(message_id) if session else None
        return message if message is not None and message.audio_ref is not None else None

    # ── Avatar ──────────────────────────────────────────────────────────

    async def open_avatar(self, extra_context: Optional[Mapping[str, Any]] = None) -> AvatarSession:
        session = self._require_session()
        if extra_context:
            session.context.merge(extra_context)

        if self._broker is None:
            avatar = AvatarSession(error_message="video avatar is not configured")
            avatar.lifecycle.transition(AvatarStatus.ERROR, avatar.error_message)
            return avatar
        return await self._broker.open(session.context, session)

    async def refresh_avatar(self) -> Optional[AvatarSession]:
        """Re-read the live avatar's status from the provider."""
        if self._broker is None:
            return None
        avatar = self._broker.current
        if avatar is None:
            return None
        await self._broker.refresh(avatar)
        session = self.current_session
        if session is not None and avatar.status == AvatarStatus.ENDED:
            session.avatar_session_ref = None
        return avatar

    async def close_avatar(self) -> None:
        if self._broker is not None:
            await self._broker.close()
        session = self.current_session
        if session is not None:
            session.avatar_session_ref = None

    # ── Callbacks ───────────────────────────────────────────────────────

    async def _emit(self, callback: Optional[MessageCallback], message: ConversationMessage) -> None:
        if callback is None:
            return
        try:
            cb = callback(message)
            if asyncio.iscoroutine(cb):
                await cb
        except Exception as e:
            logger.warning(f"Message callback failed: {e}")
