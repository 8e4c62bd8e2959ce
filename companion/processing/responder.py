"""
Sage Companion — Response Generator

================================================================================
ORDERED REPLY STRATEGIES
================================================================================

Produces the assistant's reply for the latest user message. Strategies are
tried in order; the first usable reply wins:

  1. LocalPatternStrategy      keyword topics → hand-authored templates
  2. RemoteGenerativeStrategy  persona prompt → generative provider
  3. StaticFallbackStrategy    "still here" templates, never fails

The generator never raises: every path ends in a fixed non-network reply.
================================================================================
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Optional, Sequence

from ..core.chain import BaseStrategy, StrategyChain
from ..core.config import GenerationConfig, generation_cfg
from ..core.errors import ChainExhaustedError, TransientProviderError
from ..core.interfaces import GenerativeProvider, Strategy
from ..core.models import ConversationSession, GeneratedReply
from ..core.retry import RetryPolicy
from .emotion import infer_emotion
from .templates import (
    DEFAULT_TOPIC,
    FALLBACK_TEMPLATES,
    TOPIC_TEMPLATES,
    classify_topic,
)

logger = logging.getLogger("companion.responder")

# More than this many non-system messages means the user is returning
_CONTINUING_AFTER = 2


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------

class LocalPatternStrategy(BaseStrategy[ConversationSession, GeneratedReply]):
    """Topic templates picked by keyword. No network, single attempt."""

    name = "local_pattern"

    def __init__(
        self,
        answer_unmatched: bool = generation_cfg.pattern_default_reply,
        rng: Optional[random.Random] = None,
    ) -> None:
        super().__init__()
        self.answer_unmatched = answer_unmatched
        self._rng = rng or random.Random()

    async def attempt(self, session: ConversationSession) -> Optional[GeneratedReply]:
        message = session.latest_user_message
        topic = classify_topic(message)
        if topic is None:
            if not self.answer_unmatched:
                return None
            topic = DEFAULT_TOPIC

        template = self._rng.choice(TOPIC_TEMPLATES[topic])
        continuing = len(session.dialogue) > _CONTINUING_AFTER
        logger.debug(f"[{session.id}] Pattern topic '{topic}' (continuing={continuing})")
        return GeneratedReply(
            content=template.render(continuing),
            emotion_tag=template.emotion,
            source=self.name,
        )


class RemoteGenerativeStrategy(BaseStrategy[ConversationSession, GeneratedReply]):
    """Persona prompt sent to a generative provider under retry + timeout."""

    name = "remote_generative"

    def __init__(
        self,
        provider: GenerativeProvider,
        config: GenerationConfig = generation_cfg,
        retry_policy: Optional[RetryPolicy] = None,
    ) -> None:
        super().__init__(retry_policy or RetryPolicy.from_config())
        self._provider = provider
        self._cfg = config

    def build_prompt(self, session: ConversationSession) -> str:
        parts = [self._cfg.system_prompt, ""]

        ctx = session.context
        if ctx.recent_mood is not None:
            parts.append(f"User's recent mood level: {ctx.recent_mood}/10")
        if ctx.completed_activities:
            parts.append(
                "Completed wellbeing activities: "
                + ", ".join(sorted(ctx.completed_activities))
            )

        recent = session.dialogue[-self._cfg.context_window:]
        if recent:
            parts.append("")
            parts.append("Recent conversation:")
            parts.extend(f"{m.role}: {m.content}" for m in recent)

        parts.append("")
        parts.append(f"User's latest message: {session.latest_user_message}")
        parts.append("")
        parts.append(self._cfg.reply_instructions)
        parts.append("")
        parts.append("Response:")
        return "\n".join(parts)

    async def attempt(self, session: ConversationSession) -> Optional[GeneratedReply]:
        prompt = self.build_prompt(session)
        try:
            text = await asyncio.wait_for(
                self._provider.generate(prompt),
                timeout=self._cfg.llm_timeout,
            )
        except asyncio.TimeoutError as e:
            raise TransientProviderError(
                f"generation timed out after {self._cfg.llm_timeout}s"
            ) from e

        content = (text or "").strip()
        if content.lower().startswith("response:"):
            content = content[len("response:"):].strip()
        if not content:
            raise TransientProviderError("generation returned empty text")

        return GeneratedReply(
            content=content,
            emotion_tag=infer_emotion(content),
            source=self.name,
        )


class StaticFallbackStrategy(BaseStrategy[ConversationSession, GeneratedReply]):
    """Fixed 'technical difficulty' replies. Cannot fail."""

    name = "static_fallback"

    def __init__(self, rng: Optional[random.Random] = None) -> None:
        super().__init__()
        self._rng = rng or random.Random()

    def reply(self) -> GeneratedReply:
        template = self._rng.choice(FALLBACK_TEMPLATES)
        return GeneratedReply(
            content=template.text,
            emotion_tag=template.emotion,
            source=self.name,
        )

    async def attempt(self, session: ConversationSession) -> Optional[GeneratedReply]:
        return self.reply()


# ---------------------------------------------------------------------------
# Generator
# ---------------------------------------------------------------------------

class ResponseGenerator:
    """
    Runs the reply chain for a session.

    Usage:
        generator = ResponseGenerator.default(gemini_provider)
        reply = await generator.generate(session)
    """

    def __init__(
        self,
        strategies: Sequence[Strategy],
        fallback: Optional[StaticFallbackStrategy] = None,
        config: GenerationConfig = generation_cfg,
    ) -> None:
        self._cfg = config
        self._fallback = fallback or StaticFallbackStrategy()
        self._chain: StrategyChain = StrategyChain(
            "reply",
            strategies,
            accept=self._is_usable,
        )

    @classmethod
    def default(
        cls,
        provider: Optional[GenerativeProvider] = None,
        config: GenerationConfig = generation_cfg,
        retry_policy: Optional[RetryPolicy] = None,
    ) -> "ResponseGenerator":
        fallback = StaticFallbackStrategy()
        strategies: list = [LocalPatternStrategy(answer_unmatched=config.pattern_default_reply)]
        if provider is not None:
            strategies.append(RemoteGenerativeStrategy(provider, config, retry_policy))
        strategies.append(fallback)
        return cls(strategies, fallback=fallback, config=config)

    @property
    def strategy_names(self):
        return [s.name for s in self._chain.strategies]

    def _is_usable(self, reply: GeneratedReply) -> bool:
        return len(reply.content.strip()) > self._cfg.min_reply_chars

    async def generate(self, session: ConversationSession) -> GeneratedReply:
        try:
            outcome = await self._chain.run(session)
        except ChainExhaustedError as e:
            logger.error(f"[{session.id}] {e} — using static fallback")
            return self._fallback.reply()

        if outcome.failures:
            logger.info(
                f"[{session.id}] Reply from '{outcome.strategy}' after "
                f"{len(outcome.failures)} fallback(s) ({outcome.elapsed_ms}ms)"
            )
        else:
            logger.info(f"[{session.id}] Reply from '{outcome.strategy}' ({outcome.elapsed_ms}ms)")
        return outcome.result
