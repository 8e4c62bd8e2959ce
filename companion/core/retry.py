"""
Sage Companion — Retry Policy

The single bounded retry-with-backoff executor used by every remote call.
Per-call-site parameters come from the constructor; defaults come from
RetryConfig and keep the added latency of a failing call under ten seconds.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from .config import RetryConfig, retry_cfg
from .errors import TransientProviderError

logger = logging.getLogger("companion.retry")

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


class RetryPolicy:
    """
    Runs a coroutine factory up to `max_attempts` times.

    Only exceptions listed in `retry_on` are retried; anything else
    propagates on the first occurrence.

    Usage:
        policy = RetryPolicy(max_attempts=3, base_delay=1.0)
        text = await policy.run(lambda: provider.generate(prompt), name="gemini")
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        multiplier: float = 1.5,
        max_delay: float = 4.0,
        retry_on: Tuple[Type[BaseException], ...] = (TransientProviderError,),
        sleep: Optional[Sleep] = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.multiplier = multiplier
        self.max_delay = max_delay
        self.retry_on = retry_on
        self._sleep = sleep or asyncio.sleep

    @classmethod
    def from_config(cls, cfg: RetryConfig = retry_cfg, **overrides) -> "RetryPolicy":
        params = dict(
            max_attempts=cfg.max_attempts,
            base_delay=cfg.base_delay,
            multiplier=cfg.multiplier,
            max_delay=cfg.max_delay,
        )
        params.update(overrides)
        return cls(**params)

    @classmethod
    def once(cls) -> "RetryPolicy":
        """A single attempt, no retries."""
        return cls(max_attempts=1, base_delay=0.0)

    def delay_for(self, attempt: int) -> float:
        """Sleep before attempt number `attempt + 1` (attempt is 1-based)."""
        return min(self.base_delay * (self.multiplier ** (attempt - 1)), self.max_delay)

    @property
    def worst_case_delay(self) -> float:
        return sum(self.delay_for(n) for n in range(1, self.max_attempts))

    async def run(self, fn: Callable[[], Awaitable[T]], name: str = "call") -> T:
        attempt = 0
        while True:
            attempt += 1
            try:
                return await fn()
            except self.retry_on as e:
                if attempt >= self.max_attempts:
                    logger.warning(f"{name}: attempt {attempt}/{self.max_attempts} failed — giving up: {e}")
                    raise
                delay = self.delay_for(attempt)
                logger.info(
                    f"{name}: attempt {attempt}/{self.max_attempts} failed ({e}) — "
                    f"retrying in {delay:.2f}s"
                )
                if delay > 0:
                    await self._sleep(delay)
