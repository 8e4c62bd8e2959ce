"""
Sage Companion — Strategy Chain

Generic runner for "try this, then that" fallbacks. A chain is an ordered
list of strategies implementing the same capability; each one is wrapped in
its own RetryPolicy and the first acceptable result wins.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Generic, List, Optional, Sequence, Tuple, TypeVar

from .errors import ChainExhaustedError
from .interfaces import Strategy
from .retry import RetryPolicy

logger = logging.getLogger("companion.chain")

In = TypeVar("In")
Out = TypeVar("Out")


class BaseStrategy(Generic[In, Out]):
    """Convenience base: a name and a single-attempt policy by default."""

    name: str = "strategy"

    def __init__(self, retry_policy: Optional[RetryPolicy] = None) -> None:
        self.retry_policy = retry_policy or RetryPolicy.once()

    async def attempt(self, value: In) -> Optional[Out]:
        raise NotImplementedError


@dataclass
class ChainOutcome(Generic[Out]):
    result: Out
    strategy: str
    failures: List[Tuple[str, str]] = field(default_factory=list)
    elapsed_ms: float = 0.0


class StrategyChain(Generic[In, Out]):
    """
    Tries each strategy in order until one yields an accepted result.

    Usage:
        chain = StrategyChain("reply", [local, remote, static], accept=is_usable)
        outcome = await chain.run(session)
        outcome.result, outcome.strategy
    """

    def __init__(
        self,
        name: str,
        strategies: Sequence[Strategy],
        accept: Optional[Callable[[Out], bool]] = None,
    ) -> None:
        if not strategies:
            raise ValueError("a strategy chain needs at least one strategy")
        self.name = name
        self._strategies = list(strategies)
        self._accept = accept or (lambda result: result is not None)

    @property
    def strategies(self) -> List[Strategy]:
        return list(self._strategies)

    async def run(self, value: In) -> ChainOutcome[Out]:
        started = time.time()
        failures: List[Tuple[str, str]] = []

        for strategy in self._strategies:
            try:
                result = await strategy.retry_policy.run(
                    lambda s=strategy: s.attempt(value),
                    name=f"{self.name}.{strategy.name}",
                )
            except Exception as e:
                reason = f"{type(e).__name__}: {e}"
                logger.warning(f"{self.name}: strategy '{strategy.name}' failed — {reason}")
                failures.append((strategy.name, reason))
                continue

            if result is None or not self._accept(result):
                logger.info(f"{self.name}: strategy '{strategy.name}' produced nothing usable")
                failures.append((strategy.name, "rejected"))
                continue

            elapsed = round((time.time() - started) * 1000, 1)
            logger.debug(f"{self.name}: '{strategy.name}' succeeded in {elapsed}ms")
            return ChainOutcome(
                result=result,
                strategy=strategy.name,
                failures=failures,
                elapsed_ms=elapsed,
            )

        raise ChainExhaustedError(self.name, failures)
