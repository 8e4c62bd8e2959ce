"""RetryPolicy and StrategyChain behaviour."""

from __future__ import annotations

import pytest

from companion.core.chain import BaseStrategy, StrategyChain
from companion.core.errors import (
    ChainExhaustedError,
    ConfigurationError,
    TransientProviderError,
)
from companion.core.retry import RetryPolicy

from fakes import SleepRecorder


class Flaky:
    def __init__(self, failures: int, error: Exception) -> None:
        self.failures = failures
        self.error = error
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return "ok"


class TestRetryPolicy:
    def test_delay_grows_and_is_capped(self):
        policy = RetryPolicy(max_attempts=5, base_delay=1.0, multiplier=1.5, max_delay=2.0)
        assert policy.delay_for(1) == 1.0
        assert policy.delay_for(2) == 1.5
        assert policy.delay_for(3) == 2.0
        assert policy.delay_for(4) == 2.0

    def test_default_worst_case_is_under_ten_seconds(self):
        policy = RetryPolicy()
        assert policy.max_attempts <= 3
        assert policy.worst_case_delay < 10.0

    def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)

    @pytest.mark.asyncio
    async def test_transient_error_is_retried_until_success(self):
        sleep = SleepRecorder()
        fn = Flaky(2, TransientProviderError("503"))
        policy = RetryPolicy(max_attempts=3, base_delay=1.0, multiplier=1.5, sleep=sleep)

        assert await policy.run(fn, name="t") == "ok"
        assert fn.calls == 3
        assert sleep.delays == [1.0, 1.5]

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self):
        sleep = SleepRecorder()
        fn = Flaky(10, TransientProviderError("503"))
        policy = RetryPolicy(max_attempts=3, sleep=sleep)

        with pytest.raises(TransientProviderError):
            await policy.run(fn)
        assert fn.calls == 3
        assert len(sleep.delays) == 2

    @pytest.mark.asyncio
    async def test_non_retryable_error_propagates_immediately(self):
        sleep = SleepRecorder()
        fn = Flaky(1, ConfigurationError("bad key"))
        policy = RetryPolicy(max_attempts=3, sleep=sleep)

        with pytest.raises(ConfigurationError):
            await policy.run(fn)
        assert fn.calls == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_once_makes_a_single_attempt(self):
        fn = Flaky(1, TransientProviderError("503"))
        with pytest.raises(TransientProviderError):
            await RetryPolicy.once().run(fn)
        assert fn.calls == 1


class Scripted(BaseStrategy):
    def __init__(self, name, result=None, error=None, retry_policy=None):
        super().__init__(retry_policy)
        self.name = name
        self.result = result
        self.error = error
        self.calls = 0

    async def attempt(self, value):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.result


class TestStrategyChain:
    @pytest.mark.asyncio
    async def test_first_accepted_result_wins(self):
        first = Scripted("first", result="a")
        second = Scripted("second", result="b")
        outcome = await StrategyChain("c", [first, second]).run(None)

        assert outcome.result == "a"
        assert outcome.strategy == "first"
        assert outcome.failures == []
        assert second.calls == 0

    @pytest.mark.asyncio
    async def test_falls_through_errors_and_rejections_in_order(self):
        broken = Scripted("broken", error=ConfigurationError("nope"))
        short = Scripted("short", result="hi")
        good = Scripted("good", result="a long enough answer")
        chain = StrategyChain("c", [broken, short, good], accept=lambda r: len(r) > 5)

        outcome = await chain.run(None)

        assert outcome.strategy == "good"
        assert [name for name, _ in outcome.failures] == ["broken", "short"]
        assert outcome.failures[1][1] == "rejected"

    @pytest.mark.asyncio
    async def test_each_strategy_uses_its_own_retry_policy(self):
        flaky = Scripted(
            "flaky",
            error=TransientProviderError("503"),
            retry_policy=RetryPolicy(max_attempts=3, sleep=SleepRecorder()),
        )
        fallback = Scripted("fallback", result="done")

        outcome = await StrategyChain("c", [flaky, fallback]).run(None)

        assert flaky.calls == 3
        assert outcome.strategy == "fallback"

    @pytest.mark.asyncio
    async def test_exhausted_chain_reports_every_failure(self):
        chain = StrategyChain("c", [
            Scripted("a", error=TransientProviderError("x")),
            Scripted("b", result=None),
        ])
        with pytest.raises(ChainExhaustedError) as exc:
            await chain.run(None)
        assert [name for name, _ in exc.value.failures] == ["a", "b"]

    def test_empty_chain_is_rejected(self):
        with pytest.raises(ValueError):
            StrategyChain("c", [])
