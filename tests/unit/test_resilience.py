"""Tests for resilience module: backoff, retry, circuit breaker and registry."""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING

import pytest

from resilient_client.errors import (
    DataFormatError,
    ErrorKind,
    InvalidStateError,
    RemoteError,
)
from resilient_client.resilience import (
    BreakerRegistry,
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
    RetryConfig,
    RetryPolicy,
    default_registry,
    with_retry,
)

if TYPE_CHECKING:
    from tests.conftest import FakeClock, SleepRecorder


class TestRetryConfig:
    """Tests for RetryConfig."""

    def test_default_config(self) -> None:
        config = RetryConfig()
        assert config.max_attempts == 3
        assert config.base_delay_ms == 500
        assert config.max_delay_ms == 10_000
        assert config.backoff_multiplier == 2.0

    def test_presets(self) -> None:
        aggressive = RetryConfig.aggressive()
        assert (aggressive.max_attempts, aggressive.base_delay_ms) == (5, 200)
        assert (aggressive.max_delay_ms, aggressive.backoff_multiplier) == (5_000, 1.5)

        conservative = RetryConfig.conservative()
        assert (conservative.max_attempts, conservative.base_delay_ms) == (2, 1_000)
        assert (conservative.max_delay_ms, conservative.backoff_multiplier) == (30_000, 3.0)

        assert RetryConfig.preset("default") == RetryConfig.default()
        assert RetryConfig.no_retry().max_attempts == 1

    def test_unknown_preset(self) -> None:
        with pytest.raises(ValueError, match="Unknown retry preset"):
            RetryConfig.preset("reckless")

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"max_attempts": 0},
            {"base_delay_ms": -1},
            {"base_delay_ms": 500, "max_delay_ms": 100},
            {"backoff_multiplier": 0.5},
        ],
    )
    def test_validation(self, kwargs: dict) -> None:
        with pytest.raises(ValueError):
            RetryConfig(**kwargs)

    def test_from_dict_overrides_preset(self) -> None:
        config = RetryConfig.from_dict({"preset": "aggressive", "max_attempts": 2})
        assert config.max_attempts == 2
        assert config.base_delay_ms == 200

    def test_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("RESILIENT_RETRY_MAX_ATTEMPTS", "4")
        monkeypatch.setenv("RESILIENT_RETRY_BASE_DELAY_MS", "250")
        config = RetryConfig.from_env()
        assert config.max_attempts == 4
        assert config.base_delay_ms == 250
        assert config.max_delay_ms == 10_000


class TestBackoff:
    """Tests for RetryPolicy.calculate_delay."""

    def test_exponential(self) -> None:
        policy = RetryPolicy(RetryConfig())
        assert policy.calculate_delay(1) == 0.5
        assert policy.calculate_delay(2) == 1.0
        assert policy.calculate_delay(3) == 2.0

    def test_respects_max(self) -> None:
        policy = RetryPolicy(RetryConfig())
        assert policy.calculate_delay(10) == 10.0
        assert policy.calculate_delay(100) == 10.0

    def test_fractional_multiplier(self) -> None:
        policy = RetryPolicy(RetryConfig.aggressive())
        assert policy.calculate_delay(2) == pytest.approx(0.3)

    def test_attempt_is_one_based(self) -> None:
        with pytest.raises(ValueError):
            RetryPolicy().calculate_delay(0)

    @pytest.mark.parametrize(
        "config",
        [
            RetryConfig.default(),
            RetryConfig.aggressive(),
            RetryConfig.conservative(),
            RetryConfig(base_delay_ms=100, max_delay_ms=100, backoff_multiplier=1.0),
            RetryConfig(base_delay_ms=250, max_delay_ms=4_000, backoff_multiplier=3),
        ],
    )
    def test_monotonic_and_capped(self, config: RetryConfig) -> None:
        policy = RetryPolicy(config)
        cap = config.max_delay_ms / 1000.0
        for attempt in [*range(1, 40), 1023, 1024, 1025, 1100, 10_000]:
            current = policy.calculate_delay(attempt)
            following = policy.calculate_delay(attempt + 1)
            assert 0 < current <= following <= cap

    def test_very_large_attempt_saturates_at_cap(self) -> None:
        policy = RetryPolicy(RetryConfig())
        assert policy.calculate_delay(1100) == 10.0
        assert policy.calculate_delay(10**6) == 10.0

    def test_zero_base_delay(self) -> None:
        policy = RetryPolicy(RetryConfig(base_delay_ms=0, max_delay_ms=1_000))
        assert policy.calculate_delay(1) == 0.0
        assert policy.calculate_delay(5000) == 0.0


class TestRetryPolicy:
    """Tests for RetryPolicy.should_retry and execute."""

    def test_should_retry_classification(self) -> None:
        policy = RetryPolicy()
        assert policy.should_retry(TimeoutError()) is True
        assert policy.should_retry(ConnectionError("reset")) is True
        assert policy.should_retry(RuntimeError("boom")) is True
        assert policy.should_retry(DataFormatError("bad json")) is False
        assert policy.should_retry(InvalidStateError("order closed")) is False

    def test_retry_predicate_replaces_classifier(self) -> None:
        policy = RetryPolicy(
            RetryConfig(retry_predicate=lambda e: isinstance(e, KeyError))
        )
        assert policy.should_retry(KeyError("x")) is True
        assert policy.should_retry(TimeoutError()) is False

    @pytest.mark.asyncio
    async def test_success_first_attempt(self, sleeps: SleepRecorder) -> None:
        policy = RetryPolicy(RetryConfig(), sleep=sleeps)

        async def success_op() -> str:
            return "menu"

        result = await policy.execute(success_op)
        assert result.success is True
        assert result.value == "menu"
        assert result.attempts == 1
        assert sleeps.delays == []

    @pytest.mark.asyncio
    async def test_retry_then_success(self, sleeps: SleepRecorder) -> None:
        policy = RetryPolicy(RetryConfig(), sleep=sleeps)
        calls = [0]

        async def flaky_op() -> str:
            calls[0] += 1
            if calls[0] < 3:
                raise ConnectionError("connection reset")
            return "ok"

        result = await policy.execute(flaky_op)
        assert result.success is True
        assert result.value == "ok"
        assert result.attempts == 3
        assert sleeps.delays == [0.5, 1.0]
        assert result.total_delay_ms == pytest.approx(1500.0)

    @pytest.mark.asyncio
    async def test_retryable_failure_exhausts_budget(self, sleeps: SleepRecorder) -> None:
        policy = RetryPolicy(RetryConfig(max_attempts=3), sleep=sleeps)
        errors: list[Exception] = []

        async def always_fail() -> str:
            error = TimeoutError(f"attempt {len(errors) + 1}")
            errors.append(error)
            raise error

        result = await policy.execute(always_fail)
        assert result.success is False
        assert result.attempts == 3
        assert len(errors) == 3
        assert result.error is errors[-1]
        assert result.error_kind == ErrorKind.TIMEOUT
        assert sleeps.delays == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_non_retryable_invoked_once(self, sleeps: SleepRecorder) -> None:
        policy = RetryPolicy(RetryConfig(max_attempts=5), sleep=sleeps)
        calls = [0]

        async def bad_payload() -> str:
            calls[0] += 1
            raise DataFormatError("unexpected column")

        result = await policy.execute(bad_payload)
        assert result.success is False
        assert calls[0] == 1
        assert result.error_kind == ErrorKind.FORMAT
        assert sleeps.delays == []

    @pytest.mark.asyncio
    async def test_no_retry_config(self, sleeps: SleepRecorder) -> None:
        policy = RetryPolicy(RetryConfig.no_retry(), sleep=sleeps)
        calls = [0]

        async def fail() -> str:
            calls[0] += 1
            raise ConnectionError("down")

        result = await policy.execute(fail)
        assert result.attempts == 1
        assert calls[0] == 1

    @pytest.mark.asyncio
    async def test_on_retry_callback(self, sleeps: SleepRecorder) -> None:
        policy = RetryPolicy(RetryConfig(max_attempts=3), sleep=sleeps)
        seen: list[tuple[int, float]] = []

        async def fail() -> str:
            raise RemoteError("busy", retryable=True)

        await policy.execute(
            fail, on_retry=lambda attempt, _e, delay: seen.append((attempt, delay))
        )
        assert seen == [(1, 0.5), (2, 1.0)]

    @pytest.mark.asyncio
    async def test_with_retry_raises_last_error(self) -> None:
        async def fail() -> str:
            raise ConnectionError("still down")

        with pytest.raises(ConnectionError, match="still down"):
            await with_retry(fail, RetryConfig(max_attempts=2, base_delay_ms=1))

    @pytest.mark.asyncio
    async def test_with_retry_returns_value(self) -> None:
        async def success_op() -> int:
            return 7

        assert await with_retry(success_op) == 7


class TestCircuitBreakerConfig:
    """Tests for CircuitBreakerConfig."""

    def test_presets(self) -> None:
        default = CircuitBreakerConfig.default()
        assert (
            default.failure_threshold,
            default.success_threshold,
            default.cooldown_seconds,
        ) == (5, 3, 60.0)
        aggressive = CircuitBreakerConfig.aggressive()
        assert (
            aggressive.failure_threshold,
            aggressive.success_threshold,
            aggressive.cooldown_seconds,
        ) == (3, 2, 30.0)
        lenient = CircuitBreakerConfig.lenient()
        assert (
            lenient.failure_threshold,
            lenient.success_threshold,
            lenient.cooldown_seconds,
        ) == (10, 5, 300.0)

    def test_validation(self) -> None:
        with pytest.raises(ValueError):
            CircuitBreakerConfig(failure_threshold=0)
        with pytest.raises(ValueError):
            CircuitBreakerConfig(success_threshold=0)
        with pytest.raises(ValueError):
            CircuitBreakerConfig(cooldown_seconds=-1)

    def test_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("RESILIENT_BREAKER_FAILURE_THRESHOLD", "7")
        monkeypatch.setenv("RESILIENT_BREAKER_COOLDOWN_SECS", "15")
        config = CircuitBreakerConfig.from_env()
        assert config.failure_threshold == 7
        assert config.success_threshold == 3
        assert config.cooldown_seconds == 15.0


class TestCircuitBreaker:
    """Tests for CircuitBreaker."""

    def _tripped(
        self, clock: FakeClock, config: CircuitBreakerConfig | None = None
    ) -> CircuitBreaker:
        breaker = CircuitBreaker("wallet.fetch_balance", config, clock=clock)
        for _ in range(breaker.config.failure_threshold):
            breaker.record_failure()
        assert breaker.state == CircuitState.OPEN
        return breaker

    def test_initial_state_closed(self, clock: FakeClock) -> None:
        breaker = CircuitBreaker("menu.fetch", clock=clock)
        assert breaker.state == CircuitState.CLOSED
        assert breaker.is_closed is True
        assert breaker.failure_count == 0
        assert breaker.success_count == 0
        assert breaker.last_failure_time is None
        assert breaker.next_attempt_time is None

    def test_opens_exactly_at_threshold(self, clock: FakeClock) -> None:
        breaker = CircuitBreaker("menu.fetch", CircuitBreakerConfig(), clock=clock)
        breaker.record_success()
        breaker.record_success()
        assert breaker.success_count == 2

        for _ in range(4):
            assert breaker.record_failure() == CircuitState.CLOSED
            assert breaker.failure_count < breaker.config.failure_threshold

        clock.advance(5)
        assert breaker.record_failure() == CircuitState.OPEN
        assert breaker.next_attempt_time == clock.now + 60
        assert breaker.last_failure_time == clock.now
        assert breaker.success_count == 0

    def test_success_while_closed_keeps_failures(self, clock: FakeClock) -> None:
        breaker = CircuitBreaker("menu.fetch", clock=clock)
        breaker.record_failure()
        breaker.record_failure()
        assert breaker.record_success() == CircuitState.CLOSED
        assert breaker.failure_count == 2
        assert breaker.success_count == 1

    def test_half_open_is_lazy(self, clock: FakeClock) -> None:
        breaker = self._tripped(clock)

        clock.advance(59)
        assert breaker.state == CircuitState.OPEN
        assert breaker.allow_request() is False

        clock.advance(1)
        assert breaker.state == CircuitState.HALF_OPEN
        assert breaker.allow_request() is True

    def test_half_open_recovery(self, clock: FakeClock) -> None:
        breaker = self._tripped(clock)
        clock.advance(60)

        assert breaker.record_success() == CircuitState.HALF_OPEN
        assert breaker.record_success() == CircuitState.HALF_OPEN
        assert breaker.success_count == 2
        assert breaker.record_success() == CircuitState.CLOSED

        assert breaker.failure_count == 0
        assert breaker.success_count == 0
        assert breaker.last_failure_time is None
        assert breaker.next_attempt_time is None

    def test_half_open_failure_reopens(self, clock: FakeClock) -> None:
        breaker = self._tripped(clock)
        first_deadline = breaker.next_attempt_time
        clock.advance(60)
        breaker.record_success()

        assert breaker.record_failure() == CircuitState.OPEN
        assert breaker.success_count == 0
        assert breaker.next_attempt_time == clock.now + 60
        assert breaker.next_attempt_time > first_deadline

    def test_failure_while_open_keeps_deadline(self, clock: FakeClock) -> None:
        breaker = self._tripped(clock)
        deadline = breaker.next_attempt_time
        clock.advance(10)

        assert breaker.record_failure() == CircuitState.OPEN
        assert breaker.next_attempt_time == deadline
        assert breaker.last_failure_time == clock.now

    def test_success_while_open_is_ignored(self, clock: FakeClock) -> None:
        breaker = self._tripped(clock)
        assert breaker.record_success() == CircuitState.OPEN
        assert breaker.success_count == 0

    def test_time_until_retry(self, clock: FakeClock) -> None:
        breaker = CircuitBreaker("menu.fetch", clock=clock)
        assert breaker.time_until_retry() is None

        breaker = self._tripped(clock)
        assert breaker.time_until_retry() == 60.0
        clock.advance(20)
        assert breaker.time_until_retry() == 40.0

        error = breaker.open_error()
        assert error.operation == "wallet.fetch_balance"
        assert error.time_until_retry == 40.0

    def test_reset(self, clock: FakeClock) -> None:
        breaker = self._tripped(clock)
        breaker.reset()

        assert breaker.is_closed is True
        assert breaker.failure_count == 0
        assert breaker.success_count == 0
        assert breaker.last_failure_time is None
        assert breaker.next_attempt_time is None

    def test_snapshot(self, clock: FakeClock) -> None:
        breaker = self._tripped(clock, CircuitBreakerConfig.aggressive())
        snap = breaker.snapshot()

        assert snap.name == "wallet.fetch_balance"
        assert snap.state == "open"
        assert snap.is_open is True
        assert snap.failure_count == 3
        assert snap.next_attempt_time == clock.now + 30
        assert snap.failure_threshold == 3
        assert snap.state_changes == 1
        assert snap.to_dict()["state"] == "open"

    def test_concurrent_records_are_not_lost(self, clock: FakeClock) -> None:
        breaker = CircuitBreaker(
            "loyalty.points", CircuitBreakerConfig(failure_threshold=100_000), clock=clock
        )

        def hammer() -> None:
            for _ in range(500):
                breaker.record_failure()

        threads = [threading.Thread(target=hammer) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert breaker.failure_count == 4000
        assert breaker.state == CircuitState.CLOSED


class TestBreakerRegistry:
    """Tests for BreakerRegistry."""

    def test_same_instance_first_config_wins(self, registry: BreakerRegistry) -> None:
        first = CircuitBreakerConfig.aggressive()
        second = CircuitBreakerConfig.lenient()

        breaker = registry.get_or_create("Y", first)
        again = registry.get_or_create("Y", second)

        assert again is breaker
        assert again.config == first

    def test_names_are_isolated(self, registry: BreakerRegistry) -> None:
        a = registry.get_or_create("orders.place")
        b = registry.get_or_create("orders.cancel")
        assert a is not b
        assert len(registry) == 2
        assert "orders.place" in registry
        assert sorted(registry) == ["orders.cancel", "orders.place"]

    def test_get_missing(self, registry: BreakerRegistry) -> None:
        assert registry.get("nope") is None

    def test_breakers_use_registry_clock(
        self, registry: BreakerRegistry, clock: FakeClock
    ) -> None:
        breaker = registry.get_or_create("menu.fetch", CircuitBreakerConfig(failure_threshold=1))
        breaker.record_failure()
        assert breaker.next_attempt_time == clock.now + 60

    def test_stats_snapshot(self, registry: BreakerRegistry, clock: FakeClock) -> None:
        registry.get_or_create("menu.fetch").record_success()
        failing = registry.get_or_create("wallet.topup", CircuitBreakerConfig(failure_threshold=1))
        failing.record_failure()

        stats = registry.stats_snapshot()
        assert set(stats) == {"menu.fetch", "wallet.topup"}
        assert stats["menu.fetch"].state == "closed"
        assert stats["menu.fetch"].success_count == 1
        assert stats["wallet.topup"].state == "open"
        assert stats["wallet.topup"].failure_count == 1
        assert stats["wallet.topup"].last_failure_time == clock.now
        assert stats["wallet.topup"].next_attempt_time == clock.now + 60

    def test_signals(self, registry: BreakerRegistry) -> None:
        registry.get_or_create("menu.fetch")
        registry.get_or_create(
            "wallet.topup", CircuitBreakerConfig(failure_threshold=1)
        ).record_failure()

        signals = registry.signals()
        assert signals.is_healthy is False
        assert signals.open_operations == ["wallet.topup"]
        assert signals.health_score == 0.5
        assert signals.to_dict()["open_operations"] == ["wallet.topup"]

    def test_reset_one_and_all(self, registry: BreakerRegistry) -> None:
        config = CircuitBreakerConfig(failure_threshold=1)
        registry.get_or_create("a", config).record_failure()
        registry.get_or_create("b", config).record_failure()

        assert registry.reset_one("a") is True
        assert registry.reset_one("missing") is False
        assert registry.get("a").state == CircuitState.CLOSED
        assert registry.get("b").state == CircuitState.OPEN

        registry.reset_all()
        assert all(s.state == "closed" for s in registry.stats_snapshot().values())

    def test_clear(self, registry: BreakerRegistry) -> None:
        breaker = registry.get_or_create("a")
        registry.clear()
        assert registry.get_or_create("a") is not breaker

    def test_default_registry_is_shared(self) -> None:
        assert default_registry() is default_registry()
