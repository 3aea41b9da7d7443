"""
Circuit breaker for fault isolation.

Implements the circuit breaker pattern with three states:
- Closed: Normal operation, calls pass through
- Open: Circuit tripped, calls fail fast
- Half-Open: Probing whether the dependency recovered

The Open -> Half-Open transition is lazy: it is evaluated whenever the state
is read and no timer runs in the background. A breaker nobody looks at stays
Open past its deadline, so ``state`` is only accurate as of the last read.
"""

from __future__ import annotations

import os
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from resilient_client.errors import CircuitOpenError
from resilient_client.resilience.signals import CircuitBreakerSnapshot
from resilient_client.telemetry import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable

logger = get_logger("resilient_client.breaker")

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitOpenError",
    "CircuitState",
]


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class CircuitBreakerConfig:
    """Configuration for circuit breaker.

    Attributes:
        failure_threshold: Recorded failures that trip the circuit
        success_threshold: Successes in half-open needed to close it again
        cooldown_seconds: Time spent open before a probe is allowed
    """

    failure_threshold: int = 5
    success_threshold: int = 3
    cooldown_seconds: float = 60.0

    def __post_init__(self) -> None:
        if self.failure_threshold < 1:
            raise ValueError(
                f"failure_threshold must be >= 1, got {self.failure_threshold}"
            )
        if self.success_threshold < 1:
            raise ValueError(
                f"success_threshold must be >= 1, got {self.success_threshold}"
            )
        if self.cooldown_seconds < 0:
            raise ValueError(
                f"cooldown_seconds must be >= 0, got {self.cooldown_seconds}"
            )

    @classmethod
    def default(cls) -> CircuitBreakerConfig:
        """5 failures to open, 3 probes to close, 60s cooldown."""
        return cls()

    @classmethod
    def aggressive(cls) -> CircuitBreakerConfig:
        """3 failures to open, 2 probes to close, 30s cooldown."""
        return cls(failure_threshold=3, success_threshold=2, cooldown_seconds=30.0)

    @classmethod
    def lenient(cls) -> CircuitBreakerConfig:
        """10 failures to open, 5 probes to close, 5min cooldown."""
        return cls(failure_threshold=10, success_threshold=5, cooldown_seconds=300.0)

    @classmethod
    def preset(cls, name: str) -> CircuitBreakerConfig:
        """Look up a named preset ('default', 'aggressive', 'lenient')."""
        if name == "default":
            return cls.default()
        if name == "aggressive":
            return cls.aggressive()
        if name == "lenient":
            return cls.lenient()
        raise ValueError(f"Unknown circuit breaker preset: {name!r}")

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> CircuitBreakerConfig:
        """Create config from a mapping; a ``preset`` key selects the base."""
        if not data:
            return cls()

        base = cls.preset(str(data["preset"])) if "preset" in data else cls()
        return cls(
            failure_threshold=int(data.get("failure_threshold", base.failure_threshold)),
            success_threshold=int(data.get("success_threshold", base.success_threshold)),
            cooldown_seconds=float(data.get("cooldown_seconds", base.cooldown_seconds)),
        )

    @classmethod
    def from_env(cls) -> CircuitBreakerConfig:
        """Create configuration from environment variables."""
        return cls(
            failure_threshold=int(
                os.getenv("RESILIENT_BREAKER_FAILURE_THRESHOLD", "5")
            ),
            success_threshold=int(
                os.getenv("RESILIENT_BREAKER_SUCCESS_THRESHOLD", "3")
            ),
            cooldown_seconds=float(
                os.getenv("RESILIENT_BREAKER_COOLDOWN_SECS", "60")
            ),
        )


class CircuitBreaker:
    """Per-operation circuit breaker.

    Counts call-level outcomes reported through ``record_success`` and
    ``record_failure``; it never runs the operation itself. All mutations and
    the lazy Open -> Half-Open check happen under one lock per breaker, and the
    lock is never held while awaiting.

    Example:
        >>> breaker = CircuitBreaker("menu.fetch", CircuitBreakerConfig.aggressive())
        >>> if breaker.allow_request():
        ...     try:
        ...         menu = await fetch_menu()
        ...         breaker.record_success()
        ...     except Exception:
        ...         breaker.record_failure()
        ...         raise
    """

    def __init__(
        self,
        name: str,
        config: CircuitBreakerConfig | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        """Initialize circuit breaker.

        Args:
            name: Operation name this breaker guards
            config: Circuit breaker configuration
            clock: Wall-clock source in epoch seconds (default time.time)
        """
        self._name = name
        self._config = config if config is not None else CircuitBreakerConfig()
        self._clock = clock if clock is not None else time.time
        self._lock = threading.Lock()

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._last_failure_time: float | None = None
        self._next_attempt_time: float | None = None
        self._state_changes = 0

    @property
    def name(self) -> str:
        return self._name

    @property
    def config(self) -> CircuitBreakerConfig:
        return self._config

    @property
    def state(self) -> CircuitState:
        """Current state, after evaluating a pending Open -> Half-Open transition."""
        with self._lock:
            self._check_state_transition()
            return self._state

    @property
    def is_closed(self) -> bool:
        return self.state == CircuitState.CLOSED

    @property
    def is_open(self) -> bool:
        return self.state == CircuitState.OPEN

    @property
    def is_half_open(self) -> bool:
        return self.state == CircuitState.HALF_OPEN

    @property
    def failure_count(self) -> int:
        return self._failure_count

    @property
    def success_count(self) -> int:
        return self._success_count

    @property
    def last_failure_time(self) -> float | None:
        return self._last_failure_time

    @property
    def next_attempt_time(self) -> float | None:
        return self._next_attempt_time

    def allow_request(self) -> bool:
        """Check whether a call may go through right now."""
        return self.state != CircuitState.OPEN

    def _check_state_transition(self) -> None:
        if (
            self._state == CircuitState.OPEN
            and self._next_attempt_time is not None
            and self._clock() >= self._next_attempt_time
        ):
            self._transition_to(CircuitState.HALF_OPEN)

    def _transition_to(self, new_state: CircuitState) -> None:
        if new_state == self._state:
            return

        old_state = self._state
        self._state = new_state
        self._state_changes += 1

        if new_state == CircuitState.OPEN:
            self._success_count = 0
            self._next_attempt_time = self._clock() + self._config.cooldown_seconds
            logger.warning(
                "Circuit opened",
                operation=self._name,
                previous=old_state.value,
                failures=self._failure_count,
                cooldown_s=self._config.cooldown_seconds,
            )
        elif new_state == CircuitState.HALF_OPEN:
            self._success_count = 0
            logger.info("Circuit half-open, probing", operation=self._name)
        else:
            self._failure_count = 0
            self._success_count = 0
            self._last_failure_time = None
            self._next_attempt_time = None
            logger.info("Circuit closed", operation=self._name)

    def record_success(self) -> CircuitState:
        """Record a successful call.

        Returns:
            State after recording
        """
        with self._lock:
            self._check_state_transition()

            if self._state == CircuitState.HALF_OPEN:
                self._success_count += 1
                if self._success_count >= self._config.success_threshold:
                    self._transition_to(CircuitState.CLOSED)
            elif self._state == CircuitState.CLOSED:
                self._success_count += 1
            # A success that lands while Open belongs to a call admitted
            # before the circuit tripped; it must not shorten the cooldown.

            return self._state

    def record_failure(self) -> CircuitState:
        """Record a failed call.

        Returns:
            State after recording
        """
        with self._lock:
            self._check_state_transition()

            self._failure_count += 1
            self._last_failure_time = self._clock()

            if self._state == CircuitState.HALF_OPEN:
                self._transition_to(CircuitState.OPEN)
            elif (
                self._state == CircuitState.CLOSED
                and self._failure_count >= self._config.failure_threshold
            ):
                self._transition_to(CircuitState.OPEN)

            return self._state

    def time_until_retry(self) -> float | None:
        """Seconds until a probe is allowed, or None if not open."""
        with self._lock:
            self._check_state_transition()
            if self._state != CircuitState.OPEN or self._next_attempt_time is None:
                return None
            return max(0.0, self._next_attempt_time - self._clock())

    def open_error(self) -> CircuitOpenError:
        """Build the rejection error for this breaker."""
        return CircuitOpenError(self._name, time_until_retry=self.time_until_retry())

    def reset(self) -> None:
        """Force the breaker back to closed with counters and timestamps cleared."""
        with self._lock:
            if self._state != CircuitState.CLOSED:
                self._state_changes += 1
                logger.info("Circuit reset", operation=self._name)
            self._state = CircuitState.CLOSED
            self._failure_count = 0
            self._success_count = 0
            self._last_failure_time = None
            self._next_attempt_time = None

    def snapshot(self) -> CircuitBreakerSnapshot:
        """Point-in-time copy of the breaker's state."""
        with self._lock:
            self._check_state_transition()
            return CircuitBreakerSnapshot(
                name=self._name,
                state=self._state.value,
                failure_count=self._failure_count,
                success_count=self._success_count,
                last_failure_time=self._last_failure_time,
                next_attempt_time=self._next_attempt_time,
                failure_threshold=self._config.failure_threshold,
                success_threshold=self._config.success_threshold,
                state_changes=self._state_changes,
            )

    def __repr__(self) -> str:
        return (
            f"CircuitBreaker(name={self._name!r}, state={self._state.value}, "
            f"failures={self._failure_count}/{self._config.failure_threshold})"
        )
