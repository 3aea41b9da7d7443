"""
Retry policy with bounded exponential backoff.

Delays are deterministic (no jitter): the n-th failure is followed by
``base_delay * multiplier ** (n - 1)``, capped at ``max_delay``.
"""

from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, TypeVar

from resilient_client.errors import ErrorKind, classify_error, is_retryable_error
from resilient_client.telemetry import LogLevel, get_logger

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

T = TypeVar("T")

logger = get_logger("resilient_client.retry")


@dataclass(frozen=True)
class RetryConfig:
    """Configuration for retry policy.

    Attributes:
        max_attempts: Total invocations allowed, initial call included (>= 1)
        base_delay_ms: Delay after the first failure in milliseconds
        max_delay_ms: Upper bound for any single delay in milliseconds
        backoff_multiplier: Growth factor between consecutive delays (>= 1)
        retry_predicate: Optional replacement for the default error classifier
    """

    max_attempts: int = 3
    base_delay_ms: float = 500
    max_delay_ms: float = 10_000
    backoff_multiplier: float = 2.0
    retry_predicate: Callable[[BaseException], bool] | None = field(
        default=None, compare=False, repr=False
    )

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.base_delay_ms < 0:
            raise ValueError(f"base_delay_ms must be >= 0, got {self.base_delay_ms}")
        if self.max_delay_ms < self.base_delay_ms:
            raise ValueError("max_delay_ms must be >= base_delay_ms")
        if self.backoff_multiplier < 1:
            raise ValueError(
                f"backoff_multiplier must be >= 1, got {self.backoff_multiplier}"
            )

    @classmethod
    def default(cls) -> RetryConfig:
        """3 attempts, 500ms base, 10s cap, x2.0."""
        return cls()

    @classmethod
    def aggressive(cls) -> RetryConfig:
        """5 attempts, 200ms base, 5s cap, x1.5."""
        return cls(
            max_attempts=5,
            base_delay_ms=200,
            max_delay_ms=5_000,
            backoff_multiplier=1.5,
        )

    @classmethod
    def conservative(cls) -> RetryConfig:
        """2 attempts, 1s base, 30s cap, x3.0."""
        return cls(
            max_attempts=2,
            base_delay_ms=1_000,
            max_delay_ms=30_000,
            backoff_multiplier=3.0,
        )

    @classmethod
    def no_retry(cls) -> RetryConfig:
        """Create a config that invokes the operation exactly once."""
        return cls(max_attempts=1)

    @classmethod
    def preset(cls, name: str) -> RetryConfig:
        """Look up a named preset ('default', 'aggressive', 'conservative', 'no_retry')."""
        factory = _PRESETS.get(name)
        if factory is None:
            raise ValueError(f"Unknown retry preset: {name!r}")
        return factory()

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> RetryConfig:
        """Create config from a mapping, e.g. a section of a settings file.

        Missing keys take their default values; a ``preset`` key selects the
        starting point that the other keys override.
        """
        if not data:
            return cls()

        base = cls.preset(data["preset"]) if "preset" in data else cls()
        return cls(
            max_attempts=int(data.get("max_attempts", base.max_attempts)),
            base_delay_ms=float(data.get("base_delay_ms", base.base_delay_ms)),
            max_delay_ms=float(data.get("max_delay_ms", base.max_delay_ms)),
            backoff_multiplier=float(
                data.get("backoff_multiplier", base.backoff_multiplier)
            ),
        )

    @classmethod
    def from_env(cls) -> RetryConfig:
        """Create configuration from environment variables."""
        return cls(
            max_attempts=int(os.getenv("RESILIENT_RETRY_MAX_ATTEMPTS", "3")),
            base_delay_ms=float(os.getenv("RESILIENT_RETRY_BASE_DELAY_MS", "500")),
            max_delay_ms=float(os.getenv("RESILIENT_RETRY_MAX_DELAY_MS", "10000")),
            backoff_multiplier=float(
                os.getenv("RESILIENT_RETRY_BACKOFF_MULTIPLIER", "2.0")
            ),
        )


_PRESETS: dict[str, Callable[[], RetryConfig]] = {
    "default": RetryConfig.default,
    "aggressive": RetryConfig.aggressive,
    "conservative": RetryConfig.conservative,
    "no_retry": RetryConfig.no_retry,
}


@dataclass
class RetryResult:
    """Result of a retry operation.

    Attributes:
        success: Whether the operation succeeded
        value: The result value (if success)
        error: The last error (if failed)
        error_kind: Classification of the last error (if failed)
        attempts: Number of invocations made
        total_delay_ms: Total time spent sleeping between attempts
    """

    success: bool
    value: Any = None
    error: Exception | None = None
    error_kind: ErrorKind | None = None
    attempts: int = 0
    total_delay_ms: float = 0.0

    def unwrap(self) -> Any:
        """Return the value, or raise the last error."""
        if self.success:
            return self.value
        raise self.error  # type: ignore[misc]


class RetryPolicy:
    """Bounded retry loop with exponential backoff.

    Example:
        >>> policy = RetryPolicy(RetryConfig(max_attempts=3))
        >>> result = await policy.execute(fetch_menu)
        >>> if not result.success:
        ...     print(f"Gave up after {result.attempts} attempts")
    """

    def __init__(
        self,
        config: RetryConfig | None = None,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
    ) -> None:
        """Initialize retry policy.

        Args:
            config: Retry configuration
            sleep: Awaitable used to wait between attempts (default asyncio.sleep)
        """
        self._config = config if config is not None else RetryConfig()
        self._sleep = sleep if sleep is not None else asyncio.sleep

    @property
    def config(self) -> RetryConfig:
        return self._config

    def calculate_delay(self, attempt: int) -> float:
        """Calculate the delay that follows a failed attempt.

        Args:
            attempt: Number of the attempt that just failed (1-based)

        Returns:
            Delay in seconds
        """
        if attempt < 1:
            raise ValueError(f"attempt is 1-based, got {attempt}")

        if self._config.base_delay_ms == 0:
            return 0.0

        try:
            delay_ms = self._config.base_delay_ms * (
                self._config.backoff_multiplier ** (attempt - 1)
            )
        except OverflowError:
            delay_ms = self._config.max_delay_ms
        return min(delay_ms, self._config.max_delay_ms) / 1000.0

    def should_retry(self, error: BaseException) -> bool:
        """Check if an error is worth another attempt, ignoring the budget."""
        if self._config.retry_predicate is not None:
            return self._config.retry_predicate(error)
        return is_retryable_error(error)

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        on_retry: Callable[[int, Exception, float], None] | None = None,
        operation_name: str | None = None,
    ) -> RetryResult:
        """Execute an operation with retry.

        Args:
            operation: Async operation to execute
            on_retry: Optional callback (attempt, error, delay) before each wait
            operation_name: Name used in log records

        Returns:
            RetryResult with success status and value/error
        """
        total_delay = 0.0
        attempt = 0

        while True:
            try:
                value = await operation()
            except Exception as e:
                attempt += 1

                if attempt >= self._config.max_attempts or not self.should_retry(e):
                    kind = classify_error(e)
                    if logger.is_enabled_for(LogLevel.DEBUG):
                        logger.debug(
                            "Giving up",
                            operation=operation_name,
                            attempts=attempt,
                            error_kind=kind.value,
                            error=str(e),
                        )
                    return RetryResult(
                        success=False,
                        error=e,
                        error_kind=kind,
                        attempts=attempt,
                        total_delay_ms=total_delay * 1000,
                    )

                delay = self.calculate_delay(attempt)
                total_delay += delay

                if on_retry:
                    on_retry(attempt, e, delay)

                logger.debug(
                    "Retrying after failure",
                    operation=operation_name,
                    attempt=attempt,
                    delay_s=delay,
                    error=str(e),
                )
                await self._sleep(delay)
            else:
                return RetryResult(
                    success=True,
                    value=value,
                    attempts=attempt + 1,
                    total_delay_ms=total_delay * 1000,
                )


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    config: RetryConfig | None = None,
    on_retry: Callable[[int, Exception, float], None] | None = None,
) -> T:
    """Execute an operation with retry, raising on failure.

    Raises:
        The last exception if all attempts fail
    """
    result = await RetryPolicy(config).execute(operation, on_retry)
    return result.unwrap()
