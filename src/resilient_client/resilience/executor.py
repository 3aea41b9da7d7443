"""弹性执行器：统一的熔断、重试与降级控制。

Resilient executor combining circuit breaking, retry and fallback.

For every call:
1. Look up the operation's breaker in the registry (created on first use)
2. If the breaker is open, skip the operation and go to the fallback chain
3. Otherwise run the operation through the retry policy
4. Record one success or one failure against the breaker
5. On failure, use the fallback chain only if the breaker is now open
"""

from __future__ import annotations

import functools
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, TypeVar

from resilient_client.errors import ErrorKind, classify_error
from resilient_client.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
)
from resilient_client.resilience.fallback import MISSING, Fallback
from resilient_client.resilience.registry import BreakerRegistry
from resilient_client.resilience.retry import RetryConfig, RetryPolicy
from resilient_client.resilience.settings import ResilienceSettings
from resilient_client.telemetry import get_logger

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from resilient_client.resilience.signals import (
        CircuitBreakerSnapshot,
        SignalsSnapshot,
    )

T = TypeVar("T")

logger = get_logger("resilient_client.executor")


@dataclass
class ExecutionResult:
    """Outcome of one resilient execution.

    Attributes:
        operation: Operation name
        success: Whether a value was produced (by the operation or a fallback)
        value: The result value (if success)
        error: Error to surface to the caller (if failed)
        error_kind: Classification of ``error``
        attempts: Invocations of the primary operation (0 when rejected)
        fallback_used: Whether the value came from the fallback chain
        fallback_reason: What sent the call to the fallback chain
        circuit_state: Breaker state once the call was accounted for
    """

    operation: str
    success: bool
    value: Any = None
    error: Exception | None = None
    error_kind: ErrorKind | None = None
    attempts: int = 0
    fallback_used: bool = False
    fallback_reason: ErrorKind | None = None
    circuit_state: CircuitState = CircuitState.CLOSED

    @property
    def rejected(self) -> bool:
        """True if the breaker was open and the operation never ran."""
        return self.attempts == 0

    def unwrap(self) -> Any:
        """Return the value, or raise the error."""
        if self.success:
            return self.value
        raise self.error  # type: ignore[misc]


class ResilientExecutor:
    """Executes async operations behind a per-operation breaker, with retry and fallback.

    Example:
        >>> executor = ResilientExecutor()
        >>> balance = await executor.execute(
        ...     "wallet.fetch_balance",
        ...     lambda: wallet_api.fetch_balance(user_id),
        ...     fallback_value=cached_balance,
        ... )
    """

    def __init__(
        self,
        registry: BreakerRegistry | None = None,
        settings: ResilienceSettings | None = None,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
    ) -> None:
        """Initialize resilient executor.

        Args:
            registry: Breaker registry shared by every call (a private one if omitted)
            settings: Default and per-operation configs
            sleep: Awaitable used for backoff waits (default asyncio.sleep)
        """
        self._registry = registry if registry is not None else BreakerRegistry()
        self._settings = settings if settings is not None else ResilienceSettings()
        self._sleep = sleep

    @property
    def registry(self) -> BreakerRegistry:
        return self._registry

    @property
    def settings(self) -> ResilienceSettings:
        return self._settings

    def breaker_for(
        self,
        operation_name: str,
        breaker_config: CircuitBreakerConfig | None = None,
    ) -> CircuitBreaker:
        """Resolve the breaker guarding ``operation_name``."""
        return self._registry.get_or_create(
            operation_name,
            breaker_config
            if breaker_config is not None
            else self._settings.breaker_for(operation_name),
        )

    async def execute_result(
        self,
        operation_name: str,
        operation: Callable[[], Awaitable[T]],
        retry: RetryConfig | None = None,
        breaker_config: CircuitBreakerConfig | None = None,
        fallback_value: Any = MISSING,
        fallback_operation: Callable[[], Awaitable[T]] | None = None,
        on_retry: Callable[[int, Exception, float], None] | None = None,
    ) -> ExecutionResult:
        """Execute an operation and report the outcome without raising.

        Args:
            operation_name: Name shared by every call site of this dependency
            operation: Zero-argument async unit of work
            retry: Retry config override
            breaker_config: Config used if this call creates the breaker
            fallback_value: Static value used when the breaker is open
            fallback_operation: Async substitute used when the breaker is open
            on_retry: Optional callback (attempt, error, delay) before each wait

        Returns:
            ExecutionResult with value or classified error
        """
        breaker = self.breaker_for(operation_name, breaker_config)
        fallback = Fallback(value=fallback_value, operation=fallback_operation)

        if breaker.state == CircuitState.OPEN:
            logger.info(
                "Call rejected by open circuit",
                operation=operation_name,
                has_fallback=not fallback.is_empty,
            )
            return await self._fallback_or_reject(
                operation_name, breaker, fallback, attempts=0, cause=None
            )

        if retry is None:
            retry = self._settings.retry_for(operation_name)
        policy = RetryPolicy(retry, sleep=self._sleep)
        outcome = await policy.execute(operation, on_retry, operation_name=operation_name)

        if outcome.success:
            state = breaker.record_success()
            return ExecutionResult(
                operation=operation_name,
                success=True,
                value=outcome.value,
                attempts=outcome.attempts,
                circuit_state=state,
            )

        state = breaker.record_failure()
        logger.warning(
            "Operation failed",
            operation=operation_name,
            attempts=outcome.attempts,
            error_kind=outcome.error_kind.value if outcome.error_kind else None,
            circuit_state=state.value,
        )

        if state == CircuitState.OPEN:
            return await self._fallback_or_reject(
                operation_name,
                breaker,
                fallback,
                attempts=outcome.attempts,
                cause=outcome.error,
            )

        return ExecutionResult(
            operation=operation_name,
            success=False,
            error=outcome.error,
            error_kind=outcome.error_kind,
            attempts=outcome.attempts,
            circuit_state=state,
        )

    async def execute(
        self,
        operation_name: str,
        operation: Callable[[], Awaitable[T]],
        retry: RetryConfig | None = None,
        breaker_config: CircuitBreakerConfig | None = None,
        fallback_value: Any = MISSING,
        fallback_operation: Callable[[], Awaitable[T]] | None = None,
        on_retry: Callable[[int, Exception, float], None] | None = None,
    ) -> T:
        """Execute an operation with breaker, retry and fallback, raising on failure.

        Raises:
            CircuitOpenError: If the breaker is open and no fallback was supplied
            Exception: The operation's error while the breaker stays below threshold,
                or the fallback operation's error when no fallback value exists
        """
        result = await self.execute_result(
            operation_name,
            operation,
            retry=retry,
            breaker_config=breaker_config,
            fallback_value=fallback_value,
            fallback_operation=fallback_operation,
            on_retry=on_retry,
        )
        return result.unwrap()

    async def _fallback_or_reject(
        self,
        operation_name: str,
        breaker: CircuitBreaker,
        fallback: Fallback,
        attempts: int,
        cause: Exception | None,
    ) -> ExecutionResult:
        state = breaker.state
        reason = classify_error(cause) if cause is not None else ErrorKind.CIRCUIT_OPEN

        if fallback.is_empty:
            error = breaker.open_error()
            if cause is not None:
                error.__cause__ = cause
            return ExecutionResult(
                operation=operation_name,
                success=False,
                error=error,
                error_kind=ErrorKind.CIRCUIT_OPEN,
                attempts=attempts,
                circuit_state=state,
            )

        resolved = await fallback.resolve(operation_name)
        if resolved.success:
            logger.info(
                "Fallback used",
                operation=operation_name,
                source=resolved.source,
                reason=reason.value,
            )
            return ExecutionResult(
                operation=operation_name,
                success=True,
                value=resolved.value,
                attempts=attempts,
                fallback_used=True,
                fallback_reason=reason,
                circuit_state=state,
            )

        return ExecutionResult(
            operation=operation_name,
            success=False,
            error=resolved.error,
            error_kind=resolved.error_kind,
            attempts=attempts,
            fallback_used=True,
            fallback_reason=reason,
            circuit_state=state,
        )

    def resilient(
        self,
        operation_name: str,
        retry: RetryConfig | None = None,
        breaker_config: CircuitBreakerConfig | None = None,
        fallback_value: Any = MISSING,
        fallback_operation: Callable[[], Awaitable[Any]] | None = None,
    ) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
        """Decorator that routes every call of an async function through ``execute``.

        Example:
            >>> @executor.resilient("menu.fetch", fallback_value=[])
            ... async def fetch_menu(vendor_id: str) -> list[dict]:
            ...     ...
        """

        def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
            @functools.wraps(func)
            async def wrapper(*args: Any, **kwargs: Any) -> T:
                return await self.execute(
                    operation_name,
                    lambda: func(*args, **kwargs),
                    retry=retry,
                    breaker_config=breaker_config,
                    fallback_value=fallback_value,
                    fallback_operation=fallback_operation,
                )

            return wrapper

        return decorator

    def stats_snapshot(self) -> dict[str, CircuitBreakerSnapshot]:
        """Snapshot of every breaker this executor has used."""
        return self._registry.stats_snapshot()

    def signals(self) -> SignalsSnapshot:
        """Aggregated health view over all breakers."""
        return self._registry.signals()

    def reset_one(self, operation_name: str) -> bool:
        """Force one operation's breaker back to closed."""
        return self._registry.reset_one(operation_name)

    def reset_all(self) -> None:
        """Force every breaker back to closed."""
        self._registry.reset_all()
