"""Base error classes for resilient-client.

Provides a layered error hierarchy:
- ResilienceError: Base class for all library errors
- RemoteError: Error raised by a wrapped operation with explicit classification
- CircuitOpenError: Circuit breaker rejected the call and no fallback was usable
- DataFormatError: Malformed data (never retried)
- InvalidStateError: Invalid internal or caller state (never retried)
- ConfigurationError: Settings could not be loaded or validated
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from resilient_client.errors.classification import ErrorKind


@dataclass
class ErrorContext:
    """Structured error context for diagnostics."""

    operation: str | None = None
    """Logical operation name the error belongs to (e.g. 'wallet.fetch_balance')"""

    details: dict[str, Any] = field(default_factory=dict)
    """Additional details about the error"""

    source: str | None = None
    """Error source (e.g. 'remote', 'breaker', 'config')"""

    hint: str | None = None
    """Actionable hint for resolving the error"""

    def __str__(self) -> str:
        parts = []
        if self.source:
            parts.append(f"[{self.source}]")
        if self.operation:
            parts.append(f"in '{self.operation}'")
        if self.hint:
            parts.append(f"(hint: {self.hint})")
        return " ".join(parts)


class ResilienceError(Exception):
    """Base class for all resilient-client errors.

    Attributes:
        message: Human-readable error message
        context: Structured error context
    """

    def __init__(
        self,
        message: str,
        context: ErrorContext | None = None,
    ) -> None:
        self.message = message
        self.context = context or ErrorContext()
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        ctx_str = str(self.context)
        if ctx_str:
            return f"{self.message} {ctx_str}"
        return self.message

    def with_hint(self, hint: str) -> ResilienceError:
        """Add a hint to this error."""
        self.context.hint = hint
        self.args = (self._format_message(),)
        return self


class RemoteError(ResilienceError):
    """Error raised by a wrapped remote operation.

    Lets an operation state explicitly how its failure should be treated,
    instead of relying on type or message inspection.

    Attributes:
        error_kind: Explicit classification, or None to classify by retryable flag
        retryable: Whether the operation considers this failure transient
        status_code: Optional HTTP/RPC status code
    """

    def __init__(
        self,
        message: str,
        *,
        error_kind: ErrorKind | None = None,
        retryable: bool | None = None,
        status_code: int | None = None,
        operation: str | None = None,
    ) -> None:
        ctx = ErrorContext(source="remote", operation=operation)
        if status_code is not None:
            ctx.details["status_code"] = status_code
        if error_kind is not None:
            ctx.details["error_kind"] = error_kind.value
        if retryable is not None:
            ctx.details["retryable"] = retryable
        super().__init__(message, ctx)
        self.error_kind = error_kind
        self.retryable = retryable
        self.status_code = status_code


class CircuitOpenError(ResilienceError):
    """Raised when the breaker for an operation is open and no fallback applies.

    Attributes:
        operation: Name of the operation whose breaker rejected the call
        time_until_retry: Seconds until the breaker lets a probe through
    """

    def __init__(
        self,
        operation: str,
        time_until_retry: float | None = None,
    ) -> None:
        ctx = ErrorContext(source="breaker", operation=operation)
        if time_until_retry is not None:
            ctx.details["time_until_retry"] = time_until_retry
        super().__init__("Circuit breaker is open", ctx)
        self.operation = operation
        self.time_until_retry = time_until_retry


class DataFormatError(ResilienceError):
    """Malformed data received from or sent to a remote dependency."""

    def __init__(
        self,
        message: str,
        context: ErrorContext | None = None,
        *,
        field: str | None = None,
    ) -> None:
        ctx = context or ErrorContext(source="format")
        if field:
            ctx.details["field"] = field
        super().__init__(message, ctx)
        self.field = field


class InvalidStateError(ResilienceError):
    """Operation attempted from an invalid internal or caller state."""

    def __init__(
        self,
        message: str,
        context: ErrorContext | None = None,
    ) -> None:
        super().__init__(message, context or ErrorContext(source="state"))


class ConfigurationError(ResilienceError):
    """Resilience settings could not be loaded or are invalid.

    Raised when:
    - The settings file does not exist or is not valid YAML
    - An unknown preset name is referenced
    - A config section has unknown or ill-typed keys
    """

    def __init__(
        self,
        message: str,
        context: ErrorContext | None = None,
        *,
        path: str | None = None,
    ) -> None:
        ctx = context or ErrorContext(source="config")
        if path:
            ctx.details["path"] = path
        super().__init__(message, ctx)
        self.path = path
