"""
Fallback chain for degrading gracefully when a dependency is unavailable.

The chain has at most two links, tried in order:
1. A fallback operation (another async unit of work)
2. A static fallback value
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from resilient_client.errors import ErrorKind, classify_error
from resilient_client.telemetry import get_logger

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = get_logger("resilient_client.fallback")


class _Missing(Enum):
    MISSING = "MISSING"

    def __repr__(self) -> str:
        return "MISSING"


MISSING = _Missing.MISSING
"""Marks an absent fallback value, so that ``None`` can be a real fallback."""


@dataclass
class FallbackResult:
    """Result of running the fallback chain.

    Attributes:
        success: Whether a fallback produced a value
        value: Fallback value (if success)
        source: 'operation' or 'value', whichever produced the result
        error: Error of the fallback operation (if it failed and no value applied)
        error_kind: Classification of that error
    """

    success: bool
    value: Any = None
    source: str | None = None
    error: Exception | None = None
    error_kind: ErrorKind | None = None


@dataclass(frozen=True)
class Fallback:
    """Fallback operation and/or static value for one call."""

    value: Any = MISSING
    operation: Callable[[], Awaitable[Any]] | None = None

    @property
    def has_value(self) -> bool:
        return self.value is not MISSING

    @property
    def is_empty(self) -> bool:
        return self.operation is None and not self.has_value

    async def resolve(self, operation_name: str | None = None) -> FallbackResult:
        """Run the chain.

        A failing fallback operation is replaced by the static value when one
        exists; otherwise its error is returned. Must not be called on an
        empty fallback.
        """
        if self.operation is not None:
            try:
                value = await self.operation()
            except Exception as e:
                kind = classify_error(e)
                logger.warning(
                    "Fallback operation failed",
                    operation=operation_name,
                    error_kind=kind.value,
                    error=str(e),
                    has_value=self.has_value,
                )
                if self.has_value:
                    return FallbackResult(success=True, value=self.value, source="value")
                return FallbackResult(success=False, error=e, error_kind=kind)
            return FallbackResult(success=True, value=value, source="operation")

        if self.has_value:
            return FallbackResult(success=True, value=self.value, source="value")

        raise ValueError("Fallback chain is empty")
