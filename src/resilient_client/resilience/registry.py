"""
Registry of named circuit breakers.

Breaker state is scoped per logical operation, not per call: every call site
that passes the same operation name shares one breaker.
"""

from __future__ import annotations

import threading
import time
from typing import TYPE_CHECKING

from resilient_client.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
)
from resilient_client.resilience.signals import CircuitBreakerSnapshot, SignalsSnapshot
from resilient_client.telemetry import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

logger = get_logger("resilient_client.registry")


class BreakerRegistry:
    """Owns the circuit breaker for every operation name.

    Breakers are created lazily on first reference and live as long as the
    registry. The configuration passed by the first caller for a name wins;
    later, differing configurations are ignored.

    Example:
        >>> registry = BreakerRegistry()
        >>> breaker = registry.get_or_create("orders.place")
        >>> registry.stats_snapshot()["orders.place"].state
        'closed'
    """

    def __init__(self, clock: Callable[[], float] | None = None) -> None:
        """Initialize registry.

        Args:
            clock: Wall-clock source handed to every breaker (default time.time)
        """
        self._breakers: dict[str, CircuitBreaker] = {}
        self._lock = threading.Lock()
        self._clock = clock if clock is not None else time.time

    def get_or_create(
        self,
        name: str,
        config: CircuitBreakerConfig | None = None,
    ) -> CircuitBreaker:
        """Return the breaker for ``name``, creating it with ``config`` if absent."""
        with self._lock:
            breaker = self._breakers.get(name)
            if breaker is None:
                breaker = CircuitBreaker(name, config, clock=self._clock)
                self._breakers[name] = breaker
                logger.debug(
                    "Circuit breaker created",
                    operation=name,
                    failure_threshold=breaker.config.failure_threshold,
                    cooldown_s=breaker.config.cooldown_seconds,
                )
            return breaker

    def get(self, name: str) -> CircuitBreaker | None:
        """Get a breaker by name, or None if it was never referenced."""
        with self._lock:
            return self._breakers.get(name)

    def names(self) -> list[str]:
        """List registered operation names."""
        with self._lock:
            return list(self._breakers)

    def stats_snapshot(self) -> dict[str, CircuitBreakerSnapshot]:
        """Snapshot of every breaker, keyed by operation name."""
        with self._lock:
            breakers = list(self._breakers.values())
        return {breaker.name: breaker.snapshot() for breaker in breakers}

    def signals(self) -> SignalsSnapshot:
        """Aggregated health view over all breakers."""
        return SignalsSnapshot(breakers=self.stats_snapshot(), timestamp=self._clock())

    def reset_one(self, name: str) -> bool:
        """Reset one breaker to closed.

        Returns:
            True if the breaker exists, False otherwise
        """
        breaker = self.get(name)
        if breaker is None:
            return False
        breaker.reset()
        return True

    def reset_all(self) -> None:
        """Reset every breaker to closed."""
        with self._lock:
            breakers = list(self._breakers.values())
        for breaker in breakers:
            breaker.reset()
        logger.info("All circuit breakers reset", count=len(breakers))

    def clear(self) -> None:
        """Forget every breaker; the next reference creates a fresh one."""
        with self._lock:
            self._breakers.clear()

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._breakers

    def __len__(self) -> int:
        with self._lock:
            return len(self._breakers)

    def __iter__(self) -> Iterator[str]:
        return iter(self.names())


_default_registry: BreakerRegistry | None = None
_default_lock = threading.Lock()


def default_registry() -> BreakerRegistry:
    """Process-wide registry for applications that want a single shared one."""
    global _default_registry
    with _default_lock:
        if _default_registry is None:
            _default_registry = BreakerRegistry()
        return _default_registry
