"""
Resilience signals and snapshots.

Point-in-time views of breaker state for dashboards and health checks.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class CircuitBreakerSnapshot:
    """Snapshot of one circuit breaker.

    Attributes:
        name: Operation name the breaker guards
        state: Current state (closed, open, half_open)
        failure_count: Recorded failures since the breaker last closed
        success_count: Recorded successes (probe count while half-open)
        last_failure_time: Epoch seconds of the last recorded failure
        next_attempt_time: Epoch seconds when an open breaker admits a probe
        failure_threshold: Failures that trip the breaker
        success_threshold: Probe successes that close it
        state_changes: Number of transitions since creation
    """

    name: str
    state: str
    failure_count: int
    success_count: int = 0
    last_failure_time: float | None = None
    next_attempt_time: float | None = None
    failure_threshold: int = 0
    success_threshold: int = 0
    state_changes: int = 0

    @property
    def is_open(self) -> bool:
        return self.state == "open"

    @property
    def is_closed(self) -> bool:
        return self.state == "closed"

    @property
    def is_half_open(self) -> bool:
        return self.state == "half_open"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "name": self.name,
            "state": self.state,
            "failure_count": self.failure_count,
            "success_count": self.success_count,
            "last_failure_time": self.last_failure_time,
            "next_attempt_time": self.next_attempt_time,
            "failure_threshold": self.failure_threshold,
            "success_threshold": self.success_threshold,
            "state_changes": self.state_changes,
        }


@dataclass
class SignalsSnapshot:
    """Aggregated view over every breaker in a registry.

    Attributes:
        breakers: Snapshot per operation name
        timestamp: Snapshot timestamp
    """

    breakers: dict[str, CircuitBreakerSnapshot] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    @property
    def open_operations(self) -> list[str]:
        """Names of operations currently failing fast."""
        return sorted(name for name, snap in self.breakers.items() if snap.is_open)

    @property
    def is_healthy(self) -> bool:
        """True when no breaker is open."""
        return not self.open_operations

    @property
    def health_score(self) -> float:
        """Average health across breakers (closed 1.0, half-open 0.5, open 0.0)."""
        if not self.breakers:
            return 1.0

        scores: list[float] = []
        for snap in self.breakers.values():
            if snap.is_closed:
                scores.append(1.0)
            elif snap.is_half_open:
                scores.append(0.5)
            else:
                scores.append(0.0)
        return sum(scores) / len(scores)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "breakers": {name: snap.to_dict() for name, snap in self.breakers.items()},
            "timestamp": self.timestamp,
            "open_operations": self.open_operations,
            "is_healthy": self.is_healthy,
            "health_score": self.health_score,
        }
