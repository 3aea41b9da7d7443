"""
Resilience layer - circuit breaker, retry and fallback for remote calls.

This module provides:
- RetryPolicy: Bounded retry with deterministic exponential backoff
- CircuitBreaker: Closed/Open/Half-Open state machine with lazy cooldown
- BreakerRegistry: One breaker per operation name, created on first use
- Fallback: Fallback operation and/or static value
- ResilientExecutor: Orchestrates breaker gating, retry and fallback
- ResilienceSettings: Default and per-operation configuration
- SignalsSnapshot: Aggregated breaker state for dashboards
"""

from resilient_client.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitOpenError,
    CircuitState,
)
from resilient_client.resilience.executor import ExecutionResult, ResilientExecutor
from resilient_client.resilience.fallback import MISSING, Fallback, FallbackResult
from resilient_client.resilience.registry import BreakerRegistry, default_registry
from resilient_client.resilience.retry import (
    RetryConfig,
    RetryPolicy,
    RetryResult,
    with_retry,
)
from resilient_client.resilience.settings import OperationPolicy, ResilienceSettings
from resilient_client.resilience.signals import CircuitBreakerSnapshot, SignalsSnapshot

__all__ = [
    # Registry
    "BreakerRegistry",
    # Circuit breaker
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerSnapshot",
    "CircuitOpenError",
    "CircuitState",
    # Executor
    "ExecutionResult",
    # Fallback
    "Fallback",
    "FallbackResult",
    "MISSING",
    # Settings
    "OperationPolicy",
    "ResilienceSettings",
    "ResilientExecutor",
    # Retry
    "RetryConfig",
    "RetryPolicy",
    "RetryResult",
    "SignalsSnapshot",
    "default_registry",
    "with_retry",
]
