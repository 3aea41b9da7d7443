"""外卖平台客户端弹性执行引擎：熔断、重试与降级。

resilient-client: resilient execution engine for calls to remote backends.

Wraps asynchronous remote calls (HTTP requests, database queries, remote
procedures, serverless functions) in a per-operation circuit breaker, a
bounded retry policy and an optional fallback chain.
"""
from __future__ import annotations

from resilient_client.errors import (
    CircuitOpenError,
    ErrorKind,
    RemoteError,
    ResilienceError,
    classify_error,
)
from resilient_client.resilience import (
    MISSING,
    BreakerRegistry,
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
    ExecutionResult,
    ResilienceSettings,
    ResilientExecutor,
    RetryConfig,
    RetryPolicy,
)

__version__ = "0.1.0"

__all__ = [
    # Engine
    "BreakerRegistry",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    # Errors
    "CircuitOpenError",
    "CircuitState",
    "ErrorKind",
    "ExecutionResult",
    "MISSING",
    "RemoteError",
    "ResilienceError",
    "ResilienceSettings",
    "ResilientExecutor",
    "RetryConfig",
    "RetryPolicy",
    "classify_error",
    # Version
    "__version__",
]
