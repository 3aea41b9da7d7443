"""错误体系：为弹性执行引擎提供结构化错误类型与统一分类。

Error hierarchy for resilient-client.

Provides structured error types and the single classifier that maps raw
exceptions onto ErrorKind.
"""

from resilient_client.errors.base import (
    CircuitOpenError,
    ConfigurationError,
    DataFormatError,
    ErrorContext,
    InvalidStateError,
    RemoteError,
    ResilienceError,
)
from resilient_client.errors.classification import (
    ErrorKind,
    classify_error,
    classify_http_status,
    classify_message,
    is_retryable,
    is_retryable_error,
)

__all__ = [
    # Base errors
    "CircuitOpenError",
    "ConfigurationError",
    "DataFormatError",
    "ErrorContext",
    # Classification
    "ErrorKind",
    "InvalidStateError",
    "RemoteError",
    "ResilienceError",
    "classify_error",
    "classify_http_status",
    "classify_message",
    "is_retryable",
    "is_retryable_error",
]
