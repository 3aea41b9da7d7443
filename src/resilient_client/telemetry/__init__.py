"""
Telemetry for resilient-client: structured, masked logging.
"""

from resilient_client.telemetry.logger import (
    JsonFormatter,
    LogContext,
    LogLevel,
    ResilienceLogger,
    SensitiveDataMasker,
    TextFormatter,
    clear_log_context,
    get_log_context,
    get_logger,
    set_log_context,
)

__all__ = [
    "JsonFormatter",
    "LogContext",
    "LogLevel",
    "ResilienceLogger",
    "SensitiveDataMasker",
    "TextFormatter",
    "clear_log_context",
    "get_log_context",
    "get_logger",
    "set_log_context",
]
