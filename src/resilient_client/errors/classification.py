"""
Error classification for the resilient execution engine.

Raw exceptions raised by wrapped operations are mapped exactly once, at the
boundary where they enter the engine, onto a closed set of error kinds. The
retry loop and the executor only ever look at the resulting kind.
"""

from __future__ import annotations

import asyncio
import json
from enum import Enum

import httpx
import pydantic

from resilient_client.errors.base import (
    CircuitOpenError,
    DataFormatError,
    InvalidStateError,
)


class ErrorKind(str, Enum):
    """Closed classification of failures seen by the engine."""

    TIMEOUT = "timeout"
    """Operation or transport timed out."""

    NETWORK = "network"
    """Connectivity or transport failure, including 5xx and throttling."""

    FORMAT = "format"
    """Malformed data; retrying cannot help."""

    STATE = "state"
    """Invalid internal or caller state; retrying cannot help."""

    CIRCUIT_OPEN = "circuit_open"
    """Call rejected because the breaker is open."""

    UNKNOWN = "unknown"
    """Unrecognized failure; treated as transient."""

    @property
    def retryable(self) -> bool:
        return self in _RETRYABLE_KINDS


_RETRYABLE_KINDS: frozenset[ErrorKind] = frozenset(
    {
        ErrorKind.TIMEOUT,
        ErrorKind.NETWORK,
        ErrorKind.UNKNOWN,
    }
)

_TERMINAL_KINDS: frozenset[ErrorKind] = frozenset(
    {
        ErrorKind.FORMAT,
        ErrorKind.STATE,
        ErrorKind.CIRCUIT_OPEN,
    }
)

_DEFAULT_STATUS_MAPPING: dict[int, ErrorKind] = {
    400: ErrorKind.FORMAT,
    408: ErrorKind.TIMEOUT,
    422: ErrorKind.FORMAT,
    429: ErrorKind.NETWORK,
    504: ErrorKind.TIMEOUT,
}

# Substrings that mark an opaque error message as transient
_TIMEOUT_HINTS = ("timeout", "timed out")
_NETWORK_HINTS = ("network", "connection", "temporary")

_TIMEOUT_ERRORS: tuple[type[BaseException], ...] = (
    httpx.TimeoutException,
    TimeoutError,
    asyncio.TimeoutError,
)
_NETWORK_ERRORS: tuple[type[BaseException], ...] = (
    httpx.TransportError,
    ConnectionError,
)
_STATE_ERRORS: tuple[type[BaseException], ...] = (
    InvalidStateError,
    asyncio.InvalidStateError,
)
_FORMAT_ERRORS: tuple[type[BaseException], ...] = (
    DataFormatError,
    httpx.DecodingError,
    pydantic.ValidationError,
    json.JSONDecodeError,
    ValueError,
)


def classify_http_status(status_code: int) -> ErrorKind:
    """Classify an HTTP status code.

    Args:
        status_code: HTTP status code of a failed response

    Returns:
        ErrorKind for the status
    """
    if status_code in _DEFAULT_STATUS_MAPPING:
        return _DEFAULT_STATUS_MAPPING[status_code]
    if 500 <= status_code < 600:
        return ErrorKind.NETWORK
    if 400 <= status_code < 500:
        return ErrorKind.STATE
    return ErrorKind.UNKNOWN


def classify_message(message: str) -> ErrorKind:
    """Classify an opaque error message by its wording.

    Deliberately permissive: anything mentioning a timeout, the network,
    a connection or a temporary condition is considered transient.
    """
    lowered = message.lower()
    if any(hint in lowered for hint in _TIMEOUT_HINTS):
        return ErrorKind.TIMEOUT
    if any(hint in lowered for hint in _NETWORK_HINTS):
        return ErrorKind.NETWORK
    return ErrorKind.UNKNOWN


def classify_error(error: BaseException) -> ErrorKind:
    """Classify a raw exception into an ErrorKind.

    Args:
        error: Exception raised by a wrapped operation

    Returns:
        ErrorKind representing the failure
    """
    if isinstance(error, CircuitOpenError):
        return ErrorKind.CIRCUIT_OPEN

    explicit = getattr(error, "error_kind", None)
    if isinstance(explicit, ErrorKind):
        return explicit

    # Timeouts first: httpx timeouts are transport errors too
    if isinstance(error, _TIMEOUT_ERRORS):
        return ErrorKind.TIMEOUT

    if isinstance(error, httpx.HTTPStatusError):
        return classify_http_status(error.response.status_code)

    status_code = getattr(error, "status_code", None)
    if isinstance(status_code, int):
        return classify_http_status(status_code)

    if isinstance(error, _NETWORK_ERRORS):
        return ErrorKind.NETWORK

    if isinstance(error, _STATE_ERRORS):
        return ErrorKind.STATE

    if isinstance(error, _FORMAT_ERRORS):
        return ErrorKind.FORMAT

    return classify_message(str(error))


def is_retryable(error_kind: ErrorKind) -> bool:
    """Check if an error kind is retryable by default."""
    return error_kind.retryable


def is_retryable_error(error: BaseException) -> bool:
    """Decide whether a raw exception is worth another attempt.

    Format, state and open-circuit failures are never retried. For every
    other kind an explicit ``retryable`` flag set by the operation wins.
    """
    kind = classify_error(error)
    if kind in _TERMINAL_KINDS:
        return False

    flag = getattr(error, "retryable", None)
    if isinstance(flag, bool):
        return flag
    return kind.retryable
