from __future__ import annotations

import math
import socket

import httpx

from rescheduler.domain import TransientNetworkError

# Message fragments that indicate a dropped socket even when the exception
# type is not a transport error.
_TRANSIENT_MESSAGE_MARKERS = ("socket hang up", "network", "connection")

_TRANSIENT_TYPES = (
    TransientNetworkError,
    httpx.TransportError,
    ConnectionError,
    TimeoutError,
    socket.gaierror,  # DNS failure
)


def failure_backoff_delay(
    consecutive_failures: int,
    base_delay: float,
    multiplier: float,
    max_delay: float,
) -> float:
    """Exponential delay in seconds: ``base_delay * multiplier ** failures``, capped at ``max_delay``."""
    try:
        delay = base_delay * multiplier**consecutive_failures
    except OverflowError:
        return max_delay

    if isinstance(delay, float) and not math.isfinite(delay):
        return max_delay

    return min(round(delay), max_delay)


def is_transient_error(exc: BaseException) -> bool:
    if isinstance(exc, _TRANSIENT_TYPES):
        return True
    message = str(exc).lower()
    return any(marker in message for marker in _TRANSIENT_MESSAGE_MARKERS)
