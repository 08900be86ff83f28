"""Retry helpers for mailbox polling."""

from __future__ import annotations

import logging
import socket
import time
from typing import Callable, Optional, TypeVar

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from services.mailbox_client import MailboxNetworkError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_NETWORK_MESSAGE_HINTS = (
    "timed out",
    "timeout",
    "connection refused",
    "getaddrinfo",
    "name or service not known",
    "temporary failure in name resolution",
    "enotfound",
    "econnrefused",
    "etimedout",
)


def is_network_error(exc: BaseException) -> bool:
    """Return ``True`` for DNS, timeout and connection-refused failures."""

    if isinstance(exc, MailboxNetworkError):
        return True
    if isinstance(exc, (socket.gaierror, TimeoutError, ConnectionRefusedError)):
        return True
    message = str(exc).lower()
    return any(hint in message for hint in _NETWORK_MESSAGE_HINTS)


def _log_before_sleep(retry_state: RetryCallState) -> None:
    outcome = retry_state.outcome
    error = outcome.exception() if outcome is not None else None
    delay = retry_state.next_action.sleep if retry_state.next_action else 0
    logger.warning(
        "Network error on attempt %s: %s; retrying in %.0fs",
        retry_state.attempt_number,
        error,
        delay,
    )


def retry_with_backoff(
    func: Callable[[], T],
    *,
    attempts: int = 3,
    initial_delay: float = 5.0,
    is_retryable: Callable[[BaseException], bool] = is_network_error,
    sleep: Optional[Callable[[float], None]] = None,
) -> T:
    """Call ``func`` retrying retryable failures with doubling delays.

    The first retry waits ``initial_delay`` seconds and each following retry
    doubles it.  Errors rejected by ``is_retryable`` propagate immediately and
    the last retryable error is re-raised once ``attempts`` is exhausted.
    """

    retryer = Retrying(
        stop=stop_after_attempt(max(1, attempts)),
        wait=wait_exponential(multiplier=initial_delay, min=initial_delay),
        retry=retry_if_exception(is_retryable),
        sleep=sleep or time.sleep,
        before_sleep=_log_before_sleep,
        reraise=True,
    )
    return retryer(func)


__all__ = ["is_network_error", "retry_with_backoff"]
