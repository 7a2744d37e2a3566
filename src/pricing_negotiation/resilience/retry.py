"""Tenacity retry policies used by the engine.

* ``retry_on_lock_contention`` reruns a whole transaction that could not get
  the database write lock.  Nothing else is retried.
* ``resilient_api_call`` wraps outbound notification calls; once the attempts
  are used up the failure is logged and the call returns ``None``.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, TypeVar

import structlog
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from pricing_negotiation.domain.errors import LockContentionError

logger = structlog.get_logger()

F = TypeVar("F", bound=Callable[..., Any])


def _call_name(retry_state: RetryCallState) -> str:
    fn = retry_state.fn
    if fn is None:
        return "unknown"
    return getattr(fn, "_retry_name", None) or getattr(fn, "__name__", "unknown")


def _log_retry(retry_state: RetryCallState) -> None:
    """``before_sleep`` hook: one warning per retried attempt."""
    logger.warning(
        "retrying_call",
        name=_call_name(retry_state),
        attempt=retry_state.attempt_number,
        wait=retry_state.next_action.sleep if retry_state.next_action else 0,
    )


def log_final_failure(retry_state: RetryCallState) -> None:
    """``retry_error_callback`` that logs the last exception instead of raising it."""
    outcome = retry_state.outcome
    logger.error(
        "api_call_failed_after_retries",
        api_name=_call_name(retry_state),
        attempts=retry_state.attempt_number,
        exception=str(outcome.exception()) if outcome else None,
    )


def resilient_api_call(api_name: str, attempts: int = 3) -> Callable[[F], F]:
    """Retry an outbound call, then give up quietly.

    Waits grow exponentially from 1s up to 30s with up to 5s of jitter.

    Args:
        api_name: Name used for the call in log events.
        attempts: Total attempts before giving up.
    """

    def decorator(func: F) -> F:
        func._retry_name = api_name  # type: ignore[attr-defined]
        return retry(  # type: ignore[return-value]
            stop=stop_after_attempt(attempts),
            wait=wait_exponential(multiplier=1, max=30) + wait_random(0, 5),
            before_sleep=_log_retry,
            retry_error_callback=log_final_failure,
        )(func)

    return decorator


def retry_on_lock_contention(attempts: int = 5) -> Callable[[F], F]:
    """Retry a transaction that raised :class:`LockContentionError`.

    Domain and storage errors propagate on the first attempt.  When every
    attempt hits the lock, the last ``LockContentionError`` is raised.

    Args:
        attempts: Total attempts, the first one included.
    """

    def decorator(func: F) -> F:
        return retry(  # type: ignore[return-value]
            retry=retry_if_exception_type(LockContentionError),
            stop=stop_after_attempt(attempts),
            wait=wait_exponential(multiplier=0.05, max=2) + wait_random(0, 0.1),
            before_sleep=_log_retry,
            reraise=True,
        )(func)

    return decorator
