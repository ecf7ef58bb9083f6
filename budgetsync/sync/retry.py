"""
Retry policy for fetches.

Reads that fail with TransientFetchError are retried up to max_retries
times; attempt n waits n x retry_base_delay_seconds before the next try.
Anything else (auth, write failures) propagates on the first attempt.
"""

from typing import Callable

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_incrementing,
)

from budgetsync.config import SyncSettings
from budgetsync.errors import TransientFetchError


def linear_backoff(
    settings: SyncSettings,
    before_sleep: Callable[[RetryCallState], None],
) -> AsyncRetrying:
    """
    Build a fresh retrying controller for one load.

    A new controller per call means every load starts counting attempts
    from zero, however the previous one ended.
    """
    base = settings.retry_base_delay_seconds
    return AsyncRetrying(
        stop=stop_after_attempt(settings.max_retries + 1),
        wait=wait_incrementing(start=base, increment=base),
        retry=retry_if_exception_type(TransientFetchError),
        before_sleep=before_sleep,
        reraise=True,
    )


def describe_retry(retry_state: RetryCallState) -> tuple[int, float, str]:
    """(attempt number, upcoming delay, error message) for a failed attempt."""
    error = retry_state.outcome.exception() if retry_state.outcome else None
    delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
    message = getattr(error, "user_message", None) or str(error)
    return retry_state.attempt_number, delay, message
