"""
Retry utilities with tenacity.

Retries Graph API operations according to the classification of each
failure: rate-limit failures wait as long as the remote service asks,
transient failures back off exponentially, and everything else is
raised on first sight.
"""

from __future__ import annotations

import asyncio
import logging
from functools import wraps
from typing import Any, Awaitable, Callable, TypeVar

from tenacity import AsyncRetrying, RetryCallState, RetryError, retry_if_exception

from .errors import (
    RetryExhaustedError,
    max_retries_for,
    retry_delay_ms,
    should_retry,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

SleepFn = Callable[[float], Awaitable[Any]]


def _budget_spent(retry_state: RetryCallState) -> bool:
    """Stop once the failure's own retry budget is used up."""
    error = retry_state.outcome.exception()
    return retry_state.attempt_number > max_retries_for(error)


def _delay_seconds(retry_state: RetryCallState) -> float:
    error = retry_state.outcome.exception()
    return retry_delay_ms(error, retry_state.attempt_number) / 1000.0


def _log_retry(context: str) -> Callable[[RetryCallState], None]:
    def before_sleep(retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception()
        delay_ms = retry_state.next_action.sleep * 1000.0 if retry_state.next_action else 0.0
        logger.warning(
            f"{context} failed (attempt {retry_state.attempt_number}/{max_retries_for(error)}), "
            f"retrying in {delay_ms:.0f}ms: {error}",
            extra={
                "context": context,
                "attempt": retry_state.attempt_number,
                "retry_after_ms": delay_ms,
            },
        )

    return before_sleep


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    context: str = "operation",
    *,
    sleep: SleepFn = asyncio.sleep,
) -> T:
    """Run an async operation, retrying classified failures within budget.

    Args:
        operation: Zero-argument async callable (one remote call)
        context: Label used in logs and in the terminal error
        sleep: Awaitable sleep used between attempts

    Returns:
        The operation's result

    Raises:
        GraphApiError: Non-retryable failure, on its first occurrence
        RetryExhaustedError: A retryable failure outlasted its budget
        Exception: Anything that is not a GraphApiError, unchanged
    """
    try:
        async for attempt in AsyncRetrying(
            stop=_budget_spent,
            wait=_delay_seconds,
            retry=retry_if_exception(should_retry),
            before_sleep=_log_retry(context),
            sleep=sleep,
        ):
            with attempt:
                return await operation()
    except RetryError as e:
        last_error = e.last_attempt.exception()
        budget = max_retries_for(last_error)
        logger.error(
            f"{context} gave up after {budget} retries: {last_error}",
            extra={"context": context},
        )
        raise RetryExhaustedError(context, budget, last_error) from last_error


def with_backoff(
    func: Callable[..., Awaitable[T]] | None = None,
    *,
    context: str | None = None,
    sleep: SleepFn = asyncio.sleep,
) -> Any:
    """Decorator form of :func:`retry_with_backoff`.

    Can be used with or without arguments:

        @with_backoff
        async def fetch(): ...

        @with_backoff(context="GET me/adaccounts")
        async def fetch(): ...
    """

    def decorator(fn: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        label = context or fn.__name__

        @wraps(fn)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            return await retry_with_backoff(lambda: fn(*args, **kwargs), label, sleep=sleep)

        return wrapper

    if func is not None:
        return decorator(func)
    return decorator
