"""Retry helpers for HTTP adapters."""

import logging
from functools import wraps
from typing import Any, Callable, Coroutine, ParamSpec, TypeVar, cast

import httpx
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from inboxsync.errors import TransientError

P = ParamSpec("P")
T = TypeVar("T")

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = {408, 425, 429, 500, 502, 503, 504}


def retry_transient(
    max_attempts: int = 3,
    base_wait: float = 0.5,
    max_wait: float = 8.0,
) -> Callable[[Callable[P, Coroutine[Any, Any, T]]], Callable[P, Coroutine[Any, Any, T]]]:
    """Retry an async callable on TransientError with exponential backoff.

    The last TransientError is re-raised once attempts are exhausted.
    """

    def decorator(
        func: Callable[P, Coroutine[Any, Any, T]],
    ) -> Callable[P, Coroutine[Any, Any, T]]:
        @wraps(func)
        @retry(
            stop=stop_after_attempt(max_attempts),
            wait=wait_exponential(multiplier=base_wait, max=max_wait, exp_base=2),
            retry=retry_if_exception_type(TransientError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            return cast(T, await func(*args, **kwargs))

        return wrapper

    return decorator


def raise_for_transient(response: httpx.Response) -> None:
    """Raise TransientError for status codes worth retrying."""
    if response.status_code in RETRYABLE_STATUS:
        raise TransientError(f"HTTP {response.status_code}: {response.text[:200]}")
