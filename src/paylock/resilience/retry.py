"""
Retry Strategies using Tenacity.

Exponential backoff for settlement-service calls. Only failures the request
client classifies as retryable (server, transport, timeout) are retried.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from paylock.core.exceptions import RequestError
from paylock.core.logging import get_logger

logger = get_logger("retry")


def is_transient_error(exception: BaseException) -> bool:
    """Check if exception is a retryable settlement-service failure."""
    return isinstance(exception, RequestError) and exception.is_retryable()


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    delay = retry_state.next_action.sleep if retry_state.next_action else 0
    logger.warning(
        f"Retrying settlement call in {delay:.2f}s "
        f"(attempt {retry_state.attempt_number} failed: {exc})"
    )


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded exponential backoff.

    Delay before retry n (n >= 1) is ``initial_delay * 2 ** (n - 1)``; the
    first attempt runs immediately.
    """

    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float | None = None
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep, compare=False)

    def retrying(self) -> AsyncRetrying:
        wait_kwargs: dict[str, Any] = {"multiplier": self.initial_delay, "min": 0}
        if self.max_delay is not None:
            wait_kwargs["max"] = self.max_delay
        return AsyncRetrying(
            retry=retry_if_exception(is_transient_error),
            wait=wait_exponential(**wait_kwargs),
            stop=stop_after_attempt(self.max_attempts),
            sleep=self.sleep,
            reraise=True,
            before_sleep=_log_retry,
        )


async def execute_with_retry(
    func: Callable[..., Awaitable[Any]],
    *args: Any,
    policy: RetryPolicy | None = None,
    **kwargs: Any,
) -> Any:
    """
    Execute an async function under a retry policy.

    The attempt count is recorded on a final RequestError so callers can
    report how hard the client tried.
    """
    policy = policy or RetryPolicy()
    retrying = policy.retrying()
    try:
        async for attempt in retrying:
            with attempt:
                return await func(*args, **kwargs)
    except RequestError as e:
        e.attempts = retrying.statistics.get("attempt_number", e.attempts)
        raise
