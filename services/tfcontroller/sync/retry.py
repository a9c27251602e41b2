"""Bounded fixed-delay retry policy for the apply/destroy stage."""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from tfcontroller.config import RetryConfig
from tfcontroller.errors import TransientExecutionError
from tfcontroller.logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")
Sleep = Callable[[float], Awaitable[None]]


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "Retrying after failed attempt",
        attempt=retry_state.attempt_number,
        error=str(exc),
    )


@dataclass(frozen=True)
class RetryPolicy:
    """Retry an async operation a fixed number of times with a fixed delay.

    Only TransientExecutionError is retried; anything else propagates at once.
    When attempts run out the last error is re-raised unchanged.
    """

    max_attempts: int = 10
    delay_seconds: float = 60.0
    sleep: Sleep = asyncio.sleep

    @classmethod
    def from_config(cls, config: RetryConfig, sleep: Sleep = asyncio.sleep) -> "RetryPolicy":
        return cls(max_attempts=config.max_attempts, delay_seconds=config.delay_seconds, sleep=sleep)

    async def run(self, operation: Callable[[], Awaitable[T]]) -> T:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_fixed(self.delay_seconds),
            retry=retry_if_exception_type(TransientExecutionError),
            sleep=self.sleep,
            before_sleep=_log_retry,
            reraise=True,
        ):
            with attempt:
                return await operation()
