"""
Retry with bounded exponential backoff.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from structlog import get_logger
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
)

from reconciler.config import Settings

logger = get_logger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """
    Retry schedule; delays are in seconds.

    retry_count is the number of retries after the first attempt, so a block
    runs at most retry_count + 1 times. The nth delay is
    initial_delay * delay_increment_factor ** (n - 1), capped at max_delay.
    """

    retry_count: int
    initial_delay: float
    max_delay: float
    delay_increment_factor: float

    def __post_init__(self) -> None:
        """Validate retry policy."""
        if self.retry_count < 0:
            raise ValueError(f"retry_count cannot be negative: {self.retry_count}")
        if self.initial_delay < 0:
            raise ValueError(f"initial_delay cannot be negative: {self.initial_delay}")
        if self.max_delay < self.initial_delay:
            raise ValueError("max_delay must be >= initial_delay")
        if self.delay_increment_factor < 1.0:
            raise ValueError(
                f"delay_increment_factor must be >= 1.0: {self.delay_increment_factor}"
            )

    @classmethod
    def for_purchase_confirmation(cls, settings: Settings) -> "RetryPolicy":
        """Build the confirmation policy from settings (milliseconds on the env side)."""
        return cls(
            retry_count=settings.confirm_retry_count,
            initial_delay=settings.confirm_initial_delay_ms / 1000,
            max_delay=settings.confirm_max_delay_ms / 1000,
            delay_increment_factor=settings.confirm_delay_increment_factor,
        )

    def wait_strategy(self) -> wait_exponential:
        return wait_exponential(
            multiplier=self.initial_delay,
            exp_base=self.delay_increment_factor,
            max=self.max_delay,
        )


def _log_retry(retry_state: RetryCallState) -> None:
    delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
    logger.debug("retry_scheduled", attempt=retry_state.attempt_number, delay_seconds=delay)


async def retry(
    policy: RetryPolicy,
    block: Callable[[], Awaitable[bool]],
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> bool:
    """
    Run block until it returns True or the policy is exhausted.

    Exceptions raised by block propagate; callers that want exceptions to
    count as failed attempts catch them inside block.

    Args:
        policy: Attempt count and backoff schedule
        block: Attempt to run; returns True on success
        sleep: Coroutine used to wait between attempts

    Returns:
        True if any attempt succeeded
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(policy.retry_count + 1),
        wait=policy.wait_strategy(),
        retry=retry_if_result(lambda succeeded: not succeeded),
        retry_error_callback=lambda _: False,
        before_sleep=_log_retry,
        sleep=sleep,
    )
    return await retrying(block)  # type: ignore[no-any-return]
