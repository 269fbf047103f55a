"""Retry policy shared by the remote clients."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, Type, Union

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..exceptions import MaxRetriesExceeded

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]
Retryable = Union[
    Callable[[BaseException], bool],
    Type[BaseException],
    Tuple[Type[BaseException], ...],
]


class RetryPolicy:
    """
    Bounded retry with exponential backoff, run on ``tenacity.AsyncRetrying``.

    A call is attempted up to ``max_attempts`` times. Only errors accepted by
    ``retryable`` are retried; anything else propagates immediately. When the
    cap is reached ``MaxRetriesExceeded`` is raised with the last error attached.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        backoff_factor: float = 2.0,
        retryable: Optional[Retryable] = None,
        sleep: Optional[Sleep] = None,
        name: str = "call",
    ):
        """
        Initialize the policy.

        Args:
            max_attempts: Total attempts, including the first one
            base_delay: Delay before the second attempt, in seconds
            backoff_factor: Multiplier applied to the delay after each attempt
            retryable: Exception type(s), or a predicate, deciding what is retried
            sleep: Awaitable sleep, injectable for tests
            name: Label used in log lines
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.backoff_factor = backoff_factor
        self.retryable = retryable
        self.name = name
        self._sleep = sleep or asyncio.sleep

    @classmethod
    def from_dict(cls, config: Dict[str, Any], **kwargs) -> "RetryPolicy":
        """Build from a ``{"max_retries": .., "backoff_factor": ..}`` style dict."""
        return cls(
            max_attempts=config.get("max_attempts", config.get("max_retries", 3)),
            base_delay=config.get("base_delay", 1.0),
            backoff_factor=config.get("backoff_factor", 2.0),
            **kwargs,
        )

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after the given (1-based) failed attempt."""
        return self.base_delay * (self.backoff_factor ** (attempt - 1))

    def _retry_condition(self):
        if self.retryable is None:
            return retry_if_exception(lambda error: False)
        if isinstance(self.retryable, tuple) or isinstance(self.retryable, type):
            return retry_if_exception_type(self.retryable)
        return retry_if_exception(self.retryable)

    def _log_retry(self, retry_state: RetryCallState):
        error = retry_state.outcome.exception()
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        logger.warning(
            f"{self.name} failed (attempt {retry_state.attempt_number}/{self.max_attempts}): {error}; "
            f"retrying in {delay:.2f}s"
        )

    def retrying(self) -> AsyncRetrying:
        """A fresh ``AsyncRetrying`` controller for one call."""
        return AsyncRetrying(
            retry=self._retry_condition(),
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.base_delay, exp_base=self.backoff_factor),
            sleep=self._sleep,
            before_sleep=self._log_retry,
        )

    async def call(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """Await ``func(*args, **kwargs)`` under this policy."""
        try:
            return await self.retrying()(func, *args, **kwargs)
        except RetryError as e:
            last_error = e.last_attempt.exception()
            logger.error(f"{self.name} gave up after {self.max_attempts} attempts: {last_error}")
            raise MaxRetriesExceeded(self.max_attempts, last_error) from last_error
