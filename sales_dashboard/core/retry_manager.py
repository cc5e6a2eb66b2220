"""
Retry Manager

Exponential backoff with optional jitter for upstream calls, driven by
tenacity. Whether a failure is worth retrying is decided by the error
taxonomy: transient faults (network, timeout, 5xx, overload) are retried,
client and session errors fail on the first attempt.
"""
import time
import random
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception,
    stop_after_attempt,
)

from sales_dashboard.core.error_taxonomy import RetryExhaustedError, is_retryable_error

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Jitter adds between 0% and this fraction of the computed delay
JITTER_RATIO = 0.25


@dataclass
class RetryOptions:
    """Backoff tuning. Delays are in seconds."""
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    backoff_factor: float = 2.0
    jitter: bool = True
    retry_condition: Callable[[Exception], bool] = is_retryable_error

    @classmethod
    def from_policy(cls, policy) -> "RetryOptions":
        return cls(
            max_attempts=policy.max_attempts,
            base_delay=policy.base_delay,
            max_delay=policy.max_delay,
            backoff_factor=policy.backoff_factor,
            jitter=policy.jitter,
        )


@dataclass
class RetryState:
    """Bookkeeping for a single execute_with_retry call."""
    attempt: int = 0
    total_delay: float = 0.0
    errors: List[Exception] = field(default_factory=list)


class RetryManager:
    """Runs an async operation, retrying transient failures with backoff."""

    def __init__(
        self,
        options: Optional[RetryOptions] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rand: Callable[[], float] = random.random,
    ):
        self.options = options or RetryOptions()
        self._sleep = sleep
        self._rand = rand

    def calculate_delay(self, attempt: int) -> float:
        """
        Delay before the retry that follows a failed attempt (1-based).

        ``min(base_delay * backoff_factor ** (attempt - 1), max_delay)``,
        plus up to 25% jitter when enabled.
        """
        opts = self.options
        delay = min(opts.base_delay * opts.backoff_factor ** (attempt - 1), opts.max_delay)
        if opts.jitter:
            delay += delay * JITTER_RATIO * self._rand()
        return delay

    async def execute_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        label: str = "Operation",
        state: Optional[RetryState] = None,
    ) -> T:
        """
        Run ``operation`` until it succeeds, fails permanently, or attempts run out.

        Args:
            operation: Zero-argument callable returning an awaitable
            label: Name used in logs and in the exhaustion error
            state: Optional bookkeeping object the caller can inspect afterwards

        Returns:
            The operation's result

        Raises:
            The original exception when it is not retryable,
            RetryExhaustedError when every attempt failed with a retryable error
        """
        max_attempts = self.options.max_attempts
        state = state if state is not None else RetryState()

        async def attempt() -> T:
            state.attempt += 1
            started = time.perf_counter()
            try:
                result = await operation()
            except Exception as e:
                state.errors.append(e)
                logger.warning(f"{label} failed on attempt {state.attempt}/{max_attempts}: {e}")
                raise
            elapsed = time.perf_counter() - started
            logger.debug(f"{label} succeeded on attempt {state.attempt}/{max_attempts} ({elapsed:.3f}s)")
            return result

        def should_retry(exception: BaseException) -> bool:
            if self.options.retry_condition(exception):
                return True
            logger.info(f"{label}: error is not retryable, giving up")
            return False

        def before_sleep(retry_state: RetryCallState) -> None:
            delay = retry_state.next_action.sleep
            state.total_delay += delay
            logger.info(f"{label}: retrying in {delay:.2f}s (attempt {state.attempt + 1}/{max_attempts})")

        retrying = AsyncRetrying(
            stop=stop_after_attempt(max_attempts),
            wait=lambda retry_state: self.calculate_delay(retry_state.attempt_number),
            retry=retry_if_exception(should_retry),
            sleep=self._sleep,
            before_sleep=before_sleep,
            reraise=False,
        )

        logger.debug(f"Starting {label} (max attempts: {max_attempts})")

        try:
            result = await retrying(attempt)
        except RetryError as e:
            last_error = e.last_attempt.exception()
            logger.error(f"{label}: max attempts ({max_attempts}) reached, giving up")
            raise RetryExhaustedError(
                label, state.attempt, state.total_delay, state.errors
            ) from last_error

        if state.attempt > 1:
            logger.info(
                f"{label} recovered after {state.attempt} attempts "
                f"(total delay: {state.total_delay:.2f}s)"
            )
        return result


def build_retry_policies(
    config=None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    rand: Callable[[], float] = random.random,
) -> Dict[str, RetryManager]:
    """
    Build one RetryManager per configured policy.

    Returns:
        Dict keyed by policy name: critical, realtime, background, interactive
    """
    if config is None:
        from config.settings import get_config
        config = get_config()

    return {
        name: RetryManager(RetryOptions.from_policy(policy), sleep=sleep, rand=rand)
        for name, policy in config.retry_policies.items()
    }
