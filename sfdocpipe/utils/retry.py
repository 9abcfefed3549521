"""
Retry policy shared by the pipeline stages.

The orchestrator owns retries: components raise typed errors and the
pipeline decides which of them are worth another attempt.
"""

import logging
import time
from typing import Callable, Tuple, Type, TypeVar

from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryPolicy:
    """
    Exponential backoff with a bounded number of attempts.

    Args:
        attempts (int): Total attempts, including the first call.
        backoff (float): Base delay in seconds; attempt n waits backoff * 2**(n-1).
        max_backoff (float): Upper bound on a single delay.
        sleep (Callable): Sleep function, replaceable in tests.
    """

    def __init__(
        self,
        attempts: int = 3,
        backoff: float = 1.0,
        max_backoff: float = 30.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if attempts < 1:
            raise ValueError("attempts must be at least 1")
        self.attempts = attempts
        self.backoff = backoff
        self.max_backoff = max_backoff
        self.sleep = sleep

    def call(
        self,
        func: Callable[..., T],
        *args,
        retry_on: Tuple[Type[BaseException], ...],
        description: str = "operation",
        **kwargs,
    ) -> T:
        """
        Calls `func`, retrying on the given exception types.

        The last exception is re-raised once the attempts are exhausted.
        The number of attempts made is recorded on the exception as
        `attempts` so failure records can report it.
        """
        retrying = Retrying(
            stop=stop_after_attempt(self.attempts),
            wait=wait_exponential(
                multiplier=self.backoff, min=0, max=self.max_backoff
            ),
            retry=retry_if_exception_type(retry_on),
            before_sleep=lambda retry_state: logger.warning(
                f"{description} failed "
                f"(attempt {retry_state.attempt_number}/{self.attempts}): "
                f"{retry_state.outcome.exception()}. Retrying..."
            ),
            sleep=self.sleep,
            reraise=True,
        )
        attempt_number = 0
        try:
            for attempt in retrying:
                with attempt:
                    attempt_number = attempt.retry_state.attempt_number
                    return func(*args, **kwargs)
        except retry_on as e:
            e.attempts = attempt_number
            raise
