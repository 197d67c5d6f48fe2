import logging
import time
from dataclasses import dataclass
from typing import Callable, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff: base, 2*base, 4*base ... capped at max_delay."""

    max_retries: int
    base_delay: float = 1.0
    max_delay: float = 10.0
    max_elapsed: float = 30.0

    def delay(self, attempt: int) -> float:
        return min(self.base_delay * (2 ** attempt), self.max_delay)


READ_POLICY = RetryPolicy(max_retries=2)
MUTATION_POLICY = RetryPolicy(max_retries=1)


def call_with_retry(
    fn: Callable[[], T],
    policy: RetryPolicy,
    retry_on: Tuple[Type[BaseException], ...],
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
    description: str = "request",
) -> T:
    """
    Call `fn`, retrying on `retry_on` exceptions.

    Gives up (re-raising the last error) after `policy.max_retries` retries or
    when the next pause would push total elapsed time past `policy.max_elapsed`.
    """
    started = clock()
    attempt = 0
    while True:
        try:
            return fn()
        except retry_on as exc:
            if attempt >= policy.max_retries:
                logger.warning("Giving up on %s after %d attempt(s): %s", description, attempt + 1, exc)
                raise
            pause = policy.delay(attempt)
            if clock() - started + pause > policy.max_elapsed:
                logger.warning("Giving up on %s: retry budget of %.1fs spent", description, policy.max_elapsed)
                raise
            logger.warning("Attempt %d for %s failed (%s); retrying in %.1fs", attempt + 1, description, exc, pause)
            sleep(pause)
            attempt += 1
