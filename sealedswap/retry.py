"""
Retry scheduling for background operations.

An operation is a callable ``(payload, attempt) -> output | Retryable | Fatal``.
It decides *what* can be retried; :func:`run_with_retry` and
:class:`RetryPolicy` decide *when*.
"""
import logging
import random
import time
from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, TypeVar, Union

from .exceptions import SealedSwapError, UpstreamUnavailable

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Retryable:
    """Transient failure; the scheduler may try again."""
    reason: str


@dataclass(frozen=True)
class Fatal:
    """Permanent failure; retrying cannot help."""
    reason: str


@dataclass(frozen=True)
class RetryPolicy:
    """
    Exponential backoff with up to 10% jitter.

    Attributes:
        max_attempts: Total attempts, including the first
        backoff_base: Delay before the first retry, in seconds
        jitter: Maximum extra delay as a fraction of the base delay
    """
    max_attempts: int = 3
    backoff_base: float = 2.0
    jitter: float = 0.1

    def delay(self, retry_count: int) -> float:
        """Delay before retry number ``retry_count`` (1-based)."""
        delay = self.backoff_base * (2 ** (retry_count - 1))
        return delay + delay * random.uniform(0, self.jitter)


@dataclass
class RetryOutcome(Generic[T]):
    succeeded: bool
    attempts: int
    value: Optional[T] = None
    error: Optional[str] = None
    fatal: bool = False


Operation = Callable[[Any, int], Union[T, Retryable, Fatal]]


def run_with_retry(
    operation: Operation,
    payload: Any,
    policy: Optional[RetryPolicy] = None,
    sleep: Callable[[float], None] = time.sleep,
    description: str = "operation",
) -> RetryOutcome:
    """
    Drive ``operation`` until it succeeds, fails fatally or runs out of attempts.

    Raised UpstreamUnavailable counts as Retryable and any other
    SealedSwapError as Fatal. Unexpected exceptions propagate.

    Args:
        operation: Callable receiving (payload, attempt), attempt starting at 1
        payload: Opaque job payload
        policy: Backoff policy (defaults to 3 attempts, 2s base)
        sleep: Sleep function, cooperative by default
        description: Label for log lines

    Returns:
        RetryOutcome
    """
    policy = policy or RetryPolicy()
    attempt = 0
    last_error = None

    while attempt < policy.max_attempts:
        if attempt > 0:
            wait = policy.delay(attempt)
            logger.info(f"Retrying {description} (attempt {attempt + 1}/{policy.max_attempts}) in {wait:.2f}s")
            sleep(wait)
        attempt += 1

        try:
            result = operation(payload, attempt)
        except UpstreamUnavailable as e:
            result = Retryable(str(e))
        except SealedSwapError as e:
            result = Fatal(str(e))

        if isinstance(result, Fatal):
            logger.warning(f"{description} failed permanently: {result.reason}")
            return RetryOutcome(succeeded=False, attempts=attempt, error=result.reason, fatal=True)
        if isinstance(result, Retryable):
            last_error = result.reason
            logger.warning(f"{description} attempt {attempt} failed: {result.reason}")
            continue
        return RetryOutcome(succeeded=True, attempts=attempt, value=result)

    return RetryOutcome(succeeded=False, attempts=attempt, error=last_error)
