"""Exponential backoff with jitter for outbound calls."""

from __future__ import annotations

import asyncio
import logging
import random
import socket
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

import groq
import httpx

from .errors import FatalError, TransientError

logger = logging.getLogger(__name__)

T = TypeVar("T")

RetryPredicate = Callable[[BaseException], bool]
RetryCallback = Callable[[int, BaseException], Any]

# Fraction of the delay used as the jitter band (±).
JITTER_RATIO = 0.1

RETRYABLE_TYPES: tuple[type[BaseException], ...] = (
    TransientError,
    ConnectionError,
    TimeoutError,
    asyncio.TimeoutError,
    socket.gaierror,
    httpx.TransportError,
    groq.APIConnectionError,
)


@dataclass
class RetryPolicy:
    """Configuration for one retried operation.

    Delays are in seconds.
    """

    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 10.0
    backoff_multiplier: float = 2.0
    jitter: bool = True
    retry_predicate: RetryPredicate | None = None
    on_retry: RetryCallback | None = None

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.initial_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be non-negative")


def _status_code(error: BaseException) -> int | None:
    """Extract an HTTP status code from an error, if it carries one."""
    status = getattr(error, "status_code", None)
    if isinstance(status, int):
        return status
    response = getattr(error, "response", None)
    status = getattr(response, "status_code", None)
    if isinstance(status, int):
        return status
    return None


def is_retryable(error: BaseException) -> bool:
    """Default classification: network failures, timeouts, 5xx and 429."""
    if isinstance(error, FatalError):
        return False
    if isinstance(error, RETRYABLE_TYPES):
        return True
    status = _status_code(error)
    if status is None:
        return False
    return status == 429 or 500 <= status < 600


def compute_delay(
    attempt: int,
    policy: RetryPolicy,
    rng: random.Random | None = None,
) -> float:
    """Delay to wait after failed attempt ``attempt`` (1-based).

    Args:
        attempt: Number of the attempt that just failed.
        policy: The retry policy.
        rng: Random source for jitter.

    Returns:
        Delay in seconds, never negative.
    """
    delay = policy.initial_delay * policy.backoff_multiplier ** (attempt - 1)
    delay = min(delay, policy.max_delay)

    if policy.jitter:
        source = rng or random
        delay += delay * source.uniform(-JITTER_RATIO, JITTER_RATIO)

    return max(0.0, delay)


class RetryExecutor:
    """Runs async operations under a RetryPolicy."""

    def __init__(
        self,
        default_policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        """Initialize the executor.

        Args:
            default_policy: Policy used when ``run`` gets none.
            sleep: Awaitable sleep, replaceable in tests.
            rng: Random source for jitter.
        """
        self.default_policy = default_policy or RetryPolicy()
        self._sleep = sleep
        self._rng = rng

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        policy: RetryPolicy | None = None,
    ) -> T:
        """Run ``operation`` until it succeeds or the policy gives up.

        The error of the last attempt propagates unchanged.
        """
        policy = policy or self.default_policy
        should_retry = policy.retry_predicate or is_retryable

        attempt = 1
        while True:
            try:
                return await operation()
            except Exception as e:
                if attempt >= policy.max_attempts:
                    if policy.max_attempts > 1:
                        logger.error(
                            f"All {policy.max_attempts} attempts failed: {e}"
                        )
                    raise

                if not should_retry(e):
                    logger.debug(f"Error is not retryable, failing: {e!r}")
                    raise

                delay = compute_delay(attempt, policy, self._rng)
                logger.warning(
                    f"Attempt {attempt}/{policy.max_attempts} failed "
                    f"({type(e).__name__}: {e}), retrying in {delay:.2f}s"
                )
                self._notify(policy, attempt, e)
                await self._sleep(delay)
                attempt += 1

    def _notify(
        self, policy: RetryPolicy, attempt: int, error: BaseException
    ) -> None:
        """Fire the on_retry callback without letting it break the loop."""
        if policy.on_retry is None:
            return
        try:
            policy.on_retry(attempt, error)
        except Exception as e:
            logger.warning(f"on_retry callback raised: {e}")
