"""Bounded exponential-backoff retries for remote calls.

RetryPolicy holds the backoff math and the error classifier;
RetryableInvoker runs an async operation under a policy.  Only
transient failures (rate limits, server faults) are retried; anything
else propagates unchanged on the first occurrence.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TypeVar

from riddlefeed.errors import RemoteExhausted, TerminalRemoteFailure, TransientRemoteFailure

logger = logging.getLogger(__name__)

T = TypeVar("T")

RATE_LIMITED = 429

_STATUS_ATTRS = ("status_code", "code", "status")


class ErrorKind(StrEnum):
    TRANSIENT = "transient"
    TERMINAL = "terminal"


def status_of(exc: BaseException) -> int | None:
    """Return an HTTP-like status carried by an exception, if any."""
    for attr in _STATUS_ATTRS:
        value = getattr(exc, attr, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    return None


def is_transient_status(status: int | None) -> bool:
    return status is not None and (status == RATE_LIMITED or 500 <= status <= 599)


def classify_error(exc: BaseException) -> ErrorKind:
    """Default classifier: 429 and 5xx are transient, everything else terminal."""
    if isinstance(exc, TransientRemoteFailure):
        return ErrorKind.TRANSIENT
    if isinstance(exc, TerminalRemoteFailure):
        return ErrorKind.TERMINAL
    if is_transient_status(status_of(exc)):
        return ErrorKind.TRANSIENT
    return ErrorKind.TERMINAL


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff parameters and error classification.

    The delay before retry ``i`` (0-based index of the failed attempt) is
    ``base_delay * 2**i + uniform(0, max_jitter)`` seconds.
    """

    max_attempts: int = 3
    base_delay: float = 2.0
    max_jitter: float = 1.0
    classify: Callable[[BaseException], ErrorKind] = field(default=classify_error)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {self.max_attempts}")
        if self.base_delay < 0 or self.max_jitter < 0:
            raise ValueError("base_delay and max_jitter must not be negative")

    def delay_for(self, attempt: int, rng: random.Random | None = None) -> float:
        """Seconds to wait after failed attempt ``attempt`` (0-based)."""
        jitter = (rng or random).uniform(0, self.max_jitter) if self.max_jitter else 0.0
        return self.base_delay * (2**attempt) + jitter


class RetryableInvoker:
    """Run async operations with retries according to a RetryPolicy.

    Args:
        policy: Backoff and classification settings.
        sleep: Awaitable sleep function; ``asyncio.sleep`` by default.
        rng: Random source for jitter.
        on_retry: Optional hook called as ``on_retry(attempt, delay, exc)``
            before each backoff wait.
    """

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        *,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
        rng: random.Random | None = None,
        on_retry: Callable[[int, float, BaseException], None] | None = None,
    ) -> None:
        self.policy = policy or RetryPolicy()
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._on_retry = on_retry

    async def invoke(
        self,
        operation: Callable[[], Awaitable[T]],
        max_attempts: int | None = None,
        *,
        label: str = "remote",
    ) -> T:
        """Await ``operation()``, retrying transient failures.

        Raises:
            RemoteExhausted: Every attempt failed transiently.
            Exception: The first terminal failure, unchanged.
        """
        attempts = max_attempts if max_attempts is not None else self.policy.max_attempts
        if attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {attempts}")

        last_error: BaseException | None = None
        for attempt in range(attempts):
            try:
                return await operation()
            except Exception as exc:
                if self.policy.classify(exc) is not ErrorKind.TRANSIENT:
                    raise
                last_error = exc
                if attempt + 1 >= attempts:
                    break
                delay = self.policy.delay_for(attempt, self._rng)
                logger.warning(
                    "Transient failure on %s (attempt %d/%d), retrying in %.2fs: %s",
                    label,
                    attempt + 1,
                    attempts,
                    delay,
                    exc,
                )
                if self._on_retry is not None:
                    self._on_retry(attempt, delay, exc)
                await self._sleep(delay)

        assert last_error is not None
        logger.error("Giving up on %s after %d attempt(s): %s", label, attempts, last_error)
        raise RemoteExhausted(last_error, attempts, status=status_of(last_error)) from last_error
