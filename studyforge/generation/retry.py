"""
Retry with exponential backoff for external calls.

Only transient failures are retried: rate limits, 5xx responses, timeouts
and connection errors. Input errors and anything unrecognised propagate on
the first attempt.
"""

from __future__ import annotations

import random
import time
from dataclasses import dataclass
from typing import Callable, TypeVar

from loguru import logger

from config import get_settings
from studyforge.errors import ExternalServiceError, JobInputError

T = TypeVar("T")

RETRYABLE_STATUS_CODES = (429, 500, 502, 503, 504)
RETRYABLE_MARKERS = (
    "rate_limit",
    "rate limit",
    "too_many_requests",
    "resource exhausted",
    "internal_server_error",
    "service_unavailable",
    "unavailable",
    "deadline exceeded",
    "timeout",
    "timed out",
    "network",
    "connection reset",
)


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_attempts: int = 3
    initial_delay: float = 2.0
    max_delay: float = 30.0
    backoff_multiplier: float = 2.0
    jitter_factor: float = 0.25  # up to +25% of the delay

    @classmethod
    def from_settings(cls) -> RetryConfig:
        return cls(**get_settings().get_retry_config())


def calculate_delay(attempt: int, config: RetryConfig, rng: Callable[[], float] = random.random) -> float:
    """
    Delay before the next attempt.

    Args:
        attempt: Failed attempt number (0-indexed)
        config: Retry configuration
        rng: Source of jitter in [0, 1)
    """
    delay = min(config.initial_delay * config.backoff_multiplier**attempt, config.max_delay)
    return min(delay * (1 + config.jitter_factor * rng()), config.max_delay)


def is_retryable(exc: BaseException) -> bool:
    """Whether an exception looks transient."""
    if isinstance(exc, JobInputError):
        return False
    if isinstance(exc, (ConnectionError, TimeoutError)):
        return True

    status = getattr(exc, "status_code", None) or getattr(exc, "code", None)
    if isinstance(status, int) and status in RETRYABLE_STATUS_CODES:
        return True
    if isinstance(exc, ExternalServiceError) and status is not None:
        return False

    message = str(exc).lower()
    return any(marker in message for marker in RETRYABLE_MARKERS)


def retry_with_backoff(
    fn: Callable[[], T],
    config: RetryConfig | None = None,
    sleep: Callable[[float], object] = time.sleep,
    label: str = "call",
) -> T:
    """
    Call ``fn`` until it succeeds, a non-retryable error is raised, or the
    attempts are exhausted. The last error is re-raised unchanged.
    """
    config = config or RetryConfig()
    attempts = max(1, config.max_attempts)

    for attempt in range(attempts):
        try:
            return fn()
        except Exception as exc:
            if attempt == attempts - 1 or not is_retryable(exc):
                if attempt > 0:
                    logger.error("{} failed after {} attempts: {}", label, attempt + 1, exc)
                raise

            delay = calculate_delay(attempt, config)
            logger.warning(
                "{} attempt {}/{} failed, retrying in {:.1f}s: {}",
                label,
                attempt + 1,
                attempts,
                delay,
                exc,
            )
            sleep(delay)

    raise AssertionError("unreachable")
