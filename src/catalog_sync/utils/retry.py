"""
Retry utilities with exponential backoff for marketplace API calls.

Only transient failures are retried: 5xx responses and any transport-level
``requests`` error (connection failures, timeouts, broken chunked bodies,
decode errors). A 4xx response is a permanent answer and is
handed back to the caller on the first attempt. The default schedule waits
1s, 3s, 9s... (``base_delay * 3 ** retry``).
"""

import random
import time
from dataclasses import dataclass
from typing import Callable, Optional, Tuple, Type

import requests

from catalog_sync.utils.exceptions import TransientFetchError
from catalog_sync.utils.logger import get_logger


logger = get_logger(__name__)


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_attempts: int = 3  # Total attempts, first one included
    base_delay: float = 1.0  # Seconds before the first retry
    exponential_base: float = 3.0
    max_delay: float = 60.0
    jitter: bool = False  # ±25% random variation when enabled

    retry_on_exceptions: Tuple[Type[Exception], ...] = (requests.exceptions.RequestException,)

    def is_retryable_status(self, status_code: int) -> bool:
        return 500 <= status_code < 600


class ExponentialBackoff:
    """
    Exponential backoff calculator.

    ``calculate_delay`` returns ``base_delay * exponential_base ** retry`` for
    the 0-based retry number and advances the counter.
    """

    def __init__(self, config: RetryConfig):
        self.config = config
        self.attempt = 0

    def reset(self) -> None:
        """Reset attempt counter."""
        self.attempt = 0

    def calculate_delay(self) -> float:
        """
        Calculate delay for the next retry.

        Returns:
            Delay in seconds
        """
        delay = self.config.base_delay * (self.config.exponential_base ** self.attempt)

        if self.config.jitter:
            jitter_range = delay * 0.25
            delay += random.uniform(-jitter_range, jitter_range)

        delay = min(delay, self.config.max_delay)

        self.attempt += 1

        logger.debug(f"Calculated retry delay: {delay:.2f}s (retry {self.attempt})")
        return delay

    def has_budget(self) -> bool:
        """True while another attempt fits in ``max_attempts``."""
        return self.attempt + 1 < self.config.max_attempts


def fetch_with_retry(
    request: Callable[[], requests.Response],
    max_attempts: int = 3,
    base_delay: float = 1.0,
    config: Optional[RetryConfig] = None,
    endpoint: Optional[str] = None,
) -> requests.Response:
    """
    Perform one HTTP request with bounded retry for transient failures.

    Args:
        request: Zero-argument callable issuing the request
        max_attempts: Total attempts when no ``config`` is given
        base_delay: Seconds before the first retry when no ``config`` is given
        config: Full retry configuration, overrides the two arguments above
        endpoint: URL used in log lines and errors

    Returns:
        The first response that is not a 5xx. 4xx responses are returned
        unretried; callers decide how to surface them.

    Raises:
        TransientFetchError: If every attempt failed with 5xx or a network error
    """
    if config is None:
        config = RetryConfig(max_attempts=max_attempts, base_delay=base_delay)

    backoff = ExponentialBackoff(config)
    target = endpoint or getattr(request, "__name__", "request")

    while True:
        attempt_number = backoff.attempt + 1
        status_code: Optional[int] = None
        failure: str

        try:
            response = request()
        except config.retry_on_exceptions as e:
            failure = f"{type(e).__name__}: {e}"
        else:
            if not config.is_retryable_status(response.status_code):
                if attempt_number > 1:
                    logger.info(
                        f"{target} succeeded on attempt {attempt_number} "
                        f"(status {response.status_code})"
                    )
                return response
            status_code = response.status_code
            failure = f"HTTP {status_code}"

        if not backoff.has_budget():
            logger.error(
                f"{target} failed after {attempt_number} attempts; last error: {failure}"
            )
            raise TransientFetchError(
                f"Request failed after {attempt_number} attempts: {failure}",
                attempts=attempt_number,
                status_code=status_code,
                endpoint=endpoint,
            )

        delay = backoff.calculate_delay()
        logger.warning(
            f"{target} attempt {attempt_number} failed ({failure}); "
            f"retrying in {delay:.2f}s"
        )
        time.sleep(delay)
