"""Retry strategies for workflow gateway calls."""

import logging

from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from .exceptions import GatewayError

logger = logging.getLogger(__name__)


def get_gateway_read_retry(attempts: int = 3, min_wait: float = 0.5, max_wait: float = 4.0):
    """
    Get retry strategy for idempotent gateway reads (slots, centres, lookups).

    Registration, reservation, payment and release are never retried: the
    gateway does not deduplicate them.

    Args:
        attempts: Total attempts including the first one
        min_wait: Lower bound of the exponential backoff in seconds
        max_wait: Upper bound of the exponential backoff in seconds

    Returns:
        Retry decorator configured for gateway errors
    """
    return retry(
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=0.5, min=min_wait, max=max_wait) + wait_random(0, 0.5),
        retry=retry_if_exception_type(GatewayError),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
