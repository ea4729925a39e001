"""
Exponential backoff retry logic for outbound provider calls.

Retries transient failures (429 rate limits, 5xx, timeouts, dropped
connections) with exponential backoff. Provider rejections (4xx) are not
retried.

This is transport-level retrying of the *same* request against the *same*
provider. It is unrelated to orchestrator failover, which sends a new payment
attempt to a different provider. Adapters only wrap calls that are safe to
repeat: reads, and writes carrying a provider-side idempotency key.
"""

import asyncio
import logging
from typing import Any, Callable

logger = logging.getLogger("paygate.retry")

RETRIABLE_STATUS_CODES = {429, 500, 502, 503, 504}
MAX_RETRIES = 2
BASE_DELAY = 0.5
MAX_DELAY = 10.0


class ProviderError(Exception):
    """Base exception for payment provider call failures."""

    def __init__(self, message: str, status_code: int = 500, retriable: bool = True):
        super().__init__(message)
        self.status_code = status_code
        self.retriable = retriable


class TransportError(ProviderError):
    """Network failure, timeout or 5xx from the provider."""

    def __init__(self, message: str, status_code: int = 503):
        super().__init__(message, status_code=status_code, retriable=True)


class RateLimitError(TransportError):
    """429 Too Many Requests from the payment provider."""

    def __init__(self, message: str = "Rate limited", retry_after: float | None = None):
        super().__init__(message, status_code=429)
        self.retry_after = retry_after


class ProviderRejected(ProviderError):
    """The provider's API declined the request. Its message is preserved."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message, status_code=status_code, retriable=False)


def error_for_status(status_code: int, message: str, retry_after: float | None = None) -> ProviderError:
    """Build the right ProviderError subclass for an HTTP error status."""
    if status_code == 429:
        return RateLimitError(message, retry_after=retry_after)
    if status_code in RETRIABLE_STATUS_CODES:
        return TransportError(message, status_code=status_code)
    return ProviderRejected(message, status_code=status_code)


async def with_retry(
    func: Callable[..., Any],
    *args: Any,
    max_retries: int = MAX_RETRIES,
    base_delay: float = BASE_DELAY,
    **kwargs: Any,
) -> Any:
    """
    Execute an async function with exponential backoff on retriable errors.

    Args:
        func: Async callable to execute.
        max_retries: Maximum number of retry attempts (0 disables retrying).
        base_delay: First backoff interval in seconds.

    Returns:
        The result of the function call.

    Raises:
        ProviderError: On permanent failure or exhausted retries.
    """
    delay = base_delay
    last_error = None

    for attempt in range(max_retries + 1):
        try:
            return await func(*args, **kwargs)
        except ProviderError as e:
            last_error = e
            if not e.retriable:
                raise

            if attempt < max_retries:
                sleep_for = min(delay, MAX_DELAY)
                if isinstance(e, RateLimitError) and e.retry_after:
                    sleep_for = min(e.retry_after, MAX_DELAY)

                logger.warning(
                    "Retriable error on attempt %d/%d: %s, sleeping %.1fs",
                    attempt + 1,
                    max_retries + 1,
                    e,
                    sleep_for,
                )
                await asyncio.sleep(sleep_for)
                delay = min(delay * 2, MAX_DELAY)
            else:
                if max_retries:
                    logger.error("Exhausted %d retries for provider call: %s", max_retries, e)
                raise

    raise last_error or ProviderError("Unknown error after retries")
