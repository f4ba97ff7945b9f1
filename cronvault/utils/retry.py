"""
HTTP download helper with bounded retries.

Attempt i (1-based) that fails waits base_delay * i seconds before the next
attempt. The GET is idempotent, so retrying has no side effect.
"""

import logging
import time
from typing import Callable, Optional

import httpx
from tenacity import (
    RetryError,
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_incrementing
)


logger = logging.getLogger(__name__)


class RetryExhausted(Exception):
    """Raised when every attempt to fetch a URL has failed."""

    def __init__(self, url: str, attempts: int, last_error: Exception):
        self.url = url
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"Failed to fetch {url} after {attempts} attempts: {last_error}"
        )


class BadStatus(Exception):
    """Raised for a non-success HTTP response."""

    def __init__(self, status_code: int):
        self.status_code = status_code
        super().__init__(f"HTTP status {status_code}")


def _get(client: httpx.Client, url: str) -> httpx.Response:
    response = client.get(url)
    if not response.is_success:
        raise BadStatus(response.status_code)
    return response


def fetch_with_retry(
    url: str,
    max_attempts: int = 3,
    base_delay: float = 1.0,
    client: Optional[httpx.Client] = None,
    sleep: Callable[[float], None] = time.sleep
) -> httpx.Response:
    """
    GET a URL, retrying on network errors and non-2xx responses.

    Args:
        url: URL to fetch
        max_attempts: Total number of attempts (minimum 1)
        base_delay: Backoff unit in seconds
        client: Optional httpx client (a short-lived one is created otherwise)
        sleep: Sleep function, replaceable in tests

    Returns:
        The successful response, with its body already read

    Raises:
        RetryExhausted: If all attempts fail
    """
    max_attempts = max(1, max_attempts)
    retrying = Retrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_incrementing(start=base_delay, increment=base_delay),
        retry=retry_if_exception_type((httpx.HTTPError, BadStatus)),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        sleep=sleep
    )

    owns_client = client is None
    if owns_client:
        client = httpx.Client(follow_redirects=True)

    try:
        return retrying(_get, client, url)
    except RetryError as e:
        raise RetryExhausted(url, max_attempts, e.last_attempt.exception())
    finally:
        if owns_client:
            client.close()
