"""
Shared HTTP client plumbing for the PRM and learning platform APIs.

Provides a requests session wrapper with:
- Per-client default headers and timeouts
- Exponential backoff retry for rate limits, server errors and
  connection failures
- A common TransportError hierarchy for every remote failure
"""

import logging
import time
from typing import Any, Optional

import requests
from requests.exceptions import ConnectionError as RequestsConnectionError
from requests.exceptions import RequestException, Timeout

from partner_sync import __version__

# Retry configuration defaults
DEFAULT_MAX_RETRIES = 5
DEFAULT_INITIAL_RETRY_DELAY = 1.0  # seconds
DEFAULT_MAX_RETRY_DELAY = 60.0  # seconds

USER_AGENT = f"partner-sync/{__version__}"

logger = logging.getLogger(__name__)


class TransportError(Exception):
    """Raised when a remote call fails: HTTP error, timeout or bad payload."""

    pass


class RateLimitError(TransportError):
    """Raised when rate limit is exceeded and retries are exhausted."""

    pass


class APIClient:
    """
    Base class for JSON-over-HTTP API clients.

    Subclasses set error_class and default headers; _request() handles
    retries and returns the final response for the caller to interpret.

    Attributes:
        base_url: API root without trailing slash
        timeout: Request timeout in seconds
        session: requests.Session carrying default headers
    """

    error_class: type[TransportError] = TransportError

    def __init__(
        self,
        base_url: str,
        headers: dict[str, str],
        timeout: float,
        max_retries: int = DEFAULT_MAX_RETRIES,
        initial_retry_delay: float = DEFAULT_INITIAL_RETRY_DELAY,
        max_retry_delay: float = DEFAULT_MAX_RETRY_DELAY,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.initial_retry_delay = initial_retry_delay
        self.max_retry_delay = max_retry_delay
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": USER_AGENT, **headers})

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def _request(
        self, method: str, path: str, operation_name: str, **kwargs: Any
    ) -> requests.Response:
        """
        Execute a request with exponential backoff retry.

        Retries 429 responses, 5xx responses, connection errors and timeouts.
        Any other response is returned as-is.

        Args:
            method: HTTP method
            path: Path relative to base_url (may include a query string)
            operation_name: Name for logging purposes
            **kwargs: Passed through to requests

        Returns:
            The final response

        Raises:
            RateLimitError: If retries are exhausted due to rate limits
            TransportError: (error_class) on connection failures after retries
        """
        url = self._url(path)
        delay = self.initial_retry_delay

        for attempt in range(self.max_retries):
            last_attempt = attempt == self.max_retries - 1
            try:
                response = self.session.request(
                    method, url, timeout=self.timeout, **kwargs
                )
            except (RequestsConnectionError, Timeout) as e:
                if not last_attempt:
                    logger.warning(
                        f"{operation_name} connection error, retrying in "
                        f"{delay:.1f}s (attempt {attempt + 1}/{self.max_retries}): {e}"
                    )
                    time.sleep(delay)
                    delay = min(delay * 2, self.max_retry_delay)
                    continue
                raise self.error_class(f"{operation_name} failed: {e}") from e
            except RequestException as e:
                raise self.error_class(f"{operation_name} failed: {e}") from e

            status_code = response.status_code

            if status_code == 429:
                if not last_attempt:
                    logger.warning(
                        f"{operation_name} rate limited, retrying in "
                        f"{delay:.1f}s (attempt {attempt + 1}/{self.max_retries})"
                    )
                    time.sleep(delay)
                    delay = min(delay * 2, self.max_retry_delay)
                    continue
                raise RateLimitError(
                    f"Rate limit exceeded for {operation_name} "
                    f"after {self.max_retries} retries"
                )

            if status_code >= 500 and not last_attempt:
                logger.warning(
                    f"{operation_name} server error ({status_code}), "
                    f"retrying in {delay:.1f}s"
                )
                time.sleep(delay)
                delay = min(delay * 2, self.max_retry_delay)
                continue

            return response

        # Only reachable with max_retries < 1, which __init__ prevents
        raise self.error_class(f"{operation_name} failed after all retries")

    def close(self) -> None:
        """Close the underlying HTTP session."""
        self.session.close()


def describe_response(response: requests.Response, limit: int = 200) -> str:
    """Short human-readable summary of an error response."""
    body = (response.text or "").strip().replace("\n", " ")
    if len(body) > limit:
        body = body[:limit] + "..."
    if not body:
        return f"HTTP {response.status_code}"
    return f"HTTP {response.status_code}: {body}"
