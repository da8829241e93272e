"""HTTP transport: JSON requests with retry and exponential backoff."""

import logging
import random
import time

import requests

from sync_tracker.errors import TransportError

logger = logging.getLogger(__name__)


class HttpTransport:
    """Sends requests to the sync backend with configurable retry logic.

    Connection errors, timeouts and 5xx responses are retried; any other
    non-2xx response raises TransportError immediately.
    """

    def __init__(
        self,
        base_url: str,
        max_retries: int = 3,
        timeout: float = 30.0,
        session: requests.Session | None = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._max_retries = max_retries
        self._timeout = timeout
        self._session = session or requests.Session()

    @property
    def base_url(self) -> str:
        return self._base_url

    def request(
        self,
        method: str,
        path: str,
        token: str | None = None,
        json_body=None,
        data: bytes | None = None,
        headers: dict | None = None,
        params: dict | None = None,
    ):
        """Send a request and return the decoded JSON body (or None)."""
        url = self._base_url + path
        all_headers = {"Accept": "application/json"}
        if token:
            all_headers["Authorization"] = f"Bearer {token}"
        if headers:
            all_headers.update(headers)

        for attempt in range(self._max_retries + 1):
            try:
                response = self._session.request(
                    method,
                    url,
                    json=json_body,
                    data=data,
                    headers=all_headers,
                    params=params,
                    timeout=self._timeout,
                )
            except requests.RequestException as exc:
                error = TransportError(f"{method} {path} failed: {exc}")
            else:
                if response.status_code < 400:
                    if not response.content:
                        return None
                    return response.json()
                error = TransportError(
                    f"{method} {path} returned {response.status_code}: "
                    f"{_error_message(response)}",
                    status=response.status_code,
                )
                if response.status_code < 500:
                    raise error

            if attempt < self._max_retries:
                logger.warning(
                    "Request failed (attempt %d/%d): %s",
                    attempt + 1,
                    self._max_retries + 1,
                    error,
                )
                time.sleep(self._backoff_delay(attempt))
            else:
                logger.error(
                    "Request failed after %d attempts: %s",
                    self._max_retries + 1,
                    error,
                )
                raise error

    @staticmethod
    def _backoff_delay(attempt: int) -> float:
        """Calculate exponential backoff delay with jitter.

        Base delay doubles each attempt (0.1s, 0.2s, 0.4s, ...),
        capped at 2.0 seconds, then multiplied by a random jitter
        factor between 0.8 and 1.2.
        """
        base = 0.1 * (2 ** attempt)
        capped = min(base, 2.0)
        jitter = random.uniform(0.8, 1.2)
        return capped * jitter

    def close(self):
        """Close the underlying HTTP session."""
        self._session.close()


def _error_message(response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict) and "error" in body:
        return str(body["error"])
    return str(body)[:200]
