"""HTTP fetch helper with retry and exponential backoff."""
import logging
import time
from typing import Any, Callable, Dict, Optional

import requests

from processor.errors import UpstreamFetchError

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    'User-Agent': (
        'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 '
        '(KHTML, like Gecko) Chrome/124.0 Safari/537.36'
    ),
    'Accept-Language': 'pl-PL,pl;q=0.9,en-US;q=0.8,en;q=0.7',
}


def _is_retryable(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


class HttpClient:
    """Shared requests wrapper used by every source adapter."""

    def __init__(self, timeout: int = 30, max_retries: int = 3, base_delay: float = 1,
                 session: Optional[requests.Session] = None,
                 sleep: Callable[[float], None] = time.sleep):
        """
        Initialize the HTTP client.

        Args:
            timeout: HTTP request timeout in seconds (default: 30)
            max_retries: Total attempts per request (default: 3)
            base_delay: First backoff delay in seconds, doubled per retry
            session: Optional requests session
            sleep: Sleep function, injectable for tests
        """
        self.timeout = timeout
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.session = session or requests.Session()
        self._sleep = sleep

    def get(self, url: str, params: Optional[Dict[str, Any]] = None,
            headers: Optional[Dict[str, str]] = None) -> requests.Response:
        return self.request('GET', url, params=params, headers=headers)

    def get_json(self, url: str, params: Optional[Dict[str, Any]] = None,
                 headers: Optional[Dict[str, str]] = None) -> Any:
        response = self.get(url, params=params, headers=headers)
        return self._json(response, url)

    def get_text(self, url: str, params: Optional[Dict[str, Any]] = None,
                 headers: Optional[Dict[str, str]] = None) -> str:
        return self.get(url, params=params, headers=headers).text

    def post_json(self, url: str, payload: Any, params: Optional[Dict[str, Any]] = None,
                  timeout: Optional[float] = None) -> Any:
        response = self.request('POST', url, params=params, json=payload, timeout=timeout)
        return self._json(response, url)

    def request(self, method: str, url: str, timeout: Optional[float] = None,
                **kwargs) -> requests.Response:
        """
        Issue a request, retrying network errors, 429 and 5xx responses.

        Other 4xx responses fail immediately.

        Raises:
            UpstreamFetchError: If the request does not succeed
        """
        headers = dict(DEFAULT_HEADERS)
        headers.update(kwargs.pop('headers', None) or {})

        for attempt in range(self.max_retries):
            try:
                logger.debug(f"{method} {url} (attempt {attempt + 1}/{self.max_retries})")
                response = self.session.request(
                    method, url, headers=headers,
                    timeout=timeout or self.timeout, **kwargs
                )
            except requests.RequestException as e:
                error = UpstreamFetchError(f"{type(e).__name__}: {e}", url=url)
                retryable = True
            else:
                if response.ok:
                    return response
                error = UpstreamFetchError(
                    f"HTTP {response.status_code} from {url}: {response.text[:300]}",
                    url=url,
                    status_code=response.status_code
                )
                retryable = _is_retryable(response.status_code)

            if retryable and attempt < self.max_retries - 1:
                delay = self.base_delay * (2 ** attempt)
                logger.warning(
                    f"Request failed (attempt {attempt + 1}/{self.max_retries}): {error}. "
                    f"Retrying in {delay} seconds..."
                )
                self._sleep(delay)
                continue

            logger.error(f"Request to {url} failed after {attempt + 1} attempt(s): {error}")
            raise error

    @staticmethod
    def _json(response: requests.Response, url: str) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamFetchError(f"Invalid JSON from {url}: {e}", url=url,
                                     status_code=response.status_code) from e
