"""
Source adapter contract and shared HTTP plumbing.
"""
import logging
from typing import Any, Optional, Protocol

import requests
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)

from ..errors import SourceError
from ..models.listing import ListingSource, ScrapedListing, SearchResult


logger = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


class SourceAdapter(Protocol):
    """A marketplace the pipeline can pull listings from."""
    source: ListingSource

    def search(self, query: str) -> SearchResult: ...

    def fetch_one(self, url: str) -> ScrapedListing: ...


class HttpSource:
    """
    Base for adapters talking HTTP through requests.
    Transport errors are retried; HTTP error statuses are not.
    """

    source: ListingSource

    def __init__(self, session: Optional[requests.Session] = None, timeout: float = 30.0):
        self.session = session or requests.Session()
        self.timeout = timeout

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type((requests.ConnectionError, requests.Timeout)),
        before_sleep=lambda retry_state: logger.warning(
            f"Retry attempt {retry_state.attempt_number}"
        ),
        reraise=True,
    )
    def _send(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        return self.session.request(method, url, timeout=self.timeout, **kwargs)

    def _request(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        """Send a request, translating any failure into SourceError."""
        try:
            response = self._send(method, url, **kwargs)
        except requests.RequestException as e:
            raise SourceError(self.source.value, f"request to {url} failed: {e}") from e

        if response.status_code >= 400:
            raise SourceError(
                self.source.value,
                f"HTTP {response.status_code} from {url}: {response.text[:200]}",
            )
        return response

    def _get_json(self, url: str, **kwargs: Any) -> Any:
        response = self._request("GET", url, **kwargs)
        try:
            return response.json()
        except ValueError as e:
            raise SourceError(self.source.value, f"invalid JSON from {url}") from e


def build_url(url: str, params: dict[str, Any]) -> str:
    """The full query URL requests would send, for logging."""
    return requests.Request("GET", url, params=params).prepare().url
