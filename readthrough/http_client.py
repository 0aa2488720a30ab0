"""
HTTP fetcher for the remote data source
Performs the underlying reads and writes the cache sits in front of
"""
import os
import logging
import threading
from typing import Optional, Dict, Any

import requests
from dotenv import load_dotenv

from readthrough.cache import FetchFailed, Operation
from config.settings import settings

load_dotenv()

logger = logging.getLogger("http_client")

API_TOKEN = os.getenv("REMOTE_API_TOKEN") or settings.remote_api_token

HTTP_METHODS = {
    Operation.READ: "GET",
    Operation.CREATE: "POST",
    Operation.UPDATE: "PUT",
    Operation.PATCH: "PATCH",
    Operation.DELETE: "DELETE",
}

# Global semaphore to limit concurrent requests to the remote source
_request_semaphore = threading.Semaphore(settings.max_concurrent_requests)


def _decode(response: requests.Response) -> Any:
    """Decode a response body as JSON, falling back to text."""
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


class HttpFetcher:
    """
    Callable fetcher: (operation, target, options) -> decoded response body.

    Options:
        params: Query parameters
        data: JSON body for writes
        headers: Extra request headers

    Raises:
        FetchFailed: Non-2xx status (with status_code and decoded payload)
            or a transport error (status_code None)
    """

    def __init__(
        self,
        base_url: str = settings.remote_base_url,
        session: Optional[requests.Session] = None,
        timeout: float = settings.request_timeout_seconds,
        token: Optional[str] = API_TOKEN,
    ):
        self.base_url = base_url.rstrip("/")
        self.session = session if session is not None else requests.Session()
        self.timeout = timeout
        self.token = token

    def _get_headers(self, extra: Optional[Dict[str, str]] = None) -> dict:
        """Get request headers, with auth when a token is configured."""
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        if extra:
            headers.update(extra)
        return headers

    def url_for(self, target: str) -> str:
        if target.startswith(("http://", "https://")):
            return target
        return f"{self.base_url}/{target.lstrip('/')}"

    def __call__(self, operation: Operation, target: str, options: Dict[str, Any]) -> Any:
        method = HTTP_METHODS[operation]
        url = self.url_for(target)

        # Use semaphore to limit concurrent requests globally
        with _request_semaphore:
            try:
                response = self.session.request(
                    method,
                    url,
                    headers=self._get_headers(options.get("headers")),
                    params=options.get("params"),
                    json=options.get("data"),
                    timeout=self.timeout,
                )
            except requests.RequestException as e:
                logger.warning(f"{method} {url} failed: {e}")
                raise FetchFailed(f"{method} {url} failed: {e}", target=target) from e

        if not response.ok:
            logger.info(f"{method} {url} returned {response.status_code}")
            raise FetchFailed(
                f"{method} {url} returned {response.status_code}",
                status_code=response.status_code,
                payload=_decode(response),
                target=target,
            )
        return _decode(response)
