"""HTTP client for catalog pages."""
import logging
from typing import Optional

import httpx

from catalog_crawler.config import config
from catalog_crawler.errors import FailureKind, NetworkFailure
from catalog_crawler.fetch.user_agents import UserAgentPool

logger = logging.getLogger(__name__)

BROWSER_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
    "Accept-Encoding": "gzip, deflate",
    "Connection": "keep-alive",
    "Upgrade-Insecure-Requests": "1",
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
}


def classify_status(status_code: int) -> FailureKind:
    """Map an HTTP error status to a failure kind."""
    if status_code == 403:
        return FailureKind.FORBIDDEN
    if status_code == 429:
        return FailureKind.RATE_LIMITED
    return FailureKind.OTHER


class FetchClient:
    """GETs catalog pages with a rotating browser identity and a short timeout.

    No retries happen here: a failed page raises NetworkFailure and the
    pagination walker decides what to do next.
    """

    def __init__(
        self,
        timeout: Optional[float] = None,
        user_agents: Optional[UserAgentPool] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout if timeout is not None else config.FETCH_TIMEOUT
        self.user_agents = user_agents or UserAgentPool()
        limits = httpx.Limits(max_connections=20, max_keepalive_connections=10)
        self.client = httpx.AsyncClient(
            http2=transport is None,
            timeout=self.timeout,
            follow_redirects=True,
            limits=limits,
            transport=transport,
        )
        self.request_count = 0

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    async def aclose(self) -> None:
        await self.client.aclose()

    def build_headers(self) -> dict[str, str]:
        headers = dict(BROWSER_HEADERS)
        headers["User-Agent"] = self.user_agents.pick()
        return headers

    async def fetch(self, url: str) -> str:
        """Fetch a URL and return its markup. Raises NetworkFailure."""
        self.request_count += 1
        try:
            response = await self.client.get(url, headers=self.build_headers(), timeout=self.timeout)
        except httpx.TimeoutException as e:
            logger.warning(f"Timeout after {self.timeout}s for {url}")
            raise NetworkFailure(FailureKind.TIMEOUT, url, message=f"Request timeout: {e.__class__.__name__}") from e
        except httpx.HTTPError as e:
            logger.warning(f"Network error for {url}: {e}")
            raise NetworkFailure(FailureKind.OTHER, url, message=f"Website not accessible: {e}") from e

        if response.status_code >= 400:
            kind = classify_status(response.status_code)
            logger.warning(f"HTTP {response.status_code} ({kind.value}) for {url}")
            raise NetworkFailure(
                kind,
                url,
                status_code=response.status_code,
                message=f"HTTP {response.status_code} {response.reason_phrase or ''}".strip(),
            )

        logger.debug(f"Fetched {url}: {response.status_code}, {len(response.text)} chars")
        return response.text
