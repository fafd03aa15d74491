"""HTTP access to the game's servers."""

import httpx
import tenacity
from loguru import logger

from mg_api.errors import FetchError

USER_AGENT = "MG-API/1.0"

TEXT_TIMEOUT = 8.0
BUNDLE_TIMEOUT = 20.0
ATLAS_TIMEOUT = 15.0
IMAGE_TIMEOUT = 20.0


class Upstream:
    """Thin wrapper over an httpx.AsyncClient that reports failures as FetchError.

    Args:
        client: Client to use; one is created (and owned) when omitted
    """

    def __init__(self, client: httpx.AsyncClient | None = None):
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            headers={"User-Agent": USER_AGENT, "Cache-Control": "no-cache"},
            follow_redirects=True,
        )

    async def aclose(self):
        if self._owns_client:
            await self.client.aclose()

    async def _get(self, url: str, timeout: float) -> httpx.Response:
        try:
            response = await self.client.get(url, timeout=timeout)
        except httpx.TimeoutException as e:
            raise FetchError(url, f"Timed out after {timeout}s") from e
        except httpx.RequestError as e:
            raise FetchError(url, f"Request failed: {e!r}") from e
        if response.status_code >= 400:
            raise FetchError(url, f"HTTP {response.status_code}", status=response.status_code)
        return response

    async def fetch_text(self, url: str, timeout: float = TEXT_TIMEOUT) -> str:
        response = await self._get(url, timeout)
        logger.debug("Fetched text", url=url, size=len(response.content))
        return response.text

    async def fetch_json(self, url: str, timeout: float = ATLAS_TIMEOUT):
        response = await self._get(url, timeout)
        try:
            return response.json()
        except ValueError as e:
            raise FetchError(url, "Response is not valid JSON") from e

    @tenacity.retry(
        stop=tenacity.stop_after_attempt(3),
        wait=tenacity.wait_exponential(max=4),
        retry=tenacity.retry_if_exception(lambda e: isinstance(e, FetchError) and e.status is None),
        reraise=True,
    )
    async def fetch_bytes(self, url: str, timeout: float = IMAGE_TIMEOUT) -> bytes:
        """Download binary content, retrying transport failures (not HTTP errors)."""
        response = await self._get(url, timeout)
        return response.content
