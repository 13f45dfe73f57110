from __future__ import annotations

import logging
from typing import Optional

import httpx

from app.exceptions import ImageDownloadError

logger = logging.getLogger(__name__)

HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/120.0.0.0 Safari/537.36"
    )
}

# 20 MB safety limit per photo
MAX_DOWNLOAD_SIZE = 20 * 1024 * 1024


class ImageDownloader:
    """Fetches source photos. A single attempt per photo; failures are reported, not retried."""

    def __init__(self, timeout: float = 30.0, client: Optional[httpx.AsyncClient] = None) -> None:
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=10),
            follow_redirects=True,
            headers=HEADERS,
        )
        self._owns_client = client is None

    async def fetch(self, url: str) -> bytes:
        try:
            response = await self._client.get(url)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise ImageDownloadError(
                f"Failed to download image: {exc.response.status_code} {exc.response.reason_phrase}"
            ) from exc
        except httpx.HTTPError as exc:
            raise ImageDownloadError(f"Failed to download image: {exc}") from exc

        content = response.content
        if not content:
            raise ImageDownloadError("Downloaded image is empty")
        if len(content) > MAX_DOWNLOAD_SIZE:
            raise ImageDownloadError("Downloaded image exceeds size limit (20MB)")
        logger.debug("Downloaded %d bytes from %s", len(content), url)
        return content

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
