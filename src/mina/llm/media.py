"""Fetch media attachments and inline them as base64 parts."""

import asyncio
import base64
import logging
from dataclasses import dataclass
from urllib.parse import urlparse

import httpx

from ..errors import MediaFetchError
from .content import InlineDataPart

logger = logging.getLogger(__name__)

MAX_MEDIA_BYTES = 10 * 1024 * 1024  # 10 MB

ALLOWED_MEDIA_TYPES = {
    "image/jpeg",
    "image/png",
    "image/gif",
    "image/webp",
}

EXTENSION_TYPES = {
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
}


@dataclass(frozen=True)
class MediaItem:
    """An attachment referenced by URL."""

    url: str
    mime_type: str | None = None


def safe_url(url: str) -> str:
    """URL without query string, for logging."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return "<invalid-url>"
    if not parsed.scheme or not parsed.netloc:
        return "<invalid-url>"
    return f"{parsed.scheme}://{parsed.netloc}{parsed.path}"


def guess_mime_type(url: str) -> str:
    """Guess an image MIME type from the URL path. Defaults to JPEG."""
    path = urlparse(url).path.lower()
    for extension, mime_type in EXTENSION_TYPES.items():
        if path.endswith(extension):
            return mime_type
    return "image/jpeg"


class MediaFetcher:
    """Downloads attachments with a size cap and timeout."""

    def __init__(
        self,
        timeout: float = 10.0,
        max_bytes: int = MAX_MEDIA_BYTES,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._timeout = timeout
        self._max_bytes = max_bytes
        self._http_client = http_client

    async def _download(self, client: httpx.AsyncClient, url: str) -> bytes:
        try:
            response = await client.get(url)
        except httpx.TimeoutException as e:
            raise MediaFetchError(f"Timed out after {self._timeout}s") from e
        except httpx.RequestError as e:
            raise MediaFetchError(f"Request failed: {e}") from e

        if not response.is_success:
            raise MediaFetchError(f"HTTP {response.status_code}")

        declared = response.headers.get("content-length")
        if declared and declared.isdigit() and int(declared) > self._max_bytes:
            raise MediaFetchError(f"Too large: {declared} bytes (max {self._max_bytes})")

        content = response.content
        if len(content) > self._max_bytes:
            raise MediaFetchError(f"Too large: {len(content)} bytes (max {self._max_bytes})")
        return content

    async def fetch(self, client: httpx.AsyncClient, item: MediaItem) -> InlineDataPart:
        """Fetch one item. Raises MediaFetchError."""
        mime_type = item.mime_type or guess_mime_type(item.url)
        if mime_type not in ALLOWED_MEDIA_TYPES:
            raise MediaFetchError(f"Unsupported media type: {mime_type}")

        content = await self._download(client, item.url)
        return InlineDataPart(
            data=base64.b64encode(content).decode("ascii"),
            mime_type=mime_type,
        )

    async def fetch_all(self, items: list[MediaItem]) -> list[InlineDataPart]:
        """Fetch items concurrently, dropping the ones that fail."""
        if not items:
            return []

        async def fetch_one(client: httpx.AsyncClient, item: MediaItem) -> InlineDataPart | None:
            try:
                return await self.fetch(client, item)
            except MediaFetchError as e:
                logger.warning(f"Dropping media from {safe_url(item.url)}: {e}")
                return None

        if self._http_client is not None:
            results = await asyncio.gather(
                *(fetch_one(self._http_client, item) for item in items)
            )
        else:
            async with httpx.AsyncClient(
                timeout=self._timeout, follow_redirects=True
            ) as client:
                results = await asyncio.gather(*(fetch_one(client, item) for item in items))

        return [part for part in results if part is not None]
