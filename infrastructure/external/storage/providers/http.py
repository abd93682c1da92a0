"""HTTP origin content provider (object store or CDN origin behind a token)."""
from typing import AsyncIterator, Optional

import httpx

from application.ports.content_storage import ContentInfo
from core.logging_config import get_logger
from ..exceptions import StorageError, NotFoundError, TransientError

logger = get_logger(__name__)


class HttpProvider:
    """Read-only provider that fetches `{base_url}/{key}` with httpx."""

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 30.0,
        chunk_size: int = 64 * 1024,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.chunk_size = chunk_size
        headers = {"User-Agent": "Shelfgate/1.0"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            headers=headers,
            follow_redirects=True,
            transport=transport,
        )

    def _url(self, key: str) -> str:
        return f"{self.base_url}/{key.lstrip('/')}"

    @staticmethod
    def _check(response: httpx.Response, key: str) -> None:
        if response.status_code == 404:
            raise NotFoundError(f"File not found: {key}", key=key)
        if response.status_code == 429 or response.status_code >= 500:
            raise TransientError(f"Origin returned {response.status_code} for {key}", key=key)
        if response.status_code >= 400:
            raise StorageError(f"Origin returned {response.status_code} for {key}", key=key)

    async def stat(self, key: str) -> ContentInfo:
        try:
            response = await self._client.head(self._url(key))
        except httpx.TransportError as e:
            raise TransientError(f"Failed to stat {key}: {e}", key=key) from e
        self._check(response, key)
        length = response.headers.get("content-length")
        return ContentInfo(
            key=key,
            size=int(length) if length and length.isdigit() else None,
            content_type=response.headers.get("content-type", "application/octet-stream").split(";")[0].strip(),
        )

    async def read(self, key: str) -> bytes:
        try:
            response = await self._client.get(self._url(key))
        except httpx.TransportError as e:
            raise TransientError(f"Failed to read {key}: {e}", key=key) from e
        self._check(response, key)
        logger.debug("content_read", key=key, size=len(response.content))
        return response.content

    async def open_stream(self, key: str) -> AsyncIterator[bytes]:
        try:
            async with self._client.stream("GET", self._url(key)) as response:
                self._check(response, key)
                async for chunk in response.aiter_bytes(self.chunk_size):
                    yield chunk
        except httpx.TransportError as e:
            raise TransientError(f"Failed to stream {key}: {e}", key=key) from e

    async def close(self) -> None:
        await self._client.aclose()
