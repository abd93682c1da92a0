"""Local file system content provider implementation."""
import mimetypes
from pathlib import Path
from typing import AsyncIterator

import aiofiles
import aiofiles.os

from application.ports.content_storage import ContentInfo
from core.logging_config import get_logger
from ..exceptions import StorageError, NotFoundError, ValidationError

logger = get_logger(__name__)


class LocalProvider:
    """Read-only content provider over a local directory."""

    def __init__(self, base_path: str, chunk_size: int = 64 * 1024):
        """Initialize local content provider.

        Args:
            base_path: Root directory holding the content objects
            chunk_size: Read size used when streaming
        """
        self.base_path = Path(base_path).resolve()
        self.chunk_size = chunk_size

    async def stat(self, key: str) -> ContentInfo:
        """Return size and media type, raising NotFoundError when absent."""
        file_path = self._safe_path(key)
        try:
            st = await aiofiles.os.stat(file_path)
        except FileNotFoundError:
            raise NotFoundError(f"File not found: {key}", key=key) from None
        except OSError as e:
            raise StorageError(f"Failed to stat {key}: {e}", key=key) from e
        if not file_path.is_file():
            raise NotFoundError(f"Not a file: {key}", key=key)
        return ContentInfo(key=key, size=st.st_size, content_type=self._guess_content_type(key))

    async def read(self, key: str) -> bytes:
        """Read the whole object into memory."""
        file_path = self._safe_path(key)
        try:
            async with aiofiles.open(file_path, 'rb') as f:
                data = await f.read()
        except FileNotFoundError:
            raise NotFoundError(f"File not found: {key}", key=key) from None
        except OSError as e:
            raise StorageError(f"Failed to read {key}: {e}", key=key) from e

        logger.debug("content_read", key=key, size=len(data))
        return data

    async def open_stream(self, key: str) -> AsyncIterator[bytes]:
        """Stream the object in chunks."""
        file_path = self._safe_path(key)
        try:
            async with aiofiles.open(file_path, 'rb') as f:
                while True:
                    chunk = await f.read(self.chunk_size)
                    if not chunk:
                        break
                    yield chunk
        except FileNotFoundError:
            raise NotFoundError(f"File not found: {key}", key=key) from None
        except OSError as e:
            raise StorageError(f"Failed to stream {key}: {e}", key=key) from e

    async def close(self) -> None:
        return None

    def _safe_path(self, key: str) -> Path:
        """Build safe path preventing directory traversal.

        Raises:
            ValidationError: If path is unsafe
        """
        clean_key = key.lstrip("/")
        if not clean_key:
            raise ValidationError("Empty content key", key=key)

        path = (self.base_path / clean_key).resolve()

        # Ensure path is within base path (avoid traversal)
        try:
            path.relative_to(self.base_path)
        except ValueError:
            raise ValidationError(f"Invalid path: {key}", key=key) from None

        return path

    @staticmethod
    def _guess_content_type(key: str) -> str:
        content_type, _ = mimetypes.guess_type(key)
        return content_type or "application/octet-stream"
