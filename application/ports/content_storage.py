"""Application-owned content storage port.

The delivery gate only ever reads; uploads are owned by the catalog side.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import AsyncIterator, Optional, Protocol, runtime_checkable


@dataclass
class ContentInfo:
    key: str
    size: Optional[int]
    content_type: str


@runtime_checkable
class ContentStoragePort(Protocol):
    async def stat(self, key: str) -> ContentInfo: ...

    def open_stream(self, key: str) -> AsyncIterator[bytes]: ...

    async def read(self, key: str) -> bytes: ...
