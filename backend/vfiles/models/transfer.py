from __future__ import annotations

from dataclasses import dataclass, field
from typing import AsyncIterator


@dataclass(frozen=True)
class ByteRange:
    """An inclusive byte range within a resource of ``total`` bytes."""
    start: int
    end: int
    total: int

    @property
    def length(self) -> int:
        return self.end - self.start + 1

    def content_range(self) -> str:
        return f"bytes {self.start}-{self.end}/{self.total}"


@dataclass
class DownloadPayload:
    """Everything a route needs to build a streaming response."""
    status_code: int
    body: AsyncIterator[bytes]
    media_type: str = "application/octet-stream"
    headers: dict[str, str] = field(default_factory=dict)


@dataclass
class UploadInit:
    """Result of initiating (or resuming) a chunked upload."""
    upload_id: str
    chunk_size: int
    total_chunks: int
    received: list[int]

    @property
    def resumable(self) -> bool:
        return bool(self.received)
