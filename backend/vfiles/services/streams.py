"""Async byte-stream helpers shared by uploads, downloads and the object store."""
from __future__ import annotations

import asyncio
import os
import uuid
from contextlib import aclosing
from pathlib import Path
from typing import AsyncIterable, AsyncIterator, Union

from vfiles.errors import PayloadTooLargeError, ValidationError

FILE_CHUNK_SIZE = 256 * 1024

Content = Union[bytes, AsyncIterable[bytes]]


async def iter_content(content: Content) -> AsyncIterator[bytes]:
    """Normalize bytes or an async iterable of bytes into an async iterator."""
    if isinstance(content, (bytes, bytearray, memoryview)):
        if content:
            yield bytes(content)
        return
    async for chunk in content:
        if chunk:
            yield chunk


async def skip_then_limit(
    source: AsyncIterator[bytes],
    start: int,
    end: int,
) -> AsyncIterator[bytes]:
    """Forward bytes ``start..end`` (inclusive) of ``source``.

    Bytes before ``start`` are dropped as they arrive. Once ``end`` has been
    forwarded the upstream iterator is closed, which tears down whatever
    produces it (a child process or an open file).
    """
    to_skip = start
    remaining = end - start + 1
    async with aclosing(source):
        async for chunk in source:
            if to_skip:
                if len(chunk) <= to_skip:
                    to_skip -= len(chunk)
                    continue
                chunk = chunk[to_skip:]
                to_skip = 0
            if len(chunk) >= remaining:
                yield chunk[:remaining]
                return
            remaining -= len(chunk)
            yield chunk


async def iter_file(
    path: Path,
    start: int = 0,
    length: int | None = None,
    chunk_size: int = FILE_CHUNK_SIZE,
) -> AsyncIterator[bytes]:
    """Read ``length`` bytes of ``path`` from ``start`` using direct positioning."""
    remaining = length
    with open(path, "rb") as f:
        if start:
            f.seek(start)
        while remaining is None or remaining > 0:
            size = chunk_size if remaining is None else min(chunk_size, remaining)
            chunk = await asyncio.to_thread(f.read, size)
            if not chunk:
                break
            if remaining is not None:
                remaining -= len(chunk)
            yield chunk


def temp_sibling(path: Path) -> Path:
    """A unique temp file name next to ``path`` (same filesystem, so renames are atomic)."""
    return path.with_name(f".{path.name}.{uuid.uuid4().hex}.tmp")


async def write_stream(
    content: Content,
    target: Path,
    max_size: int | None = None,
    allow_empty: bool = True,
) -> int:
    """Write ``content`` to ``target`` atomically and return the byte count.

    Data goes to a unique temp file that is renamed onto ``target`` only after
    the stream completes, so readers never observe a partial file and
    concurrent writers of the same target each produce a complete file.

    Raises:
        PayloadTooLargeError: If more than ``max_size`` bytes arrive
        ValidationError: If nothing arrives and ``allow_empty`` is false; an
            existing ``target`` is left untouched
    """
    target.parent.mkdir(parents=True, exist_ok=True)
    tmp = temp_sibling(target)
    written = 0
    try:
        with open(tmp, "wb") as f:
            async for chunk in iter_content(content):
                written += len(chunk)
                if max_size is not None and written > max_size:
                    raise PayloadTooLargeError(f"Payload exceeds {max_size} bytes")
                await asyncio.to_thread(f.write, chunk)
        if not written and not allow_empty:
            raise ValidationError("Empty payload")
        os.replace(tmp, target)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise
    return written


async def limit_stream(source: AsyncIterable[bytes], max_size: int) -> AsyncIterator[bytes]:
    """Pass ``source`` through, failing once more than ``max_size`` bytes arrive."""
    total = 0
    async for chunk in source:
        total += len(chunk)
        if total > max_size:
            raise PayloadTooLargeError(f"Payload exceeds {max_size} bytes")
        yield chunk
