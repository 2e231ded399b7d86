"""
Download streaming.

- Single files with HTTP byte ranges. Current working-tree files and
  materialized lfs content are read with direct positioning; other
  committed blobs are not seekable, so ranges over them skip then limit the
  ``cat-file`` stream.
- lfs pointers are smudged once into a cache file keyed by (commit, path)
  and reused until the TTL passes.
- Directories are streamed as ZIP archives, one entry at a time, without
  buffering the archive.
"""
from __future__ import annotations

import asyncio
import hashlib
import logging
import mimetypes
import os
import re
import time
import zipfile
from contextlib import aclosing
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Callable, Dict
from urllib.parse import quote

from vfiles.config import Settings
from vfiles.errors import (
    InternalError,
    NotFoundError,
    RangeNotSatisfiableError,
    ValidationError,
)
from vfiles.models import ByteRange, DownloadPayload
from vfiles.services.git_runner import GitCommandError
from vfiles.services.lfs import POINTER_MAX_SIZE
from vfiles.services.object_store import is_hidden
from vfiles.services.repository import RepositoryHandle
from vfiles.services.streams import iter_file, skip_then_limit, write_stream
from vfiles.utils.validation import to_repo_path

logger = logging.getLogger(__name__)

_RANGE = re.compile(r"^bytes=(\d*)-(\d*)$", re.IGNORECASE)
ZIP64_THRESHOLD = zipfile.ZIP64_LIMIT
ZIP_EPOCH = (1980, 1, 1, 0, 0, 0)


def parse_range(header: str | None, total: int) -> ByteRange | None:
    """
    Parse a single-range ``Range`` header against a resource of ``total`` bytes.

    Supports ``bytes=a-b``, ``bytes=a-`` and ``bytes=-n``. Anything else
    (including multi-range requests) is ignored and the full content served.

    Raises:
        RangeNotSatisfiableError: If the range lies outside the resource
    """
    if not header:
        return None
    match = _RANGE.match(header.strip())
    if match is None:
        return None
    start_raw, end_raw = match.groups()
    if not start_raw and not end_raw:
        return None

    if not start_raw:
        suffix = int(end_raw)
        start = max(0, total - suffix)
        end = total - 1
        if suffix == 0:
            start = total
    else:
        start = int(start_raw)
        end = int(end_raw) if end_raw else total - 1

    if start >= total or start > end:
        raise RangeNotSatisfiableError(total)
    return ByteRange(start=start, end=min(end, total - 1), total=total)


def content_disposition(filename: str, disposition: str = "attachment") -> str:
    """RFC 6266/5987 header value with an ASCII fallback name."""
    fallback = filename.encode("ascii", errors="replace").decode("ascii").replace('"', "_").replace("?", "_")
    return f"{disposition}; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename, safe='')}"


def guess_media_type(filename: str) -> str:
    return mimetypes.guess_type(filename)[0] or "application/octet-stream"


class _ZipSink:
    """Write-only file object; ZipFile treats it as an unseekable stream."""

    def __init__(self):
        self._buffer = bytearray()

    def write(self, data) -> int:
        self._buffer += data
        return len(data)

    def flush(self) -> None:
        pass

    def drain(self) -> bytes:
        data = bytes(self._buffer)
        self._buffer.clear()
        return data


@dataclass
class ArchiveEntry:
    name: str
    size: int | None
    date_time: tuple
    open: Callable[[], AsyncIterator[bytes]]


def _zip_time(epoch: float) -> tuple:
    stamp = time.localtime(epoch)[:6]
    return stamp if stamp >= ZIP_EPOCH else ZIP_EPOCH


class DownloadStreamer:
    """Serves files and directory archives out of a repository."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.cache_dir = Path(settings.download_cache_dir)
        self.ttl = settings.download_cache_ttl_seconds
        self.sweep_interval = settings.download_cache_sweep_interval_seconds
        # cache key -> in-flight materialization
        self._inflight: Dict[str, asyncio.Task] = {}
        self._last_sweep = 0.0

    # -------------------------------------------------------------------------
    # Single files
    # -------------------------------------------------------------------------

    async def open_file(
        self,
        handle: RepositoryHandle,
        path: str,
        commit: str | None = None,
        range_header: str | None = None,
        disposition: str = "attachment",
    ) -> DownloadPayload:
        """Build the streaming payload for ``path`` (as of ``commit``)."""
        rel = to_repo_path(path)
        if not rel:
            raise ValidationError("Path must name a file")
        filename = rel.rpartition("/")[2]
        headers = {
            "Accept-Ranges": "bytes",
            "Content-Disposition": content_disposition(filename, disposition),
        }
        media_type = guess_media_type(filename)
        store = handle.store

        if store.serves_live(commit):
            target = store.live_path(rel)
            if not target.exists():
                raise NotFoundError(f"File not found: {rel}")
            if not target.is_file():
                raise ValidationError(f"Not a file: {rel}")
            return self._file_payload(target, range_header, headers, media_type)

        ref = await handle.history.resolve_commit(commit or "HEAD")
        await store.require_blob(rel, ref)

        if await handle.lfs.is_pointer(rel, ref):
            cached = await self.materialize(handle, rel, ref)
            try:
                return self._file_payload(cached, range_header, headers, media_type)
            except FileNotFoundError:
                # swept between materialize and stat
                logger.info(f"Cache entry for {rel}@{ref[:8]} vanished; materializing again")
                cached = await self.materialize(handle, rel, ref)
                return self._file_payload(cached, range_header, headers, media_type)

        total = int((await handle.git.run("cat-file", "-s", f"{ref}:{rel}")).text.strip())
        byte_range = parse_range(range_header, total)
        source = handle.git.stream("cat-file", "blob", f"{ref}:{rel}")
        if byte_range is None:
            headers["Content-Length"] = str(total)
            return DownloadPayload(200, source, media_type, headers)

        headers["Content-Length"] = str(byte_range.length)
        headers["Content-Range"] = byte_range.content_range()
        body = skip_then_limit(source, byte_range.start, byte_range.end)
        return DownloadPayload(206, body, media_type, headers)

    def _file_payload(
        self,
        path: Path,
        range_header: str | None,
        headers: dict[str, str],
        media_type: str,
    ) -> DownloadPayload:
        total = path.stat().st_size
        byte_range = parse_range(range_header, total)
        if byte_range is None:
            headers["Content-Length"] = str(total)
            return DownloadPayload(200, iter_file(path), media_type, headers)
        headers["Content-Length"] = str(byte_range.length)
        headers["Content-Range"] = byte_range.content_range()
        body = iter_file(path, start=byte_range.start, length=byte_range.length)
        return DownloadPayload(206, body, media_type, headers)

    # -------------------------------------------------------------------------
    # Materialization cache
    # -------------------------------------------------------------------------

    def cache_path(self, handle: RepositoryHandle, rel: str, commit: str) -> Path:
        key = hashlib.sha256(f"{commit}:{rel}".encode("utf-8")).hexdigest()
        return self.cache_dir / handle.digest / f"{key}.bin"

    def _is_fresh(self, path: Path) -> bool:
        try:
            return time.time() - path.stat().st_mtime < self.ttl
        except FileNotFoundError:
            return False

    async def materialize(self, handle: RepositoryHandle, rel: str, commit: str) -> Path:
        """
        Smudge the lfs content at ``commit:rel`` into the cache.

        ``commit`` must be a full hash so entries never go stale. Concurrent
        requests for the same entry share one smudge.
        """
        target = self.cache_path(handle, rel, commit)
        if self._is_fresh(target):
            logger.debug(f"download cache hit: {rel}@{commit[:8]}")
            return target

        key = str(target)
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._materialize(handle, rel, commit, target))
            self._inflight[key] = task
            task.add_done_callback(lambda _: self._inflight.pop(key, None))
        return await asyncio.shield(task)

    async def _materialize(self, handle: RepositoryHandle, rel: str, commit: str, target: Path) -> Path:
        try:
            size = await write_stream(handle.lfs.smudge(rel, commit), target)
        except GitCommandError as e:
            raise InternalError(f"Failed to materialize {rel}: {e.stderr.strip()}") from e
        logger.info(f"Materialized {rel}@{commit[:8]} ({size} bytes)")
        await self.maybe_sweep()
        return target

    async def maybe_sweep(self) -> int:
        """Sweep the cache if the sweep interval has passed since the last one."""
        now = time.monotonic()
        if now - self._last_sweep < self.sweep_interval:
            return 0
        self._last_sweep = now
        return await self.sweep_cache()

    async def sweep_cache(self) -> int:
        """Remove cache files older than the TTL. Best effort."""
        return await asyncio.to_thread(self._sweep_cache)

    def _sweep_cache(self) -> int:
        if not self.cache_dir.exists():
            return 0
        cutoff = time.time() - self.ttl
        removed = 0
        for path in self.cache_dir.rglob("*"):
            try:
                if path.is_file() and path.stat().st_mtime < cutoff:
                    path.unlink()
                    removed += 1
            except FileNotFoundError:
                continue
        if removed:
            logger.info(f"Swept {removed} expired download cache entries")
        return removed

    # -------------------------------------------------------------------------
    # Directory archives
    # -------------------------------------------------------------------------

    async def stream_archive(
        self,
        handle: RepositoryHandle,
        dir_path: str,
        commit: str | None = None,
    ) -> tuple[str, AsyncIterator[bytes]]:
        """
        Validate ``dir_path`` and return (archive filename, ZIP byte stream).

        Validation happens before the first byte is produced, so missing
        directories surface as errors rather than truncated archives.
        """
        rel = to_repo_path(dir_path)
        prefix = rel.rpartition("/")[2] or "root"
        store = handle.store

        if store.serves_live(commit):
            base = store.live_path(rel)
            if not base.exists():
                raise NotFoundError(f"Directory not found: {rel or '/'}")
            if not base.is_dir():
                raise ValidationError(f"Not a directory: {rel}")
            entries = await asyncio.to_thread(self._disk_entries, base, prefix)
        else:
            ref = await handle.history.resolve_commit(commit or "HEAD")
            kind = await store.object_type(rel, ref)
            if kind is None:
                raise NotFoundError(f"Directory not found: {rel or '/'}")
            if kind != "tree":
                raise ValidationError(f"Not a directory: {rel}")
            entries = await self._tree_entries(handle, rel, ref, prefix)

        return f"{prefix}.zip", self._zip_stream(entries)

    def _disk_entries(self, base: Path, prefix: str) -> list[ArchiveEntry]:
        entries = []
        for dirpath, dirnames, filenames in os.walk(base):
            dirnames[:] = sorted(d for d in dirnames if not is_hidden(d))
            for filename in sorted(filenames):
                if is_hidden(filename):
                    continue
                path = Path(dirpath) / filename
                stat = path.stat()
                name = f"{prefix}/{path.relative_to(base).as_posix()}"
                entries.append(ArchiveEntry(
                    name=name,
                    size=stat.st_size,
                    date_time=_zip_time(stat.st_mtime),
                    open=lambda p=path: iter_file(p),
                ))
        return entries

    async def _tree_entries(
        self,
        handle: RepositoryHandle,
        rel: str,
        ref: str,
        prefix: str,
    ) -> list[ArchiveEntry]:
        entries = []
        now = _zip_time(time.time())
        for path, size in await handle.store.list_tree_files(rel, ref):
            if is_hidden(path.rpartition("/")[2]):
                continue
            inner = path[len(rel) + 1:] if rel else path
            maybe_pointer = handle.lfs.active and size <= POINTER_MAX_SIZE
            entries.append(ArchiveEntry(
                name=f"{prefix}/{inner}",
                size=None if maybe_pointer else size,
                date_time=now,
                open=lambda p=path: handle.store.open_blob(p, ref),
            ))
        return entries

    async def _zip_stream(self, entries: list[ArchiveEntry]) -> AsyncIterator[bytes]:
        sink = _ZipSink()
        with zipfile.ZipFile(sink, mode="w", compression=zipfile.ZIP_DEFLATED) as archive:
            for entry in entries:
                info = zipfile.ZipInfo(entry.name, date_time=entry.date_time)
                info.compress_type = zipfile.ZIP_DEFLATED
                if entry.size is not None:
                    info.file_size = entry.size
                force_zip64 = entry.size is None or entry.size >= ZIP64_THRESHOLD
                with archive.open(info, mode="w", force_zip64=force_zip64) as member:
                    source = entry.open()
                    async with aclosing(source):
                        async for chunk in source:
                            member.write(chunk)
                            data = sink.drain()
                            if data:
                                yield data
                data = sink.drain()
                if data:
                    yield data
        data = sink.drain()
        if data:
            yield data
