"""
Chunked, resumable uploads.

Session layout on disk::

    <upload_temp_dir>/<repository digest>/<upload_id>/session.json
    <upload_temp_dir>/<repository digest>/<upload_id>/chunk_<index>.part

The upload id is a hash of (target path, size, source mtime), so re-running
init with the same facts finds the same directory and the chunks already
received. Expired sessions are swept before each init.
"""
from __future__ import annotations

import asyncio
import hashlib
import logging
import math
import os
import re
import shutil
import time
from pathlib import Path
from typing import AsyncIterator

from pydantic import ValidationError as PydanticValidationError

from vfiles.config import Settings
from vfiles.errors import (
    ConflictError,
    NotFoundError,
    PayloadTooLargeError,
    ValidationError,
)
from vfiles.models import Author, UploadInit, UploadSession
from vfiles.services.locking import RepositoryLockManager
from vfiles.services.repository import RepositoryHandle
from vfiles.services.streams import Content, iter_file, write_stream
from vfiles.utils.validation import (
    require_allowed_path,
    resolve_in_root,
    to_repo_path,
    validate_upload_id,
    validate_upload_target,
)

logger = logging.getLogger(__name__)

SESSION_FILE = "session.json"
DEFAULT_MESSAGE = "Upload file (chunked)"
MISSING_REPORT_LIMIT = 10

_CHUNK_NAME = re.compile(r"^chunk_(\d+)\.part$")


def compute_upload_id(target_path: str, size: int, last_modified: int | None) -> str:
    key = f"{target_path}|{size}|{last_modified or 0}"
    return hashlib.sha256(key.encode("utf-8")).hexdigest()


class UploadSessionManager:
    """
    Drives the init -> chunk -> complete protocol.

    Chunk writes for one session may run concurrently; each lands in its own
    file through an atomic rename. ``complete`` is serialized per upload id and
    then joins the repository's mutation lock through ``save_file``.
    """

    def __init__(self, settings: Settings, locks: RepositoryLockManager):
        self.settings = settings
        self.locks = locks
        self.root = Path(settings.upload_temp_dir)

    @property
    def chunk_size(self) -> int:
        return min(max(1, self.settings.upload_chunk_size), self.settings.upload_max_chunk_size)

    # -------------------------------------------------------------------------
    # Paths and session persistence
    # -------------------------------------------------------------------------

    def session_dir(self, handle: RepositoryHandle, upload_id: str) -> Path:
        return self.root / handle.digest / upload_id

    def chunk_path(self, handle: RepositoryHandle, upload_id: str, index: int) -> Path:
        return self.session_dir(handle, upload_id) / f"chunk_{index}.part"

    def load_session(self, handle: RepositoryHandle, upload_id: str) -> UploadSession | None:
        path = self.session_dir(handle, upload_id) / SESSION_FILE
        try:
            return UploadSession.model_validate_json(path.read_bytes())
        except FileNotFoundError:
            return None
        except PydanticValidationError:
            logger.warning(f"Discarding unreadable upload session {upload_id}")
            return None

    async def _save_session(self, handle: RepositoryHandle, session: UploadSession) -> None:
        path = self.session_dir(handle, session.upload_id) / SESSION_FILE
        await write_stream(session.model_dump_json().encode("utf-8"), path)

    def received_chunks(self, handle: RepositoryHandle, session: UploadSession) -> list[int]:
        directory = self.session_dir(handle, session.upload_id)
        received = set()
        try:
            names = os.listdir(directory)
        except FileNotFoundError:
            return []
        for name in names:
            match = _CHUNK_NAME.match(name)
            if match:
                index = int(match.group(1))
                if index < session.total_chunks:
                    received.add(index)
        return sorted(received)

    # -------------------------------------------------------------------------
    # Protocol
    # -------------------------------------------------------------------------

    async def init(
        self,
        handle: RepositoryHandle,
        target_path: str,
        size: int,
        last_modified: int | None = None,
        mime: str | None = None,
    ) -> UploadInit:
        """
        Start or resume an upload of ``size`` bytes to ``target_path``.

        Returns:
            UploadInit with the server-dictated chunk size and the indices
            already received for this (path, size, mtime)
        """
        await self.sweep_expired()

        rel = to_repo_path(target_path)
        filename = rel.rpartition("/")[2]
        validate_upload_target(filename, mime, self.settings.allowed_file_types)
        resolve_in_root(handle.root, rel)
        require_allowed_path(rel, self.settings.allowed_path_prefixes)
        if size < 0:
            raise ValidationError("size must not be negative")
        if size > self.settings.max_file_size:
            raise PayloadTooLargeError(
                f"File too large, maximum is {self.settings.max_file_size // (1024 * 1024)}MB"
            )

        chunk_size = self.chunk_size
        total_chunks = max(1, math.ceil(size / chunk_size))
        upload_id = compute_upload_id(rel, size, last_modified)
        now = time.time()

        existing = self.load_session(handle, upload_id)
        if existing is not None and not existing.matches(rel, size, chunk_size):
            logger.info(f"Upload session {upload_id[:12]} changed shape; restarting it")
            await asyncio.to_thread(shutil.rmtree, self.session_dir(handle, upload_id), True)
            existing = None

        session = UploadSession(
            upload_id=upload_id,
            target_path=rel,
            filename=filename,
            size=size,
            mime=mime,
            last_modified=last_modified,
            chunk_size=chunk_size,
            total_chunks=total_chunks,
            created_at=existing.created_at if existing else now,
            updated_at=now,
        )
        await self._save_session(handle, session)
        received = self.received_chunks(handle, session)
        return UploadInit(
            upload_id=upload_id,
            chunk_size=chunk_size,
            total_chunks=total_chunks,
            received=received,
        )

    async def put_chunk(
        self,
        handle: RepositoryHandle,
        upload_id: str,
        index: int,
        data: Content,
    ) -> int:
        """
        Store chunk ``index``. Re-sending an index replaces it.

        Returns:
            Number of bytes stored
        """
        upload_id = validate_upload_id(upload_id)
        if index < 0:
            raise ValidationError("Invalid chunk index")
        session = self.load_session(handle, upload_id)
        if session is None:
            raise NotFoundError("Upload session not found or expired")
        if index >= session.total_chunks:
            raise ValidationError(f"Chunk index {index} out of range (0..{session.total_chunks - 1})")

        limit = min(session.chunk_length(index), self.settings.upload_max_chunk_size)
        target = self.chunk_path(handle, upload_id, index)
        try:
            written = await write_stream(data, target, max_size=limit, allow_empty=False)
        except PayloadTooLargeError:
            raise PayloadTooLargeError(f"Chunk {index} exceeds {limit} bytes")
        except ValidationError:
            raise ValidationError("Empty chunk")

        session.updated_at = time.time()
        await self._save_session(handle, session)
        return written

    async def complete(
        self,
        handle: RepositoryHandle,
        upload_id: str,
        message: str | None = None,
        author: Author | None = None,
    ) -> str:
        """
        Assemble the chunks in index order and commit the file.

        Raises:
            NotFoundError: If the session does not exist (or already completed)
            ConflictError: If chunks are missing; lists up to 10 of them
                or their combined size differs from the declared size
            PathNotAllowedError: If the target is no longer writable
        """
        upload_id = validate_upload_id(upload_id)
        async with self.locks.lock(f"upload:{upload_id}", reason="complete"):
            session = self.load_session(handle, upload_id)
            if session is None:
                raise NotFoundError("Upload session not found or expired")
            self._revalidate(handle, session)

            received = set(self.received_chunks(handle, session))
            # an empty file has no chunk to send
            expected = range(session.total_chunks) if session.size else range(0)
            missing = [i for i in expected if i not in received]
            if missing:
                shown = ", ".join(str(i) for i in missing[:MISSING_REPORT_LIMIT])
                raise ConflictError(f"Missing chunks ({len(missing)}): {shown}")
            stored = sum(self.chunk_path(handle, upload_id, i).stat().st_size for i in expected)
            if stored != session.size:
                raise ConflictError(f"Received {stored} bytes, expected {session.size}")

            sha = await handle.store.save_file(
                session.target_path,
                self._assemble(handle, session),
                message or DEFAULT_MESSAGE,
                author,
            )

            await asyncio.to_thread(shutil.rmtree, self.session_dir(handle, upload_id), True)
            logger.info(f"Upload {upload_id[:12]} completed as {sha[:8]} ({session.target_path})")
            return sha

    def _revalidate(self, handle: RepositoryHandle, session: UploadSession) -> None:
        """Re-apply the init-time target checks to a descriptor read back from disk."""
        rel = to_repo_path(session.target_path)
        if rel != session.target_path or not rel:
            raise ValidationError("Invalid upload target")
        validate_upload_target(rel.rpartition("/")[2], session.mime, self.settings.allowed_file_types)
        resolve_in_root(handle.root, rel)
        require_allowed_path(rel, self.settings.allowed_path_prefixes)
        if session.size > self.settings.max_file_size:
            raise PayloadTooLargeError(
                f"File too large, maximum is {self.settings.max_file_size // (1024 * 1024)}MB"
            )

    async def _assemble(self, handle: RepositoryHandle, session: UploadSession) -> AsyncIterator[bytes]:
        for index in range(session.total_chunks if session.size else 0):
            async for chunk in iter_file(self.chunk_path(handle, session.upload_id, index)):
                yield chunk

    # -------------------------------------------------------------------------
    # Garbage collection
    # -------------------------------------------------------------------------

    async def sweep_expired(self) -> int:
        """Delete sessions idle for longer than the TTL. Best effort."""
        return await asyncio.to_thread(self._sweep_expired)

    def _sweep_expired(self) -> int:
        ttl = self.settings.upload_session_ttl_seconds
        cutoff = time.time() - ttl
        removed = 0
        if not self.root.exists():
            return 0
        for repo_dir in self.root.iterdir():
            if not repo_dir.is_dir():
                continue
            for session_dir in repo_dir.iterdir():
                marker = session_dir / SESSION_FILE
                try:
                    mtime = marker.stat().st_mtime if marker.exists() else session_dir.stat().st_mtime
                except FileNotFoundError:
                    continue
                if mtime < cutoff:
                    shutil.rmtree(session_dir, ignore_errors=True)
                    removed += 1
        if removed:
            logger.info(f"Swept {removed} expired upload sessions")
        return removed
