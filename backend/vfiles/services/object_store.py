"""
Object store: file-oriented mutations and reads over a git repository.

One interface, two strategies chosen when a repository handle is built:
- WorkTreeStore: files live on disk next to ``.git``; mutations write the
  file, stage it and commit.
- HeadlessStore: bare repository, no on-disk mirror; blobs are written
  straight into the object database and committed through a private
  temporary index.

Every mutation produces exactly one commit and holds the repository lock
only around its stage+commit steps. Reads never lock.
"""
from __future__ import annotations

import asyncio
import hashlib
import logging
import os
import shutil
import tempfile
import uuid
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncIterator

from vfiles.errors import (
    ConflictError,
    InternalError,
    NotFoundError,
    ValidationError,
)
from vfiles.models import Author, EntryKind, FileEntry, RepoMode
from vfiles.services.git_runner import GitCommandError, GitPort
from vfiles.services.history import HistoryReader
from vfiles.services.lfs import LargeFileSupport
from vfiles.services.locking import RepositoryLockManager
from vfiles.services.query_cache import QueryCache
from vfiles.services.streams import Content, iter_content, write_stream
from vfiles.utils.validation import resolve_in_root, to_repo_path

logger = logging.getLogger(__name__)

PLACEHOLDER_NAME = ".gitkeep"
FILE_MODE = "100644"
ZERO_SHA = "0" * 40
EPOCH_ISO = datetime.fromtimestamp(0, tz=timezone.utc).isoformat()
ANNOTATE_CONCURRENCY = 8


def is_hidden(name: str) -> bool:
    """Git bookkeeping entries (.git, .gitkeep, .gitattributes) are never listed."""
    return name.startswith(".git")


def join_path(parent: str, name: str) -> str:
    return f"{parent}/{name}" if parent else name


def _iso_mtime(mtime: float) -> str:
    return datetime.fromtimestamp(mtime, tz=timezone.utc).isoformat()


def _parse_ls_tree(output: bytes) -> list[tuple[str, str, str, int, str]]:
    """Parse ``ls-tree -z [-l]`` output into (mode, type, sha, size, path)."""
    records = []
    for raw in output.split(b"\0"):
        if not raw:
            continue
        meta, _, path = raw.decode("utf-8", errors="surrogateescape").partition("\t")
        parts = meta.split()
        size = int(parts[3]) if len(parts) > 3 and parts[3].isdigit() else 0
        records.append((parts[0], parts[1], parts[2], size, path))
    return records


class ObjectStore(ABC):
    """Common contract of both repository layouts."""

    mode: RepoMode
    # whether writes run the git-lfs clean filter
    cleans_lfs = False

    def __init__(
        self,
        root: Path,
        git: GitPort,
        history: HistoryReader,
        lfs: LargeFileSupport,
        locks: RepositoryLockManager,
        default_author: Author,
        cache: QueryCache | None = None,
    ):
        self.root = Path(root)
        self.git = git
        self.history = history
        self.lfs = lfs
        self.locks = locks
        self.default_author = default_author
        self.cache = cache

    @property
    def lock_key(self) -> str:
        return f"{self.mode.value}:{self.root}"

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    @abstractmethod
    async def save_file(self, path: str, content: Content, message: str, author: Author | None = None) -> str:
        """Create or overwrite ``path`` and return the new commit hash."""

    @abstractmethod
    async def delete_file(self, path: str, message: str, author: Author | None = None) -> str:
        """Delete a file or a whole subtree in one commit."""

    @abstractmethod
    async def move_path(self, src: str, dst: str, message: str, author: Author | None = None) -> str:
        """Move a file or a whole subtree in one commit."""

    @abstractmethod
    async def create_directory(self, path: str, message: str, author: Author | None = None) -> str:
        """Create a directory by committing an empty placeholder inside it."""

    async def prepare_lfs(self) -> None:
        """Per-layout lfs installation step, run before tracking patterns."""

    async def grep_revision(self) -> str | None:
        """Revision content search runs against; None searches the working tree."""
        return None

    # -------------------------------------------------------------------------
    # Layout specific reads
    # -------------------------------------------------------------------------

    def serves_live(self, commit: str | None) -> bool:
        """True when the current version is read from disk rather than from a tree."""
        return False

    def live_path(self, path: str) -> Path:
        return resolve_in_root(self.root, to_repo_path(path))

    # -------------------------------------------------------------------------
    # Shared helpers
    # -------------------------------------------------------------------------

    def _author(self, author: Author | None) -> Author:
        return author or self.default_author

    @asynccontextmanager
    async def _mutation(self, reason: str) -> AsyncIterator[None]:
        async with self.locks.lock(self.lock_key, reason=reason):
            try:
                yield
            finally:
                if self.cache is not None:
                    self.cache.clear()

    @staticmethod
    def _rel(path: str, allow_root: bool = False) -> str:
        rel = to_repo_path(path)
        if not rel and not allow_root:
            raise ValidationError("Path must not be the repository root")
        return rel

    async def _git(self, *args: str, **kwargs):
        """Run git, re-expressing failures as InternalError."""
        try:
            return await self.git.run(*args, **kwargs)
        except GitCommandError as e:
            raise InternalError(f"git {args[0]} failed: {e.stderr.strip()}") from e

    async def head(self) -> str | None:
        result = await self.git.run("rev-parse", "--verify", "--quiet", "HEAD", ok_codes=(0, 1, 128))
        return result.text.strip() if result.ok else None

    async def object_type(self, path: str, commit: str = "HEAD") -> str | None:
        """``blob``/``tree`` for ``commit:path``, or None if absent."""
        rel = to_repo_path(path)
        spec = f"{commit}:{rel}" if rel else f"{commit}^{{tree}}"
        result = await self.git.run("cat-file", "-t", spec, ok_codes=(0, 1, 128))
        if not result.ok:
            return None
        return result.text.strip()

    async def file_exists(self, path: str, commit: str | None = None) -> bool:
        if self.serves_live(commit):
            return self.live_path(path).is_file()
        return await self.object_type(path, commit or "HEAD") == "blob"

    async def file_size(self, path: str, commit: str | None = None) -> int:
        """Stored size of ``path``; for lfs content this is the real size."""
        if self.serves_live(commit):
            return self.live_path(path).stat().st_size
        rel = self._rel(path)
        commit = commit or "HEAD"
        if await self.lfs.is_pointer(rel, commit):
            pointer = await self.lfs.read_pointer(rel, commit)
            if pointer is not None:
                return pointer.size
        result = await self._git("cat-file", "-s", f"{commit}:{rel}")
        return int(result.text.strip())

    async def require_blob(self, path: str, commit: str) -> str:
        rel = self._rel(path)
        kind = await self.object_type(rel, commit)
        if kind is None:
            raise NotFoundError(f"File not found: {rel}")
        if kind != "blob":
            raise ValidationError(f"Not a file: {rel}")
        return rel

    async def open_blob(self, path: str, commit: str) -> AsyncIterator[bytes]:
        """Stream the blob at ``commit:path``, de-indirecting lfs pointers."""
        if await self.lfs.is_pointer(path, commit):
            source = self.lfs.smudge(path, commit)
        else:
            source = self.git.stream("cat-file", "blob", f"{commit}:{path}")
        try:
            async for chunk in source:
                yield chunk
        except GitCommandError as e:
            raise InternalError(f"Failed to read {path} at {commit}: {e.stderr.strip()}") from e
        finally:
            await source.aclose()

    async def get_file_content(self, path: str, commit: str | None = None) -> bytes:
        """Whole content of ``path``, from disk or from ``commit``.

        Raises:
            NotFoundError: If the file is absent at that commit
        """
        if self.serves_live(commit):
            target = self.live_path(path)
            if not target.is_file():
                raise NotFoundError(f"File not found: {path}")
            return await asyncio.to_thread(target.read_bytes)

        commit = commit or "HEAD"
        rel = await self.require_blob(path, commit)
        return b"".join([chunk async for chunk in self.open_blob(rel, commit)])

    async def list_files(self, dir_path: str = "", commit: str | None = None) -> list[FileEntry]:
        """
        Entries of a directory, directories first then by name.

        Each entry carries its most recent commit touching exactly that path.
        """
        rel = self._rel(dir_path, allow_root=True)
        if self.serves_live(commit):
            entries = await asyncio.to_thread(self._list_disk, rel)
        else:
            entries = await self._list_tree(rel, commit or "HEAD")

        await self._annotate(entries, commit)
        entries.sort(key=FileEntry.sort_key)
        return entries

    def _list_disk(self, rel: str) -> list[FileEntry]:
        target = resolve_in_root(self.root, rel)
        if not target.exists():
            raise NotFoundError(f"Directory not found: {rel or '/'}")
        if not target.is_dir():
            raise ValidationError(f"Not a directory: {rel}")

        entries = []
        with os.scandir(target) as it:
            for item in it:
                if is_hidden(item.name):
                    continue
                try:
                    stat = item.stat()
                except FileNotFoundError:
                    continue
                is_dir = item.is_dir()
                entries.append(FileEntry(
                    name=item.name,
                    path=join_path(rel, item.name),
                    kind=EntryKind.DIRECTORY if is_dir else EntryKind.FILE,
                    size=0 if is_dir else stat.st_size,
                    modified_at=_iso_mtime(stat.st_mtime),
                ))
        return entries

    async def _list_tree(self, rel: str, commit: str) -> list[FileEntry]:
        kind = await self.object_type(rel, commit)
        if kind is None:
            raise NotFoundError(f"Directory not found: {rel or '/'}")
        if kind != "tree":
            raise ValidationError(f"Not a directory: {rel}")

        spec = f"{commit}:{rel}" if rel else commit
        result = await self._git("ls-tree", "-z", "-l", spec)
        entries = []
        for mode, obj_type, _sha, size, name in _parse_ls_tree(result.stdout):
            if is_hidden(name) or obj_type not in ("blob", "tree"):
                continue
            is_dir = obj_type == "tree"
            entries.append(FileEntry(
                name=name,
                path=join_path(rel, name),
                kind=EntryKind.DIRECTORY if is_dir else EntryKind.FILE,
                size=0 if is_dir else size,
            ))
        return entries

    async def _annotate(self, entries: list[FileEntry], commit: str | None) -> None:
        semaphore = asyncio.Semaphore(ANNOTATE_CONCURRENCY)

        async def annotate(entry: FileEntry) -> None:
            async with semaphore:
                entry.last_commit = await self.history.last_commit(entry.path, commit)
            if not entry.modified_at:
                entry.modified_at = entry.last_commit.date if entry.last_commit else EPOCH_ISO

        await asyncio.gather(*(annotate(entry) for entry in entries))

    async def list_tree_files(self, rel: str, commit: str) -> list[tuple[str, int]]:
        """Every file under ``rel`` at ``commit`` as (path, stored size)."""
        args = ["ls-tree", "-r", "-z", "-l", commit]
        if rel:
            args += ["--", rel]
        result = await self._git(*args)
        return [
            (path, size)
            for _mode, obj_type, _sha, size, path in _parse_ls_tree(result.stdout)
            if obj_type == "blob"
        ]


class WorkTreeStore(ObjectStore):
    """Repository with a working tree: files are real files on disk."""

    mode = RepoMode.WORKTREE
    cleans_lfs = True

    @property
    def git_dir(self) -> Path:
        return self.root / ".git"

    @property
    def scratch_dir(self) -> Path:
        """Staging area for incoming content, on the same filesystem as the tree."""
        return self.git_dir / "vfiles-tmp"

    def serves_live(self, commit: str | None) -> bool:
        return commit is None

    async def prepare_lfs(self) -> None:
        await self._git("lfs", "install", "--local")

    async def _commit(self, message: str, author: Author | None) -> str:
        await self._git(
            "commit", "-q", "--allow-empty", "--no-verify", "-m", message,
            env=self._author(author).env(),
        )
        sha = await self.head()
        if sha is None:
            raise InternalError("Commit did not advance HEAD")
        logger.info(f"Committed {sha[:8]} in {self.root}: {message}")
        return sha

    async def _commit_staged(self, paths: list[str], message: str, author: Author | None) -> str:
        """Commit what is staged; on failure put ``paths`` back to their HEAD state."""
        try:
            return await self._commit(message, author)
        except Exception:
            await self._roll_back(paths)
            raise

    async def _roll_back(self, paths: list[str]) -> None:
        try:
            await self._git("reset", "-q", "--", *paths)
            for rel in paths:
                if await self.object_type(rel, "HEAD") is not None:
                    await self._git("checkout", "-q", "HEAD", "--", rel)
                else:
                    await asyncio.to_thread(_remove_path, resolve_in_root(self.root, rel))
        except InternalError as e:
            logger.error(f"Rolling back {', '.join(paths)} in {self.root} failed: {e.message}")
        else:
            logger.warning(f"Rolled back {', '.join(paths)} in {self.root} after a failed commit")

    async def save_file(self, path: str, content: Content, message: str, author: Author | None = None) -> str:
        rel = self._rel(path)
        target = resolve_in_root(self.root, rel)
        if target.is_dir():
            raise ConflictError(f"A directory already exists at {rel}")

        self.scratch_dir.mkdir(parents=True, exist_ok=True)
        staged = self.scratch_dir / uuid.uuid4().hex
        await write_stream(content, staged)
        try:
            async with self._mutation(f"save {rel}"):
                try:
                    target.parent.mkdir(parents=True, exist_ok=True)
                    os.replace(staged, target)
                except (FileExistsError, NotADirectoryError) as e:
                    raise ConflictError(f"A file is in the way of {rel}") from e
                await self._git("add", "--", rel)
                return await self._commit_staged([rel], message, author)
        finally:
            staged.unlink(missing_ok=True)

    async def delete_file(self, path: str, message: str, author: Author | None = None) -> str:
        rel = self._rel(path)
        target = resolve_in_root(self.root, rel)
        async with self._mutation(f"delete {rel}"):
            if not target.exists() and not target.is_symlink():
                raise NotFoundError(f"Path not found: {rel}")
            await self._git("rm", "-r", "-f", "-q", "--ignore-unmatch", "--", rel)
            if target.is_dir() and not target.is_symlink():
                await asyncio.to_thread(shutil.rmtree, target)
            elif target.exists() or target.is_symlink():
                target.unlink()
            return await self._commit_staged([rel], message, author)

    async def move_path(self, src: str, dst: str, message: str, author: Author | None = None) -> str:
        src_rel, dst_rel = self._rel(src), self._rel(dst)
        _check_move(src_rel, dst_rel)
        src_path = resolve_in_root(self.root, src_rel)
        dst_path = resolve_in_root(self.root, dst_rel)
        async with self._mutation(f"move {src_rel} -> {dst_rel}"):
            if not src_path.exists():
                raise NotFoundError(f"Path not found: {src_rel}")
            if dst_path.exists():
                raise ConflictError(f"Destination already exists: {dst_rel}")
            try:
                dst_path.parent.mkdir(parents=True, exist_ok=True)
            except (FileExistsError, NotADirectoryError) as e:
                raise ConflictError(f"A file is in the way of {dst_rel}") from e
            await self._git("mv", "--", src_rel, dst_rel)
            return await self._commit_staged([src_rel, dst_rel], message, author)

    async def create_directory(self, path: str, message: str, author: Author | None = None) -> str:
        rel = self._rel(path)
        target = resolve_in_root(self.root, rel)
        async with self._mutation(f"mkdir {rel}"):
            if target.exists():
                raise ConflictError(f"Already exists: {rel}")
            try:
                target.mkdir(parents=True)
            except (FileExistsError, NotADirectoryError) as e:
                raise ConflictError(f"A file is in the way of {rel}") from e
            (target / PLACEHOLDER_NAME).touch()
            await self._git("add", "--", join_path(rel, PLACEHOLDER_NAME))
            return await self._commit_staged([rel], message, author)


class HeadlessStore(ObjectStore):
    """Bare repository: content only ever exists as git objects."""

    mode = RepoMode.HEADLESS

    @property
    def scratch_work_tree(self) -> Path:
        # update-index insists on a work tree; it is never written to.
        digest = hashlib.sha256(str(self.root).encode("utf-8")).hexdigest()[:16]
        path = Path(tempfile.gettempdir()) / f"vfiles-headless-{digest}"
        path.mkdir(parents=True, exist_ok=True)
        return path

    async def grep_revision(self) -> str | None:
        return await self.head()

    async def _write_blob(self, content: Content) -> str:
        result = await self._git("hash-object", "-w", "--stdin", input=iter_content(content))
        return result.text.strip()

    async def _commit_index(
        self,
        updates: list[tuple[str, str, str]],
        message: str,
        author: Author | None,
    ) -> str:
        """Apply (mode, sha, path) records on top of HEAD and commit.

        Mode ``0`` removes a path. Runs against a private index file so the
        repository never carries a shared staging state between mutations.
        """
        index_file = self.root / f"vfiles-index-{uuid.uuid4().hex}"
        env = {
            "GIT_DIR": str(self.root),
            "GIT_INDEX_FILE": str(index_file),
            "GIT_WORK_TREE": str(self.scratch_work_tree),
            **self._author(author).env(),
        }
        try:
            parent = await self.head()
            if parent:
                await self._git("read-tree", parent, env=env)
            else:
                await self._git("read-tree", "--empty", env=env)

            payload = b"".join(
                f"{mode} {sha}\t{path}".encode("utf-8") + b"\0"
                for mode, sha, path in updates
            )
            await self._git("update-index", "-z", "--index-info", env=env, input=payload)
            tree = (await self._git("write-tree", env=env)).text.strip()

            args = ["commit-tree", tree, "-m", message]
            if parent:
                args += ["-p", parent]
            sha = (await self._git(*args, env=env)).text.strip()
            await self._git("update-ref", "HEAD", sha, parent or ZERO_SHA, env=env)
        finally:
            index_file.unlink(missing_ok=True)

        logger.info(f"Committed {sha[:8]} in {self.root}: {message}")
        return sha

    async def _ensure_parent_is_tree(self, rel: str) -> None:
        parent = rel.rpartition("/")[0]
        while parent:
            kind = await self.object_type(parent, "HEAD")
            if kind == "blob":
                raise ConflictError(f"A file is in the way of {rel}")
            if kind == "tree":
                return
            parent = parent.rpartition("/")[0]

    async def save_file(self, path: str, content: Content, message: str, author: Author | None = None) -> str:
        rel = self._rel(path)
        blob = await self._write_blob(content)
        async with self._mutation(f"save {rel}"):
            if await self.object_type(rel, "HEAD") == "tree":
                raise ConflictError(f"A directory already exists at {rel}")
            await self._ensure_parent_is_tree(rel)
            return await self._commit_index([(FILE_MODE, blob, rel)], message, author)

    async def delete_file(self, path: str, message: str, author: Author | None = None) -> str:
        rel = self._rel(path)
        async with self._mutation(f"delete {rel}"):
            kind = await self.object_type(rel, "HEAD")
            if kind is None:
                raise NotFoundError(f"Path not found: {rel}")
            if kind == "tree":
                doomed = [p for p, _size in await self.list_tree_files(rel, "HEAD")]
            else:
                doomed = [rel]
            return await self._commit_index([("0", ZERO_SHA, p) for p in doomed], message, author)

    async def move_path(self, src: str, dst: str, message: str, author: Author | None = None) -> str:
        src_rel, dst_rel = self._rel(src), self._rel(dst)
        _check_move(src_rel, dst_rel)
        async with self._mutation(f"move {src_rel} -> {dst_rel}"):
            kind = await self.object_type(src_rel, "HEAD")
            if kind is None:
                raise NotFoundError(f"Path not found: {src_rel}")
            if await self.object_type(dst_rel, "HEAD") is not None:
                raise ConflictError(f"Destination already exists: {dst_rel}")
            await self._ensure_parent_is_tree(dst_rel)

            args = ["ls-tree", "-z", "HEAD", "--", src_rel]
            if kind == "tree":
                args.insert(1, "-r")
            records = _parse_ls_tree((await self._git(*args)).stdout)

            updates = []
            for mode, obj_type, sha, _size, path in records:
                if path == src_rel:
                    target = dst_rel
                elif path.startswith(src_rel + "/"):
                    target = dst_rel + path[len(src_rel):]
                else:
                    continue
                updates.append(("0", ZERO_SHA, path))
                updates.append((mode, sha, target))
            if not updates:
                raise NotFoundError(f"Path not found: {src_rel}")
            return await self._commit_index(updates, message, author)

    async def create_directory(self, path: str, message: str, author: Author | None = None) -> str:
        rel = self._rel(path)
        blob = await self._write_blob(b"")
        async with self._mutation(f"mkdir {rel}"):
            if await self.object_type(rel, "HEAD") is not None:
                raise ConflictError(f"Already exists: {rel}")
            await self._ensure_parent_is_tree(rel)
            placeholder = join_path(rel, PLACEHOLDER_NAME)
            return await self._commit_index([(FILE_MODE, blob, placeholder)], message, author)


def _remove_path(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    elif path.exists() or path.is_symlink():
        path.unlink()


def _check_move(src_rel: str, dst_rel: str) -> None:
    if src_rel == dst_rel:
        raise ValidationError("Source and destination are the same")
    if dst_rel.startswith(src_rel + "/"):
        raise ValidationError("Cannot move a directory into itself")


def build_store(mode: RepoMode, **kwargs) -> ObjectStore:
    """Select the strategy for a repository layout."""
    if mode == RepoMode.HEADLESS:
        return HeadlessStore(**kwargs)
    return WorkTreeStore(**kwargs)

