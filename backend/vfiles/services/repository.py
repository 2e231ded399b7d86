"""
Repository manager.

Keeps one initialized RepositoryHandle per (mode, path). The first caller for
a key starts initialization; concurrent first callers await the same task.
A failed initialization stays cached, so the repository keeps failing until
the process restarts.
"""
from __future__ import annotations

import asyncio
import hashlib
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict

from dulwich.errors import NotGitRepository
from dulwich.objects import Commit, Tree
from dulwich.repo import Repo as DulwichRepo

from vfiles.config import Settings
from vfiles.errors import RepositoryInitError, StorageError
from vfiles.models import Author, RepoMode
from vfiles.services.git_runner import GitPort, GitRunner
from vfiles.services.history import HistoryReader
from vfiles.services.lfs import SYSTEM_AUTHOR, LargeFileSupport
from vfiles.services.locking import RepositoryLockManager
from vfiles.services.object_store import ObjectStore, build_store
from vfiles.services.query_cache import QueryCache, repository_state_token

logger = logging.getLogger(__name__)

INITIAL_COMMIT_MESSAGE = "Initial commit"

GitFactory = Callable[[Path], GitPort]


@dataclass
class RepositoryHandle:
    """One logical repository and the collaborators bound to it."""
    root: Path
    mode: RepoMode
    git: GitPort
    store: ObjectStore
    history: HistoryReader
    lfs: LargeFileSupport
    cache: QueryCache

    @property
    def key(self) -> str:
        return f"{self.mode.value}:{self.root}"

    @property
    def digest(self) -> str:
        """Short stable identifier, safe to use as a directory name."""
        return hashlib.sha256(self.key.encode("utf-8")).hexdigest()[:16]

    @property
    def git_dir(self) -> Path:
        return self.root if self.mode == RepoMode.HEADLESS else self.root / ".git"


def _create_initial_commit(repo: DulwichRepo) -> bytes:
    """Point HEAD at a commit of the empty tree."""
    tree = Tree()
    repo.object_store.add_object(tree)

    identity = f"{SYSTEM_AUTHOR.name} <{SYSTEM_AUTHOR.email}>".encode("utf-8")
    now = int(time.time())
    commit = Commit()
    commit.tree = tree.id
    commit.parents = []
    commit.author = commit.committer = identity
    commit.author_time = commit.commit_time = now
    commit.author_timezone = commit.commit_timezone = 0
    commit.encoding = b"UTF-8"
    commit.message = f"{INITIAL_COMMIT_MESSAGE}\n".encode("utf-8")
    repo.object_store.add_object(commit)

    repo.refs[b"HEAD"] = commit.id
    return commit.id


def init_object_database(root: Path, mode: RepoMode) -> bool:
    """
    Make sure ``root`` holds a git repository of the given layout with at
    least one commit.

    Returns:
        True if anything was created
    """
    root.mkdir(parents=True, exist_ok=True)
    created = False
    if mode == RepoMode.HEADLESS:
        if (root / "HEAD").exists():
            repo = DulwichRepo(str(root))
        else:
            repo = DulwichRepo.init_bare(str(root))
            created = True
    else:
        if (root / ".git").exists():
            repo = DulwichRepo(str(root))
        else:
            repo = DulwichRepo.init(str(root))
            created = True

    try:
        try:
            repo.refs[b"HEAD"]
        except KeyError:
            sha = _create_initial_commit(repo)
            logger.info(f"Created initial commit {sha.decode('ascii')[:8]} in {root}")
            created = True
    finally:
        repo.close()
    return created


class RepositoryManager:
    """Registry of initialized repositories."""

    def __init__(
        self,
        settings: Settings,
        locks: RepositoryLockManager | None = None,
        git_factory: GitFactory | None = None,
    ):
        self.settings = settings
        self.locks = locks or RepositoryLockManager()
        self._git_factory = git_factory or (
            lambda root: GitRunner(root, git_binary=settings.git_binary)
        )
        # key -> initialization task (resolved to the handle)
        self._handles: Dict[str, asyncio.Task] = {}

    @staticmethod
    def key_for(path: Path | str, mode: RepoMode | str) -> tuple[Path, RepoMode, str]:
        root = Path(path).resolve()
        repo_mode = RepoMode.parse(mode)
        if root.name.endswith(".git"):
            repo_mode = RepoMode.HEADLESS
        return root, repo_mode, f"{repo_mode.value}:{root}"

    async def get(self, path: Path | str, mode: RepoMode | str = RepoMode.WORKTREE) -> RepositoryHandle:
        """Return the handle for (mode, path), initializing it on first use.

        Raises:
            RepositoryInitError: If the repository could not be initialized
        """
        root, repo_mode, key = self.key_for(path, mode)
        task = self._handles.get(key)
        if task is None:
            task = asyncio.ensure_future(self._initialize(root, repo_mode))
            self._handles[key] = task
        # shield: a cancelled caller must not cancel the shared initialization
        return await asyncio.shield(task)

    def list_keys(self) -> list[str]:
        return sorted(self._handles)

    def build_handle(self, root: Path, mode: RepoMode) -> RepositoryHandle:
        """Wire the per-repository collaborators without touching disk."""
        settings = self.settings
        git = self._git_factory(root)
        git_dir = root if mode == RepoMode.HEADLESS else root / ".git"
        cache = QueryCache(
            lambda: repository_state_token(git_dir),
            ttl_seconds=settings.git_query_cache_ttl_seconds,
            max_entries=settings.git_query_cache_max_entries,
            enabled=settings.git_query_cache_enabled,
        )
        history = HistoryReader(git, root, cache)
        lfs = LargeFileSupport(git, settings.enable_git_lfs, settings.git_lfs_track_patterns)
        store = build_store(
            mode,
            root=root,
            git=git,
            history=history,
            lfs=lfs,
            locks=self.locks,
            default_author=Author(settings.default_author_name, settings.default_author_email),
            cache=cache,
        )
        return RepositoryHandle(
            root=root, mode=mode, git=git, store=store, history=history, lfs=lfs, cache=cache,
        )

    async def _initialize(self, root: Path, mode: RepoMode) -> RepositoryHandle:
        logger.info(f"Initializing {mode.value} repository at {root}")
        try:
            await asyncio.to_thread(init_object_database, root, mode)
        except (OSError, NotGitRepository) as e:
            logger.error(f"Failed to initialize repository at {root}: {e}")
            raise RepositoryInitError(f"Failed to initialize repository at {root}: {e}") from e

        handle = self.build_handle(root, mode)
        if self.settings.enable_git_lfs:
            try:
                await handle.lfs.configure(handle.store)
            except StorageError as e:
                logger.error(f"git-lfs setup failed for {root}: {e.message}")
                raise RepositoryInitError(f"git-lfs setup failed for {root}: {e.message}") from e
        return handle
