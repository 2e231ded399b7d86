"""
Commit history, diffs and commit lookups.

Log output is requested with ASCII unit/record separators (0x1f/0x1e) as
field and record delimiters, so commit messages containing any printable
punctuation, tabs or newlines parse unambiguously.
"""
from __future__ import annotations

import asyncio
import logging
import re
from datetime import datetime, timezone
from pathlib import Path

from dulwich.objects import Commit
from dulwich.repo import Repo as DulwichRepo

from vfiles.errors import InternalError, NotFoundError
from vfiles.models import CommitRecord, CommitSummary, FileHistory
from vfiles.services.git_runner import GitCommandError, GitPort
from vfiles.services.query_cache import QueryCache

logger = logging.getLogger(__name__)

FIELD_SEP = "\x1f"
RECORD_SEP = "\x1e"

HISTORY_FORMAT = "--pretty=format:%H%x1f%P%x1f%an%x1f%ae%x1f%ct%x1f%B%x1e"
SUMMARY_FORMAT = "--pretty=format:%H%x1f%an%x1f%ct%x1f%s"

_IDENTITY = re.compile(r"^(.*?)\s*<([^>]*)>\s*$")


def iso_timestamp(epoch: int | float) -> str:
    return datetime.fromtimestamp(int(epoch), tz=timezone.utc).isoformat()


def parse_log_records(output: str) -> list[CommitRecord]:
    """Parse ``git log`` output produced with HISTORY_FORMAT."""
    commits = []
    for record in output.split(RECORD_SEP):
        record = record.lstrip("\n")
        if not record:
            continue
        fields = record.split(FIELD_SEP, 5)
        if len(fields) != 6:
            logger.warning(f"Skipping malformed log record: {record[:80]!r}")
            continue
        sha, parents, name, email, committed, message = fields
        commits.append(CommitRecord(
            hash=sha,
            parent_hashes=parents.split(),
            author_name=name,
            author_email=email,
            committed_at=iso_timestamp(committed),
            message=message.strip(),
        ))
    return commits


def parse_summary(output: str) -> CommitSummary | None:
    output = output.strip("\n")
    if not output:
        return None
    fields = output.split(FIELD_SEP, 3)
    if len(fields) != 4:
        return None
    sha, author, committed, subject = fields
    return CommitSummary(hash=sha, author=author, date=iso_timestamp(committed), message=subject)


def split_identity(raw: str) -> tuple[str, str]:
    match = _IDENTITY.match(raw)
    if match is None:
        return raw.strip(), ""
    return match.group(1), match.group(2)


class HistoryReader:
    """Read-only history queries for one repository. Never takes the mutation lock."""

    def __init__(self, git: GitPort, root: Path, cache: QueryCache | None = None):
        self.git = git
        self.root = Path(root)
        self.cache = cache

    async def resolve_commit(self, commit: str) -> str:
        """Resolve any commit-ish to a full hash.

        Raises:
            NotFoundError: If it does not name a commit
        """
        result = await self.git.run(
            "rev-parse", "--verify", "--quiet", f"{commit}^{{commit}}",
            ok_codes=(0, 1, 128),
        )
        if not result.ok:
            raise NotFoundError(f"Commit not found: {commit}")
        return result.text.strip()

    async def get_file_history(self, path: str, limit: int = 50) -> FileHistory:
        """
        History of ``path``, newest first.

        ``limit`` is passed to git so log output is bounded at the source.
        """
        async def compute() -> FileHistory:
            try:
                result = await self.git.run("log", "-n", str(limit), HISTORY_FORMAT, "--", path)
            except GitCommandError as e:
                raise InternalError(f"Failed to read history for {path}: {e.stderr.strip()}") from e
            commits = parse_log_records(result.text)
            return FileHistory(
                commits=commits,
                current_version=commits[0].hash if commits else "",
                total_count=len(commits),
            )

        if self.cache is None:
            return await compute()
        return await self.cache.get_or_compute(("history", path, limit), compute)

    async def last_commit(self, path: str, commit: str | None = None) -> CommitSummary | None:
        """Most recent commit touching exactly ``path`` (as of ``commit`` if given)."""
        async def compute() -> CommitSummary | None:
            args = ["log", "-n", "1", SUMMARY_FORMAT]
            if commit:
                args.append(commit)
            args += ["--", path]
            try:
                result = await self.git.run(*args)
            except GitCommandError as e:
                raise InternalError(f"Failed to read last commit for {path}: {e.stderr.strip()}") from e
            return parse_summary(result.text)

        if self.cache is None:
            return await compute()
        return await self.cache.get_or_compute(("last_commit", path, commit), compute)

    async def get_file_diff(self, path: str, commit: str, parent: str | None = None) -> str:
        """
        Unified diff of ``path`` introduced by ``commit``.

        With ``parent``, diffs exactly ``parent..commit``; otherwise shows the
        patch ``commit`` introduced against its own parent. Returns git's
        output verbatim, which is empty when the path did not change.
        """
        await self.resolve_commit(commit)
        if parent:
            await self.resolve_commit(parent)
            args = ["diff", "--no-color", "--no-ext-diff", "--unified=3", parent, commit, "--", path]
        else:
            args = ["show", "--no-color", "--no-ext-diff", "--pretty=format:", "--unified=3", commit, "--", path]
        try:
            result = await self.git.run(*args)
        except GitCommandError as e:
            raise InternalError(f"Failed to diff {path} at {commit}: {e.stderr.strip()}") from e
        return result.text.lstrip("\n")

    async def get_commit_details(self, commit_hash: str) -> CommitRecord:
        """Point lookup of a single commit.

        Raises:
            NotFoundError: If the hash does not resolve to a commit
        """
        full = await self.resolve_commit(commit_hash)
        return await asyncio.to_thread(self._read_commit, full)

    def _read_commit(self, sha: str) -> CommitRecord:
        repo = DulwichRepo(str(self.root))
        try:
            obj = repo[sha.encode("ascii")]
        except KeyError:
            raise NotFoundError(f"Commit not found: {sha}")
        finally:
            repo.close()

        if not isinstance(obj, Commit):
            raise NotFoundError(f"Not a commit: {sha}")

        name, email = split_identity(obj.author.decode("utf-8", errors="replace"))
        return CommitRecord(
            hash=obj.id.decode("ascii"),
            parent_hashes=[p.decode("ascii") for p in obj.parents],
            author_name=name,
            author_email=email,
            committed_at=iso_timestamp(obj.commit_time),
            message=obj.message.decode("utf-8", errors="replace").strip(),
        )
