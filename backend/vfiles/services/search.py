"""
Filename and content search with bounded result sets.
"""
from __future__ import annotations

import logging
from collections import OrderedDict

from vfiles.config import Settings
from vfiles.errors import InternalError
from vfiles.models import ContentMatch, EntryKind, FileEntry
from vfiles.services.git_runner import GitCommandError
from vfiles.services.object_store import is_hidden
from vfiles.services.repository import RepositoryHandle
from vfiles.utils.validation import to_repo_path

logger = logging.getLogger(__name__)

ELLIPSIS = "…"
GREP_NO_MATCH = 1


def truncate_line(text: str, max_length: int) -> str:
    text = text.rstrip("\r")
    if len(text) <= max_length:
        return text
    return text[:max_length] + ELLIPSIS


def parse_grep_output(
    output: bytes,
    tree_prefix: str = "",
    max_files: int = 50,
    max_matches: int = 5,
    max_line_length: int = 240,
) -> "OrderedDict[str, list[ContentMatch]]":
    """Parse ``git grep -z -n`` output: ``path\\0line\\0text\\n`` per match."""
    matches: OrderedDict[str, list[ContentMatch]] = OrderedDict()
    for raw in output.decode("utf-8", errors="replace").split("\n"):
        if not raw:
            continue
        parts = raw.split("\0", 2)
        if len(parts) == 2:
            # older git only swaps the separator after the file name
            parts = [parts[0], *parts[1].split(":", 1)]
        if len(parts) != 3 or not parts[1].isdigit():
            continue
        path, line, text = parts
        if tree_prefix and path.startswith(tree_prefix):
            path = path[len(tree_prefix):]
        if path not in matches:
            if len(matches) >= max_files:
                break
            matches[path] = []
        if len(matches[path]) >= max_matches:
            continue
        matches[path].append(ContentMatch(line=int(line), text=truncate_line(text, max_line_length)))
    return matches


class SearchEngine:
    """Searches one repository's current state."""

    def __init__(self, settings: Settings):
        self.settings = settings

    async def search_by_name(
        self,
        handle: RepositoryHandle,
        query: str,
        base_path: str = "",
        kind: EntryKind | None = None,
    ) -> list[FileEntry]:
        """Case-insensitive substring match on entry names below ``base_path``."""
        needle = query.strip().lower()
        if not needle:
            return []
        limit = self.settings.search_max_results
        results: list[FileEntry] = []
        pending = [to_repo_path(base_path)]
        while pending and len(results) < limit:
            directory = pending.pop(0)
            for entry in await handle.store.list_files(directory):
                if entry.is_directory:
                    pending.append(entry.path)
                if kind is not None and entry.kind != kind:
                    continue
                if needle in entry.name.lower():
                    results.append(entry)
                    if len(results) >= limit:
                        break
        return results

    async def search_by_content(
        self,
        handle: RepositoryHandle,
        query: str,
        base_path: str = "",
        kind: EntryKind | None = None,
    ) -> list[FileEntry]:
        """
        Literal, case-insensitive content search via ``git grep``.

        At most ``search_max_content_files`` files and
        ``search_max_matches_per_file`` lines per file are returned. git grep
        exits with status 1 when nothing matches; that is an empty result.
        """
        if not query.strip() or kind == EntryKind.DIRECTORY:
            return []
        settings = self.settings
        rel = to_repo_path(base_path)

        args = [
            "grep", "-z", "-n", "-I", "-i", "-F",
            "-m", str(settings.search_max_matches_per_file),
            "-e", query,
        ]
        tree_prefix = ""
        revision = await handle.store.grep_revision()
        if revision:
            args.append(revision)
            tree_prefix = f"{revision}:"
        args.append("--")
        if rel:
            args.append(rel)

        try:
            result = await handle.git.run(*args, ok_codes=(0, GREP_NO_MATCH))
        except GitCommandError as e:
            raise InternalError(f"Content search failed: {e.stderr.strip()}") from e
        if result.returncode == GREP_NO_MATCH:
            return []

        found = parse_grep_output(
            result.stdout,
            tree_prefix=tree_prefix,
            max_files=settings.search_max_content_files,
            max_matches=settings.search_max_matches_per_file,
            max_line_length=settings.search_max_line_length,
        )

        entries = []
        for path, matches in found.items():
            name = path.rpartition("/")[2]
            if is_hidden(name):
                continue
            entry = FileEntry(
                name=name,
                path=path,
                kind=EntryKind.FILE,
                size=await self._size(handle, path),
                matches=matches,
            )
            entry.last_commit = await handle.history.last_commit(path)
            entry.modified_at = entry.last_commit.date if entry.last_commit else ""
            entries.append(entry)
        return entries

    async def _size(self, handle: RepositoryHandle, path: str) -> int:
        try:
            return await handle.store.file_size(path)
        except (FileNotFoundError, InternalError):
            return 0
