"""
Large-file (git-lfs) pointer indirection.

Blobs matching the tracked patterns are stored as small text pointers; the
real bytes live in the lfs side-store and are recovered by piping the pointer
through ``git lfs smudge``.
"""
from __future__ import annotations

import logging
import re
from contextlib import aclosing
from dataclasses import dataclass
from typing import TYPE_CHECKING, AsyncIterator

from vfiles.models import Author
from vfiles.services.git_runner import GitCommandError, GitPort

if TYPE_CHECKING:
    from vfiles.services.object_store import ObjectStore

logger = logging.getLogger(__name__)

POINTER_SIGNATURE = b"version https://git-lfs.github.com/spec/v1"
POINTER_MAX_SIZE = 1024
ATTRIBUTES_PATH = ".gitattributes"
SETUP_MESSAGE = "chore: configure git-lfs"
SYSTEM_AUTHOR = Author(name="VFiles System", email="system@vfiles.local")

_SIZE_LINE = re.compile(rb"^size (\d+)$", re.MULTILINE)
_OID_LINE = re.compile(rb"^oid sha256:([0-9a-f]{64})$", re.MULTILINE)


@dataclass(frozen=True)
class LfsPointer:
    oid: str
    size: int


def is_pointer_data(data: bytes) -> bool:
    return data.startswith(POINTER_SIGNATURE)


def parse_pointer(data: bytes) -> LfsPointer | None:
    """Parse a pointer record; None if ``data`` is not one."""
    if not is_pointer_data(data) or len(data) > POINTER_MAX_SIZE:
        return None
    size = _SIZE_LINE.search(data)
    oid = _OID_LINE.search(data)
    if size is None or oid is None:
        return None
    return LfsPointer(oid=oid.group(1).decode("ascii"), size=int(size.group(1)))


def attribute_line(pattern: str) -> str:
    return f"{pattern} filter=lfs diff=lfs merge=lfs -text"


def merge_attributes(existing: str, patterns: list[str]) -> str:
    """Append lfs attribute lines for patterns not already present."""
    lines = existing.splitlines()
    present = {line.split()[0] for line in lines if line.strip() and not line.startswith("#")}
    missing = [attribute_line(p) for p in patterns if p not in present]
    if not missing:
        return existing
    merged = lines + missing
    return "\n".join(merged) + "\n"


class LargeFileSupport:
    """Pointer detection, smudging and one-time tracking setup for a repository."""

    def __init__(self, git: GitPort, enabled: bool = True, patterns: list[str] | None = None):
        self.git = git
        self.enabled = enabled
        self.patterns = list(patterns or [])
        self.active = False

    async def available(self) -> bool:
        try:
            await self.git.run("lfs", "version")
        except GitCommandError:
            return False
        return True

    async def configure(self, store: "ObjectStore") -> bool:
        """Install lfs for the repository and track the configured patterns.

        Commits ``.gitattributes`` only when it actually changes. When git-lfs
        is not installed, or the layout never runs the clean filter, the
        repository keeps working without indirection.

        Returns:
            True if lfs is active for this repository
        """
        if not self.enabled or not self.patterns:
            return False
        if not await self.available():
            logger.warning("git-lfs is not available; large files will be stored as plain blobs")
            return False

        await store.prepare_lfs()

        existing = b""
        if await store.object_type(ATTRIBUTES_PATH, "HEAD") == "blob":
            existing = await store.get_file_content(ATTRIBUTES_PATH, "HEAD")
        current = existing.decode("utf-8", errors="replace")
        merged = merge_attributes(current, self.patterns)
        if merged != current:
            await store.save_file(ATTRIBUTES_PATH, merged.encode("utf-8"), SETUP_MESSAGE, SYSTEM_AUTHOR)
            logger.info(f"Tracked {len(self.patterns)} lfs patterns in {store.root}")

        # headless writes bypass the clean filter, so stored blobs are never pointers
        self.active = store.cleans_lfs
        return self.active

    async def is_pointer(self, path: str, commit: str) -> bool:
        """Check the first bytes of the blob at ``commit:path``; always False when inactive."""
        if not self.active:
            return False
        head = b""
        source = self.git.stream("cat-file", "blob", f"{commit}:{path}", chunk_size=len(POINTER_SIGNATURE))
        async with aclosing(source):
            async for chunk in source:
                head += chunk
                if len(head) >= len(POINTER_SIGNATURE):
                    break
        return is_pointer_data(head)

    async def read_pointer(self, path: str, commit: str) -> LfsPointer | None:
        result = await self.git.run("cat-file", "blob", f"{commit}:{path}")
        return parse_pointer(result.stdout)

    def smudge(self, path: str, commit: str) -> AsyncIterator[bytes]:
        """Stream the real bytes behind the pointer at ``commit:path``."""
        pointer = self.git.stream("cat-file", "blob", f"{commit}:{path}")
        return self.git.stream("lfs", "smudge", "--", path, input=pointer)
