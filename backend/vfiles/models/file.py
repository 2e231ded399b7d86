from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from vfiles.models.commit import CommitSummary


class EntryKind(str, Enum):
    """Kinds of entries a listing can return."""
    FILE = "file"
    DIRECTORY = "directory"


@dataclass
class ContentMatch:
    """A single matching line from a content search."""
    line: int
    text: str


@dataclass
class FileEntry:
    """A file or directory as seen by a listing or a search."""
    name: str
    path: str
    kind: EntryKind
    size: int = 0
    modified_at: str = ""
    last_commit: CommitSummary | None = None
    matches: list[ContentMatch] | None = field(default=None)

    @property
    def is_directory(self) -> bool:
        return self.kind == EntryKind.DIRECTORY

    def sort_key(self) -> tuple[int, str]:
        return (0 if self.is_directory else 1, self.name)
