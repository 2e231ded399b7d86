from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class Author:
    """Identity recorded as both author and committer of a commit."""
    name: str
    email: str

    def env(self) -> dict[str, str]:
        return {
            "GIT_AUTHOR_NAME": self.name,
            "GIT_AUTHOR_EMAIL": self.email,
            "GIT_COMMITTER_NAME": self.name,
            "GIT_COMMITTER_EMAIL": self.email,
        }


@dataclass(frozen=True)
class CommitRecord:
    hash: str
    parent_hashes: list[str]
    author_name: str
    author_email: str
    committed_at: str
    message: str


@dataclass(frozen=True)
class CommitSummary:
    """Projection of a commit used for "last touched by" annotations."""
    hash: str
    author: str
    date: str
    message: str


@dataclass
class FileHistory:
    commits: list[CommitRecord] = field(default_factory=list)
    current_version: str = ""
    total_count: int = 0
