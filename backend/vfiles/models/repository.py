from enum import Enum


class RepoMode(str, Enum):
    """Repository layouts."""
    WORKTREE = "worktree"
    HEADLESS = "headless"

    @classmethod
    def parse(cls, value: "str | RepoMode") -> "RepoMode":
        if isinstance(value, RepoMode):
            return value
        normalized = value.strip().lower()
        if normalized in ("bare", "headless"):
            return cls.HEADLESS
        if normalized == "worktree":
            return cls.WORKTREE
        raise ValueError(f"Unknown repository mode: {value}")
