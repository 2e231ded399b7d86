# Cross-cutting test utilities shared across all test types

from .mocks import FakeGitCall, FakeGitRunner
from .repo_helpers import blob_at, chunks, commit_count, head_sha, parents_of, tracked_files

__all__ = [
    # Git port mocks
    "FakeGitCall",
    "FakeGitRunner",
    # Repository inspection
    "blob_at",
    "chunks",
    "commit_count",
    "head_sha",
    "parents_of",
    "tracked_files",
]
