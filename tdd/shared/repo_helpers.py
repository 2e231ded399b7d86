"""
Helpers for inspecting repository state from tests.

They read through the handle's own git port, so they work for both
layouts and never go through the code under test.
"""


async def head_sha(handle) -> str:
    return (await handle.git.run("rev-parse", "HEAD")).text.strip()


async def commit_count(handle) -> int:
    return int((await handle.git.run("rev-list", "--count", "HEAD")).text.strip())


async def parents_of(handle, sha: str) -> list[str]:
    result = await handle.git.run("rev-list", "--parents", "-n", "1", sha)
    return result.text.split()[1:]


async def tracked_files(handle, commit: str = "HEAD") -> list[str]:
    result = await handle.git.run("ls-tree", "-r", "--name-only", "-z", commit)
    return sorted(p for p in result.text.split("\0") if p)


async def blob_at(handle, path: str, commit: str = "HEAD") -> bytes:
    return (await handle.git.run("cat-file", "blob", f"{commit}:{path}")).stdout


async def chunks(*parts: bytes):
    """Async iterable of ``parts``, for streaming-content calls."""
    for part in parts:
        yield part
