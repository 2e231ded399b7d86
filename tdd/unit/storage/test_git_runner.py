"""
Unit tests for GitRunner against a real git binary.
"""
import pytest

from shared import chunks
from vfiles.services.git_runner import GitCommandError, GitRunner


@pytest.fixture
def git(temp_dir):
    return GitRunner(temp_dir)


class TestRun:
    async def test_buffered_output(self, git):
        result = await git.run("--version")
        assert result.ok
        assert result.text.startswith("git version")

    async def test_failure_carries_stderr(self, git):
        with pytest.raises(GitCommandError) as exc_info:
            await git.run("rev-parse", "HEAD")
        assert exc_info.value.returncode != 0
        assert exc_info.value.command == ["rev-parse", "HEAD"]
        assert exc_info.value.stderr

    async def test_ok_codes(self, git):
        result = await git.run("rev-parse", "--verify", "--quiet", "HEAD", ok_codes=(0, 1, 128))
        assert not result.ok

    async def test_bytes_input(self, git):
        await git.run("init", "-q")
        result = await git.run("hash-object", "-w", "--stdin", input=b"hello\n")
        assert result.text.strip() == "ce013625030ba8dba906f756967f9e9ca394464a"

    async def test_streamed_input(self, git):
        await git.run("init", "-q")
        result = await git.run("hash-object", "-w", "--stdin", input=chunks(b"hel", b"lo\n"))
        assert result.text.strip() == "ce013625030ba8dba906f756967f9e9ca394464a"

    async def test_missing_binary(self, temp_dir):
        runner = GitRunner(temp_dir, git_binary="definitely-not-git-binary")
        with pytest.raises(GitCommandError) as exc_info:
            await runner.run("--version")
        assert exc_info.value.returncode == -1


class TestStream:
    async def test_streams_blob(self, git):
        await git.run("init", "-q")
        payload = bytes(range(256)) * 1024
        sha = (await git.run("hash-object", "-w", "--stdin", input=payload)).text.strip()
        data = b"".join([c async for c in git.stream("cat-file", "blob", sha, chunk_size=4096)])
        assert data == payload

    async def test_failure_raised_at_end(self, git):
        await git.run("init", "-q")
        with pytest.raises(GitCommandError):
            async for _ in git.stream("cat-file", "blob", "f" * 40):
                pass

    async def test_early_close(self, git):
        await git.run("init", "-q")
        sha = (await git.run("hash-object", "-w", "--stdin", input=b"x" * 500_000)).text.strip()
        stream = git.stream("cat-file", "blob", sha, chunk_size=1024)
        assert await stream.__anext__()
        await stream.aclose()
