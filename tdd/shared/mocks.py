"""
Mock infrastructure for storage testing.

Provides a scripted implementation of the git command port so parsers,
exit-status handling and argument construction can be unit tested without
spawning git.
"""
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Mapping, Sequence

from vfiles.services.git_runner import STREAM_CHUNK_SIZE, GitCommandError, GitResult


# =============================================================================
# Fake Git Runner
# =============================================================================


@dataclass
class FakeGitCall:
    """One recorded invocation."""
    args: list[str]
    env: dict = field(default_factory=dict)
    input: Any = None
    streamed: bool = False


@dataclass
class _Scripted:
    prefix: tuple[str, ...]
    returncode: int
    stdout: bytes
    stderr: bytes


class FakeGitRunner:
    """Stand-in for GitRunner.

    Responses are scripted by argument prefix; the most recently scripted
    matching prefix wins. Unscripted commands succeed with empty output.

    Usage:
        git = FakeGitRunner()
        git.respond("grep", returncode=1)
        result = await git.run("grep", "-e", "x", ok_codes=(0, 1))
    """

    def __init__(self):
        self.calls: list[FakeGitCall] = []
        self._scripted: list[_Scripted] = []

    def respond(
        self,
        *prefix: str,
        stdout: bytes = b"",
        returncode: int = 0,
        stderr: bytes = b"",
    ) -> None:
        self._scripted.append(_Scripted(tuple(prefix), returncode, stdout, stderr))

    def _lookup(self, args: Sequence[str]) -> _Scripted:
        for scripted in reversed(self._scripted):
            if tuple(args[:len(scripted.prefix)]) == scripted.prefix:
                return scripted
        return _Scripted((), 0, b"", b"")

    def commands(self) -> list[str]:
        """Subcommand of every recorded call, in order."""
        return [call.args[0] for call in self.calls if call.args]

    async def run(
        self,
        *args: str,
        env: Mapping[str, str] | None = None,
        input: Any = None,
        ok_codes: Sequence[int] = (0,),
    ) -> GitResult:
        self.calls.append(FakeGitCall(list(args), dict(env or {}), input))
        scripted = self._lookup(args)
        if scripted.returncode not in ok_codes:
            raise GitCommandError(args, scripted.returncode, scripted.stderr.decode())
        return GitResult(list(args), scripted.returncode, scripted.stdout, scripted.stderr)

    async def stream(
        self,
        *args: str,
        env: Mapping[str, str] | None = None,
        input: Any = None,
        chunk_size: int = STREAM_CHUNK_SIZE,
    ) -> AsyncIterator[bytes]:
        self.calls.append(FakeGitCall(list(args), dict(env or {}), input, streamed=True))
        scripted = self._lookup(args)
        data = scripted.stdout
        for offset in range(0, len(data), chunk_size):
            yield data[offset:offset + chunk_size]
        if scripted.returncode != 0:
            raise GitCommandError(args, scripted.returncode, scripted.stderr.decode())
