"""
Git command port.

Every interaction with the git object database goes through a GitRunner:
- run(): buffered stdout/stderr, for small outputs (hashes, listings, logs)
- stream(): stdout yielded incrementally, for blob contents of any size
- both accept stdin as bytes or as an async iterable of bytes

A non-accepted exit status raises GitCommandError carrying the stderr text.
Closing a stream() iterator early kills the child process.
"""
from __future__ import annotations

import asyncio
import logging
import os
from contextlib import suppress
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterable, AsyncIterator, Mapping, Protocol, Sequence, Union

logger = logging.getLogger(__name__)

STREAM_CHUNK_SIZE = 256 * 1024

GitInput = Union[bytes, AsyncIterable[bytes], None]


class GitCommandError(Exception):
    """Raised when a git child process exits with an unexpected status."""

    def __init__(self, args: Sequence[str], returncode: int, stderr: str):
        self.command = list(args)
        self.returncode = returncode
        self.stderr = stderr
        subcommand = self.command[0] if self.command else ""
        super().__init__(f"git {subcommand} failed ({returncode}): {stderr.strip()}")


@dataclass
class GitResult:
    args: list[str]
    returncode: int
    stdout: bytes
    stderr: bytes

    @property
    def text(self) -> str:
        return self.stdout.decode("utf-8", errors="replace")

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class GitPort(Protocol):
    """The narrow surface the storage services depend on."""

    async def run(
        self,
        *args: str,
        env: Mapping[str, str] | None = None,
        input: GitInput = None,
        ok_codes: Sequence[int] = (0,),
    ) -> GitResult: ...

    def stream(
        self,
        *args: str,
        env: Mapping[str, str] | None = None,
        input: GitInput = None,
        chunk_size: int = STREAM_CHUNK_SIZE,
    ) -> AsyncIterator[bytes]: ...


async def _iterate(source: GitInput) -> AsyncIterator[bytes]:
    if isinstance(source, (bytes, bytearray)):
        yield bytes(source)
        return
    async for chunk in source:
        yield chunk


async def _feed(process: asyncio.subprocess.Process, source: GitInput) -> None:
    """Copy ``source`` into the child's stdin, then close it."""
    stdin = process.stdin
    try:
        async for chunk in _iterate(source):
            if not chunk:
                continue
            stdin.write(chunk)
            await stdin.drain()
    except (BrokenPipeError, ConnectionResetError):
        # Child exited early; its exit status reports why.
        return
    finally:
        if not stdin.is_closing():
            stdin.close()


def _kill(process: asyncio.subprocess.Process) -> None:
    if process.returncode is None:
        with suppress(ProcessLookupError):
            process.kill()


class GitRunner:
    """Runs git child processes against one repository directory."""

    def __init__(
        self,
        cwd: Path,
        git_binary: str = "git",
        env: Mapping[str, str] | None = None,
    ):
        self.cwd = Path(cwd)
        self.git_binary = git_binary
        self._base_env = dict(env or {})

    def _environ(self, extra: Mapping[str, str] | None) -> dict[str, str]:
        env = os.environ.copy()
        env["GIT_TERMINAL_PROMPT"] = "0"
        env.update(self._base_env)
        if extra:
            env.update(extra)
        return env

    async def _spawn(
        self,
        args: Sequence[str],
        env: Mapping[str, str] | None,
        with_stdin: bool,
    ) -> asyncio.subprocess.Process:
        logger.debug(f"git {' '.join(args)} (cwd={self.cwd})")
        try:
            return await asyncio.create_subprocess_exec(
                self.git_binary,
                *args,
                stdin=asyncio.subprocess.PIPE if with_stdin else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(self.cwd),
                env=self._environ(env),
            )
        except OSError as e:
            raise GitCommandError(args, -1, str(e)) from e

    async def run(
        self,
        *args: str,
        env: Mapping[str, str] | None = None,
        input: GitInput = None,
        ok_codes: Sequence[int] = (0,),
    ) -> GitResult:
        """Run git to completion and return its buffered output."""
        process = await self._spawn(args, env, input is not None)
        try:
            if input is None or isinstance(input, (bytes, bytearray)):
                stdout, stderr = await process.communicate(input)
            else:
                stdout, stderr, _ = await asyncio.gather(
                    process.stdout.read(),
                    process.stderr.read(),
                    _feed(process, input),
                )
                await process.wait()
        except BaseException:
            _kill(process)
            raise

        if process.returncode not in ok_codes:
            raise GitCommandError(args, process.returncode, stderr.decode("utf-8", errors="replace"))
        return GitResult(list(args), process.returncode, stdout, stderr)

    async def stream(
        self,
        *args: str,
        env: Mapping[str, str] | None = None,
        input: GitInput = None,
        chunk_size: int = STREAM_CHUNK_SIZE,
    ) -> AsyncIterator[bytes]:
        """Yield git's stdout incrementally.

        The child is killed if the consumer stops iterating before the end
        of output, so abandoned downloads do not keep processes alive.
        """
        process = await self._spawn(args, env, input is not None)
        feeder = asyncio.create_task(_feed(process, input)) if input is not None else None
        stderr_task = asyncio.create_task(process.stderr.read())
        finished = False
        try:
            while True:
                chunk = await process.stdout.read(chunk_size)
                if not chunk:
                    break
                yield chunk
            if feeder is not None:
                await feeder
            returncode = await process.wait()
            stderr = await stderr_task
            finished = True
            if returncode != 0:
                raise GitCommandError(args, returncode, stderr.decode("utf-8", errors="replace"))
        finally:
            if not finished:
                _kill(process)
                if feeder is not None:
                    feeder.cancel()
                stderr_task.cancel()
                with suppress(ProcessLookupError, asyncio.CancelledError):
                    await process.wait()
