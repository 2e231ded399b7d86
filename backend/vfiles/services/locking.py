"""
Repository mutation locking.

Serializes the stage+commit sequence of mutating storage operations:
- one exclusive asyncio.Lock per key ("{mode}:{root}" for repositories,
  "upload:{id}" for upload completion)
- locks are created lazily and dropped once nobody holds or awaits them
- optional acquisition timeout
- context manager for automatic release

Reads never take these locks.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import AsyncIterator, Dict, Optional

from vfiles.errors import InternalError

logger = logging.getLogger(__name__)


class LockTimeoutError(InternalError):
    """Raised when lock acquisition times out."""
    pass


@dataclass
class LockHolder:
    """Describes who currently holds a key."""
    key: str
    reason: str
    acquired_at: datetime


class RepositoryLockManager:
    """
    Manages one exclusive lock per key.

    Different keys never block each other, so mutations against different
    repositories are fully independent.
    """

    def __init__(self):
        # key -> asyncio.Lock
        self._mutexes: Dict[str, asyncio.Lock] = {}
        # key -> current holder, for diagnostics
        self._holders: Dict[str, LockHolder] = {}
        # key -> tasks holding or waiting on the mutex
        self._users: Dict[str, int] = {}

    def _get_mutex(self, key: str) -> asyncio.Lock:
        """Get or create mutex for key."""
        if key not in self._mutexes:
            self._mutexes[key] = asyncio.Lock()
        return self._mutexes[key]

    def _release_mutex(self, key: str) -> None:
        remaining = self._users.get(key, 0) - 1
        if remaining > 0:
            self._users[key] = remaining
            return
        self._users.pop(key, None)
        self._mutexes.pop(key, None)

    def keys(self) -> list[str]:
        """Keys with a live mutex."""
        return sorted(self._mutexes)

    def is_locked(self, key: str) -> bool:
        mutex = self._mutexes.get(key)
        return mutex is not None and mutex.locked()

    def get_holder(self, key: str) -> Optional[LockHolder]:
        return self._holders.get(key)

    @asynccontextmanager
    async def lock(
        self,
        key: str,
        reason: str = "",
        timeout: Optional[float] = None,
    ) -> AsyncIterator[LockHolder]:
        """
        Hold the exclusive lock for ``key`` for the duration of the block.

        Args:
            key: Lock key
            reason: Free text recorded for diagnostics
            timeout: Seconds to wait (None = wait forever)

        Raises:
            LockTimeoutError: If the lock was not acquired within timeout
        """
        mutex = self._get_mutex(key)
        self._users[key] = self._users.get(key, 0) + 1
        try:
            try:
                await asyncio.wait_for(mutex.acquire(), timeout=timeout)
            except asyncio.TimeoutError:
                current = self._holders.get(key)
                held_by = f" (held for {current.reason})" if current and current.reason else ""
                raise LockTimeoutError(f"Timed out waiting for lock on {key}{held_by}")

            holder = LockHolder(key=key, reason=reason, acquired_at=datetime.now(timezone.utc))
            self._holders[key] = holder
            try:
                yield holder
            finally:
                self._holders.pop(key, None)
                mutex.release()
        finally:
            self._release_mutex(key)
