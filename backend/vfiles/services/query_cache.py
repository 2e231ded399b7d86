"""
Git query cache.

Avoids re-running git child processes for read queries while the repository
has not changed. Each entry remembers the repository state token it was
computed under; a lookup only hits when the entry is unexpired and the token
still matches. Mutations clear the cache outright.
"""
from __future__ import annotations

import logging
import time
from collections import OrderedDict
from pathlib import Path
from typing import Any, Callable, Hashable

logger = logging.getLogger(__name__)

_MISSING = object()


def _mtime_token(path: Path) -> str:
    try:
        return str(path.stat().st_mtime_ns)
    except FileNotFoundError:
        return "-"


def repository_state_token(git_dir: Path) -> str:
    """Cheap fingerprint of the repository state, read without spawning git.

    Combines the HEAD file, the loose ref HEAD points at, and the mtimes of
    ``packed-refs`` and the index.
    """
    try:
        head = (git_dir / "HEAD").read_text().strip()
    except FileNotFoundError:
        return "missing"

    ref_value = head
    if head.startswith("ref:"):
        ref_path = git_dir / head[4:].strip()
        try:
            ref_value = ref_path.read_text().strip()
        except FileNotFoundError:
            ref_value = "-"

    return "|".join([
        head,
        ref_value,
        _mtime_token(git_dir / "packed-refs"),
        _mtime_token(git_dir / "index"),
    ])


class QueryCache:
    """TTL + LRU cache keyed by query, validated by a state token."""

    def __init__(
        self,
        state_token: Callable[[], str],
        ttl_seconds: float = 300,
        max_entries: int = 3000,
        enabled: bool = True,
    ):
        self._state_token = state_token
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self.enabled = enabled
        # key -> (token, expires_at, value)
        self._entries: OrderedDict[Hashable, tuple[str, float, Any]] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def token(self) -> str:
        return self._state_token()

    def get(self, key: Hashable, token: str | None = None) -> Any:
        """Return the cached value, or the module sentinel ``_MISSING``."""
        if not self.enabled:
            return _MISSING
        entry = self._entries.get(key)
        if entry is None:
            return _MISSING
        entry_token, expires_at, value = entry
        if expires_at < time.monotonic() or entry_token != (token or self.token()):
            self._entries.pop(key, None)
            return _MISSING
        self._entries.move_to_end(key)
        logger.debug(f"query cache hit: {key!r}")
        return value

    def put(self, key: Hashable, value: Any, token: str | None = None) -> None:
        if not self.enabled:
            return
        self._entries[key] = (token or self.token(), time.monotonic() + self._ttl, value)
        self._entries.move_to_end(key)
        while len(self._entries) > self._max_entries:
            self._entries.popitem(last=False)

    async def get_or_compute(self, key: Hashable, compute: Callable[[], Any]) -> Any:
        """Look up ``key``; on a miss await ``compute()`` and store the result.

        The token is read before computing so a concurrent mutation can only
        make the stored entry stale, never wrongly fresh.
        """
        token = self.token() if self.enabled else ""
        value = self.get(key, token)
        if value is not _MISSING:
            return value
        value = await compute()
        self.put(key, value, token)
        return value

    def clear(self) -> None:
        self._entries.clear()


def is_miss(value: Any) -> bool:
    return value is _MISSING
