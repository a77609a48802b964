"""In-memory session store.

Stores payloads in a plain Python dict guarded by ``asyncio.Lock``.
All data is lost when the process exits and nothing is shared between
worker processes.  This store is primarily useful for tests and local
prototyping.

Classes
-------
- MemoryStore  — dict-backed ephemeral store honouring ``max_age``
"""
from __future__ import annotations

import asyncio
import copy
import time
from typing import Any

from starlette.requests import HTTPConnection

from context_session.stores.base import SessionStore


class MemoryStore(SessionStore):
    """Ephemeral in-process store backed by a Python dict.

    Payloads are deep-copied on the way in and out so that in-flight
    mutation of a request's session never leaks into the store before
    commit.

    Parameters
    ----------
    clock:
        Callable returning the current time in seconds.  Defaults to
        ``time.time``; tests inject a fake clock to exercise expiry.
    """

    def __init__(self, clock: Any = time.time) -> None:
        self._entries: dict[str, tuple[dict[str, Any], float | None]] = {}
        self._lock: asyncio.Lock = asyncio.Lock()
        self._clock = clock

    # ------------------------------------------------------------------
    # SessionStore interface
    # ------------------------------------------------------------------

    async def get(
        self, key: str, max_age: float | None, conn: HTTPConnection
    ) -> dict[str, Any] | None:
        """Return a copy of the payload for ``key``, dropping it if expired."""
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            payload, expires_at = entry
            if expires_at is not None and expires_at <= self._clock():
                del self._entries[key]
                return None
            return copy.deepcopy(payload)

    async def set(
        self,
        key: str,
        value: dict[str, Any],
        max_age: float | None,
        conn: HTTPConnection,
    ) -> None:
        """Store a copy of ``value``; numeric ``max_age`` sets an expiry."""
        expires_at = self._clock() + max_age if max_age is not None else None
        async with self._lock:
            self._entries[key] = (copy.deepcopy(value), expires_at)

    async def destroy(self, key: str, conn: HTTPConnection) -> None:
        """Remove ``key`` if present."""
        async with self._lock:
            self._entries.pop(key, None)

    # ------------------------------------------------------------------
    # Extras
    # ------------------------------------------------------------------

    def peek(self, key: str) -> dict[str, Any] | None:
        """Return the raw stored payload without expiry checks (no copy)."""
        entry = self._entries.get(key)
        return entry[0] if entry is not None else None

    def keys(self) -> list[str]:
        """Return all stored keys in insertion order."""
        return list(self._entries)

    async def clear(self) -> None:
        """Remove all stored sessions."""
        async with self._lock:
            self._entries.clear()

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"MemoryStore(sessions={len(self._entries)})"


__all__ = ["MemoryStore"]
