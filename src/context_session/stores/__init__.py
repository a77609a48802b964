"""Session store subpackage.

Any object exposing async ``get``/``set``/``destroy`` satisfies the store
contract; the abstract bases here document it.  Optional stores guard their
third-party imports so that the package remains installable without those
extras.

Public surface
--------------
- SessionStore  — abstract base, function-object form (connection per call)
- ContextStore  — abstract base, per-request form (connection at construction)
- StoreError    — backend failure raised by the bundled stores
- MemoryStore   — in-process dict (useful for testing)
- RedisStore    — Redis store (requires ``redis`` package)
- SQLiteStore   — SQLite store (requires ``aiosqlite`` package)
"""
from __future__ import annotations

from context_session.stores.base import (
    BoundSessionStore,
    ContextStore,
    SessionStore,
    StoreError,
)
from context_session.stores.memory import MemoryStore
from context_session.stores.redis import RedisStore
from context_session.stores.sqlite import SQLiteStore

__all__ = [
    "BoundSessionStore",
    "ContextStore",
    "MemoryStore",
    "RedisStore",
    "SQLiteStore",
    "SessionStore",
    "StoreError",
]
