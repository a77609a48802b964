"""SQLite session store — requires aiosqlite (guarded import).

Rows carry an ``expires_at`` epoch-seconds column; expired rows read as
absent and are deleted lazily on access.

Classes
-------
- SQLiteStore  — aiosqlite-backed session store
"""

from __future__ import annotations

import json
import time
from pathlib import Path
from typing import Any

from starlette.requests import HTTPConnection

from context_session.stores.base import SessionStore, StoreError

_AIOSQLITE_IMPORT_ERROR = (
    "SQLiteStore requires the 'aiosqlite' package. "
    "Install it with: pip install aiosqlite  or  pip install 'context-session[sqlite]'"
)

_CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS sessions (
    session_key TEXT PRIMARY KEY,
    payload     TEXT NOT NULL,
    expires_at  REAL
)
"""

_UPSERT_SQL = """
INSERT INTO sessions (session_key, payload, expires_at)
VALUES (?, ?, ?)
ON CONFLICT(session_key) DO UPDATE SET
    payload    = excluded.payload,
    expires_at = excluded.expires_at
"""


class SQLiteStore(SessionStore):
    """Persists sessions in a local SQLite database using aiosqlite.

    Parameters
    ----------
    db_path:
        Path to the SQLite file.  The parent directory and table are
        created automatically on first use.
    """

    def __init__(self, db_path: str | Path) -> None:
        try:
            import aiosqlite as _aiosqlite  # noqa: F401
        except ImportError as exc:
            raise ImportError(_AIOSQLITE_IMPORT_ERROR) from exc

        self._db_path: Path = Path(db_path)
        self._schema_initialised = False

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _ensure_schema(self) -> None:
        """Create the sessions table on first use."""
        if self._schema_initialised:
            return
        import aiosqlite

        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(str(self._db_path)) as conn:
            await conn.execute("PRAGMA journal_mode=WAL")
            await conn.execute(_CREATE_TABLE_SQL)
            await conn.commit()
        self._schema_initialised = True

    # ------------------------------------------------------------------
    # SessionStore interface
    # ------------------------------------------------------------------

    async def get(
        self, key: str, max_age: float | None, conn: HTTPConnection
    ) -> dict[str, Any] | None:
        """Return the payload for ``key`` unless absent or expired."""
        import aiosqlite

        try:
            await self._ensure_schema()
            async with aiosqlite.connect(str(self._db_path)) as db:
                async with db.execute(
                    "SELECT payload, expires_at FROM sessions WHERE session_key = ?",
                    (key,),
                ) as cursor:
                    row = await cursor.fetchone()
                if row is None:
                    return None
                payload, expires_at = row
                if expires_at is not None and expires_at <= time.time():
                    await db.execute("DELETE FROM sessions WHERE session_key = ?", (key,))
                    await db.commit()
                    return None
        except aiosqlite.Error as exc:
            raise StoreError("get", key, str(exc)) from exc

        try:
            value = json.loads(payload)
        except ValueError:
            return None
        return value if isinstance(value, dict) else None

    async def set(
        self,
        key: str,
        value: dict[str, Any],
        max_age: float | None,
        conn: HTTPConnection,
    ) -> None:
        """Upsert ``value`` for ``key``."""
        import aiosqlite

        expires_at = time.time() + max_age if max_age is not None else None
        try:
            await self._ensure_schema()
            async with aiosqlite.connect(str(self._db_path)) as db:
                await db.execute(
                    _UPSERT_SQL, (key, json.dumps(value, separators=(",", ":")), expires_at)
                )
                await db.commit()
        except aiosqlite.Error as exc:
            raise StoreError("set", key, str(exc)) from exc

    async def destroy(self, key: str, conn: HTTPConnection) -> None:
        """Delete the row for ``key``."""
        import aiosqlite

        try:
            await self._ensure_schema()
            async with aiosqlite.connect(str(self._db_path)) as db:
                await db.execute("DELETE FROM sessions WHERE session_key = ?", (key,))
                await db.commit()
        except aiosqlite.Error as exc:
            raise StoreError("destroy", key, str(exc)) from exc

    def __repr__(self) -> str:
        return f"SQLiteStore(db_path={str(self._db_path)!r})"


__all__ = ["SQLiteStore"]
