"""Redis session store — requires redis[asyncio] (guarded import).

Each session is stored as a JSON string under ``<key_prefix><session id>``.
When the middleware supplies a numeric ``max_age`` the key is written with
an ``EX`` expiry so Redis evicts it on its own; browser-scoped sessions
fall back to ``default_ttl``.

Classes
-------
- RedisStore  — redis.asyncio-backed session store
"""

from __future__ import annotations

import json
import math
import logging
from typing import Any

from starlette.requests import HTTPConnection

from context_session.stores.base import SessionStore, StoreError, short_key

logger = logging.getLogger(__name__)

_REDIS_IMPORT_ERROR = (
    "RedisStore requires the 'redis' package with asyncio support. "
    "Install it with: pip install redis  or  "
    "pip install 'context-session[redis]'"
)


class RedisStore(SessionStore):
    """Persists sessions in a Redis instance using ``redis.asyncio``.

    Parameters
    ----------
    url:
        Redis connection URL (e.g. ``"redis://localhost:6379/0"``).  Ignored
        when ``client`` is given.
    key_prefix:
        String prepended to all session keys.  Defaults to ``"session:"``.
    default_ttl:
        Expiry in seconds for browser-scoped sessions (``max_age=None``).
        When ``None`` (default) such keys persist until destroyed.
    client:
        An already-configured ``redis.asyncio.Redis`` client.  It must be
        created with ``decode_responses=True``.
    """

    def __init__(
        self,
        url: str = "redis://localhost:6379/0",
        key_prefix: str = "session:",
        default_ttl: int | None = None,
        client: Any = None,
    ) -> None:
        try:
            import redis.asyncio as redis_asyncio
        except ImportError as exc:
            raise ImportError(_REDIS_IMPORT_ERROR) from exc

        if client is None:
            client = redis_asyncio.Redis.from_url(url, decode_responses=True)
        self._client = client
        self._key_prefix = key_prefix
        self._default_ttl = default_ttl

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _key(self, key: str) -> str:
        """Return the full Redis key for session id ``key``."""
        return f"{self._key_prefix}{key}"

    # ------------------------------------------------------------------
    # SessionStore interface
    # ------------------------------------------------------------------

    async def get(
        self, key: str, max_age: float | None, conn: HTTPConnection
    ) -> dict[str, Any] | None:
        """Return the decoded payload, or None if the key is absent.

        A value that is not a JSON object is logged and treated as absent.
        """
        from redis import RedisError

        try:
            raw: str | None = await self._client.get(self._key(key))
        except RedisError as exc:
            raise StoreError("get", key, str(exc)) from exc
        if raw is None:
            return None
        try:
            value = json.loads(raw)
        except ValueError:
            logger.warning(
                "RedisStore: corrupt payload for session %s under prefix %r",
                short_key(key),
                self._key_prefix,
            )
            return None
        return value if isinstance(value, dict) else None

    async def set(
        self,
        key: str,
        value: dict[str, Any],
        max_age: float | None,
        conn: HTTPConnection,
    ) -> None:
        """Write ``value`` as JSON, with ``EX`` when an expiry applies."""
        from redis import RedisError

        ttl = max_age if max_age is not None else self._default_ttl
        payload = json.dumps(value, separators=(",", ":"))
        try:
            if ttl is not None:
                await self._client.set(self._key(key), payload, ex=max(math.ceil(ttl), 1))
            else:
                await self._client.set(self._key(key), payload)
        except RedisError as exc:
            raise StoreError("set", key, str(exc)) from exc

    async def destroy(self, key: str, conn: HTTPConnection) -> None:
        """Delete the key for ``key``."""
        from redis import RedisError

        try:
            await self._client.delete(self._key(key))
        except RedisError as exc:
            raise StoreError("destroy", key, str(exc)) from exc

    async def close(self) -> None:
        """Close the underlying connection pool."""
        await self._client.aclose()

    def __repr__(self) -> str:
        return (
            f"RedisStore(key_prefix={self._key_prefix!r}, "
            f"default_ttl={self._default_ttl!r})"
        )


__all__ = ["RedisStore"]
