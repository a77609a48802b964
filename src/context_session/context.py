"""Per-request session unit of work.

``ContextSession`` owns the lazily-loaded session value for one request,
remembers what was loaded so it can tell whether handlers changed it, and
at commit time reconciles the in-memory value with the cookie and, when
configured, the external store.

Commit outcomes
---------------
- session absent before and after           -> nothing written
- session present, equal to what was loaded -> nothing written (unless rolling)
- session new or changed                    -> cookie (and store) write
- session set to None after being present   -> store destroy + cookie cleared

Classes
-------
- InvalidAssignmentError  — session assigned something other than a mapping/None
- ContextSession          — the per-request session state machine
"""
from __future__ import annotations

import copy
import logging
import time
from collections.abc import Mapping
from typing import Any

from starlette.requests import HTTPConnection

from context_session.cookies import CookieJar
from context_session.options import SessionOptions
from context_session.stores.base import short_key

logger = logging.getLogger(__name__)

CREATED_AT_FIELD = "_created_at"
EXPIRE_FIELD = "_expire"


class InvalidAssignmentError(TypeError):
    """Raised when the session is assigned a value that is not a mapping or None."""

    def __init__(self, value: object) -> None:
        self.value = value
        super().__init__(
            f"session must be a mapping or None, not {type(value).__name__}"
        )


def _now_ms() -> int:
    return int(time.time() * 1000)


class ContextSession:
    """Session state for exactly one request.

    Parameters
    ----------
    conn:
        The Starlette connection the session belongs to.  It is handed to
        the store on every call (function-object stores) or at construction
        (per-request stores).
    opts:
        Shared, read-only configuration.
    cookies:
        Cookie jar for this request; commit writes Set-Cookie headers here
        and nowhere else.

    Attributes
    ----------
    session:
        The current value: None (no session) or a dict.
    external_key:
        Id addressing the store entry.  None until loaded or first written.
    created_at:
        Epoch milliseconds when the session was first created.
    expires_at:
        Epoch milliseconds after which the stored payload is stale, or None
        for browser-scoped sessions.
    """

    def __init__(self, conn: HTTPConnection, opts: SessionOptions, cookies: CookieJar) -> None:
        self.conn = conn
        self.opts = opts
        self.cookies = cookies
        self.store = opts.bind_store(conn)
        self.session: dict[str, Any] | None = None
        self.external_key: str | None = None
        self.created_at: int | None = None
        self.expires_at: int | None = None
        self._snapshot: dict[str, Any] | None = None
        self._loaded = False
        self._committed = False

    # ------------------------------------------------------------------
    # Handler-facing surface
    # ------------------------------------------------------------------

    def get(self) -> dict[str, Any] | None:
        """Return the current session value, loading it on first access."""
        self._ensure_loaded()
        return self.session

    def set(self, value: Mapping[str, Any] | None) -> None:
        """Replace the session value.

        ``None`` marks the session for destruction at commit.  Any other
        mapping becomes the new value; a plain ``dict`` is kept by
        reference so later in-place edits are still seen at commit.

        Raises
        ------
        InvalidAssignmentError
            If ``value`` is neither None nor a mapping.
        """
        if value is not None and not isinstance(value, Mapping):
            raise InvalidAssignmentError(value)
        self._ensure_loaded()
        if value is None:
            self.session = None
            return
        self.session = value if isinstance(value, dict) else dict(value)
        if self.created_at is None:
            self.created_at = _now_ms()

    @property
    def is_new(self) -> bool:
        """True when a session exists now but none was loaded."""
        return self._snapshot is None and self.session is not None

    @property
    def changed(self) -> bool:
        """True when the session differs from what was loaded.

        Comparison is structural (``==`` over nested dicts and lists), so key
        order never counts as a change.  Bookkeeping fields are held outside
        the mapping and never take part.
        """
        return self.session != self._snapshot

    @property
    def committed(self) -> bool:
        return self._committed

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        if self.store is not None:
            raise RuntimeError("init_from_external() must run before a store-backed session is used")
        self._init_from_cookie()

    def _init_from_cookie(self) -> None:
        self._loaded = True
        raw = self.cookies.get(self.opts.key, signed=self.opts.signed)
        if raw is None:
            logger.debug("cookie session: no %r cookie", self.opts.key)
            return
        try:
            payload = self.opts.decode(raw)
        except ValueError:
            logger.debug("cookie session: decode rejected %r cookie", self.opts.key)
            payload = None
        if not self._adopt(payload):
            logger.debug("cookie session: %r cookie carried no usable session", self.opts.key)

    async def init_from_external(self) -> None:
        """Load the session from the store using the id in the cookie.

        Without an id cookie no store call is made.  A missing, malformed or
        expired entry leaves the session None and drops the id so the next
        write generates a fresh one.  Store errors propagate.
        """
        if self.store is None:
            raise RuntimeError("init_from_external() requires a configured store")
        self._loaded = True
        key = self.cookies.get(self.opts.key, signed=self.opts.signed)
        if key is None:
            logger.debug("store session: no %r cookie, starting empty", self.opts.key)
            return

        payload = await self.store.get(key, self.opts.ttl)
        if self._adopt(payload):
            self.external_key = key
            logger.debug("store session: loaded %s", short_key(key))
        else:
            logger.debug("store session: discarding stale key %s", short_key(key))

    def _adopt(self, payload: Any) -> bool:
        """Take ``payload`` as the loaded session; False if unusable."""
        if not isinstance(payload, Mapping):
            return False
        data = dict(payload)
        created_at = data.pop(CREATED_AT_FIELD, None)
        expires_at = data.pop(EXPIRE_FIELD, None)
        if isinstance(expires_at, (int, float)) and expires_at <= _now_ms():
            logger.debug("session payload expired at %s", expires_at)
            return False

        self.session = data
        self._snapshot = copy.deepcopy(data)
        self.created_at = int(created_at) if isinstance(created_at, (int, float)) else _now_ms()
        self.expires_at = int(expires_at) if isinstance(expires_at, (int, float)) else None
        return True

    # ------------------------------------------------------------------
    # Commit
    # ------------------------------------------------------------------

    async def commit(self) -> None:
        """Reconcile the session with the cookie jar and store.

        Runs at most once; later calls are no-ops.  Store errors propagate.
        """
        if self._committed:
            logger.debug("commit: already committed")
            return
        self._committed = True

        if not self._loaded:
            logger.debug("commit: session never accessed")
            return

        if self.session is None:
            if self._snapshot is None:
                logger.debug("commit: no session")
                return
            await self._remove()
            return

        if self._snapshot is not None and not self.changed:
            if not self.opts.rolling:
                logger.debug("commit: session unchanged")
                return
            logger.debug("commit: rolling refresh")
        await self._save(self.session)

    async def _save(self, session: dict[str, Any]) -> None:
        now = _now_ms()
        if self.created_at is None:
            self.created_at = now
        payload = dict(session)
        payload[CREATED_AT_FIELD] = self.created_at

        ttl = self.opts.ttl
        if ttl is not None:
            self.expires_at = now + int(ttl * 1000)
            payload[EXPIRE_FIELD] = self.expires_at

        if self.store is not None:
            if self.external_key is None:
                self.external_key = self.opts.genid()
            await self.store.set(self.external_key, payload, ttl)
            value = self.external_key
            logger.debug("commit: stored session %s", short_key(self.external_key))
        else:
            value = self.opts.encode(payload)
            logger.debug("commit: wrote cookie session (%d bytes)", len(value))

        self.cookies.set(
            self.opts.key,
            value,
            signed=self.opts.signed,
            overwrite=self.opts.overwrite,
            **self.opts.cookie_attributes(),
        )
        self._snapshot = copy.deepcopy(session)

    async def _remove(self) -> None:
        if self.store is not None and self.external_key is not None:
            await self.store.destroy(self.external_key)
            logger.debug("commit: destroyed session %s", short_key(self.external_key))
            self.external_key = None
        self.cookies.delete(
            self.opts.key,
            overwrite=self.opts.overwrite,
            **self.opts.cookie_attributes(),
        )
        self._snapshot = None

    def __repr__(self) -> str:
        state = "unloaded" if not self._loaded else ("empty" if self.session is None else "live")
        return f"ContextSession(key={self.opts.key!r}, state={state}, external_key={short_key(self.external_key)})"


__all__ = ["CREATED_AT_FIELD", "EXPIRE_FIELD", "ContextSession", "InvalidAssignmentError"]
