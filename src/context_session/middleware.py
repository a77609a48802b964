"""ASGI session middleware and request accessors.

``SessionMiddleware`` creates one ``ContextSession`` per HTTP request, loads
it from the store before the application runs (store mode), and commits it
when the application starts its response, so that the Set-Cookie headers
travel on that response.  If the application raises before responding, the
commit still runs before the error is re-raised.

Handlers reach the session through the accessors below, or by wrapping the
scope in ``SessionRequest``::

    from starlette.applications import Starlette
    from context_session import SessionMiddleware, SessionRequest, MemoryStore

    async def login(request):
        request = SessionRequest(request.scope, request.receive)
        request.session = {"user": "alice"}
        ...

    app = Starlette(routes=[...])
    app.add_middleware(SessionMiddleware, key="sid", store=MemoryStore(), secret_keys=["s3cret"])

Classes
-------
- DuplicateMiddlewareError  — two session middlewares on one request
- SessionNotInstalledError  — accessor used where no middleware ran
- SessionMiddleware         — the ASGI middleware
- SessionRequest            — Request with a read/write ``session`` property

Functions
---------
- get_session / set_session / get_session_options / commit_session
"""
from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from starlette.requests import HTTPConnection, Request
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from context_session.context import ContextSession
from context_session.cookies import CookieJar
from context_session.options import SessionOptions, format_options

logger = logging.getLogger(__name__)

CONTEXT_SESSION = "context_session"


class DuplicateMiddlewareError(RuntimeError):
    """Raised when a second session middleware sees an already-attached request."""

    def __init__(self) -> None:
        super().__init__("Duplicate session middleware applied.")


class SessionNotInstalledError(LookupError):
    """Raised when session accessors are used on a request with no session."""

    def __init__(self) -> None:
        super().__init__("SessionMiddleware must be installed to access the session.")


def _cookie_name(header_value: bytes) -> str:
    return header_value.split(b"=", 1)[0].strip().decode("latin-1")


def _without_cookies(
    headers: list[tuple[bytes, bytes]], names: set[str]
) -> list[tuple[bytes, bytes]]:
    """Drop Set-Cookie headers for any cookie in ``names``."""
    return [
        (name, value)
        for name, value in headers
        if not (name.lower() == b"set-cookie" and _cookie_name(value) in names)
    ]


class SessionMiddleware:
    """Per-request session lifecycle around an ASGI application.

    Parameters
    ----------
    app:
        The wrapped ASGI application.
    options:
        Session options as a mapping or ``SessionOptions``.
    **opts:
        Individual options; they override ``options``.

    Raises
    ------
    SetupError
        At construction, if the options are invalid.
    """

    def __init__(
        self,
        app: ASGIApp,
        options: Mapping[str, Any] | SessionOptions | None = None,
        **opts: Any,
    ) -> None:
        self.app = app
        self.options = format_options(options, **opts)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        if CONTEXT_SESSION in scope:
            raise DuplicateMiddlewareError()

        conn = HTTPConnection(scope)
        cookies = CookieJar(conn.cookies, self.options.secret_keys)
        sess = ContextSession(conn, self.options, cookies)
        scope[CONTEXT_SESSION] = sess
        if sess.store is not None:
            await sess.init_from_external()

        auto_commit = self.options.auto_commit
        overwrite = self.options.overwrite

        async def send_wrapper(message: Message) -> None:
            if message["type"] == "http.response.start":
                if auto_commit:
                    await sess.commit()
                names = cookies.names
                headers = cookies.drain()
                if headers:
                    existing = list(message.get("headers", []))
                    if overwrite:
                        existing = _without_cookies(existing, names)
                    message["headers"] = [*existing, *headers]
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        except Exception:
            if auto_commit and not sess.committed:
                try:
                    await sess.commit()
                except Exception:
                    logger.exception("session commit failed after handler error")
            raise
        if auto_commit and not sess.committed:
            await sess.commit()

    def __repr__(self) -> str:
        return f"SessionMiddleware(key={self.options.key!r}, store={self.options.has_store})"


# ---------------------------------------------------------------------------
# Accessors
# ---------------------------------------------------------------------------


def _context_session(conn: HTTPConnection) -> ContextSession:
    sess = conn.scope.get(CONTEXT_SESSION)
    if sess is None:
        raise SessionNotInstalledError()
    return sess


def get_session(conn: HTTPConnection) -> dict[str, Any] | None:
    """Return the request's session value, or None when there is none."""
    return _context_session(conn).get()


def set_session(conn: HTTPConnection, value: Mapping[str, Any] | None) -> None:
    """Replace the request's session value; None destroys it at commit."""
    _context_session(conn).set(value)


def get_session_options(conn: HTTPConnection) -> SessionOptions:
    """Return the options of the middleware serving ``conn``."""
    return _context_session(conn).opts


async def commit_session(conn: HTTPConnection) -> None:
    """Commit explicitly.

    Needed when ``auto_commit`` is disabled; call it before the response
    starts or its cookies cannot be delivered.
    """
    await _context_session(conn).commit()


class SessionRequest(Request):
    """Starlette ``Request`` whose ``session`` reads and assigns through the middleware."""

    @property
    def session(self) -> dict[str, Any] | None:  # type: ignore[override]
        return get_session(self)

    @session.setter
    def session(self, value: Mapping[str, Any] | None) -> None:
        set_session(self, value)

    @property
    def session_options(self) -> SessionOptions:
        return get_session_options(self)


__all__ = [
    "CONTEXT_SESSION",
    "DuplicateMiddlewareError",
    "SessionMiddleware",
    "SessionNotInstalledError",
    "SessionRequest",
    "commit_session",
    "get_session",
    "get_session_options",
    "set_session",
]
