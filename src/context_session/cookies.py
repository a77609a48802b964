"""Request cookie access and response Set-Cookie collection.

``CookieJar`` is the only handle through which the session layer touches
the HTTP exchange: it reads the incoming cookie header and accumulates the
outgoing ``Set-Cookie`` headers, which the middleware attaches to the
response when it starts.  Header rendering is delegated to Starlette and
signatures to ``itsdangerous``.

Classes
-------
- CookieJar  — signed cookie reader / Set-Cookie writer for one request
"""
from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from itsdangerous import BadSignature, Signer
from starlette.responses import Response

logger = logging.getLogger(__name__)

SIGNING_SALT = "context_session.cookie"


class CookieJar:
    """Cookie access for a single request/response pair.

    Parameters
    ----------
    incoming:
        Cookies parsed from the request (name -> raw value).
    secret_keys:
        Signing keys, newest last.  Required for signed reads and writes.
    """

    def __init__(
        self,
        incoming: Mapping[str, str],
        secret_keys: Iterable[str | bytes] = (),
    ) -> None:
        self._incoming = incoming
        keys = list(secret_keys)
        self._signer: Signer | None = Signer(keys, salt=SIGNING_SALT) if keys else None
        self._outgoing: list[tuple[str, bytes]] = []

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def get(self, name: str, *, signed: bool = False) -> str | None:
        """Return the request cookie ``name``, or None.

        With ``signed`` the embedded signature is verified first; a missing
        or invalid signature reads as an absent cookie.
        """
        value = self._incoming.get(name)
        if not value:
            return None
        if not signed:
            return value
        if self._signer is None:
            logger.debug("cookie %r: signed read without secret keys", name)
            return None
        try:
            return self._signer.unsign(value).decode("utf-8")
        except (BadSignature, UnicodeDecodeError):
            logger.debug("cookie %r: signature verification failed", name)
            return None

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def set(
        self,
        name: str,
        value: str,
        *,
        signed: bool = False,
        overwrite: bool = True,
        **attributes: Any,
    ) -> None:
        """Queue a Set-Cookie header for ``name``.

        ``attributes`` are passed to ``starlette.responses.Response.set_cookie``
        (``max_age``, ``path``, ``domain``, ``secure``, ``httponly``,
        ``samesite``).
        """
        if signed:
            if self._signer is None:
                raise RuntimeError(f"cannot sign cookie {name!r}: no secret keys configured")
            value = self._signer.sign(value).decode("utf-8")
        scratch = Response()
        scratch.set_cookie(name, value, **attributes)
        self._collect(name, scratch, overwrite)

    def delete(self, name: str, *, overwrite: bool = True, **attributes: Any) -> None:
        """Queue an expiring, empty Set-Cookie header for ``name``.

        Rendered like ``Response.delete_cookie`` but through ``set_cookie``
        so that every attribute, including extras, is kept.
        """
        attributes.pop("max_age", None)
        attributes.pop("expires", None)
        scratch = Response()
        scratch.set_cookie(name, "", max_age=0, expires=0, **attributes)
        self._collect(name, scratch, overwrite)

    def _collect(self, name: str, scratch: Response, overwrite: bool) -> None:
        if overwrite:
            self._outgoing = [entry for entry in self._outgoing if entry[0] != name]
        for header, value in scratch.raw_headers:
            if header == b"set-cookie":
                self._outgoing.append((name, value))

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    @property
    def names(self) -> set[str]:
        """Names of the cookies currently queued."""
        return {name for name, _ in self._outgoing}

    @property
    def headers(self) -> list[tuple[bytes, bytes]]:
        """Queued headers as raw ASGI ``(name, value)`` pairs."""
        return [(b"set-cookie", value) for _, value in self._outgoing]

    def drain(self) -> list[tuple[bytes, bytes]]:
        """Return the queued headers and clear the queue."""
        headers = self.headers
        self._outgoing = []
        return headers

    def __repr__(self) -> str:
        return f"CookieJar(incoming={len(self._incoming)}, outgoing={len(self._outgoing)})"


__all__ = ["CookieJar", "SIGNING_SALT"]
