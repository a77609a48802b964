"""Session options normalisation.

``format_options`` is the single entry point: it accepts a possibly-partial
mapping (plus keyword overrides), fills defaults, installs the default
codec and id generator, and validates the store configuration.  The result
is a frozen ``SessionOptions`` shared read-only by every request.

Classes
-------
- SetupError      — configuration is unusable; raised at installation time
- SessionOptions  — immutable, fully-populated configuration

Functions
---------
- format_options  — normalise user options into ``SessionOptions``
- make_genid      — build the default session id generator
"""
from __future__ import annotations

import inspect
import logging
import math
import secrets
import time
from collections.abc import Callable, Mapping
from datetime import timedelta
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from starlette.requests import HTTPConnection

from context_session import codec
from context_session.stores.base import BoundSessionStore, ContextStore, missing_methods

logger = logging.getLogger(__name__)

BROWSER_SESSION: Literal["session"] = "session"

_DEFAULTED_WHEN_NONE: tuple[str, ...] = (
    "key",
    "overwrite",
    "http_only",
    "signed",
    "auto_commit",
    "rolling",
)


class SetupError(ValueError):
    """Raised when session options cannot be used to install the middleware."""


def make_genid(prefix: str | None = None) -> Callable[[], str]:
    """Return a generator of ``<prefix><epoch ms>-<random token>`` ids.

    The token is 24 bytes from ``secrets`` rendered url-safe, so ids can be
    placed in a cookie unquoted.
    """
    head = prefix or ""

    def genid() -> str:
        return f"{head}{int(time.time() * 1000)}-{secrets.token_urlsafe(24)}"

    return genid


class SessionOptions(BaseModel):
    """Fully-populated session configuration.

    Parameters
    ----------
    key:
        Cookie name carrying the encoded session or the external session id.
    max_age:
        Session lifetime in seconds (``int``, ``float`` or ``timedelta``),
        or ``"session"`` for a browser-session cookie with no explicit
        expiry.
    overwrite:
        When True a later Set-Cookie for ``key`` in the same response
        replaces an earlier one.
    http_only:
        Emit the ``HttpOnly`` cookie attribute.
    signed:
        Sign the cookie value with ``secret_keys``.
    auto_commit:
        Commit automatically at the end of each request.
    rolling:
        Re-issue the cookie on every request carrying a live session, even
        when the session did not change.
    encode / decode:
        Session payload codec used in cookie-only mode.  ``decode`` must
        return None on malformed input rather than raise.
    store:
        Function-object store (see ``context_session.stores.SessionStore``).
    context_store:
        Per-request store class (see ``context_session.stores.ContextStore``).
    genid:
        Session id generator used in store mode.
    prefix:
        Prefix for ids produced by the default ``genid``.
    secret_keys:
        Signing keys, newest last.  Every key verifies; the newest signs.
    path, domain, secure, same_site:
        Cookie attributes passed through to the cookie writer.

    Any other keyword is kept as an extra and handed to the cookie writer
    verbatim (for example ``partitioned=True``).
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True, extra="allow")

    key: str = "session"
    max_age: int | float | Literal["session"] = BROWSER_SESSION
    overwrite: bool = True
    http_only: bool = True
    signed: bool = True
    auto_commit: bool = True
    rolling: bool = False
    encode: Callable[[dict[str, Any]], str] = codec.encode
    decode: Callable[[str], dict[str, Any] | None] = codec.decode
    store: Any = None
    context_store: Any = None
    genid: Callable[[], str]
    prefix: str | None = None
    secret_keys: tuple[str, ...] = Field(default=(), repr=False)
    path: str = "/"
    domain: str | None = None
    secure: bool = False
    same_site: Literal["lax", "strict", "none"] = "lax"

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    @model_validator(mode="before")
    @classmethod
    def _fill_defaults(cls, data: Any) -> Any:
        if not isinstance(data, Mapping):
            return data
        data = dict(data)

        # back-compat: legacy lowercase ``maxage``
        legacy = data.pop("maxage", None)
        if "max_age" not in data:
            data["max_age"] = legacy
        if data["max_age"] is None:
            data["max_age"] = BROWSER_SESSION
        elif isinstance(data["max_age"], timedelta):
            data["max_age"] = data["max_age"].total_seconds()

        for name in _DEFAULTED_WHEN_NONE:
            if data.get(name) is None:
                data.pop(name, None)

        for name in ("encode", "decode"):
            if not callable(data.get(name)):
                data.pop(name, None)

        if not callable(data.get("genid")):
            data["genid"] = make_genid(data.get("prefix"))

        if isinstance(data.get("secret_keys"), (str, bytes)):
            data["secret_keys"] = (data["secret_keys"],)
        return data

    @field_validator("max_age")
    @classmethod
    def _positive_max_age(cls, value: float | str) -> float | str:
        if isinstance(value, (int, float)) and value <= 0:
            raise ValueError("max_age must be a positive number of seconds or 'session'")
        return value

    @model_validator(mode="after")
    def _check_stores(self) -> SessionOptions:
        if self.store is not None and self.context_store is not None:
            raise ValueError("configure either store or context_store, not both")

        if self.store is not None:
            missing = missing_methods(self.store)
            if missing:
                raise ValueError(f"store.{missing[0]} must be a function")

        if self.context_store is not None:
            if not inspect.isclass(self.context_store):
                raise ValueError("context_store must be a class")
            missing = missing_methods(self.context_store)
            if missing:
                raise ValueError(f"context_store.{missing[0]} must be a function")

        if self.signed and not self.secret_keys:
            raise ValueError("signed cookies require at least one entry in secret_keys")
        return self

    # ------------------------------------------------------------------
    # Derived views
    # ------------------------------------------------------------------

    @property
    def has_store(self) -> bool:
        """True when an external store (either shape) is configured."""
        return self.store is not None or self.context_store is not None

    @property
    def ttl(self) -> float | None:
        """``max_age`` in seconds, or None for browser-session lifetime."""
        if isinstance(self.max_age, str):
            return None
        return self.max_age

    def cookie_attributes(self) -> dict[str, Any]:
        """Keyword arguments for the cookie writer.

        ``Max-Age`` is whole seconds, rounded up.  Extra options are
        included as given.
        """
        ttl = self.ttl
        return {
            **(self.model_extra or {}),
            "max_age": math.ceil(ttl) if ttl is not None else None,
            "path": self.path,
            "domain": self.domain,
            "secure": self.secure,
            "httponly": self.http_only,
            "samesite": self.same_site,
        }

    def bind_store(self, conn: HTTPConnection) -> ContextStore | None:
        """Return the store bound to ``conn``, or None in cookie-only mode.

        Both store shapes come back with the same calling convention:
        ``get(key, max_age)``, ``set(key, value, max_age)``, ``destroy(key)``.
        """
        if self.context_store is not None:
            return self.context_store(conn)
        if self.store is not None:
            return BoundSessionStore(self.store, conn)
        return None


def format_options(
    opts: Mapping[str, Any] | SessionOptions | None = None, **overrides: Any
) -> SessionOptions:
    """Normalise ``opts`` (and ``overrides``) into ``SessionOptions``.

    Parameters
    ----------
    opts:
        Partial options mapping, an existing ``SessionOptions``, or None.
    **overrides:
        Options that take precedence over ``opts``.

    Returns
    -------
    SessionOptions
        Immutable, validated configuration.

    Raises
    ------
    SetupError
        If any option is invalid or a store lacks ``get``/``set``/``destroy``.
    """
    if isinstance(opts, SessionOptions):
        if not overrides:
            return opts
        data: dict[str, Any] = {name: getattr(opts, name) for name in SessionOptions.model_fields}
        data.update(opts.model_extra or {})
        # a new prefix needs a new default generator
        if "prefix" in overrides and "genid" not in overrides:
            data.pop("genid")
    else:
        data = dict(opts or {})
    data.update(overrides)

    try:
        options = SessionOptions(**data)
    except ValidationError as exc:
        raise SetupError(f"invalid session options: {exc}") from exc

    logger.debug(
        "session options: key=%r max_age=%r signed=%s auto_commit=%s store=%r",
        options.key,
        options.max_age,
        options.signed,
        options.auto_commit,
        options.store if options.store is not None else options.context_store,
    )
    return options


__all__ = ["BROWSER_SESSION", "SessionOptions", "SetupError", "format_options", "make_genid"]
