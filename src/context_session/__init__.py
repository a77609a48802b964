"""context-session — Cookie and store backed request sessions for ASGI apps.

Public API
----------
The stable public surface is everything exported from this module.
Anything inside submodules not re-exported here is considered private
and may change without notice.

Example
-------
>>> import context_session
>>> context_session.__version__
'0.1.0'
"""
from __future__ import annotations

# Configuration
from context_session.options import (
    BROWSER_SESSION,
    SessionOptions,
    SetupError,
    format_options,
    make_genid,
)

# Session core
from context_session.codec import decode, encode
from context_session.context import ContextSession, InvalidAssignmentError
from context_session.cookies import CookieJar

# Middleware
from context_session.middleware import (
    DuplicateMiddlewareError,
    SessionMiddleware,
    SessionNotInstalledError,
    SessionRequest,
    commit_session,
    get_session,
    get_session_options,
    set_session,
)

# Stores
from context_session.stores import (
    ContextStore,
    MemoryStore,
    RedisStore,
    SQLiteStore,
    SessionStore,
    StoreError,
)

__version__: str = "0.1.0"

__all__ = [
    "__version__",
    # Configuration
    "BROWSER_SESSION",
    "SessionOptions",
    "SetupError",
    "format_options",
    "make_genid",
    # Session core
    "ContextSession",
    "CookieJar",
    "InvalidAssignmentError",
    "decode",
    "encode",
    # Middleware
    "DuplicateMiddlewareError",
    "SessionMiddleware",
    "SessionNotInstalledError",
    "SessionRequest",
    "commit_session",
    "get_session",
    "get_session_options",
    "set_session",
    # Stores
    "ContextStore",
    "MemoryStore",
    "RedisStore",
    "SQLiteStore",
    "SessionStore",
    "StoreError",
]
