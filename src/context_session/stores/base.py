"""Store contracts for external session persistence.

Two interchangeable shapes are accepted by the middleware:

- ``SessionStore``  — one shared object whose methods receive the request
  connection explicitly on every call.
- ``ContextStore``  — a class instantiated once per request with the
  connection; its methods are implicitly bound to that request.

Both are duck-typed: subclassing is optional, the middleware only checks
that ``get``, ``set`` and ``destroy`` are callable.  Internally the function
form is adapted to the per-request form with ``BoundSessionStore`` so that
``ContextSession`` only ever talks to one calling convention.

Classes
-------
- StoreError         — raised by the bundled stores on backend failure
- SessionStore       — abstract base for the function-object form
- ContextStore       — abstract base for the per-request form
- BoundSessionStore  — adapts a SessionStore to the ContextStore convention
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from starlette.requests import HTTPConnection

STORE_METHODS: tuple[str, ...] = ("get", "set", "destroy")


class StoreError(RuntimeError):
    """Raised when a store backend cannot complete an operation."""

    def __init__(self, operation: str, key: str, reason: str) -> None:
        self.operation = operation
        self.key = key
        super().__init__(f"Session store {operation} failed for {key[:8]!r}...: {reason}")


class SessionStore(ABC):
    """Function-object store shared by every request.

    ``max_age`` is the session lifetime in seconds, or ``None`` when the
    session is browser-scoped and the store should apply no expiry of its
    own beyond its normal retention policy.
    """

    @abstractmethod
    async def get(
        self, key: str, max_age: float | None, conn: HTTPConnection
    ) -> dict[str, Any] | None:
        """Return the payload stored under ``key``, or None if absent."""

    @abstractmethod
    async def set(
        self,
        key: str,
        value: dict[str, Any],
        max_age: float | None,
        conn: HTTPConnection,
    ) -> None:
        """Persist ``value`` under ``key``, overwriting any prior entry."""

    @abstractmethod
    async def destroy(self, key: str, conn: HTTPConnection) -> None:
        """Remove the entry for ``key``.  Missing keys are not an error."""


class ContextStore(ABC):
    """Per-request store, constructed with the request connection.

    Parameters
    ----------
    conn:
        The Starlette connection for the request this instance serves.
    """

    def __init__(self, conn: HTTPConnection) -> None:
        self.conn = conn

    @abstractmethod
    async def get(self, key: str, max_age: float | None) -> dict[str, Any] | None:
        """Return the payload stored under ``key``, or None if absent."""

    @abstractmethod
    async def set(self, key: str, value: dict[str, Any], max_age: float | None) -> None:
        """Persist ``value`` under ``key``, overwriting any prior entry."""

    @abstractmethod
    async def destroy(self, key: str) -> None:
        """Remove the entry for ``key``."""


class BoundSessionStore(ContextStore):
    """A ``SessionStore`` bound to one request connection."""

    def __init__(self, store: Any, conn: HTTPConnection) -> None:
        super().__init__(conn)
        self.store = store

    async def get(self, key: str, max_age: float | None) -> dict[str, Any] | None:
        return await self.store.get(key, max_age, self.conn)

    async def set(self, key: str, value: dict[str, Any], max_age: float | None) -> None:
        await self.store.set(key, value, max_age, self.conn)

    async def destroy(self, key: str) -> None:
        await self.store.destroy(key, self.conn)

    def __repr__(self) -> str:
        return f"BoundSessionStore(store={self.store!r})"


def short_key(key: str | None) -> str:
    """Return ``key`` truncated for log output."""
    return f"{key[:8]}..." if key else "<none>"


def missing_methods(target: Any) -> list[str]:
    """Return the store methods ``target`` lacks or exposes as non-callables."""
    return [name for name in STORE_METHODS if not callable(getattr(target, name, None))]


__all__ = [
    "BoundSessionStore",
    "ContextStore",
    "SessionStore",
    "StoreError",
    "missing_methods",
    "short_key",
]
