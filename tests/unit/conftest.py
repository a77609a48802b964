"""Shared fixtures for context_session unit tests."""
from __future__ import annotations

import copy
from typing import Any

import pytest
from starlette.requests import HTTPConnection

from context_session.stores.base import StoreError


class RecordingStore:
    """Function-object store that records every call it receives."""

    def __init__(self, data: dict[str, dict[str, Any]] | None = None) -> None:
        self.data: dict[str, dict[str, Any]] = dict(data or {})
        self.calls: list[tuple[Any, ...]] = []
        self.conns: list[HTTPConnection] = []

    async def get(self, key: str, max_age: int | None, conn: HTTPConnection) -> Any:
        self.calls.append(("get", key, max_age))
        self.conns.append(conn)
        return copy.deepcopy(self.data.get(key))

    async def set(
        self, key: str, value: dict[str, Any], max_age: int | None, conn: HTTPConnection
    ) -> None:
        self.calls.append(("set", key, copy.deepcopy(value), max_age))
        self.conns.append(conn)
        self.data[key] = copy.deepcopy(value)

    async def destroy(self, key: str, conn: HTTPConnection) -> None:
        self.calls.append(("destroy", key))
        self.conns.append(conn)
        self.data.pop(key, None)

    def ops(self) -> list[str]:
        return [call[0] for call in self.calls]


class FailingStore(RecordingStore):
    """Store whose selected operations raise ``StoreError``."""

    def __init__(self, fail_on: set[str], data: dict[str, dict[str, Any]] | None = None) -> None:
        super().__init__(data)
        self.fail_on = fail_on

    async def get(self, key: str, max_age: int | None, conn: HTTPConnection) -> Any:
        if "get" in self.fail_on:
            raise StoreError("get", key, "backend unreachable")
        return await super().get(key, max_age, conn)

    async def set(
        self, key: str, value: dict[str, Any], max_age: int | None, conn: HTTPConnection
    ) -> None:
        if "set" in self.fail_on:
            raise StoreError("set", key, "backend unreachable")
        await super().set(key, value, max_age, conn)

    async def destroy(self, key: str, conn: HTTPConnection) -> None:
        if "destroy" in self.fail_on:
            raise StoreError("destroy", key, "backend unreachable")
        await super().destroy(key, conn)


def make_conn(cookie_header: str | None = None) -> HTTPConnection:
    """Return an HTTP connection whose request carries ``cookie_header``."""
    headers = [(b"cookie", cookie_header.encode("latin-1"))] if cookie_header else []
    return HTTPConnection({"type": "http", "headers": headers})


@pytest.fixture()
def store() -> RecordingStore:
    return RecordingStore()
