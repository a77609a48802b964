#!/usr/bin/env python3
"""Example: Storage Backends

Demonstrates store-backed sessions: the cookie carries only a generated
session id and the value lives in the in-memory or SQLite store.

Usage:
    python examples/02_storage_backends.py

Requirements:
    pip install 'context-session[sqlite]' httpx
"""
from __future__ import annotations

import tempfile
from pathlib import Path

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route
from starlette.testclient import TestClient

from context_session import (
    MemoryStore,
    SQLiteStore,
    SessionMiddleware,
    SessionStore,
    get_session,
    set_session,
)


async def count(request: Request) -> JSONResponse:
    session = get_session(request)
    if session is None:
        set_session(request, {"count": 1})
        return JSONResponse({"count": 1})
    session["count"] += 1
    return JSONResponse(session)


def demo_store(label: str, store: SessionStore) -> None:
    app = Starlette(routes=[Route("/count", count)])
    app.add_middleware(SessionMiddleware, key="sid", store=store, max_age=600, secret_keys=["change-me"])
    client = TestClient(app)
    counts = [client.get("/count").json()["count"] for _ in range(3)]
    print(f"  [{label}] counts: {counts}  id cookie: {client.cookies.get('sid', '')[:24]}...")


def main() -> None:
    print("In-memory store:")
    store = MemoryStore()
    demo_store("memory", store)
    print(f"  {store!r}")

    print("\nSQLite store:")
    with tempfile.TemporaryDirectory() as tmp:
        demo_store("sqlite", SQLiteStore(db_path=Path(tmp) / "sessions.db"))


if __name__ == "__main__":
    main()
