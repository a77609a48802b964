#!/usr/bin/env python3
"""Example: Quickstart — context-session

Minimal working example: a Starlette app with cookie sessions.  The
session value is signed and carried entirely inside the cookie.

Usage:
    python examples/01_quickstart.py

Requirements:
    pip install context-session httpx
"""
from __future__ import annotations

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route
from starlette.testclient import TestClient

import context_session
from context_session import SessionMiddleware, get_session, set_session


async def login(request: Request) -> JSONResponse:
    set_session(request, {"user": request.query_params.get("user", "guest"), "visits": 0})
    return JSONResponse({"ok": True})


async def visit(request: Request) -> JSONResponse:
    session = get_session(request)
    if session is None:
        return JSONResponse({"error": "not logged in"}, status_code=401)
    session["visits"] += 1
    return JSONResponse(session)


async def logout(request: Request) -> JSONResponse:
    set_session(request, None)
    return JSONResponse({"ok": True})


app = Starlette(
    routes=[Route("/login", login), Route("/visit", visit), Route("/logout", logout)]
)
app.add_middleware(SessionMiddleware, key="sid", max_age=3600, secret_keys=["change-me"])


def main() -> None:
    print(f"context-session version: {context_session.__version__}")
    client = TestClient(app)

    response = client.get("/login", params={"user": "alice"})
    print(f"login      -> Set-Cookie: {response.headers['set-cookie'][:60]}...")

    for _ in range(2):
        print(f"visit      -> {client.get('/visit').json()}")

    response = client.get("/logout")
    print(f"logout     -> Set-Cookie: {response.headers['set-cookie'][:60]}...")
    print(f"visit      -> {client.get('/visit').status_code}")


if __name__ == "__main__":
    main()
