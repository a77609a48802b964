"""End-to-end tests for context_session.middleware.SessionMiddleware.

A small Starlette app is driven through ``TestClient`` so that cookies
travel over real Set-Cookie / Cookie headers between requests.
"""
from __future__ import annotations

from typing import Any

import pytest
from itsdangerous import Signer
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse, Response
from starlette.routing import Route
from starlette.testclient import TestClient

from conftest import FailingStore, RecordingStore
from context_session.codec import encode
from context_session.context import CREATED_AT_FIELD
from context_session.cookies import SIGNING_SALT
from context_session.middleware import (
    CONTEXT_SESSION,
    DuplicateMiddlewareError,
    SessionMiddleware,
    SessionNotInstalledError,
    SessionRequest,
    commit_session,
    get_session,
    get_session_options,
    set_session,
)
from context_session.options import SetupError
from context_session.stores.base import ContextStore, StoreError
from context_session.stores.memory import MemoryStore

SECRET = "test-secret"


class HandlerLog:
    def __init__(self) -> None:
        self.calls: list[str] = []


def make_app(log: HandlerLog | None = None, *, layers: int = 1, **opts: Any) -> Starlette:
    log = log or HandlerLog()

    async def read(request: Request) -> Response:
        log.calls.append("read")
        request = SessionRequest(request.scope, request.receive)
        return JSONResponse({"session": request.session})

    async def write(request: Request) -> Response:
        log.calls.append("write")
        set_session(request, await request.json())
        return PlainTextResponse("written")

    async def increment(request: Request) -> Response:
        session = get_session(request)
        if session is None:
            set_session(request, {"count": 1})
        else:
            session["count"] += 1
        return PlainTextResponse("ok")

    async def clear(request: Request) -> Response:
        set_session(request, None)
        return PlainTextResponse("cleared")

    async def noop(request: Request) -> Response:
        log.calls.append("noop")
        return PlainTextResponse("ok")

    async def boom(request: Request) -> Response:
        set_session(request, {"before": "crash"})
        raise RuntimeError("boom")

    async def manual(request: Request) -> Response:
        set_session(request, {"manual": True})
        await commit_session(request)
        return PlainTextResponse("committed")

    async def options(request: Request) -> Response:
        request = SessionRequest(request.scope, request.receive)
        return JSONResponse({"key": request.session_options.key})

    async def bad_assign(request: Request) -> Response:
        request = SessionRequest(request.scope, request.receive)
        request.session = ["not", "a", "mapping"]  # type: ignore[assignment]
        return PlainTextResponse("unreachable")

    async def app_cookie(request: Request) -> Response:
        set_session(request, {"user": "a"})
        response = PlainTextResponse("ok")
        response.set_cookie("session", "app-value")
        response.set_cookie("other", "kept")
        return response

    app = Starlette(
        routes=[
            Route("/read", read),
            Route("/write", write, methods=["POST"]),
            Route("/increment", increment),
            Route("/clear", clear),
            Route("/noop", noop),
            Route("/boom", boom),
            Route("/manual", manual),
            Route("/options", options),
            Route("/bad-assign", bad_assign),
            Route("/app-cookie", app_cookie),
        ]
    )
    for _ in range(layers):
        app.add_middleware(SessionMiddleware, **opts)
    return app


def set_cookie_headers(response: Any) -> list[str]:
    return response.headers.get_list("set-cookie")


def sign(value: str) -> str:
    return Signer([SECRET], salt=SIGNING_SALT).sign(value).decode()


# ---------------------------------------------------------------------------
# Cookie mode
# ---------------------------------------------------------------------------


class TestCookieMode:
    def test_roundtrip_across_requests(self) -> None:
        client = TestClient(make_app(secret_keys=[SECRET]))
        client.post("/write", json={"user": "alice"})
        assert client.get("/read").json() == {"session": {"user": "alice"}}

    def test_no_session_no_cookie(self) -> None:
        client = TestClient(make_app(secret_keys=[SECRET]))
        response = client.get("/noop")
        assert set_cookie_headers(response) == []

    def test_read_without_session_returns_null_and_no_cookie(self) -> None:
        client = TestClient(make_app(secret_keys=[SECRET]))
        response = client.get("/read")
        assert response.json() == {"session": None}
        assert set_cookie_headers(response) == []

    def test_read_only_request_emits_no_cookie(self) -> None:
        client = TestClient(make_app(secret_keys=[SECRET]))
        client.post("/write", json={"user": "alice"})
        response = client.get("/read")
        assert set_cookie_headers(response) == []

    def test_in_place_mutation_persisted(self) -> None:
        client = TestClient(make_app(secret_keys=[SECRET]))
        client.get("/increment")
        client.get("/increment")
        client.get("/increment")
        assert client.get("/read").json() == {"session": {"count": 3}}

    def test_equal_rewrite_emits_no_cookie(self) -> None:
        client = TestClient(make_app(secret_keys=[SECRET]))
        client.post("/write", json={"a": 1, "b": 2})
        response = client.post("/write", json={"b": 2, "a": 1})
        assert set_cookie_headers(response) == []

    def test_cookie_attributes(self) -> None:
        client = TestClient(make_app(key="sid", secret_keys=[SECRET], max_age=120))
        response = client.post("/write", json={"user": "alice"})
        [header] = set_cookie_headers(response)
        assert header.startswith("sid=")
        assert "HttpOnly" in header
        assert "Max-Age=120" in header
        assert "Path=/" in header

    def test_session_cookie_replaces_app_cookie_of_same_name(self) -> None:
        client = TestClient(make_app(secret_keys=[SECRET]))
        response = client.get("/app-cookie")
        headers = set_cookie_headers(response)
        session_headers = [h for h in headers if h.startswith("session=")]
        assert len(session_headers) == 1
        assert "app-value" not in session_headers[0]
        assert any(h.startswith("other=kept") for h in headers)

    def test_app_cookie_kept_without_overwrite(self) -> None:
        client = TestClient(make_app(secret_keys=[SECRET], overwrite=False))
        response = client.get("/app-cookie")
        session_headers = [h for h in set_cookie_headers(response) if h.startswith("session=")]
        assert len(session_headers) == 2

    def test_extra_option_reaches_set_cookie(self) -> None:
        expires = "Wed, 21 Oct 2099 07:28:00 GMT"
        client = TestClient(make_app(secret_keys=[SECRET], expires=expires))
        response = client.post("/write", json={"user": "alice"})
        [header] = set_cookie_headers(response)
        assert f"expires={expires}" in header

    def test_fractional_max_age_rounded_up(self) -> None:
        client = TestClient(make_app(secret_keys=[SECRET], max_age=90.5))
        response = client.post("/write", json={"user": "alice"})
        [header] = set_cookie_headers(response)
        assert "Max-Age=91" in header

    def test_clear_expires_cookie(self) -> None:
        client = TestClient(make_app(secret_keys=[SECRET]))
        client.post("/write", json={"user": "alice"})
        response = client.get("/clear")
        [header] = set_cookie_headers(response)
        assert "Max-Age=0" in header
        assert client.get("/read").json() == {"session": None}

    def test_tampered_signature_reads_as_no_session(self) -> None:
        client = TestClient(make_app(secret_keys=[SECRET]))
        token = encode({"user": "mallory"})
        response = client.get("/read", headers={"cookie": f"session={token}.forgedsig"})
        assert response.status_code == 200
        assert response.json() == {"session": None}

    def test_unsigned_cookie_rejected_when_signing(self) -> None:
        client = TestClient(make_app(secret_keys=[SECRET]))
        token = encode({"user": "mallory"})
        response = client.get("/read", headers={"cookie": f"session={token}"})
        assert response.json() == {"session": None}

    def test_validly_signed_cookie_accepted(self) -> None:
        client = TestClient(make_app(secret_keys=[SECRET]))
        token = sign(encode({"user": "bob", CREATED_AT_FIELD: 1}))
        response = client.get("/read", headers={"cookie": f"session={token}"})
        assert response.json() == {"session": {"user": "bob"}}

    def test_garbage_cookie_reads_as_no_session(self) -> None:
        client = TestClient(make_app(signed=False))
        response = client.get("/read", headers={"cookie": "session=%%%%"})
        assert response.status_code == 200
        assert response.json() == {"session": None}

    def test_rolling_reissues_cookie(self) -> None:
        client = TestClient(make_app(secret_keys=[SECRET], rolling=True, max_age=60))
        client.post("/write", json={"user": "alice"})
        response = client.get("/read")
        assert len(set_cookie_headers(response)) == 1


# ---------------------------------------------------------------------------
# Store mode
# ---------------------------------------------------------------------------


class TestStoreMode:
    def test_new_session_stored_under_generated_id(self) -> None:
        store = RecordingStore()
        client = TestClient(make_app(key="sid", store=store, signed=False, genid=lambda: "gen-1"))
        response = client.post("/write", json={"user": "a"})

        [call] = store.calls
        op, key, value, max_age = call
        assert (op, key, max_age) == ("set", "gen-1", None)
        assert value["user"] == "a"
        assert isinstance(value[CREATED_AT_FIELD], int)
        [header] = set_cookie_headers(response)
        assert header.startswith("sid=gen-1;")

    def test_no_cookie_no_store_call(self) -> None:
        store = RecordingStore()
        client = TestClient(make_app(store=store, signed=False))
        client.get("/noop")
        assert store.calls == []

    def test_roundtrip_through_store(self) -> None:
        store = MemoryStore()
        client = TestClient(make_app(store=store, secret_keys=[SECRET]))
        client.post("/write", json={"user": "a"})
        assert client.get("/read").json() == {"session": {"user": "a"}}
        assert len(store) == 1

    def test_signed_id_cookie(self) -> None:
        store = RecordingStore()
        client = TestClient(make_app(store=store, secret_keys=[SECRET], genid=lambda: "gen-1"))
        response = client.post("/write", json={"user": "a"})
        [header] = set_cookie_headers(response)
        assert header.startswith(f"session={sign('gen-1')};")

    def test_untouched_session_no_store_write(self) -> None:
        store = RecordingStore()
        client = TestClient(make_app(store=store, signed=False))
        client.post("/write", json={"user": "a"})
        store.calls.clear()
        response = client.get("/noop")
        assert store.ops() == ["get"]
        assert set_cookie_headers(response) == []

    def test_equal_rewrite_no_store_write(self) -> None:
        store = RecordingStore()
        client = TestClient(make_app(store=store, signed=False))
        client.post("/write", json={"user": "a"})
        store.calls.clear()
        client.post("/write", json={"user": "a"})
        assert store.ops() == ["get"]

    def test_update_keeps_id(self) -> None:
        store = RecordingStore()
        ids = iter(["first", "second"])
        client = TestClient(make_app(store=store, signed=False, genid=lambda: next(ids)))
        client.get("/increment")
        client.get("/increment")
        assert list(store.data) == ["first"]
        assert store.data["first"]["count"] == 2

    def test_clear_destroys_entry(self) -> None:
        store = RecordingStore()
        client = TestClient(make_app(key="sid", store=store, signed=False, genid=lambda: "gen-1"))
        client.post("/write", json={"user": "a"})
        response = client.get("/clear")
        assert store.calls[-1] == ("destroy", "gen-1")
        assert store.data == {}
        [header] = set_cookie_headers(response)
        assert "Max-Age=0" in header
        assert "gen-1" not in header

    def test_stale_entry_not_reused(self) -> None:
        store = RecordingStore({"old": {"user": "a", "_expire": 1}})
        client = TestClient(make_app(key="sid", store=store, signed=False, genid=lambda: "new"))
        response = client.get("/read", headers={"cookie": "sid=old"})
        assert response.json() == {"session": None}
        response = client.post("/write", json={"user": "b"}, headers={"cookie": "sid=old"})
        assert store.calls[-1][0:2] == ("set", "new")
        assert set_cookie_headers(response)[0].startswith("sid=new;")

    def test_store_read_failure_fails_before_handler(self) -> None:
        log = HandlerLog()
        store = FailingStore({"get"})
        client = TestClient(make_app(log, key="sid", store=store, signed=False))
        with pytest.raises(StoreError):
            client.get("/noop", headers={"cookie": "sid=abc"})
        assert log.calls == []

    def test_store_write_failure_overrides_success(self) -> None:
        store = FailingStore({"set"})
        client = TestClient(make_app(store=store, signed=False), raise_server_exceptions=False)
        response = client.post("/write", json={"user": "a"})
        assert response.status_code == 500
        assert set_cookie_headers(response) == []

    def test_store_write_failure_raises(self) -> None:
        client = TestClient(make_app(store=FailingStore({"set"}), signed=False))
        with pytest.raises(StoreError):
            client.post("/write", json={"user": "a"})

    def test_context_store_instantiated_per_request(self) -> None:
        instances: list[Any] = []
        shared: dict[str, dict[str, Any]] = {}

        class PerRequest(ContextStore):
            def __init__(self, conn: Any) -> None:
                super().__init__(conn)
                instances.append(self)

            async def get(self, key: str, max_age: int | None) -> Any:
                return shared.get(key)

            async def set(self, key: str, value: dict[str, Any], max_age: int | None) -> None:
                shared[key] = value

            async def destroy(self, key: str) -> None:
                shared.pop(key, None)

        client = TestClient(make_app(context_store=PerRequest, signed=False))
        client.post("/write", json={"user": "a"})
        assert client.get("/read").json() == {"session": {"user": "a"}}
        assert len(instances) == 2
        assert instances[0].conn is not instances[1].conn


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class TestLifecycle:
    def test_duplicate_middleware_rejected_before_handler(self) -> None:
        log = HandlerLog()
        client = TestClient(make_app(log, layers=2, signed=False))
        with pytest.raises(DuplicateMiddlewareError):
            client.get("/noop")
        assert log.calls == []

    def test_handler_error_still_commits_and_propagates(self) -> None:
        store = RecordingStore()
        client = TestClient(make_app(store=store, signed=False, genid=lambda: "gen-1"))
        with pytest.raises(RuntimeError, match="boom"):
            client.get("/boom")
        assert store.calls[-1][0:2] == ("set", "gen-1")

    def test_handler_error_wins_over_commit_error(self) -> None:
        client = TestClient(make_app(store=FailingStore({"set"}), signed=False))
        with pytest.raises(RuntimeError, match="boom"):
            client.get("/boom")

    def test_auto_commit_disabled_drops_changes(self) -> None:
        store = RecordingStore()
        client = TestClient(make_app(store=store, signed=False, auto_commit=False))
        response = client.post("/write", json={"user": "a"})
        assert store.calls == []
        assert set_cookie_headers(response) == []

    def test_explicit_commit_delivers_cookie(self) -> None:
        store = RecordingStore()
        client = TestClient(
            make_app(key="sid", store=store, signed=False, auto_commit=False, genid=lambda: "gen-1")
        )
        response = client.get("/manual")
        assert store.ops() == ["set"]
        [header] = set_cookie_headers(response)
        assert header.startswith("sid=gen-1;")

    def test_invalid_assignment_raises(self) -> None:
        client = TestClient(make_app(signed=False))
        with pytest.raises(TypeError, match="mapping"):
            client.get("/bad-assign")

    def test_session_options_exposed(self) -> None:
        client = TestClient(make_app(key="sid", signed=False))
        assert client.get("/options").json() == {"key": "sid"}

    def test_setup_error_at_construction(self) -> None:
        with pytest.raises(SetupError):
            SessionMiddleware(Starlette(), store=object(), signed=False)

    def test_options_mapping_and_overrides(self) -> None:
        mw = SessionMiddleware(Starlette(), {"key": "a", "signed": False}, key="b")
        assert mw.options.key == "b"

    @pytest.mark.asyncio
    async def test_non_http_scope_passes_through(self) -> None:
        seen: list[dict[str, Any]] = []

        async def app(scope: Any, receive: Any, send: Any) -> None:
            seen.append(scope)

        mw = SessionMiddleware(app, signed=False)
        scope = {"type": "lifespan"}
        await mw(scope, None, None)
        assert seen == [scope]
        assert CONTEXT_SESSION not in scope


class TestAccessors:
    def test_accessors_without_middleware(self) -> None:
        request = Request({"type": "http", "headers": []})
        with pytest.raises(SessionNotInstalledError):
            get_session(request)
        with pytest.raises(SessionNotInstalledError):
            set_session(request, {})
        with pytest.raises(SessionNotInstalledError):
            get_session_options(request)

    def test_not_installed_is_lookup_error(self) -> None:
        assert issubclass(SessionNotInstalledError, LookupError)
