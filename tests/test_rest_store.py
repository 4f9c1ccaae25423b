"""Tests for the PostgREST store and GoTrue identity provider over a mock transport."""

import json
from datetime import date
from urllib.parse import parse_qsl

import httpx
import pytest

from taskboard.errors import EntityStoreError, NotFoundError
from taskboard.filters import Embed, TaskFilter, translate_task_filter
from taskboard.store.rest import (
    OBJECT_MEDIA_TYPE,
    RestAuthProvider,
    RestEntityStore,
    literal_pattern,
    render_params,
    select_clause,
)

from conftest import settle

BASE = "https://backend.example.co"

USER = {
    "id": "user-1",
    "email": "ada@example.com",
    "user_metadata": {"full_name": "Ada Lovelace"},
}


class Recorder:
    """Mock transport handler that records requests and replays canned responses."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]

    def params(self, index: int = -1) -> list[tuple[str, str]]:
        return parse_qsl(self.requests[index].url.query.decode(), keep_blank_values=True)


def make_store(recorder, token=None):
    return RestEntityStore(
        BASE,
        "anon-key",
        token_provider=lambda: token,
        transport=httpx.MockTransport(recorder),
    )


# ── Query rendering ─────────────────────────────────────────────────


class TestRenderParams:
    def test_empty_filter(self):
        assert render_params(translate_task_filter(None)) == [
            ("select", "*,project:projects(id,name)"),
            ("order", "updated_at.desc"),
        ]

    def test_full_filter(self):
        f = TaskFilter(
            project_id="p1",
            status=["todo", "done"],
            search="report",
            date_from=date(2025, 1, 1),
            date_to=date(2025, 1, 31),
        )
        assert render_params(translate_task_filter(f)) == [
            ("select", "*,project:projects(id,name)"),
            ("project_id", "eq.p1"),
            ("status", 'in.("done","todo")'),
            ("or", '(title.imatch."report",description.imatch."report")'),
            ("due_date", "gte.2025-01-01"),
            ("due_date", "lte.2025-01-31"),
            ("order", "updated_at.desc"),
        ]

    def test_search_term_is_quoted(self):
        params = dict(render_params(translate_task_filter(TaskFilter(search='a,b "c"'))))
        assert params["or"] == '(title.imatch."a,b \\"c\\"",description.imatch."a,b \\"c\\"")'

    def test_search_wildcards_are_literal(self):
        assert literal_pattern("100%") == "100%"
        assert literal_pattern("a*b_c") == "a\\*b_c"
        assert literal_pattern("(v1.2)?") == "\\(v1\\.2\\)\\?"
        params = dict(render_params(translate_task_filter(TaskFilter(search="0*"))))
        assert params["or"] == '(title.imatch."0\\\\*",description.imatch."0\\\\*")'

    def test_select_clause(self):
        assert select_clause() == "*"
        assert select_clause(Embed.task_count) == "*,tasks:tasks(count)"
        assert select_clause(Embed.none, ("status", "due_date")) == "status,due_date"


# ── Entity store ────────────────────────────────────────────────────


class TestRestEntityStore:
    @pytest.mark.asyncio
    async def test_list_request(self):
        recorder = Recorder(httpx.Response(200, json=[{"id": "t1"}]))
        store = make_store(recorder, token="user-token")
        rows = await store.list("tasks", translate_task_filter(TaskFilter(status=["done"])))
        assert rows == [{"id": "t1"}]
        request = recorder.last
        assert request.method == "GET"
        assert request.url.path == "/rest/v1/tasks"
        assert request.headers["apikey"] == "anon-key"
        assert request.headers["authorization"] == "Bearer user-token"
        assert ("status", 'in.("done")') in recorder.params()
        await store.aclose()

    @pytest.mark.asyncio
    async def test_anonymous_requests_use_api_key(self):
        recorder = Recorder(httpx.Response(200, json=[]))
        store = make_store(recorder)
        await store.list("projects", translate_task_filter(None))
        assert recorder.last.headers["authorization"] == "Bearer anon-key"
        await store.aclose()

    @pytest.mark.asyncio
    async def test_get_asks_for_single_object(self):
        recorder = Recorder(httpx.Response(200, json={"id": "p1", "tasks": [{"count": 0}]}))
        store = make_store(recorder)
        row = await store.get("projects", "p1", embed=Embed.task_count)
        assert row["id"] == "p1"
        assert recorder.last.headers["accept"] == OBJECT_MEDIA_TYPE
        assert recorder.params() == [("select", "*,tasks:tasks(count)"), ("id", "eq.p1")]
        await store.aclose()

    @pytest.mark.asyncio
    async def test_missing_row_is_not_found(self):
        body = {"code": "PGRST116", "message": "JSON object requested, multiple (or no) rows returned"}
        store = make_store(Recorder(httpx.Response(406, json=body)))
        with pytest.raises(NotFoundError) as excinfo:
            await store.get("tasks", "nope")
        assert excinfo.value.status_code == 406
        await store.aclose()

    @pytest.mark.asyncio
    async def test_insert_returns_representation(self):
        recorder = Recorder(httpx.Response(201, json={"id": "t1", "title": "Write"}))
        store = make_store(recorder)
        row = await store.insert("tasks", {"title": "Write"}, embed=Embed.project_ref)
        assert row["id"] == "t1"
        assert recorder.last.method == "POST"
        assert recorder.last.headers["prefer"] == "return=representation"
        assert json.loads(recorder.last.content) == {"title": "Write"}
        await store.aclose()

    @pytest.mark.asyncio
    async def test_update_and_delete_target_one_row(self):
        recorder = Recorder(httpx.Response(200, json={"id": "t1"}), httpx.Response(204))
        store = make_store(recorder)
        await store.update("tasks", "t1", {"status": "done"})
        assert recorder.requests[0].method == "PATCH"
        assert ("id", "eq.t1") in recorder.params(0)
        await store.delete("tasks", "t1")
        assert recorder.requests[1].method == "DELETE"
        assert recorder.params(1) == [("id", "eq.t1")]
        await store.aclose()

    @pytest.mark.asyncio
    async def test_server_message_is_surfaced(self):
        body = {"code": "42501", "message": "new row violates row-level security policy"}
        store = make_store(Recorder(httpx.Response(403, json=body)))
        with pytest.raises(EntityStoreError) as excinfo:
            await store.insert("projects", {"name": "x"})
        assert excinfo.value.message == "new row violates row-level security policy"
        assert not isinstance(excinfo.value, NotFoundError)
        await store.aclose()

    @pytest.mark.asyncio
    async def test_network_failure(self):
        store = make_store(Recorder(httpx.ConnectError("connection refused")))
        with pytest.raises(EntityStoreError, match="Network error"):
            await store.list("tasks", translate_task_filter(None))
        await store.aclose()


# ── Identity provider ───────────────────────────────────────────────


class TestRestAuthProvider:
    @pytest.mark.asyncio
    async def test_sign_in_stores_token_and_emits(self):
        recorder = Recorder(
            httpx.Response(200, json={"access_token": "jwt", "user": USER}),
        )
        auth = RestAuthProvider(BASE, "anon-key", transport=httpx.MockTransport(recorder))
        events = []
        auth.on_auth_change(events.append)

        principal = await auth.sign_in("ada@example.com", "secret1")
        await settle()

        assert principal.full_name == "Ada Lovelace"
        assert auth.access_token == "jwt"
        assert recorder.last.url.path == "/auth/v1/token"
        assert recorder.params() == [("grant_type", "password")]
        assert [e.kind for e in events] == ["signed_in"]
        await auth.aclose()

    @pytest.mark.asyncio
    async def test_bad_credentials(self):
        body = {"error": "invalid_grant", "error_description": "Invalid login credentials"}
        auth = RestAuthProvider(
            BASE, "anon-key", transport=httpx.MockTransport(Recorder(httpx.Response(400, json=body)))
        )
        with pytest.raises(EntityStoreError, match="Invalid login credentials"):
            await auth.sign_in("ada@example.com", "wrong")
        assert auth.access_token is None
        await auth.aclose()

    @pytest.mark.asyncio
    async def test_sign_up_sends_full_name(self):
        recorder = Recorder(httpx.Response(200, json={"user": {**USER, "user_metadata": {}}}))
        auth = RestAuthProvider(BASE, "anon-key", transport=httpx.MockTransport(recorder))
        principal = await auth.sign_up("ada@example.com", "secret1", "Ada Lovelace")
        assert json.loads(recorder.last.content)["data"] == {"full_name": "Ada Lovelace"}
        assert principal.full_name == "ada"
        await auth.aclose()

    @pytest.mark.asyncio
    async def test_current_user_with_expired_token(self):
        recorder = Recorder(
            httpx.Response(200, json={"access_token": "jwt", "user": USER}),
            httpx.Response(401, json={"msg": "JWT expired"}),
        )
        auth = RestAuthProvider(BASE, "anon-key", transport=httpx.MockTransport(recorder))
        await auth.sign_in("ada@example.com", "secret1")
        assert await auth.get_current_user() is None
        assert auth.access_token is None
        await auth.aclose()

    @pytest.mark.asyncio
    async def test_sign_out(self):
        recorder = Recorder(
            httpx.Response(200, json={"access_token": "jwt", "user": USER}),
            httpx.Response(204),
        )
        auth = RestAuthProvider(BASE, "anon-key", transport=httpx.MockTransport(recorder))
        events = []
        auth.on_auth_change(events.append)
        await auth.sign_in("ada@example.com", "secret1")
        await auth.sign_out()
        await settle()
        assert recorder.last.url.path == "/auth/v1/logout"
        assert recorder.last.headers["authorization"] == "Bearer jwt"
        assert auth.access_token is None
        assert [e.kind for e in events] == ["signed_in", "signed_out"]
        assert await auth.get_current_user() is None
        await auth.aclose()
