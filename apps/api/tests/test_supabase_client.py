import asyncio
import json

import httpx
import pytest
from fastapi import HTTPException

from family_health.supabase import SupabaseClient


@pytest.fixture
def mock_supabase(monkeypatch):
    """Route every AsyncClient the client opens through a recording handler."""
    seen = []
    responses = []
    real_client = httpx.AsyncClient

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return responses.pop(0) if responses else httpx.Response(200, json=[])

    def client_factory(**kwargs):
        return real_client(transport=httpx.MockTransport(handler), **kwargs)

    monkeypatch.setattr(httpx, "AsyncClient", client_factory)
    client = SupabaseClient(base_url="http://supabase.test", anon_key="anon", access_token="user-token")
    return client, seen, responses


def test_select_sends_user_token_and_filters(mock_supabase) -> None:
    client, seen, responses = mock_supabase
    responses.append(httpx.Response(200, json=[{"id": "m1"}]))

    rows = asyncio.run(client.select("health_metrics", params={"select": "*", "member_id": "eq.m1"}))

    assert rows == [{"id": "m1"}]
    request = seen[0]
    assert request.method == "GET"
    assert request.url.path == "/rest/v1/health_metrics"
    assert request.url.params["member_id"] == "eq.m1"
    assert request.headers["apikey"] == "anon"
    assert request.headers["Authorization"] == "Bearer user-token"
    assert "Prefer" not in request.headers


def test_upsert_merges_on_conflict_columns(mock_supabase) -> None:
    client, seen, responses = mock_supabase
    responses.append(httpx.Response(201, json=[{"id": "pref-1", "user_id": "u1"}]))

    rows = asyncio.run(
        client.upsert("health_notification_preferences", {"user_id": "u1"}, on_conflict="user_id")
    )

    assert rows == [{"id": "pref-1", "user_id": "u1"}]
    request = seen[0]
    assert request.method == "POST"
    assert request.url.params["on_conflict"] == "user_id"
    assert request.headers["Prefer"] == "resolution=merge-duplicates,return=representation"
    assert json.loads(request.content) == {"user_id": "u1"}


def test_empty_write_response_is_empty_list(mock_supabase) -> None:
    client, seen, responses = mock_supabase
    responses.append(httpx.Response(204))

    assert asyncio.run(client.delete("doctor_visits", params={"id": "eq.v1"})) == []
    assert seen[0].headers["Prefer"] == "return=representation"


def test_rpc_posts_to_function_path(mock_supabase) -> None:
    client, seen, responses = mock_supabase
    responses.append(httpx.Response(200, content=b""))

    assert asyncio.run(client.rpc("seed_document_categories", {"p_family_id": "f1"})) is None
    assert seen[0].url.path == "/rest/v1/rpc/seed_document_categories"


def test_error_status_becomes_http_exception(mock_supabase) -> None:
    client, _, responses = mock_supabase
    responses.append(httpx.Response(403, text="permission denied for table health_metrics"))

    with pytest.raises(HTTPException) as exc:
        asyncio.run(client.update("health_metrics", {"notes": "x"}, params={"id": "eq.m1"}))

    assert exc.value.status_code == 403
    assert "Supabase update failed (health_metrics)" in exc.value.detail
    assert "permission denied" in exc.value.detail
