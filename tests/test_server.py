import gzip
import json

import httpx
import pytest
from fastapi.testclient import TestClient

from ev_advisor.config import Settings
from ev_advisor.dify import DifyClient
from ev_advisor.server import app, get_dify, get_settings

DIFY = "http://dify.test"
SSE_BODY = b'event: message\ndata: {"answer": "hi", "conversation_id": "c-1"}\n\ndata: [DONE]\n\n'


@pytest.fixture
def upstream():
    """Install a fake agent; yields the list of requests it received."""
    state = {"handler": None, "requests": []}

    def handler(request: httpx.Request) -> httpx.Response:
        state["requests"].append(request)
        return state["handler"](request)

    def make_dify() -> DifyClient:
        return DifyClient("secret", DIFY, httpx.AsyncClient(transport=httpx.MockTransport(handler)))

    app.dependency_overrides[get_settings] = lambda: Settings(dify_api_key="secret", dify_base_url=DIFY)
    app.dependency_overrides[get_dify] = make_dify
    yield state
    app.dependency_overrides.clear()


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


def test_chat_messages_streams_upstream_body(upstream, client) -> None:
    upstream["handler"] = lambda request: httpx.Response(
        200, content=SSE_BODY, headers={"content-type": "text/event-stream"}
    )

    resp = client.post(
        "/api/dify/chat-messages",
        json={"query": "  推荐车  ", "inputs": {"budget": 30, "tags": ["suv"]}, "user": "u-1", "conversationId": ""},
    )
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/event-stream")
    assert resp.headers["cache-control"] == "no-cache, no-transform"
    assert resp.content == SSE_BODY

    sent = upstream["requests"][0]
    assert str(sent.url) == f"{DIFY}/v1/chat-messages"
    assert sent.headers["authorization"] == "Bearer secret"
    assert json.loads(sent.content) == {
        "query": "推荐车",
        "inputs": {"budget": 30, "tags": "['suv']"},
        "response_mode": "streaming",
        "conversation_id": "",
        "user": "u-1",
    }


def test_chat_messages_decodes_compressed_upstream(upstream, client) -> None:
    upstream["handler"] = lambda request: httpx.Response(
        200,
        content=gzip.compress(SSE_BODY),
        headers={"content-type": "text/event-stream", "content-encoding": "gzip"},
    )

    resp = client.post("/api/dify/chat-messages", json={"query": "hi"})
    assert resp.status_code == 200
    assert "content-encoding" not in resp.headers
    assert resp.content == SSE_BODY


def test_chat_messages_rejects_invalid_json(upstream, client) -> None:
    resp = client.post(
        "/api/dify/chat-messages", content=b"{not json", headers={"content-type": "application/json"}
    )
    assert resp.status_code == 400
    assert resp.json() == {"error": "Invalid JSON request body"}
    assert upstream["requests"] == []


def test_chat_messages_requires_query(upstream, client) -> None:
    resp = client.post("/api/dify/chat-messages", json={"query": "   "})
    assert resp.status_code == 400
    assert resp.json() == {"error": "query is required"}


def test_chat_messages_passes_upstream_status(upstream, client) -> None:
    upstream["handler"] = lambda request: httpx.Response(429, text="x" * 1500)
    resp = client.post("/api/dify/chat-messages", json={"query": "hi"})
    assert resp.status_code == 429
    body = resp.json()
    assert body["error"] == "Failed to request Dify chat-messages"
    assert len(body["details"]) == 1000


def test_chat_messages_transport_failure(upstream, client) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    upstream["handler"] = handler
    resp = client.post("/api/dify/chat-messages", json={"query": "hi"})
    assert resp.status_code == 500
    assert resp.json() == {"error": "Unexpected error while requesting Dify chat-messages", "details": "refused"}


def test_missing_api_key(upstream, client) -> None:
    app.dependency_overrides[get_settings] = lambda: Settings(dify_api_key="")
    assert client.post("/api/dify/chat-messages", json={"query": "hi"}).status_code == 500
    resp = client.get("/api/dify/parameters")
    assert resp.status_code == 500
    assert resp.json() == {"error": "DIFY_EV_AGENT environment variable is not set"}


def test_parameters_are_normalized(upstream, client) -> None:
    upstream["handler"] = lambda request: httpx.Response(
        200,
        json={
            "opening_statement": "你好，告诉我你的预算",
            "user_input_form": [
                {"text-input": {"label": {"en_US": "Budget", "zh_Hans": "预算"}, "variable": "budget", "required": True}},
                {"select": {"variable": "body", "options": ["SUV", "轿车"], "default": "SUV"}},
                {"file": {"variable": "doc"}},
            ],
        },
    )

    resp = client.get("/api/dify/parameters")
    assert resp.status_code == 200
    assert str(upstream["requests"][0].url) == f"{DIFY}/v1/parameters"
    assert resp.json() == {
        "userInputForm": [
            {"type": "text-input", "label": "预算", "variable": "budget", "required": True, "defaultValue": ""},
            {
                "type": "select",
                "label": "body",
                "variable": "body",
                "required": False,
                "defaultValue": "SUV",
                "options": [{"label": "SUV", "value": "SUV"}, {"label": "轿车", "value": "轿车"}],
            },
        ],
        "openingStatement": "你好，告诉我你的预算",
    }


def test_parameters_without_opening_statement(upstream, client) -> None:
    upstream["handler"] = lambda request: httpx.Response(200, json={})
    assert client.get("/api/dify/parameters").json() == {"userInputForm": [], "openingStatement": None}


def test_parameters_upstream_failure(upstream, client) -> None:
    upstream["handler"] = lambda request: httpx.Response(401, text="bad key")
    resp = client.get("/api/dify/parameters")
    assert resp.status_code == 401
    assert resp.json() == {"error": "Failed to fetch Dify parameters", "details": "bad key"}
