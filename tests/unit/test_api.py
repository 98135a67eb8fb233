"""Tests for the FastAPI endpoints with scripted provider handlers."""

from __future__ import annotations

import json
import logging
from typing import Any

import pytest
from fastapi.testclient import TestClient

from chatrelay.api.app import create_app
from chatrelay.config import RelayConfig
from chatrelay.errors import ConfigurationError, UpstreamError, UpstreamTimeoutError
from chatrelay.models.catalog import ProviderKind
from chatrelay.runtime.prompts import UNIFIED_PROMPT
from chatrelay.runtime.providers.base import ProviderHandler, ProviderReply
from chatrelay.runtime.router import NO_RESPONSE_PLACEHOLDER

MAVERICK = "meta/Llama-4-Maverick-17B-128E-Instruct-FP8"


class ScriptedHandler(ProviderHandler):
    kind = ProviderKind.HOSTED

    def __init__(self) -> None:
        self.chunks: list[str] = ["Hello", " there"]
        self.error: Exception | None = None
        self.requests = []

    def translate_messages(self, request) -> list[dict[str, Any]]:
        return []

    async def handle(self, request, client, sink=None) -> ProviderReply:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        if sink is not None:
            for chunk in self.chunks:
                await sink.push(chunk)
        return ProviderReply(text="".join(self.chunks))


@pytest.fixture
def handler():
    return ScriptedHandler()


@pytest.fixture
def client(tmp_path, handler):
    config = RelayConfig.model_validate(
        {
            "hosted": {"token": "gh-test-token"},
            "groq": {"api_key": "groq-test-key"},
            "gemini": {"api_key": "gemini-test-key"},
            "rate_limit": {"limit": 3},
            "runtime": {"log_level": "WARNING"},
            "storage": {"db_path": str(tmp_path / "api.db")},
        }
    )
    app = create_app(config, handlers={kind: handler for kind in ProviderKind})
    with TestClient(app, raise_server_exceptions=False) as c:
        yield c


def _chat(content: str = "hi", **extra) -> dict[str, Any]:
    return {"messages": [{"role": "user", "content": content}], **extra}


def _events(body: str) -> list[str]:
    return [line[len("data: "):] for line in body.split("\n\n") if line.startswith("data: ")]


# ── Health & catalog ───────────────────────────────────────────────────────


def test_health_endpoint(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "ok"
    assert "timestamp" in data


def test_request_id_echoed(client):
    resp = client.get("/health", headers={"X-Request-ID": "req-42"})
    assert resp.headers["X-Request-ID"] == "req-42"


def test_models_endpoint(client):
    data = client.get("/models").json()
    assert data["default"] == MAVERICK
    by_id = {m["id"]: m for m in data["models"]}
    assert by_id["qwen/qwen3-32b"]["provider"] == "groq"
    assert by_id["qwen/qwen3-32b"]["group"] == "Groq"
    assert by_id["gemini/2.0-flash"]["group"] == "Google"
    assert by_id["openai/gpt-4.1"]["vision_capable"] is True


def test_pool_prewarmed_on_startup(client):
    pool = client.app.state.pool
    assert "openai/gpt-4.1" in pool
    assert MAVERICK in pool


# ── POST /chat ─────────────────────────────────────────────────────────────


class TestChatValidation:
    def test_missing_messages(self, client):
        resp = client.post("/chat", json={"modelId": MAVERICK})
        assert resp.status_code == 400
        assert resp.json()["error"] == "Invalid request: messages array is required"

    def test_messages_not_a_list(self, client):
        resp = client.post("/chat", json={"messages": "hi"})
        assert resp.status_code == 400

    def test_body_not_json(self, client):
        resp = client.post(
            "/chat", content=b"not json", headers={"Content-Type": "application/json"}
        )
        assert resp.status_code == 400
        assert resp.json() == {"error": "Invalid request: body must be JSON"}
        assert resp.headers["X-RateLimit-Remaining"] == "2"

    def test_bad_role_reports_details(self, client):
        resp = client.post("/chat", json={"messages": [{"role": "robot", "content": "x"}]})
        assert resp.status_code == 400
        data = resp.json()
        assert data["error"] == "Invalid request"
        assert any(d.startswith("messages.0.role") for d in data["details"])


class TestChatBuffered:
    def test_reply_shape_and_headers(self, client, handler):
        resp = client.post("/chat", json=_chat(modelId=MAVERICK))
        assert resp.status_code == 200
        message = resp.json()["message"]
        assert message["role"] == "assistant"
        assert message["content"] == "Hello there"
        assert "timestamp" in message
        assert "reasoning" not in message
        assert resp.headers["X-RateLimit-Limit"] == "3"
        assert resp.headers["X-RateLimit-Remaining"] == "2"
        assert handler.requests[0].model_id == MAVERICK

    def test_reasoning_surfaced(self, client, handler):
        handler.chunks = ["<think>plan</think>answer"]
        message = client.post("/chat", json=_chat()).json()["message"]
        assert message["content"] == "answer"
        assert message["reasoning"] == "plan"

    def test_upstream_failure_is_500(self, client, handler):
        handler.error = UpstreamError("model not allowed", provider="github-hosted")
        resp = client.post("/chat", json=_chat())
        assert resp.status_code == 500
        assert resp.json() == {"error": "Internal Server Error", "details": "model not allowed"}

    def test_timeout_rendered_as_500_with_rate_limit_headers(self, client, handler):
        handler.error = UpstreamTimeoutError("slow", provider="groq")
        resp = client.post("/chat", json=_chat())
        assert resp.status_code == 500
        assert resp.json() == {"error": "Internal Server Error", "details": "slow"}
        assert resp.headers["X-RateLimit-Limit"] == "3"
        assert resp.headers["X-RateLimit-Remaining"] == "2"

    def test_missing_credential_is_500(self, client, handler):
        handler.error = ConfigurationError("GROQ_API_KEY is not configured")
        resp = client.post("/chat", json=_chat())
        assert resp.status_code == 500
        assert resp.json()["details"] == "GROQ_API_KEY is not configured"

    def test_cache_clear(self, client, handler):
        client.post("/chat", json=_chat("same"))
        client.post("/chat", json=_chat("same"))
        assert len(handler.requests) == 1

        assert client.delete("/cache").json() == {"cleared": 1}
        client.post("/chat", json=_chat("same"))
        assert len(handler.requests) == 2


class TestChatStreaming:
    def test_sse_tokens_then_done(self, client):
        resp = client.post("/chat", json=_chat(stream=True))
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/event-stream")
        assert resp.headers["Cache-Control"] == "no-cache"
        events = _events(resp.text)
        assert [json.loads(e) for e in events[:-1]] == [{"token": "Hello"}, {"token": " there"}]
        assert events[-1] == "[DONE]"

    def test_accept_header_selects_streaming(self, client):
        resp = client.post("/chat", json=_chat(), headers={"Accept": "text/event-stream"})
        assert _events(resp.text)[-1] == "[DONE]"

    def test_empty_stream_sends_placeholder(self, client, handler):
        handler.chunks = []
        events = _events(client.post("/chat", json=_chat(stream=True)).text)
        assert json.loads(events[0]) == {"token": NO_RESPONSE_PLACEHOLDER}

    def test_error_event(self, client, handler):
        handler.error = UpstreamError("provider down")
        events = _events(client.post("/chat", json=_chat(stream=True)).text)
        assert [json.loads(e) for e in events] == [{"error": "provider down"}]


class TestRateLimit:
    def test_fourth_request_rejected(self, client):
        headers = {"X-Forwarded-For": "203.0.113.7, 10.0.0.1"}
        for _ in range(3):
            assert client.post("/chat", json=_chat(), headers=headers).status_code == 200

        resp = client.post("/chat", json=_chat(), headers=headers)
        assert resp.status_code == 429
        data = resp.json()
        assert data["error"] == "Rate limit exceeded"
        assert data["limit"] == 3
        assert data["remaining"] == 0
        assert data["resetAt"].endswith("+00:00")
        assert data["retryAfter"] >= 1
        assert resp.headers["X-RateLimit-Remaining"] == "0"
        assert "Retry-After" in resp.headers

    def test_clients_counted_separately(self, client):
        for _ in range(3):
            client.post("/chat", json=_chat(), headers={"X-Real-IP": "198.51.100.1"})
        resp = client.post("/chat", json=_chat(), headers={"X-Real-IP": "198.51.100.2"})
        assert resp.status_code == 200


# ── Settings ───────────────────────────────────────────────────────────────


class TestLogLevel:
    def test_level_changed_at_runtime(self, client):
        resp = client.put("/settings/log-level", json={"level": "DEBUG"})
        assert resp.status_code == 200
        assert resp.json() == {"level": "DEBUG"}
        assert logging.getLogger().level == logging.DEBUG

        client.put("/settings/log-level", json={"level": "WARNING"})
        assert logging.getLogger().level == logging.WARNING

    def test_unknown_level_rejected(self, client):
        resp = client.put("/settings/log-level", json={"level": "CHATTY"})
        assert resp.status_code == 422
        assert logging.getLogger().level == logging.WARNING


# ── System prompt ──────────────────────────────────────────────────────────


class TestSystemPrompt:
    def test_default_prompt(self, client):
        data = client.get("/system-prompt").json()
        assert data == {"prompt": UNIFIED_PROMPT, "custom": False}

    def test_override_round_trip(self, client, handler):
        resp = client.put("/system-prompt", json={"prompt": "  Be brief.  "})
        assert resp.json() == {"prompt": "Be brief.", "custom": True}

        client.post("/chat", json=_chat())
        assert handler.requests[-1].system_prompt == "Be brief."

        assert client.delete("/system-prompt").json() == {"status": "cleared"}
        assert client.get("/system-prompt").json()["custom"] is False

    def test_request_override_beats_stored(self, client, handler):
        client.put("/system-prompt", json={"prompt": "stored"})
        client.post("/chat", json=_chat(systemPrompt="per request"))
        assert handler.requests[-1].system_prompt == "per request"


# ── Messages & chats ───────────────────────────────────────────────────────


class TestMessages:
    def test_add_list_and_filter(self, client):
        resp = client.post(
            "/messages", json={"role": "user", "content": "q", "modelId": "openai/gpt-4.1"}
        )
        assert resp.status_code == 201
        assert resp.json()["id"].startswith("msg_")
        client.post("/messages", json={"role": "assistant", "content": "a", "modelId": MAVERICK})

        assert client.get("/messages").json()["count"] == 2
        filtered = client.get("/messages", params={"modelId": "openai/gpt-4.1"}).json()
        assert [m["content"] for m in filtered["messages"]] == ["q"]

    def test_clear(self, client):
        client.post("/messages", json={"role": "user", "content": "q"})
        assert client.delete("/messages").json() == {"cleared": 1}
        assert client.get("/messages").json()["count"] == 0

    def test_rating(self, client):
        msg_id = client.post("/messages", json={"role": "assistant", "content": "a"}).json()["id"]
        resp = client.post(f"/messages/{msg_id}/rating", json={"rating": 5, "feedback": "great"})
        assert resp.json() == {"status": "rated"}
        stored = client.get("/messages").json()["messages"][0]
        assert stored["rating"] == 5

    def test_rating_unknown_message(self, client):
        resp = client.post("/messages/msg_missing/rating", json={"rating": 3})
        assert resp.status_code == 404

    def test_rating_out_of_range(self, client):
        resp = client.post("/messages/msg_missing/rating", json={"rating": 9})
        assert resp.status_code == 422


class TestChats:
    def test_create_list_delete(self, client):
        resp = client.post("/chats", json={"title": "Trip planning"})
        assert resp.status_code == 201
        chat_id = resp.json()["id"]
        assert chat_id.startswith("chat_")

        listed = client.get("/chats").json()
        assert listed["count"] == 1
        assert listed["chats"][0]["title"] == "Trip planning"

        assert client.delete(f"/chats/{chat_id}").json() == {"status": "deleted"}
        assert client.delete(f"/chats/{chat_id}").status_code == 404
