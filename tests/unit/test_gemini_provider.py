"""Tests for the Gemini provider handler."""

from __future__ import annotations

import json

import httpx
import pytest

from chatrelay.errors import UpstreamError
from chatrelay.models.catalog import ProviderKind
from chatrelay.models.chat import ChatMessage, Role
from chatrelay.runtime.client_pool import ProviderClient, RetryPolicy
from chatrelay.runtime.providers.base import ProviderRequest
from chatrelay.runtime.providers.gemini import GeminiHandler, resolve_model_name


class _Sink:
    def __init__(self) -> None:
        self.chunks: list[str] = []

    async def push(self, chunk: str) -> None:
        self.chunks.append(chunk)

    def push_reasoning(self, text: str) -> None:
        raise AssertionError("gemini never splits reasoning")


def _request(catalog, model_id="gemini/2.0-flash", messages=None):
    return ProviderRequest(
        model_id=model_id,
        messages=messages or [ChatMessage(role=Role.USER, content="hi")],
        system_prompt="SYS",
        params=catalog.resolve_parameters(model_id),
        descriptor=catalog.lookup(model_id),
    )


def _client(handler):
    return ProviderClient(
        ProviderKind.GEMINI,
        "https://gemini.test/v1beta/models",
        "gkey",
        retry=RetryPolicy(max_retries=0),
        transport=httpx.MockTransport(handler),
    )


def _candidates(*texts: str) -> dict:
    return {"candidates": [{"content": {"parts": [{"text": t} for t in texts]}}]}


class TestModelAliases:
    def test_static_aliases(self):
        assert resolve_model_name("gemini/2.0-flash") == "gemini-2.0-flash"
        assert resolve_model_name("gemini/2.5-flash") == "gemini-2.5-flash-preview-04-17"

    def test_prefix_rewrite_for_unlisted(self):
        assert resolve_model_name("gemini/1.5-pro") == "gemini-1.5-pro"

    def test_plain_name_untouched(self):
        assert resolve_model_name("gemini-exp") == "gemini-exp"


class TestRoleMapping:
    def test_only_user_and_model_roles(self, catalog):
        messages = [
            ChatMessage(role=Role.SYSTEM, content="s"),
            ChatMessage(role=Role.USER, content="u"),
            ChatMessage(role=Role.ASSISTANT, content="a"),
            ChatMessage(role=Role.AGENT, content="g"),
            ChatMessage(role=Role.DEVELOPER, content="d"),
        ]
        contents = GeminiHandler().translate_messages(_request(catalog, messages=messages))
        assert contents[0] == {"role": "user", "parts": [{"text": "SYS"}]}
        roles = [c["role"] for c in contents]
        assert set(roles) <= {"user", "model"}
        assert roles == ["user", "user", "user", "model", "user", "user"]

    def test_generation_config(self, catalog):
        body = GeminiHandler().build_body(_request(catalog))
        assert body["generationConfig"] == {"temperature": 0.2, "maxOutputTokens": 1024}


class TestHandle:
    @pytest.mark.asyncio
    async def test_buffered_request(self, catalog):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json=_candidates("Hello", " there"))

        client = _client(handler)
        reply = await GeminiHandler().handle(_request(catalog, "gemini/2.5-flash"), client)
        await client.aclose()

        assert reply.text == "Hello there"
        request = seen[0]
        assert request.url.path.endswith("/gemini-2.5-flash-preview-04-17:generateContent")
        assert request.url.params["key"] == "gkey"
        assert "contents" in json.loads(request.content)

    @pytest.mark.asyncio
    async def test_stream_delivers_single_synthetic_chunk(self, catalog):
        client = _client(lambda request: httpx.Response(200, json=_candidates("All at once")))
        sink = _Sink()
        reply = await GeminiHandler().handle(_request(catalog), client, sink)
        await client.aclose()
        assert sink.chunks == ["All at once"]
        assert reply.text == "All at once"

    @pytest.mark.asyncio
    async def test_empty_candidates(self, catalog):
        client = _client(lambda request: httpx.Response(200, json={"candidates": []}))
        sink = _Sink()
        reply = await GeminiHandler().handle(_request(catalog), client, sink)
        await client.aclose()
        assert reply.text == ""
        assert sink.chunks == []

    @pytest.mark.asyncio
    async def test_upstream_error_propagates(self, catalog):
        client = _client(
            lambda request: httpx.Response(400, json={"error": {"message": "API key not valid"}})
        )
        with pytest.raises(UpstreamError, match="API key not valid"):
            await GeminiHandler().handle(_request(catalog), client)
        await client.aclose()
