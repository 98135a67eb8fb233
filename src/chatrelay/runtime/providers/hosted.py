"""Hosted-inference path: OpenAI-style chat completions over httpx.

This is the default route and covers every model that is neither a
fast-inference nor a Gemini model, including unknown pass-through ids.
A latency-oriented override is applied on top of the per-model
parameters: output is capped at 600 tokens and small presence and
frequency penalties are added.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from chatrelay.errors import UpstreamError
from chatrelay.models.catalog import ProviderKind
from chatrelay.models.chat import Role
from chatrelay.runtime.providers.base import (
    ProviderHandler,
    ProviderReply,
    ProviderRequest,
    TokenSink,
)

if TYPE_CHECKING:
    from chatrelay.runtime.client_pool import ProviderClient

log = logging.getLogger(__name__)

COMPLETIONS_PATH = "/chat/completions"
SPEED_MAX_TOKENS = 600
SPEED_PENALTY = 0.1

_DONE_SENTINEL = "[DONE]"


def speed_parameters(request: ProviderRequest) -> dict[str, Any]:
    """Per-model parameters with the latency override applied."""
    body = request.params.to_openai()
    body["max_tokens"] = min(request.params.max_tokens, SPEED_MAX_TOKENS)
    body["presence_penalty"] = SPEED_PENALTY
    body["frequency_penalty"] = SPEED_PENALTY
    return body


def _first_choice(data: dict[str, Any]) -> dict[str, Any] | None:
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices:
        return None
    choice = choices[0]
    return choice if isinstance(choice, dict) else None


class HostedHandler(ProviderHandler):
    kind = ProviderKind.HOSTED

    def translate_messages(self, request: ProviderRequest) -> list[dict[str, Any]]:
        keep_developer = (
            request.descriptor is not None and request.descriptor.accepts_developer_role
        )
        out: list[dict[str, Any]] = [
            {"role": Role.SYSTEM.value, "content": request.system_prompt}
        ]
        for msg in request.messages:
            role = msg.role
            if role is Role.AGENT:
                role = Role.ASSISTANT
            elif role is Role.DEVELOPER and not keep_developer:
                role = Role.SYSTEM
            out.append({"role": role.value, "content": msg.content})
        return out

    def build_body(self, request: ProviderRequest, *, stream: bool) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": request.wire_model,
            "messages": self.translate_messages(request),
            **speed_parameters(request),
        }
        if stream:
            body["stream"] = True
        return body

    async def handle(
        self,
        request: ProviderRequest,
        client: ProviderClient,
        sink: TokenSink | None = None,
    ) -> ProviderReply:
        if sink is None:
            return await self._fetch(request, client)
        return await self._stream(request, client, sink)

    async def _fetch(self, request: ProviderRequest, client: ProviderClient) -> ProviderReply:
        data = await client.post_json(COMPLETIONS_PATH, self.build_body(request, stream=False))
        choice = _first_choice(data)
        if choice is None:
            log.warning("hosted.no_choices model=%s", request.model_id)
            return ProviderReply(text="")

        message = choice.get("message") or {}
        content = message.get("content") or ""
        reasoning = message.get("reasoning_content") or ""
        return ProviderReply(
            text=content if isinstance(content, str) else "",
            reasoning=reasoning if isinstance(reasoning, str) else "",
            meta={"usage": data.get("usage")},
        )

    async def _stream(
        self,
        request: ProviderRequest,
        client: ProviderClient,
        sink: TokenSink,
    ) -> ProviderReply:
        parts: list[str] = []
        body = self.build_body(request, stream=True)

        async with client.stream_lines(COMPLETIONS_PATH, body) as lines:
            async for line in lines:
                line = line.strip()
                if not line.startswith("data:"):
                    continue
                payload = line[len("data:"):].strip()
                if payload == _DONE_SENTINEL:
                    break
                try:
                    event = json.loads(payload)
                except json.JSONDecodeError:
                    log.debug("hosted.stream_skip_line model=%s", request.model_id)
                    continue
                if not isinstance(event, dict):
                    continue

                if "error" in event:
                    err = event["error"]
                    message = err.get("message") if isinstance(err, dict) else str(err)
                    raise UpstreamError(
                        message or "Upstream stream error",
                        provider=self.kind.value,
                    )

                choice = _first_choice(event)
                if choice is None:
                    continue
                delta = choice.get("delta") or {}
                reasoning = delta.get("reasoning_content")
                if isinstance(reasoning, str) and reasoning:
                    sink.push_reasoning(reasoning)
                content = delta.get("content")
                if isinstance(content, str) and content:
                    parts.append(content)
                    await sink.push(content)

        return ProviderReply(text="".join(parts))
