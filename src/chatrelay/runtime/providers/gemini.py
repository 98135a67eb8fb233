"""Gemini path: generateContent REST calls keyed by API key.

Gemini accepts only ``user`` and ``model`` turns and answers in one
piece. When the caller asked for a stream, the completed text is pushed
as a single chunk so the streaming contract still holds.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

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

# Catalog ids to dated upstream releases. New releases need an entry here.
MODEL_ALIASES: dict[str, str] = {
    "gemini/2.0-flash": "gemini-2.0-flash",
    "gemini/2.5-flash": "gemini-2.5-flash-preview-04-17",
}

_USER = "user"
_MODEL = "model"


def resolve_model_name(model_id: str) -> str:
    """Upstream model name for a catalog id."""
    if model_id in MODEL_ALIASES:
        return MODEL_ALIASES[model_id]
    if model_id.startswith("gemini/"):
        return "gemini-" + model_id[len("gemini/"):]
    return model_id


def _gemini_role(role: Role) -> str:
    # system, developer and agent turns all collapse to user
    return _MODEL if role is Role.ASSISTANT else _USER


def _candidate_text(data: dict[str, Any]) -> str:
    candidates = data.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        return ""
    content = candidates[0].get("content") if isinstance(candidates[0], dict) else None
    parts = content.get("parts") if isinstance(content, dict) else None
    if not isinstance(parts, list):
        return ""
    return "".join(
        p["text"] for p in parts if isinstance(p, dict) and isinstance(p.get("text"), str)
    )


class GeminiHandler(ProviderHandler):
    kind = ProviderKind.GEMINI

    def translate_messages(self, request: ProviderRequest) -> list[dict[str, Any]]:
        contents: list[dict[str, Any]] = [
            {"role": _USER, "parts": [{"text": request.system_prompt}]}
        ]
        for msg in request.messages:
            contents.append({"role": _gemini_role(msg.role), "parts": [{"text": msg.content}]})
        return contents

    def build_body(self, request: ProviderRequest) -> dict[str, Any]:
        generation: dict[str, Any] = {
            "temperature": request.params.temperature,
            "maxOutputTokens": request.params.max_tokens,
        }
        if request.params.top_p is not None:
            generation["topP"] = request.params.top_p
        return {
            "contents": self.translate_messages(request),
            "generationConfig": generation,
        }

    async def handle(
        self,
        request: ProviderRequest,
        client: ProviderClient,
        sink: TokenSink | None = None,
    ) -> ProviderReply:
        model = resolve_model_name(request.wire_model)
        data = await client.post_json(f"/{model}:generateContent", self.build_body(request))
        text = _candidate_text(data)
        if not text:
            log.warning("gemini.empty_candidates model=%s", model)
        if sink is not None and text:
            await sink.push(text)
        return ProviderReply(text=text, meta={"upstream_model": model})
