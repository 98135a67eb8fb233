"""Fast-inference path: Groq models through the litellm SDK."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import litellm

from chatrelay.errors import RelayError, classify_error
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

LITELLM_PREFIX = "groq/"

_ROLE_MAP: dict[Role, Role] = {
    Role.AGENT: Role.ASSISTANT,
    Role.DEVELOPER: Role.SYSTEM,
}


def _text_attr(obj: Any, *names: str) -> str:
    """First non-empty string attribute among ``names``."""
    for name in names:
        value = getattr(obj, name, None)
        if isinstance(value, str) and value:
            return value
    return ""


class GroqHandler(ProviderHandler):
    kind = ProviderKind.GROQ

    def translate_messages(self, request: ProviderRequest) -> list[dict[str, Any]]:
        out: list[dict[str, Any]] = [
            {"role": Role.SYSTEM.value, "content": request.system_prompt}
        ]
        for msg in request.messages:
            role = _ROLE_MAP.get(msg.role, msg.role)
            out.append({"role": role.value, "content": msg.content})
        return out

    def completion_kwargs(
        self,
        request: ProviderRequest,
        client: ProviderClient,
        *,
        stream: bool,
    ) -> dict[str, Any]:
        params = request.params
        kwargs: dict[str, Any] = {
            "model": f"{LITELLM_PREFIX}{request.wire_model}",
            "messages": self.translate_messages(request),
            "temperature": params.temperature,
            "max_tokens": params.max_tokens,
            **client.sdk_kwargs(),
        }
        if params.top_p is not None:
            kwargs["top_p"] = params.top_p
        if request.reasoning_capable:
            # Ask Groq to return thinking separately from the answer.
            kwargs["reasoning_format"] = "parsed"
        if stream:
            kwargs["stream"] = True
        return kwargs

    async def handle(
        self,
        request: ProviderRequest,
        client: ProviderClient,
        sink: TokenSink | None = None,
    ) -> ProviderReply:
        try:
            if sink is None:
                return await self._fetch(request, client)
            return await self._stream(request, client, sink)
        except RelayError:
            raise
        except Exception as exc:
            log.warning("groq.call_failed model=%s error=%s", request.model_id, exc)
            raise classify_error(exc, provider=self.kind.value) from exc

    async def _fetch(self, request: ProviderRequest, client: ProviderClient) -> ProviderReply:
        response = await litellm.acompletion(
            **self.completion_kwargs(request, client, stream=False)
        )
        choices = getattr(response, "choices", None) or []
        if not choices:
            return ProviderReply(text="")
        message = choices[0].message
        return ProviderReply(
            text=_text_attr(message, "content"),
            reasoning=_text_attr(message, "reasoning_content", "reasoning"),
        )

    async def _stream(
        self,
        request: ProviderRequest,
        client: ProviderClient,
        sink: TokenSink,
    ) -> ProviderReply:
        parts: list[str] = []
        response = await litellm.acompletion(
            **self.completion_kwargs(request, client, stream=True)
        )
        async for chunk in response:
            choices = getattr(chunk, "choices", None) or []
            if not choices:
                continue
            delta = choices[0].delta
            reasoning = _text_attr(delta, "reasoning_content", "reasoning")
            if reasoning:
                sink.push_reasoning(reasoning)
            content = _text_attr(delta, "content")
            if content:
                parts.append(content)
                await sink.push(content)
        return ProviderReply(text="".join(parts))
