"""FastAPI application for the chat relay."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import ValidationError

from chatrelay.api.middleware import RequestTimingMiddleware
from chatrelay.api.responses import (
    ChatsListResponse,
    ClearedResponse,
    HealthResponse,
    LogLevelUpdate,
    MessagesListResponse,
    ModelInfo,
    ModelsListResponse,
    RatingUpdate,
    SuccessResponse,
    SystemPromptResponse,
    SystemPromptUpdate,
)
from chatrelay.config import RelayConfig, load_config
from chatrelay.errors import (
    RateLimitExceededError,
    RelayError,
    RequestValidationError,
    Severity,
)
from chatrelay.models.catalog import ProviderKind
from chatrelay.models.chat import (
    AssistantMessage,
    ChatReply,
    ChatRequest,
    ChatSession,
    StoredMessage,
)
from chatrelay.runtime.catalog import ModelCatalog
from chatrelay.runtime.client_pool import ClientPool
from chatrelay.runtime.logging_config import configure_from_config, update_log_level
from chatrelay.runtime.prompts import PromptInjector, SettingsPromptOverrides
from chatrelay.runtime.providers.base import ProviderHandler, StreamCallbacks
from chatrelay.runtime.rate_limiter import FixedWindowRateLimiter, client_identifier
from chatrelay.runtime.response_cache import ResponseCache
from chatrelay.runtime.router import ChatRouter
from chatrelay.substrate.chat_store import ChatStore

log = logging.getLogger(__name__)

SSE_DONE = "data: [DONE]\n\n"

# Created at startup so the first request does not pay for client setup.
PREWARM_SLOTS: tuple[str, ...] = ("OPENAI_GPT_4_1", "META_LLAMA_4_MAVERICK")


def _sse(payload: dict[str, Any]) -> str:
    return f"data: {json.dumps(payload)}\n\n"


def _wants_stream(body: ChatRequest, request: Request) -> bool:
    return body.stream or "text/event-stream" in request.headers.get("accept", "")


async def _stream_events(
    router: ChatRouter,
    body: ChatRequest,
) -> AsyncIterator[str]:
    """Bridge routing-core callbacks into an SSE body."""
    queue: asyncio.Queue[str | None] = asyncio.Queue()

    callbacks = StreamCallbacks(
        on_token=lambda token: queue.put_nowait(_sse({"token": token})),
        on_complete=lambda _text: queue.put_nowait(SSE_DONE),
        on_error=lambda exc: queue.put_nowait(_sse({"error": str(exc)})),
    )

    async def _produce() -> None:
        try:
            await router.generate(
                body.messages,
                body.model_id,
                callbacks=callbacks,
                system_prompt_override=body.system_prompt,
            )
        except Exception as exc:
            # Already delivered to the client through on_error.
            log.debug("api.stream_failed error=%s", exc)
        finally:
            queue.put_nowait(None)

    task = asyncio.create_task(_produce())
    try:
        while True:
            item = await queue.get()
            if item is None:
                break
            yield item
    finally:
        if not task.done():
            task.cancel()


def create_app(
    config: RelayConfig | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
    handlers: dict[ProviderKind, ProviderHandler] | None = None,
    store: ChatStore | None = None,
) -> FastAPI:
    """Build the application with freshly constructed collaborators.

    ``transport`` and ``handlers`` let tests replace the network layer.
    """
    config = config or load_config()

    catalog = ModelCatalog.from_config(config)
    pool = ClientPool(config, catalog, transport=transport)
    cache = ResponseCache(
        ttl_seconds=config.cache.ttl_seconds,
        history_window=config.cache.history_window,
        enabled=config.cache.enabled,
    )
    limiter = FixedWindowRateLimiter(
        limit=config.rate_limit.limit,
        window_seconds=config.rate_limit.window_seconds,
        sweep_interval_seconds=config.rate_limit.sweep_interval_seconds,
        enabled=config.rate_limit.enabled,
    )
    store = store or ChatStore(config.storage.db_path)
    prompts = PromptInjector(catalog, SettingsPromptOverrides(store))
    router = ChatRouter(catalog, pool, cache, prompts, handlers=handlers)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Open storage and background tasks on startup, release them on teardown."""
        configure_from_config(config.model_dump())
        await store.initialize()
        limiter.start()
        warm = [catalog.id_for_slot(slot) for slot in PREWARM_SLOTS]
        pool.prewarm(m for m in warm if m)
        log.info(
            "chatrelay API server started models=%d default=%s",
            len(catalog),
            catalog.default_model,
        )
        yield
        await limiter.stop()
        await pool.aclose()
        log.info("chatrelay API server stopped")

    app = FastAPI(title="chatrelay", version="0.1.0", lifespan=lifespan)
    app.add_middleware(RequestTimingMiddleware)

    app.state.config = config
    app.state.catalog = catalog
    app.state.pool = pool
    app.state.cache = cache
    app.state.limiter = limiter
    app.state.store = store
    app.state.prompts = prompts
    app.state.router = router

    # ── Health & catalog ───────────────────────────────────────────────────

    @app.get("/health", response_model=HealthResponse)
    async def health():
        return HealthResponse(status="ok", timestamp=datetime.now(UTC).isoformat())

    @app.get("/models", response_model=ModelsListResponse)
    async def list_models():
        models = [
            ModelInfo(
                id=d.id,
                name=d.display_name,
                provider=d.provider_kind.value,
                group=catalog.group_for(d.id),
                context_window_tokens=d.context_window_tokens,
                reasoning_capable=d.reasoning_capable,
                vision_capable=d.vision_capable,
                description=d.description,
                prompt_description=prompts.describe(d.id),
            )
            for d in catalog.list_models()
        ]
        return ModelsListResponse(models=models, default=catalog.default_model)

    @app.delete("/cache", response_model=ClearedResponse)
    async def clear_cache(modelId: str | None = None):  # noqa: N803
        return ClearedResponse(cleared=cache.clear(modelId))

    # ── Errors ─────────────────────────────────────────────────────────────

    @app.exception_handler(RelayError)
    async def relay_error_handler(request: Request, exc: RelayError) -> JSONResponse:
        level = logging.WARNING if exc.severity is Severity.WARN else logging.ERROR
        log.log(
            level,
            "api.relay_error path=%s code=%s retryable=%s error=%s",
            request.url.path,
            exc.code,
            exc.is_retryable,
            exc.message,
        )
        return JSONResponse(
            exc.response_body(),
            status_code=exc.http_status,
            headers=getattr(request.state, "rate_limit_headers", None),
        )

    # ── Chat ───────────────────────────────────────────────────────────────

    @app.post("/chat")
    async def chat(request: Request):
        """Generate an assistant reply, buffered or as server-sent events."""
        admission = limiter.check(client_identifier(request.headers))
        headers = admission.headers()
        request.state.rate_limit_headers = headers
        if not admission.success:
            raise RateLimitExceededError(
                limit=admission.limit,
                remaining=admission.remaining,
                reset_at=datetime.fromtimestamp(admission.reset_at, UTC).isoformat(),
                retry_after=admission.retry_after,
            )

        try:
            raw = await request.json()
        except ValueError as exc:
            raise RequestValidationError("Invalid request: body must be JSON") from exc

        if not isinstance(raw, dict) or not isinstance(raw.get("messages"), list):
            raise RequestValidationError("Invalid request: messages array is required")

        try:
            body = ChatRequest.model_validate(raw)
        except ValidationError as exc:
            details = [
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
                for err in exc.errors()
            ]
            raise RequestValidationError(details=details) from exc

        if _wants_stream(body, request):
            return StreamingResponse(
                _stream_events(router, body),
                media_type="text/event-stream",
                headers={
                    **headers,
                    "Cache-Control": "no-cache",
                    "X-Accel-Buffering": "no",
                },
            )

        completion = await router.generate(
            body.messages,
            body.model_id,
            system_prompt_override=body.system_prompt,
        )
        reply = ChatReply(
            message=AssistantMessage(
                content=completion.content,
                reasoning=completion.reasoning or None,
            )
        )
        return JSONResponse(reply.model_dump(exclude_none=True), headers=headers)

    # ── Settings ───────────────────────────────────────────────────────────

    @app.put("/settings/log-level", response_model=LogLevelUpdate)
    async def put_log_level(body: LogLevelUpdate):
        """Change the root log level at runtime without a restart."""
        update_log_level(body.level)
        return body

    # ── System prompt ──────────────────────────────────────────────────────

    @app.get("/system-prompt", response_model=SystemPromptResponse)
    async def get_system_prompt(modelId: str | None = None):  # noqa: N803
        model_id = modelId or catalog.default_model
        prompt = await prompts.resolve_system_prompt(model_id)
        return SystemPromptResponse(prompt=prompt, custom=await prompts.has_override())

    @app.put("/system-prompt", response_model=SystemPromptResponse)
    async def put_system_prompt(body: SystemPromptUpdate):
        await prompts.set_override(body.prompt)
        prompt = await prompts.resolve_system_prompt(catalog.default_model)
        return SystemPromptResponse(prompt=prompt, custom=await prompts.has_override())

    @app.delete("/system-prompt", response_model=SuccessResponse)
    async def delete_system_prompt():
        await prompts.clear_override()
        return SuccessResponse(status="cleared")

    # ── Messages ───────────────────────────────────────────────────────────

    @app.get("/messages", response_model=MessagesListResponse)
    async def get_messages(modelId: str | None = None):  # noqa: N803
        if modelId:
            messages = await store.get_messages_by_model(modelId)
        else:
            messages = await store.get_messages()
        return MessagesListResponse(messages=messages, count=len(messages))

    @app.post("/messages", response_model=StoredMessage, status_code=201)
    async def add_message(body: StoredMessage):
        return await store.add_message(body)

    @app.delete("/messages", response_model=ClearedResponse)
    async def clear_messages(modelId: str | None = None):  # noqa: N803
        if modelId:
            removed = await store.clear_messages_by_model(modelId)
        else:
            removed = await store.clear_all_messages()
        return ClearedResponse(cleared=removed)

    @app.post("/messages/{message_id}/rating", response_model=SuccessResponse)
    async def rate_message(message_id: str, body: RatingUpdate):
        updated = await store.update_message_rating(message_id, body.rating, body.feedback)
        if not updated:
            return JSONResponse({"error": "Message not found"}, status_code=404)
        return SuccessResponse(status="rated")

    # ── Chats ──────────────────────────────────────────────────────────────

    @app.get("/chats", response_model=ChatsListResponse)
    async def list_chats():
        chats = await store.get_all_chats()
        return ChatsListResponse(chats=chats, count=len(chats))

    @app.post("/chats", response_model=ChatSession, status_code=201)
    async def add_chat(body: ChatSession):
        return await store.add_chat(body)

    @app.delete("/chats/{chat_id}", response_model=SuccessResponse)
    async def delete_chat(chat_id: str):
        if not await store.delete_chat(chat_id):
            return JSONResponse({"error": "Chat not found"}, status_code=404)
        return SuccessResponse(status="deleted")

    return app
