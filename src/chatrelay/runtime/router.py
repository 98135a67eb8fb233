"""Routing core: one entry point for every chat completion.

``ChatRouter.generate`` resolves the model through the catalog, checks the
response cache (buffered requests only), dispatches to the handler for the
model's ProviderKind, strips think spans into a reasoning side channel and
normalizes empty results to a placeholder. Collaborators are injected at
construction so tests can build fresh instances per case.

Each request walks an explicit state machine:

    idle -> dispatching -> buffered_fetch | stream_fetch -> normalizing -> done

A cache hit goes straight from dispatching to done. ``errored`` is reachable
from every non-idle, non-terminal state.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from enum import StrEnum

from chatrelay.errors import InvalidRouteTransition, RelayError
from chatrelay.models.catalog import ProviderKind
from chatrelay.models.chat import ChatMessage, Completion
from chatrelay.runtime.catalog import ModelCatalog
from chatrelay.runtime.client_pool import ClientPool
from chatrelay.runtime.logging_config import ctx_model_id
from chatrelay.runtime.prompts import PromptInjector
from chatrelay.runtime.providers.base import (
    ProviderHandler,
    ProviderRequest,
    StreamCallbacks,
)
from chatrelay.runtime.providers.gemini import GeminiHandler
from chatrelay.runtime.providers.groq import GroqHandler
from chatrelay.runtime.providers.hosted import HostedHandler
from chatrelay.runtime.response_cache import ResponseCache
from chatrelay.runtime.think_parser import (
    REASONING_SEPARATOR,
    ThinkTagParser,
    split_reasoning,
)

log = logging.getLogger(__name__)

NO_RESPONSE_PLACEHOLDER = "No response generated from the model."


class RouteState(StrEnum):
    IDLE = "idle"
    DISPATCHING = "dispatching"
    BUFFERED_FETCH = "buffered_fetch"
    STREAM_FETCH = "stream_fetch"
    NORMALIZING = "normalizing"
    DONE = "done"
    ERRORED = "errored"


_ROUTE_TRANSITIONS: dict[RouteState, set[RouteState]] = {
    RouteState.IDLE: {RouteState.DISPATCHING},
    RouteState.DISPATCHING: {
        RouteState.BUFFERED_FETCH,
        RouteState.STREAM_FETCH,
        RouteState.DONE,  # cache hit
        RouteState.ERRORED,
    },
    RouteState.BUFFERED_FETCH: {RouteState.NORMALIZING, RouteState.ERRORED},
    RouteState.STREAM_FETCH: {RouteState.NORMALIZING, RouteState.ERRORED},
    RouteState.NORMALIZING: {RouteState.DONE, RouteState.ERRORED},
    RouteState.DONE: set(),  # terminal
    RouteState.ERRORED: set(),  # terminal
}


class RouteRun:
    """State of one routed request."""

    def __init__(self, model_id: str) -> None:
        self.model_id = model_id
        self.state = RouteState.IDLE
        self.history: list[RouteState] = [RouteState.IDLE]

    @property
    def finished(self) -> bool:
        return not _ROUTE_TRANSITIONS[self.state]

    def advance(self, new_state: RouteState) -> None:
        allowed = _ROUTE_TRANSITIONS.get(self.state, set())
        if new_state not in allowed:
            raise InvalidRouteTransition(
                f"Cannot move route for {self.model_id} "
                f"from '{self.state}' to '{new_state}'. "
                f"Allowed: {sorted(allowed) or 'none (terminal state)'}"
            )
        log.debug(
            "router.transition model=%s %s->%s",
            self.model_id,
            self.state.value,
            new_state.value,
        )
        self.state = new_state
        self.history.append(new_state)


class _StreamRelay:
    """Feeds raw upstream chunks through the think parser to the caller."""

    def __init__(self, callbacks: StreamCallbacks) -> None:
        self._callbacks = callbacks
        self.parser = ThinkTagParser()
        self.visible_emitted = False

    async def push(self, chunk: str) -> None:
        visible = self.parser.feed(chunk)
        await self._emit(visible)

    def push_reasoning(self, text: str) -> None:
        self.parser.add_reasoning(text)

    async def flush(self) -> None:
        await self._emit(self.parser.finish())

    async def _emit(self, visible: str) -> None:
        if not visible:
            return
        self.visible_emitted = True
        await self._callbacks.token(visible)


def default_handlers() -> dict[ProviderKind, ProviderHandler]:
    return {
        ProviderKind.HOSTED: HostedHandler(),
        ProviderKind.GROQ: GroqHandler(),
        ProviderKind.GEMINI: GeminiHandler(),
    }


class ChatRouter:
    """Dispatches chat requests to the right provider handler."""

    def __init__(
        self,
        catalog: ModelCatalog,
        pool: ClientPool,
        cache: ResponseCache,
        prompts: PromptInjector,
        handlers: dict[ProviderKind, ProviderHandler] | None = None,
        run_observer: Callable[[RouteRun], None] | None = None,
    ) -> None:
        self.catalog = catalog
        self.pool = pool
        self.cache = cache
        self.prompts = prompts
        self._handlers = handlers or default_handlers()
        # Called with each RouteRun as generate() starts it.
        self._run_observer = run_observer

    def handler_for(self, kind: ProviderKind) -> ProviderHandler:
        return self._handlers[kind]

    async def generate(
        self,
        messages: Sequence[ChatMessage],
        model_id: str | None = None,
        callbacks: StreamCallbacks | None = None,
        system_prompt_override: str | None = None,
    ) -> Completion:
        """Route one request. Streams through ``callbacks`` when supplied.

        Raises ConfigurationError when the provider's credential is missing
        (before any network call) and UpstreamError for provider failures.
        Streaming callers are told about failures through ``on_error`` too.
        """
        model_id = model_id or self.catalog.default_model
        token = ctx_model_id.set(model_id)
        run = RouteRun(model_id)
        if self._run_observer is not None:
            self._run_observer(run)
        try:
            return await self._run(run, messages, callbacks, system_prompt_override)
        except Exception as exc:
            failed_in = run.state
            if not run.finished and failed_in is not RouteState.IDLE:
                run.advance(RouteState.ERRORED)
            log.warning(
                "router.failed model=%s state=%s code=%s error=%s",
                model_id,
                failed_in.value,
                exc.code if isinstance(exc, RelayError) else type(exc).__name__,
                exc,
            )
            if callbacks is not None:
                await callbacks.error(exc)
            raise
        finally:
            ctx_model_id.reset(token)

    async def _run(
        self,
        run: RouteRun,
        messages: Sequence[ChatMessage],
        callbacks: StreamCallbacks | None,
        system_prompt_override: str | None,
    ) -> Completion:
        model_id = run.model_id
        streaming = callbacks is not None
        run.advance(RouteState.DISPATCHING)

        kind = self.catalog.provider_for(model_id)

        if not streaming:
            cached = self.cache.get(model_id, messages)
            if cached is not None:
                run.advance(RouteState.DONE)
                log.info("router.cache_hit model=%s", model_id)
                return Completion(
                    content=cached,
                    model_id=model_id,
                    provider=kind.value,
                    cached=True,
                )

        # Raises ConfigurationError before any network activity.
        client = self.pool.get_or_create(model_id)

        request = ProviderRequest(
            model_id=model_id,
            messages=list(messages),
            system_prompt=await self.prompts.resolve_system_prompt(
                model_id, system_prompt_override
            ),
            params=self.catalog.resolve_parameters(model_id),
            descriptor=self.catalog.lookup(model_id),
        )
        handler = self.handler_for(kind)
        log.info(
            "router.dispatch model=%s provider=%s stream=%s messages=%d",
            model_id,
            kind.value,
            streaming,
            len(request.messages),
        )

        start = time.monotonic()
        if callbacks is None:
            run.advance(RouteState.BUFFERED_FETCH)
            reply = await handler.handle(request, client)
            run.advance(RouteState.NORMALIZING)
            split = split_reasoning(reply.text)
            reasoning_parts = [r for r in (reply.reasoning.strip(), split.reasoning) if r]
            content = split.content.strip()
            reasoning = REASONING_SEPARATOR.join(reasoning_parts)
        else:
            run.advance(RouteState.STREAM_FETCH)
            await callbacks.start()
            relay = _StreamRelay(callbacks)
            reply = await handler.handle(request, client, relay)
            if reply.reasoning:
                relay.push_reasoning(reply.reasoning)
            await relay.flush()
            run.advance(RouteState.NORMALIZING)
            content = relay.parser.content.strip()
            reasoning = relay.parser.reasoning
            if not content and not relay.visible_emitted:
                await callbacks.token(NO_RESPONSE_PLACEHOLDER)

        latency_ms = (time.monotonic() - start) * 1000
        placeholder = not content
        if placeholder:
            log.warning("router.empty_response model=%s provider=%s", model_id, kind.value)
            content = NO_RESPONSE_PLACEHOLDER
        elif not streaming:
            self.cache.put(model_id, messages, content)

        run.advance(RouteState.DONE)
        log.info(
            "router.completed model=%s provider=%s latency_ms=%.1f chars=%d"
            " reasoning=%d meta=%s",
            model_id,
            kind.value,
            latency_ms,
            len(content),
            len(reasoning),
            reply.meta,
        )
        if callbacks is not None:
            await callbacks.complete(content)

        return Completion(
            content=content,
            reasoning=reasoning,
            model_id=model_id,
            provider=kind.value,
        )
