"""Common interface shared by the provider handlers."""

from __future__ import annotations

import inspect
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, ClassVar, Protocol

from chatrelay.models.catalog import ModelDescriptor, ModelParameters, ProviderKind
from chatrelay.models.chat import ChatMessage

if TYPE_CHECKING:
    from chatrelay.runtime.client_pool import ProviderClient

log = logging.getLogger(__name__)


async def _invoke(hook: Callable[..., Any] | None, *args: Any) -> None:
    if hook is None:
        return
    result = hook(*args)
    if inspect.isawaitable(result):
        await result


@dataclass
class StreamCallbacks:
    """Optional per-request progress hooks. Each may be sync or async."""

    on_start: Callable[[], Any] | None = None
    on_token: Callable[[str], Any] | None = None
    on_complete: Callable[[str], Any] | None = None
    on_error: Callable[[Exception], Any] | None = None

    async def start(self) -> None:
        await _invoke(self.on_start)

    async def token(self, text: str) -> None:
        await _invoke(self.on_token, text)

    async def complete(self, text: str) -> None:
        await _invoke(self.on_complete, text)

    async def error(self, exc: Exception) -> None:
        try:
            await _invoke(self.on_error, exc)
        except Exception:
            log.exception("callbacks.on_error_failed")


class TokenSink(Protocol):
    """Receiver for raw upstream chunks during a streamed fetch."""

    async def push(self, chunk: str) -> None: ...

    def push_reasoning(self, text: str) -> None: ...


@dataclass(frozen=True)
class ProviderRequest:
    """Everything a handler needs to build its upstream call."""

    model_id: str
    messages: Sequence[ChatMessage]
    system_prompt: str
    params: ModelParameters
    descriptor: ModelDescriptor | None = None

    @property
    def wire_model(self) -> str:
        if self.descriptor is None:
            return self.model_id
        return self.descriptor.wire_name

    @property
    def reasoning_capable(self) -> bool:
        return self.descriptor is not None and self.descriptor.reasoning_capable


@dataclass
class ProviderReply:
    """Raw upstream text (think tags not yet removed) plus SDK-split reasoning."""

    text: str
    reasoning: str = ""
    meta: dict[str, Any] = field(default_factory=dict)


class ProviderHandler(ABC):
    """One implementation per ProviderKind.

    ``handle`` performs a buffered fetch when ``sink`` is None, otherwise a
    streamed fetch that pushes every raw chunk to the sink in arrival order.
    Either way the full raw text is returned. Failures are raised as
    UpstreamError.
    """

    kind: ClassVar[ProviderKind]

    @abstractmethod
    def translate_messages(self, request: ProviderRequest) -> list[dict[str, Any]]:
        """Map the conversation onto the provider's role vocabulary."""

    @abstractmethod
    async def handle(
        self,
        request: ProviderRequest,
        client: ProviderClient,
        sink: TokenSink | None = None,
    ) -> ProviderReply:
        ...
