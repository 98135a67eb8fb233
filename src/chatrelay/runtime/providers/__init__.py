"""Provider handlers, one per ProviderKind."""

from chatrelay.runtime.providers.base import (
    ProviderHandler,
    ProviderReply,
    ProviderRequest,
    StreamCallbacks,
    TokenSink,
)
from chatrelay.runtime.providers.gemini import GeminiHandler
from chatrelay.runtime.providers.groq import GroqHandler
from chatrelay.runtime.providers.hosted import HostedHandler

__all__ = [
    "GeminiHandler",
    "GroqHandler",
    "HostedHandler",
    "ProviderHandler",
    "ProviderReply",
    "ProviderRequest",
    "StreamCallbacks",
    "TokenSink",
]
