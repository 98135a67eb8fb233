from chatrelay.models.catalog import ModelDescriptor, ModelParameters, ProviderKind
from chatrelay.models.chat import (
    AssistantMessage,
    ChatMessage,
    ChatReply,
    ChatRequest,
    ChatSession,
    Completion,
    Role,
    StoredMessage,
)

__all__ = [
    "AssistantMessage",
    "ChatMessage",
    "ChatReply",
    "ChatRequest",
    "ChatSession",
    "Completion",
    "ModelDescriptor",
    "ModelParameters",
    "ProviderKind",
    "Role",
    "StoredMessage",
]
