"""Chat message and request/response shapes shared by every layer."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Role(StrEnum):
    USER = "user"
    SYSTEM = "system"
    ASSISTANT = "assistant"
    DEVELOPER = "developer"
    AGENT = "agent"  # UI synonym for assistant, translated before leaving the router


class ChatMessage(BaseModel):
    """A single conversational turn. Immutable once constructed."""

    model_config = ConfigDict(frozen=True)

    role: Role
    content: str

    @field_validator("content", mode="before")
    @classmethod
    def coerce_content(cls, v: object) -> object:
        if v is None:
            return ""
        return v


class ChatRequest(BaseModel):
    """Inbound body of ``POST /chat``."""

    model_config = ConfigDict(populate_by_name=True)

    messages: list[ChatMessage]
    model_id: str | None = Field(default=None, alias="modelId")
    stream: bool = False
    system_prompt: str | None = Field(default=None, alias="systemPrompt")


class AssistantMessage(BaseModel):
    role: str = "assistant"
    content: str
    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    reasoning: str | None = None


class ChatReply(BaseModel):
    """Outbound body of a buffered ``POST /chat``."""

    message: AssistantMessage


class Completion(BaseModel):
    """Normalised result of one routed request."""

    content: str
    reasoning: str = ""
    model_id: str
    provider: str
    cached: bool = False


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


class StoredMessage(BaseModel):
    """A chat message as kept by the storage collaborator."""

    id: str = Field(default_factory=lambda: _new_id("msg"))
    role: Role
    content: str
    reasoning: str | None = None
    model_id: str | None = Field(default=None, alias="modelId")
    chat_id: str | None = Field(default=None, alias="chatId")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    rating: int | None = None
    feedback: str | None = None

    model_config = ConfigDict(populate_by_name=True)


class ChatSession(BaseModel):
    """A named conversation the UI can switch between."""

    id: str = Field(default_factory=lambda: _new_id("chat"))
    title: str = "New chat"
    model_id: str | None = Field(default=None, alias="modelId")
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    model_config = ConfigDict(populate_by_name=True)
