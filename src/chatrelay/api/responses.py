"""Typed Pydantic response models for API endpoints.

These define the response shapes the chat UI relies on.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

from chatrelay.models.chat import ChatSession, StoredMessage

# ── Health ─────────────────────────────────────────────────────────────────


class HealthResponse(BaseModel):
    status: str
    timestamp: str


# ── Models ─────────────────────────────────────────────────────────────────


class ModelInfo(BaseModel):
    id: str
    name: str
    provider: str
    group: str
    context_window_tokens: int
    reasoning_capable: bool
    vision_capable: bool
    description: str = ""
    prompt_description: str = ""


class ModelsListResponse(BaseModel):
    models: list[ModelInfo]
    default: str


# ── Settings ───────────────────────────────────────────────────────────────


class LogLevelUpdate(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"]


# ── System prompt ──────────────────────────────────────────────────────────


class SystemPromptResponse(BaseModel):
    prompt: str
    custom: bool


class SystemPromptUpdate(BaseModel):
    prompt: str = ""


# ── Messages & chats ───────────────────────────────────────────────────────


class MessagesListResponse(BaseModel):
    messages: list[StoredMessage]
    count: int


class RatingUpdate(BaseModel):
    rating: int = Field(ge=0, le=5)
    feedback: str | None = None


class ChatsListResponse(BaseModel):
    chats: list[ChatSession]
    count: int


# ── Generic ────────────────────────────────────────────────────────────────


class ClearedResponse(BaseModel):
    cleared: int


class SuccessResponse(BaseModel):
    status: str
