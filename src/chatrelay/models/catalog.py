"""Model descriptors and generation parameters."""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ProviderKind(StrEnum):
    HOSTED = "github-hosted"  # OpenAI-style hosted inference, the default path
    GROQ = "groq"  # fast-inference SDK path
    GEMINI = "gemini"


class ModelDescriptor(BaseModel):
    """Static description of one selectable model."""

    model_config = ConfigDict(frozen=True)

    id: str
    display_name: str
    provider_kind: ProviderKind
    context_window_tokens: int = 8192
    reasoning_capable: bool = False
    vision_capable: bool = False
    accepts_developer_role: bool = False
    upstream_model: str | None = None
    description: str = ""
    prompt_description: str = "Standard assistant"

    @property
    def wire_name(self) -> str:
        """Model name sent to the upstream provider."""
        return self.upstream_model or self.id


class ModelParameters(BaseModel):
    """Generation parameters for one model."""

    model_config = ConfigDict(frozen=True)

    temperature: float = 0.7
    max_tokens: int = Field(default=1000, gt=0)
    top_p: float | None = None
    frequency_penalty: float | None = None
    presence_penalty: float | None = None

    def to_openai(self) -> dict[str, Any]:
        """OpenAI-style body fields, omitting unset optionals."""
        body: dict[str, Any] = {
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        for key in ("top_p", "frequency_penalty", "presence_penalty"):
            value = getattr(self, key)
            if value is not None:
                body[key] = value
        return body
