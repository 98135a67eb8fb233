"""System prompt resolution.

The effective prompt is recomputed on every request, in order of
precedence:

1. an override supplied with the request itself
2. the persisted user override (set through ``PUT /system-prompt``)
3. the catalog prompt for the model
4. a generic fallback
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from chatrelay.runtime.catalog import ModelCatalog

log = logging.getLogger(__name__)

UNIFIED_PROMPT = """You are NuroChat, an AI assistant powered by the latest AI model. \
Your role is to assist and engage in conversation while being helpful, respectful, \
and engaging.

Here are your key instructions:

- Identity: You are NuroChat, an AI assistant.
- Model: You are powered by the latest AI model. Only mention this if specifically asked.
- Purpose: To assist and engage in conversation, being helpful, respectful, and engaging.
- Mathematical Notation: Use LaTeX for mathematical expressions.
  - Inline math: wrap in \\( ... \\)
  - Display math: wrap in $$ ... $$
  - Do not use single dollar signs for inline math.
- Parentheses: Use actual parentheses, do not escape them with backslashes.
- Code Formatting: Format code using Prettier with a print width of 80 characters \
and present in Markdown code blocks with the correct language extension.
- Respond quickly and concisely, skipping unnecessary preambles.
- If asked about your identity, say: "I am NuroChat, an AI assistant."
"""

FALLBACK_PROMPT = "You are a helpful assistant. Provide clear and concise responses."
FALLBACK_DESCRIPTION = "Standard assistant"

OVERRIDE_SETTING_KEY = "custom_system_prompt"


class PromptOverrideStore(Protocol):
    async def get_override(self) -> str | None: ...

    async def set_override(self, prompt: str) -> None: ...

    async def clear_override(self) -> None: ...


class SettingsStore(Protocol):
    async def get_setting(self, key: str) -> str | None: ...

    async def set_setting(self, key: str, value: str) -> None: ...

    async def delete_setting(self, key: str) -> bool: ...


class InMemoryPromptOverrides:
    """Process-local override store, used when no database is configured."""

    def __init__(self, prompt: str | None = None) -> None:
        self._prompt = prompt

    async def get_override(self) -> str | None:
        return self._prompt

    async def set_override(self, prompt: str) -> None:
        self._prompt = prompt

    async def clear_override(self) -> None:
        self._prompt = None


class SettingsPromptOverrides:
    """Override persisted in the storage collaborator's settings table."""

    def __init__(self, store: SettingsStore, key: str = OVERRIDE_SETTING_KEY) -> None:
        self._store = store
        self._key = key

    async def get_override(self) -> str | None:
        return await self._store.get_setting(self._key)

    async def set_override(self, prompt: str) -> None:
        await self._store.set_setting(self._key, prompt)

    async def clear_override(self) -> None:
        await self._store.delete_setting(self._key)


def _non_blank(text: str | None) -> str | None:
    if text is None or not text.strip():
        return None
    return text


class PromptInjector:
    """Resolve the system prompt for a model, fresh on every call."""

    def __init__(
        self,
        catalog: ModelCatalog,
        overrides: PromptOverrideStore | None = None,
    ) -> None:
        self._catalog = catalog
        self._overrides: PromptOverrideStore = overrides or InMemoryPromptOverrides()

    async def resolve_system_prompt(
        self,
        model_id: str,
        request_override: str | None = None,
    ) -> str:
        prompt = _non_blank(request_override)
        if prompt is not None:
            return prompt

        prompt = _non_blank(await self._overrides.get_override())
        if prompt is not None:
            log.debug("prompts.override_applied model=%s", model_id)
            return prompt

        return self._catalog.prompt_for(model_id) or FALLBACK_PROMPT

    def describe(self, model_id: str) -> str:
        descriptor = self._catalog.lookup(model_id)
        if descriptor is None:
            return FALLBACK_DESCRIPTION
        return descriptor.prompt_description

    async def get_override(self) -> str | None:
        return _non_blank(await self._overrides.get_override())

    async def has_override(self) -> bool:
        return await self.get_override() is not None

    async def set_override(self, prompt: str) -> None:
        if _non_blank(prompt) is None:
            await self._overrides.clear_override()
            return
        await self._overrides.set_override(prompt.strip())
        log.info("prompts.override_set length=%d", len(prompt.strip()))

    async def clear_override(self) -> None:
        await self._overrides.clear_override()
        log.info("prompts.override_cleared")
