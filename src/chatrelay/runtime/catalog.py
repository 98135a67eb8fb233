"""Static model catalog and generation-parameter resolution.

Every selectable model lives in one table keyed by a stable *slot* name
(``OPENAI_GPT_4_1``, ``GEMINI_2_5_FLASH`` ...). Deployments can rename the
model id behind a slot through configuration (``AI_MODEL_<SLOT>``) without
losing the slot's parameters, prompt or provider affiliation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from chatrelay.models.catalog import ModelDescriptor, ModelParameters, ProviderKind
from chatrelay.runtime.prompts import UNIFIED_PROMPT

if TYPE_CHECKING:
    from chatrelay.config import RelayConfig

log = logging.getLogger(__name__)

DEFAULT_PARAMETERS = ModelParameters(temperature=0.7, max_tokens=1000)


@dataclass(frozen=True)
class _CatalogEntry:
    slot: str
    model_id: str
    display_name: str
    provider_kind: ProviderKind
    context_window_tokens: int
    params: dict[str, Any]
    reasoning_capable: bool = False
    vision_capable: bool = False
    accepts_developer_role: bool = False
    upstream_model: str | None = None
    description: str = ""
    group: str | None = None


_HOSTED = ProviderKind.HOSTED
_GROQ = ProviderKind.GROQ
_GEMINI = ProviderKind.GEMINI

_ENTRIES: tuple[_CatalogEntry, ...] = (
    # OpenAI
    _CatalogEntry(
        "OPENAI_GPT_4_1", "openai/gpt-4.1", "GPT-4.1", _HOSTED, 1_047_576,
        {"temperature": 0.7, "max_tokens": 1000},
        vision_capable=True, accepts_developer_role=True,
    ),
    _CatalogEntry(
        "OPENAI_O4_MINI", "openai/o4-mini", "O4 Mini", _HOSTED, 200_000,
        {"temperature": 0.8, "max_tokens": 1000, "top_p": 1.0},
        reasoning_capable=True, vision_capable=True, accepts_developer_role=True,
    ),
    # Meta
    _CatalogEntry(
        "META_LLAMA_4_MAVERICK", "meta/Llama-4-Maverick-17B-128E-Instruct-FP8",
        "Llama 4 Maverick 17B", _HOSTED, 1_000_000,
        {"temperature": 0.7, "max_tokens": 2000},
        vision_capable=True,
    ),
    _CatalogEntry(
        "META_LLAMA_3_70B", "meta/llama-3-70b-instruct", "Llama 3 70B", _HOSTED, 8192,
        {"temperature": 0.7, "max_tokens": 1000},
    ),
    _CatalogEntry(
        "META_LLAMA_3_8B", "meta/llama-3-8b-instruct", "Llama 3 8B", _HOSTED, 8192,
        {"temperature": 0.8, "max_tokens": 800},
    ),
    # Mistral
    _CatalogEntry(
        "MISTRAL_MIXTRAL", "mistralai/mixtral-8x7b-instruct", "Mixtral 8x7B", _HOSTED, 32_768,
        {"temperature": 0.75, "max_tokens": 1000},
    ),
    _CatalogEntry(
        "MISTRAL_SMALL", "mistralai/mistral-small", "Mistral Small", _HOSTED, 32_768,
        {"temperature": 0.8, "max_tokens": 800},
    ),
    _CatalogEntry(
        "MISTRAL_MEDIUM", "mistralai/mistral-medium", "Mistral Medium", _HOSTED, 32_768,
        {"temperature": 0.7, "max_tokens": 1000},
    ),
    _CatalogEntry(
        "MISTRAL_LARGE", "mistralai/mistral-large", "Mistral Large", _HOSTED, 128_000,
        {"temperature": 0.65, "max_tokens": 1200},
    ),
    # Google
    _CatalogEntry(
        "GEMINI_2_0_FLASH", "gemini/2.0-flash", "Gemini 2.0 Flash", _GEMINI, 1_048_576,
        {"temperature": 0.2, "max_tokens": 1024},
        vision_capable=True,
    ),
    _CatalogEntry(
        "GEMINI_2_5_FLASH", "gemini/2.5-flash", "Gemini 2.5 Flash", _GEMINI, 1_048_576,
        {"temperature": 0.2, "max_tokens": 1024},
        reasoning_capable=True, vision_capable=True,
    ),
    # xAI
    _CatalogEntry(
        "GROK_3", "xai/grok-3", "Grok-3", _HOSTED, 131_072,
        {"temperature": 1.0, "max_tokens": 1000, "top_p": 1.0},
        description="xAI's Grok-3 model via GitHub AI Inference",
    ),
    # Hosted aliases with their own upstream names
    _CatalogEntry(
        "PHI_4_MINI", "phi-4-mini", "Phi-4 Mini (GitHub)", _HOSTED, 128_000,
        {"temperature": 1.0, "max_tokens": 1000, "top_p": 1.0},
        reasoning_capable=True,
        upstream_model="microsoft/Phi-4-mini-reasoning",
        description="Microsoft Phi-4-mini-reasoning model via GitHub AI Inference",
        group="Github",
    ),
    _CatalogEntry(
        "CHATGPT_O4_MINI", "chatgpt-o4-mini", "ChatGPT (OpenAI o4-mini)", _HOSTED, 200_000,
        {"temperature": 1.0, "max_tokens": 1000, "top_p": 1.0},
        reasoning_capable=True, accepts_developer_role=True,
        upstream_model="openai/o4-mini",
        description="OpenAI o4-mini model via GitHub AI Inference",
        group="Github",
    ),
    # Groq fast inference
    _CatalogEntry(
        "GROQ_DEEPSEEK_R1", "deepseek-r1-distill-llama-70b", "DeepSeek R1 Distill 70B",
        _GROQ, 131_072,
        {"temperature": 0.6, "max_tokens": 1024, "top_p": 0.95},
        reasoning_capable=True,
    ),
    _CatalogEntry(
        "GROQ_QWEN3_32B", "qwen/qwen3-32b", "Qwen3 32B", _GROQ, 131_072,
        {"temperature": 0.6, "max_tokens": 1024, "top_p": 0.95},
        reasoning_capable=True,
    ),
    _CatalogEntry(
        "GROQ_LLAMA_3_3_70B", "llama-3.3-70b-versatile", "Llama 3.3 70B Versatile",
        _GROQ, 131_072,
        {"temperature": 0.7, "max_tokens": 1024},
    ),
    _CatalogEntry(
        "GROQ_LLAMA_3_1_8B", "llama-3.1-8b-instant", "Llama 3.1 8B Instant", _GROQ, 131_072,
        {"temperature": 0.7, "max_tokens": 800},
    ),
    _CatalogEntry(
        "GROQ_LLAMA_4_SCOUT", "meta-llama/llama-4-scout-17b-16e-instruct",
        "Llama 4 Scout 17B", _GROQ, 131_072,
        {"temperature": 0.7, "max_tokens": 1024},
        vision_capable=True,
    ),
)

_GROUP_PREFIXES: tuple[tuple[str, str], ...] = (
    ("openai/", "OpenAI"),
    ("meta/", "Meta"),
    ("mistralai/", "Mistral"),
    ("gemini/", "Google"),
    ("xai/", "xAI"),
)

_PROMPT_FAMILY: dict[str, str] = {
    "OpenAI": "OpenAI",
    "Meta": "Meta",
    "Mistral": "Mistral",
    "xAI": "xAI Grok-3",
}


def provider_group(descriptor: ModelDescriptor, explicit: str | None = None) -> str:
    """Display group for the model picker."""
    if explicit:
        return explicit
    if descriptor.provider_kind is ProviderKind.GROQ:
        return "Groq"
    for prefix, group in _GROUP_PREFIXES:
        if descriptor.id.startswith(prefix):
            return group
    return "Other"


class ModelCatalog:
    """Registry of model descriptors, parameters and default prompts.

    Lookups are pure and never raise. Unknown ids are valid (custom
    pass-through identifiers) and resolve to the hosted-inference path
    with default parameters.
    """

    def __init__(
        self,
        overrides: dict[str, str] | None = None,
        default_model: str | None = None,
    ) -> None:
        overrides = {k.upper(): v for k, v in (overrides or {}).items()}
        self._descriptors: dict[str, ModelDescriptor] = {}
        self._params: dict[str, ModelParameters] = {}
        self._prompts: dict[str, str] = {}
        self._groups: dict[str, str] = {}
        self._slots: dict[str, str] = {}

        for entry in _ENTRIES:
            model_id = overrides.get(entry.slot, entry.model_id)
            if model_id in self._descriptors:
                log.warning(
                    "catalog.duplicate_id slot=%s model_id=%s (ignored)",
                    entry.slot,
                    model_id,
                )
                continue
            probe = ModelDescriptor(
                id=model_id,
                display_name=entry.display_name,
                provider_kind=entry.provider_kind,
            )
            group = provider_group(probe, entry.group)
            family = _PROMPT_FAMILY.get(group, entry.display_name)
            descriptor = ModelDescriptor(
                id=model_id,
                display_name=entry.display_name,
                provider_kind=entry.provider_kind,
                context_window_tokens=entry.context_window_tokens,
                reasoning_capable=entry.reasoning_capable,
                vision_capable=entry.vision_capable,
                accepts_developer_role=entry.accepts_developer_role,
                upstream_model=entry.upstream_model,
                description=entry.description,
                prompt_description=f"Unified persona ({family})",
            )
            self._descriptors[model_id] = descriptor
            self._params[model_id] = ModelParameters(**entry.params)
            self._prompts[model_id] = UNIFIED_PROMPT
            self._groups[model_id] = group
            self._slots[entry.slot] = model_id

        self.default_model = default_model or self._slots["META_LLAMA_4_MAVERICK"]

    @classmethod
    def from_config(cls, config: RelayConfig) -> ModelCatalog:
        return cls(
            overrides=config.models.overrides,
            default_model=config.models.default,
        )

    def lookup(self, model_id: str) -> ModelDescriptor | None:
        return self._descriptors.get(model_id)

    def provider_for(self, model_id: str) -> ProviderKind:
        """Provider affiliation, neutral hosted default for unknown ids."""
        descriptor = self._descriptors.get(model_id)
        if descriptor is None:
            return ProviderKind.HOSTED
        return descriptor.provider_kind

    def resolve_parameters(self, model_id: str) -> ModelParameters:
        return self._params.get(model_id, DEFAULT_PARAMETERS)

    def prompt_for(self, model_id: str) -> str | None:
        return self._prompts.get(model_id)

    def group_for(self, model_id: str) -> str:
        return self._groups.get(model_id, "Other")

    def id_for_slot(self, slot: str) -> str | None:
        return self._slots.get(slot.upper())

    def ids_for(self, kind: ProviderKind) -> list[str]:
        return [d.id for d in self._descriptors.values() if d.provider_kind is kind]

    def list_models(self) -> list[ModelDescriptor]:
        return list(self._descriptors.values())

    def __contains__(self, model_id: object) -> bool:
        return model_id in self._descriptors

    def __len__(self) -> int:
        return len(self._descriptors)
