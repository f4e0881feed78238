"""Catalog of generation models and provider credential resolution.

The catalog does not talk to any provider; it maps a model id to the
provider whose credential the generation backend needs, so that selection
policy stays unit-testable.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional

from pydantic import BaseModel

GEMINI_FLASH_MODEL = "gemini-2.5-flash"
GEMINI_PRO_MODEL = "gemini-2.5-pro"
DEFAULT_MODEL = GEMINI_FLASH_MODEL


class ModelOption(BaseModel):
    id: str
    name: str
    group: str
    provider: str
    supports_images: bool = True
    available: bool = False


@dataclass(frozen=True)
class ProviderSelection:
    """Returned details about the provider that serves a model."""

    name: str
    model: str
    api_key_env: Optional[str]
    requires_api_key: bool = True


_GROUPS: Dict[str, List[tuple[str, str]]] = {
    "gemini": [
        (GEMINI_PRO_MODEL, "Gemini 2.5 Pro (Powerful & Vision)"),
        (GEMINI_FLASH_MODEL, "Gemini Flash (Fast & Default)"),
    ],
    "groq": [
        ("groq/llama3-70b-8192", "Groq Llama 3 70B"),
        ("groq/llama3.1-8b-instant", "Groq Llama 3.1 8B"),
    ],
    "image": [
        ("google/gemini-2.5-flash", "Gemini 2.5 Flash"),
        ("anthropic/claude-3-haiku", "Claude 3 Haiku"),
        ("microsoft/phi-3-vision-128k-instruct", "Phi-3 Vision"),
        ("huggingfaceh4/idefics2-8b-instruct", "HuggingFace IDEFICS2 8B"),
    ],
}


class ModelCatalog:
    PROVIDER_CONFIG: Dict[str, Dict[str, Optional[str] | bool]] = {
        "gemini": {"api_key_env": "GEMINI_API_KEY"},
        "groq": {"api_key_env": "GROQ_API_KEY"},
        "openrouter": {"api_key_env": "OPENROUTER_API_KEY"},
    }

    def __init__(self, env: Optional[Mapping[str, str]] = None) -> None:
        self._env = env if env is not None else os.environ

    def provider_for(self, model: str) -> ProviderSelection:
        name = model.strip()
        if name.startswith("groq/"):
            provider = "groq"
        elif name in (GEMINI_FLASH_MODEL, GEMINI_PRO_MODEL):
            provider = "gemini"
        else:
            provider = "openrouter"
        cfg = self.PROVIDER_CONFIG[provider]
        return ProviderSelection(
            name=provider,
            model=name,
            api_key_env=cfg.get("api_key_env"),  # type: ignore[arg-type]
            requires_api_key=bool(cfg.get("requires_api_key", True)),
        )

    def provider_available(self, provider: str) -> bool:
        cfg = self.PROVIDER_CONFIG.get(provider)
        if not cfg:
            return False
        if not cfg.get("requires_api_key", True):
            return True
        api_key_env = cfg.get("api_key_env")
        return bool(api_key_env and self._env.get(str(api_key_env)))

    def credentials_for(self, model: str) -> Dict[str, str]:
        selection = self.provider_for(model)
        key = self._env.get(selection.api_key_env or "", "") if selection.api_key_env else ""
        if not key:
            return {}
        return {"provider": selection.name, "api_key": key}

    @staticmethod
    def supports_images(model: str) -> bool:
        return not model.startswith("groq/")

    def list_models(self) -> List[ModelOption]:
        options: List[ModelOption] = []
        for group, entries in _GROUPS.items():
            for model_id, label in entries:
                provider = self.provider_for(model_id).name
                options.append(
                    ModelOption(
                        id=model_id,
                        name=label,
                        group=group,
                        provider=provider,
                        supports_images=self.supports_images(model_id),
                        available=self.provider_available(provider),
                    )
                )
        return options

    def is_known(self, model: str) -> bool:
        return any(model == model_id for entries in _GROUPS.values() for model_id, _ in entries)
