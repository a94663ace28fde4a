from __future__ import annotations

import logging
from typing import Optional

from gamemaster.core.config import Settings
from gamemaster.providers.base import (
    LLMAdapter,
    LLMResult,
    MockAdapter,
    ProviderError,
    ProviderRuntimeConfig,
)
from gamemaster.providers.ollama_adapter import OllamaAdapter
from gamemaster.providers.openai_adapter import OpenAIAdapter

logger = logging.getLogger(__name__)

SUPPORTED_PROVIDERS = ("mock", "openai", "ollama")

_DEFAULT_MODELS = {
    "mock": "mock-1",
    "openai": "gpt-4o-mini",
    "ollama": "llama3.1",
}


class ProviderService:
    """Binds the configured adapter to its runtime configuration."""

    def __init__(self, adapter: LLMAdapter, cfg: ProviderRuntimeConfig) -> None:
        self._adapter = adapter
        self._cfg = cfg

    @property
    def runtime_config(self) -> ProviderRuntimeConfig:
        return self._cfg

    async def generate(self, messages: list[dict]) -> LLMResult:
        result = await self._adapter.generate(self._cfg, messages)
        logger.debug(
            "Generation finished provider=%s model=%s tokens_in=%s tokens_out=%s",
            result.model_provider,
            result.model_name,
            result.token_in,
            result.token_out,
        )
        return result


def create_provider_service(
    settings: Settings, adapters: Optional[dict[str, LLMAdapter]] = None
) -> ProviderService:
    """Select the adapter named by LLM_PROVIDER."""

    provider = settings.llm_provider.strip().lower() or "mock"
    if provider not in SUPPORTED_PROVIDERS:
        raise ProviderError("PROVIDER_UNSUPPORTED", f"Unsupported provider: {provider}")

    registry = adapters or {
        "mock": MockAdapter(),
        "openai": OpenAIAdapter(timeout_sec=settings.llm_timeout_sec),
        "ollama": OllamaAdapter(timeout_sec=settings.llm_timeout_sec),
    }
    adapter = registry.get(provider)
    if adapter is None:
        raise ProviderError("PROVIDER_UNSUPPORTED", f"Unsupported provider: {provider}")

    cfg = ProviderRuntimeConfig(
        provider=provider,
        model_name=settings.llm_model.strip() or _DEFAULT_MODELS[provider],
        base_url=settings.llm_base_url.strip() or _default_base_url(settings, provider),
        api_key=settings.llm_api_key.strip() or None,
    )
    logger.info("Generation provider configured provider=%s model=%s", provider, cfg.model_name)
    return ProviderService(adapter, cfg)


def _default_base_url(settings: Settings, provider: str) -> Optional[str]:
    if provider == "openai":
        return settings.openai_base_url
    if provider == "ollama":
        return settings.ollama_base_url
    return None
