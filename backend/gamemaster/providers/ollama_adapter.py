from __future__ import annotations

from gamemaster.providers.base import (
    HTTPProviderAdapter,
    LLMResult,
    ProviderError,
    ProviderRuntimeConfig,
)


class OllamaAdapter(HTTPProviderAdapter):
    """Adapter for the Ollama local API."""

    provider_label = "Ollama"
    version_prefix = "/api"

    async def generate(self, cfg: ProviderRuntimeConfig, messages: list[dict]) -> LLMResult:
        url = self._join_url(cfg.base_url, "/api/chat")
        payload = {
            "model": cfg.model_name,
            "messages": messages,
            "stream": False,
            "format": "json",
        }
        data = await self._request_json("POST", url, json=payload)
        content = (data.get("message") or {}).get("content")
        if not content:
            raise ProviderError("PROVIDER_PARSE_ERROR", "Provider returned empty content.")
        return LLMResult(
            content=content,
            model_provider=cfg.provider,
            model_name=cfg.model_name,
            token_in=self._usage_int(data, "prompt_eval_count"),
            token_out=self._usage_int(data, "eval_count"),
        )
