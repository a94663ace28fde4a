from __future__ import annotations

from typing import Any, Optional

from gamemaster.providers.base import (
    HTTPProviderAdapter,
    LLMResult,
    ProviderError,
    ProviderRuntimeConfig,
    require_api_key,
)


class OpenAIAdapter(HTTPProviderAdapter):
    """Adapter for OpenAI-compatible APIs."""

    provider_label = "OpenAI"
    version_prefix = "/v1"

    async def generate(self, cfg: ProviderRuntimeConfig, messages: list[dict]) -> LLMResult:
        headers = {"Authorization": f"Bearer {require_api_key(cfg.api_key, 'OpenAI')}"}
        url = self._join_url(cfg.base_url, "/v1/responses")
        try:
            data = await self._request_json(
                "POST", url, headers=headers, json={"model": cfg.model_name, "input": messages}
            )
            usage = data.get("usage") or {}
            return LLMResult(
                content=self._parse_responses_output(data),
                model_provider=cfg.provider,
                model_name=cfg.model_name,
                token_in=self._usage_int(usage, "input_tokens"),
                token_out=self._usage_int(usage, "output_tokens"),
            )
        except ProviderError as exc:
            if not self._should_fallback(exc):
                raise

        # Older OpenAI-compatible servers only expose chat completions.
        fallback_url = self._join_url(cfg.base_url, "/v1/chat/completions")
        data = await self._request_json(
            "POST",
            fallback_url,
            headers=headers,
            json={"model": cfg.model_name, "messages": messages},
        )
        choices = data.get("choices") or []
        if not choices:
            raise ProviderError("PROVIDER_PARSE_ERROR", "No choices returned by provider.")
        content = (choices[0].get("message") or {}).get("content")
        if not content:
            raise ProviderError("PROVIDER_PARSE_ERROR", "Provider returned empty content.")
        usage = data.get("usage") or {}
        return LLMResult(
            content=content,
            model_provider=cfg.provider,
            model_name=cfg.model_name,
            token_in=self._usage_int(usage, "prompt_tokens"),
            token_out=self._usage_int(usage, "completion_tokens"),
        )

    @staticmethod
    def _should_fallback(exc: ProviderError) -> bool:
        if exc.retryable:
            return False
        if exc.code == "PROVIDER_PARSE_ERROR":
            return True
        return exc.code == "PROVIDER_BAD_STATUS" and exc.status_code in {400, 404, 405}

    @staticmethod
    def _parse_responses_output(data: dict[str, Any]) -> str:
        text: Optional[Any] = data.get("output_text")
        if isinstance(text, str) and text:
            return text
        for entry in data.get("output") or []:
            for item in entry.get("content") or []:
                if item.get("type") == "output_text" and item.get("text"):
                    return item["text"]
        raise ProviderError("PROVIDER_PARSE_ERROR", "No output_text returned by provider.")
