from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Optional, Protocol

import httpx

PHASE_MARKER_PREFIX = "Workflow phase:"


@dataclass
class ProviderRuntimeConfig:
    """Runtime configuration needed by an LLM adapter."""

    provider: str
    model_name: str
    base_url: str | None = None
    api_key: str | None = None


@dataclass
class LLMResult:
    """Result returned from an LLM generation call."""

    content: str
    model_provider: str
    model_name: str
    token_in: int | None = None
    token_out: int | None = None


class LLMAdapter(Protocol):
    """Adapter interface for LLM providers."""

    async def generate(self, cfg: ProviderRuntimeConfig, messages: list[dict]) -> LLMResult:
        """Generate a response from the provider."""


class ProviderError(RuntimeError):
    """Raised when a provider operation fails."""

    def __init__(
        self,
        code: str,
        message: str,
        retryable: bool = False,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.retryable = retryable
        self.status_code = status_code


def build_status_error(response: httpx.Response) -> ProviderError:
    """Build a normalized provider error from an HTTP response."""

    status = response.status_code
    formatted = f"Provider returned {status}: {_extract_response_message(response)}"
    if status in {408, 429}:
        code = "PROVIDER_TIMEOUT" if status == 408 else "PROVIDER_RATE_LIMIT"
        return ProviderError(code, formatted, retryable=True, status_code=status)
    if status >= 500:
        return ProviderError("PROVIDER_UPSTREAM", formatted, retryable=True, status_code=status)
    return ProviderError("PROVIDER_BAD_STATUS", formatted, status_code=status)


def require_api_key(api_key: Optional[str], provider_name: str) -> str:
    if api_key:
        return api_key
    raise ProviderError("API_KEY_REQUIRED", f"API key is required for {provider_name}.")


def _extract_response_message(response: httpx.Response) -> str:
    try:
        payload: Any = response.json()
    except ValueError:
        return (response.text or "Unknown error from provider.").strip()

    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict):
            detail = error.get("message") or error.get("code")
            if isinstance(detail, str) and detail.strip():
                return detail.strip()
        if isinstance(error, str) and error.strip():
            return error.strip()
        message = payload.get("message")
        if isinstance(message, str) and message.strip():
            return message.strip()
    return (response.text or "Unknown error from provider.").strip()


class HTTPProviderAdapter:
    """Shared HTTP behavior for provider adapters."""

    provider_label = "provider"
    version_prefix = ""

    def __init__(
        self, timeout_sec: float = 60, http_client: Optional[httpx.AsyncClient] = None
    ) -> None:
        self._timeout = timeout_sec
        self._client = http_client

    def _join_url(self, base_url: Optional[str], path: str) -> str:
        if not base_url:
            raise ProviderError(
                "PROVIDER_BASE_URL_MISSING", f"Base URL is required for {self.provider_label}."
            )
        base = base_url.rstrip("/")
        prefix = self.version_prefix
        if prefix and base.endswith(prefix) and path.startswith(prefix + "/"):
            return base + path[len(prefix) :]
        return base + path

    async def _request_json(
        self,
        method: str,
        url: str,
        headers: Optional[dict[str, str]] = None,
        json: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        response = await self._request(method, url, headers=headers, json=json)
        try:
            payload = response.json()
        except ValueError as exc:
            raise ProviderError("PROVIDER_PARSE_ERROR", "Invalid JSON from provider.") from exc
        if not isinstance(payload, dict):
            raise ProviderError("PROVIDER_PARSE_ERROR", "Provider returned invalid JSON payload.")
        return payload

    async def _request(
        self,
        method: str,
        url: str,
        headers: Optional[dict[str, str]] = None,
        json: Optional[dict[str, Any]] = None,
    ) -> httpx.Response:
        try:
            if self._client:
                response = await self._client.request(
                    method, url, headers=headers, json=json, timeout=self._timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.request(method, url, headers=headers, json=json)
        except httpx.TimeoutException as exc:
            raise ProviderError(
                "PROVIDER_TIMEOUT", "Provider request timed out.", retryable=True
            ) from exc
        except httpx.RequestError as exc:
            raise ProviderError(
                "PROVIDER_CONNECTION_ERROR",
                "Provider connection failed.",
                retryable=True,
            ) from exc
        if response.status_code >= 400:
            raise build_status_error(response)
        return response

    @staticmethod
    def _usage_int(data: dict[str, Any], key: str) -> Optional[int]:
        value = data.get(key)
        return int(value) if isinstance(value, int) else None


class MockAdapter:
    """Offline adapter that answers each workflow phase with scripted JSON."""

    _COMBAT_WORDS = ("attack", "fight", "strike", "slash", "shoot")
    _SOCIAL_WORDS = ("talk", "speak", "ask", "persuade", "greet")
    _PUZZLE_WORDS = ("solve", "riddle", "decipher", "puzzle")

    async def generate(self, cfg: ProviderRuntimeConfig, messages: list[dict]) -> LLMResult:
        phase = ""
        for message in messages:
            if message.get("role") != "system":
                continue
            for line in message.get("content", "").splitlines():
                if line.startswith(PHASE_MARKER_PREFIX):
                    phase = line.split(":", 1)[1].strip()
        action = self._player_action(messages)

        if phase == "action_analysis":
            payload = self._analysis(action)
        elif phase == "narrative_generation":
            payload = self._narrative(action)
        else:
            raise ProviderError("PROVIDER_BAD_REQUEST", f"Mock adapter has no script for {phase!r}.")

        return LLMResult(
            content=json.dumps(payload),
            model_provider=cfg.provider,
            model_name=cfg.model_name or "mock-1",
        )

    @staticmethod
    def _player_action(messages: list[dict]) -> str:
        for message in reversed(messages):
            if message.get("role") != "user":
                continue
            for line in message.get("content", "").splitlines():
                if line.startswith("Player action:"):
                    return line.split(":", 1)[1].strip()
        return ""

    def _analysis(self, action: str) -> dict[str, Any]:
        lowered = action.lower()
        if any(word in lowered for word in self._COMBAT_WORDS):
            action_type, requires_check, difficulty = "combat", True, 15
        elif any(word in lowered for word in self._PUZZLE_WORDS):
            action_type, requires_check, difficulty = "puzzle", True, 12
        elif any(word in lowered for word in self._SOCIAL_WORDS):
            action_type, requires_check, difficulty = "social", False, 10
        else:
            action_type, requires_check, difficulty = "exploration", False, 10
        return {
            "actionType": action_type,
            "targets": [],
            "requiresCheck": requires_check,
            "difficulty": difficulty,
            "skills": [],
            "intent": f"Perform action: {action}" if action else "Hesitate",
            "possibleConsequences": ["Success", "Failure"],
        }

    @staticmethod
    def _narrative(action: str) -> dict[str, Any]:
        subject = action or "pause and take in your surroundings"
        return {
            "narrative": f"You {subject}. The world shifts in response to your choice.",
            "mood": "mysterious",
            "suggestedActions": [
                "Look around carefully",
                "Move forward cautiously",
                "Check your equipment",
            ],
        }
