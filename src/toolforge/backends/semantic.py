"""OpenAI-compatible chat completions adapter used for reranking and expansion."""

from __future__ import annotations

from typing import Any

import httpx

from ..config import Settings
from ..errors import BackendError
from .base import SemanticBackend


class ChatCompletionsBackend(SemanticBackend):
    """Thin wrapper around a ``/chat/completions`` endpoint."""

    def __init__(
        self,
        settings: Settings,
        *,
        base_url: str | None = None,
        api_key: str | None = None,
        model: str | None = None,
        timeout: float | None = None,
        temperature: float = 0.1,
        max_tokens: int = 300,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings
        self.base_url = (base_url or settings.semantic_api_url or "").rstrip("/")
        self.api_key = api_key if api_key is not None else settings.semantic_api_key
        self.model = model or settings.semantic_model
        self.temperature = temperature
        self.max_tokens = max_tokens
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        self.http = httpx.AsyncClient(
            timeout=timeout if timeout is not None else settings.semantic_timeout_seconds,
            headers=headers,
            transport=transport,
        )

    def is_available(self) -> bool:
        return bool(self.base_url)

    async def chat(self, prompt: str, *, system: str | None = None) -> str:
        if not self.is_available():
            raise BackendError("semantic backend is not configured")
        messages: list[dict[str, str]] = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        try:
            response = await self.http.post(f"{self.base_url}/chat/completions", json=payload)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise BackendError(f"chat completion failed: {exc}") from exc

        choices = data.get("choices") if isinstance(data, dict) else None
        if not choices:
            raise BackendError("chat completion returned no choices")
        message = choices[0].get("message", {}) if isinstance(choices[0], dict) else {}
        content = message.get("content") if isinstance(message, dict) else None
        if not content or not isinstance(content, str):
            raise BackendError("chat completion returned empty content")
        return content.strip()

    async def close(self) -> None:
        await self.http.aclose()


__all__ = ["ChatCompletionsBackend"]
