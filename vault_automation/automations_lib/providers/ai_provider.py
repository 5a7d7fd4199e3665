from __future__ import annotations

import logging
from time import perf_counter
from typing import Any

import httpx

from vault_automation.automations_lib.errors import ActionExecutionError


logger = logging.getLogger(__name__)


class HttpChatProvider:
    """Minimal client for an OpenAI-compatible ``/chat/completions`` endpoint."""

    def __init__(
        self,
        base_url: str | None,
        model: str | None,
        api_key: str | None = None,
        timeout_seconds: int = 60,
    ) -> None:
        self._base_url = (base_url or "").rstrip("/")
        self._model = model or ""
        self._api_key = api_key
        self._timeout_seconds = timeout_seconds

    def is_ready(self) -> bool:
        return bool(self._base_url and self._model)

    async def send_message(self, prompt: str) -> str:
        if not self.is_ready():
            raise ActionExecutionError("AI provider is not configured")
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        body = {
            "model": self._model,
            "messages": [{"role": "user", "content": prompt}],
        }
        start = perf_counter()
        try:
            async with httpx.AsyncClient(timeout=self._timeout_seconds) as client:
                response = await client.post(
                    f"{self._base_url}/chat/completions",
                    json=body,
                    headers=headers,
                )
                response.raise_for_status()
                payload = response.json()
        except httpx.HTTPError as exc:
            raise ActionExecutionError(f"AI provider request failed: {exc}") from exc
        except ValueError as exc:
            raise ActionExecutionError("AI provider returned invalid JSON") from exc

        logger.info(
            "ai provider replied",
            extra={
                "event": "ai_reply",
                "source": self._model,
                "duration_ms": int((perf_counter() - start) * 1000),
            },
        )
        return self._extract_text(payload)

    @staticmethod
    def _extract_text(payload: Any) -> str:
        try:
            content = payload["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise ActionExecutionError("AI provider response has no message content") from exc
        return str(content or "").strip()
