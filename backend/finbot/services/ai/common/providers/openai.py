"""OpenAI-compatible chat-completions provider."""

from __future__ import annotations

import logging
import time

import httpx

from .base import BaseProvider, ProviderResult

logger = logging.getLogger(__name__)

DEFAULT_OPENAI_MODEL = "gpt-4o-mini"


class OpenAIProvider(BaseProvider):
    name = "openai"

    def __init__(self, api_key: str, base_url: str = "https://api.openai.com/v1") -> None:
        self._api_key = api_key
        self._endpoint = base_url.rstrip("/") + "/chat/completions"

    def _build_body(
        self, prompt: str, system_prompt: str | None, model: str, temperature: float, max_tokens: int
    ) -> dict:
        messages = [{"role": "user", "content": prompt}]
        if system_prompt:
            messages.insert(0, {"role": "system", "content": system_prompt})
        return {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }

    async def generate(
        self,
        prompt: str,
        *,
        system_prompt: str | None = None,
        model: str = "",
        temperature: float = 0.1,
        max_tokens: int = 2000,
        timeout_seconds: float = 30.0,
    ) -> ProviderResult:
        model = model or DEFAULT_OPENAI_MODEL
        started = time.monotonic()

        async with httpx.AsyncClient(timeout=timeout_seconds) as client:
            resp = await client.post(
                self._endpoint,
                headers={"Authorization": f"Bearer {self._api_key}"},
                json=self._build_body(prompt, system_prompt, model, temperature, max_tokens),
            )
            resp.raise_for_status()
            payload = resp.json()

        choices = payload.get("choices") or []
        if not choices:
            raise ValueError("OpenAI returned no choices")
        if choices[0].get("finish_reason") == "length":
            # Truncated JSON fails to parse downstream; make the cause visible.
            logger.warning("OpenAI completion hit max_tokens=%d for model %s", max_tokens, model)

        usage = payload.get("usage") or {}
        return ProviderResult(
            raw_text=(choices[0].get("message") or {}).get("content") or "",
            model=payload.get("model", model),
            provider=self.name,
            prompt_tokens=usage.get("prompt_tokens", 0),
            completion_tokens=usage.get("completion_tokens", 0),
            latency_ms=round((time.monotonic() - started) * 1000, 2),
        )
