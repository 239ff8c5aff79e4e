"""Mock provider — deterministic responses for tests and local runs."""

from __future__ import annotations

import json
import time
from collections import deque
from collections.abc import Iterable

from .base import BaseProvider, ProviderResult

DEFAULT_MOCK_RESPONSE = json.dumps(
    {
        "intent": "GENERAL_INQUIRY",
        "confidence": 1.0,
        "entities": {"client": None, "amount": None, "description": None, "date": None},
        "reasoning": "mock provider",
    }
)


class MockProvider(BaseProvider):
    """Replays scripted responses in order, then the default response.

    A scripted item that is an exception instance is raised instead of
    returned, which lets tests simulate provider outages.
    """

    name = "mock"

    def __init__(self, responses: Iterable[str | Exception] | None = None) -> None:
        self._responses: deque[str | Exception] = deque(responses or [])
        self.prompts: list[str] = []

    def queue(self, *responses: str | Exception) -> None:
        self._responses.extend(responses)

    @property
    def calls(self) -> int:
        return len(self.prompts)

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
        t0 = time.monotonic()
        self.prompts.append(prompt)
        item = self._responses.popleft() if self._responses else DEFAULT_MOCK_RESPONSE
        if isinstance(item, Exception):
            raise item
        elapsed = (time.monotonic() - t0) * 1000
        return ProviderResult(
            raw_text=item,
            model=model or "mock-v1",
            provider=self.name,
            prompt_tokens=len(prompt.split()),
            completion_tokens=len(item.split()),
            latency_ms=round(elapsed, 2),
        )
