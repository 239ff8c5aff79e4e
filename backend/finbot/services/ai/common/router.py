"""AI router — resolves provider + model per scope (scope ENV > global ENV > mock)."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from finbot.core.config import get_settings

from .providers import BaseProvider, get_provider

logger = logging.getLogger(__name__)

SCOPES = frozenset({"intent", "conversation", "document_extract", "invoice_display"})


@dataclass(frozen=True)
class ResolvedConfig:
    """Final provider + call parameters for one scope."""

    provider: BaseProvider
    model: str
    temperature: float
    max_tokens: int
    timeout_seconds: float


def resolve(scope: str) -> ResolvedConfig:
    """Resolve provider + model for *scope*.

    Resolution chain (first non-empty wins):
      1. scope-specific ENV: ``AI_INTENT_PROVIDER`` for ``intent``,
         ``AI_DOCUMENT_PROVIDER`` for ``document_extract``.
      2. ``AI_PROVIDER`` / ``AI_MODEL``.
      3. ``"mock"``.
    """
    if scope not in SCOPES:
        raise ValueError(f"Unknown AI scope {scope!r}")

    settings = get_settings()

    provider_name = ""
    model = ""
    timeout = settings.ai_timeout_seconds

    if scope == "intent":
        provider_name = settings.ai_intent_provider
        model = settings.ai_intent_model
        timeout = settings.ai_intent_timeout_seconds
    elif scope == "document_extract":
        provider_name = settings.ai_document_provider
        model = settings.ai_document_model

    if not provider_name:
        provider_name = settings.ai_provider or "mock"
        model = model or settings.ai_model

    return ResolvedConfig(
        provider=get_provider(provider_name),
        model=model.strip(),
        temperature=settings.ai_temperature,
        max_tokens=settings.ai_max_tokens,
        timeout_seconds=timeout,
    )
