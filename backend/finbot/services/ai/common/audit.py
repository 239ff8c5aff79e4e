"""AI audit — one structured log record per provider call."""

from __future__ import annotations

import hashlib
import logging
from typing import Any

from finbot.core.config import get_settings

from .providers.base import ProviderResult

logger = logging.getLogger("finbot.ai.audit")

SCOPE_ACTIONS: dict[str, str] = {
    "intent": "AI_INTENT_CLASSIFIED",
    "conversation": "AI_CONVERSATION_REPLY",
    "document_extract": "AI_DOCUMENT_EXTRACTED",
    "invoice_display": "AI_INVOICE_RENDERED",
}


def build_ai_run_record(
    *,
    scope: str,
    provider_result: ProviderResult,
    prompt_text: str,
    caller_id: str | None = None,
    extra_meta: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Assemble the audit record for one call.

    PII: prompt and response are always hashed; raw text is only included
    when ``AI_DEBUG_STORE_RAW=true``.
    """
    settings = get_settings()

    record: dict[str, Any] = {
        "action": SCOPE_ACTIONS.get(scope, "AI_RUN"),
        "scope": scope,
        "caller_id": caller_id,
        "provider": provider_result.provider,
        "model": provider_result.model,
        "prompt_tokens": provider_result.prompt_tokens,
        "completion_tokens": provider_result.completion_tokens,
        "latency_ms": provider_result.latency_ms,
        "prompt_hash": hashlib.sha256(prompt_text.encode()).hexdigest(),
        "response_hash": hashlib.sha256(provider_result.raw_text.encode()).hexdigest(),
    }

    if settings.ai_debug_store_raw:
        record["prompt_raw"] = prompt_text
        record["response_raw"] = provider_result.raw_text

    if extra_meta:
        record.update(extra_meta)
    return record


def log_ai_run(
    *,
    scope: str,
    provider_result: ProviderResult,
    prompt_text: str,
    caller_id: str | None = None,
    extra_meta: dict[str, Any] | None = None,
) -> None:
    record = build_ai_run_record(
        scope=scope,
        provider_result=provider_result,
        prompt_text=prompt_text,
        caller_id=caller_id,
        extra_meta=extra_meta,
    )
    logger.info(
        "%s %s/%s %.0fms",
        record["action"],
        record["provider"],
        record["model"],
        record["latency_ms"],
        extra={"ai_run": record},
    )
