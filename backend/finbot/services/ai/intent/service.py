"""Intent classification: AI first, keyword rules when the AI path fails."""

from __future__ import annotations

import logging
from typing import Optional, Protocol

from pydantic import ValidationError

from finbot.services.errors import AIServiceError, AIUnavailableError
from finbot.services.memory import (
    ConversationKey,
    ConversationMemoryStore,
    ConversationTurn,
    get_memory_store,
)

from ..common.availability import guarded_generate
from ..common.json_tools import parse_json_strict, strip_code_fences
from .contracts import IntentResult
from .keywords import classify_by_keywords

logger = logging.getLogger(__name__)

INTENT_PROMPT = """You are a financial assistant AI. Analyze the user's message and determine their intent.

Possible intents:
- CREATE_INVOICE: User wants to create an invoice (keywords: invoice, bill, charge, create invoice, send invoice)
- RECORD_TRANSACTION: User wants to record a transaction (keywords: transaction, expense, income, record, spent, received, paid)
- GENERATE_BALANCE_SHEET: User wants to see a balance sheet (keywords: balance, sheet, summary, report, overview, total)
- UPLOAD_DOCUMENT: User wants to upload a document for processing (keywords: upload, document, file, process, analyze)
- DISPLAY_INVOICE: User wants to see one invoice from the accounting system by its ID (keywords: show invoice, get invoice, display invoice)
- GENERAL_INQUIRY: General questions about finance, help requests, or unclear intent

Always respond with valid JSON in this exact format:
{{
  "intent": "INTENT_NAME",
  "confidence": 0.95,
  "entities": {{
    "client": "client name if mentioned or null",
    "amount": "amount if mentioned (number only) or null",
    "description": "description if mentioned or null",
    "date": "date if mentioned (YYYY-MM-DD format) or null"
  }},
  "reasoning": "Brief explanation of why this intent was chosen"
}}

Examples:
- "Create an invoice for John for $500" -> CREATE_INVOICE
- "I spent $50 on office supplies" -> RECORD_TRANSACTION
- "Show me my balance sheet" -> GENERATE_BALANCE_SHEET
- "How do I create invoices?" -> GENERAL_INQUIRY
- "get invoice with invoiceId ab78dbe6-b3cf-4420-986d-24a041e3ec0f" -> DISPLAY_INVOICE

User message: {message}

Previous conversation context: {context}
"""


class IntentStrategy(Protocol):
    name: str

    async def classify(self, message: str, context: str, key: ConversationKey) -> IntentResult: ...


def parse_intent_response(raw_text: str) -> IntentResult:
    """Strict parse of the model answer; raises ``AIServiceError`` when unusable."""
    parsed = parse_json_strict(strip_code_fences(raw_text))
    if not isinstance(parsed, dict):
        raise AIServiceError("Failed to parse AI response as JSON")
    missing = [k for k in ("intent", "confidence", "entities") if parsed.get(k) is None]
    if missing:
        raise AIServiceError(f"Invalid response structure, missing {missing}")
    try:
        return IntentResult.model_validate({**parsed, "source": "ai"})
    except ValidationError as exc:
        raise AIServiceError(f"Invalid response structure: {exc.error_count()} errors") from exc


class AIIntentStrategy:
    name = "ai"

    async def classify(self, message: str, context: str, key: ConversationKey) -> IntentResult:
        prompt = INTENT_PROMPT.format(message=message, context=context or "(none)")
        result = await guarded_generate("intent", prompt, caller_id=key.caller_id)
        return parse_intent_response(result.raw_text)


class KeywordIntentStrategy:
    name = "keywords"

    async def classify(self, message: str, context: str, key: ConversationKey) -> IntentResult:
        return classify_by_keywords(message)


_ai_strategy = AIIntentStrategy()
_keyword_strategy = KeywordIntentStrategy()


async def classify_intent(
    message: str,
    key: ConversationKey,
    *,
    memory: Optional[ConversationMemoryStore] = None,
) -> IntentResult:
    """Classify *message*; never raises for AI problems.

    The AI strategy runs unless the availability breaker is open. Any AI
    failure (transport, unavailable model, malformed JSON, invalid shape)
    degrades to the keyword strategy and is logged as such.
    """
    memory = memory or get_memory_store()
    context = memory.context_view(key)

    try:
        result = await _ai_strategy.classify(message, context, key)
    except AIUnavailableError as exc:
        logger.warning("Intent degraded to keywords (AI unavailable): %s", exc)
        return await _keyword_strategy.classify(message, context, key)
    except AIServiceError as exc:
        logger.warning("Intent degraded to keywords (AI error): %s", exc)
        return await _keyword_strategy.classify(message, context, key)

    memory.append(
        key,
        ConversationTurn.intent_detection(message, result.intent.value, result.confidence),
    )
    logger.info("Detected intent %s (%.2f) via AI", result.intent.value, result.confidence)
    return result
