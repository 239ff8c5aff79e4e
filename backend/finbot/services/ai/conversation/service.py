"""Free-form finance-manager replies with canned fallbacks."""

from __future__ import annotations

import logging
import re
from typing import Optional

from finbot.services.errors import AIServiceError
from finbot.services.memory import (
    ConversationKey,
    ConversationMemoryStore,
    ConversationTurn,
    get_memory_store,
)

from ..common.availability import guarded_generate

logger = logging.getLogger(__name__)

GREETING_REPLY = (
    "Hello! I'm your finance assistant. I can help you create invoices, record "
    "transactions, and manage your financial data. How can I assist you today?"
)
HELP_REPLY = (
    "I can help you with:\n"
    "- Creating invoices\n"
    "- Recording transactions\n"
    "- Viewing balance sheets\n"
    "- Processing uploaded documents\n\n"
    "What would you like to do?"
)
APOLOGY_REPLY = (
    "I'm currently experiencing some technical difficulties, but I'm here to help! "
    "Please try rephrasing your request or contact support if the issue persists."
)

_GREETING_RE = re.compile(r"\b(?:hello|hi)\b", re.IGNORECASE)
_HELP_RE = re.compile(r"\bhelp\b", re.IGNORECASE)


def build_finance_manager_prompt(message: str, context: str) -> str:
    parts = ["You are a finance manager AI assistant for a finance management system.", ""]
    if context:
        parts += ["Previous conversation:", context, ""]
    parts += [
        f"User message: {message}",
        "",
        "Reply as a knowledgeable, concise, and helpful finance manager.",
    ]
    return "\n".join(parts)


def fallback_reply(message: str) -> str:
    """Canned reply used when the AI channel is unavailable or failed."""
    if _GREETING_RE.search(message or ""):
        return GREETING_REPLY
    if _HELP_RE.search(message or ""):
        return HELP_REPLY
    return APOLOGY_REPLY


async def generate_reply(
    message: str,
    key: ConversationKey,
    *,
    memory: Optional[ConversationMemoryStore] = None,
) -> tuple[str, bool]:
    """Return ``(reply, from_ai)``. AI failures yield a canned reply."""
    memory = memory or get_memory_store()
    prompt = build_finance_manager_prompt(message, memory.context_view(key))

    try:
        result = await guarded_generate("conversation", prompt, caller_id=key.caller_id)
    except AIServiceError as exc:
        logger.warning("Conversation reply degraded to canned response: %s", exc)
        return fallback_reply(message), False

    reply = result.raw_text.strip()
    if not reply:
        return fallback_reply(message), False

    memory.append(key, ConversationTurn.conversation(message, reply))
    return reply, True
