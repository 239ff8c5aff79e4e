"""Show one accounting-system invoice in chat: ID extraction, fetch, render."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Optional

from finbot.services.accounting import AccountingClient
from finbot.services.errors import AccountingError, AIServiceError
from finbot.services.memory import (
    ConversationKey,
    ConversationMemoryStore,
    ConversationTurn,
    get_memory_store,
)

from ..common.availability import get_availability, guarded_generate
from ..conversation.service import fallback_reply

logger = logging.getLogger(__name__)

NO_ID_MESSAGE = "I couldn't find an invoice ID in your message. Please provide a valid invoice ID."
FETCH_FAILED_MESSAGE = "I couldn't retrieve that invoice from the accounting system. Please check the ID and try again."

EXTRACT_ID_PROMPT = """You are an intelligent assistant designed to extract ID values from user messages.

Analyze the message below and extract a valid ID if one is present.

Message:
"{message}"

Instructions:
- Extract only the ID (e.g., a UUID, numeric ID, alphanumeric ID, etc.)
- Do NOT include any text before or after the ID
- If multiple IDs are present, return only the first one found
- If no ID is found, return null
- Do NOT return anything other than the ID or null

Examples:
Input: "Can you fetch details for invoice ID INV-0001?"
Output: INV-0001

Input: "Here are the IDs: 123456, 987654"
Output: 123456

Input: "Hey there!"
Output: null
"""

RENDER_PROMPT = """You are a helpful assistant that displays invoice data in a clean and readable chat format.

Instructions:
- LineItems is the list of items on the invoice
- Mention the invoice number, contact, dates, status and totals

Here is the invoice:
{invoice_json}
"""

_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._/-]{0,99}$")


@dataclass
class InvoiceDisplayResult:
    message: str
    success: bool
    invoice: Optional[dict[str, Any]] = None


def parse_invoice_id(raw_text: str) -> Optional[str]:
    """Normalise the model's answer to an ID token, or None."""
    token = (raw_text or "").strip().strip("`").strip().strip("\"'").strip()
    if not token or token.lower() in {"null", "none"}:
        return None
    token = token.split()[0].strip("\"'.,;:")
    return token if _ID_RE.match(token) else None


async def display_invoice(
    message: str,
    key: ConversationKey,
    access_token: Optional[str],
    *,
    memory: Optional[ConversationMemoryStore] = None,
    client: Optional[AccountingClient] = None,
) -> InvoiceDisplayResult:
    memory = memory or get_memory_store()

    if not get_availability().is_available:
        logger.info("Invoice display using canned reply, AI unavailable")
        return InvoiceDisplayResult(message=fallback_reply(message), success=True)

    try:
        id_result = await guarded_generate(
            "invoice_display",
            EXTRACT_ID_PROMPT.format(message=message),
            caller_id=key.caller_id,
        )
    except AIServiceError as exc:
        logger.warning("Invoice ID extraction failed: %s", exc)
        return InvoiceDisplayResult(message=fallback_reply(message), success=True)

    invoice_id = parse_invoice_id(id_result.raw_text)
    if not invoice_id:
        return InvoiceDisplayResult(message=NO_ID_MESSAGE, success=False)

    client = client or AccountingClient()
    try:
        invoice = await client.get_invoice(invoice_id, access_token or "")
    except AccountingError:
        return InvoiceDisplayResult(message=FETCH_FAILED_MESSAGE, success=False)

    try:
        rendered = await guarded_generate(
            "invoice_display",
            RENDER_PROMPT.format(invoice_json=json.dumps(invoice, default=str)),
            caller_id=key.caller_id,
        )
    except AIServiceError as exc:
        logger.warning("Invoice rendering failed: %s", exc)
        return InvoiceDisplayResult(message=fallback_reply(message), success=True, invoice=invoice)

    reply = rendered.raw_text.strip()
    memory.append(key, ConversationTurn.conversation(message, reply))
    return InvoiceDisplayResult(message=reply, success=True, invoice=invoice)
