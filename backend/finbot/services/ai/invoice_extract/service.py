"""Document text → InvoiceExtraction. No deterministic fallback on this path."""

from __future__ import annotations

import logging
from typing import Optional

from pydantic import ValidationError

from finbot.core.config import get_settings
from finbot.services.errors import (
    AIServiceError,
    AIUnavailableError,
    DocumentUnreadableError,
    InvoiceExtractionError,
)
from finbot.services.memory import (
    ConversationKey,
    ConversationMemoryStore,
    ConversationTurn,
    get_memory_store,
)

from ..common.availability import guarded_generate
from ..common.json_tools import extract_first_object, parse_json_strict, strip_code_fences
from .contracts import InvoiceExtraction

logger = logging.getLogger(__name__)

MIN_DOCUMENT_CHARS = 10
AUTO_CREATE_MIN_CONFIDENCE = 0.6

EXTRACTION_PROMPT = """You are an expert at extracting structured data from invoice documents.
Analyze the provided invoice text and extract: invoice number, invoice date, due date,
client/customer name, client address, total amount, subtotal, tax amount, description of
services/items, vendor/company name, payment terms and line items.

Respond ONLY with valid JSON in this exact format (no extra text before or after):
{{
  "invoiceNumber": "string or null",
  "invoiceDate": "YYYY-MM-DD or null",
  "dueDate": "YYYY-MM-DD or null",
  "clientName": "string or null",
  "clientAddress": "string or null",
  "totalAmount": "number or null",
  "subtotal": "number or null",
  "taxAmount": "number or null",
  "description": "string or null",
  "vendorName": "string or null",
  "paymentTerms": "string or null",
  "currency": "3-letter code or USD",
  "confidence": 0.95,
  "extractedFields": ["field1", "field2"],
  "lineItems": [{{"description": "string", "quantity": 1, "unitAmount": 0, "taxAmount": 0, "lineAmount": 0}}]
}}

Rules:
- Use null for missing information
- Convert dates to YYYY-MM-DD format
- Extract only numeric values for amounts (no currency symbols)
- Be accurate and conservative in extraction
- Set confidence based on how clear the information is

Invoice text to analyze:
{document_text}
"""


def parse_extraction_response(raw_text: str) -> dict:
    cleaned = strip_code_fences(raw_text)
    parsed = parse_json_strict(cleaned)
    if parsed is None:
        parsed = extract_first_object(cleaned)
    if parsed is None:
        raise InvoiceExtractionError("AI extraction failed: the model did not return valid JSON")
    if not isinstance(parsed, dict):
        raise InvoiceExtractionError("AI extraction failed: extracted data is not an object")
    return parsed


async def extract_invoice_data(
    document_text: str,
    key: Optional[ConversationKey] = None,
    *,
    memory: Optional[ConversationMemoryStore] = None,
) -> InvoiceExtraction:
    """Extract invoice fields from *document_text*.

    Raises ``DocumentUnreadableError`` before any AI call when the text is
    shorter than ten characters, and ``InvoiceExtractionError`` for every
    other failure.
    """
    if not document_text or len(document_text.strip()) < MIN_DOCUMENT_CHARS:
        raise DocumentUnreadableError("Could not extract readable text from the document")

    settings = get_settings()
    text = document_text.strip()
    if len(text) > settings.ai_document_max_chars:
        logger.info("Document truncated from %d to %d chars", len(text), settings.ai_document_max_chars)
        text = text[: settings.ai_document_max_chars]

    try:
        result = await guarded_generate(
            "document_extract",
            EXTRACTION_PROMPT.format(document_text=text),
            caller_id=key.caller_id if key else None,
        )
    except AIUnavailableError as exc:
        raise InvoiceExtractionError("AI extraction failed: the AI service is unavailable") from exc
    except AIServiceError as exc:
        raise InvoiceExtractionError(f"AI extraction failed: {exc}") from exc

    parsed = parse_extraction_response(result.raw_text)
    try:
        extraction = InvoiceExtraction.model_validate(parsed)
    except ValidationError as exc:
        raise InvoiceExtractionError("AI extraction failed: unusable invoice structure") from exc

    if key is not None:
        (memory or get_memory_store()).append(
            key,
            ConversationTurn.document_extraction(extraction.summary(), extraction.to_api()),
        )
    logger.info("Extracted invoice data with confidence %.2f", extraction.confidence)
    return extraction


def generate_suggestions(extraction: InvoiceExtraction) -> list[str]:
    suggestions: list[str] = []
    if not extraction.client_name:
        suggestions.append("Consider adding client name manually if not detected")
    if not extraction.total_amount:
        suggestions.append("Please verify the invoice amount was correctly extracted")
    if not extraction.invoice_date:
        suggestions.append("Consider adding the invoice date manually")
    if extraction.confidence < 0.7:
        suggestions.append("Low confidence extraction - please review all fields carefully")
    if extraction.tax_amount and not extraction.subtotal:
        suggestions.append("Tax amount detected but no subtotal - please verify amounts")
    return suggestions


def can_auto_create(extraction: InvoiceExtraction) -> bool:
    return bool(
        extraction.client_name
        and extraction.total_amount
        and extraction.total_amount > 0
        and extraction.confidence > AUTO_CREATE_MIN_CONFIDENCE
    )
