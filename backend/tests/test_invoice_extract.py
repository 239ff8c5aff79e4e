"""Document extraction pipeline: cleaning rules and hard failures."""

import asyncio
import json
import unittest
from unittest.mock import patch

from finbot.services.ai.common.availability import get_availability
from finbot.services.ai.common.providers import MockProvider
from finbot.services.ai.common.router import ResolvedConfig
from finbot.services.ai.invoice_extract.contracts import InvoiceExtraction
from finbot.services.ai.invoice_extract.service import (
    can_auto_create,
    extract_invoice_data,
    generate_suggestions,
    parse_extraction_response,
)
from finbot.services.errors import DocumentUnreadableError, InvoiceExtractionError
from finbot.services.memory import ConversationKey, ConversationMemoryStore, TurnKind

KEY = ConversationKey.of("user-1")
DOCUMENT = "INVOICE INV-2024-001\nBill to: Acme Corp\nTotal due: $1,250.00\nDate: 03/15/2024"


def _resolved(provider):
    return ResolvedConfig(provider=provider, model="", temperature=0.0, max_tokens=100, timeout_seconds=5.0)


def _extraction_json(**overrides):
    data = {
        "invoiceNumber": "INV-2024-001",
        "invoiceDate": "2024-03-15",
        "dueDate": None,
        "clientName": "Acme Corp",
        "totalAmount": "1,250.00",
        "subtotal": None,
        "taxAmount": None,
        "description": "Consulting",
        "currency": "usd",
        "confidence": 0.9,
        "extractedFields": ["invoiceNumber", "clientName", "totalAmount"],
    }
    data.update(overrides)
    return json.dumps(data)


class InvoiceExtractionContractTests(unittest.TestCase):
    def test_confidence_always_clamped(self):
        for raw, expected in ((1.7, 1.0), (-0.3, 0.0), ("0.45", 0.45), (None, 0.0), ("high", 0.0)):
            extraction = InvoiceExtraction.model_validate({"confidence": raw})
            self.assertEqual(extraction.confidence, expected, raw)
            self.assertTrue(0.0 <= extraction.confidence <= 1.0)

    def test_missing_confidence_defaults_to_zero(self):
        self.assertEqual(InvoiceExtraction.model_validate({}).confidence, 0.0)

    def test_money_coercion(self):
        extraction = InvoiceExtraction.model_validate(
            {"totalAmount": "$1,250.50", "subtotal": "n/a", "taxAmount": 12}
        )
        self.assertEqual(extraction.total_amount, 1250.5)
        self.assertIsNone(extraction.subtotal)
        self.assertEqual(extraction.tax_amount, 12.0)

    def test_dates_validated(self):
        extraction = InvoiceExtraction.model_validate({"invoiceDate": "03/15/2024", "dueDate": "2024-02-31"})
        self.assertEqual(extraction.invoice_date, "2024-03-15")
        self.assertIsNone(extraction.due_date)

    def test_currency_default_and_extracted_fields_coercion(self):
        extraction = InvoiceExtraction.model_validate({"currency": "dollars", "extractedFields": "clientName"})
        self.assertEqual(extraction.currency, "USD")
        self.assertEqual(extraction.extracted_fields, [])

    def test_to_entities(self):
        extraction = InvoiceExtraction.model_validate(json.loads(_extraction_json()))
        entities = extraction.to_entities()
        self.assertEqual(entities["client"], "Acme Corp")
        self.assertEqual(entities["amount"], "1250")
        self.assertEqual(entities["date"], "2024-03-15")
        self.assertEqual(entities["invoice_number"], "INV-2024-001")


class ParseExtractionResponseTests(unittest.TestCase):
    def test_fenced(self):
        self.assertEqual(parse_extraction_response('```json\n{"clientName": "A"}\n```'), {"clientName": "A"})

    def test_brace_scan_fallback(self):
        raw = 'Here is the data you asked for: {"clientName": "A {b}", "totalAmount": 5} -- done'
        self.assertEqual(parse_extraction_response(raw), {"clientName": "A {b}", "totalAmount": 5})

    def test_non_object_is_error(self):
        with self.assertRaises(InvoiceExtractionError):
            parse_extraction_response("[1, 2, 3]")

    def test_garbage_is_error(self):
        with self.assertRaises(InvoiceExtractionError):
            parse_extraction_response("I could not read this invoice.")


class ExtractInvoiceDataTests(unittest.TestCase):
    def setUp(self):
        self.memory = ConversationMemoryStore()

    def test_short_document_rejected_before_ai(self):
        provider = MockProvider([_extraction_json()])
        with patch("finbot.services.ai.common.availability.resolve", return_value=_resolved(provider)):
            with self.assertRaises(DocumentUnreadableError) as ctx:
                asyncio.run(extract_invoice_data("hi 12", KEY, memory=self.memory))
        self.assertIn("readable", str(ctx.exception))
        self.assertEqual(provider.calls, 0)

    def test_success_appends_document_turn(self):
        provider = MockProvider([_extraction_json(confidence=3)])
        with patch("finbot.services.ai.common.availability.resolve", return_value=_resolved(provider)):
            extraction = asyncio.run(extract_invoice_data(DOCUMENT, KEY, memory=self.memory))

        self.assertEqual(extraction.client_name, "Acme Corp")
        self.assertEqual(extraction.total_amount, 1250.0)
        self.assertEqual(extraction.currency, "USD")
        self.assertEqual(extraction.confidence, 1.0)
        self.assertIn(DOCUMENT, provider.prompts[0])

        turns = self.memory.turns(KEY)
        self.assertEqual(len(turns), 1)
        self.assertIs(turns[0].kind, TurnKind.DOCUMENT_EXTRACTION)
        self.assertIn("Acme Corp", turns[0].render())

    def test_unparseable_answer_is_hard_failure(self):
        provider = MockProvider(["Sorry, I can't help with that."])
        with patch("finbot.services.ai.common.availability.resolve", return_value=_resolved(provider)):
            with self.assertRaises(InvoiceExtractionError):
                asyncio.run(extract_invoice_data(DOCUMENT, KEY, memory=self.memory))
        self.assertEqual(self.memory.turns(KEY), [])

    def test_unavailable_channel_is_hard_failure(self):
        get_availability().mark_unavailable("test")
        provider = MockProvider([_extraction_json()])
        with patch("finbot.services.ai.common.availability.resolve", return_value=_resolved(provider)):
            with self.assertRaises(InvoiceExtractionError) as ctx:
                asyncio.run(extract_invoice_data(DOCUMENT, KEY, memory=self.memory))
        self.assertIn("unavailable", str(ctx.exception))
        self.assertEqual(provider.calls, 0)


class SuggestionTests(unittest.TestCase):
    def test_suggestions_for_sparse_extraction(self):
        extraction = InvoiceExtraction.model_validate({"taxAmount": 10, "confidence": 0.5})
        suggestions = generate_suggestions(extraction)
        self.assertEqual(len(suggestions), 5)
        self.assertFalse(can_auto_create(extraction))

    def test_auto_create_threshold(self):
        good = InvoiceExtraction.model_validate(json.loads(_extraction_json()))
        self.assertEqual(generate_suggestions(good), [])
        self.assertTrue(can_auto_create(good))
        weak = InvoiceExtraction.model_validate(json.loads(_extraction_json(confidence=0.6)))
        self.assertFalse(can_auto_create(weak))


if __name__ == "__main__":
    unittest.main()
