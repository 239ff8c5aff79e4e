"""Chat turn orchestration end to end, with scripted AI answers."""

import asyncio
import json
import unittest
from datetime import date
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from finbot.core.config import Settings
from finbot.models.ledger import Base, LedgerInvoice, LedgerTransaction
from finbot.services.accounting import AccountingClient
from finbot.services.ai.common.availability import get_availability
from finbot.services.ai.common.providers import MockProvider
from finbot.services.ai.common.router import ResolvedConfig
from finbot.services.dispatcher import GENERIC_ERROR_MESSAGE, infer_transaction_type, process_message
from finbot.services.errors import AccountingError, BookkeepingError
from finbot.services.memory import ConversationKey, ConversationMemoryStore, TurnKind

CALLER = "user-42"
TOKEN = "bearer-token"


def _intent(intent, **entities):
    return json.dumps(
        {
            "intent": intent,
            "confidence": 0.95,
            "entities": {"client": None, "amount": None, "description": None, "date": None, **entities},
            "reasoning": "test",
        }
    )


class DispatcherTests(unittest.TestCase):
    def setUp(self):
        self.engine = create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        Base.metadata.create_all(self.engine)
        self.SessionLocal = sessionmaker(bind=self.engine)
        self.db = self.SessionLocal()

        self.memory = ConversationMemoryStore()
        self.key = ConversationKey.of(CALLER)
        self.provider = MockProvider()
        self.accounting = MagicMock(spec=AccountingClient)
        self.accounting.create_invoice = AsyncMock(return_value={"InvoiceID": "ext-1"})
        self.accounting.get_invoice = AsyncMock()
        self.settings = Settings(accounting_sync_enabled=False)

        resolved = ResolvedConfig(
            provider=self.provider, model="", temperature=0.0, max_tokens=100, timeout_seconds=5.0
        )
        self._resolve_patch = patch("finbot.services.ai.common.availability.resolve", return_value=resolved)
        self._resolve_patch.start()

    def tearDown(self):
        self._resolve_patch.stop()
        self.db.close()
        Base.metadata.drop_all(self.engine)
        self.engine.dispose()

    def _send(self, message, access_token=TOKEN, settings=None):
        return asyncio.run(
            process_message(
                message,
                CALLER,
                None,
                access_token,
                db=self.db,
                memory=self.memory,
                accounting=self.accounting,
                settings=settings or self.settings,
            )
        )

    # --- CREATE_INVOICE ---

    def test_missing_client_and_amount(self):
        self.provider.queue(_intent("CREATE_INVOICE"))
        response = self._send("Create an invoice")

        self.assertTrue(response.requires_more_info)
        self.assertEqual(response.missing_fields, ["client name", "amount"])
        self.assertFalse(response.success)
        self.accounting.create_invoice.assert_not_called()
        self.assertEqual(self.db.query(LedgerInvoice).count(), 0)

    def test_create_invoice_locally(self):
        self.provider.queue(_intent("CREATE_INVOICE", amount="150"))
        response = self._send("Create an invoice for Bob for $100 for consulting")

        self.assertTrue(response.success)
        self.assertEqual(response.data["client"], "Bob")
        self.assertEqual(response.data["amount"], 150.0)
        self.assertEqual(response.data["description"], "Consulting services")
        invoice = self.db.query(LedgerInvoice).one()
        self.assertEqual(invoice.owner_id, CALLER)
        self.assertEqual(invoice.amount, Decimal("150.00"))
        self.accounting.create_invoice.assert_not_called()

        kinds = [turn.kind for turn in self.memory.turns(self.key)]
        self.assertEqual(kinds, [TurnKind.INTENT_DETECTION, TurnKind.CONVERSATION])

    def test_create_invoice_synced_to_accounting(self):
        self.provider.queue(_intent("CREATE_INVOICE"))
        response = self._send(
            "Create an invoice for Acme for $500 invoice #1234",
            settings=Settings(accounting_sync_enabled=True),
        )

        self.assertTrue(response.success, response.message)
        payload, token = self.accounting.create_invoice.await_args.args
        self.assertEqual(token, TOKEN)
        self.assertEqual(payload.invoice_number, "INV-1234")
        self.assertEqual(payload.total, "500.00")
        self.assertEqual(response.data["externalInvoiceId"], "ext-1")
        self.assertEqual(self.db.query(LedgerInvoice).one().external_invoice_id, "ext-1")

    def test_accounting_failure_is_reported_not_raised(self):
        self.accounting.create_invoice.side_effect = AccountingError()
        self.provider.queue(_intent("CREATE_INVOICE"))
        response = self._send("Create an invoice for Acme for $500", settings=Settings(accounting_sync_enabled=True))

        self.assertTrue(response.error)
        self.assertIn("Failed to communicate with the accounting system", response.message)
        self.assertEqual(self.db.query(LedgerInvoice).count(), 0)

    def test_duplicate_invoice_number_never_reaches_accounting(self):
        synced = Settings(accounting_sync_enabled=True)
        self.provider.queue(_intent("CREATE_INVOICE"), _intent("CREATE_INVOICE"))
        first = self._send("Create an invoice for Acme for $500 invoice #1234", settings=synced)
        second = self._send("Create an invoice for Beta for $700 invoice #1234", settings=synced)

        self.assertTrue(first.success, first.message)
        self.assertTrue(second.error)
        self.assertIn("INV-1234 already exists", second.message)
        self.assertEqual(self.accounting.create_invoice.await_count, 1)
        self.assertEqual(self.db.query(LedgerInvoice).one().client_name, "Acme")

    def test_same_invoice_number_for_another_caller(self):
        self.db.add(
            LedgerInvoice(
                owner_id="someone-else",
                invoice_number="INV-1234",
                client_name="Other",
                amount=Decimal("10"),
                issue_date=date(2024, 1, 1),
            )
        )
        self.db.commit()
        self.provider.queue(_intent("CREATE_INVOICE"))
        response = self._send("Create an invoice for Acme for $500 invoice #1234")
        self.assertTrue(response.success, response.message)
        self.assertEqual(self.db.query(LedgerInvoice).count(), 2)

    def test_external_id_store_failure_still_reports_success(self):
        self.provider.queue(_intent("CREATE_INVOICE"))
        with patch(
            "finbot.services.dispatcher.bookkeeping.attach_external_id",
            side_effect=BookkeepingError("Could not save the invoice"),
        ):
            response = self._send("Create an invoice for Acme for $500", settings=Settings(accounting_sync_enabled=True))

        self.assertTrue(response.success, response.message)
        self.assertEqual(response.data["externalInvoiceId"], "ext-1")
        self.accounting.create_invoice.assert_awaited_once()
        self.assertEqual(self.db.query(LedgerInvoice).count(), 1)

    # --- pending slot ---

    def test_pending_data_completes_invoice_and_is_cleared(self):
        self.memory.set_pending(self.key, {"client": "Acme", "amount": "200"})
        self.provider.queue(_intent("CREATE_INVOICE"))
        response = self._send("create an invoice")

        self.assertTrue(response.success, response.message)
        self.assertEqual(response.data["client"], "Acme")
        self.assertEqual(response.data["amount"], 200.0)
        self.assertIsNone(self.memory.get_pending(self.key))

    def test_pending_cleared_even_when_more_info_needed(self):
        self.memory.set_pending(self.key, {"description": "Roof repair"})
        self.provider.queue(_intent("CREATE_INVOICE"))
        response = self._send("create an invoice")

        self.assertTrue(response.requires_more_info)
        self.assertIsNone(self.memory.get_pending(self.key))

    def test_pending_kept_for_other_intents(self):
        self.memory.set_pending(self.key, {"client": "Acme", "amount": "200"})
        self.provider.queue(_intent("GENERATE_BALANCE_SHEET"))
        self._send("show me my balance sheet")
        self.assertEqual(self.memory.get_pending(self.key), {"client": "Acme", "amount": "200"})

    # --- RECORD_TRANSACTION ---

    def test_record_transaction(self):
        self.provider.queue(_intent("RECORD_TRANSACTION"))
        response = self._send("I received $1,000 income from consulting")

        self.assertTrue(response.success, response.message)
        self.assertEqual(response.data["type"], "income")
        self.assertEqual(response.data["amount"], 1000.0)
        txn = self.db.query(LedgerTransaction).one()
        self.assertEqual(txn.description, "Consulting services")

    def test_transaction_without_amount(self):
        self.provider.queue(_intent("RECORD_TRANSACTION"))
        response = self._send("record a transaction")
        self.assertTrue(response.requires_more_info)
        self.assertIn("amount", response.missing_fields)

    def test_transaction_type_inference(self):
        self.assertEqual(infer_transaction_type("got paid", Decimal("-5")), "expense")
        self.assertEqual(infer_transaction_type("earned it", Decimal("-5")), "income")
        self.assertEqual(infer_transaction_type("anything", Decimal("5")), "income")
        self.assertEqual(infer_transaction_type("anything", Decimal("-5")), "expense")

    # --- other handlers ---

    def test_balance_sheet(self):
        self.provider.queue(_intent("GENERATE_BALANCE_SHEET"))
        response = self._send("show me my balance sheet")
        self.assertTrue(response.success)
        self.assertEqual(response.data["totalInvoices"], 0)
        self.assertIn("Financial Summary", response.message)

    def test_general_inquiry_uses_ai_reply(self):
        self.provider.queue(_intent("GENERAL_INQUIRY"), "Depreciation spreads an asset's cost over time.")
        response = self._send("what is depreciation?")
        self.assertTrue(response.success)
        self.assertEqual(response.message, "Depreciation spreads an asset's cost over time.")

    def test_upload_intent_answered_as_inquiry(self):
        self.provider.queue(_intent("UPLOAD_DOCUMENT"), "Use the upload button to send a PDF.")
        response = self._send("can I upload a document?")
        self.assertEqual(response.intent, "GENERAL_INQUIRY")
        self.assertEqual(response.message, "Use the upload button to send a PDF.")

    def test_display_invoice(self):
        invoice = {"InvoiceID": "ab78", "InvoiceNumber": "INV-1", "Total": 99.0}
        self.accounting.get_invoice.return_value = invoice
        self.provider.queue(_intent("DISPLAY_INVOICE"), "ab78", "Invoice INV-1 totals $99.00.")
        response = self._send("show invoice ab78")

        self.assertTrue(response.success)
        self.assertEqual(response.message, "Invoice INV-1 totals $99.00.")
        self.assertEqual(response.data, invoice)
        self.accounting.get_invoice.assert_awaited_once_with("ab78", TOKEN)

    def test_display_invoice_without_id(self):
        self.provider.queue(_intent("DISPLAY_INVOICE"), "null")
        response = self._send("show me an invoice")
        self.assertFalse(response.success)
        self.assertIn("valid invoice ID", response.message)
        self.accounting.get_invoice.assert_not_called()

    # --- degradation ---

    def test_ai_down_uses_keywords_and_canned_reply(self):
        get_availability().mark_unavailable("test")
        response = self._send("hello there")
        self.assertTrue(response.success)
        self.assertIn("finance assistant", response.message)
        self.assertEqual(self.provider.calls, 0)

    def test_unexpected_error_becomes_envelope(self):
        self.provider.queue(_intent("GENERATE_BALANCE_SHEET"))
        with patch("finbot.services.dispatcher.bookkeeping.generate_balance_sheet", side_effect=RuntimeError("db gone")):
            response = self._send("balance sheet")
        self.assertTrue(response.error)
        self.assertEqual(response.message, GENERIC_ERROR_MESSAGE)


if __name__ == "__main__":
    unittest.main()
