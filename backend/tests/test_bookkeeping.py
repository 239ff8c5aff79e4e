import unittest
from datetime import date
from decimal import Decimal

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from finbot.models.ledger import Base, LedgerInvoice
from finbot.services import bookkeeping
from finbot.services.errors import BookkeepingError, DuplicateInvoiceError

OWNER = "owner-1"


class BookkeepingTests(unittest.TestCase):
    def setUp(self):
        self.engine = create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        Base.metadata.create_all(self.engine)
        self.SessionLocal = sessionmaker(bind=self.engine)
        self.db = self.SessionLocal()

    def tearDown(self):
        self.db.close()
        Base.metadata.drop_all(self.engine)
        self.engine.dispose()

    def _invoice(self, amount, status="pending", owner=OWNER, number=None):
        invoice = bookkeeping.create_invoice(
            self.db,
            owner,
            client_name="Acme",
            amount=Decimal(amount),
            description="Consulting services",
            issue_date=date(2024, 1, 10),
            invoice_number=number,
        )
        if status != "pending":
            invoice.status = status
            self.db.commit()
        return invoice

    def test_create_invoice_defaults(self):
        invoice = self._invoice("500")
        self.assertTrue(invoice.invoice_number.startswith("INV-"))
        self.assertEqual(invoice.status, "pending")
        self.assertEqual(invoice.due_date, date(2024, 1, 10))
        self.assertEqual(invoice.currency, "USD")
        self.assertIsNotNone(invoice.id)

    def test_duplicate_invoice_number_rolls_back(self):
        self._invoice("10", number="INV-1")
        with self.assertRaises(BookkeepingError):
            self._invoice("20", number="INV-1")
        # Session is usable again after the rollback.
        self.assertEqual(len(bookkeeping.list_invoices(self.db, OWNER)), 1)

    def test_invoice_number_unique_per_owner(self):
        self._invoice("10", number="INV-7")
        other = self._invoice("10", owner="other-owner", number="INV-7")
        self.assertEqual(other.invoice_number, "INV-7")
        with self.assertRaises(DuplicateInvoiceError):
            self._invoice("30", number="INV-7")
        self.assertTrue(bookkeeping.invoice_exists(self.db, OWNER, "INV-7"))
        self.assertFalse(bookkeeping.invoice_exists(self.db, OWNER, "INV-8"))

    def test_negative_invoice_rejected(self):
        with self.assertRaises(BookkeepingError):
            self._invoice("-5")

    def test_record_transaction_validation(self):
        with self.assertRaises(BookkeepingError):
            bookkeeping.record_transaction(
                self.db, OWNER, amount=Decimal("5"), description="x", transaction_date=date.today(), type="refund"
            )
        with self.assertRaises(BookkeepingError):
            bookkeeping.record_transaction(
                self.db, OWNER, amount=Decimal("0"), description="x", transaction_date=date.today(), type="income"
            )

    def test_balance_sheet_aggregates_per_owner(self):
        self._invoice("1000", status="paid")
        self._invoice("300")
        self._invoice("200", status="overdue")
        self._invoice("50", status="cancelled")
        self._invoice("999", owner="someone-else")
        bookkeeping.record_transaction(
            self.db, OWNER, amount=Decimal("400"), description="Retainer", transaction_date=date(2024, 1, 2), type="income"
        )
        bookkeeping.record_transaction(
            self.db, OWNER, amount=Decimal("150.25"), description="Software", transaction_date=date(2024, 1, 3), type="expense"
        )

        sheet = bookkeeping.generate_balance_sheet(self.db, OWNER)
        self.assertEqual(sheet.total_revenue, 1400.0)
        self.assertEqual(sheet.total_expenses, 150.25)
        self.assertEqual(sheet.net_income, 1249.75)
        self.assertEqual(sheet.total_invoices, 4)
        self.assertEqual(sheet.outstanding_invoices, 2)
        self.assertEqual(sheet.outstanding_amount, 500.0)
        self.assertEqual(sheet.total_transactions, 2)
        self.assertEqual(sheet.to_api()["netIncome"], 1249.75)

        text = bookkeeping.render_balance_sheet(sheet)
        self.assertIn("**Total Revenue:** $1400.00", text)
        self.assertIn("- Outstanding Invoices: 2", text)

    def test_empty_ledger(self):
        sheet = bookkeeping.generate_balance_sheet(self.db, "nobody")
        self.assertEqual((sheet.total_revenue, sheet.total_invoices, sheet.total_transactions), (0.0, 0, 0))

    def test_list_filters(self):
        self._invoice("10")
        self._invoice("20", status="paid")
        self.assertEqual(len(bookkeeping.list_invoices(self.db, OWNER, status="paid")), 1)
        self.assertEqual(len(bookkeeping.list_invoices(self.db, OWNER, limit=1)), 1)
        for amount, kind in (("5", "income"), ("6", "expense"), ("7", "expense")):
            bookkeeping.record_transaction(
                self.db, OWNER, amount=Decimal(amount), description="t", transaction_date=date(2024, 2, 1), type=kind
            )
        self.assertEqual(len(bookkeeping.list_transactions(self.db, OWNER, type="expense")), 2)
        self.assertEqual(self.db.query(LedgerInvoice).count(), 2)


if __name__ == "__main__":
    unittest.main()
