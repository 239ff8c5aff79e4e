"""Local ledger: invoices and transactions per owner, plus the balance sheet."""

from __future__ import annotations

import logging
import secrets
import time
from dataclasses import asdict, dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from finbot.models.ledger import LedgerInvoice, LedgerTransaction
from finbot.services.errors import BookkeepingError, DuplicateInvoiceError

logger = logging.getLogger(__name__)

TRANSACTION_TYPES = frozenset({"income", "expense"})
OUTSTANDING_STATUSES = ("pending", "overdue")


@dataclass
class BalanceSheet:
    total_revenue: float
    total_expenses: float
    net_income: float
    total_invoices: int
    outstanding_invoices: int
    outstanding_amount: float
    total_transactions: int
    generated_at: str

    def to_api(self) -> dict:
        data = asdict(self)
        return {
            "totalRevenue": data["total_revenue"],
            "totalExpenses": data["total_expenses"],
            "netIncome": data["net_income"],
            "totalInvoices": data["total_invoices"],
            "outstandingInvoices": data["outstanding_invoices"],
            "outstandingAmount": data["outstanding_amount"],
            "totalTransactions": data["total_transactions"],
            "generatedAt": data["generated_at"],
        }


def _commit(db: Session, row, what: str):
    db.add(row)
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Failed to store %s: %s", what, exc)
        raise BookkeepingError(f"Could not save the {what}") from exc
    db.refresh(row)
    return row


def _ref(prefix: str) -> str:
    return f"{prefix}-{int(time.time() * 1000)}-{secrets.token_hex(2)}"


def create_invoice(
    db: Session,
    owner_id: str,
    *,
    client_name: str,
    amount: Decimal,
    description: str,
    issue_date: date,
    due_date: Optional[date] = None,
    client_email: Optional[str] = None,
    invoice_number: Optional[str] = None,
    currency: str = "USD",
    external_invoice_id: Optional[str] = None,
) -> LedgerInvoice:
    if amount < 0:
        raise BookkeepingError("Invoice amount cannot be negative")
    if invoice_number and invoice_exists(db, owner_id, invoice_number):
        raise DuplicateInvoiceError(f"Invoice {invoice_number} already exists")
    invoice = LedgerInvoice(
        owner_id=owner_id,
        invoice_number=invoice_number or _ref("INV"),
        client_name=client_name,
        client_email=client_email,
        amount=amount,
        currency=currency,
        description=description,
        issue_date=issue_date,
        due_date=due_date or issue_date,
        external_invoice_id=external_invoice_id,
    )
    return _commit(db, invoice, "invoice")


def invoice_exists(db: Session, owner_id: str, invoice_number: str) -> bool:
    stmt = select(LedgerInvoice.id).where(
        LedgerInvoice.owner_id == owner_id,
        LedgerInvoice.invoice_number == invoice_number,
    )
    return db.scalar(stmt.limit(1)) is not None


def attach_external_id(db: Session, invoice: LedgerInvoice, external_invoice_id: Optional[str]) -> LedgerInvoice:
    invoice.external_invoice_id = external_invoice_id
    return _commit(db, invoice, "invoice")


def discard_invoice(db: Session, invoice: LedgerInvoice) -> None:
    """Remove a reserved invoice whose external submission failed."""
    db.delete(invoice)
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Failed to discard invoice %s: %s", invoice.invoice_number, exc)
        raise BookkeepingError("Could not discard the invoice") from exc


def record_transaction(
    db: Session,
    owner_id: str,
    *,
    amount: Decimal,
    description: str,
    transaction_date: date,
    type: str,
    category: Optional[str] = None,
) -> LedgerTransaction:
    if type not in TRANSACTION_TYPES:
        raise BookkeepingError(f"Unknown transaction type {type!r}")
    if amount <= 0:
        raise BookkeepingError("Transaction amount must be positive")
    txn = LedgerTransaction(
        owner_id=owner_id,
        transaction_ref=_ref("TXN"),
        amount=amount,
        description=description,
        transaction_date=transaction_date,
        type=type,
        category=category,
    )
    return _commit(db, txn, "transaction")


def list_invoices(db: Session, owner_id: str, *, status: Optional[str] = None, limit: int = 50) -> list[LedgerInvoice]:
    stmt = select(LedgerInvoice).where(LedgerInvoice.owner_id == owner_id)
    if status:
        stmt = stmt.where(LedgerInvoice.status == status)
    stmt = stmt.order_by(LedgerInvoice.created_at.desc(), LedgerInvoice.issue_date.desc()).limit(limit)
    return list(db.execute(stmt).scalars())


def list_transactions(
    db: Session, owner_id: str, *, type: Optional[str] = None, limit: int = 50
) -> list[LedgerTransaction]:
    stmt = select(LedgerTransaction).where(LedgerTransaction.owner_id == owner_id)
    if type:
        stmt = stmt.where(LedgerTransaction.type == type)
    stmt = stmt.order_by(LedgerTransaction.transaction_date.desc(), LedgerTransaction.created_at.desc()).limit(limit)
    return list(db.execute(stmt).scalars())


def _sum(db: Session, column, *criteria) -> Decimal:
    value = db.execute(select(func.coalesce(func.sum(column), 0)).where(*criteria)).scalar_one()
    return Decimal(str(value))


def _count(db: Session, column, *criteria) -> int:
    return int(db.execute(select(func.count(column)).where(*criteria)).scalar_one())


def generate_balance_sheet(db: Session, owner_id: str) -> BalanceSheet:
    """Aggregate the owner's ledger.

    Revenue is recorded income plus paid invoices; outstanding covers
    pending and overdue invoices.
    """
    try:
        income = _sum(
            db, LedgerTransaction.amount, LedgerTransaction.owner_id == owner_id, LedgerTransaction.type == "income"
        )
        expenses = _sum(
            db, LedgerTransaction.amount, LedgerTransaction.owner_id == owner_id, LedgerTransaction.type == "expense"
        )
        paid = _sum(db, LedgerInvoice.amount, LedgerInvoice.owner_id == owner_id, LedgerInvoice.status == "paid")
        outstanding_amount = _sum(
            db,
            LedgerInvoice.amount,
            LedgerInvoice.owner_id == owner_id,
            LedgerInvoice.status.in_(OUTSTANDING_STATUSES),
        )
        total_invoices = _count(db, LedgerInvoice.id, LedgerInvoice.owner_id == owner_id)
        outstanding_invoices = _count(
            db, LedgerInvoice.id, LedgerInvoice.owner_id == owner_id, LedgerInvoice.status.in_(OUTSTANDING_STATUSES)
        )
        total_transactions = _count(db, LedgerTransaction.id, LedgerTransaction.owner_id == owner_id)
    except SQLAlchemyError as exc:
        logger.error("Balance sheet query failed: %s", exc)
        raise BookkeepingError("Could not generate the balance sheet") from exc

    revenue = income + paid
    return BalanceSheet(
        total_revenue=float(revenue),
        total_expenses=float(expenses),
        net_income=float(revenue - expenses),
        total_invoices=total_invoices,
        outstanding_invoices=outstanding_invoices,
        outstanding_amount=float(outstanding_amount),
        total_transactions=total_transactions,
        generated_at=datetime.now(timezone.utc).isoformat(),
    )


def render_balance_sheet(sheet: BalanceSheet) -> str:
    generated = sheet.generated_at[:10]
    return (
        "**Here's Your Financial Summary!**\n\n"
        f"**Total Revenue:** ${sheet.total_revenue:.2f}\n"
        f"**Total Expenses:** ${sheet.total_expenses:.2f}\n"
        f"**Net Income:** ${sheet.net_income:.2f}\n\n"
        "**Invoice Summary:**\n"
        f"- Total Invoices: {sheet.total_invoices}\n"
        f"- Outstanding Invoices: {sheet.outstanding_invoices}\n"
        f"- Outstanding Amount: ${sheet.outstanding_amount:.2f}\n\n"
        f"**Total Transactions:** {sheet.total_transactions}\n\n"
        f"Generated on: {generated}\n\n"
        "Would you like me to create a new invoice or record a transaction?"
    )
