from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class _LedgerOut(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class InvoiceOut(_LedgerOut):
    id: str
    invoice_number: str
    client_name: str
    client_email: Optional[str] = None
    amount: float
    currency: str
    description: Optional[str] = None
    issue_date: date
    due_date: Optional[date] = None
    status: str
    external_invoice_id: Optional[str] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row) -> "InvoiceOut":
        return cls.model_validate(
            {
                "id": str(row.id),
                "invoice_number": row.invoice_number,
                "client_name": row.client_name,
                "client_email": row.client_email,
                "amount": float(row.amount),
                "currency": row.currency,
                "description": row.description,
                "issue_date": row.issue_date,
                "due_date": row.due_date,
                "status": row.status,
                "external_invoice_id": row.external_invoice_id,
                "created_at": row.created_at,
            }
        )


class TransactionOut(_LedgerOut):
    id: str
    transaction_ref: str
    amount: float
    description: str
    transaction_date: date
    type: str
    category: Optional[str] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row) -> "TransactionOut":
        return cls.model_validate(
            {
                "id": str(row.id),
                "transaction_ref": row.transaction_ref,
                "amount": float(row.amount),
                "description": row.description,
                "transaction_date": row.transaction_date,
                "type": row.type,
                "category": row.category,
                "created_at": row.created_at,
            }
        )


class BalanceSheetOut(_LedgerOut):
    total_revenue: float
    total_expenses: float
    net_income: float
    total_invoices: int
    outstanding_invoices: int
    outstanding_amount: float
    total_transactions: int
    generated_at: str


class RecentTransactionOut(_LedgerOut):
    description: str
    amount: float
    transaction_date: date
    type: str


class DashboardSummaryOut(_LedgerOut):
    total_revenue: float
    total_expenses: float
    net_income: float
    total_invoices: int
    pending_invoices: int
    outstanding_amount: float
    recent_transactions: List[RecentTransactionOut]
