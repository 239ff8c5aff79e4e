"""Ledger read endpoints — balance sheet, dashboard summary, invoice and transaction lists."""

from __future__ import annotations

from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from finbot.core.auth import CurrentUser, get_current_user
from finbot.core.dependencies import get_db
from finbot.schemas.ledger import (
    BalanceSheetOut,
    DashboardSummaryOut,
    InvoiceOut,
    RecentTransactionOut,
    TransactionOut,
)
from finbot.services import bookkeeping
from finbot.services.errors import BookkeepingError

router = APIRouter()

RECENT_TRANSACTIONS = 5


@router.get("/dashboard/balance-sheet", response_model=BalanceSheetOut)
def balance_sheet(
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        sheet = bookkeeping.generate_balance_sheet(db, current_user.id)
    except BookkeepingError as exc:
        raise HTTPException(500, "Failed to generate balance sheet") from exc
    return BalanceSheetOut.model_validate(sheet)


@router.get("/dashboard/summary", response_model=DashboardSummaryOut)
def dashboard_summary(
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        sheet = bookkeeping.generate_balance_sheet(db, current_user.id)
    except BookkeepingError as exc:
        raise HTTPException(500, "Failed to fetch dashboard data") from exc
    recent = bookkeeping.list_transactions(db, current_user.id, limit=RECENT_TRANSACTIONS)
    return DashboardSummaryOut(
        total_revenue=sheet.total_revenue,
        total_expenses=sheet.total_expenses,
        net_income=sheet.net_income,
        total_invoices=sheet.total_invoices,
        pending_invoices=sheet.outstanding_invoices,
        outstanding_amount=sheet.outstanding_amount,
        recent_transactions=[
            RecentTransactionOut(
                description=txn.description,
                amount=float(txn.amount),
                transaction_date=txn.transaction_date,
                type=txn.type,
            )
            for txn in recent
        ],
    )


@router.get("/invoices", response_model=list[InvoiceOut])
def list_invoices(
    status: Optional[Literal["pending", "paid", "overdue", "cancelled"]] = None,
    limit: int = Query(50, ge=1, le=200),
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    rows = bookkeeping.list_invoices(db, current_user.id, status=status, limit=limit)
    return [InvoiceOut.from_row(row) for row in rows]


@router.get("/invoices/transactions", response_model=list[TransactionOut])
def list_transactions(
    type: Optional[Literal["income", "expense"]] = None,
    limit: int = Query(50, ge=1, le=200),
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    rows = bookkeeping.list_transactions(db, current_user.id, type=type, limit=limit)
    return [TransactionOut.from_row(row) for row in rows]
