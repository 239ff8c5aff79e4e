"""Chat turn orchestration: classify → extract → merge → handler → envelope.

UPLOAD_DOCUMENT is classified but never dispatched here; documents only
arrive through the upload endpoint, so chat answers it like a general
inquiry.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from finbot.core.config import Settings, get_settings
from finbot.schemas.chat import ChatResponse
from finbot.services import bookkeeping
from finbot.services.accounting import AccountingClient, InvoiceDraft, map_to_external_invoice
from finbot.services.ai.conversation.service import generate_reply
from finbot.services.ai.intent.contracts import Intent
from finbot.services.ai.intent.service import classify_intent
from finbot.services.ai.invoice_display.service import display_invoice
from finbot.services.errors import AccountingError, BookkeepingError
from finbot.services.extraction import DEFAULT_DESCRIPTION, extract_financial_data, normalize_date, parse_amount
from finbot.services.memory import (
    ConversationKey,
    ConversationMemoryStore,
    ConversationTurn,
    get_memory_store,
)
from finbot.services.merge import PENDING_INTENTS, MergedActionData, merge_action_data

logger = logging.getLogger(__name__)

GENERIC_ERROR_MESSAGE = "Sorry, I encountered an error. Please try again."

_INCOME_RE = re.compile(r"\b(?:income|received|earned|revenue|payment)\b", re.IGNORECASE)
_EXPENSE_RE = re.compile(r"\b(?:expense|spent|paid|cost|bought)\b", re.IGNORECASE)


@dataclass
class TurnContext:
    message: str
    key: ConversationKey
    merged: Optional[MergedActionData]
    access_token: Optional[str]
    db: Session
    memory: ConversationMemoryStore
    accounting: AccountingClient
    settings: Settings


Handler = Callable[[TurnContext], Awaitable[ChatResponse]]


def infer_transaction_type(message: str, amount: Decimal) -> str:
    """``income`` on income keywords or a positive amount, else ``expense``."""
    if _INCOME_RE.search(message) or amount > 0:
        return "income"
    if _EXPENSE_RE.search(message):
        return "expense"
    return "expense"


def _remember(ctx: TurnContext, reply: str) -> None:
    ctx.memory.append(ctx.key, ConversationTurn.conversation(ctx.message, reply))


def _invoice_failure(exc: Exception) -> ChatResponse:
    return ChatResponse.failure(
        f"I couldn't create the invoice: {exc}. Let me know if you'd like to try again.",
        intent=Intent.CREATE_INVOICE.value,
    )


async def handle_create_invoice(ctx: TurnContext) -> ChatResponse:
    data = ctx.merged or MergedActionData()
    amount = parse_amount(data.amount)

    missing: list[str] = []
    if not data.client:
        missing.append("client name")
    if amount is None:
        missing.append("amount")
    if missing:
        return ChatResponse.needs_more_info(
            "I need a bit more information to create your invoice. "
            f"Please provide the {' and '.join(missing)}. For example: "
            '"Create an invoice for John Smith for $500 for consulting services"',
            missing,
            intent=Intent.CREATE_INVOICE.value,
        )

    description = data.description or DEFAULT_DESCRIPTION
    issue_date = date.fromisoformat(normalize_date(data.date) or date.today().isoformat())
    due_iso = normalize_date(data.due_date)
    due_date = date.fromisoformat(due_iso) if due_iso else issue_date
    invoice_number = data.invoice_number
    if invoice_number and invoice_number.isdigit():
        invoice_number = f"INV-{invoice_number}"
    external_id = None

    try:
        # Reserve the local row first so a duplicate number never reaches the accounting system.
        invoice = bookkeeping.create_invoice(
            ctx.db,
            ctx.key.caller_id,
            client_name=data.client,
            client_email=data.email,
            amount=abs(amount),
            description=description,
            issue_date=issue_date,
            due_date=due_date,
            invoice_number=invoice_number,
            currency=ctx.settings.default_currency,
        )
    except BookkeepingError as exc:
        logger.warning("Invoice creation failed for %s: %s", ctx.key.caller_id, exc)
        return _invoice_failure(exc)
    invoice_id = str(invoice.id)
    number = invoice.invoice_number

    if ctx.settings.accounting_sync_enabled and ctx.access_token:
        try:
            payload = map_to_external_invoice(
                InvoiceDraft.from_chat(
                    {
                        "client": data.client,
                        "amount": str(amount),
                        "description": description,
                        "date": issue_date.isoformat(),
                        "due_date": due_date.isoformat(),
                        "invoice_number": number,
                    }
                ),
                settings=ctx.settings,
            )
            created = await ctx.accounting.create_invoice(payload, ctx.access_token)
        except AccountingError as exc:
            logger.warning("Accounting sync failed for invoice %s: %s", number, exc)
            try:
                bookkeeping.discard_invoice(ctx.db, invoice)
            except BookkeepingError:
                logger.error("Reserved invoice %s could not be discarded", number)
            return _invoice_failure(exc)

        external_id = created.get("InvoiceID")
        try:
            bookkeeping.attach_external_id(ctx.db, invoice, external_id)
        except BookkeepingError:
            # The external invoice exists; the turn still succeeded.
            logger.error(
                "Invoice %s created externally as %s but the id was not stored",
                number,
                external_id,
            )

    reply = (
        "I've created your invoice successfully!\n\n"
        f"**Invoice #{number}**\n"
        f"**Client:** {data.client}\n"
        f"**Amount:** ${abs(amount):.2f}\n"
        f"**Description:** {description}\n\n"
        "Is there anything else you'd like me to help you with?"
    )
    _remember(ctx, reply)
    return ChatResponse.ok(
        reply,
        {
            "id": invoice_id,
            "invoiceNumber": number,
            "client": data.client,
            "amount": float(abs(amount)),
            "description": description,
            "date": issue_date.isoformat(),
            "dueDate": due_date.isoformat(),
            "externalInvoiceId": external_id,
        },
        intent=Intent.CREATE_INVOICE.value,
    )


async def handle_record_transaction(ctx: TurnContext) -> ChatResponse:
    data = ctx.merged or MergedActionData()
    amount = parse_amount(data.amount)

    missing: list[str] = []
    if amount is None or amount == 0:
        missing.append("amount")
    if not data.description:
        missing.append("description")
    if missing:
        return ChatResponse.needs_more_info(
            "I need more details to record this transaction. "
            f"Please provide the {' and '.join(missing)}. For example: "
            '"I spent $50 on office supplies" or "Record $1000 income from consulting"',
            missing,
            intent=Intent.RECORD_TRANSACTION.value,
        )

    txn_type = infer_transaction_type(ctx.message, amount)
    txn_date = date.fromisoformat(normalize_date(data.date) or date.today().isoformat())

    try:
        txn = bookkeeping.record_transaction(
            ctx.db,
            ctx.key.caller_id,
            amount=abs(amount),
            description=data.description,
            transaction_date=txn_date,
            type=txn_type,
        )
    except BookkeepingError as exc:
        logger.warning("Transaction recording failed for %s: %s", ctx.key.caller_id, exc)
        return ChatResponse.failure(
            f"I couldn't record the transaction: {exc}. Please try again with the amount and description.",
            intent=Intent.RECORD_TRANSACTION.value,
        )

    reply = (
        "I've recorded your transaction successfully!\n\n"
        f"**{txn_type.capitalize()}:** ${abs(amount):.2f}\n"
        f"**Description:** {data.description}\n"
        f"**Date:** {txn_date.isoformat()}\n\n"
        "Would you like to record another transaction or see your financial summary?"
    )
    _remember(ctx, reply)
    return ChatResponse.ok(
        reply,
        {
            "id": str(txn.id),
            "transactionRef": txn.transaction_ref,
            "amount": float(txn.amount),
            "description": txn.description,
            "date": txn_date.isoformat(),
            "type": txn_type,
        },
        intent=Intent.RECORD_TRANSACTION.value,
    )


async def handle_balance_sheet(ctx: TurnContext) -> ChatResponse:
    try:
        sheet = bookkeeping.generate_balance_sheet(ctx.db, ctx.key.caller_id)
    except BookkeepingError:
        return ChatResponse.failure(
            "I couldn't generate your balance sheet right now. Please try again in a moment.",
            intent=Intent.GENERATE_BALANCE_SHEET.value,
        )
    reply = bookkeeping.render_balance_sheet(sheet)
    _remember(ctx, reply)
    return ChatResponse.ok(reply, sheet.to_api(), intent=Intent.GENERATE_BALANCE_SHEET.value)


async def handle_display_invoice(ctx: TurnContext) -> ChatResponse:
    result = await display_invoice(
        ctx.message,
        ctx.key,
        ctx.access_token,
        memory=ctx.memory,
        client=ctx.accounting,
    )
    return ChatResponse(
        message=result.message,
        data=result.invoice,
        success=result.success,
        error=not result.success,
        intent=Intent.DISPLAY_INVOICE.value,
    )


async def handle_general_inquiry(ctx: TurnContext) -> ChatResponse:
    reply, _ = await generate_reply(ctx.message, ctx.key, memory=ctx.memory)
    return ChatResponse.ok(reply, intent=Intent.GENERAL_INQUIRY.value)


HANDLERS: dict[Intent, Handler] = {
    Intent.CREATE_INVOICE: handle_create_invoice,
    Intent.RECORD_TRANSACTION: handle_record_transaction,
    Intent.GENERATE_BALANCE_SHEET: handle_balance_sheet,
    Intent.DISPLAY_INVOICE: handle_display_invoice,
    Intent.GENERAL_INQUIRY: handle_general_inquiry,
    Intent.UPLOAD_DOCUMENT: handle_general_inquiry,
}


async def process_message(
    message: str,
    caller_id: str,
    conversation_id: Optional[str] = None,
    access_token: Optional[str] = None,
    *,
    db: Session,
    memory: Optional[ConversationMemoryStore] = None,
    accounting: Optional[AccountingClient] = None,
    settings: Optional[Settings] = None,
) -> ChatResponse:
    """Handle one chat message. Never raises; failures become error envelopes."""
    key = ConversationKey.of(caller_id, conversation_id)
    memory = memory or get_memory_store()

    try:
        result = await classify_intent(message, key, memory=memory)
        intent = result.intent
        logger.info("Dispatching %s for %s (source=%s)", intent.value, caller_id, result.source)

        merged = None
        if intent is not Intent.DISPLAY_INVOICE:
            pending = memory.get_pending(key) if intent in PENDING_INTENTS else None
            merged = merge_action_data(intent, extract_financial_data(message), result.entities, pending)

        ctx = TurnContext(
            message=message,
            key=key,
            merged=merged,
            access_token=access_token,
            db=db,
            memory=memory,
            accounting=accounting or AccountingClient(settings),
            settings=settings or get_settings(),
        )
        handler = HANDLERS[intent]
        if intent in PENDING_INTENTS:
            try:
                response = await handler(ctx)
            finally:
                # Cleared even when the handler asked for more info or failed.
                memory.clear_pending(key)
        else:
            response = await handler(ctx)
    except Exception:
        logger.exception("Chat message processing failed for %s", caller_id)
        return ChatResponse.failure(GENERIC_ERROR_MESSAGE)

    return response
