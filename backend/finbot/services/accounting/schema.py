"""External accounting invoice payload and the mapping from internal records.

The accounting API is strict about shape, so every field has a default and
money travels as fixed two-decimal strings.
"""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from finbot.core.config import Settings, get_settings
from finbot.services.errors import AccountingValidationError
from finbot.services.extraction import DEFAULT_DESCRIPTION, normalize_date

logger = logging.getLogger(__name__)

DEFAULT_CONTACT_ID = "b9794c5e-36be-4502-bb11-9f8cd2541c0a"
DEFAULT_BRANDING_THEME_ID = "34efa745-7238-4ead-b95e-1fe6c816adbe"
DEFAULT_INVOICE_URL = "https://example.com/invoice"
DEFAULT_LINE_DESCRIPTION = "Invoice item"

_MONEY_RE = re.compile(r"^-?\d+\.\d{2}$")
_CENT = Decimal("0.01")


def to_money(value: Any) -> str:
    """Format *value* as a fixed two-decimal string, half-up; junk becomes 0.00."""
    if value is None or isinstance(value, bool):
        return "0.00"
    try:
        amount = Decimal(str(value).replace(",", "").strip() or "0")
    except InvalidOperation:
        return "0.00"
    if not amount.is_finite():
        return "0.00"
    return str(amount.quantize(_CENT, rounding=ROUND_HALF_UP))


def to_external_date(value: Optional[str], fallback: date) -> str:
    iso = normalize_date(value) if value else None
    return f"{iso or fallback.isoformat()}T00:00:00"


class _ExternalModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class Tracking(_ExternalModel):
    tracking_category_id: str = Field(alias="TrackingCategoryID")
    name: str = Field(alias="Name")
    option: str = Field(alias="Option")


class Contact(_ExternalModel):
    contact_id: Optional[str] = Field(default=None, alias="ContactID")
    name: Optional[str] = Field(default=None, alias="Name")

    @model_validator(mode="after")
    def id_or_name(self) -> "Contact":
        if not (self.contact_id or self.name):
            raise ValueError("Either ContactID or Name must be provided")
        return self


class LineItem(_ExternalModel):
    item_code: str = Field(default="item-new", alias="ItemCode")
    description: str = Field(default=DEFAULT_LINE_DESCRIPTION, alias="Description")
    quantity: str = Field(default="1", alias="Quantity")
    unit_amount: str = Field(default="0.00", alias="UnitAmount")
    tax_type: str = Field(default="OUTPUT", alias="TaxType")
    tax_amount: str = Field(default="0.00", alias="TaxAmount")
    line_amount: str = Field(default="0.00", alias="LineAmount")
    account_code: str = Field(default="200", alias="AccountCode")
    tracking: list[Tracking] = Field(default_factory=list, alias="Tracking")

    @field_validator("unit_amount", "tax_amount", "line_amount")
    @classmethod
    def money_string(cls, v: str) -> str:
        if not _MONEY_RE.match(v):
            raise ValueError(f"money must be a 2-decimal string, got {v!r}")
        return v


class ExternalInvoicePayload(_ExternalModel):
    type: str = Field(default="ACCREC", alias="Type")
    contact: Contact = Field(default_factory=lambda: Contact(ContactID=DEFAULT_CONTACT_ID), alias="Contact")
    date_string: str = Field(alias="DateString")
    due_date_string: str = Field(alias="DueDateString")
    expected_payment_date: str = Field(alias="ExpectedPaymentDate")
    invoice_number: str = Field(alias="InvoiceNumber")
    reference: str = Field(default="", alias="Reference")
    branding_theme_id: str = Field(default=DEFAULT_BRANDING_THEME_ID, alias="BrandingThemeID")
    url: str = Field(default=DEFAULT_INVOICE_URL, alias="Url")
    currency_code: str = Field(default="USD", alias="CurrencyCode")
    status: str = Field(default="SUBMITTED", alias="Status")
    line_amount_types: str = Field(default="Inclusive", alias="LineAmountTypes")
    sub_total: str = Field(default="0.00", alias="SubTotal")
    total_tax: str = Field(default="0.00", alias="TotalTax")
    total: str = Field(default="0.00", alias="Total")
    line_items: list[LineItem] = Field(default_factory=lambda: [LineItem()], alias="LineItems", min_length=1)

    @field_validator("currency_code")
    @classmethod
    def three_letter_code(cls, v: str) -> str:
        if len(v) != 3 or not v.isalpha():
            raise ValueError(f"CurrencyCode must be 3 letters, got {v!r}")
        return v.upper()

    @field_validator("url")
    @classmethod
    def http_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("Url must be an http(s) URL")
        return v

    @field_validator("sub_total", "total_tax", "total")
    @classmethod
    def money_string(cls, v: str) -> str:
        if not _MONEY_RE.match(v):
            raise ValueError(f"money must be a 2-decimal string, got {v!r}")
        return v

    def to_api(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


@dataclass
class DraftLineItem:
    description: Optional[str] = None
    quantity: Optional[float] = None
    unit_amount: Optional[float] = None
    tax_amount: Optional[float] = None
    line_amount: Optional[float] = None
    item_code: Optional[str] = None


@dataclass
class InvoiceDraft:
    """Internal invoice record, from chat data or a document extraction."""

    client_name: Optional[str] = None
    contact_id: Optional[str] = None
    total: Optional[float] = None
    subtotal: Optional[float] = None
    tax: Optional[float] = None
    description: Optional[str] = None
    invoice_date: Optional[str] = None
    due_date: Optional[str] = None
    invoice_number: Optional[str] = None
    reference: Optional[str] = None
    currency: Optional[str] = None
    line_items: list[DraftLineItem] = field(default_factory=list)

    @classmethod
    def from_chat(cls, data: Mapping[str, Any]) -> "InvoiceDraft":
        return cls(
            client_name=data.get("client"),
            total=data.get("amount"),
            description=data.get("description"),
            invoice_date=data.get("date"),
            due_date=data.get("due_date"),
            invoice_number=data.get("invoice_number"),
            currency=data.get("currency"),
        )

    @classmethod
    def from_extraction(cls, extraction: Any) -> "InvoiceDraft":
        items: Iterable[Any] = getattr(extraction, "line_items", None) or []
        return cls(
            client_name=extraction.client_name,
            total=extraction.total_amount,
            subtotal=extraction.subtotal,
            tax=extraction.tax_amount,
            description=extraction.description,
            invoice_date=extraction.invoice_date,
            due_date=extraction.due_date,
            invoice_number=extraction.invoice_number,
            currency=extraction.currency,
            line_items=[
                DraftLineItem(
                    description=item.description,
                    quantity=item.quantity,
                    unit_amount=item.unit_amount,
                    tax_amount=item.tax_amount,
                    line_amount=item.line_amount,
                )
                for item in items
            ],
        )


def generate_invoice_number() -> str:
    return f"INV-{int(time.time() * 1000)}"


def map_to_external_invoice(
    draft: InvoiceDraft,
    *,
    settings: Optional[Settings] = None,
    today: Optional[date] = None,
) -> ExternalInvoicePayload:
    """Build a validated payload from *draft*.

    Raises ``AccountingValidationError`` when the result would not be
    structurally valid; nothing is sent in that case.
    """
    settings = settings or get_settings()
    today = today or date.today()

    total = Decimal(to_money(draft.total))
    tax = Decimal(to_money(draft.tax))
    subtotal = Decimal(to_money(draft.subtotal)) if draft.subtotal is not None else total - tax

    issue_date = to_external_date(draft.invoice_date, today)
    due_date = to_external_date(draft.due_date, date.fromisoformat(issue_date[:10]))
    description = draft.description or DEFAULT_DESCRIPTION

    if draft.line_items:
        line_items = [
            {
                "Description": item.description or description,
                "Quantity": to_quantity(item.quantity),
                "UnitAmount": to_money(item.unit_amount),
                "TaxAmount": to_money(item.tax_amount),
                "LineAmount": to_money(item.line_amount),
                "AccountCode": settings.accounting_account_code,
                **({"ItemCode": item.item_code} if item.item_code else {}),
            }
            for item in draft.line_items
        ]
    else:
        # Inclusive line amounts carry tax, so the single line holds the total.
        line_items = [
            {
                "Description": description,
                "Quantity": "1",
                "UnitAmount": to_money(total),
                "TaxAmount": to_money(tax),
                "LineAmount": to_money(total),
                "AccountCode": settings.accounting_account_code,
            }
        ]

    if draft.contact_id or draft.client_name:
        contact = {"ContactID": draft.contact_id, "Name": draft.client_name}
    else:
        contact = {"ContactID": settings.accounting_placeholder_contact_id}

    raw = {
        "Contact": contact,
        "DateString": issue_date,
        "DueDateString": due_date,
        "ExpectedPaymentDate": due_date,
        "InvoiceNumber": draft.invoice_number or generate_invoice_number(),
        "Reference": draft.reference or "",
        "BrandingThemeID": settings.accounting_branding_theme_id,
        "Url": settings.accounting_invoice_url,
        "CurrencyCode": (draft.currency or settings.default_currency).strip().upper(),
        "SubTotal": to_money(subtotal),
        "TotalTax": to_money(tax),
        "Total": to_money(total),
        "LineItems": line_items,
    }
    try:
        return ExternalInvoicePayload.model_validate(raw)
    except ValidationError as exc:
        logger.error("Invoice payload failed validation: %s", exc.errors(include_url=False))
        raise AccountingValidationError() from exc


def to_quantity(value: Any) -> str:
    if value is None or isinstance(value, bool):
        return "1"
    try:
        qty = Decimal(str(value))
    except InvalidOperation:
        return "1"
    if not qty.is_finite() or qty <= 0:
        return "1"
    return format(qty.normalize(), "f")
