"""Invoice extraction contracts — InvoiceExtraction and the cleaning rules.

The model answer is untrusted; validators coerce it instead of rejecting
it: money to float or null, dates to ISO or null, confidence clamped.
"""

from __future__ import annotations

import math
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from finbot.core.config import get_settings
from finbot.services.extraction import format_amount, normalize_date

_NULL_LITERALS = frozenset({"", "null", "none", "n/a"})


def _clean_text(v: Any) -> Optional[str]:
    if v is None or isinstance(v, bool):
        return None
    text = str(v).strip()
    return None if text.lower() in _NULL_LITERALS else text


def _clean_money(v: Any) -> Optional[float]:
    if v is None or isinstance(v, bool):
        return None
    if isinstance(v, (int, float)):
        number = float(v)
    else:
        text = str(v).strip().replace(",", "")
        for symbol in ("$", "€", "£", "₹"):
            text = text.replace(symbol, "")
        try:
            number = float(text)
        except ValueError:
            return None
    return number if math.isfinite(number) else None


class _Camel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ExtractedLineItem(_Camel):
    description: Optional[str] = None
    quantity: Optional[float] = None
    unit_amount: Optional[float] = None
    tax_amount: Optional[float] = None
    line_amount: Optional[float] = None

    @field_validator("description", mode="before")
    @classmethod
    def text(cls, v):
        return _clean_text(v)

    @field_validator("quantity", "unit_amount", "tax_amount", "line_amount", mode="before")
    @classmethod
    def money(cls, v):
        return _clean_money(v)


class InvoiceExtraction(_Camel):
    invoice_number: Optional[str] = None
    invoice_date: Optional[str] = None
    due_date: Optional[str] = None
    client_name: Optional[str] = None
    client_address: Optional[str] = None
    total_amount: Optional[float] = None
    subtotal: Optional[float] = None
    tax_amount: Optional[float] = None
    description: Optional[str] = None
    vendor_name: Optional[str] = None
    payment_terms: Optional[str] = None
    currency: str = Field(default_factory=lambda: get_settings().default_currency)
    confidence: float = 0.0
    extracted_fields: list[str] = Field(default_factory=list)
    line_items: list[ExtractedLineItem] = Field(default_factory=list)

    @field_validator(
        "invoice_number",
        "client_name",
        "client_address",
        "description",
        "vendor_name",
        "payment_terms",
        mode="before",
    )
    @classmethod
    def text_fields(cls, v):
        return _clean_text(v)

    @field_validator("total_amount", "subtotal", "tax_amount", mode="before")
    @classmethod
    def money_fields(cls, v):
        return _clean_money(v)

    @field_validator("invoice_date", "due_date", mode="before")
    @classmethod
    def date_fields(cls, v):
        text = _clean_text(v)
        return normalize_date(text) if text else None

    @field_validator("currency", mode="before")
    @classmethod
    def currency_code(cls, v):
        text = _clean_text(v)
        if not text or len(text) != 3 or not text.isalpha():
            return get_settings().default_currency
        return text.upper()

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp_confidence(cls, v):
        number = _clean_money(v)
        if number is None:
            return 0.0
        return min(1.0, max(0.0, number))

    @field_validator("extracted_fields", mode="before")
    @classmethod
    def fields_list(cls, v):
        if not isinstance(v, list):
            return []
        return [str(item) for item in v if item is not None]

    @field_validator("line_items", mode="before")
    @classmethod
    def items_list(cls, v):
        if not isinstance(v, list):
            return []
        return [item for item in v if isinstance(item, dict)]

    def to_api(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)

    def to_entities(self) -> dict[str, Optional[str]]:
        """Entity-shaped copy for the conversation pending slot."""
        amount = None
        if self.total_amount is not None:
            amount = format_amount(Decimal(str(self.total_amount)))
        return {
            "client": self.client_name,
            "amount": amount,
            "description": self.description,
            "date": self.invoice_date,
            "email": None,
            "invoice_number": self.invoice_number,
            "due_date": self.due_date,
            "payment_terms": self.payment_terms,
        }

    def summary(self) -> str:
        parts = [f"invoice {self.invoice_number or '(no number)'}"]
        if self.client_name:
            parts.append(f"for {self.client_name}")
        if self.total_amount is not None:
            parts.append(f"total {self.total_amount:.2f} {self.currency}")
        return " ".join(parts)
