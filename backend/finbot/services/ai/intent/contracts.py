"""Intent scope contracts — Intent enum, IntentResult + validation."""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, field_validator

from finbot.services.extraction import format_amount


class Intent(str, Enum):
    CREATE_INVOICE = "CREATE_INVOICE"
    RECORD_TRANSACTION = "RECORD_TRANSACTION"
    GENERATE_BALANCE_SHEET = "GENERATE_BALANCE_SHEET"
    UPLOAD_DOCUMENT = "UPLOAD_DOCUMENT"
    DISPLAY_INVOICE = "DISPLAY_INVOICE"
    GENERAL_INQUIRY = "GENERAL_INQUIRY"


VALID_INTENTS = frozenset(i.value for i in Intent)

_NULL_LITERALS = frozenset({"", "null", "none"})


class IntentEntities(BaseModel):
    client: Optional[str] = None
    amount: Optional[str] = None
    description: Optional[str] = None
    date: Optional[str] = None

    @field_validator("client", "amount", "description", "date", mode="before")
    @classmethod
    def null_literals(cls, v):
        if v is None or isinstance(v, bool):
            return None
        if isinstance(v, (int, float)):
            return format_amount(Decimal(str(v)))
        if isinstance(v, str):
            stripped = v.strip()
            if stripped.lower() in _NULL_LITERALS:
                return None
            return stripped
        return str(v)

    def is_empty(self) -> bool:
        return not any((self.client, self.amount, self.description, self.date))


class IntentResult(BaseModel):
    """Structured output expected from intent classification."""

    intent: Intent
    confidence: float
    entities: IntentEntities
    reasoning: str = ""
    source: Literal["ai", "keywords"] = "ai"

    @field_validator("intent", mode="before")
    @classmethod
    def intent_must_be_known(cls, v):
        if isinstance(v, str):
            v = v.strip().upper()
        if v not in VALID_INTENTS:
            msg = f"Unknown intent {v!r}; valid: {sorted(VALID_INTENTS)}"
            raise ValueError(msg)
        return v

    @field_validator("confidence")
    @classmethod
    def confidence_range(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            msg = f"Confidence must be 0.0–1.0, got {v}"
            raise ValueError(msg)
        return v
