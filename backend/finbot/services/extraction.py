"""Deterministic financial entity extraction from a chat message.

Every field is resolved by an ordered list of strategy functions. Each
strategy returns a value or ``None``; the first non-empty value wins. No I/O.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_DESCRIPTION = "Professional services"

_ISO_DATE_RE = re.compile(r"\b(\d{4})-(\d{1,2})-(\d{1,2})\b")
_US_DATE_RE = re.compile(r"\b(\d{1,2})[/-](\d{1,2})[/-](\d{4}|\d{2})\b")
_AMOUNT_RE = re.compile(r"\$?(\d{1,3}(?:,\d{3})+(?:\.\d+)?|\d+(?:\.\d+)?)")
_EMAIL_RE = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")
_INVOICE_NUMBER_RE = re.compile(r"\b(?:invoice|inv)[\s#:-]*(\d+)\b", re.IGNORECASE)
_CLIENT_RE = re.compile(
    r"\b(?i:for|to|from|client|customer)\s+([A-Z][\w&.'-]*(?:\s+[A-Z][\w&.'-]*)*)"
)
_DUE_DATE_RE = re.compile(
    r"\bdue\s+(?:on\s+)?(\d{4}-\d{1,2}-\d{1,2}|\d{1,2}[/-]\d{1,2}[/-]\d{2,4})",
    re.IGNORECASE,
)
_PAYMENT_TERMS_RE = re.compile(r"\bnet\s+(\d+)(?:\s+days?)?\b", re.IGNORECASE)

_COMMAND_PHRASES = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"create\s+(?:an?\s+)?invoice",
        r"send\s+(?:an?\s+)?invoice",
        r"make\s+(?:an?\s+)?invoice",
        r"record\s+(?:an?\s+)?transaction",
        r"i\s+spent",
        r"i\s+paid",
        r"i\s+received",
        r"expense\s+for",
        r"transaction\s+for",
    )
]
_FILLER_RE = re.compile(r"\b(?:for|to|from|on|of|the|a|an|and|or)\b", re.IGNORECASE)

DESCRIPTION_CATEGORIES: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"\b(?:consulting|consultation)\b", re.IGNORECASE), "Consulting services"),
    (re.compile(r"\b(?:development|programming|coding)\b", re.IGNORECASE), "Development services"),
    (re.compile(r"\b(?:design|designing)\b", re.IGNORECASE), "Design services"),
    (re.compile(r"\b(?:marketing|advertising)\b", re.IGNORECASE), "Marketing services"),
    (re.compile(r"\b(?:legal|attorney|lawyer)\b", re.IGNORECASE), "Legal services"),
    (re.compile(r"\b(?:accounting|bookkeeping)\b", re.IGNORECASE), "Accounting services"),
    (re.compile(r"\b(?:maintenance|repair)\b", re.IGNORECASE), "Maintenance services"),
    (re.compile(r"\b(?:training|education)\b", re.IGNORECASE), "Training services"),
    (re.compile(r"\b(?:writing|content)\b", re.IGNORECASE), "Writing services"),
    (re.compile(r"\b(?:office\s+supplies|supplies)\b", re.IGNORECASE), "Office supplies"),
    (re.compile(r"\b(?:travel|transportation)\b", re.IGNORECASE), "Travel expenses"),
    (re.compile(r"\b(?:software|subscription)\b", re.IGNORECASE), "Software/Subscription"),
]


@dataclass(frozen=True)
class ExtractedFinancialData:
    client: Optional[str] = None
    amount: Optional[str] = None
    description: Optional[str] = None
    date: Optional[str] = None
    email: Optional[str] = None
    invoice_number: Optional[str] = None
    due_date: Optional[str] = None
    payment_terms: Optional[str] = None
    # Fields holding a constant default rather than something found in the message.
    defaulted: frozenset[str] = field(default_factory=frozenset)

    def entities(self) -> dict[str, Optional[str]]:
        return {
            "client": self.client,
            "amount": self.amount,
            "description": self.description,
            "date": self.date,
        }


Strategy = Callable[[str], Optional[str]]


def first_match(strategies: Sequence[Strategy], message: str) -> Optional[str]:
    for strategy in strategies:
        value = strategy(message)
        if value:
            return value
    return None


# --- dates ---

def _to_iso(year: int, month: int, day: int) -> Optional[str]:
    try:
        return date(year, month, day).isoformat()
    except ValueError:
        return None


def normalize_date(value: str | None) -> Optional[str]:
    """Normalise ``YYYY-MM-DD``, ``MM/DD/YYYY`` or ``MM-DD-YY`` to ISO.

    Two-digit years are promoted to 20xx. Anything unparsable, including
    impossible calendar dates, gives ``None``.
    """
    if not value:
        return None
    text = value.strip()
    m = _ISO_DATE_RE.fullmatch(text)
    if m:
        return _to_iso(int(m.group(1)), int(m.group(2)), int(m.group(3)))
    m = _US_DATE_RE.fullmatch(text)
    if m:
        year = int(m.group(3))
        if year < 100:
            year += 2000
        return _to_iso(year, int(m.group(1)), int(m.group(2)))
    return None


def _iso_date(message: str) -> Optional[str]:
    for m in _ISO_DATE_RE.finditer(message):
        normalized = normalize_date(m.group(0))
        if normalized:
            return normalized
    return None


def _us_date(message: str) -> Optional[str]:
    for m in _US_DATE_RE.finditer(message):
        normalized = normalize_date(m.group(0))
        if normalized:
            return normalized
    return None


DATE_STRATEGIES: list[Strategy] = [_iso_date, _us_date]


# --- amount ---

def _mask(message: str, *patterns: re.Pattern[str]) -> str:
    for pattern in patterns:
        message = pattern.sub(lambda m: " " * len(m.group(0)), message)
    return message


def format_amount(value: Decimal) -> str:
    """Render a decimal without exponent or trailing zeros: 1500, 99.5."""
    normalized = value.normalize()
    return format(normalized, "f")


def parse_amount(value: object) -> Optional[Decimal]:
    if value is None or isinstance(value, bool):
        return None
    text = str(value).strip().replace(",", "").lstrip("$")
    if not text:
        return None
    try:
        amount = Decimal(text)
    except InvalidOperation:
        return None
    if not amount.is_finite():
        return None
    return amount


def _largest_amount(message: str) -> Optional[str]:
    masked = _mask(
        message,
        _EMAIL_RE,
        _ISO_DATE_RE,
        _US_DATE_RE,
        _INVOICE_NUMBER_RE,
        _PAYMENT_TERMS_RE,
    )
    values = [parse_amount(m.group(1)) for m in _AMOUNT_RE.finditer(masked)]
    values = [v for v in values if v is not None]
    if not values:
        return None
    return format_amount(max(values))


AMOUNT_STRATEGIES: list[Strategy] = [_largest_amount]


# --- client ---

def _clean_client(candidate: str) -> Optional[str]:
    name = re.sub(r"\s+", " ", candidate).strip(" .,'-")
    if 2 <= len(name) <= 50 and re.search(r"[A-Za-z]", name):
        return name
    return None


def _anchored_client(message: str) -> Optional[str]:
    for m in _CLIENT_RE.finditer(message):
        name = _clean_client(m.group(1))
        if name:
            return name
    return None


CLIENT_STRATEGIES: list[Strategy] = [_anchored_client]


# --- other fields ---

def _email(message: str) -> Optional[str]:
    m = _EMAIL_RE.search(message)
    return m.group(0) if m else None


def _invoice_number(message: str) -> Optional[str]:
    m = _INVOICE_NUMBER_RE.search(message)
    return m.group(1) if m else None


def _due_date(message: str) -> Optional[str]:
    m = _DUE_DATE_RE.search(message)
    return normalize_date(m.group(1)) if m else None


def _payment_terms(message: str) -> Optional[str]:
    m = _PAYMENT_TERMS_RE.search(message)
    return f"Net {int(m.group(1))} days" if m else None


# --- description ---

def _category_description(message: str) -> Optional[str]:
    for pattern, category in DESCRIPTION_CATEGORIES:
        if pattern.search(message):
            return category
    return None


def cleaned_description(message: str, client: Optional[str], amount_tokens: Sequence[str]) -> Optional[str]:
    # Reference fields are extracted separately and never part of the description.
    text = _mask(message, _EMAIL_RE, _INVOICE_NUMBER_RE, _PAYMENT_TERMS_RE)
    for pattern in _COMMAND_PHRASES:
        text = pattern.sub(" ", text)
    if client:
        text = re.sub(rf"\b{re.escape(client)}\b", " ", text, flags=re.IGNORECASE)
    for token in amount_tokens:
        text = text.replace(token, " ")
    text = _FILLER_RE.sub(" ", text)
    text = re.sub(r"\s+", " ", text).strip(" .,;:!?-")
    if 3 <= len(text) <= 100:
        return text[0].upper() + text[1:].lower()
    return None


def _amount_tokens(message: str) -> list[str]:
    masked = _mask(message, _EMAIL_RE, _ISO_DATE_RE, _US_DATE_RE, _INVOICE_NUMBER_RE, _PAYMENT_TERMS_RE)
    return [message[m.start() : m.end()] for m in _AMOUNT_RE.finditer(masked)]


def extract_financial_data(message: str) -> ExtractedFinancialData:
    """Best-effort extraction of entity fields from *message*."""
    message = message or ""
    client = first_match(CLIENT_STRATEGIES, message)
    amount = first_match(AMOUNT_STRATEGIES, message)

    defaulted: set[str] = set()
    description = _category_description(message) or cleaned_description(
        message, client, _amount_tokens(message)
    )
    if not description:
        description = DEFAULT_DESCRIPTION
        defaulted.add("description")

    data = ExtractedFinancialData(
        client=client,
        amount=amount,
        description=description,
        date=first_match(DATE_STRATEGIES, message),
        email=_email(message),
        invoice_number=_invoice_number(message),
        due_date=_due_date(message),
        payment_terms=_payment_terms(message),
        defaulted=frozenset(defaulted),
    )
    logger.debug("Extracted financial data: %s", data)
    return data
