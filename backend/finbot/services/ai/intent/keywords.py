"""Keyword intent classifier used when the AI channel is down or misbehaves."""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass

from .contracts import Intent, IntentEntities, IntentResult


def _words(message: str) -> set[str]:
    return set(re.findall(r"[a-z]+", message.lower()))


@dataclass(frozen=True)
class KeywordRule:
    intent: Intent
    confidence: float
    label: str
    matches: Callable[[set[str]], bool]


# Checked in order; first match wins.
KEYWORD_RULES: tuple[KeywordRule, ...] = (
    KeywordRule(
        Intent.CREATE_INVOICE,
        0.8,
        "invoice creation",
        lambda w: bool(w & {"invoice", "bill"}) and bool(w & {"create", "make", "new", "send", "generate"}),
    ),
    KeywordRule(
        Intent.RECORD_TRANSACTION,
        0.8,
        "transaction",
        lambda w: bool(w & {"transaction", "expense", "spent"}),
    ),
    KeywordRule(
        Intent.GENERATE_BALANCE_SHEET,
        0.8,
        "balance sheet",
        lambda w: bool(w & {"balance", "sheet", "summary", "report"}),
    ),
    KeywordRule(
        Intent.DISPLAY_INVOICE,
        0.8,
        "display invoice",
        lambda w: "invoice" in w and bool(w & {"show", "display", "get", "fetch"}),
    ),
)


def classify_by_keywords(message: str) -> IntentResult:
    words = _words(message or "")
    for rule in KEYWORD_RULES:
        if rule.matches(words):
            return IntentResult(
                intent=rule.intent,
                confidence=rule.confidence,
                entities=IntentEntities(),
                reasoning=f"Fallback: Detected {rule.label} keywords",
                source="keywords",
            )
    return IntentResult(
        intent=Intent.GENERAL_INQUIRY,
        confidence=0.7,
        entities=IntentEntities(),
        reasoning="Fallback: Default to general inquiry",
        source="keywords",
    )
