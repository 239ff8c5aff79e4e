"""Field-by-field merge of AI entities, message extraction and pending data.

Precedence per field, highest first:

1. AI entity value (when not null)
2. value found in the message by the deterministic extractor
3. pending slot value, only for CREATE_INVOICE / RECORD_TRANSACTION and
   only when client or amount is still missing after 1 and 2
4. extractor constant default (``Professional services``)
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Literal, Optional

from finbot.services.ai.intent.contracts import Intent, IntentEntities
from finbot.services.extraction import ExtractedFinancialData

logger = logging.getLogger(__name__)

Source = Literal["ai", "message", "pending", "default"]

ENTITY_FIELDS = ("client", "amount", "description", "date")
EXTRA_FIELDS = ("email", "invoice_number", "due_date", "payment_terms")
PENDING_INTENTS = frozenset({Intent.CREATE_INVOICE, Intent.RECORD_TRANSACTION})


@dataclass
class MergedActionData:
    client: Optional[str] = None
    amount: Optional[str] = None
    description: Optional[str] = None
    date: Optional[str] = None
    email: Optional[str] = None
    invoice_number: Optional[str] = None
    due_date: Optional[str] = None
    payment_terms: Optional[str] = None
    sources: dict[str, Source] = field(default_factory=dict)
    used_pending: bool = False

    def as_dict(self) -> dict[str, Optional[str]]:
        return {name: getattr(self, name) for name in ENTITY_FIELDS + EXTRA_FIELDS}


def merge_action_data(
    intent: Intent,
    extracted: ExtractedFinancialData,
    ai_entities: Optional[IntentEntities],
    pending: Optional[Mapping[str, Any]],
) -> MergedActionData:
    merged = MergedActionData()
    ai_values = ai_entities.model_dump() if ai_entities else {}

    for name in ENTITY_FIELDS + EXTRA_FIELDS:
        ai_value = ai_values.get(name)
        if ai_value is not None:
            setattr(merged, name, ai_value)
            merged.sources[name] = "ai"
            continue
        if name in extracted.defaulted:
            continue
        value = getattr(extracted, name)
        if value is not None:
            setattr(merged, name, value)
            merged.sources[name] = "message"

    if intent in PENDING_INTENTS and pending and (merged.client is None or merged.amount is None):
        for name in ENTITY_FIELDS + EXTRA_FIELDS:
            if getattr(merged, name) is None and pending.get(name) is not None:
                setattr(merged, name, str(pending[name]))
                merged.sources[name] = "pending"
                merged.used_pending = True

    for name in extracted.defaulted:
        if getattr(merged, name, None) is None:
            setattr(merged, name, getattr(extracted, name))
            merged.sources[name] = "default"

    logger.debug("Merged action data %s (sources %s)", merged.as_dict(), merged.sources)
    return merged
