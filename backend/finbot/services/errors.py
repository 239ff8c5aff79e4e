"""Exception hierarchy shared by the orchestration services."""

from __future__ import annotations


class FinbotError(Exception):
    """Base class for errors raised by finbot services."""


class AIServiceError(FinbotError):
    """The AI provider call failed or returned something unusable."""


class AIUnavailableError(AIServiceError):
    """The AI channel is flagged unavailable; no call was attempted."""


class ExtractionError(FinbotError):
    """Document extraction failed; surfaced to the caller as-is."""


class DocumentUnreadableError(ExtractionError):
    """Document text too short or empty to attempt extraction."""


class InvoiceExtractionError(ExtractionError):
    """The AI service did not produce a usable invoice object."""


class UnsupportedDocumentError(ExtractionError):
    """Upload content type is not one the document reader handles."""


class DocumentTooLargeError(ExtractionError):
    """Upload exceeds the configured size limit."""


class AccountingError(FinbotError):
    """Generic failure talking to the external accounting system.

    The message is safe to show to callers; the original detail is only
    logged.
    """

    def __init__(self, message: str = "Failed to communicate with the accounting system") -> None:
        super().__init__(message)


class AccountingValidationError(AccountingError):
    """Payload failed local structural validation and was never sent."""

    def __init__(self, message: str = "Invalid invoice data") -> None:
        super().__init__(message)


class BookkeepingError(FinbotError):
    """Local ledger write or read failed."""


class DuplicateInvoiceError(BookkeepingError):
    """The owner already has an invoice with this number."""
