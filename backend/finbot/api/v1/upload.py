"""Document upload → invoice extraction, optional accounting auto-create."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile

from finbot.core.auth import CurrentUser, get_current_user
from finbot.core.config import get_settings
from finbot.core.dependencies import get_accounting_client
from finbot.schemas.upload import SupportedTypesResponse, UploadExtractResponse
from finbot.services.accounting import AccountingClient, InvoiceDraft, map_to_external_invoice
from finbot.services.ai.invoice_extract.service import (
    can_auto_create,
    extract_invoice_data,
    generate_suggestions,
)
from finbot.services.document_reader import get_supported_types, read_document
from finbot.services.errors import (
    AccountingError,
    DocumentTooLargeError,
    DocumentUnreadableError,
    InvoiceExtractionError,
    UnsupportedDocumentError,
)
from finbot.services.memory import ConversationKey, get_memory_store

logger = logging.getLogger(__name__)

router = APIRouter()

PREVIEW_CHARS = 500


def _preview(text: str) -> str:
    return text[:PREVIEW_CHARS] + ("..." if len(text) > PREVIEW_CHARS else "")


@router.post("/upload/extract", response_model=UploadExtractResponse)
async def upload_extract(
    document: UploadFile = File(...),
    conversation_id: Optional[str] = Form(None, alias="conversationId"),
    auto_create: bool = Form(False, alias="autoCreate"),
    current_user: CurrentUser = Depends(get_current_user),
    accounting: AccountingClient = Depends(get_accounting_client),
):
    settings = get_settings()
    # Read one byte past the limit so oversize uploads are detected without buffering them whole.
    data = await document.read(settings.upload_max_bytes + 1)
    key = ConversationKey.of(current_user.id, conversation_id)
    logger.info("Extracting data from %s for user %s", document.filename, current_user.id)

    try:
        text = read_document(data, document.content_type, document.filename)
        extraction = await extract_invoice_data(text, key)
    except DocumentTooLargeError as exc:
        raise HTTPException(413, str(exc)) from exc
    except UnsupportedDocumentError as exc:
        raise HTTPException(415, str(exc)) from exc
    except DocumentUnreadableError as exc:
        raise HTTPException(400, "Could not extract readable text from the document") from exc
    except InvoiceExtractionError as exc:
        raise HTTPException(502, f"Failed to extract data from document: {exc}") from exc

    get_memory_store().set_pending(key, extraction.to_entities())

    response = UploadExtractResponse(
        message="Data extracted successfully",
        extracted_data=extraction.to_api(),
        document_text=_preview(text),
        file_name=document.filename,
        file_size=len(data),
        suggestions=generate_suggestions(extraction),
    )

    if auto_create:
        if not can_auto_create(extraction):
            response.auto_create_error = "Not enough reliable data to create the invoice automatically"
        else:
            try:
                payload = map_to_external_invoice(InvoiceDraft.from_extraction(extraction), settings=settings)
                response.invoice = await accounting.create_invoice(payload, current_user.access_token)
                response.auto_created = True
                response.message = "Document processed and invoice created successfully"
            except AccountingError as exc:
                response.auto_create_error = f"Failed to auto-create invoice: {exc}"

    return response


@router.get("/upload/supported-types", response_model=SupportedTypesResponse)
def supported_types():
    max_mb = get_settings().upload_max_bytes // (1024 * 1024)
    return SupportedTypesResponse(supported_types=get_supported_types(), max_file_size=f"{max_mb}MB")
