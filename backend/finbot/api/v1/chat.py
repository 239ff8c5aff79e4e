"""Chat endpoints — one conversational turn, history read and reset."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Path
from sqlalchemy.orm import Session

from finbot.core.auth import CurrentUser, get_current_user
from finbot.core.dependencies import get_accounting_client, get_db
from finbot.schemas.chat import ChatHistoryResponse, ChatMessageRequest, ChatResponse, HistoryTurnOut
from finbot.services.accounting import AccountingClient
from finbot.services.dispatcher import process_message
from finbot.services.memory import ConversationKey, get_memory_store

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/chat/message", response_model=ChatResponse, summary="Process one chat message")
async def chat_message(
    payload: ChatMessageRequest,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    accounting: AccountingClient = Depends(get_accounting_client),
):
    logger.info("Processing message from user %s (%d chars)", current_user.id, len(payload.message))
    return await process_message(
        payload.message,
        current_user.id,
        payload.conversation_id,
        current_user.access_token,
        db=db,
        accounting=accounting,
    )


@router.get("/chat/history/{conversation_id}", response_model=ChatHistoryResponse)
def chat_history(
    conversation_id: str = Path(..., min_length=1, max_length=128),
    current_user: CurrentUser = Depends(get_current_user),
):
    memory = get_memory_store()
    key = ConversationKey.of(current_user.id, conversation_id)
    turns = memory.turns(key)
    return ChatHistoryResponse(
        conversation_id=key.conversation_id,
        messages=[HistoryTurnOut(**turn.to_dict(), text=turn.render()) for turn in turns],
        has_pending_data=memory.get_pending(key) is not None,
    )


@router.delete("/chat/history/{conversation_id}", status_code=204)
def clear_chat_history(
    conversation_id: str = Path(..., min_length=1, max_length=128),
    current_user: CurrentUser = Depends(get_current_user),
):
    get_memory_store().clear(ConversationKey.of(current_user.id, conversation_id))
    logger.info("Cleared conversation %s for user %s", conversation_id, current_user.id)
