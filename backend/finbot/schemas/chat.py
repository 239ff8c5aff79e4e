from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class ChatMessageRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str = Field(..., min_length=1, max_length=1000)
    conversation_id: Optional[str] = Field(default=None, alias="conversationId", max_length=128)

    @field_validator("message")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("message must not be blank")
        return v.strip()


class ChatResponse(BaseModel):
    """Envelope returned by every chat turn."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    message: str
    data: Optional[Any] = None
    success: bool = False
    error: bool = False
    requires_more_info: bool = False
    missing_fields: List[str] = Field(default_factory=list)
    intent: Optional[str] = None

    @classmethod
    def ok(cls, message: str, data: Any = None, *, intent: Optional[str] = None) -> "ChatResponse":
        return cls(message=message, data=data, success=True, intent=intent)

    @classmethod
    def failure(cls, message: str, *, intent: Optional[str] = None) -> "ChatResponse":
        return cls(message=message, error=True, intent=intent)

    @classmethod
    def needs_more_info(cls, message: str, missing: List[str], *, intent: Optional[str] = None) -> "ChatResponse":
        return cls(message=message, requires_more_info=True, missing_fields=missing, intent=intent)


class HistoryTurnOut(BaseModel):
    type: str
    data: dict
    timestamp: str
    text: Optional[str] = None


class ChatHistoryResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    conversation_id: str
    messages: List[HistoryTurnOut]
    has_pending_data: bool = False
