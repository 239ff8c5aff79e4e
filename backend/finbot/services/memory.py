"""Per-conversation memory: a bounded turn log plus one pending-data slot."""

from __future__ import annotations

import time
from collections import deque
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from threading import Lock
from types import MappingProxyType
from typing import Any, Optional

from finbot.core.config import get_settings

DEFAULT_CONVERSATION_ID = "default"
_PRUNE_INTERVAL_SECONDS = 60


class TurnKind(str, Enum):
    INTENT_DETECTION = "intent_detection"
    CONVERSATION = "conversation"
    DOCUMENT_EXTRACTION = "document_extraction"
    PENDING_EXTRACTED_DATA = "pending_extracted_data"


@dataclass(frozen=True)
class ConversationKey:
    caller_id: str
    conversation_id: str = DEFAULT_CONVERSATION_ID

    @classmethod
    def of(cls, caller_id: str, conversation_id: Optional[str] = None) -> "ConversationKey":
        return cls(caller_id=caller_id, conversation_id=conversation_id or DEFAULT_CONVERSATION_ID)


@dataclass(frozen=True)
class ConversationTurn:
    kind: TurnKind
    payload: Mapping[str, Any]
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self) -> None:
        object.__setattr__(self, "payload", MappingProxyType(dict(self.payload)))

    @classmethod
    def intent_detection(cls, message: str, intent: str, confidence: float) -> "ConversationTurn":
        return cls(
            TurnKind.INTENT_DETECTION,
            {"message": message, "intent": intent, "confidence": confidence},
        )

    @classmethod
    def conversation(cls, user_message: str, bot_response: str) -> "ConversationTurn":
        return cls(TurnKind.CONVERSATION, {"user_message": user_message, "bot_response": bot_response})

    @classmethod
    def document_extraction(cls, summary: str, data: Mapping[str, Any] | None = None) -> "ConversationTurn":
        return cls(TurnKind.DOCUMENT_EXTRACTION, {"summary": summary, "data": dict(data or {})})

    def render(self) -> str | None:
        """Context line for this turn, or None when the kind is not rendered."""
        p = self.payload
        if self.kind is TurnKind.CONVERSATION:
            return f"User: {p.get('user_message', '')}\nBot: {p.get('bot_response', '')}"
        if self.kind is TurnKind.INTENT_DETECTION:
            return f'User intent: {p.get("intent")} for message: "{p.get("message", "")}"'
        if self.kind is TurnKind.DOCUMENT_EXTRACTION:
            return f"Document processed: {p.get('summary', '')}"
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.kind.value,
            "data": dict(self.payload),
            "timestamp": self.timestamp.isoformat(),
        }


class _Conversation:
    __slots__ = ("turns", "pending", "touched_at")

    def __init__(self, max_turns: int) -> None:
        self.turns: deque[ConversationTurn] = deque(maxlen=max_turns)
        self.pending: dict[str, Any] | None = None
        self.touched_at = time.monotonic()


class ConversationMemoryStore:
    """Process-wide conversation memory.

    The lock protects the key map and each deque during mutation; it does
    not serialise whole requests, so concurrent requests on one key see last
    write wins.
    """

    def __init__(
        self,
        *,
        max_turns: int = 20,
        context_turns: int = 5,
        idle_ttl_seconds: int = 0,
        prune_interval_seconds: int = _PRUNE_INTERVAL_SECONDS,
    ) -> None:
        if max_turns < 1:
            raise ValueError("max_turns must be >= 1")
        self._max_turns = max_turns
        self._context_turns = max(0, context_turns)
        self._idle_ttl_seconds = max(0, int(idle_ttl_seconds))
        self._prune_interval_seconds = max(1, int(prune_interval_seconds))
        self._conversations: dict[ConversationKey, _Conversation] = {}
        self._lock = Lock()
        self._last_prune_at = time.monotonic()

    @property
    def max_turns(self) -> int:
        return self._max_turns

    def _get(self, key: ConversationKey, *, create: bool) -> _Conversation | None:
        # Called under lock.
        now = time.monotonic()
        if self._idle_ttl_seconds and (now - self._last_prune_at) >= self._prune_interval_seconds:
            self._prune_idle(now)
            self._last_prune_at = now
        conv = self._conversations.get(key)
        if conv is None and create:
            conv = _Conversation(self._max_turns)
            self._conversations[key] = conv
        if conv is not None:
            conv.touched_at = now
        return conv

    def _prune_idle(self, now: float) -> None:
        cutoff = now - self._idle_ttl_seconds
        stale = [key for key, conv in self._conversations.items() if conv.touched_at <= cutoff]
        for key in stale:
            del self._conversations[key]

    def append(self, key: ConversationKey, turn: ConversationTurn) -> None:
        if turn.kind is TurnKind.PENDING_EXTRACTED_DATA:
            raise ValueError("pending data is stored with set_pending, not appended")
        with self._lock:
            self._get(key, create=True).turns.append(turn)

    def turns(self, key: ConversationKey) -> list[ConversationTurn]:
        with self._lock:
            conv = self._get(key, create=False)
            return list(conv.turns) if conv else []

    def context_view(self, key: ConversationKey) -> str:
        """Render the most recent turns as prompt context."""
        if self._context_turns == 0:
            return ""
        recent = self.turns(key)[-self._context_turns :]
        lines = [line for line in (turn.render() for turn in recent) if line]
        return "\n\n".join(lines)

    def set_pending(self, key: ConversationKey, data: Mapping[str, Any]) -> None:
        with self._lock:
            self._get(key, create=True).pending = dict(data)

    def get_pending(self, key: ConversationKey) -> dict[str, Any] | None:
        with self._lock:
            conv = self._get(key, create=False)
            if conv is None or conv.pending is None:
                return None
            return dict(conv.pending)

    def clear_pending(self, key: ConversationKey) -> None:
        with self._lock:
            conv = self._conversations.get(key)
            if conv is not None:
                conv.pending = None

    def clear(self, key: ConversationKey) -> None:
        with self._lock:
            self._conversations.pop(key, None)

    def keys(self) -> list[ConversationKey]:
        with self._lock:
            return list(self._conversations)

    def reset(self) -> None:
        with self._lock:
            self._conversations.clear()
            self._last_prune_at = time.monotonic()


_store: ConversationMemoryStore | None = None
_store_lock = Lock()


def get_memory_store() -> ConversationMemoryStore:
    global _store
    with _store_lock:
        if _store is None:
            settings = get_settings()
            _store = ConversationMemoryStore(
                max_turns=settings.memory_max_turns,
                context_turns=settings.memory_context_turns,
                idle_ttl_seconds=settings.memory_idle_ttl_seconds,
            )
        return _store


def reset_memory_store() -> None:
    """Drop the process-wide store so the next call rebuilds it from settings."""
    global _store
    with _store_lock:
        _store = None
