"""Thread types and models for the scratch pad store."""

from __future__ import annotations

from typing import Any, List, Optional

from pydantic import model_validator

from .models import CamelModel, ReasoningMeta
from .reasoning import normalize_reasoning_meta
from .types import HistoryMode, MessageStatus, Role


class ContextSettings(CamelModel):
    """Per-thread prompt context, overriding the global defaults."""

    history_mode: HistoryMode = "all"
    history_start: Optional[int] = None
    history_end: Optional[int] = None
    include_character_card: bool = True
    include_description: bool = True
    include_personality: bool = True
    include_scenario: bool = True
    include_examples: bool = True
    include_system_prompt: bool = False
    include_authors_note: bool = False
    connection_profile: Optional[str] = None


class ThreadMessage(CamelModel):
    """Represents a message within a thread."""

    id: str
    role: Role
    content: str = ""
    timestamp: str
    status: MessageStatus = "complete"
    chat_message_index: Optional[int] = None
    error: Optional[str] = None
    thinking: Optional[str] = None
    reasoning_meta: Optional[ReasoningMeta] = None

    # Alternate versions, assistant messages only
    swipes: Optional[List[str]] = None
    swipe_thinking: Optional[List[Optional[str]]] = None
    swipe_reasoning_meta: Optional[List[ReasoningMeta]] = None
    swipe_timestamps: Optional[List[str]] = None
    swipe_id: Optional[int] = None

    @model_validator(mode="before")
    @classmethod
    def _repair_reasoning(cls, data: Any) -> Any:
        """Normalize legacy or malformed reasoning records before validation."""
        if not isinstance(data, dict):
            return data
        data = dict(data)
        thinking = data.get("thinking")
        for key in ("reasoningMeta", "reasoning_meta"):
            if data.get(key) is not None:
                data[key] = normalize_reasoning_meta(data[key], thinking)
        for key in ("swipeReasoningMeta", "swipe_reasoning_meta"):
            metas = data.get(key)
            if not isinstance(metas, list):
                continue
            texts = data.get("swipeThinking") or data.get("swipe_thinking") or []
            data[key] = [
                normalize_reasoning_meta(meta, texts[i] if i < len(texts) else None)
                for i, meta in enumerate(metas)
            ]
        return data

    @property
    def has_swipes(self) -> bool:
        return self.swipes is not None


class Thread(CamelModel):
    """Represents a conversation thread."""

    id: str
    name: str
    created_at: str
    updated_at: str
    messages: List[ThreadMessage] = []
    context_settings: Optional[ContextSettings] = None


class BranchView(CamelModel):
    """A thread split into messages visible on the current chat branch and the rest."""

    thread: Thread
    visible: List[ThreadMessage]
    branched: List[ThreadMessage]
