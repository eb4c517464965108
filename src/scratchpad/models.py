"""Reasoning, streaming and generation result models."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from .types import ReasoningSource, ReasoningState


class CamelModel(BaseModel):
    """Base model persisted with camelCase keys, populated from either casing."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ReasoningMeta(CamelModel):
    """Canonical reasoning metadata stored on assistant messages."""

    state: ReasoningState = "none"
    source: ReasoningSource = "result"
    duration_ms: Optional[float] = None
    signature: Optional[str] = None


class ReasoningCandidate(ReasoningMeta):
    """Reasoning metadata plus the reasoning text itself."""

    text: str = ""

    def meta(self) -> ReasoningMeta:
        return ReasoningMeta(
            state=self.state,
            source=self.source,
            duration_ms=self.duration_ms,
            signature=self.signature,
        )


class TagParseResult(BaseModel):
    thinking: Optional[str] = None
    cleaned: str = ""
    candidate: ReasoningCandidate


class StreamToken(BaseModel):
    """One incremental delta decoded from a completion stream."""

    text: str = ""
    reasoning: str = ""


class GenerationResult(BaseModel):
    """Outcome of a generate/retry call. Never raised, always returned."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    success: bool
    response: Optional[str] = None
    thinking: Optional[str] = None
    reasoning: Optional[ReasoningCandidate] = None
    cancelled: bool = False
    error: Optional[str] = None
    context: Optional[Any] = None


class TitleResult(BaseModel):
    success: bool
    title: Optional[str] = None
    error: Optional[str] = None
