"""Reasoning normalization.

Providers report model "thinking" in three independent ways: streamed deltas,
fields on the final result object, and inline ``<think>`` markup in the answer
text. The helpers here reconcile those signals into a single
:class:`~scratchpad.models.ReasoningCandidate`. Everything in this module is
pure: no I/O and no shared state.
"""

from __future__ import annotations

import math
import re
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from .models import ReasoningCandidate, ReasoningMeta, TagParseResult
from .types import ReasoningSource, ReasoningState
from .utils import trim_string

REASONING_SOURCES: Tuple[str, ...] = ("stream", "result", "tag_parse", "legacy")

MERGE_SEPARATOR = "\n\n---\n\n"

THINKING_TAG_RE = re.compile(r"<think(?:ing)?>(.*?)</think(?:ing)?>", re.IGNORECASE | re.DOTALL)

_REASONING_BLOCK_TYPES = {"thinking", "reasoning", "reasoning.text", "thought"}
_TOOL_ID_RE = re.compile(r"^tool_", re.IGNORECASE)

CandidateLike = Union[ReasoningCandidate, Mapping[str, Any], None]


def parse_state(value: Any) -> Optional[ReasoningState]:
    """Parse a reasoning state, accepting the ``done``/``thinking`` aliases for visible."""
    if not isinstance(value, str):
        return None
    normalized = value.strip().lower()
    if normalized == "hidden":
        return "hidden"
    if normalized in ("visible", "done", "thinking"):
        return "visible"
    if normalized == "none":
        return "none"
    return None


def normalize_duration(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number) or number < 0:
        return None
    return number


def normalize_signature(*candidates: Any) -> Optional[str]:
    for candidate in candidates:
        value = trim_string(candidate)
        if value:
            return value
    return None


def _is_source(value: Any) -> bool:
    return isinstance(value, str) and value in REASONING_SOURCES


def text_content(value: Any) -> str:
    """Flatten the assorted shapes providers use for a piece of text."""
    if not value:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        return "".join(filter(None, (text_content(item) for item in value)))
    if isinstance(value, Mapping):
        for key in ("text", "content", "output_text", "summary"):
            if isinstance(value.get(key), str):
                return value[key]
    return ""


def dedupe_texts(texts: Iterable[Any]) -> List[str]:
    """Trim, drop empties and keep the first occurrence of each text."""
    seen = set()
    out: List[str] = []
    for text in texts:
        value = trim_string(text)
        if not value or value in seen:
            continue
        seen.add(value)
        out.append(value)
    return out


def _dig(obj: Any, *path: Union[str, int]) -> Any:
    for key in path:
        if isinstance(key, int):
            if not isinstance(obj, list) or len(obj) <= key:
                return None
            obj = obj[key]
        else:
            if not isinstance(obj, Mapping):
                return None
            obj = obj.get(key)
    return obj


def create_reasoning_meta(
    state: Any = "none",
    source: Any = "result",
    duration_ms: Any = None,
    signature: Any = None,
) -> ReasoningMeta:
    return ReasoningMeta(
        state=parse_state(state) or "none",
        source=source if _is_source(source) else "result",
        duration_ms=normalize_duration(duration_ms),
        signature=normalize_signature(signature),
    )


def _candidate(text: str = "", **meta: Any) -> ReasoningCandidate:
    return ReasoningCandidate(text=text, **create_reasoning_meta(**meta).model_dump())


def create_legacy_reasoning_meta(thinking: Optional[str] = None) -> ReasoningMeta:
    return create_reasoning_meta(
        state="visible" if trim_string(thinking) else "none",
        source="legacy",
    )


def normalize_reasoning_meta(meta: Any, fallback_thinking: Optional[str] = None) -> ReasoningMeta:
    """Repair a possibly malformed or legacy metadata record.

    ``hidden`` means "no text available", so when fallback thinking text is
    present a hidden state is surfaced as visible instead.
    """
    if isinstance(meta, ReasoningMeta):
        meta = meta.model_dump(by_alias=True)
    if not isinstance(meta, Mapping):
        return create_legacy_reasoning_meta(fallback_thinking)

    has_thinking = bool(trim_string(fallback_thinking))
    parsed = parse_state(meta.get("state"))
    state = parsed or ("visible" if has_thinking else "none")
    if has_thinking and parsed == "hidden":
        state = "visible"

    source = meta.get("source")
    if not _is_source(source):
        source = "legacy" if has_thinking else "result"

    return create_reasoning_meta(
        state=state,
        source=source,
        duration_ms=meta.get("durationMs", meta.get("duration_ms")),
        signature=meta.get("signature"),
    )


def parse_inline_tags(text: Optional[str]) -> TagParseResult:
    """Pull ``<think>``/``<thinking>`` spans out of a response."""
    source = text if isinstance(text, str) else ""
    if not source:
        return TagParseResult(thinking=None, cleaned="", candidate=_candidate(source="tag_parse"))

    # Removing a span can splice a new tag pair together, so repeat until none remain.
    spans: List[str] = []
    cleaned = source
    while True:
        matches = list(THINKING_TAG_RE.finditer(cleaned))
        if not matches:
            break
        spans.extend(m.group(1).strip() for m in matches)
        cleaned = THINKING_TAG_RE.sub("", cleaned)

    if not spans:
        return TagParseResult(thinking=None, cleaned=source, candidate=_candidate(source="tag_parse"))

    thinking = "\n\n".join(filter(None, spans)) or None
    cleaned = cleaned.strip()
    return TagParseResult(
        thinking=thinking,
        cleaned=cleaned,
        candidate=_candidate(
            thinking or "",
            state="visible" if thinking else "none",
            source="tag_parse",
        ),
    )


def _content_blocks_reasoning(blocks: Any) -> str:
    if not isinstance(blocks, list):
        return ""

    parts: List[str] = []
    for block in blocks:
        if not isinstance(block, Mapping):
            continue
        block_type = block.get("type").lower() if isinstance(block.get("type"), str) else ""
        nested = block.get("thinking")
        if not (
            block_type in _REASONING_BLOCK_TYPES
            or block.get("thought") is True
            or isinstance(nested, list)
        ):
            continue

        text = (
            text_content(nested)
            or text_content(block.get("reasoning"))
            or text_content(block.get("text"))
            or text_content(block.get("summary"))
        )
        if not text and isinstance(nested, list):
            text = "\n\n".join(
                filter(None, (text_content(_item_text(part)) for part in nested))
            )
        value = text.strip()
        if value:
            parts.append(value)

    return "\n\n".join(dedupe_texts(parts)).strip()


def _item_text(item: Any) -> Any:
    if isinstance(item, Mapping) and item.get("text") is not None:
        return item["text"]
    return item


def _reasoning_details(details: Any) -> Tuple[str, Optional[str]]:
    if not isinstance(details, list):
        return "", None

    parts: List[str] = []
    signature: Optional[str] = None
    for item in details:
        if not isinstance(item, Mapping):
            continue
        if item.get("type") == "reasoning.encrypted":
            item_id = item.get("id")
            belongs_to_tool = isinstance(item_id, str) and bool(_TOOL_ID_RE.match(item_id))
            if signature is None and not belongs_to_tool:
                signature = normalize_signature(item.get("data"))
            continue
        text = (
            trim_string(item.get("text"))
            or trim_string(item.get("summary"))
            or trim_string(text_content(item.get("reasoning")))
        )
        if text:
            parts.append(text)

    return "\n\n".join(dedupe_texts(parts)).strip(), signature


def _gemini_parts_reasoning(parts: Any) -> str:
    if not isinstance(parts, list):
        return ""
    texts = [
        text_content(part.get("text"))
        for part in parts
        if isinstance(part, Mapping) and part.get("thought")
    ]
    return "\n\n".join(dedupe_texts(texts)).strip()


def _mistral_content_reasoning(content: Any) -> str:
    if not isinstance(content, list):
        return ""
    texts = []
    for part in content:
        if not isinstance(part, Mapping) or not isinstance(part.get("thinking"), list):
            continue
        value = "\n\n".join(
            filter(None, (text_content(_item_text(item)) for item in part["thinking"]))
        ).strip()
        if value:
            texts.append(value)
    return "\n\n".join(dedupe_texts(texts)).strip()


def _result_signature(result: Mapping[str, Any], details_signature: Optional[str]) -> Optional[str]:
    direct = normalize_signature(
        result.get("signature"),
        result.get("reasoning_signature"),
        _dig(result, "extra", "reasoning_signature"),
        _dig(result, "choices", 0, "message", "reasoning_signature"),
        _dig(result, "choices", 0, "delta", "reasoning_signature"),
    )
    if direct:
        return direct
    if details_signature:
        return details_signature

    parts = _dig(result, "responseContent", "parts")
    if isinstance(parts, list):
        for part in parts:
            if not isinstance(part, Mapping):
                continue
            signature = normalize_signature(part.get("thoughtSignature"))
            if signature and isinstance(part.get("text"), str):
                return signature
    return None


def extract_from_result(result: Any) -> ReasoningCandidate:
    """Probe a final provider result for reasoning, in fixed priority order."""
    if not isinstance(result, Mapping):
        return _candidate(source="result")

    choice = ("choices", 0)
    probes: List[Any] = [
        _dig(result, *choice, "message", "reasoning_content"),
        _dig(result, *choice, "delta", "reasoning_content"),
        _dig(result, *choice, "reasoning"),
        _dig(result, *choice, "message", "reasoning"),
        _dig(result, *choice, "delta", "reasoning"),
        result.get("thinking"),
        result.get("reasoning"),
        result.get("extended_thinking"),
        _dig(result, "extra", "thinking"),
        _dig(result, "extra", "reasoning"),
        _content_blocks_reasoning(result.get("content")),
        _content_blocks_reasoning(_dig(result, *choice, "message", "content")),
        _content_blocks_reasoning(_dig(result, *choice, "delta", "content")),
        _content_blocks_reasoning(_dig(result, "message", "content")),
        _gemini_parts_reasoning(_dig(result, "responseContent", "parts")),
    ]

    content = result.get("content")
    if isinstance(content, list):
        claude = next(
            (p for p in content if isinstance(p, Mapping) and p.get("type") == "thinking"),
            None,
        )
        probes.append(claude.get("thinking") if claude else None)

    probes.append(_mistral_content_reasoning(_dig(result, *choice, "message", "content")))

    details_signature: Optional[str] = None
    for details in (
        result.get("reasoning_details"),
        _dig(result, "extra", "reasoning_details"),
        _dig(result, *choice, "message", "reasoning_details"),
        _dig(result, *choice, "delta", "reasoning_details"),
    ):
        text, signature = _reasoning_details(details)
        probes.append(text)
        if details_signature is None and signature:
            details_signature = signature

    texts = dedupe_texts(text_content(probe) for probe in probes)
    text = texts[0] if texts else ""
    return _candidate(
        text,
        state="visible" if text else "none",
        source="result",
        signature=_result_signature(result, details_signature),
    )


def normalize_reasoning_event(
    payload: Any,
    duration: Any = None,
    state: Any = None,
) -> ReasoningCandidate:
    """Normalize a host "reasoning streamed" event into a stream candidate."""
    mapping = payload if isinstance(payload, Mapping) else {}
    text = trim_string(
        text_content(mapping.get("reasoning"))
        or text_content(mapping.get("text"))
        or text_content(payload)
    )
    duration_ms = normalize_duration(
        mapping.get("durationMs", mapping.get("duration", duration))
    )
    parsed = parse_state(mapping.get("state")) or parse_state(state)
    resolved = parsed or ("visible" if text else "none")
    if text and resolved == "hidden":
        resolved = "visible"
    return _candidate(
        text,
        state=resolved,
        source="stream",
        duration_ms=duration_ms,
        signature=normalize_signature(
            mapping.get("signature"),
            mapping.get("reasoning_signature"),
            mapping.get("reasoningSignature"),
        ),
    )


def build_stream_reasoning(reasoning_text: str) -> Optional[ReasoningCandidate]:
    """Wrap live-accumulated reasoning as a stream candidate."""
    if not reasoning_text:
        return None
    return _candidate(reasoning_text, state="visible", source="stream")


def _normalize_candidate(candidate: CandidateLike, fallback_source: ReasoningSource) -> ReasoningCandidate:
    if isinstance(candidate, ReasoningCandidate):
        raw: Mapping[str, Any] = candidate.model_dump(by_alias=True)
    elif isinstance(candidate, Mapping):
        raw = candidate
    else:
        raw = {}

    text = trim_string(raw.get("text"))
    state = "visible" if text else (parse_state(raw.get("state")) or "none")
    source = raw.get("source")
    return ReasoningCandidate(
        text=text,
        state=state,
        source=source if _is_source(source) else fallback_source,
        duration_ms=normalize_duration(raw.get("durationMs", raw.get("duration_ms"))),
        signature=normalize_signature(raw.get("signature")),
    )


def merge_candidates(
    stream: CandidateLike = None,
    result: CandidateLike = None,
    tag: CandidateLike = None,
) -> ReasoningCandidate:
    """Merge the three reasoning signals into one record.

    Visible texts are joined in stream, result, tag order with duplicates
    removed. A hidden signal only decides the state when nothing is visible.
    """
    candidates: Sequence[ReasoningCandidate] = (
        _normalize_candidate(stream, "stream"),
        _normalize_candidate(result, "result"),
        _normalize_candidate(tag, "tag_parse"),
    )

    visible = [c for c in candidates if c.state == "visible" and c.text]
    visible_texts = dedupe_texts(c.text for c in visible)
    hidden = next((c for c in candidates if c.state == "hidden"), None)
    first_used = next(
        (
            c
            for c in candidates
            if c.state != "none" or c.duration_ms is not None or c.signature
        ),
        None,
    )

    if visible_texts:
        state: ReasoningState = "visible"
        source = visible[0].source
    elif hidden is not None:
        state = "hidden"
        source = hidden.source
    else:
        state = "none"
        source = first_used.source if first_used is not None else "result"

    return ReasoningCandidate(
        text=MERGE_SEPARATOR.join(visible_texts),
        state=state,
        source=source,
        duration_ms=next((c.duration_ms for c in candidates if c.duration_ms is not None), None),
        signature=normalize_signature(*(c.signature for c in candidates)),
    )
