"""Prompt assembly and response post-processing."""

from __future__ import annotations

import logging
import re
from typing import Any, List, Mapping, NamedTuple, Optional, Sequence, Tuple

from .config import AI_TITLE_MAX_LENGTH, FALLBACK_TITLE_LENGTH
from .host import Character, ChatEntry, PromptContextProvider
from .settings import TITLE_INSTRUCTION, ScratchPadSettings
from .threads import ContextSettings, ThreadMessage
from .types import JSONDict

logger = logging.getLogger(__name__)

TITLE_RE = re.compile(r"^\s*\*\*Title:\s*(.+?)\*\*\s*")

SYSTEM_PROMPT_HEADER = "--- SYSTEM PROMPT ---"
CHARACTER_HEADER = "--- CHARACTER INFORMATION ---"
CHAT_HISTORY_HEADER = "--- ROLEPLAY CHAT HISTORY ---"
AUTHORS_NOTE_HEADER = "--- AUTHOR'S NOTE ---"
THREAD_HISTORY_HEADER = "--- PREVIOUS SCRATCH PAD DISCUSSION ---"
QUESTION_HEADER = "--- USER QUESTION ---"

_REASONING_BLOCK_TYPES = {"thinking", "reasoning", "reasoning.text", "thought", "redacted_thinking"}


class PromptParts(NamedTuple):
    system_prompt: str
    prompt: str

    def as_messages(self) -> List[JSONDict]:
        return [
            {"role": "system", "content": self.system_prompt},
            {"role": "user", "content": self.prompt},
        ]


def build_character_context(
    character: Optional[Character],
    context: Optional[ContextSettings] = None,
) -> str:
    if character is None:
        return ""
    context = context or ContextSettings()

    parts = []
    if character.name:
        parts.append(f"Character Name: {character.name}")
    if character.description and context.include_description:
        parts.append(f"Description: {character.description}")
    if character.personality and context.include_personality:
        parts.append(f"Personality: {character.personality}")
    if character.scenario and context.include_scenario:
        parts.append(f"Scenario: {character.scenario}")
    if character.mes_example and context.include_examples:
        parts.append(f"Example Messages:\n{character.mes_example}")
    return "\n\n".join(parts)


def _clamp_index(value: Optional[int], last: int, default: int) -> int:
    if value is None:
        return default
    return min(max(value, 0), last)


def select_chat_history(
    chat: Sequence[ChatEntry],
    context: Optional[ContextSettings] = None,
    limit: int = 0,
) -> List[ChatEntry]:
    """Slice the host chat according to the thread's history range.

    Indices are zero-based and inclusive. ``between`` swaps reversed bounds and
    clamps both into the chat. ``all`` keeps the last ``limit`` entries when a
    positive limit is set.
    """
    entries = list(chat)
    if not entries:
        return []

    mode = context.history_mode if context is not None else "all"
    last = len(entries) - 1

    if mode == "start_to":
        end = _clamp_index(context.history_end, last, default=last)
        return entries[: end + 1]
    if mode == "from_to_end":
        start = _clamp_index(context.history_start, last, default=0)
        return entries[start:]
    if mode == "between":
        start = _clamp_index(context.history_start, last, default=0)
        end = _clamp_index(context.history_end, last, default=last)
        if start > end:
            start, end = end, start
        return entries[start : end + 1]

    return entries[-limit:] if limit > 0 else entries


def format_chat_history(entries: Sequence[ChatEntry]) -> str:
    lines = []
    for entry in entries:
        role = "User" if entry.is_user else (entry.name or "Character")
        lines.append(f"{role}: {entry.mes}")
    return "\n\n".join(lines)


def format_thread_history(messages: Sequence[ThreadMessage]) -> str:
    return "\n\n".join(
        f"{'User' if m.role == 'user' else 'Assistant'}: {m.content}"
        for m in messages
        if m.status == "complete"
    )


def append_authors_note(parts: List[str], include: bool, note: str) -> None:
    if not include:
        return
    if not note:
        logger.warning("Author's note requested but the chat has none")
        return
    parts.append(AUTHORS_NOTE_HEADER)
    parts.append(note)


def build_prompt(
    question: str,
    history: Sequence[ThreadMessage],
    provider: PromptContextProvider,
    settings: ScratchPadSettings,
    context: Optional[ContextSettings] = None,
    *,
    is_first_message: bool = False,
) -> PromptParts:
    """Assemble the system instruction and the labelled prompt body."""
    context = context or settings.context_snapshot()

    system_prompt = settings.ooc_system_prompt
    if is_first_message:
        system_prompt += "\n\n" + TITLE_INSTRUCTION

    parts: List[str] = []

    if context.include_system_prompt:
        host_prompt = provider.get_system_prompt()
        if host_prompt:
            parts.extend([SYSTEM_PROMPT_HEADER, host_prompt])

    if context.include_character_card:
        character_context = build_character_context(provider.get_character(), context)
        if character_context:
            parts.extend([CHARACTER_HEADER, character_context])

    chat_history = format_chat_history(
        select_chat_history(provider.get_chat(), context, settings.chat_history_limit)
    )
    if chat_history:
        parts.extend([CHAT_HISTORY_HEADER, chat_history])

    append_authors_note(parts, context.include_authors_note, provider.get_authors_note())

    thread_history = format_thread_history(history)
    if thread_history:
        parts.extend([THREAD_HISTORY_HEADER, thread_history])

    parts.extend([QUESTION_HEADER, question])
    return PromptParts(system_prompt=system_prompt, prompt="\n\n".join(parts))


def parse_thread_title(response: str) -> Tuple[Optional[str], str]:
    """Split a leading ``**Title: ...**`` marker off a response."""
    match = TITLE_RE.match(response)
    if not match:
        return None, response
    return match.group(1).strip(), response[match.end() :].strip()


def generate_fallback_title(question: str) -> str:
    if len(question) <= FALLBACK_TITLE_LENGTH:
        return question
    return question[:FALLBACK_TITLE_LENGTH] + "..."


def clean_ai_title(response: str) -> str:
    title = response.strip()
    title = re.sub(r"^[\"']|[\"']$", "", title)
    title = re.sub(r"^\*\*Title:\s*", "", title, flags=re.IGNORECASE)
    title = re.sub(r"^\*\*(.*?)\*\*$", r"\1", title)
    title = title.strip()
    if len(title) > AI_TITLE_MAX_LENGTH:
        title = title[: AI_TITLE_MAX_LENGTH - 3] + "..."
    return title


def _visible_blocks_text(blocks: Any) -> str:
    if isinstance(blocks, str):
        return blocks
    if not isinstance(blocks, list):
        return ""
    texts = []
    for block in blocks:
        if isinstance(block, str):
            texts.append(block)
            continue
        if not isinstance(block, Mapping) or block.get("thought"):
            continue
        if block.get("type") in _REASONING_BLOCK_TYPES:
            continue
        if isinstance(block.get("text"), str):
            texts.append(block["text"])
    return "".join(texts)


def text_from_result(result: Any) -> str:
    """Visible answer text of a quiet-generation result, string or provider JSON."""
    if isinstance(result, str):
        return result
    if not isinstance(result, Mapping):
        return ""

    choices = result.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], Mapping):
        choice = choices[0]
        message = choice.get("message")
        if isinstance(message, Mapping):
            text = _visible_blocks_text(message.get("content"))
            if text:
                return text
        if isinstance(choice.get("text"), str):
            return choice["text"]

    candidates = result.get("candidates")
    if isinstance(candidates, list) and candidates and isinstance(candidates[0], Mapping):
        content = candidates[0].get("content")
        if isinstance(content, Mapping):
            text = _visible_blocks_text(content.get("parts"))
            if text:
                return text

    response_content = result.get("responseContent")
    if isinstance(response_content, Mapping):
        text = _visible_blocks_text(response_content.get("parts"))
        if text:
            return text

    for key in ("content", "output_text", "text"):
        text = _visible_blocks_text(result.get(key))
        if text:
            return text

    message = result.get("message")
    if isinstance(message, Mapping):
        return _visible_blocks_text(message.get("content"))
    return ""
