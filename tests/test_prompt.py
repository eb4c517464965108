"""
Tests for scratchpad.prompt.

Covers:
  - Chat history selection modes
  - Prompt section assembly and per-thread context flags
  - Title parsing, fallback titles and AI title cleanup
  - Visible text extraction from structured results
  - Global settings snapshots and streaming support
"""

import logging

import pytest

from scratchpad.host import StaticContext
from scratchpad.prompt import (
    AUTHORS_NOTE_HEADER,
    CHARACTER_HEADER,
    CHAT_HISTORY_HEADER,
    QUESTION_HEADER,
    SYSTEM_PROMPT_HEADER,
    THREAD_HISTORY_HEADER,
    build_prompt,
    clean_ai_title,
    generate_fallback_title,
    parse_thread_title,
    select_chat_history,
    text_from_result,
)
from scratchpad.settings import (
    TITLE_INSTRUCTION,
    CompletionSettings,
    ScratchPadSettings,
    is_streaming_supported,
)
from scratchpad.threads import ContextSettings, ThreadMessage


def message(role, content, status="complete"):
    return ThreadMessage(id=content, role=role, content=content, timestamp="now", status=status)


# ========================================================================
# History selection
# ========================================================================


class TestSelectChatHistory:
    def texts(self, entries):
        return [e.mes for e in entries]

    def test_all(self, host):
        assert len(select_chat_history(host.chat)) == 5

    def test_all_with_limit(self, host):
        entries = select_chat_history(host.chat, ContextSettings(), limit=2)
        assert self.texts(entries) == ["Something shifts in the dark.", "We draw our swords."]

    def test_start_to(self, host):
        entries = select_chat_history(host.chat, ContextSettings(history_mode="start_to", history_end=1))
        assert self.texts(entries) == ["We enter the cave.", "Mira lights a torch."]

    def test_from_to_end(self, host):
        entries = select_chat_history(
            host.chat, ContextSettings(history_mode="from_to_end", history_start=3)
        )
        assert len(entries) == 2

    def test_between_swaps_reversed_bounds(self, host):
        context = ContextSettings(history_mode="between", history_start=3, history_end=1)
        assert len(select_chat_history(host.chat, context)) == 3

    def test_between_clamps_out_of_range(self, host):
        context = ContextSettings(history_mode="between", history_start=-4, history_end=99)
        assert len(select_chat_history(host.chat, context)) == 5

    def test_empty_chat(self):
        assert select_chat_history([], ContextSettings(history_mode="between")) == []


# ========================================================================
# Prompt assembly
# ========================================================================


class TestBuildPrompt:
    def test_sections_in_order(self, host):
        context = ContextSettings(include_system_prompt=True, include_authors_note=True)
        history = [message("user", "Earlier question"), message("assistant", "Earlier answer")]
        parts = build_prompt("What now?", history, host, ScratchPadSettings(), context)

        headers = [
            SYSTEM_PROMPT_HEADER,
            CHARACTER_HEADER,
            CHAT_HISTORY_HEADER,
            AUTHORS_NOTE_HEADER,
            THREAD_HISTORY_HEADER,
            QUESTION_HEADER,
        ]
        positions = [parts.prompt.index(h) for h in headers]
        assert positions == sorted(positions)
        assert "You are a roleplay narrator." in parts.prompt
        assert "Keep the mood tense." in parts.prompt
        assert "User: Earlier question\n\nAssistant: Earlier answer" in parts.prompt
        assert "Mira: Mira lights a torch." in parts.prompt
        assert parts.prompt.endswith(f"{QUESTION_HEADER}\n\nWhat now?")

    def test_title_instruction_only_on_first_message(self, host):
        settings = ScratchPadSettings()
        first = build_prompt("Q", [], host, settings, is_first_message=True)
        later = build_prompt("Q", [], host, settings)
        assert first.system_prompt.endswith(TITLE_INSTRUCTION)
        assert TITLE_INSTRUCTION not in later.system_prompt
        assert later.system_prompt == settings.ooc_system_prompt

    def test_optional_sections_off_by_default(self, host):
        parts = build_prompt("Q", [], host, ScratchPadSettings())
        assert SYSTEM_PROMPT_HEADER not in parts.prompt
        assert AUTHORS_NOTE_HEADER not in parts.prompt
        assert THREAD_HISTORY_HEADER not in parts.prompt

    def test_character_field_flags(self, host):
        context = ContextSettings(include_personality=False, include_examples=False)
        parts = build_prompt("Q", [], host, ScratchPadSettings(), context)
        assert "Description: A cautious ranger." in parts.prompt
        assert "Personality:" not in parts.prompt
        assert "Example Messages:" not in parts.prompt

    def test_character_card_can_be_excluded(self, host):
        context = ContextSettings(include_character_card=False)
        parts = build_prompt("Q", [], host, ScratchPadSettings(), context)
        assert CHARACTER_HEADER not in parts.prompt

    def test_incomplete_thread_messages_are_skipped(self, host):
        history = [message("user", "kept"), message("assistant", "broken", status="failed")]
        parts = build_prompt("Q", history, host, ScratchPadSettings())
        assert "User: kept" in parts.prompt
        assert "broken" not in parts.prompt

    def test_missing_authors_note_logs_warning(self, caplog):
        host = StaticContext()
        context = ContextSettings(include_authors_note=True)
        with caplog.at_level(logging.WARNING, logger="scratchpad.prompt"):
            parts = build_prompt("Q", [], host, ScratchPadSettings(), context)
        assert AUTHORS_NOTE_HEADER not in parts.prompt
        assert "Author's note" in caplog.text

    def test_as_messages(self, host):
        parts = build_prompt("Q", [], host, ScratchPadSettings())
        assert [m["role"] for m in parts.as_messages()] == ["system", "user"]


# ========================================================================
# Titles
# ========================================================================


class TestTitles:
    def test_parse_title(self):
        title, cleaned = parse_thread_title("**Title: Plot Recap**\n\nHere is the recap.")
        assert title == "Plot Recap"
        assert cleaned == "Here is the recap."

    def test_no_title(self):
        assert parse_thread_title("Just an answer") == (None, "Just an answer")

    def test_title_must_lead(self):
        title, _ = parse_thread_title("Answer first **Title: Late**")
        assert title is None

    @pytest.mark.parametrize(
        "question, expected",
        [
            ("Short question", "Short question"),
            ("x" * 30, "x" * 30),
            ("What is Mira hiding from the party?", "What is Mira hiding from the p..."),
        ],
    )
    def test_fallback_title(self, question, expected):
        assert generate_fallback_title(question) == expected

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ('"Plot Recap"', "Plot Recap"),
            ("**Plot Recap**", "Plot Recap"),
            ("**Title: Plot Recap", "Plot Recap"),
            ("  The Cave  \n", "The Cave"),
        ],
    )
    def test_clean_ai_title(self, raw, expected):
        assert clean_ai_title(raw) == expected

    def test_clean_ai_title_truncates(self):
        title = clean_ai_title("word " * 20)
        assert len(title) == 60
        assert title.endswith("...")


# ========================================================================
# Result text
# ========================================================================


class TestTextFromResult:
    def test_string(self):
        assert text_from_result("plain") == "plain"

    def test_openai_message(self):
        assert text_from_result({"choices": [{"message": {"content": "Hi"}}]}) == "Hi"

    def test_openai_text_completion(self):
        assert text_from_result({"choices": [{"text": "legacy"}]}) == "legacy"

    def test_claude_blocks_skip_thinking(self):
        result = {
            "content": [
                {"type": "thinking", "thinking": "hmm"},
                {"type": "text", "text": "Answer"},
            ]
        }
        assert text_from_result(result) == "Answer"

    def test_gemini_candidates_skip_thoughts(self):
        result = {
            "candidates": [
                {"content": {"parts": [{"text": "thinking", "thought": True}, {"text": "Visible"}]}}
            ]
        }
        assert text_from_result(result) == "Visible"

    @pytest.mark.parametrize("result", [None, 1, {}, {"choices": []}])
    def test_nothing_usable(self, result):
        assert text_from_result(result) == ""


# ========================================================================
# Settings
# ========================================================================


class TestSettings:
    def test_reset_ooc_prompt(self):
        settings = ScratchPadSettings(ooc_system_prompt="custom")
        settings.reset_ooc_prompt()
        assert settings.ooc_system_prompt == ScratchPadSettings().ooc_system_prompt

    def test_context_snapshot_copies_globals(self):
        settings = ScratchPadSettings(
            include_authors_note=True, use_alternative_api=True, connection_profile="alt"
        )
        context = settings.context_snapshot()
        assert context.include_authors_note is True
        assert context.connection_profile == "alt"
        assert context.history_mode == "all"

    def test_profile_ignored_without_alternative_api(self):
        settings = ScratchPadSettings(connection_profile="alt")
        assert settings.context_snapshot().connection_profile is None
        assert settings.active_profile() is None
        assert settings.active_profile(ContextSettings(connection_profile="t")) == "t"

    @pytest.mark.parametrize(
        "completion, expected",
        [
            (None, False),
            (CompletionSettings(), True),
            (CompletionSettings(stream=False), False),
            (CompletionSettings(api="textgenerationwebui"), False),
        ],
    )
    def test_is_streaming_supported(self, completion, expected):
        assert is_streaming_supported(completion) is expected
