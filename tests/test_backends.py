"""
Tests for scratchpad.backends.

Covers:
  - Token extraction for each stream dialect
  - Request body shaping per chat-completion source
"""

import pytest

from scratchpad.backends import (
    BACKENDS,
    DEFAULT_BACKEND,
    build_request_body,
    extract_claude_tokens,
    extract_cohere_tokens,
    extract_google_tokens,
    extract_openai_tokens,
    get_backend,
)
from scratchpad.settings import CompletionSettings

MESSAGES = [{"role": "system", "content": "sys"}, {"role": "user", "content": "hi"}]

# ========================================================================
# Token extraction
# ========================================================================


class TestExtractors:
    def test_openai_delta(self):
        token = extract_openai_tokens(
            {"choices": [{"delta": {"content": "Hi", "reasoning_content": "hmm"}}]}
        )
        assert token.text == "Hi"
        assert token.reasoning == "hmm"

    def test_openai_reasoning_alias(self):
        token = extract_openai_tokens({"choices": [{"delta": {"reasoning": "r"}}]})
        assert token.text == ""
        assert token.reasoning == "r"

    @pytest.mark.parametrize("payload", [{}, {"choices": []}, {"choices": [{"delta": None}]}])
    def test_openai_without_delta(self, payload):
        token = extract_openai_tokens(payload)
        assert token.text == ""
        assert token.reasoning == ""

    def test_claude_text_delta(self):
        token = extract_claude_tokens({"delta": {"type": "text_delta", "text": "Hello"}})
        assert token.text == "Hello"

    def test_claude_thinking_delta(self):
        token = extract_claude_tokens({"delta": {"type": "thinking_delta", "thinking": "ponder"}})
        assert token.text == ""
        assert token.reasoning == "ponder"

    def test_claude_signature_delta_is_ignored(self):
        token = extract_claude_tokens({"delta": {"type": "signature_delta", "signature": "s"}})
        assert token.text == ""
        assert token.reasoning == ""

    def test_claude_in_openai_shape(self):
        token = extract_claude_tokens({"choices": [{"delta": {"content": "wrapped"}}]})
        assert token.text == "wrapped"

    def test_google_parts_split_by_thought_flag(self):
        token = extract_google_tokens(
            {
                "candidates": [
                    {
                        "content": {
                            "parts": [
                                {"text": "considering", "thought": True},
                                {"text": "Answer"},
                            ]
                        }
                    }
                ]
            }
        )
        assert token.text == "Answer"
        assert token.reasoning == "considering"

    def test_cohere_message_delta(self):
        token = extract_cohere_tokens({"delta": {"message": {"content": {"text": "Hey"}}}})
        assert token.text == "Hey"


# ========================================================================
# Request bodies
# ========================================================================


class TestBuildRequestBody:
    def test_common_fields(self):
        settings = CompletionSettings(model="gpt-test", temperature=0.7)
        body = build_request_body(MESSAGES, settings)
        assert body["type"] == "quiet"
        assert body["messages"] == MESSAGES
        assert body["model"] == "gpt-test"
        assert body["temperature"] == 0.7
        assert body["stream"] is True
        assert body["chat_completion_source"] == "openai"
        assert "reasoning_effort" not in body

    def test_model_override_and_non_streaming(self):
        body = build_request_body(MESSAGES, CompletionSettings(model="a"), "b", stream=False)
        assert body["model"] == "b"
        assert body["stream"] is False

    def test_reasoning_effort_when_not_auto(self):
        body = build_request_body(MESSAGES, CompletionSettings(reasoning_effort="high"))
        assert body["reasoning_effort"] == "high"

    def test_seed_only_when_non_negative(self):
        assert "seed" not in build_request_body(MESSAGES, CompletionSettings(seed=-1))
        assert build_request_body(MESSAGES, CompletionSettings(seed=7))["seed"] == 7

    def test_reverse_proxy_only_for_proxy_sources(self):
        openai = CompletionSettings(reverse_proxy="https://proxy", proxy_password="pw")
        body = build_request_body(MESSAGES, openai)
        assert body["reverse_proxy"] == "https://proxy"
        assert body["proxy_password"] == "pw"

        openrouter = openai.model_copy(update={"source": "openrouter"})
        assert "reverse_proxy" not in build_request_body(MESSAGES, openrouter)

    def test_openrouter_fields(self):
        settings = CompletionSettings(
            source="openrouter", top_k=40, openrouter_providers=["a", "b"]
        )
        body = build_request_body(MESSAGES, settings)
        assert body["top_k"] == 40
        assert body["provider"] == ["a", "b"]
        assert body["allow_fallbacks"] is True
        assert body["middleout"] == "on"

    def test_claude_sysprompt_flag(self):
        body = build_request_body(
            MESSAGES, CompletionSettings(source="claude", use_sysprompt=True)
        )
        assert body["use_sysprompt"] is True
        assert "seed" not in build_request_body(
            MESSAGES, CompletionSettings(source="claude", seed=3)
        )

    def test_cohere_clamps(self):
        settings = CompletionSettings(
            source="cohere", top_p=1.0, frequency_penalty=1.5, presence_penalty=-0.5
        )
        body = build_request_body(MESSAGES, settings)
        assert body["top_p"] == 0.99
        assert body["frequency_penalty"] == 1
        assert body["presence_penalty"] == 0

    def test_deepseek_zero_top_p(self):
        body = build_request_body(MESSAGES, CompletionSettings(source="deepseek", top_p=0))
        assert 0 < body["top_p"] < 1e-10

    def test_zai_drops_penalties(self):
        body = build_request_body(MESSAGES, CompletionSettings(source="zai", top_p=0))
        assert body["top_p"] == 0.01
        assert body["zai_endpoint"] == "common"
        assert "presence_penalty" not in body
        assert "frequency_penalty" not in body

    def test_pollinations_has_no_max_tokens(self):
        body = build_request_body(MESSAGES, CompletionSettings(source="pollinations"))
        assert "max_tokens" not in body

    def test_chutes_omits_unset_top_k(self):
        assert "top_k" not in build_request_body(
            MESSAGES, CompletionSettings(source="chutes", top_k=0)
        )
        assert build_request_body(
            MESSAGES, CompletionSettings(source="chutes", top_k=20)
        )["top_k"] == 20

    def test_azure_fields_drop_when_unset(self):
        body = build_request_body(
            MESSAGES, CompletionSettings(source="azure_openai", azure_deployment_name="dep")
        )
        assert body["azure_deployment_name"] == "dep"
        assert "azure_base_url" not in body


class TestBackendTable:
    def test_covers_many_sources(self):
        assert len(BACKENDS) >= 20

    def test_unknown_source_uses_default(self):
        assert get_backend("no-such-source") is DEFAULT_BACKEND
        assert get_backend("no-such-source").extract is extract_openai_tokens

    @pytest.mark.parametrize(
        "source, extractor",
        [
            ("claude", extract_claude_tokens),
            ("makersuite", extract_google_tokens),
            ("vertexai", extract_google_tokens),
            ("cohere", extract_cohere_tokens),
            ("groq", extract_openai_tokens),
        ],
    )
    def test_source_extractors(self, source, extractor):
        assert get_backend(source).extract is extractor
