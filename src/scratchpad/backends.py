"""Per-backend request shaping and stream token extraction.

Every chat-completion source is described by one :class:`Backend` record in
:data:`BACKENDS`. The request builder and the stream decoder stay
backend-agnostic and only consult the table.
"""

from __future__ import annotations

import sys
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional

from .models import StreamToken
from .settings import CompletionSettings
from .types import JSONDict

Adjuster = Callable[[JSONDict, CompletionSettings], None]
Extractor = Callable[[Mapping[str, Any]], StreamToken]


def _first_delta(data: Mapping[str, Any]) -> Optional[Mapping[str, Any]]:
    choices = data.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], Mapping):
        delta = choices[0].get("delta")
        if isinstance(delta, Mapping):
            return delta
    return None


def _str(value: Any) -> str:
    return value if isinstance(value, str) else ""


def extract_openai_tokens(data: Mapping[str, Any]) -> StreamToken:
    delta = _first_delta(data)
    if delta is None:
        return StreamToken()
    return StreamToken(
        text=_str(delta.get("content")),
        reasoning=_str(delta.get("reasoning_content")) or _str(delta.get("reasoning")),
    )


def extract_claude_tokens(data: Mapping[str, Any]) -> StreamToken:
    text = reasoning = ""
    delta = data.get("delta")
    if isinstance(delta, Mapping):
        kind = delta.get("type")
        if kind == "thinking_delta":
            reasoning = _str(delta.get("thinking"))
        elif kind == "signature_delta":
            pass
        else:
            text = _str(delta.get("text"))

    # Some proxies wrap Claude in the OpenAI delta shape
    wrapped = _first_delta(data)
    if wrapped is not None:
        text = text or _str(wrapped.get("content"))
        reasoning = (
            reasoning
            or _str(wrapped.get("reasoning_content"))
            or _str(wrapped.get("reasoning"))
        )
    return StreamToken(text=text, reasoning=reasoning)


def extract_google_tokens(data: Mapping[str, Any]) -> StreamToken:
    text: List[str] = []
    reasoning: List[str] = []
    candidates = data.get("candidates")
    if isinstance(candidates, list) and candidates and isinstance(candidates[0], Mapping):
        content = candidates[0].get("content")
        parts = content.get("parts") if isinstance(content, Mapping) else None
        if isinstance(parts, list):
            for part in parts:
                if not isinstance(part, Mapping):
                    continue
                (reasoning if part.get("thought") else text).append(_str(part.get("text")))
    return StreamToken(text="".join(text), reasoning="".join(reasoning))


def extract_cohere_tokens(data: Mapping[str, Any]) -> StreamToken:
    delta = data.get("delta")
    message = delta.get("message") if isinstance(delta, Mapping) else None
    content = message.get("content") if isinstance(message, Mapping) else None
    text = content.get("text") if isinstance(content, Mapping) else None
    return StreamToken(text=_str(text))


def _clamp(value: float, low: float, high: float) -> float:
    return min(max(value, low), high)


def _adjust_cohere(body: JSONDict, settings: CompletionSettings) -> None:
    body["top_p"] = _clamp(settings.top_p, 0.01, 0.99)
    body["frequency_penalty"] = _clamp(settings.frequency_penalty, 0, 1)
    body["presence_penalty"] = _clamp(settings.presence_penalty, 0, 1)


def _adjust_deepseek(body: JSONDict, settings: CompletionSettings) -> None:
    body["top_p"] = body.get("top_p") or sys.float_info.epsilon


def _adjust_chutes(body: JSONDict, settings: CompletionSettings) -> None:
    body["top_k"] = settings.top_k if settings.top_k > 0 else None


def _adjust_zai(body: JSONDict, settings: CompletionSettings) -> None:
    body["top_p"] = body.get("top_p") or 0.01
    body["zai_endpoint"] = settings.zai_endpoint or "common"
    body.pop("presence_penalty", None)
    body.pop("frequency_penalty", None)


def _adjust_pollinations(body: JSONDict, settings: CompletionSettings) -> None:
    body.pop("max_tokens", None)


@dataclass(frozen=True)
class Backend:
    """Request and response quirks of one chat-completion source."""

    fields: Mapping[str, str] = field(default_factory=dict)  # body key -> settings attribute
    proxy: bool = False
    seed: bool = False
    adjust: Optional[Adjuster] = None
    extract: Extractor = extract_openai_tokens


_TOP_K = {"top_k": "top_k"}
_SYSPROMPT = {"top_k": "top_k", "use_sysprompt": "use_sysprompt"}

BACKENDS: Dict[str, Backend] = {
    "openai": Backend(proxy=True, seed=True),
    "claude": Backend(fields=_SYSPROMPT, proxy=True, extract=extract_claude_tokens),
    "openrouter": Backend(
        fields={
            "top_k": "top_k",
            "min_p": "min_p",
            "repetition_penalty": "repetition_penalty",
            "top_a": "top_a",
            "use_fallback": "openrouter_use_fallback",
            "provider": "openrouter_providers",
            "allow_fallbacks": "openrouter_allow_fallbacks",
            "middleout": "openrouter_middleout",
        },
        seed=True,
    ),
    "makersuite": Backend(
        fields=_SYSPROMPT, proxy=True, seed=True, extract=extract_google_tokens
    ),
    "vertexai": Backend(
        fields={
            **_SYSPROMPT,
            "vertexai_auth_mode": "vertexai_auth_mode",
            "vertexai_region": "vertexai_region",
            "vertexai_express_project_id": "vertexai_express_project_id",
        },
        proxy=True,
        seed=True,
        extract=extract_google_tokens,
    ),
    "mistralai": Backend(proxy=True, seed=True),
    "custom": Backend(
        fields={
            "custom_url": "custom_url",
            "custom_include_body": "custom_include_body",
            "custom_exclude_body": "custom_exclude_body",
            "custom_include_headers": "custom_include_headers",
        },
        seed=True,
    ),
    "cohere": Backend(
        fields=_TOP_K, seed=True, adjust=_adjust_cohere, extract=extract_cohere_tokens
    ),
    "perplexity": Backend(fields=_TOP_K),
    "groq": Backend(seed=True),
    "chutes": Backend(
        fields={"min_p": "min_p", "repetition_penalty": "repetition_penalty"},
        seed=True,
        adjust=_adjust_chutes,
    ),
    "electronhub": Backend(fields=_TOP_K, seed=True),
    "nanogpt": Backend(
        fields={
            "top_k": "top_k",
            "min_p": "min_p",
            "repetition_penalty": "repetition_penalty",
            "top_a": "top_a",
        },
        seed=True,
    ),
    "deepseek": Backend(proxy=True, adjust=_adjust_deepseek),
    "aimlapi": Backend(seed=True),
    "xai": Backend(proxy=True, seed=True),
    "pollinations": Backend(seed=True, adjust=_adjust_pollinations),
    "moonshot": Backend(),
    "fireworks": Backend(),
    "cometapi": Backend(),
    "azure_openai": Backend(
        fields={
            "azure_base_url": "azure_base_url",
            "azure_deployment_name": "azure_deployment_name",
            "azure_api_version": "azure_api_version",
        },
        seed=True,
    ),
    "zai": Backend(adjust=_adjust_zai),
    "siliconflow": Backend(),
    "ai21": Backend(),
}

DEFAULT_BACKEND = Backend()


def get_backend(source: str) -> Backend:
    return BACKENDS.get(source, DEFAULT_BACKEND)


def build_request_body(
    messages: List[JSONDict],
    settings: CompletionSettings,
    model: Optional[str] = None,
    *,
    stream: bool = True,
) -> JSONDict:
    """Build the POST body for a chat-completions generate call."""
    backend = get_backend(settings.source)

    body: JSONDict = {
        "type": "quiet",
        "messages": messages,
        "model": model or settings.model,
        "temperature": settings.temperature,
        "frequency_penalty": settings.frequency_penalty,
        "presence_penalty": settings.presence_penalty,
        "top_p": settings.top_p,
        "max_tokens": settings.max_tokens,
        "stream": stream,
        "chat_completion_source": settings.source,
        "include_reasoning": settings.show_thoughts,
        "custom_prompt_post_processing": settings.custom_prompt_post_processing,
    }

    if settings.reasoning_effort and settings.reasoning_effort != "auto":
        body["reasoning_effort"] = settings.reasoning_effort

    if backend.proxy and settings.reverse_proxy:
        body["reverse_proxy"] = settings.reverse_proxy
        body["proxy_password"] = settings.proxy_password

    for key, attr in backend.fields.items():
        body[key] = getattr(settings, attr)

    if backend.adjust is not None:
        backend.adjust(body, settings)

    if backend.seed and settings.seed >= 0:
        body["seed"] = settings.seed

    return {key: value for key, value in body.items() if value is not None}
