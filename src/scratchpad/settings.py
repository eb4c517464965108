"""Global scratch pad settings and chat-completion parameters."""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel

from .threads import ContextSettings

DEFAULT_OOC_PROMPT = (
    "You are a neutral observer and writing assistant helping the user understand and "
    "analyze their ongoing roleplay. Answer out-of-character questions about the story, "
    "characters, plot, or setting. Be direct, insightful, and helpful. Do not roleplay as "
    "any character; respond as an objective assistant."
)

TITLE_INSTRUCTION = (
    "At the very beginning of your first response in this new conversation, provide a brief "
    "title (3-6 words) for this discussion on its own line, formatted as: "
    "**Title: [Your Title Here]**\n\nThen provide your response."
)


class ScratchPadSettings(BaseModel):
    """User-level defaults. New threads snapshot these into ContextSettings."""

    chat_history_limit: int = 0  # 0 means use all available
    include_character_card: bool = True
    include_system_prompt: bool = False
    include_authors_note: bool = False
    ooc_system_prompt: str = DEFAULT_OOC_PROMPT
    use_alternative_api: bool = False
    connection_profile: str = ""

    def reset_ooc_prompt(self) -> None:
        self.ooc_system_prompt = DEFAULT_OOC_PROMPT

    def context_snapshot(self) -> ContextSettings:
        return ContextSettings(
            include_character_card=self.include_character_card,
            include_system_prompt=self.include_system_prompt,
            include_authors_note=self.include_authors_note,
            connection_profile=(
                self.connection_profile
                if self.use_alternative_api and self.connection_profile
                else None
            ),
        )

    def active_profile(self, context: Optional[ContextSettings] = None) -> Optional[str]:
        """Profile to switch to for a generation, or None to stay on the current one."""
        if context is not None and context.connection_profile:
            return context.connection_profile
        if self.use_alternative_api and self.connection_profile:
            return self.connection_profile
        return None


class CompletionSettings(BaseModel):
    """Sampling and routing parameters for the chat-completions backend."""

    api: str = "openai"
    source: str = "openai"
    model: str = ""
    stream: bool = True

    temperature: float = 1.0
    frequency_penalty: float = 0.0
    presence_penalty: float = 0.0
    top_p: float = 1.0
    top_k: int = 0
    min_p: float = 0.0
    top_a: float = 0.0
    repetition_penalty: float = 1.0
    max_tokens: Optional[int] = 300
    seed: int = -1

    show_thoughts: bool = True
    reasoning_effort: str = "auto"
    custom_prompt_post_processing: str = ""
    use_sysprompt: bool = False

    reverse_proxy: str = ""
    proxy_password: str = ""

    azure_base_url: Optional[str] = None
    azure_deployment_name: Optional[str] = None
    azure_api_version: Optional[str] = None

    vertexai_auth_mode: Optional[str] = None
    vertexai_region: Optional[str] = None
    vertexai_express_project_id: Optional[str] = None

    custom_url: Optional[str] = None
    custom_include_body: Optional[str] = None
    custom_exclude_body: Optional[str] = None
    custom_include_headers: Optional[str] = None

    openrouter_use_fallback: bool = False
    openrouter_providers: List[str] = []
    openrouter_allow_fallbacks: bool = True
    openrouter_middleout: str = "on"

    zai_endpoint: str = "common"


def is_streaming_supported(settings: Optional[CompletionSettings]) -> bool:
    """Direct streaming only works against the chat-completions API with streaming on."""
    if settings is None or settings.api != "openai":
        return False
    return settings.stream
