"""Boundary types for the host chat application."""

from __future__ import annotations

from typing import Optional, Protocol, Sequence, runtime_checkable

from pydantic import BaseModel

from .types import QuietResult


class ChatEntry(BaseModel):
    """One message of the host's roleplay chat log."""

    is_user: bool = False
    name: Optional[str] = None
    mes: str = ""


class Character(BaseModel):
    name: str = ""
    description: str = ""
    personality: str = ""
    scenario: str = ""
    mes_example: str = ""


@runtime_checkable
class PromptContextProvider(Protocol):
    def get_chat(self) -> Sequence[ChatEntry]: ...

    def get_character(self) -> Optional[Character]: ...

    def get_chat_length(self) -> int: ...

    def get_system_prompt(self) -> str: ...

    def get_authors_note(self) -> str: ...


class QuietGenerator(Protocol):
    """Non-interactive completion that does not touch the host's visible chat."""

    async def __call__(self, system_prompt: str, prompt: str) -> QuietResult: ...


class ProfileController(Protocol):
    async def get_active_profile(self) -> str: ...

    async def set_active_profile(self, name: str) -> None: ...


class StaticContext:
    """In-memory PromptContextProvider, handy for scripts and tests."""

    def __init__(
        self,
        chat: Optional[Sequence[ChatEntry]] = None,
        character: Optional[Character] = None,
        system_prompt: str = "",
        authors_note: str = "",
    ) -> None:
        self.chat = list(chat or [])
        self.character = character
        self.system_prompt = system_prompt
        self.authors_note = authors_note

    def get_chat(self) -> Sequence[ChatEntry]:
        return self.chat

    def get_character(self) -> Optional[Character]:
        return self.character

    def get_chat_length(self) -> int:
        return len(self.chat)

    def get_system_prompt(self) -> str:
        return self.system_prompt

    def get_authors_note(self) -> str:
        return self.authors_note
