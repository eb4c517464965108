"""Shared fakes for the host application boundary."""

from typing import Any, Callable, List, Optional, Tuple

import pytest

from scratchpad import Character, ChatEntry, StaticContext, ThreadStore


class RecordingPersist:
    def __init__(self) -> None:
        self.calls: List[dict] = []

    async def __call__(self, metadata: dict) -> None:
        self.calls.append(metadata)


class FailingPersist:
    def __init__(self, error: Exception) -> None:
        self.error = error

    async def __call__(self, metadata: dict) -> None:
        raise self.error


class FakeQuiet:
    """Quiet generator returning canned responses in order (the last one repeats)."""

    def __init__(
        self,
        *responses: Any,
        error: Optional[Exception] = None,
        during: Optional[Callable[[], None]] = None,
    ) -> None:
        self.responses = list(responses) or [""]
        self.error = error
        self.during = during
        self.calls: List[Tuple[str, str]] = []

    async def __call__(self, system_prompt: str, prompt: str) -> Any:
        self.calls.append((system_prompt, prompt))
        if self.during is not None:
            self.during()
        if self.error is not None:
            raise self.error
        if len(self.responses) > 1:
            return self.responses.pop(0)
        return self.responses[0]


class FakeProfiles:
    def __init__(self, active: str = "main", fail_on: Optional[str] = None) -> None:
        self.active = active
        self.fail_on = fail_on
        self.history: List[str] = []

    async def get_active_profile(self) -> str:
        return self.active

    async def set_active_profile(self, name: str) -> None:
        self.history.append(name)
        if name == self.fail_on:
            raise RuntimeError(f"profile {name} unavailable")
        self.active = name


@pytest.fixture
def host():
    return StaticContext(
        chat=[
            ChatEntry(is_user=True, name="You", mes="We enter the cave."),
            ChatEntry(is_user=False, name="Mira", mes="Mira lights a torch."),
            ChatEntry(is_user=True, name="You", mes="Is anything moving?"),
            ChatEntry(is_user=False, name="Mira", mes="Something shifts in the dark."),
            ChatEntry(is_user=True, name="You", mes="We draw our swords."),
        ],
        character=Character(
            name="Mira",
            description="A cautious ranger.",
            personality="Wry and watchful.",
            scenario="Exploring ruins.",
            mes_example="<START>Mira: Stay close.",
        ),
        system_prompt="You are a roleplay narrator.",
        authors_note="Keep the mood tense.",
    )


@pytest.fixture
def persist():
    return RecordingPersist()


@pytest.fixture
def store(host, persist):
    return ThreadStore(chat_length=host.get_chat_length, persist=persist)
