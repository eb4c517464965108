from __future__ import annotations

from typing import Optional


class ScratchPadError(Exception):
    """Base error for the scratch pad engine."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    def __str__(self) -> str:
        return self.message


class ThreadNotFoundError(ScratchPadError):
    def __init__(self, thread_id: str) -> None:
        super().__init__("Thread not found")
        self.thread_id = thread_id


class MessageNotFoundError(ScratchPadError):
    def __init__(self, message_id: str) -> None:
        super().__init__("Message not found")
        self.message_id = message_id


class TransportError(ScratchPadError):
    """Non-success HTTP status or a broken stream."""


class GenerationCancelled(ScratchPadError):
    """Raised inside a generation when its cancellation token was signalled."""

    def __init__(self, message: str = "Generation cancelled") -> None:
        super().__init__(message)
