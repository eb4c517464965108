"""In-memory thread store persisted as one metadata object per host chat."""

from __future__ import annotations

import difflib
import logging
from typing import Any, Callable, Dict, List, Optional, TypeVar

from .config import DEFAULT_THREAD_NAME, METADATA_KEY
from .exceptions import MessageNotFoundError, ScratchPadError, ThreadNotFoundError
from .models import ReasoningMeta
from .reasoning import normalize_reasoning_meta
from .threads import BranchView, ContextSettings, Thread, ThreadMessage
from .types import JSONDict, MessageStatus, PersistHook, Role
from .utils import generate_id, get_timestamp

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _fit(values: List[T], length: int, pad: Callable[[int], T]) -> List[T]:
    values = list(values[:length])
    while len(values) < length:
        values.append(pad(len(values)))
    return values


def _sync_from_active(message: ThreadMessage) -> None:
    index = message.swipe_id or 0
    message.content = message.swipes[index]
    message.thinking = message.swipe_thinking[index]
    message.reasoning_meta = message.swipe_reasoning_meta[index]
    message.timestamp = message.swipe_timestamps[index]


def upgrade_swipe_fields(message: ThreadMessage) -> None:
    """Materialize or repair the swipe arrays of an assistant message.

    A single-version message gets one-element arrays built from its top-level
    fields. Existing arrays are padded or truncated to the length of
    ``swipes`` and ``swipe_id`` is clamped into range. User messages are left
    untouched.
    """
    if message.role != "assistant":
        return

    if not message.swipes:
        message.swipes = [message.content]
        message.swipe_thinking = [message.thinking]
        message.swipe_reasoning_meta = [
            message.reasoning_meta or normalize_reasoning_meta(None, message.thinking)
        ]
        message.swipe_timestamps = [message.timestamp]
        message.swipe_id = 0
        return

    length = len(message.swipes)
    thinking = _fit(message.swipe_thinking or [], length, lambda _: None)
    message.swipe_thinking = thinking
    message.swipe_reasoning_meta = _fit(
        message.swipe_reasoning_meta or [],
        length,
        lambda i: normalize_reasoning_meta(None, thinking[i]),
    )
    message.swipe_timestamps = _fit(
        message.swipe_timestamps or [], length, lambda _: message.timestamp
    )
    message.swipe_id = min(max(message.swipe_id or 0, 0), length - 1)
    _sync_from_active(message)


def _is_on_branch(message: ThreadMessage, chat_length: int) -> bool:
    return message.chat_message_index is None or message.chat_message_index <= chat_length


class ThreadStore:
    """Threads of one host chat, most recent first."""

    def __init__(
        self,
        threads: Optional[List[Thread]] = None,
        *,
        settings: Optional[Dict[str, Any]] = None,
        chat_length: Optional[Callable[[], int]] = None,
        persist: Optional[PersistHook] = None,
    ) -> None:
        self._threads: List[Thread] = list(threads or [])
        self._settings: Dict[str, Any] = dict(settings or {})
        self._chat_length = chat_length
        self._persist = persist

    @classmethod
    def from_metadata(
        cls,
        metadata: Optional[Dict[str, Any]],
        *,
        chat_length: Optional[Callable[[], int]] = None,
        persist: Optional[PersistHook] = None,
    ) -> "ThreadStore":
        """Load from a chat metadata dict, upgrading legacy messages once."""
        data = (metadata or {}).get(METADATA_KEY) or {}
        threads = [Thread.model_validate(raw) for raw in data.get("threads") or []]
        for thread in threads:
            for message in thread.messages:
                if message.has_swipes:
                    upgrade_swipe_fields(message)
        logger.debug("Loaded %d scratch pad threads", len(threads))
        return cls(
            threads,
            settings=data.get("settings"),
            chat_length=chat_length,
            persist=persist,
        )

    def to_metadata(self) -> JSONDict:
        return {
            METADATA_KEY: {
                "settings": dict(self._settings),
                "threads": [
                    t.model_dump(mode="json", by_alias=True, exclude_none=True)
                    for t in self._threads
                ],
            }
        }

    async def save(self) -> None:
        """Hand the current state to the persist hook, if one is configured."""
        if self._persist is not None:
            await self._persist(self.to_metadata())

    def current_chat_length(self) -> Optional[int]:
        return self._chat_length() if self._chat_length is not None else None

    # Threads

    def get_threads(self) -> List[Thread]:
        return self._threads

    def get_thread(self, thread_id: str) -> Optional[Thread]:
        return next((t for t in self._threads if t.id == thread_id), None)

    def _require_thread(self, thread_id: str) -> Thread:
        thread = self.get_thread(thread_id)
        if thread is None:
            raise ThreadNotFoundError(thread_id)
        return thread

    def find_thread_by_name(self, search: str) -> Optional[Thread]:
        """Exact match, then substring, then closest fuzzy match on the name."""
        needle = search.lower()
        for thread in self._threads:
            if thread.name.lower() == needle:
                return thread
        for thread in self._threads:
            if needle in thread.name.lower():
                return thread

        names = [t.name.lower() for t in self._threads]
        close = difflib.get_close_matches(needle, names, n=1, cutoff=0.6)
        if close:
            return self._threads[names.index(close[0])]
        return None

    def create_thread(
        self,
        name: str = DEFAULT_THREAD_NAME,
        context_settings: Optional[ContextSettings] = None,
    ) -> Thread:
        timestamp = get_timestamp()
        thread = Thread(
            id=generate_id(),
            name=name,
            created_at=timestamp,
            updated_at=timestamp,
            messages=[],
            context_settings=context_settings,
        )
        self._threads.insert(0, thread)
        return thread

    def update_thread(self, thread_id: str, **updates: Any) -> Thread:
        thread = self._require_thread(thread_id)
        for key, value in updates.items():
            setattr(thread, key, value)
        thread.updated_at = get_timestamp()
        return thread

    def update_thread_context_settings(self, thread_id: str, **updates: Any) -> ContextSettings:
        thread = self._require_thread(thread_id)
        current = thread.context_settings or ContextSettings()
        thread.context_settings = ContextSettings.model_validate(
            {**current.model_dump(), **updates}
        )
        thread.updated_at = get_timestamp()
        return thread.context_settings

    def delete_thread(self, thread_id: str) -> bool:
        thread = self.get_thread(thread_id)
        if thread is None:
            return False
        self._threads.remove(thread)
        return True

    def clear_all_threads(self) -> None:
        self._threads = []

    # Messages

    def add_message(
        self,
        thread_id: str,
        role: Role,
        content: str,
        status: MessageStatus = "complete",
        chat_message_index: Optional[int] = None,
    ) -> ThreadMessage:
        thread = self._require_thread(thread_id)
        if chat_message_index is None:
            chat_message_index = self.current_chat_length()

        message = ThreadMessage(
            id=generate_id(),
            role=role,
            content=content,
            timestamp=get_timestamp(),
            status=status,
            chat_message_index=chat_message_index,
            reasoning_meta=ReasoningMeta() if role == "assistant" else None,
        )
        thread.messages.append(message)
        thread.updated_at = get_timestamp()
        return message

    def get_message(self, thread_id: str, message_id: str) -> Optional[ThreadMessage]:
        thread = self.get_thread(thread_id)
        if thread is None:
            return None
        return next((m for m in thread.messages if m.id == message_id), None)

    def _require_message(self, thread_id: str, message_id: str) -> ThreadMessage:
        self._require_thread(thread_id)
        message = self.get_message(thread_id, message_id)
        if message is None:
            raise MessageNotFoundError(message_id)
        return message

    def update_message(self, thread_id: str, message_id: str, **updates: Any) -> ThreadMessage:
        """Apply field updates; mirrored fields are written through to the active swipe."""
        message = self._require_message(thread_id, message_id)
        for key, value in updates.items():
            setattr(message, key, value)

        if message.has_swipes:
            index = message.swipe_id or 0
            if "content" in updates:
                message.swipes[index] = message.content
            if "thinking" in updates:
                message.swipe_thinking[index] = message.thinking
            if "reasoning_meta" in updates:
                message.swipe_reasoning_meta[index] = message.reasoning_meta or ReasoningMeta()
            if "timestamp" in updates:
                message.swipe_timestamps[index] = message.timestamp

        self._touch(thread_id)
        return message

    def delete_message(self, thread_id: str, message_id: str) -> bool:
        thread = self.get_thread(thread_id)
        if thread is None:
            return False
        message = next((m for m in thread.messages if m.id == message_id), None)
        if message is None:
            return False
        thread.messages.remove(message)
        thread.updated_at = get_timestamp()
        return True

    def _touch(self, thread_id: str) -> None:
        self._require_thread(thread_id).updated_at = get_timestamp()

    # Swipes

    def _swipeable(self, thread_id: str, message_id: str) -> ThreadMessage:
        message = self._require_message(thread_id, message_id)
        if message.role != "assistant":
            raise ScratchPadError("Swipes are only supported on assistant messages")
        upgrade_swipe_fields(message)
        return message

    def add_swipe(
        self,
        thread_id: str,
        message_id: str,
        content: str,
        thinking: Optional[str] = None,
        reasoning_meta: Optional[ReasoningMeta] = None,
    ) -> ThreadMessage:
        """Append a new version and make it the active one."""
        message = self._swipeable(thread_id, message_id)
        message.swipes.append(content)
        message.swipe_thinking.append(thinking)
        message.swipe_reasoning_meta.append(
            reasoning_meta or normalize_reasoning_meta(None, thinking)
        )
        message.swipe_timestamps.append(get_timestamp())
        message.swipe_id = len(message.swipes) - 1
        _sync_from_active(message)
        self._touch(thread_id)
        return message

    def set_active_swipe(self, thread_id: str, message_id: str, index: int) -> bool:
        message = self._swipeable(thread_id, message_id)
        if not 0 <= index < len(message.swipes):
            return False
        message.swipe_id = index
        _sync_from_active(message)
        self._touch(thread_id)
        return True

    def delete_swipe(self, thread_id: str, message_id: str, index: int) -> int:
        """Remove one version and return how many remain.

        ``0`` means ``index`` was the only version; nothing is removed and the
        caller is expected to delete the whole message instead.
        """
        message = self._swipeable(thread_id, message_id)
        length = len(message.swipes)
        if not 0 <= index < length:
            raise ScratchPadError(f"Swipe index {index} out of range")
        if length == 1:
            return 0

        del message.swipes[index]
        del message.swipe_thinking[index]
        del message.swipe_reasoning_meta[index]
        del message.swipe_timestamps[index]

        active = message.swipe_id or 0
        if index <= active:
            active -= 1
        message.swipe_id = min(max(active, 0), length - 2)
        _sync_from_active(message)
        self._touch(thread_id)
        return length - 1

    # Branches

    def _branch_view(self, thread: Thread, chat_length: Optional[int]) -> BranchView:
        if chat_length is None:
            return BranchView(thread=thread, visible=list(thread.messages), branched=[])
        visible, branched = [], []
        for message in thread.messages:
            (visible if _is_on_branch(message, chat_length) else branched).append(message)
        return BranchView(thread=thread, visible=visible, branched=branched)

    def get_thread_for_current_branch(
        self, thread_id: str, chat_length: Optional[int] = None
    ) -> Optional[BranchView]:
        """Partition a thread's messages by the host chat length, without mutating them."""
        thread = self.get_thread(thread_id)
        if thread is None:
            return None
        if chat_length is None:
            chat_length = self.current_chat_length()
        return self._branch_view(thread, chat_length)

    def get_threads_for_current_branch(self, chat_length: Optional[int] = None) -> List[BranchView]:
        if chat_length is None:
            chat_length = self.current_chat_length()
        return [self._branch_view(thread, chat_length) for thread in self._threads]
