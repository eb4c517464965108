"""Generation orchestration: prompt, transport, reasoning merge and persistence."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, List, Optional

from .exceptions import GenerationCancelled, ScratchPadError
from .host import ProfileController, PromptContextProvider, QuietGenerator
from .models import GenerationResult, ReasoningCandidate, TitleResult
from .prompt import (
    PromptParts,
    build_prompt,
    clean_ai_title,
    format_thread_history,
    generate_fallback_title,
    parse_thread_title,
    text_from_result,
)
from .reasoning import (
    build_stream_reasoning,
    extract_from_result,
    merge_candidates,
    parse_inline_tags,
)
from .settings import CompletionSettings, ScratchPadSettings, is_streaming_supported
from .storage import ThreadStore
from .streaming import CancellationToken, StreamTransport
from .threads import Thread, ThreadMessage
from .types import TokenCallback
from .utils import generate_id

logger = logging.getLogger(__name__)

TITLE_SYSTEM_PROMPT = (
    "You are a helpful assistant that creates concise, descriptive titles for conversations."
)


class GenerationContext:
    """One generation attempt: an id plus the cancellation token the caller holds."""

    def __init__(self, token: Optional[CancellationToken] = None) -> None:
        self.id = f"sp-{generate_id()}"
        self.token = token or CancellationToken()

    @property
    def cancelled(self) -> bool:
        return self.token.cancelled

    def cancel(self) -> None:
        self.token.cancel()

    def __repr__(self) -> str:
        return f"GenerationContext(id={self.id!r}, cancelled={self.cancelled})"


class _Output:
    """Raw output accumulated during one attempt, kept for partial results."""

    def __init__(self) -> None:
        self.text = ""
        self.reasoning = ""
        self.result: Any = None


class _Answer:
    def __init__(self, response: str, reasoning: ReasoningCandidate) -> None:
        self.response = response
        self.reasoning = reasoning

    @property
    def thinking(self) -> Optional[str]:
        return self.reasoning.text or None


def _finalize(output: _Output) -> _Answer:
    tags = parse_inline_tags(output.text)
    merged = merge_candidates(
        build_stream_reasoning(output.reasoning),
        extract_from_result(output.result),
        tags.candidate,
    )
    return _Answer(tags.cleaned, merged)


def _preceding_user_message(messages: List[ThreadMessage], index: int) -> Optional[ThreadMessage]:
    for i in range(index - 1, -1, -1):
        if messages[i].role == "user":
            return messages[i]
    return None


class GenerationOrchestrator:
    """Runs scratch pad generations against a ThreadStore.

    At most one generation is active at a time. Starting another supersedes
    the previous one: its late stream deltas are no longer forwarded, while
    its network request is left to finish on its own.
    """

    def __init__(
        self,
        store: ThreadStore,
        provider: PromptContextProvider,
        *,
        settings: Optional[ScratchPadSettings] = None,
        quiet_generate: Optional[QuietGenerator] = None,
        transport: Optional[StreamTransport] = None,
        completion: Optional[CompletionSettings] = None,
        profiles: Optional[ProfileController] = None,
        abort: Optional[Callable[[], None]] = None,
    ) -> None:
        self._store = store
        self._provider = provider
        self._settings = settings or ScratchPadSettings()
        self._quiet_generate = quiet_generate
        self._transport = transport
        self._completion = completion
        self._profiles = profiles
        self._abort = abort
        self._active: Optional[GenerationContext] = None

    @property
    def settings(self) -> ScratchPadSettings:
        return self._settings

    @property
    def active_context(self) -> Optional[GenerationContext]:
        return self._active

    def is_active(self, context: GenerationContext) -> bool:
        return context is self._active

    def cancel(self) -> bool:
        """Cancel the active generation. Returns False when nothing is running."""
        if self._active is None:
            return False
        self._active.cancel()
        return True

    def create_thread(self, name: Optional[str] = None) -> Thread:
        """Create a thread whose context settings snapshot the current globals."""
        kwargs = {"name": name} if name else {}
        return self._store.create_thread(context_settings=self._settings.context_snapshot(), **kwargs)

    def _request_abort(self) -> None:
        try:
            self._abort()
        except Exception:
            logger.warning("Host abort hook failed", exc_info=True)

    def _begin(self, context: Optional[GenerationContext]) -> GenerationContext:
        context = context or GenerationContext()
        if self._abort is not None:
            context.token.add_callback(self._request_abort)
        previous = self._active
        if previous is not None and previous is not context:
            logger.debug("Generation %s superseded by %s", previous.id, context.id)
        self._active = context
        return context

    def _release(self, context: GenerationContext) -> None:
        if self._active is context:
            self._active = None

    @asynccontextmanager
    async def _profile(self, profile: Optional[str]) -> AsyncIterator[None]:
        """Temporarily switch the host connection profile, restoring it afterwards."""
        if not profile or self._profiles is None:
            yield
            return

        previous = await self._profiles.get_active_profile()
        logger.info("Switching connection profile %r -> %r", previous, profile)
        await self._profiles.set_active_profile(profile)
        try:
            yield
        finally:
            if previous and previous != profile:
                try:
                    await self._profiles.set_active_profile(previous)
                except Exception:
                    logger.warning("Could not restore connection profile %r", previous, exc_info=True)

    async def _quiet(self, parts: PromptParts) -> Any:
        if self._quiet_generate is not None:
            return await self._quiet_generate(parts.system_prompt, parts.prompt)
        if self._transport is not None:
            return await self._transport.complete(
                parts.as_messages(), self._completion or CompletionSettings()
            )
        raise ScratchPadError("No generation backend configured")

    async def _execute(
        self,
        parts: PromptParts,
        context: GenerationContext,
        output: _Output,
        on_token: Optional[TokenCallback],
        profile: Optional[str],
    ) -> None:
        context.token.raise_if_cancelled()
        async with self._profile(profile):
            if (
                on_token is not None
                and self._transport is not None
                and is_streaming_supported(self._completion)
            ):
                async for token in self._transport.stream(
                    parts.as_messages(), self._completion, cancel=context.token
                ):
                    output.text += token.text
                    output.reasoning += token.reasoning
                    if self.is_active(context):
                        on_token(output.text, output.reasoning, False)
                    else:
                        logger.debug("Dropping delta from superseded generation %s", context.id)
            else:
                output.result = await self._quiet(parts)
                output.text = text_from_result(output.result)

        context.token.raise_if_cancelled()
        if on_token is not None and self.is_active(context):
            on_token(output.text, output.reasoning, True)

    async def _save_quietly(self) -> None:
        try:
            await self._store.save()
        except Exception:
            logger.exception("Failed to persist scratch pad threads")

    async def _finish_cancelled(
        self,
        thread_id: str,
        message_id: str,
        output: _Output,
        context: GenerationContext,
        first_question: Optional[str] = None,
    ) -> GenerationResult:
        partial = parse_inline_tags(output.text).cleaned
        try:
            if partial.strip():
                if first_question is not None:
                    title, partial = parse_thread_title(partial)
                    self._store.update_thread(
                        thread_id, name=title or generate_fallback_title(first_question)
                    )
                self._store.update_message(
                    thread_id, message_id, content=partial, status="cancelled"
                )
            else:
                self._store.delete_message(thread_id, message_id)
        except ScratchPadError:
            logger.warning("Cancelled message %s no longer exists", message_id)
        await self._save_quietly()
        logger.info("Generation %s cancelled", context.id)
        return GenerationResult(
            success=False,
            cancelled=True,
            response=partial or None,
            context=context,
        )

    async def generate(
        self,
        question: str,
        thread_id: str,
        on_token: Optional[TokenCallback] = None,
        *,
        context: Optional[GenerationContext] = None,
    ) -> GenerationResult:
        """Ask ``question`` in a thread and store the answer.

        A ``complete`` user message and a ``pending`` assistant message are
        written and persisted before any network call. Errors never escape:
        they are recorded on the assistant message and returned in the result.
        """
        thread = self._store.get_thread(thread_id)
        if thread is None:
            return GenerationResult(success=False, error="Thread not found")

        history = [m for m in thread.messages if m.status == "complete"]
        self._store.add_message(thread_id, "user", question, "complete")
        assistant = self._store.add_message(thread_id, "assistant", "", "pending")

        is_first = sum(1 for m in thread.messages if m.role == "assistant") == 1
        first_question = question if is_first else None
        context = self._begin(context)
        output = _Output()
        try:
            await self._store.save()
            parts = build_prompt(
                question,
                history,
                self._provider,
                self._settings,
                thread.context_settings,
                is_first_message=is_first,
            )
            await self._execute(
                parts,
                context,
                output,
                on_token,
                self._settings.active_profile(thread.context_settings),
            )

            answer = _finalize(output)
            response = answer.response
            if is_first:
                title, response = parse_thread_title(response)
                self._store.update_thread(
                    thread_id, name=title or generate_fallback_title(question)
                )

            self._store.update_message(
                thread_id,
                assistant.id,
                content=response,
                thinking=answer.thinking,
                reasoning_meta=answer.reasoning.meta(),
                status="complete",
            )
            await self._store.save()
            return GenerationResult(
                success=True,
                response=response,
                thinking=answer.thinking,
                reasoning=answer.reasoning,
                context=context,
            )
        except GenerationCancelled:
            return await self._finish_cancelled(
                thread_id, assistant.id, output, context, first_question
            )
        except Exception as exc:
            if context.cancelled:
                return await self._finish_cancelled(
                    thread_id, assistant.id, output, context, first_question
                )
            logger.exception("Generation failed in thread %s", thread_id)
            try:
                self._store.update_message(
                    thread_id, assistant.id, content="", status="failed", error=str(exc)
                )
            except ScratchPadError:
                logger.warning("Failed message %s no longer exists", assistant.id)
            await self._save_quietly()
            return GenerationResult(success=False, error=str(exc), context=context)
        finally:
            self._release(context)

    async def retry(
        self,
        thread_id: str,
        message_id: str,
        on_token: Optional[TokenCallback] = None,
    ) -> GenerationResult:
        """Discard a failed assistant message and its question, then ask again.

        Only ``failed`` assistant messages can be retried. Cancelled attempts
        are left alone; use ``regenerate_swipe`` to replace them.
        """
        thread = self._store.get_thread(thread_id)
        if thread is None:
            return GenerationResult(success=False, error="Thread not found")

        index = next((i for i, m in enumerate(thread.messages) if m.id == message_id), -1)
        if index == -1 or thread.messages[index].role != "assistant":
            return GenerationResult(success=False, error="Message not found")
        if thread.messages[index].status != "failed":
            return GenerationResult(success=False, error="Only failed messages can be retried")

        question = _preceding_user_message(thread.messages, index)
        if question is None or not question.content:
            return GenerationResult(success=False, error="Could not find original question")

        self._store.delete_message(thread_id, message_id)
        self._store.delete_message(thread_id, question.id)
        await self._save_quietly()

        return await self.generate(question.content, thread_id, on_token)

    async def regenerate_swipe(
        self,
        thread_id: str,
        message_id: str,
        on_token: Optional[TokenCallback] = None,
        *,
        context: Optional[GenerationContext] = None,
    ) -> GenerationResult:
        """Generate an alternate answer and store it as a new swipe of the message."""
        thread = self._store.get_thread(thread_id)
        if thread is None:
            return GenerationResult(success=False, error="Thread not found")

        index = next((i for i, m in enumerate(thread.messages) if m.id == message_id), -1)
        if index == -1 or thread.messages[index].role != "assistant":
            return GenerationResult(success=False, error="Message not found")
        message = thread.messages[index]

        question = _preceding_user_message(thread.messages, index)
        if question is None:
            return GenerationResult(success=False, error="Could not find original question")
        question_index = thread.messages.index(question)
        history = [m for m in thread.messages[:question_index] if m.status == "complete"]

        context = self._begin(context)
        output = _Output()
        try:
            parts = build_prompt(
                question.content,
                history,
                self._provider,
                self._settings,
                thread.context_settings,
            )
            await self._execute(
                parts,
                context,
                output,
                on_token,
                self._settings.active_profile(thread.context_settings),
            )
            answer = _finalize(output)

            if message.status == "complete":
                self._store.add_swipe(
                    thread_id,
                    message_id,
                    answer.response,
                    thinking=answer.thinking,
                    reasoning_meta=answer.reasoning.meta(),
                )
            else:
                self._store.update_message(
                    thread_id,
                    message_id,
                    content=answer.response,
                    thinking=answer.thinking,
                    reasoning_meta=answer.reasoning.meta(),
                    status="complete",
                    error=None,
                )
            await self._store.save()
            return GenerationResult(
                success=True,
                response=answer.response,
                thinking=answer.thinking,
                reasoning=answer.reasoning,
                context=context,
            )
        except GenerationCancelled:
            return GenerationResult(success=False, cancelled=True, context=context)
        except Exception as exc:
            if context.cancelled:
                return GenerationResult(success=False, cancelled=True, context=context)
            logger.exception("Swipe generation failed in thread %s", thread_id)
            return GenerationResult(success=False, error=str(exc), context=context)
        finally:
            self._release(context)

    async def generate_thread_title(self, thread_id: str) -> TitleResult:
        """Ask the model for a short title summarizing the thread so far."""
        thread = self._store.get_thread(thread_id)
        if thread is None or not thread.messages:
            return TitleResult(success=False, error="Thread has no messages")

        prompt = (
            "Based on the following conversation, suggest a brief, descriptive title "
            "(3-6 words maximum) that captures the main topic or question being discussed.\n\n"
            f"--- CONVERSATION ---\n{format_thread_history(thread.messages)}\n\n"
            "Respond with ONLY the title, nothing else. Do not use quotes or formatting."
        )
        try:
            async with self._profile(self._settings.active_profile(thread.context_settings)):
                result = await self._quiet(PromptParts(TITLE_SYSTEM_PROMPT, prompt))
        except Exception as exc:
            logger.exception("Title generation failed for thread %s", thread_id)
            return TitleResult(success=False, error=str(exc))
        return TitleResult(success=True, title=clean_ai_title(text_from_result(result)))
