from __future__ import annotations

import json
import logging
from types import TracebackType
from typing import Any, AsyncIterable, AsyncIterator, Callable, Dict, List, Optional

import httpx

from .backends import Extractor, build_request_body, get_backend
from .config import DEFAULT_API_KEY, DEFAULT_BASE_URL, DEFAULT_TIMEOUT, GENERATE_PATH
from .exceptions import GenerationCancelled, TransportError
from .models import StreamToken
from .settings import CompletionSettings
from .types import JSONDict, ResponseHook
from .utils import extract_error_message

logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"


def _headers(api_key: str, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    headers = {"Content-Type": "application/json"}
    if api_key:
        headers["Authorization"] = f"Bearer {api_key}"
    if extra:
        headers.update(extra)
    return headers


class CancellationToken:
    """Caller-held signal used to abort a generation."""

    def __init__(self) -> None:
        self._cancelled = False
        self._callbacks: List[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        for callback in self._callbacks:
            callback()

    def add_callback(self, callback: Callable[[], None]) -> None:
        self._callbacks.append(callback)

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise GenerationCancelled()


class SSEDecoder:
    """Incremental server-sent-events decoder.

    Text is buffered across reads and split on blank-line event boundaries.
    ``data: [DONE]`` sets :attr:`done`; payloads that are not valid JSON
    objects are skipped.
    """

    def __init__(self) -> None:
        self._buffer = ""
        self.done = False

    def feed(self, text: str) -> List[JSONDict]:
        if self.done:
            return []
        self._buffer = (self._buffer + text).replace("\r\n", "\n")
        *events, self._buffer = self._buffer.split("\n\n")
        return self._parse(events)

    def flush(self) -> List[JSONDict]:
        """Parse whatever is left once the body ends without a trailing blank line."""
        rest, self._buffer = self._buffer, ""
        if self.done or not rest.strip():
            return []
        return self._parse([rest])

    def _parse(self, events: List[str]) -> List[JSONDict]:
        payloads: List[JSONDict] = []
        for event in events:
            for line in event.split("\n"):
                if not line.startswith("data:"):
                    continue
                data = line[5:].strip()
                if data == DONE_SENTINEL:
                    self.done = True
                    return payloads
                try:
                    parsed = json.loads(data)
                except ValueError:
                    logger.debug("Skipping malformed SSE payload: %.80s", data)
                    continue
                if isinstance(parsed, dict):
                    payloads.append(parsed)
        return payloads


async def iter_sse_tokens(
    chunks: AsyncIterable[str],
    extract: Extractor,
    cancel: Optional[CancellationToken] = None,
) -> AsyncIterator[StreamToken]:
    """Decode text chunks into tokens until ``[DONE]`` or the end of input."""
    decoder = SSEDecoder()
    async for chunk in chunks:
        if cancel is not None:
            cancel.raise_if_cancelled()
        for payload in decoder.feed(chunk):
            token = extract(payload)
            if token.text or token.reasoning:
                yield token
        if decoder.done:
            return

    for payload in decoder.flush():
        token = extract(payload)
        if token.text or token.reasoning:
            yield token


class StreamTransport:
    """Async client for the host's chat-completions generate endpoint."""

    def __init__(
        self,
        api_key: str = DEFAULT_API_KEY,
        *,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT,
        headers: Optional[Dict[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        response_hook: Optional[ResponseHook] = None,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._extra_headers = headers
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)
        self._response_hook = response_hook

    async def __aenter__(self) -> "StreamTransport":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    @property
    def url(self) -> str:
        return f"{self._base_url}{GENERATE_PATH}"

    async def stream(
        self,
        messages: List[JSONDict],
        settings: CompletionSettings,
        *,
        model: Optional[str] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> AsyncIterator[StreamToken]:
        """Yield ``StreamToken`` deltas for one streamed completion.

        Raises ``TransportError`` on a non-success status or network failure
        and ``GenerationCancelled`` once ``cancel`` is signalled.
        """
        if cancel is not None:
            cancel.raise_if_cancelled()

        body = build_request_body(messages, settings, model)
        extract = get_backend(settings.source).extract
        try:
            async with self._client.stream(
                "POST",
                self.url,
                json=body,
                headers=_headers(self._api_key, self._extra_headers),
                timeout=self._timeout,
            ) as response:
                if self._response_hook:
                    self._response_hook(response)
                if response.is_error:
                    await response.aread()
                    raise TransportError(
                        extract_error_message(response), status_code=response.status_code
                    )
                async for token in iter_sse_tokens(response.aiter_text(), extract, cancel):
                    yield token
        except httpx.TimeoutException as exc:
            raise TransportError("Request timeout") from exc
        except httpx.HTTPError as exc:
            raise TransportError(f"Network error: {exc}") from exc

    async def complete(
        self,
        messages: List[JSONDict],
        settings: CompletionSettings,
        *,
        model: Optional[str] = None,
    ) -> Any:
        """Run one non-streaming completion and return the provider's JSON result."""
        body = build_request_body(messages, settings, model, stream=False)
        try:
            response = await self._client.post(
                self.url,
                json=body,
                headers=_headers(self._api_key, self._extra_headers),
                timeout=self._timeout,
            )
            if self._response_hook:
                self._response_hook(response)
            response.raise_for_status()
            return response.json()
        except httpx.TimeoutException as exc:
            raise TransportError("Request timeout") from exc
        except httpx.HTTPStatusError as exc:
            message = extract_error_message(exc.response, "Completion request failed")
            raise TransportError(message, status_code=exc.response.status_code) from exc
        except httpx.HTTPError as exc:
            raise TransportError(f"Network error: {exc}") from exc
