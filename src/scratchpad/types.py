from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, Literal, Mapping, Union

import httpx

JSONDict = Dict[str, Any]

Role = Literal["user", "assistant"]
MessageStatus = Literal["pending", "complete", "failed", "cancelled"]
ReasoningState = Literal["none", "visible", "hidden"]
ReasoningSource = Literal["stream", "result", "tag_parse", "legacy"]
HistoryMode = Literal["all", "start_to", "from_to_end", "between"]

ResponseHook = Callable[[httpx.Response], None]
# on_token(accumulated_text, accumulated_reasoning, done)
TokenCallback = Callable[[str, str, bool], None]
PersistHook = Callable[[JSONDict], Awaitable[None]]
QuietResult = Union[str, Mapping[str, Any]]
