"""Scratch pad generation engine."""

from importlib.metadata import version

from .exceptions import (
    GenerationCancelled,
    MessageNotFoundError,
    ScratchPadError,
    ThreadNotFoundError,
    TransportError,
)
from .generation import GenerationContext, GenerationOrchestrator
from .host import (
    Character,
    ChatEntry,
    ProfileController,
    PromptContextProvider,
    QuietGenerator,
    StaticContext,
)
from .models import (
    GenerationResult,
    ReasoningCandidate,
    ReasoningMeta,
    StreamToken,
    TagParseResult,
    TitleResult,
)
from .reasoning import (
    extract_from_result,
    merge_candidates,
    normalize_reasoning_event,
    normalize_reasoning_meta,
    parse_inline_tags,
)
from .settings import CompletionSettings, ScratchPadSettings
from .storage import ThreadStore
from .streaming import CancellationToken, StreamTransport
from .threads import BranchView, ContextSettings, Thread, ThreadMessage

__version__ = version("scratchpad")

__all__ = [
    "GenerationOrchestrator",
    "GenerationContext",
    "CancellationToken",
    "StreamTransport",
    "ThreadStore",
    "ScratchPadError",
    "ThreadNotFoundError",
    "MessageNotFoundError",
    "TransportError",
    "GenerationCancelled",
    # Thread types
    "Thread",
    "ThreadMessage",
    "ContextSettings",
    "BranchView",
    # Settings
    "ScratchPadSettings",
    "CompletionSettings",
    # Host boundary
    "PromptContextProvider",
    "QuietGenerator",
    "ProfileController",
    "StaticContext",
    "ChatEntry",
    "Character",
    # Results
    "GenerationResult",
    "TitleResult",
    "StreamToken",
    # Reasoning
    "ReasoningMeta",
    "ReasoningCandidate",
    "TagParseResult",
    "parse_inline_tags",
    "extract_from_result",
    "merge_candidates",
    "normalize_reasoning_event",
    "normalize_reasoning_meta",
    "__version__",
]
