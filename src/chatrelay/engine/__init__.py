"""Claude CLI process orchestration."""

from .events import ContentEvent, ErrorEvent, InitEvent, RawEvent, ResultEvent, StreamEvent, parse_line
from .registry import ProcessHandle, SessionAlreadyActiveError, SessionRegistry
from .runner import (
    ClaudeExitError,
    ClaudeNotFoundError,
    ClaudeRunner,
    ClaudeRunnerError,
    ClaudeSpawnError,
    EventSink,
    InvocationOptions,
    InvocationResult,
    PROVISIONAL_PREFIX,
    iter_lines,
)

__all__ = [
    "ClaudeExitError",
    "ClaudeNotFoundError",
    "ClaudeRunner",
    "ClaudeRunnerError",
    "ClaudeSpawnError",
    "ContentEvent",
    "ErrorEvent",
    "EventSink",
    "InitEvent",
    "InvocationOptions",
    "InvocationResult",
    "PROVISIONAL_PREFIX",
    "ProcessHandle",
    "RawEvent",
    "ResultEvent",
    "SessionAlreadyActiveError",
    "SessionRegistry",
    "StreamEvent",
    "iter_lines",
    "parse_line",
]
