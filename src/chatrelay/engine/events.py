"""Typed events parsed from the Claude CLI stream-json output."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any


@dataclass(slots=True, frozen=True)
class InitEvent:
    """``system``/``init`` record announcing the process-session id."""

    session_id: str | None
    model: str | None = None
    cwd: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class ContentEvent:
    """Assistant text, either a full message or a streamed delta."""

    text: str
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class ResultEvent:
    """Final ``result`` record of an invocation."""

    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def is_error(self) -> bool:
        return bool(self.payload.get("is_error"))


@dataclass(slots=True, frozen=True)
class ErrorEvent:
    """A line written by the CLI to stderr."""

    message: str


@dataclass(slots=True, frozen=True)
class RawEvent:
    """Anything else.

    ``payload`` holds the decoded record when the line was JSON of an
    unclassified type and is ``None`` when the line could not be decoded.
    """

    text: str
    payload: dict[str, Any] | None = None


StreamEvent = InitEvent | ContentEvent | ResultEvent | ErrorEvent | RawEvent

_ASSISTANT_TYPES = {"assistant", "assistant_message"}
_DELTA_TYPES = {"content_block_delta", "text_delta"}


def _assistant_text(record: dict[str, Any]) -> str | None:
    message = record.get("message")
    if isinstance(message, dict) and isinstance(message.get("content"), list):
        parts = [
            block["text"]
            for block in message["content"]
            if isinstance(block, dict) and block.get("type") == "text" and block.get("text")
        ]
        return "".join(parts) if parts else None
    text = record.get("text")
    return text if isinstance(text, str) and text else None


def _delta_text(record: dict[str, Any]) -> str | None:
    delta = record.get("delta")
    if isinstance(delta, dict) and isinstance(delta.get("text"), str) and delta["text"]:
        return delta["text"]
    text = record.get("text")
    return text if isinstance(text, str) and text else None


def classify_record(record: dict[str, Any], line: str) -> StreamEvent:
    """Map a decoded stream-json record onto a :data:`StreamEvent`."""

    record_type = record.get("type")
    if record_type == "system" and record.get("subtype") == "init":
        session_id = record.get("session_id")
        return InitEvent(
            session_id=session_id if isinstance(session_id, str) and session_id else None,
            model=record.get("model"),
            cwd=record.get("cwd"),
            payload=record,
        )
    if record_type in _ASSISTANT_TYPES:
        text = _assistant_text(record)
        if text is not None:
            return ContentEvent(text=text, payload=record)
    elif record_type in _DELTA_TYPES:
        text = _delta_text(record)
        if text is not None:
            return ContentEvent(text=text, payload=record)
    elif record_type == "result":
        return ResultEvent(payload=record)
    return RawEvent(text=line, payload=record)


def parse_line(line: str) -> StreamEvent | None:
    """Parse one stdout line. Blank lines yield ``None``; nothing raises."""

    stripped = line.strip()
    if not stripped:
        return None
    try:
        record = json.loads(stripped)
    except ValueError:
        return RawEvent(text=stripped)
    if not isinstance(record, dict):
        return RawEvent(text=stripped)
    return classify_record(record, stripped)


__all__ = [
    "ContentEvent",
    "ErrorEvent",
    "InitEvent",
    "RawEvent",
    "ResultEvent",
    "StreamEvent",
    "classify_record",
    "parse_line",
]
