"""Data models for persistent tracking."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass(slots=True)
class SessionRecord:
    conversation_id: str
    external_id: str
    session_type: str
    project_path: str
    owner_id: str
    process_session_id: str | None
    created_at: datetime
    last_activity: datetime
    is_active: bool = True


@dataclass(slots=True)
class MessageLogRecord:
    id: str
    conversation_id: str
    direction: str
    message_type: str
    content: str
    message_id: str | None
    created_at: datetime


@dataclass(slots=True)
class ProjectRecord:
    conversation_id: str
    path: str
    display_name: str
    created_at: datetime
    metadata: dict[str, Any] = field(default_factory=dict)


__all__ = ["MessageLogRecord", "ProjectRecord", "SessionRecord"]
