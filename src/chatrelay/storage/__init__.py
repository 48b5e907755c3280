"""Storage abstractions for chatrelay."""

from .chroma import ChromaEvent, ChromaStore, ChromaUnavailableError
from .models import MessageLogRecord, ProjectRecord, SessionRecord

__all__ = [
    "ChromaEvent",
    "ChromaStore",
    "ChromaUnavailableError",
    "MessageLogRecord",
    "ProjectRecord",
    "SessionRecord",
]
