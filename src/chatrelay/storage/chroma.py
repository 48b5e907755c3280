"""Chroma-based persistence layer."""

from __future__ import annotations

import json
import uuid
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Protocol

from .models import MessageLogRecord, ProjectRecord, SessionRecord

SESSION_RECORD_TYPE = "session_record"
MESSAGE_EVENT_TYPE = "message"
PROJECT_EVENT_TYPE = "project_registered"


class ChromaUnavailableError(RuntimeError):
    """Raised when the Chroma client cannot be constructed."""


class CollectionProtocol(Protocol):
    """Protocol for the minimal Chroma collection API used by chatrelay."""

    def add(
        self,
        *,
        documents: Iterable[str],
        metadatas: Iterable[dict[str, Any]],
        ids: Iterable[str],
    ) -> None:
        ...

    def upsert(
        self,
        *,
        documents: Iterable[str],
        metadatas: Iterable[dict[str, Any]],
        ids: Iterable[str],
    ) -> None:
        ...

    def get(
        self,
        *,
        ids: Iterable[str] | None = None,
        where: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> dict[str, list[Any]]:
        ...


class ClientProtocol(Protocol):
    """Protocol for the minimal Chroma client API used by chatrelay."""

    def get_or_create_collection(self, name: str) -> CollectionProtocol:
        ...


@dataclass(slots=True)
class ChromaEvent:
    """Represents a stored event in Chroma."""

    id: str
    session_id: str
    event_type: str
    document: str
    metadata: dict[str, Any]
    timestamp: datetime


def _session_key(conversation_id: str) -> str:
    return f"session::{conversation_id}"


def _conversation_key(conversation_id: str) -> str:
    return f"conversation::{conversation_id}"


class ChromaStore:
    """Persist session records, the message log and the project catalog via ChromaDB.

    Session records are stored one per conversation under a stable id and
    replaced wholesale on every update, so each call is atomic on its own.
    Chroma metadata cannot hold ``None``; a missing process-session id is
    stored as an empty string.
    """

    def __init__(
        self,
        path: Path,
        *,
        collection_name: str = "chatrelay",
        client_factory: Callable[[], ClientProtocol] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._path = Path(path)
        self._collection_name = collection_name
        self._client_factory = client_factory or self._default_client_factory
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._client: ClientProtocol | None = None
        self._collection: CollectionProtocol | None = None
        self._counters: dict[str, int] = defaultdict(int)

    def _default_client_factory(self) -> ClientProtocol:
        try:
            import chromadb
        except ImportError as exc:  # pragma: no cover - depends on environment
            raise ChromaUnavailableError(
                "chromadb package is not installed; install chatrelay with persistence extras"
            ) from exc

        return chromadb.PersistentClient(path=str(self._path))

    def _ensure_collection(self) -> CollectionProtocol:
        if self._collection is None:
            client = self._client or self._client_factory()
            self._client = client
            self._collection = client.get_or_create_collection(self._collection_name)
        return self._collection

    def _convert_result(self, result: dict[str, list[Any]]) -> list[ChromaEvent]:
        events: list[ChromaEvent] = []
        ids = result.get("ids", [])
        documents = result.get("documents", [])
        metadatas = result.get("metadatas", [])
        for event_id, document, metadata in zip(ids, documents, metadatas):
            timestamp_raw = metadata.get("timestamp")
            timestamp = (
                datetime.fromisoformat(timestamp_raw)
                if isinstance(timestamp_raw, str)
                else self._clock()
            )
            events.append(
                ChromaEvent(
                    id=event_id,
                    session_id=metadata.get("session_id", ""),
                    event_type=metadata.get("event_type", ""),
                    document=document,
                    metadata=metadata,
                    timestamp=timestamp,
                )
            )
        events.sort(key=lambda event: (event.timestamp, event.metadata.get("sequence", 0)))
        return events

    def ping(self) -> bool:
        """Verify that the underlying collection can be obtained."""

        self._ensure_collection()
        return True

    # Event log

    def record_event(
        self,
        *,
        session_id: str,
        event_type: str,
        body: Any,
        metadata: dict[str, Any] | None = None,
    ) -> ChromaEvent:
        collection = self._ensure_collection()
        counter = self._counters[session_id] = self._counters[session_id] + 1
        event_id = f"{session_id}:{uuid.uuid4().hex}"
        timestamp = self._clock()

        document = body if isinstance(body, str) else json.dumps(body)
        record_metadata = {
            "session_id": session_id,
            "event_type": event_type,
            "timestamp": timestamp.isoformat(),
            "sequence": counter,
        }
        if metadata:
            record_metadata.update({key: value for key, value in metadata.items() if value is not None})

        collection.add(
            documents=[document],
            metadatas=[record_metadata],
            ids=[event_id],
        )

        return ChromaEvent(
            id=event_id,
            session_id=session_id,
            event_type=event_type,
            document=document,
            metadata=record_metadata,
            timestamp=timestamp,
        )

    def search_events(
        self,
        *,
        filters: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> list[ChromaEvent]:
        collection = self._ensure_collection()
        result = collection.get(where=filters, limit=limit)
        return self._convert_result(result)

    # Session records

    def _session_metadata(self, record: SessionRecord) -> dict[str, Any]:
        return {
            "session_id": _session_key(record.conversation_id),
            "event_type": SESSION_RECORD_TYPE,
            "conversation_id": record.conversation_id,
            "external_id": record.external_id,
            "session_type": record.session_type,
            "project_path": record.project_path,
            "owner_id": record.owner_id,
            "process_session_id": record.process_session_id or "",
            "created_at": record.created_at.isoformat(),
            "timestamp": record.last_activity.isoformat(),
            "is_active": record.is_active,
        }

    @staticmethod
    def _session_from_metadata(metadata: dict[str, Any]) -> SessionRecord:
        return SessionRecord(
            conversation_id=metadata["conversation_id"],
            external_id=metadata.get("external_id", ""),
            session_type=metadata.get("session_type", "private"),
            project_path=metadata.get("project_path", ""),
            owner_id=metadata.get("owner_id", ""),
            process_session_id=metadata.get("process_session_id") or None,
            created_at=datetime.fromisoformat(metadata["created_at"]),
            last_activity=datetime.fromisoformat(metadata["timestamp"]),
            is_active=bool(metadata.get("is_active", True)),
        )

    def _save_session(self, record: SessionRecord) -> SessionRecord:
        collection = self._ensure_collection()
        metadata = self._session_metadata(record)
        collection.upsert(
            documents=[json.dumps({key: value for key, value in metadata.items() if key != "event_type"})],
            metadatas=[metadata],
            ids=[_session_key(record.conversation_id)],
        )
        return record

    def get_session(self, conversation_id: str) -> SessionRecord | None:
        collection = self._ensure_collection()
        result = collection.get(ids=[_session_key(conversation_id)])
        metadatas = result.get("metadatas") or []
        if not metadatas:
            return None
        return self._session_from_metadata(metadatas[0])

    def create_session(
        self,
        *,
        conversation_id: str,
        external_id: str,
        session_type: str,
        project_path: str,
        owner_id: str,
        process_session_id: str | None = None,
    ) -> SessionRecord:
        timestamp = self._clock()
        record = SessionRecord(
            conversation_id=conversation_id,
            external_id=external_id,
            session_type=session_type,
            project_path=project_path,
            owner_id=owner_id,
            process_session_id=process_session_id,
            created_at=timestamp,
            last_activity=timestamp,
        )
        return self._save_session(record)

    def update_process_session_id(
        self, conversation_id: str, process_session_id: str | None
    ) -> SessionRecord | None:
        record = self.get_session(conversation_id)
        if record is None:
            return None
        record.process_session_id = process_session_id
        return self._save_session(record)

    def update_last_activity(self, conversation_id: str) -> SessionRecord | None:
        record = self.get_session(conversation_id)
        if record is None:
            return None
        record.last_activity = self._clock()
        return self._save_session(record)

    def deactivate_session(self, conversation_id: str) -> SessionRecord | None:
        record = self.get_session(conversation_id)
        if record is None:
            return None
        record.is_active = False
        record.process_session_id = None
        return self._save_session(record)

    def _all_sessions(self) -> list[SessionRecord]:
        collection = self._ensure_collection()
        result = collection.get(where={"event_type": SESSION_RECORD_TYPE})
        records = [self._session_from_metadata(metadata) for metadata in result.get("metadatas", [])]
        records.sort(key=lambda record: record.created_at)
        return records

    def list_sessions(self, owner_id: str, *, include_inactive: bool = False) -> list[SessionRecord]:
        return [
            record
            for record in self._all_sessions()
            if record.owner_id == owner_id and (include_inactive or record.is_active)
        ]

    def clear_all_process_session_ids(self) -> int:
        """Null out every stored process-session id; returns how many were set."""

        cleared = 0
        for record in self._all_sessions():
            if record.process_session_id is None:
                continue
            record.process_session_id = None
            self._save_session(record)
            cleared += 1
        return cleared

    # Message log

    def log_message(
        self,
        *,
        conversation_id: str,
        direction: str,
        message_type: str,
        content: str,
        message_id: str | None = None,
    ) -> MessageLogRecord:
        event = self.record_event(
            session_id=_conversation_key(conversation_id),
            event_type=MESSAGE_EVENT_TYPE,
            body=content,
            metadata={
                "conversation_id": conversation_id,
                "direction": direction,
                "message_type": message_type,
                "message_id": message_id,
            },
        )
        return MessageLogRecord(
            id=event.id,
            conversation_id=conversation_id,
            direction=direction,
            message_type=message_type,
            content=content,
            message_id=message_id,
            created_at=event.timestamp,
        )

    def has_message(self, message_id: str) -> bool:
        collection = self._ensure_collection()
        result = collection.get(where={"message_id": message_id}, limit=1)
        return bool(result.get("ids"))

    def fetch_messages(self, conversation_id: str, *, limit: int | None = None) -> list[MessageLogRecord]:
        events = self.search_events(filters={"session_id": _conversation_key(conversation_id)})
        records = [
            MessageLogRecord(
                id=event.id,
                conversation_id=conversation_id,
                direction=event.metadata.get("direction", ""),
                message_type=event.metadata.get("message_type", ""),
                content=event.document,
                message_id=event.metadata.get("message_id"),
                created_at=event.timestamp,
            )
            for event in events
            if event.event_type == MESSAGE_EVENT_TYPE
        ]
        return records[-limit:] if limit else records

    # Project catalog

    def register_project(
        self,
        *,
        conversation_id: str,
        path: str,
        display_name: str,
        metadata: dict[str, Any] | None = None,
    ) -> ProjectRecord:
        payload = {
            "conversation_id": conversation_id,
            "path": path,
            "display_name": display_name,
        }
        if metadata:
            payload.update(metadata)

        event = self.record_event(
            session_id=f"project::{conversation_id}",
            event_type=PROJECT_EVENT_TYPE,
            body=payload,
            metadata={"conversation_id": conversation_id, "path": path},
        )

        return ProjectRecord(
            conversation_id=conversation_id,
            path=path,
            display_name=display_name,
            created_at=event.timestamp,
            metadata=metadata or {},
        )

    def list_projects(self) -> list[ProjectRecord]:
        events = self.search_events(filters={"event_type": PROJECT_EVENT_TYPE})
        projects: list[ProjectRecord] = []
        for event in events:
            doc = json.loads(event.document)
            projects.append(
                ProjectRecord(
                    conversation_id=doc["conversation_id"],
                    path=doc["path"],
                    display_name=doc.get("display_name", ""),
                    created_at=event.timestamp,
                    metadata={
                        k: v
                        for k, v in doc.items()
                        if k not in {"conversation_id", "path", "display_name"}
                    },
                )
            )
        return projects


__all__ = ["ChromaEvent", "ChromaStore", "ChromaUnavailableError"]
