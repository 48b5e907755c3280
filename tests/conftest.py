from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable

import pytest

from chatrelay.storage import ChromaStore


@dataclass
class _Record:
    document: str
    metadata: dict[str, Any]
    id: str


class StubCollection:
    def __init__(self) -> None:
        self.records: dict[str, _Record] = {}

    def add(self, *, documents, metadatas, ids) -> None:  # type: ignore[override]
        for document, metadata, record_id in zip(documents, metadatas, ids):
            if record_id in self.records:
                raise ValueError(f"duplicate id {record_id}")
            self.records[record_id] = _Record(document=document, metadata=dict(metadata), id=record_id)

    def upsert(self, *, documents, metadatas, ids) -> None:  # type: ignore[override]
        for document, metadata, record_id in zip(documents, metadatas, ids):
            self.records[record_id] = _Record(document=document, metadata=dict(metadata), id=record_id)

    def get(self, *, ids=None, where=None, limit=None):  # type: ignore[override]
        if ids is not None:
            filtered = [self.records[record_id] for record_id in ids if record_id in self.records]
        else:
            filtered = list(self.records.values())
        if where:
            for key, value in where.items():
                filtered = [record for record in filtered if record.metadata.get(key) == value]
        if limit is not None:
            filtered = filtered[:limit]
        return {
            "ids": [record.id for record in filtered],
            "documents": [record.document for record in filtered],
            "metadatas": [dict(record.metadata) for record in filtered],
        }


class StubClient:
    def __init__(self) -> None:
        self.collections = defaultdict(StubCollection)

    def get_or_create_collection(self, name: str) -> StubCollection:
        return self.collections[name]


class TickingClock:
    """Returns a strictly increasing UTC timestamp on every call."""

    def __init__(self, start: str = "2025-01-01T00:00:00+00:00") -> None:
        self.now = datetime.fromisoformat(start)

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


@pytest.fixture
def stub_client() -> StubClient:
    return StubClient()


@pytest.fixture
def store(tmp_path: Path, stub_client: StubClient) -> ChromaStore:
    return ChromaStore(tmp_path / "chroma", client_factory=lambda: stub_client, clock=TickingClock())


@pytest.fixture
def write_script(tmp_path: Path) -> Callable[[str, str], Path]:
    """Write an executable ``/bin/sh`` script into ``tmp_path``."""

    def _write(name: str, body: str) -> Path:
        script = tmp_path / name
        script.write_text("#!/bin/sh\n" + body, encoding="utf-8")
        script.chmod(0o755)
        return script

    return _write

