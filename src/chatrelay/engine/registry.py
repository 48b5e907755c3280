"""In-memory registry of live Claude CLI processes."""

from __future__ import annotations

import asyncio
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone

STATUS_STARTING = "starting"
STATUS_RUNNING = "running"
STATUS_ABORTING = "aborting"
STATUS_EXITED = "exited"


class SessionAlreadyActiveError(RuntimeError):
    """Raised when a key already has a live process registered."""

    def __init__(self, key: str) -> None:
        super().__init__(f"A Claude process is already active for session '{key}'")
        self.key = key


@dataclass(slots=True, eq=False)
class ProcessHandle:
    """A spawned (or spawning) CLI process.

    ``process`` is ``None`` between registration and the end of the spawn call.
    """

    key: str
    args: tuple[str, ...]
    process: asyncio.subprocess.Process | None = None
    status: str = STATUS_STARTING
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def pid(self) -> int | None:
        return self.process.pid if self.process is not None else None

    def attach(self, process: asyncio.subprocess.Process) -> None:
        self.process = process
        if self.status == STATUS_STARTING:
            self.status = STATUS_RUNNING


class SessionRegistry:
    """Process-lifetime map from process-session key to :class:`ProcessHandle`.

    Every mutation happens under one lock, so readers never see a rekey
    half-applied. The registry is empty after a restart by construction.
    """

    def __init__(self) -> None:
        self._handles: dict[str, ProcessHandle] = {}
        self._lock = threading.Lock()

    def register(self, handle: ProcessHandle) -> None:
        with self._lock:
            if handle.key in self._handles:
                raise SessionAlreadyActiveError(handle.key)
            self._handles[handle.key] = handle

    def rekey(self, old_key: str, new_key: str) -> bool:
        """Move a handle to ``new_key``.

        Returns ``False`` when ``old_key`` is no longer registered (for example
        after an abort). Raises :class:`SessionAlreadyActiveError` when another
        handle already owns ``new_key``.
        """

        with self._lock:
            handle = self._handles.get(old_key)
            if handle is None:
                return False
            if old_key == new_key:
                return True
            existing = self._handles.get(new_key)
            if existing is not None and existing is not handle:
                raise SessionAlreadyActiveError(new_key)
            del self._handles[old_key]
            handle.key = new_key
            self._handles[new_key] = handle
            return True

    def unregister(self, key: str, handle: ProcessHandle | None = None) -> ProcessHandle | None:
        """Remove ``key``; with ``handle`` given, only if it is still the owner."""

        with self._lock:
            current = self._handles.get(key)
            if current is None:
                return None
            if handle is not None and current is not handle:
                return None
            return self._handles.pop(key)

    def get(self, key: str) -> ProcessHandle | None:
        with self._lock:
            return self._handles.get(key)

    def is_active(self, key: str | None) -> bool:
        if not key:
            return False
        with self._lock:
            return key in self._handles

    def list_active(self) -> list[str]:
        with self._lock:
            return list(self._handles)

    def clear(self) -> None:
        with self._lock:
            self._handles.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._handles)


__all__ = [
    "ProcessHandle",
    "SessionAlreadyActiveError",
    "SessionRegistry",
    "STATUS_ABORTING",
    "STATUS_EXITED",
    "STATUS_RUNNING",
    "STATUS_STARTING",
]
