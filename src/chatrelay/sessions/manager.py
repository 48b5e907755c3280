"""Conversation session management."""

from __future__ import annotations

import asyncio
import logging
import re
from pathlib import Path
from typing import Any, Protocol

from ..engine.registry import SessionRegistry
from ..storage.models import SessionRecord
from .identity import ConversationIdentity

logger = logging.getLogger(__name__)

_UNSAFE_PATH_CHARS = re.compile(r"[^A-Za-z0-9._-]")


class SessionStoreProtocol(Protocol):
    """Persisted-record operations the session manager relies on."""

    def get_session(self, conversation_id: str) -> SessionRecord | None:
        ...

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
        ...

    def update_process_session_id(
        self, conversation_id: str, process_session_id: str | None
    ) -> SessionRecord | None:
        ...

    def update_last_activity(self, conversation_id: str) -> SessionRecord | None:
        ...

    def clear_all_process_session_ids(self) -> int:
        ...

    def list_sessions(self, owner_id: str, *, include_inactive: bool = False) -> list[SessionRecord]:
        ...

    def deactivate_session(self, conversation_id: str) -> SessionRecord | None:
        ...


class ProjectCatalog(Protocol):
    """External catalog that provisioned working directories are announced to."""

    def register_project(self, *, conversation_id: str, path: str, display_name: str) -> Any:
        ...


def workspace_dirname(conversation_id: str) -> str:
    """Return a filesystem-safe directory name for a conversation."""

    name = _UNSAFE_PATH_CHARS.sub("_", conversation_id).strip(".")
    return name or "conversation"


class SessionManager:
    """Map conversations to persisted session records.

    The registry is the authority on liveness. A stored process-session id
    that the registry does not know about is stale (usually left over from a
    restart) and is cleared the next time the conversation is seen.
    """

    def __init__(
        self,
        store: SessionStoreProtocol,
        registry: SessionRegistry,
        *,
        owner_id: str,
        workspace_root: Path,
        catalog: ProjectCatalog | None = None,
        git_executable: str = "git",
    ) -> None:
        self._store = store
        self._registry = registry
        self._owner_id = owner_id
        self._workspace_root = Path(workspace_root)
        self._catalog = catalog
        self._git_executable = git_executable

    @property
    def owner_id(self) -> str:
        return self._owner_id

    @property
    def workspace_root(self) -> Path:
        return self._workspace_root

    def workspace_for(self, conversation_id: str) -> Path:
        return (self._workspace_root / workspace_dirname(conversation_id)).resolve()

    async def get_or_create_session(self, identity: ConversationIdentity) -> SessionRecord:
        record = self._store.get_session(identity.conversation_id)
        if record is not None:
            if record.process_session_id and not self._registry.is_active(record.process_session_id):
                logger.info(
                    "Cleared stale process session reference",
                    extra={
                        "conversation_id": record.conversation_id,
                        "process_session_id": record.process_session_id,
                    },
                )
                record.process_session_id = None
                self._store.update_process_session_id(record.conversation_id, None)
            self.touch(record)
            return record

        logger.info("Creating session", extra={"conversation_id": identity.conversation_id})
        workspace = self.workspace_for(identity.conversation_id)
        await self._ensure_directory(workspace)
        await self._init_git_repository(workspace)
        self._register_project(identity, workspace)

        record = self._store.create_session(
            conversation_id=identity.conversation_id,
            external_id=identity.external_id,
            session_type=identity.session_type,
            project_path=str(workspace),
            owner_id=self._owner_id,
        )
        logger.info(
            "Session created",
            extra={"conversation_id": record.conversation_id, "project_path": record.project_path},
        )
        return record

    def reset_stale_references(self) -> int:
        """Clear every stored process-session id.

        Only valid before any invocation has started: the registry is empty
        then, so every stored id is stale.
        """

        cleared = self._store.clear_all_process_session_ids()
        logger.info("Reset stored process session ids", extra={"cleared": cleared})
        return cleared

    def is_session_busy(self, record: SessionRecord | None) -> bool:
        if record is None or not record.process_session_id:
            return False
        return self._registry.is_active(record.process_session_id)

    def update_process_session_id(self, record: SessionRecord, process_session_id: str | None) -> None:
        record.process_session_id = process_session_id
        self._store.update_process_session_id(record.conversation_id, process_session_id)
        logger.info(
            "Updated process session id",
            extra={"conversation_id": record.conversation_id, "process_session_id": process_session_id},
        )

    def touch(self, record: SessionRecord) -> None:
        updated = self._store.update_last_activity(record.conversation_id)
        if updated is not None:
            record.last_activity = updated.last_activity

    def deactivate_session(self, conversation_id: str) -> SessionRecord | None:
        record = self._store.deactivate_session(conversation_id)
        if record is not None:
            logger.info("Deactivated session", extra={"conversation_id": conversation_id})
        return record

    def list_sessions(self, *, include_inactive: bool = False) -> list[SessionRecord]:
        return self._store.list_sessions(self._owner_id, include_inactive=include_inactive)

    def stats(self) -> dict[str, int]:
        records = self.list_sessions(include_inactive=True)
        return {
            "total": len(records),
            "active": sum(1 for record in records if record.is_active),
            "private": sum(1 for record in records if record.session_type == "private"),
            "group": sum(1 for record in records if record.session_type == "group"),
            "busy": sum(1 for record in records if self.is_session_busy(record)),
        }

    async def _ensure_directory(self, path: Path) -> None:
        await asyncio.to_thread(path.mkdir, parents=True, exist_ok=True)

    async def _run_git(self, path: Path, *args: str) -> tuple[int, str]:
        process = await asyncio.create_subprocess_exec(
            self._git_executable,
            *args,
            cwd=str(path),
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        _, stderr_bytes = await process.communicate()
        return process.returncode, stderr_bytes.decode("utf-8", errors="replace").strip()

    async def _init_git_repository(self, path: Path) -> bool:
        """Best-effort ``git init``; returns whether ``path`` is a repository afterwards."""

        try:
            returncode, _ = await self._run_git(path, "rev-parse", "--git-dir")
            if returncode == 0:
                logger.debug("Git repository already exists", extra={"path": str(path)})
                return True
            returncode, stderr = await self._run_git(path, "init")
        except OSError as exc:
            logger.warning("Git unavailable; skipping init", extra={"path": str(path), "error": str(exc)})
            return False
        if returncode != 0:
            logger.warning("Git init failed", extra={"path": str(path), "stderr": stderr})
            return False
        logger.info("Initialized git repository", extra={"path": str(path)})
        return True

    def _register_project(self, identity: ConversationIdentity, path: Path) -> None:
        if self._catalog is None:
            return
        try:
            self._catalog.register_project(
                conversation_id=identity.conversation_id,
                path=str(path),
                display_name=identity.display_name,
            )
        except Exception as exc:
            logger.warning(
                "Failed to register project",
                extra={"conversation_id": identity.conversation_id, "error": str(exc)},
            )


__all__ = ["ProjectCatalog", "SessionManager", "SessionStoreProtocol", "workspace_dirname"]
