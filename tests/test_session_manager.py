from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from chatrelay.engine.registry import ProcessHandle, SessionRegistry
from chatrelay.sessions import ConversationIdentity, InvalidConversationError, SessionManager
from chatrelay.sessions.manager import workspace_dirname


class RecordingCatalog:
    def __init__(self, *, fail: bool = False) -> None:
        self.projects: list[dict[str, str]] = []
        self._fail = fail

    def register_project(self, *, conversation_id: str, path: str, display_name: str) -> None:
        if self._fail:
            raise RuntimeError("catalog offline")
        self.projects.append({"conversation_id": conversation_id, "path": path, "display_name": display_name})


def _manager(store, registry, tmp_path: Path, **kwargs) -> SessionManager:
    kwargs.setdefault("git_executable", str(tmp_path / "no-such-git"))
    return SessionManager(
        store,
        registry,
        owner_id="owner-1",
        workspace_root=tmp_path / "workspaces",
        **kwargs,
    )


def test_identity_from_chat() -> None:
    private = ConversationIdentity.from_chat("p2p", chat_id="oc_1", sender_id="ou_42")
    assert private.conversation_id == "user-ou_42"
    assert private.external_id == "ou_42"
    assert private.session_type == "private"

    group = ConversationIdentity.from_chat("group", chat_id="oc_1", sender_id="ou_42")
    assert group.conversation_id == "group-oc_1"
    assert group.external_id == "oc_1"
    assert group.session_type == "group"

    with pytest.raises(InvalidConversationError):
        ConversationIdentity.from_chat("p2p", chat_id="oc_1")
    with pytest.raises(InvalidConversationError):
        ConversationIdentity.from_chat("channel", chat_id="oc_1")


def test_workspace_dirname_is_filesystem_safe() -> None:
    assert workspace_dirname("group-oc_1") == "group-oc_1"
    assert workspace_dirname("user-../../etc") == "user-.._.._etc"
    assert workspace_dirname("..") == "conversation"


def test_creates_session_with_workspace_and_git(store, tmp_path: Path, write_script) -> None:
    log = tmp_path / "git.log"
    git = write_script(
        "git",
        f'if [ "$1" = "rev-parse" ]; then exit 128; fi\necho "$@" >> "{log}"\nexit 0\n',
    )
    catalog = RecordingCatalog()
    manager = _manager(store, SessionRegistry(), tmp_path, catalog=catalog, git_executable=str(git))
    identity = ConversationIdentity.from_chat("group", chat_id="oc_1")

    record = asyncio.run(manager.get_or_create_session(identity))

    workspace = Path(record.project_path)
    assert workspace.is_dir()
    assert workspace.name == "group-oc_1"
    assert record.process_session_id is None
    assert record.owner_id == "owner-1"
    assert record.session_type == "group"
    assert log.read_text(encoding="utf-8").strip() == "init"
    assert catalog.projects == [
        {"conversation_id": "group-oc_1", "path": str(workspace), "display_name": "Group chat oc_1"}
    ]
    assert store.get_session("group-oc_1") is not None


def test_existing_repository_is_not_reinitialised(store, tmp_path: Path, write_script) -> None:
    log = tmp_path / "git.log"
    git = write_script("git", f'echo "$@" >> "{log}"\nexit 0\n')
    manager = _manager(store, SessionRegistry(), tmp_path, git_executable=str(git))

    asyncio.run(manager.get_or_create_session(ConversationIdentity.from_chat("p2p", sender_id="ou_1")))

    assert log.read_text(encoding="utf-8").splitlines() == ["rev-parse --git-dir"]


def test_provisioning_failures_are_not_fatal(store, tmp_path: Path) -> None:
    manager = _manager(store, SessionRegistry(), tmp_path, catalog=RecordingCatalog(fail=True))

    record = asyncio.run(manager.get_or_create_session(ConversationIdentity.from_chat("p2p", sender_id="ou_1")))

    assert record.conversation_id == "user-ou_1"
    assert Path(record.project_path).is_dir()


def test_stale_reference_is_cleared(store, tmp_path: Path) -> None:
    registry = SessionRegistry()
    manager = _manager(store, registry, tmp_path)
    identity = ConversationIdentity.from_chat("p2p", sender_id="ou_1")
    record = asyncio.run(manager.get_or_create_session(identity))
    manager.update_process_session_id(record, "sess-dead")

    again = asyncio.run(manager.get_or_create_session(identity))

    assert again.process_session_id is None
    assert store.get_session("user-ou_1").process_session_id is None
    assert not manager.is_session_busy(again)


def test_live_reference_is_kept(store, tmp_path: Path) -> None:
    registry = SessionRegistry()
    manager = _manager(store, registry, tmp_path)
    identity = ConversationIdentity.from_chat("p2p", sender_id="ou_1")
    record = asyncio.run(manager.get_or_create_session(identity))
    manager.update_process_session_id(record, "sess-live")
    registry.register(ProcessHandle(key="sess-live", args=()))

    again = asyncio.run(manager.get_or_create_session(identity))

    assert again.process_session_id == "sess-live"
    assert manager.is_session_busy(again)
    assert again.last_activity > record.created_at


def test_reset_stale_references(store, tmp_path: Path) -> None:
    manager = _manager(store, SessionRegistry(), tmp_path)
    for sender in ("ou_1", "ou_2", "ou_3"):
        record = asyncio.run(manager.get_or_create_session(ConversationIdentity.from_chat("p2p", sender_id=sender)))
        if sender != "ou_3":
            manager.update_process_session_id(record, f"sess-{sender}")

    assert manager.reset_stale_references() == 2
    assert all(record.process_session_id is None for record in manager.list_sessions())
    assert manager.reset_stale_references() == 0


def test_deactivate_and_stats(store, tmp_path: Path) -> None:
    manager = _manager(store, SessionRegistry(), tmp_path)
    asyncio.run(manager.get_or_create_session(ConversationIdentity.from_chat("p2p", sender_id="ou_1")))
    asyncio.run(manager.get_or_create_session(ConversationIdentity.from_chat("group", chat_id="oc_1")))

    deactivated = manager.deactivate_session("group-oc_1")

    assert deactivated is not None and not deactivated.is_active
    assert manager.deactivate_session("group-missing") is None
    assert [record.conversation_id for record in manager.list_sessions()] == ["user-ou_1"]
    assert manager.stats() == {"total": 2, "active": 1, "private": 1, "group": 1, "busy": 0}
