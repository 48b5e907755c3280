from __future__ import annotations

import argparse
import importlib.util
import json
from pathlib import Path

import pytest

from chatrelay.storage import ChromaStore, ChromaUnavailableError


def _load_diag(name: str):
    module_path = Path(__file__).resolve().parents[1] / "scripts" / "relay_diag.py"
    spec = importlib.util.spec_from_file_location(name, module_path)
    assert spec and spec.loader
    diag = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(diag)
    return diag


def _seed(store: ChromaStore) -> None:
    store.create_session(
        conversation_id="user-ou_1",
        external_id="ou_1",
        session_type="private",
        project_path="/work/user-ou_1",
        owner_id="default",
        process_session_id="sess-1",
    )
    store.create_session(
        conversation_id="group-oc_1",
        external_id="oc_1",
        session_type="group",
        project_path="/work/group-oc_1",
        owner_id="default",
    )
    store.deactivate_session("group-oc_1")
    store.log_message(conversation_id="user-ou_1", direction="incoming", message_type="text", content="hello")
    store.log_message(conversation_id="user-ou_1", direction="outgoing", message_type="text", content="hi there")


def test_diagnostics_cli_handles_missing_chroma(monkeypatch, capsys, tmp_path: Path) -> None:
    diag = _load_diag("relay_diag_missing_chroma")

    def unavailable():
        raise ChromaUnavailableError("chromadb package is not installed")

    monkeypatch.setattr(diag, "ChromaStore", lambda path: ChromaStore(path, client_factory=unavailable))
    monkeypatch.setenv("CHROMA_PERSIST_PATH", str(tmp_path / "chroma"))

    with pytest.raises(SystemExit) as excinfo:
        diag.main(["stats"])

    assert excinfo.value.code == 1
    assert "Chroma unavailable" in capsys.readouterr().out


def test_sessions_json_lists_active_sessions(monkeypatch, capsys, store) -> None:
    _seed(store)
    diag = _load_diag("relay_diag_sessions")
    monkeypatch.setattr(diag, "load_store", lambda _settings: store)

    diag.cmd_sessions(argparse.Namespace(owner=None, all=False, json=True))

    payload = json.loads(capsys.readouterr().out)
    assert [item["conversation_id"] for item in payload] == ["user-ou_1"]
    assert payload[0]["process_session_id"] == "sess-1"


def test_sessions_text_includes_disabled_with_all(monkeypatch, capsys, store) -> None:
    _seed(store)
    diag = _load_diag("relay_diag_sessions_all")
    monkeypatch.setattr(diag, "load_store", lambda _settings: store)

    diag.main(["sessions", "--all"])

    lines = capsys.readouterr().out.splitlines()
    assert lines == ["user-ou_1 [active] -> sess-1", "group-oc_1 [disabled] -> None"]


def test_messages_prints_transcript(monkeypatch, capsys, store) -> None:
    _seed(store)
    diag = _load_diag("relay_diag_messages")
    monkeypatch.setattr(diag, "load_store", lambda _settings: store)

    diag.main(["messages", "user-ou_1", "--limit", "1"])

    output = capsys.readouterr().out
    assert "hi there" in output
    assert "hello" not in output


def test_stats_and_reset_stale(monkeypatch, capsys, store) -> None:
    _seed(store)
    diag = _load_diag("relay_diag_stats")
    monkeypatch.setattr(diag, "load_store", lambda _settings: store)

    diag.cmd_stats(argparse.Namespace(owner=None))
    stats = json.loads(capsys.readouterr().out)
    assert stats == {
        "sessions_total": 2,
        "sessions_active": 1,
        "sessions_with_process_id": 1,
        "type_counts": {"private": 1, "group": 1},
    }

    diag.cmd_reset_stale(argparse.Namespace())
    assert capsys.readouterr().out.strip() == "Cleared 1 process session id(s)"
    assert store.get_session("user-ou_1").process_session_id is None


def test_projects_lists_catalog(monkeypatch, capsys, store) -> None:
    store.register_project(conversation_id="user-ou_1", path="/work/user-ou_1", display_name="Private chat ou_1")
    store.register_project(conversation_id="group-oc_1", path="/work/group-oc_1", display_name="Group chat oc_1")
    diag = _load_diag("relay_diag_projects")
    monkeypatch.setattr(diag, "load_store", lambda _settings: store)

    diag.main(["projects"])
    lines = capsys.readouterr().out.splitlines()
    assert sorted(lines) == [
        "group-oc_1\tGroup chat oc_1\t/work/group-oc_1",
        "user-ou_1\tPrivate chat ou_1\t/work/user-ou_1",
    ]

    diag.main(["projects", "--json"])
    payload = json.loads(capsys.readouterr().out)
    assert {item["conversation_id"] for item in payload} == {"user-ou_1", "group-oc_1"}
    assert all(item["path"].startswith("/work/") for item in payload)
