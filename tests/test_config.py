from __future__ import annotations

import os
from pathlib import Path

import pytest
from pydantic import ValidationError

from chatrelay.config import RelaySettings


def test_defaults() -> None:
    settings = RelaySettings()

    assert settings.flush_threshold == 2000
    assert settings.flush_interval == 3.0
    assert settings.chunk_size == 5000
    assert settings.chunk_delay == 0.5
    assert settings.auth_token_env == "CLAUDECODE_TOKEN"
    assert settings.log_level == "INFO"


def test_environment_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RELAY_FLUSH_THRESHOLD", "500")
    monkeypatch.setenv("RELAY_LOG_LEVEL", "debug")
    monkeypatch.setenv("RELAY_ACK_MESSAGE", "  ")
    monkeypatch.setenv("CLAUDE_DEFAULT_MODEL", "sonnet")

    settings = RelaySettings()

    assert settings.flush_threshold == 500
    assert settings.log_level == "DEBUG"
    assert settings.ack_message is None
    assert settings.claude_default_model == "sonnet"


def test_profile_paths_accept_path_separated_string() -> None:
    settings = RelaySettings(RELAY_PROFILE_PATHS=f"a{os.pathsep}b")
    assert settings.profile_paths == (Path("a"), Path("b"))


@pytest.mark.parametrize(
    "overrides",
    [
        {"RELAY_LOG_LEVEL": "LOUD"},
        {"RELAY_CHUNK_SIZE": 0},
        {"RELAY_FLUSH_INTERVAL": -1},
    ],
)
def test_invalid_values_are_rejected(overrides) -> None:
    with pytest.raises(ValidationError):
        RelaySettings(**overrides)


def test_profile_paths_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RELAY_PROFILE_PATHS", f"one{os.pathsep}two")

    assert RelaySettings().profile_paths == (Path("one"), Path("two"))
