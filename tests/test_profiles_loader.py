from pathlib import Path
import textwrap

import pytest

from chatrelay.profiles import ProfileLoadError, ProfileLoader, ToolProfile


def write_profile(path: Path, *, title: str, mode: str = "plan") -> None:
    path.write_text(
        textwrap.dedent(
            """
            id: sample
            title: {title}
            permission_mode: {mode}
            allowed_tools:
              - Read
              - Grep
            disallowed_tools: Bash, Write
            model: sonnet
            """
        ).strip().format(title=title, mode=mode),
        encoding="utf-8",
    )


def test_loader_merges_paths(tmp_path: Path) -> None:
    base = tmp_path / "base"
    base.mkdir()
    override = tmp_path / "override"
    override.mkdir()

    write_profile(base / "sample.yaml", title="Base Title")
    write_profile(override / "sample.yml", title="Override Title")

    loader = ProfileLoader([base, override])
    profiles = loader.load_all()

    assert profiles["sample"].title == "Override Title"
    assert profiles["sample"].allowed_tools == ["Read", "Grep"]
    assert profiles["sample"].disallowed_tools == ["Bash", "Write"]


def test_loader_handles_missing_profiles(tmp_path: Path) -> None:
    loader = ProfileLoader([tmp_path, tmp_path / "missing"])
    assert loader.load_all() == {}
    assert loader.search_paths == [tmp_path]


def test_loader_reports_validation_error(tmp_path: Path) -> None:
    invalid = tmp_path / "invalid"
    invalid.mkdir()
    write_profile(invalid / "broken.yaml", title="Broken", mode="yolo")

    loader = ProfileLoader([invalid])

    with pytest.raises(ProfileLoadError):
        loader.load_all()


def test_get_unknown_profile(tmp_path: Path) -> None:
    write_profile(tmp_path / "sample.yaml", title="Sample")
    loader = ProfileLoader([tmp_path])

    assert loader.get("sample").model == "sonnet"
    with pytest.raises(ProfileLoadError):
        loader.get("other")


def test_bundled_profiles_are_valid() -> None:
    profiles_dir = Path(__file__).resolve().parents[1] / "profiles"
    profiles = ProfileLoader([profiles_dir]).load_all()

    assert set(profiles) == {"chat-bot", "read-only"}
    assert profiles["read-only"].permission_mode == "plan"
    assert profiles["chat-bot"].skip_permissions


def test_profile_defaults() -> None:
    profile = ToolProfile(id=" custom ")
    assert profile.id == "custom"
    assert profile.permission_mode == "default"
    assert profile.allowed_tools == []
    assert not profile.skip_permissions


def test_profile_rejects_tools_both_allowed_and_disallowed(tmp_path: Path) -> None:
    (tmp_path / "conflict.yml").write_text(
        "id: conflict\nallowed_tools: [Read, Bash]\ndisallowed_tools: Bash\n",
        encoding="utf-8",
    )

    with pytest.raises(ProfileLoadError, match="Bash"):
        ProfileLoader([tmp_path]).load_all()


def test_multi_profile_file_and_sources(tmp_path: Path) -> None:
    bundle = tmp_path / "bundle.yaml"
    bundle.write_text(
        textwrap.dedent(
            """
            profiles:
              - id: reviewer
                permission_mode: plan
              - id: writer
                allowed_tools: Edit, Write
            """
        ),
        encoding="utf-8",
    )

    loader = ProfileLoader([tmp_path])
    profiles = loader.load_all()

    assert sorted(profiles) == ["reviewer", "writer"]
    assert profiles["writer"].allowed_tools == ["Edit", "Write"]
    assert loader.sources == {"reviewer": bundle, "writer": bundle}


def test_duplicate_id_in_one_directory_is_rejected(tmp_path: Path) -> None:
    write_profile(tmp_path / "a.yml", title="First")
    write_profile(tmp_path / "b.yml", title="Second")

    with pytest.raises(ProfileLoadError, match="already defined"):
        ProfileLoader([tmp_path]).load_all()


def test_resolve_default_profile(tmp_path: Path) -> None:
    write_profile(tmp_path / "sample.yml", title="Sample")
    loader = ProfileLoader([tmp_path])

    assert loader.resolve(None) is None
    assert loader.resolve("  ") is None
    assert loader.resolve(" sample ").title == "Sample"
    with pytest.raises(ProfileLoadError, match="available: sample"):
        loader.resolve("missing")
