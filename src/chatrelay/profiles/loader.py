"""Read tool permission profiles from YAML files."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Iterable, Iterator

import yaml
from pydantic import ValidationError

from .models import ToolProfile

logger = logging.getLogger(__name__)

PROFILE_SUFFIXES = (".yml", ".yaml")


class ProfileLoadError(RuntimeError):
    """Raised when profile files are unreadable, invalid or ambiguous."""


class ProfileLoader:
    """Collects :class:`ToolProfile` definitions from a list of directories.

    A file holds either a single profile mapping or a ``profiles:`` list. Ids
    must be unique within one directory; a later directory replaces profiles
    of an earlier one, which is how deployments override the bundled set.
    """

    def __init__(self, search_paths: Iterable[Path] | None = None) -> None:
        self._search_paths = [Path(path) for path in (search_paths or []) if Path(path).is_dir()]
        self._sources: dict[str, Path] = {}

    @property
    def search_paths(self) -> list[Path]:
        return list(self._search_paths)

    @property
    def sources(self) -> dict[str, Path]:
        """File each profile was last loaded from."""

        return dict(self._sources)

    def load_all(self) -> dict[str, ToolProfile]:
        profiles: dict[str, ToolProfile] = {}
        sources: dict[str, Path] = {}
        problems: list[str] = []

        for directory in self._search_paths:
            seen_here: dict[str, Path] = {}
            for path in _profile_files(directory):
                for entry in self._read_entries(path, problems):
                    try:
                        profile = ToolProfile.model_validate(entry)
                    except ValidationError as exc:
                        problems.append(f"{path}: {exc.error_count()} invalid field(s): {exc}")
                        continue
                    if profile.id in seen_here:
                        problems.append(
                            f"{path}: profile '{profile.id}' already defined in {seen_here[profile.id]}"
                        )
                        continue
                    seen_here[profile.id] = path
                    if profile.id in profiles:
                        logger.debug(
                            "Profile overridden",
                            extra={"profile": profile.id, "source": str(path)},
                        )
                    profiles[profile.id] = profile
                    sources[profile.id] = path

        if problems:
            raise ProfileLoadError("; ".join(problems))

        self._sources = sources
        return profiles

    def get(self, profile_id: str) -> ToolProfile:
        profiles = self.load_all()
        if profile_id not in profiles:
            known = ", ".join(sorted(profiles)) or "none"
            raise ProfileLoadError(f"Profile '{profile_id}' not found (available: {known})")
        return profiles[profile_id]

    def resolve(self, profile_id: str | None) -> ToolProfile | None:
        """Return the configured default profile, or ``None`` when none is set."""

        if not profile_id or not profile_id.strip():
            return None
        profile = self.get(profile_id.strip())
        logger.info(
            "Using tool profile",
            extra={"profile": profile.id, "source": str(self._sources.get(profile.id))},
        )
        return profile

    @staticmethod
    def _read_entries(path: Path, problems: list[str]) -> list[Any]:
        try:
            document = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError) as exc:
            problems.append(f"{path}: unreadable profile file: {exc}")
            return []
        if document is None:
            return []
        if isinstance(document, dict) and "profiles" in document:
            entries = document["profiles"]
            if not isinstance(entries, list):
                problems.append(f"{path}: 'profiles' must be a list")
                return []
            return entries
        return [document]


def _profile_files(directory: Path) -> Iterator[Path]:
    for path in sorted(directory.iterdir()):
        if path.is_file() and path.suffix in PROFILE_SUFFIXES:
            yield path


__all__ = ["ProfileLoadError", "ProfileLoader"]
