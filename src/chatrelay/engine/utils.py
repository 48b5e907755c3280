"""Utility helpers for the Claude runner."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Mapping

logger = logging.getLogger(__name__)

_SANITIZED_VARS = {
    "PYTHONHOME",
    "PYTHONPATH",
    "VIRTUAL_ENV",
    "PIP_RESPECT_VIRTUALENV",
}

SCRATCH_PATTERN = "claude-*-cwd"


def sanitize_environment(additional: Mapping[str, str] | None = None) -> dict[str, str]:
    """Return a sanitized environment suitable for subprocess execution."""

    env = dict(os.environ)
    for key in _SANITIZED_VARS:
        env.pop(key, None)
    if additional:
        env.update(additional)
    return env


def load_auth_token(config_path: Path | None) -> str | None:
    """Read ``{"token": ...}`` from the CLI auth config, if there is one."""

    if config_path is None:
        return None
    try:
        document = json.loads(Path(config_path).read_text(encoding="utf-8"))
    except FileNotFoundError:
        logger.info("No auth token config found", extra={"path": str(config_path)})
        return None
    except (OSError, ValueError) as exc:
        logger.warning(
            "Unreadable auth token config",
            extra={"path": str(config_path), "error": str(exc)},
        )
        return None
    token = document.get("token") if isinstance(document, dict) else None
    return token if isinstance(token, str) and token else None


def prepare_scratch_dir(scratch_dir: Path | None) -> Path | None:
    """Create the scratch directory the CLI should use as ``TMPDIR``.

    Returns ``None`` when it cannot be created; the CLI then keeps its default.
    """

    if scratch_dir is None:
        return None
    path = Path(scratch_dir).expanduser()
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        logger.warning(
            "Failed to create scratch directory",
            extra={"path": str(path), "error": str(exc)},
        )
        return None
    return path


def cleanup_scratch_files(scratch_dir: Path | None) -> int:
    """Remove ``claude-*-cwd`` leftovers; returns the number removed."""

    if scratch_dir is None:
        return 0
    removed = 0
    try:
        candidates = sorted(Path(scratch_dir).glob(SCRATCH_PATTERN))
    except OSError as exc:
        logger.warning(
            "Failed to list scratch directory",
            extra={"path": str(scratch_dir), "error": str(exc)},
        )
        return 0
    for candidate in candidates:
        try:
            candidate.unlink(missing_ok=True)
            removed += 1
        except OSError as exc:
            logger.warning(
                "Failed to remove scratch file",
                extra={"path": str(candidate), "error": str(exc)},
            )
    if removed:
        logger.debug("Cleaned scratch files", extra={"count": removed})
    return removed


__all__ = [
    "SCRATCH_PATTERN",
    "cleanup_scratch_files",
    "load_auth_token",
    "prepare_scratch_dir",
    "sanitize_environment",
]
