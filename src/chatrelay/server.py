"""FastMCP server bootstrap for chatrelay."""

import asyncio
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from fastmcp import FastMCP

from . import __version__
from .channels import LoggingChannel
from .config import RelaySettings, get_settings
from .engine import ClaudeRunner, ClaudeRunnerError, SessionRegistry
from .engine.utils import load_auth_token
from .output import SendFn
from .profiles import ProfileLoadError, ProfileLoader, ToolProfile
from .service import RelayService
from .sessions import SessionManager
from .storage import ChromaStore
from .tools import register_tools

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    """Configure root logging for the chatrelay server."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


def _run_sync(coro):
    """Execute an async coroutine on a dedicated event loop."""

    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def _resolve_profile(settings: RelaySettings, loader: ProfileLoader) -> tuple[ToolProfile | None, str | None]:
    try:
        return loader.resolve(settings.default_profile), None
    except ProfileLoadError as exc:
        logger.warning("Tool profile unavailable", extra={"profile": settings.default_profile, "error": str(exc)})
        return None, str(exc)


def create_server(
    settings: Optional[RelaySettings] = None,
    runner: ClaudeRunner | None = None,
    store: ChromaStore | None = None,
    channel: SendFn | None = None,
) -> FastMCP:
    """Instantiate the FastMCP server and reset state left by a previous run."""

    settings = settings or get_settings()

    registry = runner.registry if runner is not None else SessionRegistry()
    if runner is None:
        runner = ClaudeRunner(
            registry,
            Path(settings.claude_path) if settings.claude_path else None,
            scratch_dir=settings.scratch_dir,
            auth_token=load_auth_token(settings.auth_config_path),
            auth_token_env=settings.auth_token_env,
        )

    claude_metadata: dict[str, str | None] = {"version": None, "error": None}
    try:
        claude_metadata["version"] = _run_sync(runner.version())
    except (ClaudeRunnerError, OSError) as exc:
        claude_metadata["error"] = str(exc)

    if store is None:
        store = ChromaStore(settings.chroma_persist_path)
    store.ping()

    profile_loader = ProfileLoader(settings.profile_paths)
    profile, profile_error = _resolve_profile(settings, profile_loader)

    sessions = SessionManager(
        store,
        registry,
        owner_id=settings.owner_id,
        workspace_root=settings.workspace_root,
        catalog=store,
    )
    service = RelayService(
        runner=runner,
        sessions=sessions,
        store=store,
        channel=channel or LoggingChannel(),
        settings=settings,
        profile=profile,
    )
    started_at = datetime.now(timezone.utc)
    cleared = service.start()

    server = FastMCP(
        name="chatrelay",
        instructions=(
            "chatrelay runs one Claude Code CLI process per chat conversation and streams "
            "its output to the conversation. Use the tools to relay messages, inspect "
            "sessions, and abort stuck processes."
        ),
    )

    handles = register_tools(server, service=service, store=store)

    def status_resource() -> str:
        """Return a JSON string summarizing basic runtime state."""

        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "started_at": started_at.isoformat(),
            "server_version": __version__,
            "log_level": settings.log_level,
            "claude": {
                "path": str(runner.executable),
                "default_model": settings.claude_default_model,
                **claude_metadata,
            },
            "storage": {"chroma_path": str(settings.chroma_persist_path)},
            "profile": {
                "id": profile.id if profile else None,
                "error": profile_error,
            },
            "sessions": {
                "active_processes": service.active_sessions(),
                "stale_references_cleared": cleared,
                "stats": sessions.stats(),
            },
        }
        return json.dumps(payload)

    server.resource(
        "resource://chatrelay/status",
        name="chatrelay_status",
        description="Provides the current runtime status for the chatrelay server.",
        mime_type="application/json",
    )(status_resource)

    setattr(server, "relay_service", service)
    setattr(server, "claude_metadata", claude_metadata)
    setattr(server, "tool_handles", handles)
    setattr(server, "status_resource", status_resource)
    return server


def main() -> None:
    """Entry point for running the chatrelay server via CLI."""

    settings = get_settings()
    configure_logging(settings.log_level)

    server = create_server(settings)
    logger.info(
        "Launching chatrelay server",
        extra={
            "version": __version__,
            "log_level": settings.log_level,
            "claude_version": getattr(server, "claude_metadata", {}).get("version"),
        },
    )
    server.run()


if __name__ == "__main__":
    main()
