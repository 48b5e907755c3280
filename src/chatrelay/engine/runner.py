"""Async runner for the Claude Code CLI."""

from __future__ import annotations

import asyncio
import logging
import shutil
import signal
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Protocol, Sequence
from uuid import uuid4

from .events import ErrorEvent, InitEvent, ResultEvent, StreamEvent, parse_line
from .registry import (
    STATUS_ABORTING,
    STATUS_EXITED,
    ProcessHandle,
    SessionAlreadyActiveError,
    SessionRegistry,
)
from .utils import cleanup_scratch_files, prepare_scratch_dir, sanitize_environment

logger = logging.getLogger(__name__)

PROVISIONAL_PREFIX = "pending-"
STREAM_LIMIT = 16 * 1024 * 1024
READ_CHUNK = 64 * 1024


class ClaudeRunnerError(RuntimeError):
    """Base class for Claude runner errors."""


class ClaudeNotFoundError(ClaudeRunnerError):
    """Raised when the Claude CLI executable cannot be located."""


class ClaudeSpawnError(ClaudeRunnerError):
    """Raised when the operating system refuses to start the CLI."""


class ClaudeExitError(ClaudeRunnerError):
    """Raised when the CLI exits with a non-zero code or is killed by a signal."""

    def __init__(
        self,
        *,
        returncode: int,
        signal_name: str | None = None,
        session_id: str | None = None,
        aborted: bool = False,
    ) -> None:
        if signal_name is not None:
            message = f"Claude CLI was terminated by signal {signal_name}"
            if aborted:
                message += " (aborted)"
        else:
            message = f"Claude CLI exited with code {returncode}"
        super().__init__(message)
        self.returncode = returncode
        self.signal_name = signal_name
        self.session_id = session_id
        self.aborted = aborted


class EventSink(Protocol):
    """Receiver for one invocation's events."""

    async def handle_event(self, event: StreamEvent) -> None:
        ...

    def on_session_created(self, session_id: str) -> None:
        ...


@dataclass(slots=True)
class InvocationOptions:
    """Per-invocation CLI settings.

    ``session_key`` names the registry entry of a fresh invocation until the
    CLI reports its session id; it is ignored when resuming.
    """

    working_dir: Path
    resume_id: str | None = None
    session_key: str | None = None
    permission_mode: str | None = None
    allowed_tools: Sequence[str] = ()
    disallowed_tools: Sequence[str] = ()
    skip_permissions: bool = False
    model: str | None = None


@dataclass(slots=True)
class InvocationResult:
    """Holds the outcome of a successful Claude CLI invocation."""

    args: tuple[str, ...]
    returncode: int
    session_id: str | None
    created: bool = False
    event_count: int = 0
    saw_result: bool = False


@dataclass(slots=True)
class _InvocationState:
    session_id: str | None
    provisional: bool
    created: bool = False
    event_count: int = 0
    saw_result: bool = False


async def iter_lines(stream: asyncio.StreamReader, *, limit: int = STREAM_LIMIT) -> AsyncIterator[bytes]:
    """Yield the lines of ``stream`` without their terminating newline.

    A line that grows past ``limit`` bytes is dropped whole, up to and
    including its newline, so none of its tail surfaces as a line of its own.
    """

    pending = bytearray()
    dropped = 0
    while True:
        chunk = await stream.read(READ_CHUNK)
        if not chunk:
            break
        start = 0
        while True:
            newline = chunk.find(b"\n", start)
            if newline == -1:
                break
            if dropped:
                _log_dropped_line(dropped + newline - start)
                dropped = 0
            else:
                pending += chunk[start:newline]
                yield bytes(pending)
            pending.clear()
            start = newline + 1
        tail = chunk[start:]
        if dropped:
            dropped += len(tail)
        else:
            pending += tail
            if len(pending) > limit:
                dropped = len(pending)
                pending.clear()
    if dropped:
        _log_dropped_line(dropped)
    elif pending:
        yield bytes(pending)


def _log_dropped_line(size: int) -> None:
    logger.warning("Dropped oversized output line", extra={"line_bytes": size})


def describe_exit(returncode: int) -> str | None:
    """Return the signal name for a signal-terminated exit code, if any."""

    if returncode >= 0:
        return None
    try:
        return signal.Signals(-returncode).name
    except ValueError:
        return f"signal {-returncode}"


class ClaudeRunner:
    """Execute Claude CLI invocations and stream their events.

    The runner registers every process in the injected :class:`SessionRegistry`
    before it is spawned, under the resume id or a provisional key, so an abort
    request can always find it.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        executable: Path | None = None,
        *,
        scratch_dir: Path | None = None,
        auth_token: str | None = None,
        auth_token_env: str = "CLAUDECODE_TOKEN",
        line_limit: int = STREAM_LIMIT,
    ) -> None:
        self._registry = registry
        self._line_limit = line_limit
        self._executable_path = self._resolve_executable(executable)
        self._scratch_dir = scratch_dir
        self._auth_token = auth_token
        self._auth_token_env = auth_token_env

    @staticmethod
    def _resolve_executable(explicit: Path | None) -> Path:
        if explicit is not None:
            candidate = Path(explicit)
            if candidate.exists() and candidate.is_file():
                return candidate
            raise ClaudeNotFoundError(f"Claude executable not found at {candidate}")

        binary = shutil.which("claude")
        if binary is None:
            raise ClaudeNotFoundError("Claude CLI executable not found on PATH")
        return Path(binary)

    @property
    def executable(self) -> Path:
        return self._executable_path

    @property
    def registry(self) -> SessionRegistry:
        return self._registry

    def build_command(self, prompt: str, options: InvocationOptions) -> list[str]:
        """Return the full argv for one invocation, prompt last."""

        if not prompt or not prompt.strip():
            raise ValueError("Prompt must not be empty")

        args: list[str] = [str(self._executable_path), "-p"]
        if options.resume_id:
            args.extend(["--resume", options.resume_id])
        args.extend(["--output-format", "stream-json", "--verbose"])
        if options.permission_mode and options.permission_mode != "default":
            args.extend(["--permission-mode", options.permission_mode])
        if options.skip_permissions:
            args.append("--dangerously-skip-permissions")
        if options.allowed_tools:
            args.extend(["--allowed-tools", ",".join(options.allowed_tools)])
        if options.disallowed_tools:
            args.extend(["--disallowed-tools", ",".join(options.disallowed_tools)])
        if options.model:
            args.extend(["--model", options.model])
        args.append(prompt)
        return args

    def _environment(self) -> dict[str, str]:
        additional: dict[str, str] = {}
        scratch = prepare_scratch_dir(self._scratch_dir)
        if scratch is not None:
            additional["TMPDIR"] = str(scratch)
        if self._auth_token:
            additional[self._auth_token_env] = self._auth_token
        return sanitize_environment(additional)

    async def version(self) -> str:
        process = await asyncio.create_subprocess_exec(
            str(self._executable_path),
            "--version",
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=sanitize_environment(),
        )
        stdout_bytes, stderr_bytes = await process.communicate()
        if process.returncode != 0:
            raise ClaudeExitError(
                returncode=process.returncode,
                signal_name=describe_exit(process.returncode),
            )
        return stdout_bytes.decode("utf-8", errors="replace").strip()

    async def invoke(
        self,
        prompt: str,
        options: InvocationOptions,
        sink: EventSink | None = None,
    ) -> InvocationResult:
        """Run the CLI to completion, forwarding events to ``sink`` in order.

        Raises :class:`ClaudeExitError` for a non-zero or signal exit, and
        :class:`SessionAlreadyActiveError` when ``options.resume_id`` is live.
        """

        args = self.build_command(prompt, options)
        provisional = not options.resume_id
        key = options.resume_id or options.session_key or f"{PROVISIONAL_PREFIX}{uuid4().hex}"
        handle = ProcessHandle(key=key, args=tuple(args))
        self._registry.register(handle)

        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                cwd=str(options.working_dir),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self._environment(),
                limit=STREAM_LIMIT,
            )
        except OSError as exc:
            self._registry.unregister(handle.key, handle)
            handle.status = STATUS_EXITED
            raise ClaudeSpawnError(f"Failed to start Claude CLI: {exc}") from exc

        handle.attach(process)
        if handle.status == STATUS_ABORTING:
            process.terminate()

        logger.info(
            "Spawned Claude CLI",
            extra={
                "pid": process.pid,
                "session_key": handle.key,
                "resume": bool(options.resume_id),
                "cwd": str(options.working_dir),
            },
        )

        state = _InvocationState(session_id=options.resume_id, provisional=provisional)
        stderr_task = asyncio.create_task(self._pump_stderr(process, state, sink))
        try:
            await self._pump_stdout(process, handle, state, sink)
            await stderr_task
            returncode = await process.wait()
        finally:
            if not stderr_task.done():
                stderr_task.cancel()
            if process.returncode is None:
                process.kill()
                await process.wait()
            self._registry.unregister(handle.key, handle)
            aborted = handle.status == STATUS_ABORTING
            handle.status = STATUS_EXITED
            cleanup_scratch_files(self._scratch_dir)

        logger.info(
            "Claude CLI exited",
            extra={"pid": process.pid, "session_key": handle.key, "returncode": returncode},
        )

        if returncode != 0:
            raise ClaudeExitError(
                returncode=returncode,
                signal_name=describe_exit(returncode),
                session_id=state.session_id,
                aborted=aborted,
            )

        return InvocationResult(
            args=tuple(args),
            returncode=returncode,
            session_id=state.session_id,
            created=state.created,
            event_count=state.event_count,
            saw_result=state.saw_result,
        )

    async def _pump_stdout(
        self,
        process: asyncio.subprocess.Process,
        handle: ProcessHandle,
        state: _InvocationState,
        sink: EventSink | None,
    ) -> None:
        assert process.stdout is not None
        async for raw in iter_lines(process.stdout, limit=self._line_limit):
            event = parse_line(raw.decode("utf-8", errors="replace"))
            if event is None:
                continue
            if isinstance(event, InitEvent):
                self._capture_session(handle, state, event, sink)
            elif isinstance(event, ResultEvent):
                state.saw_result = True
            await self._emit(state, event, sink)

    async def _pump_stderr(
        self,
        process: asyncio.subprocess.Process,
        state: _InvocationState,
        sink: EventSink | None,
    ) -> None:
        assert process.stderr is not None
        async for raw in iter_lines(process.stderr, limit=self._line_limit):
            message = raw.decode("utf-8", errors="replace").rstrip()
            if not message:
                continue
            logger.warning("Claude CLI stderr", extra={"stderr": message[:500]})
            await self._emit(state, ErrorEvent(message=message), sink)

    async def _emit(
        self,
        state: _InvocationState,
        event: StreamEvent,
        sink: EventSink | None,
    ) -> None:
        state.event_count += 1
        if sink is not None:
            await sink.handle_event(event)

    def _capture_session(
        self,
        handle: ProcessHandle,
        state: _InvocationState,
        event: InitEvent,
        sink: EventSink | None,
    ) -> None:
        if not event.session_id or state.session_id:
            return

        state.session_id = event.session_id
        if state.provisional:
            provisional_key = handle.key
            try:
                moved = self._registry.rekey(provisional_key, event.session_id)
            except SessionAlreadyActiveError as exc:
                logger.error(
                    "Failed to rekey Claude process",
                    extra={
                        "session_key": provisional_key,
                        "session_id": event.session_id,
                        "error": str(exc),
                    },
                )
            else:
                if moved:
                    logger.debug(
                        "Rekeyed Claude process",
                        extra={"session_key": provisional_key, "session_id": event.session_id},
                    )

        if state.provisional and not state.created:
            state.created = True
            logger.info("Claude session created", extra={"session_id": event.session_id})
            if sink is not None:
                sink.on_session_created(event.session_id)

    def abort(self, key: str) -> bool:
        """Send SIGTERM to the process registered under ``key``.

        The pending :meth:`invoke` raises once the process has actually exited.
        """

        handle = self._registry.unregister(key)
        if handle is None:
            return False
        handle.status = STATUS_ABORTING
        process = handle.process
        if process is not None and process.returncode is None:
            try:
                process.terminate()
            except ProcessLookupError:
                pass
        logger.info("Aborted Claude session", extra={"session_key": key, "pid": handle.pid})
        return True


__all__ = [
    "ClaudeExitError",
    "ClaudeNotFoundError",
    "ClaudeRunner",
    "ClaudeRunnerError",
    "ClaudeSpawnError",
    "EventSink",
    "InvocationOptions",
    "InvocationResult",
    "PROVISIONAL_PREFIX",
    "describe_exit",
    "iter_lines",
]
