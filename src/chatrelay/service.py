"""Relay incoming chat messages to Claude CLI sessions."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from uuid import uuid4

from .config import RelaySettings
from .engine import (
    ClaudeRunner,
    ClaudeRunnerError,
    InvocationOptions,
    PROVISIONAL_PREFIX,
    SessionAlreadyActiveError,
    StreamEvent,
)
from .output import BufferState, OutputAggregator, SendFn
from .profiles import ToolProfile
from .sessions import ConversationIdentity, SessionManager
from .storage import ChromaStore, SessionRecord

logger = logging.getLogger(__name__)

STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"
STATUS_BUSY = "busy"
STATUS_DUPLICATE = "duplicate"
STATUS_DISABLED = "disabled"
STATUS_IGNORED = "ignored"

FAILURE_PREFIX = "❌ Failed: "
DISABLED_NOTICE = "This conversation has been disabled."


@dataclass(slots=True)
class RelayOutcome:
    """What happened to one incoming message."""

    status: str
    conversation_id: str
    process_session_id: str | None = None
    created: bool = False
    error: str | None = None

    def as_dict(self) -> dict[str, object]:
        return {
            "status": self.status,
            "conversation_id": self.conversation_id,
            "process_session_id": self.process_session_id,
            "created": self.created,
            "error": self.error,
        }


class _ConversationSink:
    """Feeds runner events to the aggregator and reports new session ids."""

    def __init__(self, service: RelayService, record: SessionRecord, aggregator: OutputAggregator) -> None:
        self._service = service
        self._record = record
        self._aggregator = aggregator

    async def handle_event(self, event: StreamEvent) -> None:
        await self._aggregator.handle_event(event)

    def on_session_created(self, session_id: str) -> None:
        self._aggregator.on_session_created(session_id)
        self._service._session_started(self._record, session_id)


class RelayService:
    """The call site tying sessions, the runner and output delivery together.

    Before starting a process the service checks both the registry (through
    :meth:`SessionManager.is_session_busy`) and its own set of in-flight
    conversations. The second check covers conversations whose CLI has not
    reported a session id yet.

    While a run is in progress ``_live_keys`` maps its conversation to the
    registry key of the process, first the provisional key and then the id the
    CLI reports. That id is persisted as soon as it is known.
    """

    def __init__(
        self,
        *,
        runner: ClaudeRunner,
        sessions: SessionManager,
        store: ChromaStore,
        channel: SendFn,
        settings: RelaySettings,
        profile: ToolProfile | None = None,
    ) -> None:
        self._runner = runner
        self._sessions = sessions
        self._store = store
        self._channel = channel
        self._settings = settings
        self._profile = profile
        self._inflight: set[str] = set()
        self._live_keys: dict[str, str] = {}

    @property
    def sessions(self) -> SessionManager:
        return self._sessions

    @property
    def profile(self) -> ToolProfile | None:
        return self._profile

    def start(self) -> int:
        """Clear stored process-session ids left over from a previous run."""

        return self._sessions.reset_stale_references()

    def invocation_options(self, record: SessionRecord, *, session_key: str | None = None) -> InvocationOptions:
        profile = self._profile
        return InvocationOptions(
            working_dir=Path(record.project_path),
            resume_id=record.process_session_id,
            session_key=session_key,
            permission_mode=profile.permission_mode if profile else None,
            allowed_tools=tuple(profile.allowed_tools) if profile else (),
            disallowed_tools=tuple(profile.disallowed_tools) if profile else (),
            skip_permissions=profile.skip_permissions if profile else False,
            model=(profile.model if profile and profile.model else self._settings.claude_default_model),
        )

    async def handle_message(
        self,
        identity: ConversationIdentity,
        text: str,
        *,
        message_id: str | None = None,
    ) -> RelayOutcome:
        """Relay one message and deliver the reply.

        Failures while resolving the conversation or running the CLI are
        reported on the channel with :data:`FAILURE_PREFIX` and come back as a
        ``failed`` outcome.
        """

        conversation_id = identity.conversation_id
        if not text or not text.strip():
            return RelayOutcome(status=STATUS_IGNORED, conversation_id=conversation_id)

        try:
            return await self._relay(identity, text, message_id)
        except Exception as exc:
            logger.exception(
                "Failed to handle message",
                extra={"conversation_id": conversation_id, "error": str(exc)},
            )
            await self._notify(
                identity.external_id,
                conversation_id,
                f"{FAILURE_PREFIX}{exc}",
                "error",
                record=False,
            )
            return RelayOutcome(status=STATUS_FAILED, conversation_id=conversation_id, error=str(exc))

    async def _relay(
        self,
        identity: ConversationIdentity,
        text: str,
        message_id: str | None,
    ) -> RelayOutcome:
        conversation_id = identity.conversation_id
        if message_id and self._store.has_message(message_id):
            logger.info(
                "Ignoring duplicate delivery",
                extra={"conversation_id": conversation_id, "message_id": message_id},
            )
            return RelayOutcome(status=STATUS_DUPLICATE, conversation_id=conversation_id)
        self._store.log_message(
            conversation_id=conversation_id,
            direction="incoming",
            message_type="text",
            content=text,
            message_id=message_id,
        )

        record = await self._sessions.get_or_create_session(identity)
        destination = record.external_id

        if not record.is_active:
            await self._notify(destination, conversation_id, DISABLED_NOTICE, "notice")
            return RelayOutcome(status=STATUS_DISABLED, conversation_id=conversation_id)

        if self._settings.ack_message:
            await self._notify(destination, conversation_id, self._settings.ack_message, "notice")

        if conversation_id in self._inflight or self._sessions.is_session_busy(record):
            logger.info("Session busy", extra={"conversation_id": conversation_id})
            await self._notify(destination, conversation_id, self._settings.busy_message, "notice")
            return RelayOutcome(
                status=STATUS_BUSY,
                conversation_id=conversation_id,
                process_session_id=record.process_session_id,
            )

        self._inflight.add(conversation_id)
        aggregator = OutputAggregator(
            self._recording_sender(conversation_id),
            destination,
            session_id=record.process_session_id,
            flush_threshold=self._settings.flush_threshold,
            flush_interval=self._settings.flush_interval,
            chunk_size=self._settings.chunk_size,
            chunk_delay=self._settings.chunk_delay,
        )
        try:
            return await self._run(record, text, aggregator)
        finally:
            self._inflight.discard(conversation_id)
            self._live_keys.pop(conversation_id, None)
            if aggregator.state is not BufferState.DONE:
                aggregator.destroy()

    async def _run(self, record: SessionRecord, text: str, aggregator: OutputAggregator) -> RelayOutcome:
        conversation_id = record.conversation_id
        session_key = record.process_session_id or f"{PROVISIONAL_PREFIX}{uuid4().hex}"
        options = self.invocation_options(record, session_key=session_key)
        self._live_keys[conversation_id] = session_key
        try:
            result = await self._runner.invoke(text, options, _ConversationSink(self, record, aggregator))
        except SessionAlreadyActiveError:
            await aggregator.complete()
            await self._notify(record.external_id, conversation_id, self._settings.busy_message, "notice")
            return RelayOutcome(
                status=STATUS_BUSY,
                conversation_id=conversation_id,
                process_session_id=record.process_session_id,
            )
        except ClaudeRunnerError as exc:
            logger.error(
                "Claude invocation failed",
                extra={"conversation_id": conversation_id, "error": str(exc)},
            )
            await aggregator.complete()
            self._persist_session_id(record, aggregator.created_session_id)
            await self._notify(record.external_id, conversation_id, f"{FAILURE_PREFIX}{exc}", "error")
            return RelayOutcome(
                status=STATUS_FAILED,
                conversation_id=conversation_id,
                process_session_id=record.process_session_id,
                created=aggregator.created_session_id is not None,
                error=str(exc),
            )

        await aggregator.complete()
        self._persist_session_id(record, result.session_id or aggregator.session_id)
        self._sessions.touch(record)
        logger.info(
            "Message handled",
            extra={
                "conversation_id": conversation_id,
                "process_session_id": record.process_session_id,
                "delivered_chunks": aggregator.delivered_chunks,
            },
        )
        return RelayOutcome(
            status=STATUS_COMPLETED,
            conversation_id=conversation_id,
            process_session_id=record.process_session_id,
            created=result.created,
        )

    def _session_started(self, record: SessionRecord, session_id: str) -> None:
        if record.conversation_id in self._live_keys:
            self._live_keys[record.conversation_id] = session_id
        self._persist_session_id(record, session_id)

    def _persist_session_id(self, record: SessionRecord, session_id: str | None) -> None:
        if session_id and session_id != record.process_session_id:
            self._sessions.update_process_session_id(record, session_id)

    def _recording_sender(self, conversation_id: str) -> SendFn:
        async def send(destination: str, text: str) -> bool:
            result = await self._channel(destination, text)
            if result is False:
                return False
            self._store.log_message(
                conversation_id=conversation_id,
                direction="outgoing",
                message_type="text",
                content=text,
            )
            return True

        return send

    async def _notify(
        self,
        destination: str,
        conversation_id: str,
        text: str,
        message_type: str,
        *,
        record: bool = True,
    ) -> bool:
        try:
            result = await self._channel(destination, text)
        except Exception as exc:
            logger.warning(
                "Failed to send notice",
                extra={"conversation_id": conversation_id, "error": str(exc)},
            )
            return False
        if result is False:
            return False
        if not record:
            return True
        self._store.log_message(
            conversation_id=conversation_id,
            direction="outgoing",
            message_type=message_type,
            content=text,
        )
        return True

    def active_sessions(self) -> list[str]:
        return self._runner.registry.list_active()

    def abort(self, key: str) -> bool:
        return self._runner.abort(key)

    def abort_conversation(self, conversation_id: str) -> bool:
        """Terminate the process currently serving ``conversation_id``, if any."""

        live_key = self._live_keys.get(conversation_id)
        if live_key is not None and self._runner.abort(live_key):
            return True
        record = self._store.get_session(conversation_id)
        if record is None or not record.process_session_id:
            return False
        return self._runner.abort(record.process_session_id)

    def is_conversation_busy(self, conversation_id: str) -> bool:
        if conversation_id in self._inflight:
            return True
        live_key = self._live_keys.get(conversation_id)
        if live_key is not None and self._runner.registry.is_active(live_key):
            return True
        return self._sessions.is_session_busy(self._store.get_session(conversation_id))


__all__ = [
    "FAILURE_PREFIX",
    "RelayOutcome",
    "RelayService",
    "STATUS_BUSY",
    "STATUS_COMPLETED",
    "STATUS_DISABLED",
    "STATUS_DUPLICATE",
    "STATUS_FAILED",
    "STATUS_IGNORED",
]
