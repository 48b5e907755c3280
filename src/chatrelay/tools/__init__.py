"""Tool registration for the chatrelay MCP server."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from fastmcp import Context, FastMCP

from ..service import RelayService
from ..sessions import ConversationIdentity
from ..storage import ChromaStore, SessionRecord

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ToolHandles:
    relay_message: Any
    list_active_sessions: Any
    abort_session: Any
    session_status: Any
    list_sessions: Any
    conversation_transcript: Any
    deactivate_session: Any


def _session_summary(record: SessionRecord, *, busy: bool) -> dict[str, Any]:
    return {
        "conversation_id": record.conversation_id,
        "external_id": record.external_id,
        "session_type": record.session_type,
        "project_path": record.project_path,
        "process_session_id": record.process_session_id,
        "created_at": record.created_at.isoformat(),
        "last_activity": record.last_activity.isoformat(),
        "is_active": record.is_active,
        "busy": busy,
    }


def register_tools(
    server: FastMCP,
    *,
    service: RelayService,
    store: ChromaStore,
) -> ToolHandles:
    """Register chatrelay's MCP tools on the server."""

    async def _relay_message(
        chat_type: str,
        text: str,
        *,
        chat_id: str | None = None,
        sender_id: str | None = None,
        message_id: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Relay a chat message to the conversation's Claude session."""

        identity = ConversationIdentity.from_chat(chat_type, chat_id=chat_id, sender_id=sender_id)

        outcome = await service.handle_message(identity, text, message_id=message_id)
        await _emit_log(
            context,
            "info",
            "Relayed message",
            extra={"conversation_id": identity.conversation_id, "status": outcome.status},
        )
        return outcome.as_dict()

    def _list_active_sessions(context: Context | None = None) -> dict[str, Any]:
        """List process-session keys with a live Claude process."""

        keys = service.active_sessions()
        return {"count": len(keys), "sessions": keys}

    def _abort_session(
        session_key: str | None = None,
        *,
        conversation_id: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Terminate a live Claude process by key or by conversation."""

        if session_key:
            aborted = service.abort(session_key)
        elif conversation_id:
            aborted = service.abort_conversation(conversation_id)
        else:
            raise ValueError("Provide either session_key or conversation_id")
        logger.warning(
            "Abort requested",
            extra={"session_key": session_key, "conversation_id": conversation_id, "aborted": aborted},
        )
        return {"session_key": session_key, "conversation_id": conversation_id, "aborted": aborted}

    def _session_status(conversation_id: str, context: Context | None = None) -> dict[str, Any]:
        """Report whether a conversation's session is currently busy."""

        record = store.get_session(conversation_id)
        if record is None:
            raise ValueError(f"Conversation '{conversation_id}' not found")
        return _session_summary(record, busy=service.is_conversation_busy(conversation_id))

    def _list_sessions(
        include_inactive: bool = False,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """List persisted conversation sessions with statistics."""

        records = service.sessions.list_sessions(include_inactive=include_inactive)
        return {
            "sessions": [
                _session_summary(record, busy=service.sessions.is_session_busy(record))
                for record in records
            ],
            "stats": service.sessions.stats(),
        }

    def _conversation_transcript(
        conversation_id: str,
        limit: int = 50,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Return the most recent logged messages of a conversation."""

        messages = store.fetch_messages(conversation_id, limit=limit)
        return {
            "conversation_id": conversation_id,
            "messages": [
                {
                    "direction": message.direction,
                    "message_type": message.message_type,
                    "content": message.content,
                    "message_id": message.message_id,
                    "timestamp": message.created_at.isoformat(),
                }
                for message in messages
            ],
        }

    def _deactivate_session(conversation_id: str, context: Context | None = None) -> dict[str, Any]:
        """Disable a conversation; its live process, if any, is aborted first."""

        aborted = service.abort_conversation(conversation_id)
        record = service.sessions.deactivate_session(conversation_id)
        if record is None:
            raise ValueError(f"Conversation '{conversation_id}' not found")
        return {"conversation_id": conversation_id, "aborted": aborted, "is_active": record.is_active}

    tool_relay = server.tool(
        name="relay_message",
        description=(
            "Relay a chat message to the Claude session of its conversation. chat_type is "
            "'p2p' (requires sender_id) or 'group' (requires chat_id). Output is streamed to "
            "the configured channel and recorded in the conversation transcript."
        ),
    )(_relay_message)

    tool_active = server.tool(
        name="list_active_sessions",
        description="List process-session keys that currently have a live Claude process.",
    )(_list_active_sessions)

    tool_abort = server.tool(
        name="abort_session",
        description="Send SIGTERM to a live Claude process, addressed by session key or conversation id.",
    )(_abort_session)

    tool_status = server.tool(
        name="session_status",
        description="Show a conversation's persisted session and whether it is busy.",
    )(_session_status)

    tool_sessions = server.tool(
        name="list_sessions",
        description="List persisted conversation sessions and summary statistics.",
    )(_list_sessions)

    tool_transcript = server.tool(
        name="conversation_transcript",
        description="Return recent incoming and outgoing messages for a conversation.",
    )(_conversation_transcript)

    tool_deactivate = server.tool(
        name="deactivate_session",
        description="Disable a conversation so new messages are no longer relayed.",
    )(_deactivate_session)

    return ToolHandles(
        relay_message=tool_relay,
        list_active_sessions=tool_active,
        abort_session=tool_abort,
        session_status=tool_status,
        list_sessions=tool_sessions,
        conversation_transcript=tool_transcript,
        deactivate_session=tool_deactivate,
    )


async def _emit_log(
    context: Context | None,
    level: str,
    message: str,
    *,
    extra: dict[str, Any] | None = None,
) -> None:
    """Log locally and mirror the message to the MCP client when a context is attached."""

    payload = extra or {}
    getattr(logger, level, logger.info)(message, extra=payload)
    if context is None:
        return
    log_method = getattr(context, level, None)
    if callable(log_method):
        await log_method(message)


__all__ = ["register_tools", "ToolHandles"]
