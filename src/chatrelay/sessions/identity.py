"""Derive stable conversation identities from chat metadata."""

from __future__ import annotations

from dataclasses import dataclass

PRIVATE_CHAT_TYPES = {"p2p", "private"}
GROUP_CHAT_TYPES = {"group"}


class InvalidConversationError(ValueError):
    """Raised when chat metadata does not identify a conversation."""


@dataclass(slots=True, frozen=True)
class ConversationIdentity:
    """Who we are talking to.

    ``conversation_id`` is ``user-<sender id>`` for private chats and
    ``group-<chat id>`` for group chats. ``external_id`` is the id outbound
    messages are addressed to.
    """

    conversation_id: str
    external_id: str
    session_type: str

    @classmethod
    def from_chat(
        cls,
        chat_type: str,
        *,
        chat_id: str | None = None,
        sender_id: str | None = None,
    ) -> "ConversationIdentity":
        normalized = (chat_type or "").strip().lower()
        if normalized in PRIVATE_CHAT_TYPES:
            if not sender_id:
                raise InvalidConversationError("No sender id in private chat")
            return cls(conversation_id=f"user-{sender_id}", external_id=sender_id, session_type="private")
        if normalized in GROUP_CHAT_TYPES:
            if not chat_id:
                raise InvalidConversationError("No chat id in group chat")
            return cls(conversation_id=f"group-{chat_id}", external_id=chat_id, session_type="group")
        raise InvalidConversationError(f"Unknown chat type: {chat_type!r}")

    @property
    def display_name(self) -> str:
        label = "Private chat" if self.session_type == "private" else "Group chat"
        return f"{label} {self.external_id[:8]}"


__all__ = ["ConversationIdentity", "InvalidConversationError"]
