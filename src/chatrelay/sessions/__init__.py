"""Conversation to session mapping."""

from .identity import ConversationIdentity, InvalidConversationError
from .manager import ProjectCatalog, SessionManager, SessionStoreProtocol

__all__ = [
    "ConversationIdentity",
    "InvalidConversationError",
    "ProjectCatalog",
    "SessionManager",
    "SessionStoreProtocol",
]
