"""Conversation data model, budgeting and management."""

from pocket_chat.conversations.models import (
    DEFAULT_TITLE,
    Conversation,
    Message,
    MessageRole,
    TokenStats,
)

__all__ = ["DEFAULT_TITLE", "Conversation", "Message", "MessageRole", "TokenStats"]
