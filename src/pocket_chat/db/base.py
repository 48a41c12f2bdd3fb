"""Persistence collaborator contract."""

from typing import Protocol

from pocket_chat.conversations.models import Conversation


class ConversationStore(Protocol):
    """Stores conversations by value, keyed by conversation ID."""

    def save(self, conversation: Conversation) -> None: ...

    def load(self, conversation_id: str) -> Conversation | None: ...

    def load_all(self) -> list[Conversation]:
        """All stored conversations, most recently updated first."""
        ...

    def delete(self, conversation_id: str) -> bool: ...
