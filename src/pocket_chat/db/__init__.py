"""Persistence collaborators for conversations."""

from pocket_chat.core.config import Settings
from pocket_chat.db.base import ConversationStore
from pocket_chat.db.json_store import JsonConversationStore
from pocket_chat.db.models import ConversationRecord, MessageRecord
from pocket_chat.db.repository import (
    SqlConversationStore,
    get_engine,
    init_db,
)


def create_store(settings: Settings) -> ConversationStore:
    """Build the store selected by ``persistence_backend``."""
    if settings.persistence_backend == "sqlite":
        init_db(settings.db_path)
        return SqlConversationStore(get_engine(settings.db_path))
    return JsonConversationStore(settings.conversations_dir)


__all__ = [
    "ConversationRecord",
    "ConversationStore",
    "JsonConversationStore",
    "MessageRecord",
    "SqlConversationStore",
    "create_store",
    "get_engine",
    "init_db",
]
