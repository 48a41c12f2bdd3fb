"""Conversation data model.

Conversations and messages are immutable values: every mutation returns a new
``Conversation`` so readers holding a previous value never observe a partial
update. Both types are plain pydantic models and serialize to JSON as-is.
"""

from datetime import datetime, timezone
from typing import Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

MessageRole = Literal["user", "assistant", "system"]

DEFAULT_TITLE = "New Conversation"


def generate_id() -> str:
    """Generate a UUID-based identifier."""
    return str(uuid4())


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(timezone.utc)


class TokenStats(BaseModel):
    """Generation statistics attached to a completed assistant message.

    Observability only; never used for control flow.
    """

    model_config = ConfigDict(frozen=True)

    token_count: int
    time_to_first_token: float | None = None
    tokens_per_second: float | None = None


class Message(BaseModel):
    """A single chat turn."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=generate_id)
    role: MessageRole
    content: str
    token_count: int | None = None
    timestamp: datetime = Field(default_factory=utc_now)
    stats: TokenStats | None = None


class Conversation(BaseModel):
    """Ordered chat history split into active and archived turns.

    Attributes:
        id: UUID-based identifier
        title: Display title, ``DEFAULT_TITLE`` until one is generated
        active_messages: Turns handed to the model, oldest first
        archived_messages: Older turns kept for display only, oldest first
        model_id: Catalog identifier of the model the chat runs on
        created_at: When the conversation was created
        updated_at: Refreshed on every mutation
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=generate_id)
    title: str = DEFAULT_TITLE
    active_messages: tuple[Message, ...] = ()
    archived_messages: tuple[Message, ...] = ()
    model_id: str
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def system_message(self) -> Message | None:
        """The leading system message of the active history, if any."""
        if self.active_messages and self.active_messages[0].role == "system":
            return self.active_messages[0]
        return None

    @property
    def all_messages(self) -> list[Message]:
        """Archived plus active messages in chronological order.

        The pinned system message predates every other turn, so it leads.
        """
        system = self.system_message
        if system is None:
            return [*self.archived_messages, *self.active_messages]
        return [system, *self.archived_messages, *self.active_messages[1:]]

    @property
    def last_message(self) -> Message | None:
        return self.active_messages[-1] if self.active_messages else None

    @property
    def has_assistant_reply(self) -> bool:
        return any(m.role == "assistant" for m in self.all_messages)

    @property
    def total_token_count(self) -> int:
        return sum(m.token_count or 0 for m in self.all_messages)

    def _touch(self, **changes: object) -> "Conversation":
        return self.model_copy(update={**changes, "updated_at": utc_now()})

    def with_message(self, message: Message) -> "Conversation":
        return self._touch(active_messages=(*self.active_messages, message))

    def with_last_message_replaced(self, message: Message) -> "Conversation":
        if not self.active_messages:
            return self.with_message(message)
        return self._touch(active_messages=(*self.active_messages[:-1], message))

    def with_system_message(self, message: Message) -> "Conversation":
        return self._touch(active_messages=(message, *self.active_messages))

    def with_archived(self, messages: list[Message]) -> "Conversation":
        """Move ``messages`` from the active history to the archive."""
        ids = {m.id for m in messages}
        moved = tuple(m for m in self.active_messages if m.id in ids)
        if not moved:
            return self
        return self._touch(
            active_messages=tuple(m for m in self.active_messages if m.id not in ids),
            archived_messages=(*self.archived_messages, *moved),
        )

    def with_title(self, title: str) -> "Conversation":
        return self._touch(title=title)
