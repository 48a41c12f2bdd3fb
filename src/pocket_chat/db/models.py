"""SQLModel tables for conversation persistence.

Schema design:
- Table names: snake_case plural (conversations, messages)
- Column names: snake_case
- Foreign keys: {table_singular}_id
"""

from datetime import datetime

from sqlmodel import Field, Relationship, SQLModel

from pocket_chat.conversations.models import utc_now


class ConversationRecord(SQLModel, table=True):
    """Row for one conversation.

    Attributes:
        id: UUID-based primary key
        title: Conversation title
        model_id: Catalog identifier of the model
        created_at: When the conversation was created
        updated_at: When the conversation was last updated
    """

    __tablename__ = "conversations"
    __table_args__ = {"extend_existing": True}

    id: str = Field(primary_key=True)
    title: str
    model_id: str
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now, index=True)

    messages: list["MessageRecord"] = Relationship(back_populates="conversation")


class MessageRecord(SQLModel, table=True):
    """Row for one message.

    Attributes:
        id: UUID-based primary key
        conversation_id: Foreign key to parent conversation
        position: Order within its list (archived or active)
        archived: Whether the message sits in the archive
        role: user, assistant or system
        content: Message text
        token_count: Explicit token count, if known
        timestamp: When the message was created
        stats_token_count: Generated chunk count (assistant messages)
        stats_time_to_first_token: Seconds until the first chunk
        stats_tokens_per_second: Generation throughput
    """

    __tablename__ = "messages"
    __table_args__ = {"extend_existing": True}

    id: str = Field(primary_key=True)
    conversation_id: str = Field(foreign_key="conversations.id", index=True)
    position: int
    archived: bool = False
    role: str
    content: str
    token_count: int | None = None
    timestamp: datetime = Field(default_factory=utc_now)
    stats_token_count: int | None = None
    stats_time_to_first_token: float | None = None
    stats_tokens_per_second: float | None = None

    conversation: ConversationRecord | None = Relationship(back_populates="messages")
