"""SQLite-backed conversation store.

Conversations are written whole: saving replaces the conversation row and
all of its message rows inside one transaction.
"""

from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine, select

from pocket_chat.conversations.models import Conversation, Message, TokenStats
from pocket_chat.core.logging import get_logger
from pocket_chat.db.models import ConversationRecord, MessageRecord

logger = get_logger(__name__)


def _enable_sqlite_fk(dbapi_connection, connection_record):
    """Enable foreign key constraints for SQLite connections."""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


# Default database path
DEFAULT_DB_PATH = Path("data/pocket_chat.db")

# Module-level engine (initialized on first use)
_engine: Engine | None = None


def get_engine(db_path: Path | None = None) -> Engine:
    """Get or create the database engine.

    Args:
        db_path: Optional custom database path. Defaults to data/pocket_chat.db

    Returns:
        SQLModel engine instance
    """
    global _engine
    if _engine is None:
        path = db_path or DEFAULT_DB_PATH
        path.parent.mkdir(parents=True, exist_ok=True)
        database_url = f"sqlite:///{path}"
        _engine = create_engine(
            database_url,
            echo=False,
            connect_args={"check_same_thread": False},
        )
        # Enable foreign key constraints for SQLite
        event.listen(_engine, "connect", _enable_sqlite_fk)
    return _engine


def init_db(db_path: Path | None = None) -> None:
    """Initialize the database by creating all tables.

    Args:
        db_path: Optional custom database path
    """
    engine = get_engine(db_path)
    SQLModel.metadata.create_all(engine)


def _as_utc(value: datetime) -> datetime:
    # SQLite drops tzinfo on the way back
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_record(message: Message, conversation_id: str, position: int, archived: bool) -> MessageRecord:
    stats = message.stats
    return MessageRecord(
        id=message.id,
        conversation_id=conversation_id,
        position=position,
        archived=archived,
        role=message.role,
        content=message.content,
        token_count=message.token_count,
        timestamp=message.timestamp,
        stats_token_count=stats.token_count if stats else None,
        stats_time_to_first_token=stats.time_to_first_token if stats else None,
        stats_tokens_per_second=stats.tokens_per_second if stats else None,
    )


def _to_message(record: MessageRecord) -> Message:
    stats = None
    if record.stats_token_count is not None:
        stats = TokenStats(
            token_count=record.stats_token_count,
            time_to_first_token=record.stats_time_to_first_token,
            tokens_per_second=record.stats_tokens_per_second,
        )
    return Message(
        id=record.id,
        role=record.role,  # type: ignore[arg-type]
        content=record.content,
        token_count=record.token_count,
        timestamp=_as_utc(record.timestamp),
        stats=stats,
    )


class SqlConversationStore:
    """Conversation store on top of the SQLModel tables."""

    def __init__(self, engine: Engine | None = None) -> None:
        """Initialize the store.

        Args:
            engine: Engine to use. Defaults to the module-level engine.
        """
        self.engine = engine or get_engine()

    def save(self, conversation: Conversation) -> None:
        with Session(self.engine) as session:
            record = session.get(ConversationRecord, conversation.id)
            if record is None:
                record = ConversationRecord(
                    id=conversation.id,
                    title=conversation.title,
                    model_id=conversation.model_id,
                    created_at=conversation.created_at,
                    updated_at=conversation.updated_at,
                )
            else:
                record.title = conversation.title
                record.model_id = conversation.model_id
                record.updated_at = conversation.updated_at
            session.add(record)

            for old in self._message_rows(session, conversation.id):
                session.delete(old)
            session.flush()

            for position, message in enumerate(conversation.archived_messages):
                session.add(_to_record(message, conversation.id, position, archived=True))
            for position, message in enumerate(conversation.active_messages):
                session.add(_to_record(message, conversation.id, position, archived=False))

            session.commit()
        logger.debug(
            "conversation_saved",
            conversation_id=conversation.id,
            message_count=len(conversation.active_messages),
        )

    def _message_rows(self, session: Session, conversation_id: str) -> list[MessageRecord]:
        statement = (
            select(MessageRecord)
            .where(MessageRecord.conversation_id == conversation_id)
            .order_by(MessageRecord.position)
        )
        return list(session.exec(statement).all())

    def _build(self, session: Session, record: ConversationRecord) -> Conversation:
        rows = self._message_rows(session, record.id)
        return Conversation(
            id=record.id,
            title=record.title,
            model_id=record.model_id,
            created_at=_as_utc(record.created_at),
            updated_at=_as_utc(record.updated_at),
            archived_messages=tuple(_to_message(r) for r in rows if r.archived),
            active_messages=tuple(_to_message(r) for r in rows if not r.archived),
        )

    def load(self, conversation_id: str) -> Conversation | None:
        with Session(self.engine) as session:
            record = session.get(ConversationRecord, conversation_id)
            if record is None:
                return None
            return self._build(session, record)

    def load_all(self) -> list[Conversation]:
        with Session(self.engine) as session:
            statement = select(ConversationRecord).order_by(
                ConversationRecord.updated_at.desc()  # type: ignore[attr-defined]
            )
            return [self._build(session, record) for record in session.exec(statement).all()]

    def delete(self, conversation_id: str) -> bool:
        with Session(self.engine) as session:
            record = session.get(ConversationRecord, conversation_id)
            if record is None:
                return False

            # Delete all messages first (cascade)
            for message in self._message_rows(session, conversation_id):
                session.delete(message)
            session.delete(record)
            session.commit()
        logger.info("conversation_deleted", conversation_id=conversation_id)
        return True
