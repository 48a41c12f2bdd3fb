"""JSON-per-conversation file store."""

from pathlib import Path

from pydantic import ValidationError

from pocket_chat.conversations.models import Conversation
from pocket_chat.core.logging import get_logger

logger = get_logger(__name__)


class JsonConversationStore:
    """Keeps each conversation in ``<directory>/<id>.json``.

    Writes go to a temporary file first and are renamed into place, so a
    crash mid-write never leaves a truncated conversation behind.
    """

    def __init__(self, directory: Path) -> None:
        self.directory = directory

    def _path(self, conversation_id: str) -> Path:
        return self.directory / f"{conversation_id}.json"

    def save(self, conversation: Conversation) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self._path(conversation.id)
        tmp_path = path.with_suffix(".json.tmp")
        tmp_path.write_text(conversation.model_dump_json(indent=2), encoding="utf-8")
        tmp_path.replace(path)
        logger.debug(
            "conversation_saved",
            conversation_id=conversation.id,
            message_count=len(conversation.active_messages),
        )

    def load(self, conversation_id: str) -> Conversation | None:
        path = self._path(conversation_id)
        if not path.exists():
            return None
        return Conversation.model_validate_json(path.read_text(encoding="utf-8"))

    def load_all(self) -> list[Conversation]:
        if not self.directory.exists():
            return []

        conversations: list[Conversation] = []
        for path in self.directory.glob("*.json"):
            try:
                conversations.append(
                    Conversation.model_validate_json(path.read_text(encoding="utf-8"))
                )
            except (OSError, ValidationError) as e:
                logger.warning("conversation_file_skipped", path=str(path), error=str(e))

        conversations.sort(key=lambda c: c.updated_at, reverse=True)
        logger.debug("conversations_loaded", count=len(conversations))
        return conversations

    def delete(self, conversation_id: str) -> bool:
        path = self._path(conversation_id)
        if not path.exists():
            return False
        path.unlink()
        logger.info("conversation_deleted", conversation_id=conversation_id)
        return True
