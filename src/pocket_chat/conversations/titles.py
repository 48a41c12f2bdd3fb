"""Title generation collaborator."""

from datetime import datetime

from pocket_chat.conversations.models import Conversation
from pocket_chat.core.logging import get_logger
from pocket_chat.runtime.orchestrator import RuntimeOrchestrator

logger = get_logger(__name__)

MAX_TITLE_LENGTH = 50

TITLE_PROMPT = """Based on the following conversation, generate a short, descriptive title (3-6 words maximum).
Only respond with the title, no additional text.

User: {user}
Assistant: {assistant}

Title:"""


def fallback_title(now: datetime | None = None) -> str:
    """Timestamp-based title used whenever generation is not possible."""
    moment = now or datetime.now()
    return f"Chat from {moment:%b %d, %Y %H:%M}"


def clean_title(raw: str) -> str:
    """Strip quotes and a leading label, truncating long titles."""
    cleaned = raw.strip().replace('"', "").replace("Title:", "").strip()
    cleaned = " ".join(cleaned.split())
    if not cleaned:
        return fallback_title()
    if len(cleaned) > MAX_TITLE_LENGTH:
        return cleaned[:MAX_TITLE_LENGTH] + "..."
    return cleaned


class TitleGenerator:
    """Asks the loaded model for a short title through the streaming contract.

    Never raises: every failure path returns ``fallback_title()``.
    """

    def __init__(self, orchestrator: RuntimeOrchestrator, token_limit: int = 64) -> None:
        self.orchestrator = orchestrator
        self.token_limit = token_limit

    async def generate_title(self, conversation: Conversation) -> str:
        messages = conversation.all_messages
        user = next((m for m in messages if m.role == "user"), None)
        assistant = next((m for m in messages if m.role == "assistant"), None)
        if user is None or assistant is None:
            return fallback_title()

        if not self.orchestrator.is_model_loaded:
            logger.warning("title_skipped", reason="model_not_loaded")
            return fallback_title()

        prompt = TITLE_PROMPT.format(user=user.content, assistant=assistant.content)
        parts: list[str] = []

        async def collect(token: str) -> None:
            parts.append(token)

        logger.info("title_generate_start", conversation_id=conversation.id)
        try:
            await self.orchestrator.stream_response(prompt, [], self.token_limit, collect)
        except Exception as e:
            logger.error("title_generate_failed", conversation_id=conversation.id, error=str(e))
            return fallback_title()

        title = clean_title("".join(parts))
        logger.info("title_generated", conversation_id=conversation.id, title=title)
        return title
