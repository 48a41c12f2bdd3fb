"""Conversation manager: owner of the active conversation.

The manager is the single writer of conversation state. Every mutation
replaces ``current`` with a new immutable value and hands a copy to the
persistence collaborator.
"""

import asyncio
from dataclasses import dataclass
from typing import Literal

from pocket_chat.catalog import ModelCatalog
from pocket_chat.conversations.budget import ContextBudgetPlanner
from pocket_chat.conversations.models import (
    DEFAULT_TITLE,
    Conversation,
    Message,
    TokenStats,
)
from pocket_chat.conversations.stats import TokenTimer
from pocket_chat.conversations.titles import TitleGenerator
from pocket_chat.core.errors import GenerationCancelled, RuntimeFailure
from pocket_chat.core.logging import get_logger
from pocket_chat.db.base import ConversationStore
from pocket_chat.runtime.base import OnToken
from pocket_chat.runtime.cancellation import CancellationToken
from pocket_chat.runtime.orchestrator import RuntimeOrchestrator

logger = get_logger(__name__)

UNKNOWN_MODEL_ID = "unknown"

FAILURE_MESSAGE = (
    "Error generating response: {error}\n\n"
    "Please ensure the model is properly downloaded and loaded."
)

TurnOutcome = Literal["completed", "cancelled", "failed", "skipped"]


@dataclass
class TurnResult:
    """What happened to one user turn.

    Attributes:
        outcome: completed, cancelled, failed or skipped (empty prompt)
        text: Accumulated response text, possibly partial
        finish_reason: Stream finish reason for completed turns
        stats: Token statistics for the streamed part
        message: Assistant message shown to the user. For failed turns this
            is a synthetic message that is never persisted.
        error: The failure, for failed turns
    """

    outcome: TurnOutcome
    text: str = ""
    finish_reason: str | None = None
    stats: TokenStats | None = None
    message: Message | None = None
    error: RuntimeFailure | None = None


class ConversationManager:
    """Coordinates the active conversation, the planner and the runtime."""

    def __init__(
        self,
        orchestrator: RuntimeOrchestrator,
        store: ConversationStore,
        catalog: ModelCatalog | None = None,
        planner: ContextBudgetPlanner | None = None,
        title_generator: TitleGenerator | None = None,
        title_generation_enabled: bool = True,
    ) -> None:
        self.orchestrator = orchestrator
        self.store = store
        self.catalog = catalog if catalog is not None else ModelCatalog()
        self.planner = planner or ContextBudgetPlanner(self.catalog)
        self.title_generator = title_generator or TitleGenerator(orchestrator)
        self.title_generation_enabled = title_generation_enabled
        self._current: Conversation | None = None
        self._title_task: asyncio.Task[None] | None = None

    @property
    def current(self) -> Conversation | None:
        return self._current

    def start_new_conversation(self, model_id: str) -> Conversation:
        """Create an empty conversation, seeded with the model's system prompt."""
        conversation = Conversation(model_id=model_id)
        system = self._system_message_for(model_id)
        if system is not None:
            conversation = conversation.with_system_message(system)

        self._current = conversation
        logger.info(
            "conversation_started",
            conversation_id=conversation.id,
            model_id=model_id,
            has_system_prompt=system is not None,
        )
        self._save(conversation)
        return conversation

    def load_conversation(self, conversation: Conversation) -> Conversation:
        """Make a stored conversation the active one."""
        system = None
        if conversation.system_message is None:
            system = self._system_message_for(conversation.model_id)
        if system is not None:
            stamped = system.model_copy(update={"timestamp": conversation.created_at})
            conversation = conversation.with_system_message(stamped)

        self._current = conversation
        if system is not None:
            self._save(conversation)
        logger.info(
            "conversation_loaded",
            conversation_id=conversation.id,
            active=len(conversation.active_messages),
            archived=len(conversation.archived_messages),
        )
        return conversation

    def open_conversation(self, conversation_id: str) -> Conversation | None:
        """Load a conversation from the store by id and make it active."""
        conversation = self.store.load(conversation_id)
        if conversation is None:
            return None
        return self.load_conversation(conversation)

    def list_conversations(self) -> list[Conversation]:
        return self.store.load_all()

    def delete_conversation(self, conversation_id: str) -> bool:
        deleted = self.store.delete(conversation_id)
        if self._current is not None and self._current.id == conversation_id:
            self._current = None
        return deleted

    def add_user_message(self, text: str) -> Conversation:
        """Append a user turn, replacing a trailing unanswered one."""
        conversation = self._current
        if conversation is None:
            model_id = self.orchestrator.current_model_id or UNKNOWN_MODEL_ID
            conversation = self.start_new_conversation(model_id)

        message = Message(role="user", content=text)
        last = conversation.last_message
        if last is not None and last.role == "user":
            logger.info("user_message_replaced", conversation_id=conversation.id)
            conversation = conversation.with_last_message_replaced(message)
        else:
            conversation = conversation.with_message(message)

        if self.planner.should_archive(conversation):
            to_archive = self.planner.select_messages_to_archive(conversation)
            conversation = conversation.with_archived(to_archive)
            logger.info(
                "messages_archived",
                conversation_id=conversation.id,
                archived=len(to_archive),
                remaining=len(conversation.active_messages),
            )

        self._current = conversation
        self._save(conversation)
        return conversation

    def add_assistant_message(self, text: str, stats: TokenStats | None = None) -> Message:
        """Append an assistant turn, triggering title generation once."""
        conversation = self._current
        if conversation is None:
            raise RuntimeError("No active conversation")

        first_reply = not conversation.has_assistant_reply
        message = Message(role="assistant", content=text, stats=stats)
        conversation = conversation.with_message(message)
        self._current = conversation
        self._save(conversation)

        if first_reply and self.title_generation_enabled:
            self._schedule_title(conversation)
        return message

    def get_messages_for_llm(self) -> list[Message]:
        if self._current is None:
            return []
        return list(self._current.active_messages)

    def get_all_messages_for_display(self) -> list[Message]:
        if self._current is None:
            return []
        return self._current.all_messages

    async def run_turn(
        self,
        prompt: str,
        on_token: OnToken | None = None,
        cancel: CancellationToken | None = None,
    ) -> TurnResult:
        """Run one user turn end to end.

        Args:
            prompt: User text. Blank prompts are ignored.
            on_token: Optional async callback receiving each streamed chunk.
            cancel: Cancellation token checked between chunks.

        Returns:
            The turn outcome. Runtime failures are reported here, not raised.
        """
        text = prompt.strip()
        if not text:
            return TurnResult(outcome="skipped")

        cancel = cancel or CancellationToken()
        conversation = self.add_user_message(text)
        history = self.get_messages_for_llm()
        token_limit = self.planner.response_token_budget(conversation.model_id)

        timer = TokenTimer()
        parts: list[str] = []

        async def collect(token: str) -> None:
            timer.mark_token()
            parts.append(token)
            if on_token is not None:
                await on_token(token)

        try:
            result = await self.orchestrator.stream_response(
                text, history, token_limit, collect, cancel
            )
        except GenerationCancelled:
            stats = timer.finish()
            partial = "".join(parts).strip()
            if cancel.user_initiated and partial and self._is_current(conversation):
                message = self.add_assistant_message(partial, stats)
                logger.info(
                    "turn_cancelled",
                    conversation_id=conversation.id,
                    kept_partial=True,
                    length=len(partial),
                )
                return TurnResult("cancelled", partial, stats=stats, message=message)

            logger.info("turn_cancelled", conversation_id=conversation.id, kept_partial=False)
            return TurnResult("cancelled", partial, stats=stats)
        except RuntimeFailure as e:
            logger.error(
                "turn_failed",
                conversation_id=conversation.id,
                kind=e.kind,
                error=str(e),
            )
            message = Message(role="assistant", content=FAILURE_MESSAGE.format(error=e))
            return TurnResult("failed", "".join(parts), message=message, error=e)

        stats = timer.finish()
        response = "".join(parts).strip()
        if not self._is_current(conversation):
            logger.info("turn_discarded", conversation_id=conversation.id, reason="inactive")
            return TurnResult("cancelled", response, result.finish_reason, stats)

        if not response:
            logger.warning(
                "turn_empty_response",
                conversation_id=conversation.id,
                finish_reason=result.finish_reason,
            )
            return TurnResult("completed", "", result.finish_reason, stats)

        message = self.add_assistant_message(response, stats)
        logger.info(
            "turn_completed",
            conversation_id=conversation.id,
            finish_reason=result.finish_reason,
            tokens=stats.token_count,
        )
        return TurnResult("completed", response, result.finish_reason, stats, message)

    async def wait_for_title(self) -> None:
        """Wait for a pending title task, if any."""
        task = self._title_task
        if task is not None:
            await task

    async def close(self) -> None:
        task, self._title_task = self._title_task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    def _is_current(self, conversation: Conversation) -> bool:
        return self._current is not None and self._current.id == conversation.id

    def _system_message_for(self, model_id: str) -> Message | None:
        descriptor = self.catalog.get(model_id)
        if descriptor is None or descriptor.cleaned_system_prompt is None:
            return None
        return Message(role="system", content=descriptor.cleaned_system_prompt)

    def _schedule_title(self, conversation: Conversation) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("title_skipped", reason="no_event_loop")
            return
        self._title_task = loop.create_task(self._generate_title(conversation))

    async def _generate_title(self, conversation: Conversation) -> None:
        title = await self.title_generator.generate_title(conversation)
        current = self._current
        if current is None or current.id != conversation.id:
            logger.info("title_discarded", conversation_id=conversation.id, reason="inactive")
            return
        if current.title != DEFAULT_TITLE:
            logger.info("title_discarded", conversation_id=conversation.id, reason="already_set")
            return

        updated = current.with_title(title)
        self._current = updated
        self._save(updated)

    def _save(self, conversation: Conversation) -> None:
        try:
            self.store.save(conversation)
        except Exception as e:
            logger.error(
                "conversation_save_failed",
                conversation_id=conversation.id,
                error=str(e),
            )
