"""Context budget planning: per-model token budgets and archive selection.

The planner is pure and synchronous. It never mutates a conversation; it
returns a plan that the conversation manager applies.
"""

from dataclasses import dataclass

from pocket_chat.catalog import BackendKind, ModelCatalog
from pocket_chat.conversations.models import Conversation, Message
from pocket_chat.core.config import Settings
from pocket_chat.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class BudgetPolicy:
    """Tunable ratios and limits used by the planner."""

    default_context_limit: int = 4096
    response_reserve_ratio: float = 0.30
    archive_trigger_ratio: float = 0.70
    archive_target_ratio: float = 0.50
    tokens_per_word: float = 1.3
    min_response_tokens: int = 128
    container_response_token_cap: int = 512

    @classmethod
    def from_settings(cls, settings: Settings) -> "BudgetPolicy":
        return cls(
            default_context_limit=settings.default_context_limit,
            response_reserve_ratio=settings.response_reserve_ratio,
            archive_trigger_ratio=settings.archive_trigger_ratio,
            archive_target_ratio=settings.archive_target_ratio,
            tokens_per_word=settings.tokens_per_word,
            min_response_tokens=settings.min_response_tokens,
            container_response_token_cap=settings.container_response_token_cap,
        )


class ContextBudgetPlanner:
    """Computes token budgets and decides which turns move to the archive.

    Eviction is recency-biased: the newest turns are kept verbatim and the
    oldest are archived first. The leading system message is pinned.
    """

    def __init__(
        self,
        catalog: ModelCatalog | None = None,
        policy: BudgetPolicy | None = None,
    ) -> None:
        self.catalog = catalog if catalog is not None else ModelCatalog()
        self.policy = policy or BudgetPolicy()

    def token_budget(self, model_id: str) -> int:
        """Token ceiling for a model, falling back to the default limit."""
        descriptor = self.catalog.get(model_id)
        if descriptor is None:
            return self.policy.default_context_limit
        return descriptor.context_window

    def reserved_for_response(self, model_id: str) -> int:
        return int(self.token_budget(model_id) * self.policy.response_reserve_ratio)

    def available_for_history(self, model_id: str) -> int:
        return self.token_budget(model_id) - self.reserved_for_response(model_id)

    def archive_threshold(self, model_id: str) -> int:
        """History token count above which archiving triggers."""
        available = self.available_for_history(model_id)
        return int(available * self.policy.archive_trigger_ratio)

    def archive_target(self, model_id: str) -> int:
        """History token count archiving trims down to."""
        available = self.available_for_history(model_id)
        return int(available * self.policy.archive_target_ratio)

    def response_token_budget(self, model_id: str) -> int:
        """Token limit to request for one assistant reply.

        Container-backend and unknown models are capped tighter since they
        have no native stopping discipline.
        """
        budget = max(self.reserved_for_response(model_id), self.policy.min_response_tokens)
        descriptor = self.catalog.get(model_id)
        if descriptor is None or descriptor.backend is BackendKind.CONTAINER:
            budget = min(budget, self.policy.container_response_token_cap)
        return budget

    def estimate_tokens(self, text: str) -> int:
        """Word count times the tokens-per-word ratio, at least 1."""
        estimate = int(len(text.split()) * self.policy.tokens_per_word)
        return max(estimate, 1)

    def message_tokens(self, message: Message) -> int:
        if message.token_count is not None:
            return message.token_count
        return self.estimate_tokens(message.content)

    def history_tokens(self, conversation: Conversation) -> int:
        return sum(self.message_tokens(m) for m in conversation.active_messages)

    def should_archive(self, conversation: Conversation) -> bool:
        current = self.history_tokens(conversation)
        threshold = self.archive_threshold(conversation.model_id)
        if current > threshold:
            logger.info(
                "archive_threshold_exceeded",
                model_id=conversation.model_id,
                current=current,
                threshold=threshold,
            )
            return True
        return False

    def select_messages_to_archive(self, conversation: Conversation) -> list[Message]:
        """Select the oldest active turns that no longer fit the target.

        Walks newest to oldest accumulating tokens until the target is reached.
        The most recent turn is always kept, even when it alone exceeds the
        target, so archiving never empties the history.
        """
        target = self.archive_target(conversation.model_id)
        system = conversation.system_message
        candidates = conversation.active_messages[1:] if system else conversation.active_messages
        kept_tokens = self.message_tokens(system) if system else 0

        keep_from = len(candidates)
        for index in range(len(candidates) - 1, -1, -1):
            tokens = self.message_tokens(candidates[index])
            is_newest = index == len(candidates) - 1
            if kept_tokens + tokens > target and not is_newest:
                break
            kept_tokens += tokens
            keep_from = index

        to_archive = list(candidates[:keep_from])
        logger.info(
            "archive_planned",
            model_id=conversation.model_id,
            to_archive=len(to_archive),
            to_keep=len(candidates) - keep_from,
            kept_tokens=kept_tokens,
            target=target,
        )
        return to_archive
