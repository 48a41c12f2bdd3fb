"""Unit tests for the context budget planner."""

import pytest

from pocket_chat.catalog import BackendKind, ModelCatalog, ModelDescriptor
from pocket_chat.conversations.budget import BudgetPolicy, ContextBudgetPlanner
from pocket_chat.conversations.models import Conversation, Message
from pocket_chat.core.config import Settings


@pytest.fixture
def planner() -> ContextBudgetPlanner:
    return ContextBudgetPlanner(
        ModelCatalog(
            [
                ModelDescriptor(
                    id="chat-4k",
                    display_name="Chat 4K",
                    backend=BackendKind.CONVERSATION,
                    context_window=4096,
                ),
                ModelDescriptor(
                    id="chat-32k",
                    display_name="Chat 32K",
                    backend=BackendKind.CONVERSATION,
                    context_window=32768,
                ),
                ModelDescriptor(
                    id="gemma-8k",
                    display_name="Gemma 8K",
                    backend=BackendKind.CONTAINER,
                    context_window=8192,
                ),
            ]
        )
    )


def _with_tokens(model_id: str, *counts: int, system: int | None = None) -> Conversation:
    conv = Conversation(model_id=model_id)
    if system is not None:
        conv = conv.with_system_message(
            Message(role="system", content="sys", token_count=system)
        )
    for index, count in enumerate(counts):
        role = "user" if index % 2 == 0 else "assistant"
        conv = conv.with_message(Message(role=role, content=f"m{index}", token_count=count))
    return conv


class TestBudgets:
    """Tests for token budget arithmetic."""

    def test_known_model_budget(self, planner: ContextBudgetPlanner) -> None:
        assert planner.token_budget("chat-4k") == 4096

    def test_unknown_model_uses_default(self, planner: ContextBudgetPlanner) -> None:
        assert planner.token_budget("mystery") == 4096

    def test_history_and_thresholds_for_4k(self, planner: ContextBudgetPlanner) -> None:
        assert planner.reserved_for_response("chat-4k") == 1228
        assert planner.available_for_history("chat-4k") == 2868
        assert planner.archive_threshold("chat-4k") == 2007
        assert planner.archive_target("chat-4k") == 1434

    def test_response_budget_for_conversation_model(self, planner: ContextBudgetPlanner) -> None:
        assert planner.response_token_budget("chat-4k") == 1228

    def test_response_budget_capped_for_container_and_unknown(
        self, planner: ContextBudgetPlanner
    ) -> None:
        assert planner.response_token_budget("gemma-8k") == 512
        assert planner.response_token_budget("mystery") == 512

    def test_response_budget_has_floor(self) -> None:
        planner = ContextBudgetPlanner(
            ModelCatalog(
                [
                    ModelDescriptor(
                        id="tiny",
                        display_name="Tiny",
                        backend=BackendKind.CONVERSATION,
                        context_window=256,
                    )
                ]
            )
        )
        assert planner.response_token_budget("tiny") == 128

    def test_policy_from_settings(self) -> None:
        policy = BudgetPolicy.from_settings(Settings(default_context_limit=2048))
        planner = ContextBudgetPlanner(ModelCatalog([]), policy)
        assert planner.token_budget("anything") == 2048


class TestEstimateTokens:
    """Tests for the word-count heuristic."""

    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("", 1),
            ("   ", 1),
            ("hello", 1),
            ("hello world", 2),
            ("one two three four five six seven eight nine ten", 13),
        ],
    )
    def test_estimate(self, planner: ContextBudgetPlanner, text: str, expected: int) -> None:
        assert planner.estimate_tokens(text) == expected

    def test_explicit_token_count_wins(self, planner: ContextBudgetPlanner) -> None:
        msg = Message(role="user", content="one two three", token_count=50)
        assert planner.message_tokens(msg) == 50


class TestShouldArchive:
    """Tests for the archive trigger."""

    def test_at_threshold_does_not_archive(self, planner: ContextBudgetPlanner) -> None:
        conv = _with_tokens("chat-4k", 1000, 1007)
        assert planner.history_tokens(conv) == 2007
        assert planner.should_archive(conv) is False

    def test_above_threshold_archives(self, planner: ContextBudgetPlanner) -> None:
        conv = _with_tokens("chat-4k", 1000, 1008)
        assert planner.should_archive(conv) is True

    def test_archived_messages_do_not_count(self, planner: ContextBudgetPlanner) -> None:
        conv = _with_tokens("chat-4k", 1500, 1500, 10)
        conv = conv.with_archived(list(conv.active_messages[:2]))
        assert planner.should_archive(conv) is False


class TestSelectMessagesToArchive:
    """Tests for recency-biased archive selection."""

    def test_oldest_messages_selected(self, planner: ContextBudgetPlanner) -> None:
        conv = _with_tokens("chat-4k", 600, 600, 600, 600)
        selected = planner.select_messages_to_archive(conv)
        # target 1434 keeps the two newest (1200)
        assert selected == list(conv.active_messages[:2])

    def test_selection_is_oldest_first(self, planner: ContextBudgetPlanner) -> None:
        conv = _with_tokens("chat-4k", 500, 500, 500, 500, 500)
        selected = planner.select_messages_to_archive(conv)
        assert [m.content for m in selected] == ["m0", "m1", "m2"]

    def test_newest_message_always_kept(self, planner: ContextBudgetPlanner) -> None:
        """A single oversized newest turn still survives archiving."""
        conv = _with_tokens("chat-4k", 100, 5000)
        selected = planner.select_messages_to_archive(conv)
        remaining = conv.with_archived(selected)

        assert [m.content for m in selected] == ["m0"]
        assert [m.content for m in remaining.active_messages] == ["m1"]

    def test_never_empties_history(self, planner: ContextBudgetPlanner) -> None:
        conv = _with_tokens("chat-4k", 9000)
        assert planner.select_messages_to_archive(conv) == []

    def test_system_message_is_pinned(self, planner: ContextBudgetPlanner) -> None:
        conv = _with_tokens("chat-4k", 800, 800, 800, system=200)
        selected = planner.select_messages_to_archive(conv)
        remaining = conv.with_archived(selected)

        assert all(m.role != "system" for m in selected)
        assert remaining.active_messages[0].role == "system"
        # system 200 + newest 800 fit the target, the next 800 does not
        assert [m.content for m in remaining.active_messages[1:]] == ["m2"]

    def test_uses_model_budget(self, planner: ContextBudgetPlanner) -> None:
        conv = _with_tokens("chat-32k", 600, 600, 600, 600)
        assert planner.should_archive(conv) is False
        assert planner.select_messages_to_archive(conv) == []
