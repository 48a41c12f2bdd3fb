"""Unit tests for the repetition guard and stop-sequence scanner."""

import pytest

from pocket_chat.core.config import Settings
from pocket_chat.runtime.guard import (
    LENGTH_LIMIT,
    LINE_REPEAT,
    PROMPT_REPEAT,
    SENTENCE_LIMIT,
    GuardPolicy,
    GuardStop,
    RepetitionGuard,
    StopSequenceScanner,
    normalize_text,
)


def _feed(guard: RepetitionGuard, chunks: list[str]) -> tuple[GuardStop | None, int]:
    """Feed chunks until the guard stops. Returns the stop and chunks consumed."""
    for index, chunk in enumerate(chunks, start=1):
        stop = guard.register(chunk)
        if stop is not None:
            return stop, index
    return None, len(chunks)


def _unique_prose(length: int) -> str:
    words = " ".join(f"word{i}" for i in range(length))
    return words[:length]


class TestNormalizeText:
    def test_lowercases_and_strips_punctuation(self) -> None:
        assert normalize_text("Hello,   World!\nAgain?") == "hello world again"


class TestRepetitionGuard:
    """Tests for RepetitionGuard stop conditions."""

    def test_repeated_line_stops_with_line_repeat(self) -> None:
        guard = RepetitionGuard("unrelated question")
        stop, consumed = _feed(guard, ["abcdefghij\n"] * 5)

        assert stop is not None
        assert stop.reason == LINE_REPEAT
        assert stop.repeats == 4
        assert stop.sample == "abcdefghij"
        assert consumed == 4
        assert len(guard.text) < 1200

    def test_trailing_fragment_does_not_hide_repeats(self) -> None:
        """A partial line after the repeats does not reset the count."""
        guard = RepetitionGuard("unrelated question")
        assert guard.register("abcdefghij\nabcdefghij\nabcdefghij\n") is None

        stop = guard.register("abcdefghij\nabc")

        assert stop is not None
        assert stop.reason == LINE_REPEAT
        assert stop.repeats == 4

    def test_unfinished_line_not_counted(self) -> None:
        guard = RepetitionGuard("unrelated question")
        assert guard.register("abcdefghij\nabcdefghij\nabcdefghij\nabcdefghij") is None

    def test_short_repeated_lines_are_ignored(self) -> None:
        """Lines under the minimum length never count as repeats."""
        guard = RepetitionGuard("question")
        stop, _ = _feed(guard, ["ok\n"] * 6)
        assert stop is None

    def test_unique_prose_below_length_cap_continues(self) -> None:
        guard = RepetitionGuard("tell me a story")
        text = _unique_prose(1199)
        chunks = [text[i : i + 50] for i in range(0, len(text), 50)]

        stop, _ = _feed(guard, chunks)

        assert stop is None
        assert len(guard.text) == 1199

    def test_unique_prose_at_length_cap_stops(self) -> None:
        guard = RepetitionGuard("tell me a story")
        text = _unique_prose(1199)
        chunks = [text[i : i + 50] for i in range(0, len(text), 50)]
        assert _feed(guard, chunks)[0] is None

        stop = guard.register("x")

        assert stop is not None
        assert stop.reason == LENGTH_LIMIT
        assert stop.repeats == 1200

    def test_prompt_echo_stops(self) -> None:
        prompt = "What is the capital of France?"
        guard = RepetitionGuard(prompt)
        stop, consumed = _feed(guard, [prompt + " "] * 4)

        assert stop is not None
        assert stop.reason == PROMPT_REPEAT
        assert stop.repeats == 3
        assert consumed == 3

    def test_prompt_echo_checked_before_sentence_cap(self) -> None:
        prompt = "please describe the weather in spring"
        guard = RepetitionGuard(prompt)
        stop = guard.register(f"{prompt}. {prompt}. {prompt}.")
        assert stop is not None
        assert stop.reason == PROMPT_REPEAT

    def test_sentence_cap_stops_long_answers(self) -> None:
        guard = RepetitionGuard("colors?")
        stop = guard.register(
            "The sky is usually blue on a clear day. "
            "Grass grows green in the spring. "
            "Water feels cold in winter."
        )
        assert stop is not None
        assert stop.reason == SENTENCE_LIMIT
        assert stop.repeats == 3

    def test_sentence_cap_needs_minimum_length(self) -> None:
        guard = RepetitionGuard("answer?")
        assert guard.register("Hi. Yes. No.") is None

    def test_text_keeps_original_formatting(self) -> None:
        guard = RepetitionGuard("q")
        guard.register("Hello,\n")
        guard.register("  World!")
        assert guard.text == "Hello,\n  World!"

    def test_policy_from_settings(self) -> None:
        policy = GuardPolicy.from_settings(Settings(max_response_characters=20))
        guard = RepetitionGuard("question", policy)
        stop = guard.register("a" * 25)
        assert stop is not None
        assert stop.reason == LENGTH_LIMIT


class TestStopSequenceScanner:
    """Tests for StopSequenceScanner."""

    @pytest.fixture
    def scanner(self) -> StopSequenceScanner:
        return StopSequenceScanner(["<end_of_turn>", "<start_of_turn>"])

    def test_passes_text_through_with_flush(self, scanner: StopSequenceScanner) -> None:
        chunks = ["Paris is the ", "capital of France", "."]
        emitted = []
        for chunk in chunks:
            text, hit = scanner.consume(chunk)
            assert hit is False
            emitted.append(text)
        emitted.append(scanner.flush())

        assert "".join(emitted) == "".join(chunks)

    def test_stop_sequence_split_across_chunks(self, scanner: StopSequenceScanner) -> None:
        first, hit = scanner.consume("Answer<end_")
        assert (first, hit) == ("", False)

        second, hit = scanner.consume("of_turn>junk")

        assert second == "Answer"
        assert hit is True
        assert scanner.flush() == ""

    def test_earliest_stop_sequence_wins(self, scanner: StopSequenceScanner) -> None:
        text, hit = scanner.consume("ok<start_of_turn>user<end_of_turn>")
        assert text == "ok"
        assert hit is True

    def test_no_stop_sequences_is_passthrough(self) -> None:
        scanner = StopSequenceScanner([])
        assert scanner.consume("anything") == ("anything", False)
        assert scanner.flush() == ""
