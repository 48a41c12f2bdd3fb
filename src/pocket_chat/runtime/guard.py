"""Streaming-time safety nets for generated text.

``RepetitionGuard`` inspects the response after every chunk and signals early
termination when the backend loops, echoes the prompt or runs long.
``StopSequenceScanner`` trims chat-template stop markers out of the stream.
Both are synchronous and keep no state beyond one generation request.
"""

import re
from dataclasses import dataclass

from pocket_chat.core.config import Settings

PROMPT_REPEAT = "prompt_repeat"
LINE_REPEAT = "line_repeat"
SENTENCE_LIMIT = "sentence_limit"
LENGTH_LIMIT = "length_limit"

_WHITESPACE = re.compile(r"\s+")
_SENTENCE_END = re.compile(r"[.!?]")

SAMPLE_LENGTH = 160


def normalize_text(text: str) -> str:
    """Lowercase, drop punctuation and collapse whitespace for comparisons."""
    kept = "".join(ch for ch in text.lower() if ch.isalnum() or ch.isspace())
    return _WHITESPACE.sub(" ", kept)


@dataclass(frozen=True)
class GuardPolicy:
    """Stop thresholds. Empirically tuned; see settings for overrides."""

    prompt_echo_threshold: int = 3
    duplicate_line_threshold: int = 4
    min_duplicate_line_length: int = 8
    max_sentences: int = 3
    sentence_limit_min_length: int = 80
    max_response_characters: int = 1200

    @classmethod
    def from_settings(cls, settings: Settings) -> "GuardPolicy":
        return cls(
            prompt_echo_threshold=settings.prompt_echo_threshold,
            duplicate_line_threshold=settings.duplicate_line_threshold,
            min_duplicate_line_length=settings.min_duplicate_line_length,
            max_sentences=settings.max_sentences,
            sentence_limit_min_length=settings.sentence_limit_min_length,
            max_response_characters=settings.max_response_characters,
        )


@dataclass(frozen=True)
class GuardStop:
    """Decision to stop consuming the stream."""

    reason: str
    repeats: int
    sample: str


class RepetitionGuard:
    """Per-request guard fed one chunk at a time.

    Stop conditions are checked in order after each chunk, first match wins:
    prompt echo, duplicate trailing line, sentence cap, hard length cap.
    Only the comparison copy is normalized; callers keep the original text.
    """

    def __init__(self, prompt: str, policy: GuardPolicy | None = None) -> None:
        self.policy = policy or GuardPolicy()
        self._normalized_prompt = normalize_text(prompt).strip()
        self._text = ""

    @property
    def text(self) -> str:
        return self._text

    def register(self, chunk: str) -> GuardStop | None:
        """Add a chunk and return a stop decision, or None to keep going."""
        self._text += chunk
        policy = self.policy

        if self._normalized_prompt:
            echoes = normalize_text(self._text).count(self._normalized_prompt)
            if echoes >= policy.prompt_echo_threshold:
                return GuardStop(PROMPT_REPEAT, echoes, self._recent_sample())

        # Only completed lines count; a trailing fragment is still growing
        completed = self._text.rpartition("\n")[0]
        lines = [line.strip() for line in completed.splitlines()]
        lines = [line for line in lines if line]
        if lines:
            last = lines[-1]
            duplicates = 0
            for line in reversed(lines):
                if line != last:
                    break
                duplicates += 1
            if (
                len(last) >= policy.min_duplicate_line_length
                and duplicates >= policy.duplicate_line_threshold
            ):
                return GuardStop(LINE_REPEAT, duplicates, last)

        sentences = [s for s in _SENTENCE_END.split(self._text) if s.strip()]
        if (
            len(sentences) >= policy.max_sentences
            and len(self._text) > policy.sentence_limit_min_length
        ):
            return GuardStop(SENTENCE_LIMIT, len(sentences), self._recent_sample())

        if len(self._text) >= policy.max_response_characters:
            return GuardStop(LENGTH_LIMIT, len(self._text), self._recent_sample())

        return None

    def _recent_sample(self) -> str:
        return self._text.strip()[-SAMPLE_LENGTH:]


class StopSequenceScanner:
    """Withholds a short tail of the stream so split stop markers are caught.

    Text before the earliest stop sequence is emitted; the marker itself and
    anything after it never are.
    """

    def __init__(self, stop_sequences: list[str] | tuple[str, ...]) -> None:
        self.stop_sequences = [s for s in stop_sequences if s]
        self._max_length = max((len(s) for s in self.stop_sequences), default=0)
        self._tail = ""

    def consume(self, chunk: str) -> tuple[str, bool]:
        """Return the emittable text and whether a stop sequence was hit."""
        if not self.stop_sequences:
            return chunk, False

        combined = self._tail + chunk
        positions = [combined.find(s) for s in self.stop_sequences]
        hits = [p for p in positions if p != -1]
        if hits:
            self._tail = ""
            return combined[: min(hits)], True

        keep = min(self._max_length - 1, len(combined))
        if keep <= 0:
            self._tail = ""
            return combined, False

        self._tail = combined[-keep:]
        return combined[:-keep], False

    def flush(self) -> str:
        """Release the withheld tail once the stream ends without a stop."""
        tail, self._tail = self._tail, ""
        return tail
