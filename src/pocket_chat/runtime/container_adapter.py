"""Adapter for stateless generate-from-messages model containers."""

import asyncio
from collections.abc import Sequence
from contextlib import aclosing
from dataclasses import dataclass
from pathlib import Path

from pocket_chat.catalog import BackendKind, ModelDescriptor
from pocket_chat.conversations.models import Message
from pocket_chat.core.config import Settings
from pocket_chat.core.errors import (
    BackendError,
    ModelFileMissingError,
    ModelNotLoadedError,
    RuntimeFailure,
    UnsupportedBackendError,
)
from pocket_chat.core.logging import get_logger
from pocket_chat.runtime.base import (
    COMPLETED,
    STOP_SEQUENCE,
    OnToken,
    StreamResult,
    native_stream,
    to_native_message,
    validate_model_source,
)
from pocket_chat.runtime.cancellation import CancellationToken
from pocket_chat.runtime.guard import (
    GuardPolicy,
    GuardStop,
    RepetitionGuard,
    StopSequenceScanner,
)
from pocket_chat.runtime.native import (
    ContainerLoader,
    GenerationParameters,
    ModelContainer,
    load_model_container,
)

logger = get_logger(__name__)

DEFAULT_STOP_SEQUENCES = ("<end_of_turn>", "<start_of_turn>")


@dataclass(frozen=True)
class SamplingPolicy:
    """Fixed sampling tuned for short, non-repetitive answers."""

    max_response_tokens: int = 256
    temperature: float = 0.35
    top_p: float = 0.85
    repetition_penalty: float = 1.15
    repetition_context_size: int = 128

    @classmethod
    def from_settings(cls, settings: Settings) -> "SamplingPolicy":
        return cls(
            max_response_tokens=settings.container_max_response_tokens,
            temperature=settings.container_temperature,
            top_p=settings.container_top_p,
            repetition_penalty=settings.container_repetition_penalty,
            repetition_context_size=settings.container_repetition_context_size,
        )

    def parameters(self, token_limit: int) -> GenerationParameters:
        """Parameters for one call; ``max_tokens`` never exceeds the ceiling."""
        return GenerationParameters(
            max_tokens=min(max(token_limit, 1), self.max_response_tokens),
            temperature=self.temperature,
            top_p=self.top_p,
            repetition_penalty=self.repetition_penalty,
            repetition_context_size=self.repetition_context_size,
        )


def build_chat_messages(
    prompt: str,
    history: Sequence[Message],
    system_prompt: str | None,
) -> list[Message]:
    """Full message list for one stateless call.

    The system prompt leads and the prompt is the trailing user turn.
    """
    messages = list(history)
    if system_prompt and not (messages and messages[0].role == "system"):
        messages.insert(0, Message(role="system", content=system_prompt))
    last = messages[-1] if messages else None
    if last is None or last.role != "user" or last.content != prompt:
        messages.append(Message(role="user", content=prompt))
    return messages


class ContainerBackendAdapter:
    """Wraps a model container behind the uniform streaming contract.

    The container has no memory, so every call re-sends the whole chat. Every
    emitted chunk runs through the repetition guard, and chat-template stop
    markers are stripped from the stream.
    """

    kind = BackendKind.CONTAINER

    def __init__(
        self,
        loader: ContainerLoader | None = None,
        min_file_bytes: int = 1024,
        guard_policy: GuardPolicy | None = None,
        sampling: SamplingPolicy | None = None,
        stop_sequences: Sequence[str] = DEFAULT_STOP_SEQUENCES,
    ) -> None:
        self._loader = loader or load_model_container
        self.min_file_bytes = min_file_bytes
        self.guard_policy = guard_policy or GuardPolicy()
        self.sampling = sampling or SamplingPolicy()
        self.stop_sequences = tuple(stop_sequences)
        self._container: ModelContainer | None = None
        self._source: Path | None = None
        self._system_prompt: str | None = None
        self._lock = asyncio.Lock()

    @property
    def is_loaded(self) -> bool:
        return self._container is not None

    @property
    def source(self) -> Path | None:
        return self._source

    async def load(self, source: Path, descriptor: ModelDescriptor) -> None:
        if descriptor.backend is not BackendKind.CONTAINER:
            raise UnsupportedBackendError(
                f"Model {descriptor.id} does not run on the container backend"
            )

        async with self._lock:
            validate_model_source(source, self.min_file_bytes, require_directory=True)
            if descriptor.primary_file:
                primary = source / descriptor.primary_file
                if not primary.exists():
                    raise ModelFileMissingError(f"Primary model file missing at {primary}")

            try:
                container = await self._loader(source, descriptor)
            except RuntimeFailure:
                raise
            except Exception as e:
                logger.error("container_load_failed", model_id=descriptor.id, error=str(e))
                raise BackendError(str(e)) from e

            await self._release()
            self._container = container
            self._source = source
            self._system_prompt = descriptor.cleaned_system_prompt
            logger.info("container_load_success", model_id=descriptor.id)

    async def preload(self) -> None:
        async with self._lock:
            if self._container is None:
                raise ModelNotLoadedError()
            try:
                await self._container.materialize()
            except RuntimeFailure:
                raise
            except Exception as e:
                raise BackendError(str(e)) from e

    async def unload(self) -> None:
        async with self._lock:
            await self._release()

    async def reset_conversation_state(self) -> None:
        # Stateless; nothing to reset
        logger.debug("container_reset_noop")

    async def stream(
        self,
        prompt: str,
        history: Sequence[Message],
        token_limit: int,
        on_token: OnToken,
        cancel: CancellationToken | None = None,
    ) -> StreamResult:
        async with self._lock:
            if self._container is None:
                raise ModelNotLoadedError()

            messages = build_chat_messages(prompt, history, self._system_prompt)
            logger.info(
                "container_conversation",
                roles=",".join(m.role for m in messages),
                count=len(messages),
            )

            parameters = self.sampling.parameters(token_limit)
            guard = RepetitionGuard(prompt, self.guard_policy)
            scanner = StopSequenceScanner(self.stop_sequences)
            chunks = 0

            tokens = self._container.generate(
                [to_native_message(m) for m in messages], parameters
            )
            async with aclosing(native_stream(tokens)) as stream:
                async for token in stream:
                    if cancel is not None:
                        cancel.raise_if_cancelled()

                    emittable, hit_stop = scanner.consume(token)
                    if emittable:
                        await on_token(emittable)
                        chunks += 1
                        stop = guard.register(emittable)
                        if stop is not None:
                            return self._guard_stopped(stop, chunks)

                    if hit_stop:
                        return StreamResult(STOP_SEQUENCE, chunks)

            tail = scanner.flush()
            if tail:
                await on_token(tail)
                chunks += 1
                stop = guard.register(tail)
                if stop is not None:
                    return self._guard_stopped(stop, chunks)

            return StreamResult(COMPLETED, chunks)

    def _guard_stopped(self, stop: GuardStop, chunks: int) -> StreamResult:
        logger.warning(
            "container_guard_stop",
            reason=stop.reason,
            repeats=stop.repeats,
            sample=stop.sample.replace("\n", " "),
        )
        return StreamResult(stop.reason, chunks, stop.sample)

    async def _release(self) -> None:
        container, self._container, self._source = self._container, None, None
        self._system_prompt = None
        if container is not None:
            try:
                await container.close()
            except Exception as e:
                logger.warning("container_close_failed", error=str(e))
