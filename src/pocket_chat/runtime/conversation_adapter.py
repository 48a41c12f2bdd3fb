"""Adapter for backends that keep their own multi-turn conversation object."""

import asyncio
from collections.abc import Sequence
from contextlib import aclosing
from pathlib import Path

from pocket_chat.catalog import BackendKind, ModelDescriptor
from pocket_chat.conversations.models import Message
from pocket_chat.core.errors import BackendError, ModelNotLoadedError, RuntimeFailure
from pocket_chat.core.logging import get_logger
from pocket_chat.runtime.base import (
    COMPLETED,
    TOKEN_LIMIT,
    OnToken,
    StreamResult,
    estimate_chunk_tokens,
    native_stream,
    to_native_message,
    validate_model_source,
)
from pocket_chat.runtime.cancellation import CancellationToken
from pocket_chat.runtime.guard import GuardPolicy, RepetitionGuard
from pocket_chat.runtime.native import (
    ConversationRunner,
    ResponseChunk,
    RunnerLoader,
    load_conversation_runner,
)

logger = get_logger(__name__)


def split_history_and_prompt(
    history: Sequence[Message], prompt: str
) -> tuple[list[Message], str]:
    """Separate a trailing user turn from the turns before it.

    Without a trailing user turn the whole history is prior context and
    ``prompt`` is the new message.
    """
    if history and history[-1].role == "user":
        return list(history[:-1]), history[-1].content
    return list(history), prompt


class ConversationBackendAdapter:
    """Wraps a conversation runner behind the uniform streaming contract.

    Each call builds a native conversation from the prior turns and submits
    only the new user message. ``token_limit`` is a soft cap: the adapter
    estimates tokens from emitted chunks and stops consuming once the estimate
    reaches the limit.
    """

    kind = BackendKind.CONVERSATION

    def __init__(
        self,
        loader: RunnerLoader | None = None,
        min_file_bytes: int = 1024,
        guard_policy: GuardPolicy | None = None,
    ) -> None:
        self._loader = loader or load_conversation_runner
        self.min_file_bytes = min_file_bytes
        self.guard_policy = guard_policy
        self._runner: ConversationRunner | None = None
        self._source: Path | None = None
        self._lock = asyncio.Lock()

    @property
    def is_loaded(self) -> bool:
        return self._runner is not None

    @property
    def source(self) -> Path | None:
        return self._source

    async def load(self, source: Path, descriptor: ModelDescriptor) -> None:
        async with self._lock:
            if self._runner is not None and self._source == source:
                logger.info("conversation_load_skipped", model_id=descriptor.id)
                return

            validate_model_source(source, self.min_file_bytes)

            try:
                runner = await self._loader(source, descriptor)
            except RuntimeFailure:
                raise
            except Exception as e:
                logger.error("conversation_load_failed", model_id=descriptor.id, error=str(e))
                raise BackendError(str(e)) from e

            await self._release()
            self._runner = runner
            self._source = source
            logger.info("conversation_load_success", model_id=descriptor.id)

    async def preload(self) -> None:
        # The runner is ready as soon as it loads
        if self._runner is None:
            raise ModelNotLoadedError()

    async def unload(self) -> None:
        async with self._lock:
            await self._release()

    async def reset_conversation_state(self) -> None:
        # Native conversations are rebuilt from history on every call
        logger.debug("conversation_reset_noop")

    async def stream(
        self,
        prompt: str,
        history: Sequence[Message],
        token_limit: int,
        on_token: OnToken,
        cancel: CancellationToken | None = None,
    ) -> StreamResult:
        async with self._lock:
            if self._runner is None:
                raise ModelNotLoadedError()

            prior, user_prompt = split_history_and_prompt(history, prompt)
            conversation = self._runner.conversation([to_native_message(m) for m in prior])
            guard = RepetitionGuard(user_prompt, self.guard_policy) if self.guard_policy else None
            estimated_tokens = 0
            chunks = 0

            events = conversation.generate_response({"role": "user", "content": user_prompt})
            async with aclosing(native_stream(events)) as stream:
                async for event in stream:
                    if cancel is not None:
                        cancel.raise_if_cancelled()
                    if not isinstance(event, ResponseChunk) or not event.text:
                        continue

                    await on_token(event.text)
                    chunks += 1

                    if guard is not None:
                        stop = guard.register(event.text)
                        if stop is not None:
                            logger.warning(
                                "conversation_guard_stop",
                                reason=stop.reason,
                                repeats=stop.repeats,
                            )
                            return StreamResult(stop.reason, chunks, stop.sample)

                    estimated_tokens += estimate_chunk_tokens(event.text)
                    if estimated_tokens >= token_limit:
                        logger.info(
                            "conversation_token_limit_reached",
                            limit=token_limit,
                            estimated_tokens=estimated_tokens,
                        )
                        return StreamResult(TOKEN_LIMIT, chunks)

            return StreamResult(COMPLETED, chunks)

    async def _release(self) -> None:
        runner, self._runner, self._source = self._runner, None, None
        if runner is not None:
            try:
                await runner.close()
            except Exception as e:
                logger.warning("conversation_runner_close_failed", error=str(e))
