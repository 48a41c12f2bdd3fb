"""Runtime orchestrator: the single owner of the active backend adapter."""

import asyncio
from collections.abc import Callable, Sequence
from pathlib import Path

from pocket_chat.catalog import BackendKind, ModelDescriptor
from pocket_chat.conversations.models import Message
from pocket_chat.core.errors import ModelFileMissingError, ModelNotLoadedError
from pocket_chat.core.logging import get_logger
from pocket_chat.runtime.base import BackendAdapter, OnToken, StreamResult
from pocket_chat.runtime.cancellation import CancellationToken
from pocket_chat.runtime.factory import make_adapter

logger = get_logger(__name__)

AdapterFactory = Callable[[BackendKind], BackendAdapter]


class RuntimeOrchestrator:
    """Holds at most one adapter and remembers which model it represents.

    Loading, unloading and streaming all take the same lock, so a backend
    switch can never overlap a stream from the previous adapter and two
    backends never run at once.
    """

    def __init__(self, adapter_factory: AdapterFactory | None = None) -> None:
        self._adapter_factory = adapter_factory or make_adapter
        self._adapter: BackendAdapter | None = None
        self._kind: BackendKind | None = None
        self._model_id: str | None = None
        self._source: Path | None = None
        self._lock = asyncio.Lock()

    @property
    def is_model_loaded(self) -> bool:
        return self._source is not None

    @property
    def current_model_id(self) -> str | None:
        return self._model_id

    @property
    def current_source(self) -> Path | None:
        return self._source

    @property
    def current_kind(self) -> BackendKind | None:
        return self._kind

    async def load_model(self, descriptor: ModelDescriptor, source: Path | None = None) -> None:
        """Load ``descriptor`` from ``source`` and warm it up.

        Re-requesting the model that is already loaded is a no-op. A failure
        in either load or preload leaves the orchestrator not loaded.
        """
        source = source or descriptor.source
        if source is None:
            raise ModelFileMissingError(f"No source location for model {descriptor.id}")

        async with self._lock:
            if self._kind is not None and self._kind != descriptor.backend:
                logger.info(
                    "backend_switch",
                    previous=self._kind.value,
                    requested=descriptor.backend.value,
                )
                await self._teardown()

            if self._adapter is None:
                self._adapter = self._adapter_factory(descriptor.backend)
                self._kind = descriptor.backend

            if self._source == source and self._model_id == descriptor.id:
                logger.info("load_skipped", model_id=descriptor.id, reason="already_loaded")
                return

            adapter = self._adapter
            try:
                await adapter.load(source, descriptor)
                logger.info("preload_start", model_id=descriptor.id)
                await adapter.preload()
            except Exception as e:
                logger.error(
                    "load_failed",
                    model_id=descriptor.id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                await self._teardown()
                raise

            self._model_id = descriptor.id
            self._source = source
            logger.info("preload_complete", model_id=descriptor.id, backend=descriptor.backend.value)

    async def unload_model(self) -> None:
        async with self._lock:
            await self._teardown()

    async def reset_conversation(self) -> None:
        async with self._lock:
            if self._adapter is not None:
                await self._adapter.reset_conversation_state()

    async def stream_response(
        self,
        prompt: str,
        history: Sequence[Message],
        token_limit: int,
        on_token: OnToken,
        cancel: CancellationToken | None = None,
    ) -> StreamResult:
        """Forward a stream request to the active adapter."""
        async with self._lock:
            if self._adapter is None:
                logger.error("stream_rejected", reason="no_model_loaded")
                raise ModelNotLoadedError()

            logger.info(
                "stream_start",
                model_id=self._model_id,
                history_length=len(history),
                token_limit=token_limit,
            )
            result = await self._adapter.stream(prompt, history, token_limit, on_token, cancel)
            logger.info(
                "stream_complete",
                model_id=self._model_id,
                finish_reason=result.finish_reason,
                chunks=result.chunk_count,
            )
            return result

    async def _teardown(self) -> None:
        adapter = self._adapter
        self._adapter = None
        self._kind = None
        self._model_id = None
        self._source = None
        if adapter is not None:
            await adapter.unload()
