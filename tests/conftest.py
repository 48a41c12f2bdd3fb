"""Shared fakes for the runtime and persistence collaborators."""

import asyncio
import threading
from collections.abc import Sequence
from pathlib import Path

import pytest

from pocket_chat.catalog import BackendKind, ModelCatalog, ModelDescriptor
from pocket_chat.conversations.models import Conversation, Message
from pocket_chat.core.errors import GenerationCancelled, ModelNotLoadedError
from pocket_chat.runtime.base import COMPLETED, OnToken, StreamResult
from pocket_chat.runtime.cancellation import CancellationToken
from pocket_chat.runtime.native import GenerationParameters, NativeMessage, ResponseChunk
from pocket_chat.runtime.orchestrator import RuntimeOrchestrator


class FakeNativeConversation:
    """Native conversation replaying the runner's scripted events."""

    def __init__(self, runner: "FakeRunner", history: list[NativeMessage]) -> None:
        self.runner = runner
        self.history = history

    async def generate_response(self, message: NativeMessage):
        self.runner.submitted.append((self.history, message))
        for event in self.runner.events:
            if isinstance(event, Exception):
                raise event
            yield event


class FakeRunner:
    def __init__(self, events: list | None = None) -> None:
        if events is None:
            events = [ResponseChunk("Hello"), ResponseChunk(" there")]
        self.events = events
        self.submitted: list[tuple[list[NativeMessage], NativeMessage]] = []
        self.closed = False

    def conversation(self, history: list[NativeMessage]) -> FakeNativeConversation:
        return FakeNativeConversation(self, history)

    async def close(self) -> None:
        self.closed = True


class FakeContainer:
    def __init__(self, tokens: list | None = None) -> None:
        self.tokens = tokens if tokens is not None else ["Paris is ", "the capital."]
        self.materialized = 0
        self.materialize_error: Exception | None = None
        self.calls: list[tuple[list[NativeMessage], GenerationParameters]] = []
        self.closed = False

    async def materialize(self) -> None:
        if self.materialize_error is not None:
            raise self.materialize_error
        self.materialized += 1

    async def generate(self, messages: list[NativeMessage], parameters: GenerationParameters):
        self.calls.append((messages, parameters))
        for token in self.tokens:
            if isinstance(token, Exception):
                raise token
            yield token

    async def close(self) -> None:
        self.closed = True


class FakeAdapter:
    """Scripted backend adapter that records lifecycle calls in a shared log."""

    def __init__(self, kind: BackendKind, log: list[tuple]) -> None:
        self.kind = kind
        self.log = log
        self.chunks: list[str] = ["Hello", " world"]
        self.error: Exception | None = None
        self.preload_error: Exception | None = None
        # Holds the stream before each chunk until set or cancelled
        self.gate: threading.Event | None = None
        self.gate_ignores_cancel = False
        self.streams: list[tuple[str, list[Message], int]] = []
        self._loaded = False

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    async def load(self, source: Path, descriptor: ModelDescriptor) -> None:
        self.log.append(("load", self.kind, descriptor.id))
        self._loaded = True

    async def preload(self) -> None:
        self.log.append(("preload", self.kind))
        if self.preload_error is not None:
            raise self.preload_error

    async def unload(self) -> None:
        self.log.append(("unload", self.kind))
        self._loaded = False

    async def reset_conversation_state(self) -> None:
        self.log.append(("reset", self.kind))

    async def stream(
        self,
        prompt: str,
        history: Sequence[Message],
        token_limit: int,
        on_token: OnToken,
        cancel: CancellationToken | None = None,
    ) -> StreamResult:
        if not self._loaded:
            raise ModelNotLoadedError()
        self.streams.append((prompt, list(history), token_limit))
        for chunk in self.chunks:
            while self.gate is not None and not self.gate.is_set():
                if cancel is not None and cancel.cancelled and not self.gate_ignores_cancel:
                    break
                await asyncio.sleep(0.01)
            if cancel is not None and cancel.cancelled:
                raise GenerationCancelled()
            await on_token(chunk)
        if cancel is not None and cancel.cancelled:
            raise GenerationCancelled()
        if self.error is not None:
            raise self.error
        return StreamResult(COMPLETED, len(self.chunks))


class MemoryStore:
    """In-memory conversation store recording every save."""

    def __init__(self) -> None:
        self.conversations: dict[str, Conversation] = {}
        self.saves: list[Conversation] = []
        self.fail_saves = False

    def save(self, conversation: Conversation) -> None:
        if self.fail_saves:
            raise OSError("disk full")
        self.saves.append(conversation)
        self.conversations[conversation.id] = conversation

    def load(self, conversation_id: str) -> Conversation | None:
        return self.conversations.get(conversation_id)

    def load_all(self) -> list[Conversation]:
        return sorted(self.conversations.values(), key=lambda c: c.updated_at, reverse=True)

    def delete(self, conversation_id: str) -> bool:
        return self.conversations.pop(conversation_id, None) is not None


class AdapterFactory:
    """Adapter factory handing out FakeAdapters and remembering them."""

    def __init__(self) -> None:
        self.log: list[tuple] = []
        self.created: list[FakeAdapter] = []
        self.preload_error: Exception | None = None

    def __call__(self, kind: BackendKind) -> FakeAdapter:
        adapter = FakeAdapter(kind, self.log)
        adapter.preload_error = self.preload_error
        self.created.append(adapter)
        return adapter

    @property
    def last(self) -> FakeAdapter:
        return self.created[-1]


@pytest.fixture
def model_dir(tmp_path: Path) -> Path:
    """A container-style model directory with a primary weights file."""
    directory = tmp_path / "gemma"
    directory.mkdir()
    (directory / "model.safetensors").write_bytes(b"\0" * 2048)
    (directory / "config.json").write_text("{}")
    return directory


@pytest.fixture
def model_file(tmp_path: Path) -> Path:
    """A single-file model bundle above the size threshold."""
    path = tmp_path / "lfm2.bundle"
    path.write_bytes(b"\0" * 4096)
    return path


@pytest.fixture
def catalog(model_dir: Path, model_file: Path) -> ModelCatalog:
    return ModelCatalog(
        [
            ModelDescriptor(
                id="chat-small",
                display_name="Chat Small",
                backend=BackendKind.CONVERSATION,
                context_window=4096,
                source=model_file,
            ),
            ModelDescriptor(
                id="gemma-test",
                display_name="Gemma Test",
                backend=BackendKind.CONTAINER,
                context_window=8192,
                system_prompt="  Be brief.  ",
                source=model_dir,
                primary_file="model.safetensors",
            ),
        ]
    )


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def fake_container() -> FakeContainer:
    return FakeContainer()


@pytest.fixture
def adapter_factory() -> AdapterFactory:
    return AdapterFactory()


@pytest.fixture
def orchestrator(adapter_factory: AdapterFactory) -> RuntimeOrchestrator:
    return RuntimeOrchestrator(adapter_factory)


@pytest.fixture
def memory_store() -> MemoryStore:
    return MemoryStore()
