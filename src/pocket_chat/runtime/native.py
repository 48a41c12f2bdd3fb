"""Native inference capabilities wrapped by the backend adapters.

Two shapes of native backend exist:

- a conversation runner, which builds a multi-turn conversation object from
  prior turns and streams the reply to one new user message;
- a model container, a pure generate-from-messages call with no memory.

Both are consumed through the protocols below. The default implementations
talk to a local OpenAI-compatible inference server (llama.cpp server, Ollama,
vLLM and similar) via ``openai.AsyncOpenAI``.
"""

from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, TypedDict

from openai import AsyncOpenAI

from pocket_chat.catalog import ModelDescriptor
from pocket_chat.core.config import get_settings
from pocket_chat.core.logging import get_logger

logger = get_logger(__name__)


class NativeMessage(TypedDict):
    """Message schema understood by the native backends."""

    role: str
    content: str


@dataclass(frozen=True)
class ResponseChunk:
    text: str


@dataclass(frozen=True)
class ReasoningChunk:
    text: str


@dataclass(frozen=True)
class ResponseComplete:
    finish_reason: str | None = None


ResponseEvent = ResponseChunk | ReasoningChunk | ResponseComplete


@dataclass(frozen=True)
class GenerationParameters:
    """Sampling parameters passed to a model container on every call."""

    max_tokens: int
    temperature: float
    top_p: float
    repetition_penalty: float
    repetition_context_size: int


class NativeConversation(Protocol):
    def generate_response(self, message: NativeMessage) -> AsyncIterator[ResponseEvent]: ...


class ConversationRunner(Protocol):
    def conversation(self, history: list[NativeMessage]) -> NativeConversation: ...

    async def close(self) -> None: ...


class ModelContainer(Protocol):
    async def materialize(self) -> None: ...

    def generate(
        self,
        messages: list[NativeMessage],
        parameters: GenerationParameters,
    ) -> AsyncIterator[str]: ...

    async def close(self) -> None: ...


RunnerLoader = Callable[[Path, ModelDescriptor], Awaitable[ConversationRunner]]
ContainerLoader = Callable[[Path, ModelDescriptor], Awaitable[ModelContainer]]


def create_client(base_url: str | None = None, api_key: str | None = None) -> AsyncOpenAI:
    """Create a client for the local inference server."""
    current = get_settings()
    return AsyncOpenAI(
        api_key=api_key or current.inference_api_key,
        base_url=base_url or current.inference_base_url,
    )


class OpenAICompatConversation:
    """Conversation object that owns its message list.

    Each completed reply is appended to the list, so repeated calls to
    ``generate_response`` continue the same multi-turn exchange.
    """

    def __init__(
        self,
        client: AsyncOpenAI,
        model: str,
        history: list[NativeMessage],
    ) -> None:
        self.client = client
        self.model = model
        self.messages: list[NativeMessage] = list(history)

    async def generate_response(
        self, message: NativeMessage
    ) -> AsyncIterator[ResponseEvent]:
        self.messages.append(message)
        stream = await self.client.chat.completions.create(
            model=self.model,
            messages=self.messages,  # type: ignore[arg-type]
            stream=True,
        )

        reply: list[str] = []
        finish_reason: str | None = None
        # The response is closed even when the consumer stops early
        async with stream:
            async for chunk in stream:
                if not chunk.choices:
                    continue
                choice = chunk.choices[0]
                reasoning = getattr(choice.delta, "reasoning_content", None)
                if reasoning:
                    yield ReasoningChunk(reasoning)
                if choice.delta.content:
                    reply.append(choice.delta.content)
                    yield ResponseChunk(choice.delta.content)
                if choice.finish_reason:
                    finish_reason = choice.finish_reason

        self.messages.append({"role": "assistant", "content": "".join(reply)})
        yield ResponseComplete(finish_reason)


class OpenAICompatRunner:
    """Conversation runner bound to one served model."""

    def __init__(self, client: AsyncOpenAI, model: str) -> None:
        self.client = client
        self.model = model

    def conversation(self, history: list[NativeMessage]) -> OpenAICompatConversation:
        return OpenAICompatConversation(self.client, self.model, history)

    async def close(self) -> None:
        await self.client.close()


class OpenAICompatContainer:
    """Stateless container: the full message list is sent on every call."""

    def __init__(self, client: AsyncOpenAI, model: str) -> None:
        self.client = client
        self.model = model

    async def materialize(self) -> None:
        """Force the server to bring the model into memory."""
        await self.client.chat.completions.create(
            model=self.model,
            messages=[{"role": "user", "content": "ping"}],
            max_tokens=1,
        )
        logger.info("container_materialized", model=self.model)

    async def generate(
        self,
        messages: list[NativeMessage],
        parameters: GenerationParameters,
    ) -> AsyncIterator[str]:
        stream = await self.client.chat.completions.create(
            model=self.model,
            messages=messages,  # type: ignore[arg-type]
            stream=True,
            max_tokens=parameters.max_tokens,
            temperature=parameters.temperature,
            top_p=parameters.top_p,
            extra_body={
                "repeat_penalty": parameters.repetition_penalty,
                "repeat_last_n": parameters.repetition_context_size,
            },
        )

        async with stream:
            async for chunk in stream:
                if chunk.choices and chunk.choices[0].delta.content:
                    yield chunk.choices[0].delta.content

    async def close(self) -> None:
        await self.client.close()


async def load_conversation_runner(
    source: Path, descriptor: ModelDescriptor
) -> OpenAICompatRunner:
    """Bind a runner to the served model, checking the server knows it."""
    client = create_client()
    try:
        await client.models.retrieve(descriptor.native_name)
    except Exception:
        await client.close()
        raise
    logger.info(
        "conversation_runner_loaded",
        model=descriptor.native_name,
        source=str(source),
    )
    return OpenAICompatRunner(client, descriptor.native_name)


async def load_model_container(
    source: Path, descriptor: ModelDescriptor
) -> OpenAICompatContainer:
    """Create a container handle; the model is materialized on preload."""
    client = create_client()
    logger.info(
        "model_container_created",
        model=descriptor.native_name,
        source=str(source),
    )
    return OpenAICompatContainer(client, descriptor.native_name)
