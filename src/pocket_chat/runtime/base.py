"""Uniform streaming contract shared by every backend adapter."""

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, TypeVar

from pocket_chat.catalog import BackendKind, ModelDescriptor
from pocket_chat.conversations.models import Message
from pocket_chat.core.errors import BackendError, ModelFileMissingError, RuntimeFailure
from pocket_chat.runtime.cancellation import CancellationToken
from pocket_chat.runtime.native import NativeMessage

T = TypeVar("T")

OnToken = Callable[[str], Awaitable[None]]

COMPLETED = "completed"
TOKEN_LIMIT = "token_limit"
STOP_SEQUENCE = "stop_sequence"


@dataclass(frozen=True)
class StreamResult:
    """How a stream ended. Guard stops are successful, truncated completions."""

    finish_reason: str = COMPLETED
    chunk_count: int = 0
    guard_sample: str | None = None


class BackendAdapter(Protocol):
    """Capability every backend adapter provides.

    Implementations own their native handle exclusively and serialize every
    call that touches it.
    """

    kind: BackendKind

    @property
    def is_loaded(self) -> bool: ...

    async def load(self, source: Path, descriptor: ModelDescriptor) -> None: ...

    async def preload(self) -> None: ...

    async def unload(self) -> None: ...

    async def reset_conversation_state(self) -> None: ...

    async def stream(
        self,
        prompt: str,
        history: Sequence[Message],
        token_limit: int,
        on_token: OnToken,
        cancel: CancellationToken | None = None,
    ) -> StreamResult: ...


def validate_model_source(
    source: Path,
    min_file_bytes: int,
    require_directory: bool = False,
) -> None:
    """Reject missing, empty or truncated model sources.

    A directory must have contents; a file must be larger than
    ``min_file_bytes``.

    Raises:
        ModelFileMissingError: If the source does not look like a model.
    """
    if not source.exists():
        raise ModelFileMissingError(f"Model source not found at {source}")

    if source.is_dir():
        if not any(source.iterdir()):
            raise ModelFileMissingError(f"Model directory is empty: {source}")
        return

    if require_directory:
        raise ModelFileMissingError(f"Model source must be a directory: {source}")
    if source.stat().st_size <= min_file_bytes:
        raise ModelFileMissingError(f"Model file is too small: {source}")


def to_native_message(message: Message) -> NativeMessage:
    return {"role": message.role, "content": message.content}


def estimate_chunk_tokens(chunk: str) -> int:
    """Whitespace-token estimate of one emitted chunk, at least 1."""
    return max(len(chunk.split()), 1)


async def native_stream(iterator: AsyncIterator[T]) -> AsyncIterator[T]:
    """Relay a native stream, surfacing native errors as ``BackendError``.

    Errors raised by the consumer between items are not touched.
    """
    try:
        async for item in iterator:
            yield item
    except (RuntimeFailure, asyncio.CancelledError):
        raise
    except Exception as exc:
        raise BackendError(str(exc)) from exc
    finally:
        aclose = getattr(iterator, "aclose", None)
        if aclose is not None:
            await aclose()
