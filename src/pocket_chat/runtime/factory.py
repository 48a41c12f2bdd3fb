"""Maps a backend kind to the adapter that serves it."""

from collections.abc import Callable

from pocket_chat.catalog import BackendKind
from pocket_chat.core.config import Settings, get_settings
from pocket_chat.runtime.base import BackendAdapter
from pocket_chat.runtime.container_adapter import ContainerBackendAdapter, SamplingPolicy
from pocket_chat.runtime.conversation_adapter import ConversationBackendAdapter
from pocket_chat.runtime.guard import GuardPolicy


def _conversation_adapter(settings: Settings) -> BackendAdapter:
    guard = GuardPolicy.from_settings(settings) if settings.guard_conversation_backend else None
    return ConversationBackendAdapter(
        min_file_bytes=settings.min_model_file_bytes,
        guard_policy=guard,
    )


def _container_adapter(settings: Settings) -> BackendAdapter:
    return ContainerBackendAdapter(
        min_file_bytes=settings.min_model_file_bytes,
        guard_policy=GuardPolicy.from_settings(settings),
        sampling=SamplingPolicy.from_settings(settings),
        stop_sequences=settings.container_stop_sequences,
    )


_BUILDERS: dict[BackendKind, Callable[[Settings], BackendAdapter]] = {
    BackendKind.CONVERSATION: _conversation_adapter,
    BackendKind.CONTAINER: _container_adapter,
}


def make_adapter(kind: BackendKind, settings: Settings | None = None) -> BackendAdapter:
    """Instantiate a fresh adapter for ``kind``."""
    return _BUILDERS[kind](settings or get_settings())
