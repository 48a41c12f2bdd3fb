"""Backend adapters and the runtime orchestrator."""

from pocket_chat.runtime.base import BackendAdapter, StreamResult
from pocket_chat.runtime.cancellation import CancellationToken
from pocket_chat.runtime.container_adapter import ContainerBackendAdapter
from pocket_chat.runtime.conversation_adapter import ConversationBackendAdapter
from pocket_chat.runtime.factory import make_adapter
from pocket_chat.runtime.guard import GuardPolicy, GuardStop, RepetitionGuard
from pocket_chat.runtime.orchestrator import RuntimeOrchestrator

__all__ = [
    "BackendAdapter",
    "CancellationToken",
    "ContainerBackendAdapter",
    "ConversationBackendAdapter",
    "GuardPolicy",
    "GuardStop",
    "RepetitionGuard",
    "RuntimeOrchestrator",
    "StreamResult",
    "make_adapter",
]
