"""Process-wide chat runtime shared by the REST and WebSocket endpoints."""

import threading
from dataclasses import dataclass

from pocket_chat.catalog import ModelCatalog
from pocket_chat.conversations.budget import BudgetPolicy, ContextBudgetPlanner
from pocket_chat.conversations.manager import ConversationManager
from pocket_chat.conversations.titles import TitleGenerator
from pocket_chat.core.config import Settings, get_settings
from pocket_chat.core.logging import get_logger
from pocket_chat.db import ConversationStore, create_store
from pocket_chat.runtime import RuntimeOrchestrator

logger = get_logger(__name__)


@dataclass
class ChatRuntime:
    """Collaborators wired together for one process."""

    settings: Settings
    catalog: ModelCatalog
    store: ConversationStore
    orchestrator: RuntimeOrchestrator
    manager: ConversationManager

    async def shutdown(self) -> None:
        await self.manager.close()
        await self.orchestrator.unload_model()


def build_runtime(
    settings: Settings,
    store: ConversationStore | None = None,
    orchestrator: RuntimeOrchestrator | None = None,
    catalog: ModelCatalog | None = None,
) -> ChatRuntime:
    """Build a runtime from settings, with optional collaborator overrides."""
    if catalog is None:
        if settings.catalog_path is not None:
            catalog = ModelCatalog.from_file(settings.catalog_path)
        else:
            catalog = ModelCatalog()
    store = store or create_store(settings)
    orchestrator = orchestrator or RuntimeOrchestrator()

    manager = ConversationManager(
        orchestrator,
        store,
        catalog=catalog,
        planner=ContextBudgetPlanner(catalog, BudgetPolicy.from_settings(settings)),
        title_generator=TitleGenerator(orchestrator, settings.title_token_limit),
        title_generation_enabled=settings.title_generation_enabled,
    )
    return ChatRuntime(settings, catalog, store, orchestrator, manager)


# Global runtime instance (lazy loaded, thread-safe)
_runtime: ChatRuntime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> ChatRuntime:
    """Get or create the global chat runtime (thread-safe)."""
    global _runtime
    if _runtime is None:
        with _runtime_lock:
            # Double-check locking pattern
            if _runtime is None:
                current = get_settings()
                logger.info(
                    "initializing_runtime",
                    persistence=current.persistence_backend,
                    data_dir=str(current.data_dir),
                )
                _runtime = build_runtime(current)
    return _runtime


def set_runtime(runtime: ChatRuntime | None) -> None:
    """Replace the global runtime. Passing None forces a rebuild on next use."""
    global _runtime
    with _runtime_lock:
        _runtime = runtime
