"""FastAPI application entry point for Pocket Chat"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from pocket_chat.api.services import ChatRuntime, get_runtime
from pocket_chat.api.websocket import router as ws_router
from pocket_chat.catalog import BackendKind
from pocket_chat.conversations.models import Conversation, MessageRole, TokenStats
from pocket_chat.core.config import settings
from pocket_chat.core.errors import ModelFileMissingError, RuntimeFailure
from pocket_chat.core.logging import configure_logging, get_logger

logger = get_logger(__name__)


class ModelResponse(BaseModel):
    """Response model for a catalog entry."""

    id: str
    display_name: str
    provider: str
    backend: BackendKind
    context_window: int
    description: str
    loaded: bool


class LoadModelRequest(BaseModel):
    """Request body for loading a model. ``source`` overrides the catalog path."""

    source: Path | None = None


class LoadModelResponse(BaseModel):
    """Response model after a successful load."""

    model_id: str
    backend: BackendKind
    source: str


class MessageResponse(BaseModel):
    """Response model for a message."""

    id: str
    role: MessageRole
    content: str
    token_count: int | None
    timestamp: datetime
    stats: TokenStats | None
    archived: bool


class ConversationResponse(BaseModel):
    """Response model for a conversation."""

    id: str
    title: str
    model_id: str
    created_at: datetime
    updated_at: datetime
    messages: list[MessageResponse]


class ConversationListItem(BaseModel):
    """Response model for conversation list item (without messages)."""

    id: str
    title: str
    model_id: str
    created_at: datetime
    updated_at: datetime
    message_count: int


class ConversationListResponse(BaseModel):
    """Response model for conversation list."""

    data: list[ConversationListItem]
    total: int


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan context manager for startup/shutdown."""
    # Startup
    configure_logging()
    runtime = get_runtime()
    app.state.runtime = runtime
    logger.info("runtime_ready", models=len(runtime.catalog))
    yield
    # Shutdown
    await runtime.shutdown()
    logger.info("runtime_stopped")


app = FastAPI(
    title="Pocket Chat API",
    description="On-device conversation runtime",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
)


# Include WebSocket router
app.include_router(ws_router)


def _runtime(request: Request) -> ChatRuntime:
    return request.app.state.runtime


def _conversation_response(conversation: Conversation) -> ConversationResponse:
    archived_ids = {m.id for m in conversation.archived_messages}
    return ConversationResponse(
        id=conversation.id,
        title=conversation.title,
        model_id=conversation.model_id,
        created_at=conversation.created_at,
        updated_at=conversation.updated_at,
        messages=[
            MessageResponse(
                id=msg.id,
                role=msg.role,
                content=msg.content,
                token_count=msg.token_count,
                timestamp=msg.timestamp,
                stats=msg.stats,
                archived=msg.id in archived_ids,
            )
            for msg in conversation.all_messages
        ],
    )


@app.get("/api/v1/health")
async def health_check(request: Request) -> dict[str, str | bool | None]:
    """Health check endpoint.

    Returns:
        dict with status "ok" and the currently loaded model, if any.
    """
    orchestrator = _runtime(request).orchestrator
    return {
        "status": "ok",
        "model_loaded": orchestrator.is_model_loaded,
        "model_id": orchestrator.current_model_id,
    }


@app.get("/api/v1/models")
async def list_models(request: Request) -> list[ModelResponse]:
    """List catalog models, flagging the loaded one."""
    runtime = _runtime(request)
    loaded_id = runtime.orchestrator.current_model_id
    return [
        ModelResponse(
            id=model.id,
            display_name=model.display_name,
            provider=model.provider,
            backend=model.backend,
            context_window=model.context_window,
            description=model.description,
            loaded=model.id == loaded_id,
        )
        for model in runtime.catalog
    ]


@app.post("/api/v1/models/{model_id}/load")
async def load_model(
    model_id: str,
    request: Request,
    body: LoadModelRequest | None = None,
) -> LoadModelResponse:
    """Load a catalog model, switching backends if needed.

    Raises:
        HTTPException: 404 for unknown models or missing files, 502 when the
            native backend fails to load or warm up.
    """
    runtime = _runtime(request)
    descriptor = runtime.catalog.get(model_id)
    if descriptor is None:
        raise HTTPException(status_code=404, detail="Model not found")

    source = body.source if body is not None else None
    try:
        await runtime.orchestrator.load_model(descriptor, source)
    except ModelFileMissingError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except RuntimeFailure as e:
        raise HTTPException(status_code=502, detail=str(e)) from e

    loaded_source = runtime.orchestrator.current_source
    return LoadModelResponse(
        model_id=descriptor.id,
        backend=descriptor.backend,
        source=str(loaded_source) if loaded_source is not None else "",
    )


@app.delete("/api/v1/models/current", status_code=204)
async def unload_model(request: Request) -> None:
    """Unload the active model."""
    await _runtime(request).orchestrator.unload_model()


@app.get("/api/v1/conversations")
async def list_conversations(request: Request) -> ConversationListResponse:
    """Get stored conversations, most recently updated first."""
    conversations = _runtime(request).manager.list_conversations()
    return ConversationListResponse(
        data=[
            ConversationListItem(
                id=conv.id,
                title=conv.title,
                model_id=conv.model_id,
                created_at=conv.created_at,
                updated_at=conv.updated_at,
                message_count=len(conv.all_messages),
            )
            for conv in conversations
        ],
        total=len(conversations),
    )


@app.get("/api/v1/conversations/{conversation_id}")
async def get_conversation(conversation_id: str, request: Request) -> ConversationResponse:
    """Get a specific conversation with archived and active messages.

    Raises:
        HTTPException: If conversation not found (404).
    """
    conversation = _runtime(request).store.load(conversation_id)
    if conversation is None:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return _conversation_response(conversation)


@app.delete("/api/v1/conversations/{conversation_id}", status_code=204)
async def delete_conversation(conversation_id: str, request: Request) -> None:
    """Delete a stored conversation.

    Raises:
        HTTPException: If conversation not found (404).
    """
    if not _runtime(request).manager.delete_conversation(conversation_id):
        raise HTTPException(status_code=404, detail="Conversation not found")
