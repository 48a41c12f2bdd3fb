"""WebSocket endpoint for streaming chat"""

import asyncio
import json

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from pocket_chat.api.services import ChatRuntime
from pocket_chat.conversations.manager import TurnResult
from pocket_chat.conversations.models import Conversation, Message
from pocket_chat.core.logging import get_logger
from pocket_chat.runtime import CancellationToken

router = APIRouter()
logger = get_logger(__name__)


def message_payload(message: Message) -> dict:
    """JSON-safe dict for a message."""
    return message.model_dump(mode="json")


def conversation_payload(conversation: Conversation) -> dict:
    """JSON-safe dict for a conversation, display messages included."""
    return {
        "id": conversation.id,
        "title": conversation.title,
        "model_id": conversation.model_id,
        "created_at": conversation.created_at.isoformat(),
        "updated_at": conversation.updated_at.isoformat(),
        "messages": [message_payload(m) for m in conversation.all_messages],
    }


def turn_payload(result: TurnResult) -> dict:
    stats = result.stats
    return {
        "type": "llm.end",
        "outcome": result.outcome,
        "finish_reason": result.finish_reason,
        "text": result.text,
        "message": message_payload(result.message) if result.message else None,
        "stats": stats.model_dump() if stats else None,
    }


class ChatSession:
    """Per-connection state: at most one generation in flight."""

    def __init__(self, websocket: WebSocket, runtime: ChatRuntime, client_info: str) -> None:
        self.websocket = websocket
        self.runtime = runtime
        self.client_info = client_info
        self.task: asyncio.Task[None] | None = None
        self.cancel_token: CancellationToken | None = None

    @property
    def is_streaming(self) -> bool:
        return self.task is not None and not self.task.done()

    async def send_error(self, code: str, message: str) -> None:
        await self.websocket.send_json({"type": "error", "code": code, "message": message})

    async def start_turn(self, text: str) -> None:
        if self.is_streaming:
            logger.warning("chat_send_rejected", client=self.client_info, reason="busy")
            await self.send_error("BUSY", "A response is already being generated")
            return
        if not text.strip():
            logger.debug("chat_skip_empty_text", client=self.client_info)
            return

        self.cancel_token = CancellationToken()
        self.task = asyncio.create_task(self._run_turn(text, self.cancel_token))

    async def _run_turn(self, text: str, cancel: CancellationToken) -> None:
        manager = self.runtime.manager

        async def forward(token: str) -> None:
            await self.websocket.send_json({"type": "llm.delta", "text": token})

        await self.websocket.send_json({"type": "llm.start"})
        logger.info("llm_start_sent", client=self.client_info)

        try:
            result = await manager.run_turn(text, on_token=forward, cancel=cancel)
        except WebSocketDisconnect:
            cancel.cancel()
            return
        except Exception as e:
            logger.error("llm_unexpected_error", client=self.client_info, error=str(e))
            await self.send_error("LLM_ERROR", "Unexpected error while generating a response")
            return

        if result.outcome == "failed" and result.error is not None:
            await self.send_error(result.error.kind.upper(), str(result.error))
        await self.websocket.send_json(turn_payload(result))
        logger.info(
            "llm_completed",
            client=self.client_info,
            outcome=result.outcome,
            finish_reason=result.finish_reason,
            response_length=len(result.text),
        )

    def stop(self, user_initiated: bool = True) -> None:
        """Signal the running turn to stop. The turn itself sends ``llm.end``."""
        if self.cancel_token is not None and self.is_streaming:
            self.cancel_token.cancel(user_initiated=user_initiated)

    async def new_conversation(self, model_id: str | None) -> None:
        self.stop(user_initiated=False)
        manager = self.runtime.manager
        model_id = model_id or self.runtime.orchestrator.current_model_id
        if model_id is None:
            await self.send_error("NOT_LOADED", "No model is loaded")
            return
        conversation = manager.start_new_conversation(model_id)
        await self.websocket.send_json(
            {"type": "conversation.started", "conversation": conversation_payload(conversation)}
        )

    async def load_conversation(self, conversation_id: str | None) -> None:
        self.stop(user_initiated=False)
        conversation = None
        if conversation_id:
            conversation = self.runtime.manager.open_conversation(conversation_id)
        if conversation is None:
            await self.send_error("NOT_FOUND", "Conversation not found")
            return
        await self.websocket.send_json(
            {"type": "conversation.loaded", "conversation": conversation_payload(conversation)}
        )


async def handle_text_message(session: ChatSession, data: str) -> None:
    """Handle text (JSON) messages from client."""
    client_info = session.client_info
    try:
        event = json.loads(data)
    except json.JSONDecodeError:
        logger.warning("invalid_json", client=client_info, data=data[:100])
        await session.send_error("INVALID_JSON", "Message is not valid JSON")
        return

    event_type = event.get("type", "unknown")

    if event_type == "chat.send":
        logger.info("chat_send_received", client=client_info)
        await session.start_turn(str(event.get("text", "")))

    elif event_type == "chat.stop":
        logger.info("chat_stop_received", client=client_info)
        session.stop(user_initiated=True)

    elif event_type == "conversation.new":
        logger.info("conversation_new_received", client=client_info)
        await session.new_conversation(event.get("model_id"))

    elif event_type == "conversation.load":
        logger.info("conversation_load_received", client=client_info)
        await session.load_conversation(event.get("conversation_id"))

    else:
        logger.debug("unknown_event", client=client_info, event_type=event_type)


@router.websocket("/api/v1/ws/chat")
async def websocket_chat(websocket: WebSocket) -> None:
    """WebSocket endpoint for streaming chat.

    Client events: ``conversation.new``, ``conversation.load``, ``chat.send``
    and ``chat.stop``. Server events: ``conversation.started``,
    ``conversation.loaded``, ``llm.start``, ``llm.delta``, ``llm.end`` and
    ``error``.

    Args:
        websocket: The WebSocket connection.
    """
    await websocket.accept()
    client_info = str(websocket.client) if websocket.client else "unknown"
    logger.info("websocket_connected", client=client_info)

    session = ChatSession(websocket, websocket.app.state.runtime, client_info)

    try:
        while True:
            message = await websocket.receive()

            if message["type"] == "websocket.receive":
                if message.get("text") is not None:
                    await handle_text_message(session, message["text"])
                else:
                    logger.debug("binary_ignored", client=client_info)

            elif message["type"] == "websocket.disconnect":
                break

    except WebSocketDisconnect:
        pass
    finally:
        logger.info("websocket_disconnected", client=client_info)
        # Partial output is dropped when the client goes away
        if session.cancel_token is not None:
            session.cancel_token.cancel(user_initiated=False)
        if session.task is not None and not session.task.done():
            session.task.cancel()
