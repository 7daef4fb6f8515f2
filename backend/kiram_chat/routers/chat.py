import json
import logging
from typing import List

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from kiram_chat.core.exceptions import ChatError, NotFound
from kiram_chat.routers.dependencies import get_chat_service
from kiram_chat.services.chat_service import ChatService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ws", tags=["chat"])


def _stream_callbacks(websocket: WebSocket):
    async def on_snapshot(items: List) -> None:
        await websocket.send_text(json.dumps({"type": "snapshot", "items": [it.model_dump(mode="json") for it in items]}))

    async def on_error(error: ChatError) -> None:
        await websocket.send_text(json.dumps({"type": "error", "detail": error.detail, "retryable": error.retryable}))

    return on_snapshot, on_error


async def _hold_until_disconnect(websocket: WebSocket, subscription) -> None:
    try:
        while True:
            # clients may send pings; the stream itself is server -> client
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.debug(f"Stream closed on {subscription.channel}")
    finally:
        await subscription.aclose()


async def _stream(websocket: WebSocket, subscribe) -> None:
    on_snapshot, on_error = _stream_callbacks(websocket)
    try:
        subscription = await subscribe(on_snapshot, on_error)
    except ChatError as e:
        logger.warning(f"Could not open stream: {e.detail}")
        await on_error(e)
        # 1013: try again later
        await websocket.close(code=1013)
        return
    await _hold_until_disconnect(websocket, subscription)


@router.websocket("/conversations/{conversation_id}")
async def message_stream(websocket: WebSocket, conversation_id: str, service: ChatService = Depends(get_chat_service)):
    user_id = websocket.query_params.get("user_id")
    if not user_id:
        await websocket.close(code=4401)
        return
    try:
        conversation = await service.get_conversation(conversation_id)
    except NotFound:
        await websocket.close(code=4404)
        return
    except ChatError:
        await websocket.close(code=1013)
        return
    if not conversation.has_participant(user_id):
        await websocket.close(code=4403)
        return

    await websocket.accept()
    await _stream(websocket, lambda on_snapshot, on_error: service.subscribe_messages(conversation_id, on_snapshot, on_error))


@router.websocket("/users/{user_id}/conversations")
async def conversation_stream(websocket: WebSocket, user_id: str, service: ChatService = Depends(get_chat_service)):
    await websocket.accept()
    await _stream(websocket, lambda on_snapshot, on_error: service.subscribe_conversations(user_id, on_snapshot, on_error))
