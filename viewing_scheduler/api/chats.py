"""
Chat API endpoints.

HTTP routes to open a chat and exchange messages, plus the WebSocket room
clients subscribe to for "new-message" events.
"""

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect, status
from typing import List
import logging

from viewing_scheduler.api.deps import get_repository, get_shim, get_ws_manager
from viewing_scheduler.core.errors import NotFoundError, PersistenceError
from viewing_scheduler.schemas.chat import ChatCreate, ChatResponse, MessageCreate, MessageResponse
from viewing_scheduler.services.chat_service import ConnectionManager, MessageRepository
from viewing_scheduler.services.chat_shim import ChatSchedulingShim

router = APIRouter(prefix="/api/chats", tags=["chats"])
ws_router = APIRouter(tags=["chats"])

logger = logging.getLogger(__name__)


@router.post("", response_model=ChatResponse)
def open_chat(payload: ChatCreate, repository: MessageRepository = Depends(get_repository)):
    """Find or create the chat for (tenant, landlord, property)."""
    try:
        chat = repository.find_or_create_chat(
            payload.tenant_id,
            payload.landlord_id,
            payload.property_id,
            tenant_name=payload.tenant_name,
            landlord_name=payload.landlord_name,
        )
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return ChatResponse.model_validate(chat)


@router.get("/{chat_id}/messages", response_model=List[MessageResponse])
def list_messages(chat_id: str, repository: MessageRepository = Depends(get_repository)):
    try:
        repository.get_chat(chat_id)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return [MessageResponse.model_validate(m) for m in repository.list_messages(chat_id)]


@router.post("/{chat_id}/messages", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def send_message(
    chat_id: str,
    payload: MessageCreate,
    shim: ChatSchedulingShim = Depends(get_shim),
):
    """
    Send a message into a chat.

    The message is stored and broadcast before this returns. For tenant
    messages the landlord's reply arrives later over the WebSocket.
    """
    try:
        message = await shim.handle_incoming(chat_id, payload.sender_id, payload.content, payload.sender_type)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except PersistenceError as e:
        logger.error(f"Failed to store message in chat {chat_id}: {e}")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Message could not be sent")
    return MessageResponse.model_validate(message)


@ws_router.websocket("/ws/chats/{chat_id}")
async def chat_socket(chat_id: str, websocket: WebSocket, manager: ConnectionManager = Depends(get_ws_manager)):
    """Subscribe to a chat room. Incoming frames are ignored (keepalive only)."""
    await manager.connect(chat_id, websocket)
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.debug(f"WebSocket disconnected from chat {chat_id}")
    finally:
        manager.disconnect(chat_id, websocket)
