"""
Chat service - message persistence and real-time delivery.

MessageRepository stores chats and messages. ConnectionManager keeps one
WebSocket room per chat and pushes "new-message" events to everyone in it.
"""

from typing import Any, Callable, Dict, List, Optional, Set
import logging

from fastapi import WebSocket
from sqlalchemy.orm import Session

from viewing_scheduler.core.errors import NotFoundError
from viewing_scheduler.db.database import SessionLocal, session_scope
from viewing_scheduler.db.models import Chat, Listing, Message, SenderType

logger = logging.getLogger(__name__)


class MessageRepository:
    """
    Stores chat rooms and their messages.

    Like the viewing request store, every call runs in its own session so it
    can be used from worker threads.
    """

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        self.session_factory = session_factory

    def find_or_create_chat(
        self,
        tenant_id: str,
        landlord_id: str,
        property_id: int,
        tenant_name: Optional[str] = None,
        landlord_name: Optional[str] = None,
    ) -> Chat:
        """
        Return the chat for (tenant, landlord, property), creating it if needed.

        Raises:
            NotFoundError: property_id is not a known listing
        """
        with session_scope(self.session_factory) as db:
            chat = (
                db.query(Chat)
                .filter(
                    Chat.tenant_id == tenant_id,
                    Chat.landlord_id == landlord_id,
                    Chat.property_id == property_id,
                )
                .first()
            )
            if chat:
                return chat

            listing = db.get(Listing, property_id)
            if listing is None:
                raise NotFoundError(f"Listing {property_id} not found")

            chat = Chat(
                tenant_id=tenant_id,
                landlord_id=landlord_id,
                property_id=property_id,
                tenant_name=tenant_name,
                landlord_name=landlord_name,
                property_name=listing.title,
            )
            db.add(chat)
            db.flush()
            logger.info(f"Chat created with ID: {chat.id}")
            return chat

    def get_chat(self, chat_id: str) -> Chat:
        with session_scope(self.session_factory) as db:
            chat = db.get(Chat, chat_id)
            if chat is None:
                raise NotFoundError(f"Chat {chat_id} not found")
            return chat

    def persist(self, chat_id: str, sender_id: str, content: str, sender_type: SenderType) -> Message:
        """
        Save one message.

        Raises:
            NotFoundError: unknown chat
            PersistenceError: database failure
        """
        with session_scope(self.session_factory) as db:
            if db.get(Chat, chat_id) is None:
                raise NotFoundError(f"Chat {chat_id} not found")

            message = Message(
                chat_id=chat_id,
                sender_id=sender_id,
                content=content,
                sender_type=sender_type,
            )
            db.add(message)
            db.flush()
            logger.debug(f"Message {message.id} stored in chat {chat_id}")
            return message

    def list_messages(self, chat_id: str) -> List[Message]:
        """All messages of a chat, oldest first."""
        with session_scope(self.session_factory) as db:
            return (
                db.query(Message)
                .filter(Message.chat_id == chat_id)
                .order_by(Message.created_at.asc(), Message.id.asc())
                .all()
            )

    def recent_messages(self, chat_id: str, limit: int = 10) -> List[Message]:
        """The last `limit` messages, oldest first."""
        with session_scope(self.session_factory) as db:
            newest = (
                db.query(Message)
                .filter(Message.chat_id == chat_id)
                .order_by(Message.created_at.desc(), Message.id.desc())
                .limit(limit)
                .all()
            )
            return list(reversed(newest))


class ConnectionManager:
    """
    WebSocket rooms keyed by chat id.

    All methods run on the event loop, so the room map needs no lock.
    """

    def __init__(self):
        self.rooms: Dict[str, Set[WebSocket]] = {}

    async def connect(self, chat_id: str, websocket: WebSocket) -> None:
        await websocket.accept()
        self.rooms.setdefault(chat_id, set()).add(websocket)
        logger.info(f"WebSocket joined chat {chat_id} ({len(self.rooms[chat_id])} connected)")

    def disconnect(self, chat_id: str, websocket: WebSocket) -> None:
        room = self.rooms.get(chat_id)
        if not room:
            return
        room.discard(websocket)
        if not room:
            del self.rooms[chat_id]
        logger.info(f"WebSocket left chat {chat_id}")

    async def broadcast(self, chat_id: str, payload: Dict[str, Any]) -> int:
        """
        Send payload to every socket in the chat's room.

        Sockets that fail to receive are dropped from the room.

        Returns:
            Number of sockets that received the payload
        """
        delivered = 0
        for websocket in list(self.rooms.get(chat_id, ())):
            try:
                await websocket.send_json(payload)
                delivered += 1
            except Exception as e:
                logger.warning(f"Dropping dead WebSocket in chat {chat_id}: {e}")
                self.disconnect(chat_id, websocket)
        return delivered
