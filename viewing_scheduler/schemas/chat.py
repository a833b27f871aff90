"""
Chat schemas.

Validation for chat rooms and messages, plus the payload pushed to
WebSocket subscribers.
"""

from pydantic import BaseModel, Field, ConfigDict
from typing import Any, Dict, Optional
from datetime import datetime

from viewing_scheduler.db.models import SenderType


class ChatCreate(BaseModel):
    """
    Schema for find-or-create of a chat room.
    """

    tenant_id: str = Field(..., alias="tenantId", min_length=1)
    landlord_id: str = Field(..., alias="landlordId", min_length=1)
    property_id: int = Field(..., alias="propertyId")
    tenant_name: Optional[str] = Field(default=None, alias="tenantName")
    landlord_name: Optional[str] = Field(default=None, alias="landlordName")

    model_config = ConfigDict(populate_by_name=True)


class ChatResponse(BaseModel):
    id: str
    tenant_id: str = Field(alias="tenantId")
    landlord_id: str = Field(alias="landlordId")
    property_id: int = Field(alias="propertyId")
    tenant_name: Optional[str] = Field(default=None, alias="tenantName")
    landlord_name: Optional[str] = Field(default=None, alias="landlordName")
    property_name: Optional[str] = Field(default=None, alias="propertyName")
    created_at: datetime = Field(alias="createdAt")

    model_config = ConfigDict(populate_by_name=True, from_attributes=True)


class MessageCreate(BaseModel):
    """
    Schema for sending a message into a chat.
    """

    sender_id: str = Field(..., alias="senderId", min_length=1)
    content: str = Field(..., min_length=1)
    sender_type: SenderType = Field(..., alias="senderType")

    model_config = ConfigDict(populate_by_name=True)


class MessageResponse(BaseModel):
    id: int
    chat_id: str = Field(alias="chatId")
    sender_id: str = Field(alias="senderId")
    content: str
    sender_type: SenderType = Field(alias="senderType")
    created_at: datetime = Field(alias="createdAt")

    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    def to_event(self) -> Dict[str, Any]:
        """
        Payload for the "new-message" WebSocket event.

        Keys are snake_case because that's what chat clients already read.
        """
        return {
            "event": "new-message",
            "id": self.id,
            "chat_id": self.chat_id,
            "sender_id": self.sender_id,
            "content": self.content,
            "sender_type": self.sender_type.value,
            "created_at": self.created_at.isoformat(),
        }
