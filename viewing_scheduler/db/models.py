"""
Database models (tables).

These classes define the structure of our database tables.
Each class becomes a table, each attribute becomes a column.

The scheduler owns exactly one entity, ViewingRequest. Listings, chats and
messages belong to the wider marketplace; only the columns the scheduler
and the chat shim read are declared here.
"""

import enum
import uuid

from sqlalchemy import (
    Column, Integer, String,
    ForeignKey, Index, Text, UniqueConstraint, Enum as SQLEnum
)
from sqlalchemy.orm import relationship

from viewing_scheduler.db.database import Base
from viewing_scheduler.db.types import UTCDateTime, utcnow


class ViewingStatus(enum.Enum):
    """
    Lifecycle states of a viewing request.

    Only Pending and Approved requests are "active": they block the
    landlord's calendar and are the targets of reschedule/cancel.
    """
    PENDING = "Pending"      # Waiting for the landlord
    APPROVED = "Approved"    # Landlord accepted the requested time
    DECLINED = "Declined"    # Landlord turned it down (terminal)
    PROPOSED = "Proposed"    # Landlord offered a different time
    CLOSED = "Closed"        # Viewing done or withdrawn (terminal)


ACTIVE_STATUSES = (ViewingStatus.PENDING, ViewingStatus.APPROVED)


class SenderType(enum.Enum):
    """Who wrote a chat message."""
    TENANT = "tenant"        # The party who can request viewings
    LANDLORD = "landlord"    # The party who owns the calendar


class Listing(Base):
    """
    Listing model - a rentable property.

    Viewing requests reference listings; creating a request for an id that
    isn't here fails with NotFoundError.
    """

    __tablename__ = "listings"

    id = Column(Integer, primary_key=True, index=True)
    landlord_id = Column(String(64), nullable=False, index=True)
    title = Column(String(255), nullable=True)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)

    viewing_requests = relationship("ViewingRequest", back_populates="listing")

    def __repr__(self):
        return f"<Listing(id={self.id}, title={self.title})>"


class ViewingRequest(Base):
    """
    ViewingRequest model - a tenant's booking to visit a property.

    requested_date_time is the time on the table; while the landlord has
    proposed something else, proposed_date_time holds that offer.
    """

    __tablename__ = "viewing_requests"

    id = Column(Integer, primary_key=True, index=True)

    property_id = Column(
        Integer,
        ForeignKey("listings.id"),
        nullable=False,
        index=True
    )
    tenant_id = Column(String(64), nullable=False)
    landlord_id = Column(String(64), nullable=False)

    # Viewing schedule (absolute instants, stored as UTC)
    requested_date_time = Column(UTCDateTime, nullable=False)
    proposed_date_time = Column(UTCDateTime, nullable=True)

    status = Column(
        SQLEnum(ViewingStatus, name="viewing_status_enum"),
        default=ViewingStatus.PENDING,
        nullable=False
    )

    # Python-side defaults keep microsecond ordering for "most recent" lookups
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)

    listing = relationship("Listing", back_populates="viewing_requests")

    __table_args__ = (
        # Conflict lookups: landlord + time window + status
        Index("ix_viewing_requests_landlord_time", "landlord_id", "requested_date_time"),
        # Disambiguation lookups: who/which property
        Index("ix_viewing_requests_triple", "tenant_id", "landlord_id", "property_id"),
    )

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def __repr__(self):
        return (
            f"<ViewingRequest(id={self.id}, landlord_id={self.landlord_id}, "
            f"status={self.status}, requested={self.requested_date_time})>"
        )


class Chat(Base):
    """
    Chat model - one conversation between a tenant and a landlord about a listing.
    """

    __tablename__ = "chats"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(String(64), nullable=False, index=True)
    landlord_id = Column(String(64), nullable=False, index=True)
    property_id = Column(Integer, ForeignKey("listings.id"), nullable=False)

    # Display names cached at creation time for reply composition
    tenant_name = Column(String(255), nullable=True)
    landlord_name = Column(String(255), nullable=True)
    property_name = Column(String(255), nullable=True)

    created_at = Column(UTCDateTime, default=utcnow, nullable=False)

    messages = relationship("Message", back_populates="chat", order_by="Message.id")

    __table_args__ = (
        UniqueConstraint("tenant_id", "landlord_id", "property_id", name="uq_chats_triple"),
    )

    def __repr__(self):
        return f"<Chat(id={self.id}, tenant_id={self.tenant_id}, landlord_id={self.landlord_id})>"


class Message(Base):
    """
    Message model - a single chat line.
    """

    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, index=True)
    chat_id = Column(String(36), ForeignKey("chats.id"), nullable=False, index=True)
    sender_id = Column(String(64), nullable=False)
    content = Column(Text, nullable=False)
    sender_type = Column(SQLEnum(SenderType, name="sender_type_enum"), nullable=False)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)

    chat = relationship("Chat", back_populates="messages")

    def __repr__(self):
        return f"<Message(id={self.id}, chat_id={self.chat_id}, sender_type={self.sender_type})>"
