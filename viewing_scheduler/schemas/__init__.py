"""
Pydantic schemas for request/response validation.

This module exports all schemas for easy importing.
"""

from viewing_scheduler.schemas.chat import (
    ChatCreate,
    ChatResponse,
    MessageCreate,
    MessageResponse,
)
from viewing_scheduler.schemas.scheduling import (
    AvailabilityResult,
    ConversationContext,
    SchedulingIntent,
    SchedulingOutcome,
)
from viewing_scheduler.schemas.viewing import (
    ViewingRequestCreate,
    ViewingRequestResponse,
    ViewingStatusUpdate,
)

# Export all schemas
__all__ = [
    "ChatCreate",
    "ChatResponse",
    "MessageCreate",
    "MessageResponse",
    "AvailabilityResult",
    "ConversationContext",
    "SchedulingIntent",
    "SchedulingOutcome",
    "ViewingRequestCreate",
    "ViewingRequestResponse",
    "ViewingStatusUpdate",
]
