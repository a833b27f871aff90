"""
Error taxonomy for the scheduling engine.

Every failure the scheduler can hit maps onto one of these classes.
Most of them never reach a caller as an exception: the orchestrator turns
them into structured outcomes (see schemas/scheduling.py).
"""

from typing import Optional


class SchedulingError(Exception):
    """Base class for every error raised inside the scheduling engine."""


class ClassificationError(SchedulingError):
    """The intent extractor failed or returned malformed output."""


class AvailabilityCheckError(SchedulingError):
    """Evaluating the availability rules failed (e.g. the conflict query)."""


class PersistenceError(SchedulingError):
    """A store operation failed: timeout, connectivity or constraint violation."""


class SlotConflictError(PersistenceError):
    """
    The slot was taken between the availability check and the write.

    Raised by the store when it re-validates the conflict predicate inside
    the write transaction and finds an overlapping active booking.
    """

    def __init__(self, landlord_id: str, conflicting_ids: Optional[list] = None):
        self.landlord_id = landlord_id
        self.conflicting_ids = conflicting_ids or []
        super().__init__(
            f"Landlord {landlord_id} already has an active viewing in that slot "
            f"(requests {self.conflicting_ids})"
        )


class NotFoundError(SchedulingError):
    """A referenced record (listing, viewing request, chat) does not exist."""


class InvalidTransition(SchedulingError):
    """A status change that the viewing request state machine does not allow."""

    def __init__(self, current, requested, detail: Optional[str] = None):
        self.current = current
        self.requested = requested
        message = f"Cannot move viewing request from {getattr(current, 'value', current)} to {getattr(requested, 'value', requested)}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
