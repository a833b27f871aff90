"""
Viewing request store - the only code that writes viewing_requests rows.

This service handles:
- Creating requests (with slot re-validation inside the write transaction)
- The status state machine driven by landlord decisions
- Reschedule and cancel for the automated chat flows
- The conflict lookup the availability checker depends on
- Dashboard listings for landlords and tenants

Each operation opens its own session from the injected session factory, so a
store instance can be shared between threads.
"""

from datetime import datetime, timedelta
from typing import Callable, List, Optional
import logging
import threading
import weakref
import zlib

from sqlalchemy import text
from sqlalchemy.orm import Session

from viewing_scheduler.core.errors import (
    InvalidTransition,
    NotFoundError,
    SlotConflictError,
)
from viewing_scheduler.db.database import SessionLocal, session_scope
from viewing_scheduler.db.models import ACTIVE_STATUSES, Listing, ViewingRequest, ViewingStatus

logger = logging.getLogger(__name__)


# current status -> statuses a landlord action may move it to
ALLOWED_TRANSITIONS = {
    ViewingStatus.PENDING: {
        ViewingStatus.APPROVED,
        ViewingStatus.DECLINED,
        ViewingStatus.PROPOSED,
        ViewingStatus.CLOSED,
    },
    ViewingStatus.APPROVED: {
        ViewingStatus.PROPOSED,
        ViewingStatus.DECLINED,
        ViewingStatus.CLOSED,
    },
    ViewingStatus.PROPOSED: {
        ViewingStatus.APPROVED,
        ViewingStatus.PROPOSED,
        ViewingStatus.DECLINED,
        ViewingStatus.CLOSED,
    },
    ViewingStatus.DECLINED: set(),
    ViewingStatus.CLOSED: set(),
}

DEFAULT_CONFLICT_WINDOW = timedelta(hours=1)


def _advisory_key(landlord_id: str) -> int:
    # pg_advisory_xact_lock takes a signed bigint
    return zlib.crc32(landlord_id.encode("utf-8"))


class ViewingRequestStore:
    """
    Service class for viewing request persistence.

    Args:
        session_factory: Callable returning a new SQLAlchemy Session
        conflict_window: Distance within which two active bookings of the
            same landlord collide (inclusive)
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        conflict_window: timedelta = DEFAULT_CONFLICT_WINDOW,
    ):
        self.session_factory = session_factory
        self.conflict_window = conflict_window
        # Entries disappear once no thread holds or waits on the lock
        self._landlord_locks: "weakref.WeakValueDictionary[str, threading.Lock]" = weakref.WeakValueDictionary()
        self._registry_lock = threading.Lock()

    # ------------------------------------------------------------------
    # plumbing
    # ------------------------------------------------------------------

    def _session(self):
        return session_scope(self.session_factory)

    def _landlord_lock(self, landlord_id: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._landlord_locks.get(landlord_id)
            if lock is None:
                lock = threading.Lock()
                self._landlord_locks[landlord_id] = lock
            return lock

    @staticmethod
    def _lock_slot(db: Session, landlord_id: str) -> None:
        """Serialise writers for one landlord across processes (PostgreSQL only)."""
        if db.get_bind().dialect.name == "postgresql":
            db.execute(text("SELECT pg_advisory_xact_lock(:key)"), {"key": _advisory_key(landlord_id)})

    @staticmethod
    def _conflict_query(db: Session, landlord_id: str, around: datetime, window: timedelta, exclude_id: Optional[int]):
        query = db.query(ViewingRequest).filter(
            ViewingRequest.landlord_id == landlord_id,
            ViewingRequest.status.in_(ACTIVE_STATUSES),
            ViewingRequest.requested_date_time >= around - window,
            ViewingRequest.requested_date_time <= around + window,
        )
        if exclude_id is not None:
            query = query.filter(ViewingRequest.id != exclude_id)
        return query.order_by(ViewingRequest.requested_date_time)

    def _ensure_slot_free(self, db: Session, landlord_id: str, when: datetime, exclude_id: Optional[int]) -> None:
        clashes = self._conflict_query(db, landlord_id, when, self.conflict_window, exclude_id).all()
        if clashes:
            ids = [row.id for row in clashes]
            logger.info(f"Slot for landlord {landlord_id} at {when.isoformat()} already taken by {ids}")
            raise SlotConflictError(landlord_id, ids)

    @staticmethod
    def _load(db: Session, request_id: int) -> ViewingRequest:
        row = db.get(ViewingRequest, request_id)
        if row is None:
            raise NotFoundError(f"Viewing request {request_id} not found")
        return row

    # ------------------------------------------------------------------
    # writes
    # ------------------------------------------------------------------

    def create(
        self,
        property_id: int,
        tenant_id: str,
        landlord_id: str,
        requested_date_time: datetime,
        enforce_slot: bool = True,
    ) -> ViewingRequest:
        """
        Create a Pending viewing request.

        With enforce_slot the landlord's active bookings are re-checked inside
        the insert transaction, so two racing creates can't both land in the
        same slot.

        Raises:
            NotFoundError: property_id is not a known listing
            SlotConflictError: another active booking is within the conflict window
            PersistenceError: any other database failure
        """
        logger.info(f"Creating viewing request: property={property_id} tenant={tenant_id} "
                    f"landlord={landlord_id} at={requested_date_time.isoformat()}")

        if not enforce_slot:
            return self._insert(property_id, tenant_id, landlord_id, requested_date_time, enforce_slot=False)

        with self._landlord_lock(landlord_id):
            return self._insert(property_id, tenant_id, landlord_id, requested_date_time, enforce_slot=True)

    def _insert(self, property_id, tenant_id, landlord_id, requested_date_time, enforce_slot: bool) -> ViewingRequest:
        with self._session() as db:
            if db.get(Listing, property_id) is None:
                raise NotFoundError(f"Listing {property_id} not found")

            if enforce_slot:
                self._lock_slot(db, landlord_id)
                self._ensure_slot_free(db, landlord_id, requested_date_time, exclude_id=None)

            viewing = ViewingRequest(
                property_id=property_id,
                tenant_id=tenant_id,
                landlord_id=landlord_id,
                requested_date_time=requested_date_time,
                status=ViewingStatus.PENDING,
            )
            db.add(viewing)
            db.flush()
            logger.info(f"Viewing request created with ID: {viewing.id}")
            return viewing

    def set_status(
        self,
        request_id: int,
        new_status: ViewingStatus,
        proposed_date_time: Optional[datetime] = None,
    ) -> ViewingRequest:
        """
        Apply a landlord decision.

        Accepting a proposal moves the booking to the proposed time, so that
        slot is re-checked under the landlord lock like a create.

        Raises:
            NotFoundError: unknown id
            InvalidTransition: the move isn't in ALLOWED_TRANSITIONS, or a
                proposal came without a time
            SlotConflictError: the accepted proposal collides with another
                active booking
        """
        landlord_id = self.get(request_id).landlord_id
        with self._landlord_lock(landlord_id):
            return self._apply_status(request_id, new_status, proposed_date_time)

    def _apply_status(
        self,
        request_id: int,
        new_status: ViewingStatus,
        proposed_date_time: Optional[datetime],
    ) -> ViewingRequest:
        with self._session() as db:
            viewing = self._load(db, request_id)
            current = viewing.status

            if new_status not in ALLOWED_TRANSITIONS[current]:
                logger.error(f"Rejected status change for viewing request {request_id}: "
                             f"{current.value} -> {new_status.value}")
                raise InvalidTransition(current, new_status)

            if new_status == ViewingStatus.PROPOSED:
                if proposed_date_time is None:
                    logger.error(f"Proposal for viewing request {request_id} has no time")
                    raise InvalidTransition(current, new_status, "a proposed time is required")
                viewing.proposed_date_time = proposed_date_time

            elif new_status == ViewingStatus.APPROVED and current == ViewingStatus.PROPOSED:
                # Accepting a proposal makes the proposed time the booked time
                self._lock_slot(db, viewing.landlord_id)
                self._ensure_slot_free(db, viewing.landlord_id, viewing.proposed_date_time, exclude_id=request_id)
                viewing.requested_date_time = viewing.proposed_date_time
                viewing.proposed_date_time = None

            elif new_status in (ViewingStatus.DECLINED, ViewingStatus.CLOSED):
                viewing.proposed_date_time = None

            viewing.status = new_status
            db.flush()
            logger.info(f"Viewing request {request_id}: {current.value} -> {new_status.value}")
            return viewing

    def reschedule(self, request_id: int, new_date_time: datetime, enforce_slot: bool = True) -> ViewingRequest:
        """
        Move a request to a new time and put it back to Pending.

        Availability is the caller's concern; enforce_slot only guards
        against another booking having landed in the slot meanwhile.
        """
        if not enforce_slot:
            return self._move(request_id, new_date_time, enforce_slot=False)

        landlord_id = self.get(request_id).landlord_id
        with self._landlord_lock(landlord_id):
            return self._move(request_id, new_date_time, enforce_slot=True)

    def _move(self, request_id: int, new_date_time: datetime, enforce_slot: bool) -> ViewingRequest:
        with self._session() as db:
            viewing = self._load(db, request_id)
            if enforce_slot:
                self._lock_slot(db, viewing.landlord_id)
                self._ensure_slot_free(db, viewing.landlord_id, new_date_time, exclude_id=request_id)

            previous = viewing.requested_date_time
            viewing.requested_date_time = new_date_time
            viewing.status = ViewingStatus.PENDING
            viewing.proposed_date_time = None
            db.flush()
            logger.info(f"Viewing request {request_id} rescheduled from {previous.isoformat()} "
                        f"to {new_date_time.isoformat()}")
            return viewing

    def cancel(self, request_id: int) -> Optional[ViewingRequest]:
        """
        Delete a request.

        Returns the deleted row, or None when it was already gone.
        """
        with self._session() as db:
            viewing = db.get(ViewingRequest, request_id)
            if viewing is None:
                logger.info(f"Viewing request {request_id} already gone, nothing to cancel")
                return None
            db.delete(viewing)
            db.flush()
            logger.info(f"Viewing request {request_id} cancelled")
            return viewing

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------

    def get(self, request_id: int) -> ViewingRequest:
        with self._session() as db:
            return self._load(db, request_id)

    def find_active(self, tenant_id: str, landlord_id: str, property_id: int) -> Optional[ViewingRequest]:
        """Most recently created Pending/Approved request for the triple, if any."""
        with self._session() as db:
            return (
                db.query(ViewingRequest)
                .filter(
                    ViewingRequest.tenant_id == tenant_id,
                    ViewingRequest.landlord_id == landlord_id,
                    ViewingRequest.property_id == property_id,
                    ViewingRequest.status.in_(ACTIVE_STATUSES),
                )
                .order_by(ViewingRequest.created_at.desc(), ViewingRequest.id.desc())
                .first()
            )

    def find_conflicts(
        self,
        landlord_id: str,
        around: datetime,
        window: timedelta,
        exclude_id: Optional[int] = None,
    ) -> List[ViewingRequest]:
        """Active bookings of the landlord within `window` of `around`, inclusive."""
        with self._session() as db:
            return self._conflict_query(db, landlord_id, around, window, exclude_id).all()

    def list_for_landlord(self, landlord_id: str) -> List[ViewingRequest]:
        with self._session() as db:
            return (
                db.query(ViewingRequest)
                .filter(ViewingRequest.landlord_id == landlord_id)
                .order_by(ViewingRequest.created_at.desc(), ViewingRequest.id.desc())
                .all()
            )

    def list_for_tenant(self, tenant_id: str) -> List[ViewingRequest]:
        with self._session() as db:
            return (
                db.query(ViewingRequest)
                .filter(ViewingRequest.tenant_id == tenant_id)
                .order_by(ViewingRequest.created_at.desc(), ViewingRequest.id.desc())
                .all()
            )

    def list_approved(self, user_id: str, role: str) -> List[ViewingRequest]:
        """
        Approved viewings for a calendar view, soonest first.

        Args:
            user_id: Landlord or tenant id
            role: "landlord" or "tenant"
        """
        if role == "landlord":
            owner = ViewingRequest.landlord_id
        elif role == "tenant":
            owner = ViewingRequest.tenant_id
        else:
            raise ValueError(f"Unknown role {role!r}")

        with self._session() as db:
            return (
                db.query(ViewingRequest)
                .filter(owner == user_id, ViewingRequest.status == ViewingStatus.APPROVED)
                .order_by(ViewingRequest.requested_date_time.asc())
                .all()
            )
