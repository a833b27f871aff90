"""
Scheduling orchestrator - turns a tenant message into a booking action.

Flow per message:
1. Classify the message (intent extractor)
2. Route on the intent: create / reschedule / cancel / clarify
3. Validate against the landlord's calendar (availability checker)
4. Mutate the viewing request (store)
5. Return a SchedulingOutcome describing what happened

The orchestrator never writes user-facing text and never raises; every
failure ends up as an outcome the response composer knows how to phrase.
"""

from datetime import datetime
from typing import Callable, Optional, Tuple
import asyncio
import logging
import weakref

from viewing_scheduler.core.config import settings
from viewing_scheduler.core.errors import (
    ClassificationError,
    NotFoundError,
    PersistenceError,
    SlotConflictError,
)
from viewing_scheduler.core.logging import with_context
from viewing_scheduler.db.types import utcnow
from viewing_scheduler.schemas.scheduling import (
    AvailabilityReason,
    AvailabilityResult,
    CancelFailedOutcome,
    ClarifyDatetimeOutcome,
    FailureReason,
    IntentType,
    NotSchedulingOutcome,
    RescheduleFailedOutcome,
    SchedulingIntent,
    SchedulingOutcome,
    SuggestAlternativesOutcome,
    ViewingCancelledOutcome,
    ViewingConfirmedVerbalOutcome,
    ViewingCreatedOutcome,
    ViewingRescheduledOutcome,
)
from viewing_scheduler.services.availability import AvailabilityChecker, check_failed_result
from viewing_scheduler.services.intent_extractor import IntentExtractor
from viewing_scheduler.services.viewing_store import ViewingRequestStore

logger = logging.getLogger(__name__)

VERBAL_CONFIRMATION_EVENT = "scheduling.verbal_confirmation_unpersisted"


class SchedulingOrchestrator:
    """
    Routes classified tenant messages to the booking flows.

    Check-then-write for one landlord runs under a per-landlord asyncio lock;
    the store re-validates the slot inside its own transaction as well.
    """

    def __init__(
        self,
        extractor: IntentExtractor,
        checker: AvailabilityChecker,
        store: ViewingRequestStore,
        clock: Optional[Callable[[], datetime]] = None,
        intent_timeout: Optional[float] = None,
        store_timeout: Optional[float] = None,
    ):
        self.extractor = extractor
        self.checker = checker
        self.store = store
        self.clock = clock or utcnow
        self.intent_timeout = intent_timeout or settings.intent_timeout_seconds
        self.store_timeout = store_timeout or settings.store_timeout_seconds

        # Per-landlord lock so check + write for one calendar can't interleave.
        # Keyed by event loop too; entries disappear once no task holds or waits on them.
        self._landlord_locks: "weakref.WeakValueDictionary[Tuple[asyncio.AbstractEventLoop, str], asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

        # Operators watch this: bookings promised in chat but never written
        self.verbal_confirmations = 0

    def _lock_for(self, landlord_id: str) -> asyncio.Lock:
        key = (asyncio.get_running_loop(), landlord_id)
        lock = self._landlord_locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._landlord_locks[key] = lock
        return lock

    def _localize(self, when: datetime) -> datetime:
        """Naive times from the extractor are landlord-local."""
        if when.tzinfo is None:
            return when.replace(tzinfo=self.checker.tzinfo)
        return when

    async def _bounded(self, timeout: float, func, *args, **kwargs):
        """Run a blocking call in a worker thread with a deadline."""
        return await asyncio.wait_for(asyncio.to_thread(func, *args, **kwargs), timeout)

    async def handle(
        self,
        tenant_message: str,
        landlord_id: str,
        tenant_id: str,
        property_id: int,
        chat_id: Optional[str] = None,
    ) -> SchedulingOutcome:
        """
        Process one tenant message.

        Args:
            tenant_message: Raw chat text
            landlord_id: Owner of the calendar
            tenant_id: Sender of the message
            property_id: Listing the chat is about
            chat_id: Only used for log correlation

        Returns:
            One of the SchedulingOutcome variants
        """
        log = with_context(logger, chat_id=chat_id, landlord_id=landlord_id)

        intent = await self._classify(tenant_message, log)
        if not intent.is_scheduling_request:
            return NotSchedulingOutcome()

        log.info(f"Scheduling intent: {intent.intent.value} "
                 f"(valid_date={intent.has_valid_date_time}, confidence={intent.confidence:.2f})")

        try:
            if intent.intent == IntentType.SCHEDULE_VIEWING:
                if not intent.has_valid_date_time or intent.requested_date_time is None:
                    return ClarifyDatetimeOutcome(intent=intent)
                when = self._localize(intent.requested_date_time)
                return await self._create(when, landlord_id, tenant_id, property_id, log)

            if intent.intent == IntentType.RESCHEDULE:
                if not intent.has_valid_date_time or intent.requested_date_time is None:
                    return ClarifyDatetimeOutcome(intent=intent)
                when = self._localize(intent.requested_date_time)
                return await self._reschedule(when, landlord_id, tenant_id, property_id, log)

            if intent.intent == IntentType.CANCEL:
                return await self._cancel(landlord_id, tenant_id, property_id, log)

        except Exception:
            # Last line of defence: a scheduling bug must not break the chat
            log.exception("Unexpected error while handling scheduling intent")
            return NotSchedulingOutcome()

        # ask_availability and none fall back to ordinary chat
        return NotSchedulingOutcome()

    async def _classify(self, message: str, log) -> SchedulingIntent:
        try:
            return await self._bounded(self.intent_timeout, self.extractor.classify, message, self.clock())
        except ClassificationError as e:
            log.warning(f"Intent classification failed, treating as chat: {e}")
        except asyncio.TimeoutError:
            log.warning(f"Intent classification timed out after {self.intent_timeout}s, treating as chat")
        except Exception:
            log.exception("Intent extractor crashed, treating as chat")
        return SchedulingIntent.not_scheduling()

    async def _check(self, landlord_id: str, when: datetime, log, ignore_request_id: Optional[int] = None) -> AvailabilityResult:
        try:
            return await self._bounded(
                self.store_timeout,
                self.checker.check_availability,
                landlord_id,
                when,
                ignore_request_id=ignore_request_id,
            )
        except asyncio.TimeoutError:
            log.warning(f"Availability check timed out after {self.store_timeout}s")
            return check_failed_result()

    async def _find_active(self, landlord_id: str, tenant_id: str, property_id: int):
        return await self._bounded(self.store_timeout, self.store.find_active, tenant_id, landlord_id, property_id)

    # ------------------------------------------------------------------
    # flows
    # ------------------------------------------------------------------

    async def _create(self, when: datetime, landlord_id: str, tenant_id: str, property_id: int, log) -> SchedulingOutcome:
        async with self._lock_for(landlord_id):
            availability = await self._check(landlord_id, when, log)
            if not availability.available:
                log.info(f"Requested time not available: {availability.reason_code.value}")
                return SuggestAlternativesOutcome(
                    reason=availability.reason,
                    reason_code=availability.reason_code,
                    alternatives=list(availability.alternatives),
                )

            try:
                viewing = await self._bounded(
                    self.store_timeout, self.store.create, property_id, tenant_id, landlord_id, when
                )
            except SlotConflictError as e:
                log.info(f"Slot taken between check and write: {e}")
                conflict = self.checker.suggest_alternatives(when)
                return SuggestAlternativesOutcome(
                    reason="Another viewing is scheduled nearby",
                    reason_code=AvailabilityReason.SLOT_CONFLICT,
                    alternatives=conflict,
                )
            except (PersistenceError, NotFoundError, asyncio.TimeoutError) as e:
                self.verbal_confirmations += 1
                log.warning(
                    f"{VERBAL_CONFIRMATION_EVENT}: time was available but the viewing could not be saved "
                    f"({type(e).__name__}: {e}); total={self.verbal_confirmations}",
                    extra={"event": VERBAL_CONFIRMATION_EVENT},
                )
                return ViewingConfirmedVerbalOutcome(date_time=when)
            finally:
                self.checker.invalidate(landlord_id)

        log.info(f"Viewing request {viewing.id} created for {when.isoformat()}")
        return ViewingCreatedOutcome(viewing_request_id=viewing.id, date_time=viewing.requested_date_time)

    async def _reschedule(self, when: datetime, landlord_id: str, tenant_id: str, property_id: int, log) -> SchedulingOutcome:
        async with self._lock_for(landlord_id):
            try:
                active = await self._find_active(landlord_id, tenant_id, property_id)
            except (PersistenceError, asyncio.TimeoutError) as e:
                log.error(f"Could not look up the active viewing: {e}")
                return RescheduleFailedOutcome(error=FailureReason.DATABASE_ERROR)

            if active is None:
                log.info("No active viewing to reschedule")
                return RescheduleFailedOutcome(error=FailureReason.NO_EXISTING_REQUEST)

            availability = await self._check(landlord_id, when, log, ignore_request_id=active.id)
            if not availability.available:
                log.info(f"New time not available: {availability.reason_code.value}")
                return RescheduleFailedOutcome(
                    error=FailureReason.TIME_NOT_AVAILABLE,
                    reason=availability.reason,
                    alternatives=list(availability.alternatives),
                )

            previous = active.requested_date_time
            try:
                moved = await self._bounded(self.store_timeout, self.store.reschedule, active.id, when)
            except SlotConflictError as e:
                log.info(f"Slot taken between check and write: {e}")
                return RescheduleFailedOutcome(
                    error=FailureReason.TIME_NOT_AVAILABLE,
                    reason="Another viewing is scheduled nearby",
                    alternatives=self.checker.suggest_alternatives(when),
                )
            except NotFoundError:
                log.info(f"Viewing request {active.id} disappeared before it could be moved")
                return RescheduleFailedOutcome(error=FailureReason.NO_EXISTING_REQUEST)
            except (PersistenceError, asyncio.TimeoutError) as e:
                log.error(f"Could not reschedule viewing request {active.id}: {e}")
                return RescheduleFailedOutcome(error=FailureReason.DATABASE_ERROR)
            finally:
                self.checker.invalidate(landlord_id)

        log.info(f"Viewing request {moved.id} moved from {previous.isoformat()} to {when.isoformat()}")
        return ViewingRescheduledOutcome(
            viewing_request_id=moved.id,
            previous_date_time=previous,
            date_time=moved.requested_date_time,
        )

    async def _cancel(self, landlord_id: str, tenant_id: str, property_id: int, log) -> SchedulingOutcome:
        async with self._lock_for(landlord_id):
            try:
                active = await self._find_active(landlord_id, tenant_id, property_id)
            except (PersistenceError, asyncio.TimeoutError) as e:
                log.error(f"Could not look up the active viewing: {e}")
                return CancelFailedOutcome(error=FailureReason.DATABASE_ERROR)

            if active is None:
                log.info("No active viewing to cancel")
                return CancelFailedOutcome(error=FailureReason.NO_EXISTING_REQUEST)

            try:
                cancelled = await self._bounded(self.store_timeout, self.store.cancel, active.id)
            except (PersistenceError, asyncio.TimeoutError) as e:
                log.error(f"Could not cancel viewing request {active.id}: {e}")
                return CancelFailedOutcome(error=FailureReason.DATABASE_ERROR)
            finally:
                self.checker.invalidate(landlord_id)

        if cancelled is None:
            log.info(f"Viewing request {active.id} was already gone")
            return CancelFailedOutcome(error=FailureReason.NO_EXISTING_REQUEST)

        log.info(f"Viewing request {cancelled.id} cancelled")
        return ViewingCancelledOutcome(
            viewing_request_id=cancelled.id,
            cancelled_date_time=cancelled.requested_date_time,
        )
