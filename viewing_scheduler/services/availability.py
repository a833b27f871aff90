"""
Availability service - can a landlord take a viewing at a given instant?

This service handles:
- The weekly availability schedule (one window per weekday)
- Conflict detection against existing active bookings
- Minimum notice before a viewing
- A short-lived, per-process cache of answers
- Suggesting alternative slots when the answer is no

The checker never raises. Failures while evaluating the rules degrade to a
conservative "not available, please retry" answer that is never cached.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple
import logging
import threading
import time as _time

from dateutil import tz

from viewing_scheduler.core.config import settings
from viewing_scheduler.core.errors import AvailabilityCheckError
from viewing_scheduler.db.types import utcnow
from viewing_scheduler.schemas.scheduling import AvailabilityReason, AvailabilityResult

logger = logging.getLogger(__name__)

# Index matches date.weekday(): Monday == 0
DAY_NAMES = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

MORNING_SLOT = time(10, 0)
AFTERNOON_SLOT = time(15, 0)


@dataclass(frozen=True)
class AvailabilityWindow:
    """Bookable hours for one weekday, read as [start, end)."""

    start: time
    end: time
    available: bool = True

    def contains(self, moment: time) -> bool:
        return self.start <= moment < self.end


@dataclass(frozen=True)
class WeeklySchedule:
    """
    One AvailabilityWindow per weekday.

    Read-only and shared between every check; there is a single global
    schedule today, per-landlord schedules would be another instance of
    this class.
    """

    windows: Mapping[int, AvailabilityWindow]

    def window_for(self, day: date) -> AvailabilityWindow:
        return self.windows[day.weekday()]

    @classmethod
    def default(cls) -> "WeeklySchedule":
        # Weekdays 9 AM - 6 PM, Saturdays 10 AM - 4 PM, no Sundays
        weekday = AvailabilityWindow(time(9, 0), time(18, 0), True)
        return cls(windows={
            0: weekday,
            1: weekday,
            2: weekday,
            3: weekday,
            4: weekday,
            5: AvailabilityWindow(time(10, 0), time(16, 0), True),
            6: AvailabilityWindow(time(10, 0), time(16, 0), False),
        })


class BookingLookup(Protocol):
    """What the checker needs from the viewing request store."""

    def find_conflicts(
        self,
        landlord_id: str,
        around: datetime,
        window: timedelta,
        exclude_id: Optional[int] = None,
    ) -> Sequence[Any]:
        ...


@dataclass
class CacheEntry:
    result: AvailabilityResult
    cached_at: float


CacheKey = Tuple[str, datetime]


class AvailabilityCache:
    """
    Process-local TTL cache of availability answers.

    Keys are (landlord_id, exact requested instant in UTC). Entries expire
    after ttl_seconds and are dropped for a whole landlord whenever one of
    their bookings changes.
    """

    def __init__(self, ttl_seconds: float, timer: Callable[[], float] = _time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._timer = timer
        self._entries: Dict[CacheKey, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: CacheKey) -> Optional[AvailabilityResult]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._timer() - entry.cached_at >= self.ttl_seconds:
                del self._entries[key]
                return None
            return entry.result

    def set(self, key: CacheKey, result: AvailabilityResult) -> None:
        with self._lock:
            self._entries[key] = CacheEntry(result=result, cached_at=self._timer())

    def invalidate(self, landlord_id: str) -> int:
        """Drop every entry for one landlord. Returns how many were removed."""
        with self._lock:
            stale = [key for key in self._entries if key[0] == landlord_id]
            for key in stale:
                del self._entries[key]
            return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


def suggest_alternatives(
    around: datetime,
    schedule: WeeklySchedule,
    tzinfo,
    days_ahead: int = 3,
    limit: int = 2,
) -> List[datetime]:
    """
    Offer up to `limit` slots on the next `days_ahead` calendar days.

    Each available day contributes a 10:00 slot and, if the day's window
    runs to 15:00 or later, a 15:00 slot. Nearest first.
    """
    base_day = around.astimezone(tzinfo).date()
    candidates: List[datetime] = []
    for offset in range(1, days_ahead + 1):
        day = base_day + timedelta(days=offset)
        window = schedule.window_for(day)
        if not window.available:
            continue
        candidates.append(datetime.combine(day, MORNING_SLOT, tzinfo=tzinfo))
        if window.end >= AFTERNOON_SLOT:
            candidates.append(datetime.combine(day, AFTERNOON_SLOT, tzinfo=tzinfo))
    return candidates[:limit]


def suggest_time_alternative(requested: datetime, window: AvailabilityWindow, tzinfo) -> List[datetime]:
    """Same-day slot clamped into the window: clamp(start + 2, 10, end - 1)."""
    local = requested.astimezone(tzinfo)
    hour = min(max(window.start.hour + 2, 10), window.end.hour - 1)
    return [datetime.combine(local.date(), time(hour, 0), tzinfo=tzinfo)]


def _result(available: bool, reason: str, code: AvailabilityReason, alternatives=()) -> AvailabilityResult:
    return AvailabilityResult(
        available=available,
        reason=reason,
        reason_code=code,
        alternatives=tuple(alternatives),
    )


def check_failed_result() -> AvailabilityResult:
    """Conservative answer used whenever the rules could not be evaluated."""
    return _result(
        False,
        "Unable to check the calendar right now, please retry",
        AvailabilityReason.CHECK_FAILED,
    )


class AvailabilityChecker:
    """
    Evaluates a landlord's calendar rules for one requested instant.

    Rules run in order and stop at the first one that fails:
    1. cached answer
    2. weekday availability
    3. hour-of-day window
    4. conflict with an active booking within the buffer
    5. minimum notice
    """

    def __init__(
        self,
        bookings: BookingLookup,
        schedule: Optional[WeeklySchedule] = None,
        cache: Optional[AvailabilityCache] = None,
        clock: Optional[Callable[[], datetime]] = None,
        timezone_name: Optional[str] = None,
        minimum_notice: Optional[timedelta] = None,
        buffer: Optional[timedelta] = None,
    ):
        self.bookings = bookings
        self.schedule = schedule or WeeklySchedule.default()
        if cache is None:
            cache = AvailabilityCache(settings.availability_cache_ttl_seconds)
        self.cache = cache
        self.clock = clock or utcnow
        self.tzinfo = tz.gettz(timezone_name or settings.landlord_timezone)
        if self.tzinfo is None:
            raise ValueError(f"Unknown timezone {timezone_name or settings.landlord_timezone!r}")
        self.minimum_notice = minimum_notice or timedelta(hours=settings.minimum_notice_hours)
        self.buffer = buffer or timedelta(minutes=settings.booking_buffer_minutes)

    def check_availability(
        self,
        landlord_id: str,
        requested: datetime,
        ignore_request_id: Optional[int] = None,
    ) -> AvailabilityResult:
        """
        Answer whether `landlord_id` can take a viewing at `requested`.

        Args:
            landlord_id: The landlord whose calendar is checked
            requested: Absolute instant; a naive value is read as landlord-local time
            ignore_request_id: Booking to leave out of the conflict check
                (a request being moved). Such checks skip the cache.

        Returns:
            AvailabilityResult; never raises
        """
        if requested.tzinfo is None:
            requested = requested.replace(tzinfo=self.tzinfo)

        key = (landlord_id, requested.astimezone(timezone.utc))
        use_cache = ignore_request_id is None

        if use_cache:
            cached = self.cache.get(key)
            if cached is not None:
                logger.debug(f"Cache hit for availability check: landlord={landlord_id} at={requested.isoformat()}")
                return cached

        logger.info(f"Checking availability for landlord {landlord_id} at {requested.isoformat()}")

        try:
            result = self._evaluate(landlord_id, requested, ignore_request_id)
        except AvailabilityCheckError as e:
            logger.warning(f"Availability check failed for landlord {landlord_id}: {e}")
            return check_failed_result()
        except Exception:
            logger.exception(f"Unexpected error checking availability for landlord {landlord_id}")
            return check_failed_result()

        if use_cache:
            self.cache.set(key, result)
        return result

    def invalidate(self, landlord_id: str) -> None:
        dropped = self.cache.invalidate(landlord_id)
        if dropped:
            logger.debug(f"Invalidated {dropped} cached availability answers for landlord {landlord_id}")

    def suggest_alternatives(self, around: datetime) -> List[datetime]:
        return suggest_alternatives(around, self.schedule, self.tzinfo)

    def _evaluate(self, landlord_id: str, requested: datetime, ignore_request_id: Optional[int]) -> AvailabilityResult:
        local = requested.astimezone(self.tzinfo)
        day_name = DAY_NAMES[local.weekday()].capitalize()
        window = self.schedule.window_for(local.date())

        # Rule 2: is the weekday bookable at all
        if not window.available:
            return _result(
                False,
                f"Not available for viewings on {day_name}s",
                AvailabilityReason.WEEKDAY_UNAVAILABLE,
                self.suggest_alternatives(requested),
            )

        # Rule 3: inside the day's hours
        if not window.contains(local.time()):
            return _result(
                False,
                f"Viewings on {day_name}s are available {window.start:%H:%M} - {window.end:%H:%M}",
                AvailabilityReason.OUTSIDE_HOURS,
                suggest_time_alternative(requested, window, self.tzinfo),
            )

        # Rule 4: another active viewing within the buffer
        conflicts = self._find_conflicts(landlord_id, requested, ignore_request_id)
        if conflicts:
            return _result(
                False,
                "Another viewing is scheduled nearby",
                AvailabilityReason.SLOT_CONFLICT,
                self.suggest_alternatives(requested),
            )

        # Rule 5: enough notice
        now = self.clock()
        if requested - now < self.minimum_notice:
            hours = self.minimum_notice.total_seconds() / 3600
            return _result(
                False,
                f"At least {hours:g} hours notice is needed for viewings",
                AvailabilityReason.INSUFFICIENT_NOTICE,
                self.suggest_alternatives(now + timedelta(days=1)),
            )

        return _result(True, "That time works", AvailabilityReason.AVAILABLE)

    def _find_conflicts(self, landlord_id: str, requested: datetime, ignore_request_id: Optional[int]) -> Sequence[Any]:
        try:
            return self.bookings.find_conflicts(
                landlord_id, requested, self.buffer, exclude_id=ignore_request_id
            )
        except Exception as e:
            raise AvailabilityCheckError(f"conflict lookup failed: {e}") from e

