from datetime import time, timedelta

import pytest

from conftest import LANDLORD, NOW, NY, CountingLookup, fixed_clock, local
from viewing_scheduler.db.models import ViewingStatus
from viewing_scheduler.schemas.scheduling import AvailabilityReason
from viewing_scheduler.services.availability import (
    AvailabilityCache,
    AvailabilityChecker,
    AvailabilityWindow,
    WeeklySchedule,
    suggest_alternatives,
    suggest_time_alternative,
)


def make_checker(lookup=None, cache=None):
    return AvailabilityChecker(
        lookup or CountingLookup(),
        cache=cache if cache is not None else AvailabilityCache(ttl_seconds=300),
        clock=fixed_clock,
        timezone_name="America/New_York",
        minimum_notice=timedelta(hours=2),
        buffer=timedelta(hours=1),
    )


def test_friday_afternoon_is_available():
    checker = make_checker()

    result = checker.check_availability(LANDLORD, local(2026, 10, 16, 14))

    assert result.available is True
    assert result.reason_code == AvailabilityReason.AVAILABLE
    assert result.alternatives == ()


@pytest.mark.parametrize("hour", [10, 12, 15])
def test_sunday_is_always_rejected(hour):
    checker = make_checker()

    result = checker.check_availability(LANDLORD, local(2026, 10, 18, hour))

    assert result.available is False
    assert result.reason_code == AvailabilityReason.WEEKDAY_UNAVAILABLE
    assert "Sundays" in result.reason
    # Next available days after Sunday: Monday 10:00 and 15:00
    assert list(result.alternatives) == [local(2026, 10, 19, 10), local(2026, 10, 19, 15)]


def test_outside_hours_offers_same_day_slot():
    checker = make_checker()

    result = checker.check_availability(LANDLORD, local(2026, 10, 16, 19))

    assert result.available is False
    assert result.reason_code == AvailabilityReason.OUTSIDE_HOURS
    assert result.reason == "Viewings on Fridays are available 09:00 - 18:00"
    assert list(result.alternatives) == [local(2026, 10, 16, 11)]


def test_window_end_is_exclusive():
    checker = make_checker()

    assert checker.check_availability(LANDLORD, local(2026, 10, 16, 18)).available is False
    assert checker.check_availability(LANDLORD, local(2026, 10, 16, 17, 59)).available is True
    assert checker.check_availability(LANDLORD, local(2026, 10, 16, 9)).available is True


def test_saturday_window():
    checker = make_checker()

    assert checker.check_availability(LANDLORD, local(2026, 10, 17, 10)).available is True
    late = checker.check_availability(LANDLORD, local(2026, 10, 17, 16, 30))
    assert late.reason_code == AvailabilityReason.OUTSIDE_HOURS
    assert list(late.alternatives) == [local(2026, 10, 17, 12)]


def test_nearby_booking_blocks_slot_and_suggests_next_days():
    lookup = CountingLookup(conflicts=["existing-14:00"])
    checker = make_checker(lookup)

    result = checker.check_availability(LANDLORD, local(2026, 10, 16, 14, 30))

    assert result.available is False
    assert result.reason_code == AvailabilityReason.SLOT_CONFLICT
    assert "nearby" in result.reason
    assert len(result.alternatives) == 2
    requested = local(2026, 10, 16, 14, 30)
    for alt in result.alternatives:
        assert alt.astimezone(NY).time() >= time(10, 0)
        assert timedelta(0) < alt - requested <= timedelta(days=3)


def test_conflict_window_boundaries(store, listing_id):
    store.create(listing_id, "tenant-a", LANDLORD, local(2026, 10, 16, 14))
    checker = make_checker(store)

    def available(hour, minute):
        checker.cache.clear()
        return checker.check_availability(LANDLORD, local(2026, 10, 16, hour, minute)).available

    assert available(14, 59) is False
    assert available(13, 1) is False
    assert available(15, 0) is False
    assert available(15, 1) is True
    assert available(12, 59) is True


def test_conflicts_ignore_inactive_and_other_landlords(store, listing_id):
    declined = store.create(listing_id, "tenant-a", LANDLORD, local(2026, 10, 16, 14))
    store.set_status(declined.id, ViewingStatus.DECLINED)
    store.create(listing_id, "tenant-b", "someone-else", local(2026, 10, 16, 14), enforce_slot=False)

    checker = make_checker(store)

    assert checker.check_availability(LANDLORD, local(2026, 10, 16, 14)).available is True


def test_minimum_notice_boundaries():
    checker = make_checker()

    too_soon = checker.check_availability(LANDLORD, NOW + timedelta(hours=1, minutes=59))
    assert too_soon.available is False
    assert too_soon.reason_code == AvailabilityReason.INSUFFICIENT_NOTICE
    # Suggestions start from now + 24h (Tuesday), so Wednesday is first
    assert list(too_soon.alternatives) == [local(2026, 10, 14, 10), local(2026, 10, 14, 15)]

    enough = checker.check_availability(LANDLORD, NOW + timedelta(hours=2, minutes=1))
    assert enough.available is True


def test_cache_returns_same_answer_without_second_lookup():
    lookup = CountingLookup()
    checker = make_checker(lookup)
    when = local(2026, 10, 16, 14)

    first = checker.check_availability(LANDLORD, when)
    second = checker.check_availability(LANDLORD, when)

    assert second is first
    assert lookup.calls == 1


def test_negative_answers_are_cached_too():
    lookup = CountingLookup(conflicts=["x"])
    checker = make_checker(lookup)
    when = local(2026, 10, 16, 14)

    first = checker.check_availability(LANDLORD, when)
    assert checker.check_availability(LANDLORD, when) is first
    assert lookup.calls == 1


def test_invalidate_forces_fresh_lookup():
    lookup = CountingLookup()
    checker = make_checker(lookup)
    when = local(2026, 10, 16, 14)

    checker.check_availability(LANDLORD, when)
    checker.invalidate(LANDLORD)
    checker.check_availability(LANDLORD, when)

    assert lookup.calls == 2


def test_ignore_request_id_bypasses_cache():
    lookup = CountingLookup()
    checker = make_checker(lookup)
    when = local(2026, 10, 16, 14)

    checker.check_availability(LANDLORD, when, ignore_request_id=7)
    checker.check_availability(LANDLORD, when, ignore_request_id=7)

    assert lookup.calls == 2
    assert len(checker.cache) == 0


def test_lookup_failure_degrades_and_is_not_cached(caplog):
    lookup = CountingLookup(error=RuntimeError("db down"))
    checker = make_checker(lookup)
    when = local(2026, 10, 16, 14)

    result = checker.check_availability(LANDLORD, when)

    assert result.available is False
    assert result.reason_code == AvailabilityReason.CHECK_FAILED
    assert "retry" in result.reason
    assert result.alternatives == ()
    assert len(checker.cache) == 0
    assert any("Availability check failed" in r.message for r in caplog.records)


def test_cache_entries_expire():
    now = [0.0]
    cache = AvailabilityCache(ttl_seconds=300, timer=lambda: now[0])
    lookup = CountingLookup()
    checker = make_checker(lookup, cache=cache)
    when = local(2026, 10, 16, 14)

    checker.check_availability(LANDLORD, when)
    now[0] = 299.0
    checker.check_availability(LANDLORD, when)
    now[0] = 300.0
    checker.check_availability(LANDLORD, when)

    assert lookup.calls == 2


def test_cache_invalidate_is_per_landlord():
    cache = AvailabilityCache(ttl_seconds=300)
    checker = make_checker(cache=cache)
    when = local(2026, 10, 16, 14)
    checker.check_availability("a", when)
    checker.check_availability("b", when)

    assert cache.invalidate("a") == 1
    assert len(cache) == 1


def test_suggest_alternatives_skips_unavailable_days():
    schedule = WeeklySchedule.default()

    # From Friday: Saturday 10:00 and 15:00; Sunday skipped
    assert suggest_alternatives(local(2026, 10, 16, 9), schedule, NY) == [
        local(2026, 10, 17, 10),
        local(2026, 10, 17, 15),
    ]


def test_suggest_alternatives_skips_afternoon_for_short_days():
    short = AvailabilityWindow(time(9, 0), time(13, 0), True)
    schedule = WeeklySchedule(windows={day: short for day in range(7)})

    assert suggest_alternatives(local(2026, 10, 16, 9), schedule, NY) == [
        local(2026, 10, 17, 10),
        local(2026, 10, 18, 10),
    ]


def test_suggest_time_alternative_clamps_into_window():
    early_window = AvailabilityWindow(time(6, 0), time(20, 0), True)
    late_window = AvailabilityWindow(time(14, 0), time(16, 0), True)
    day = local(2026, 10, 16, 5)

    assert suggest_time_alternative(day, early_window, NY) == [local(2026, 10, 16, 10)]
    assert suggest_time_alternative(day, late_window, NY) == [local(2026, 10, 16, 15)]


def test_naive_time_is_read_as_landlord_local():
    checker = make_checker()

    result = checker.check_availability(LANDLORD, local(2026, 10, 16, 14).replace(tzinfo=None))

    assert result.available is True
