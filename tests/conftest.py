from datetime import datetime, timezone

import pytest
from dateutil import tz
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from viewing_scheduler.db.database import Base
from viewing_scheduler.db.models import Listing
from viewing_scheduler.schemas.scheduling import IntentType, SchedulingIntent
from viewing_scheduler.services.viewing_store import ViewingRequestStore


NY = tz.gettz("America/New_York")

# Monday 2026-10-12, noon in New York (EDT, UTC-4)
NOW = datetime(2026, 10, 12, 16, 0, tzinfo=timezone.utc)

LANDLORD = "landlord-1"
TENANT = "tenant-1"


def local(year, month, day, hour, minute=0):
    return datetime(year, month, day, hour, minute, tzinfo=NY)


def fixed_clock():
    return NOW


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


@pytest.fixture
def listing_id(session_factory):
    db = session_factory()
    listing = Listing(landlord_id=LANDLORD, title="Sunny 2-bed on Elm St")
    db.add(listing)
    db.commit()
    listing_id = listing.id
    db.close()
    return listing_id


@pytest.fixture
def store(session_factory):
    return ViewingRequestStore(session_factory)


class FakeExtractor:
    """Returns queued intents in order; records what it was asked."""

    def __init__(self, *intents):
        self.intents = list(intents)
        self.calls = []

    def classify(self, message, now):
        self.calls.append((message, now))
        if not self.intents:
            return SchedulingIntent.not_scheduling()
        intent = self.intents.pop(0)
        if isinstance(intent, Exception):
            raise intent
        return intent


class FakeComposer:
    """Deterministic replies that name the outcome they were built from."""

    def __init__(self, general_reply=None):
        self.general_reply = general_reply
        self.outcomes = []
        self.general_calls = []

    def compose(self, outcome, context):
        self.outcomes.append(outcome)
        if not outcome.is_scheduling_response:
            return None
        return f"[{outcome.scheduling_action}] for {context.tenant_name}"

    def compose_general_reply(self, message, context, recent_messages):
        self.general_calls.append((message, list(recent_messages)))
        return self.general_reply


def intent(kind, when=None, confidence=0.9):
    return SchedulingIntent(
        is_scheduling_request=kind != IntentType.NONE,
        intent=kind,
        has_valid_date_time=when is not None,
        requested_date_time=when,
        confidence=confidence,
        needs_clarification=when is None and kind in (IntentType.SCHEDULE_VIEWING, IntentType.RESCHEDULE),
    )


class CountingLookup:
    """BookingLookup double that counts conflict queries."""

    def __init__(self, conflicts=(), error=None):
        self.conflicts = list(conflicts)
        self.error = error
        self.calls = 0

    def find_conflicts(self, landlord_id, around, window, exclude_id=None):
        self.calls += 1
        if self.error:
            raise self.error
        return self.conflicts
