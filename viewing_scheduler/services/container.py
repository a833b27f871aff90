"""
Service graph for one application instance.

Everything that holds state (locks, the availability cache, WebSocket rooms,
background tasks) lives on one SchedulingServices object so tests can build
an isolated copy.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.orm import Session

from viewing_scheduler.db.database import SessionLocal
from viewing_scheduler.services.availability import AvailabilityChecker
from viewing_scheduler.services.chat_service import ConnectionManager, MessageRepository
from viewing_scheduler.services.chat_shim import ChatSchedulingShim
from viewing_scheduler.services.intent_extractor import IntentExtractor, OpenAIIntentExtractor
from viewing_scheduler.services.response_composer import OpenAIResponseComposer, ResponseComposer
from viewing_scheduler.services.scheduling_orchestrator import SchedulingOrchestrator
from viewing_scheduler.services.viewing_store import ViewingRequestStore


@dataclass
class SchedulingServices:
    session_factory: Callable[[], Session]
    store: ViewingRequestStore
    checker: AvailabilityChecker
    orchestrator: SchedulingOrchestrator
    repository: MessageRepository
    manager: ConnectionManager
    shim: ChatSchedulingShim


def build_services(
    session_factory: Optional[Callable[[], Session]] = None,
    intent_extractor: Optional[IntentExtractor] = None,
    response_composer: Optional[ResponseComposer] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> SchedulingServices:
    """Wire the default implementations, replacing whichever collaborators are given."""
    session_factory = session_factory or SessionLocal

    store = ViewingRequestStore(session_factory)
    checker = AvailabilityChecker(store, clock=clock)
    orchestrator = SchedulingOrchestrator(
        extractor=intent_extractor or OpenAIIntentExtractor(),
        checker=checker,
        store=store,
        clock=clock,
    )
    repository = MessageRepository(session_factory)
    manager = ConnectionManager()
    shim = ChatSchedulingShim(
        repository=repository,
        manager=manager,
        orchestrator=orchestrator,
        composer=response_composer or OpenAIResponseComposer(),
    )
    return SchedulingServices(
        session_factory=session_factory,
        store=store,
        checker=checker,
        orchestrator=orchestrator,
        repository=repository,
        manager=manager,
        shim=shim,
    )
