"""
Shared FastAPI dependencies.

Routes reach the service graph through request.app.state so every app
instance (and every test) has its own.
"""

from fastapi import Request, WebSocket

from viewing_scheduler.services.availability import AvailabilityChecker
from viewing_scheduler.services.chat_service import ConnectionManager, MessageRepository
from viewing_scheduler.services.chat_shim import ChatSchedulingShim
from viewing_scheduler.services.container import SchedulingServices
from viewing_scheduler.services.viewing_store import ViewingRequestStore


def get_services(request: Request) -> SchedulingServices:
    return request.app.state.services


def get_store(request: Request) -> ViewingRequestStore:
    return request.app.state.services.store


def get_checker(request: Request) -> AvailabilityChecker:
    return request.app.state.services.checker


def get_repository(request: Request) -> MessageRepository:
    return request.app.state.services.repository


def get_shim(request: Request) -> ChatSchedulingShim:
    return request.app.state.services.shim


def get_ws_manager(websocket: WebSocket) -> ConnectionManager:
    return websocket.app.state.services.manager
