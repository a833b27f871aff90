"""
Main application module.

This is the entry point of our FastAPI application.
It creates the app instance, wires the scheduling services and registers
the routers.
"""

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Callable, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from viewing_scheduler.core.config import settings
from viewing_scheduler.core.logging import setup_logging
from viewing_scheduler.db.database import engine, init_db
from viewing_scheduler.services.container import build_services
from viewing_scheduler.services.intent_extractor import IntentExtractor
from viewing_scheduler.services.response_composer import ResponseComposer
import logging

# STEP 1: Set up logging before anything else
setup_logging(debug=settings.debug)

logger = logging.getLogger(__name__)


def create_app(
    session_factory: Optional[Callable[[], Session]] = None,
    intent_extractor: Optional[IntentExtractor] = None,
    response_composer: Optional[ResponseComposer] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> FastAPI:
    """
    Factory function that creates and configures our FastAPI application.

    Every argument replaces one collaborator of the default service graph;
    tests pass an in-memory session factory and fake LLM clients.

    Returns:
        FastAPI: A configured FastAPI application instance
    """
    services = build_services(
        session_factory=session_factory,
        intent_extractor=intent_extractor,
        response_composer=response_composer,
        clock=clock,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if settings.auto_create_tables:
            bind = getattr(services.session_factory, "kw", {}).get("bind") or engine
            init_db(bind)
        yield
        # Let in-flight assistant replies finish before the loop goes away
        await services.shim.drain()
        logger.info("Background tasks drained")

    app = FastAPI(
        title="Viewing Scheduler API",
        description="Automated viewing scheduling for landlord/tenant chats",
        version="1.0.0",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )
    app.state.services = services

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        # Clients of this API expect 400 for a malformed body
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"detail": jsonable_errors(exc)},
        )

    logger.info(f"FastAPI app created - Debug mode: {settings.debug}")

    from viewing_scheduler.api import chats, health, viewings

    app.include_router(health.router)
    logger.info("Health endpoints registered at /health/*")

    app.include_router(viewings.router)
    logger.info("Viewing request endpoints registered at /api/viewing-requests/*")

    app.include_router(chats.router)
    app.include_router(chats.ws_router)
    logger.info("Chat endpoints registered at /api/chats/* and /ws/chats/*")

    return app


def jsonable_errors(exc: RequestValidationError) -> list:
    return [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg"), "type": error.get("type")}
        for error in exc.errors()
    ]


app = create_app()

logger.info("Main application module loaded")
