"""
Database connection and session management.

This module sets up SQLAlchemy to connect to our database.
It handles the connection pool and provides session management.
"""

from contextlib import contextmanager
from typing import Callable, Iterator

from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from viewing_scheduler.core.config import settings
from viewing_scheduler.core.errors import PersistenceError, SchedulingError
import logging

logger = logging.getLogger(__name__)


def build_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Create an engine for the given URL.

    SQLite connections are shared with worker threads (the scheduler runs
    blocking store calls through asyncio.to_thread), so the same-thread
    check has to be switched off for that dialect.
    """
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False

    return create_engine(
        database_url,
        # pool_pre_ping=True means test connections before using them
        # This helps recover from database restarts
        pool_pre_ping=True,
        echo=echo,
        connect_args=connect_args,
    )


# STEP 1: Create the database engine
engine = build_engine(settings.database_url, echo=settings.debug)

# STEP 2: Create a SessionLocal class
# A session is like a shopping cart - you add changes to it, then commit all at once
SessionLocal = sessionmaker(
    autocommit=False,  # Don't auto-save changes (we control when to commit)
    autoflush=False,   # Don't auto-send changes to DB (we control this too)
    expire_on_commit=False,  # Returned rows stay readable after the session closes
    bind=engine,
)

# STEP 3: Create a base class for our models
Base = declarative_base()


def init_db(bind: Engine = None) -> None:
    """
    Create all tables that don't exist yet.

    Imports the models module so every table is registered on Base.metadata
    before create_all runs.
    """
    from viewing_scheduler.db import models  # noqa: F401

    target = bind or engine
    Base.metadata.create_all(bind=target)
    logger.info(f"Database tables ensured on {target.url.render_as_string(hide_password=True)}")


@contextmanager
def session_scope(session_factory: Callable[[], Session] = None) -> Iterator[Session]:
    """
    One unit of work for services that run outside a request.

    Commits on success and rolls back on any error. SQLAlchemy errors are
    re-raised as PersistenceError; the scheduler's own errors pass through.
    """
    db = (session_factory or SessionLocal)()
    try:
        yield db
        db.commit()
    except SchedulingError:
        db.rollback()
        raise
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Database error: {e}")
        raise PersistenceError(str(e)) from e
    finally:
        db.close()
