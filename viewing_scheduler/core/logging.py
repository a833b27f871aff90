"""
Logging configuration for the application.

This module sets up plain structured logging on stdout.
Structured logging means consistent format that's easy to search/filter.
"""

import logging
import sys
from typing import Any


def setup_logging(debug: bool = False) -> None:
    """
    Configure logging for the entire application.

    Parameters explained:
    - debug: If True, show ALL messages (even tiny details)
             If False, only show important stuff (INFO level and above)

    Log levels used by the scheduler:
    - DEBUG: "Cache hit for landlord ..."
    - INFO: "Created viewing request 12"
    - WARNING: "Viewing confirmed verbally but not persisted"
    - ERROR: "Invalid status transition Declined -> Approved"
    """

    log_level = logging.DEBUG if debug else logging.INFO

    # %(asctime)s = timestamp like "2024-01-15 14:30:45"
    # %(name)s = which part of app logged this (e.g., "viewing_scheduler.services.availability")
    # %(levelname)s = DEBUG, INFO, WARNING, or ERROR
    # %(message)s = the actual message we want to log
    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    # Calling setup twice (tests, reload) must not duplicate every line
    if not any(getattr(h, "_viewing_scheduler", False) for h in root_logger.handlers):
        handler._viewing_scheduler = True
        root_logger.addHandler(handler)

    # SQL echo is controlled by the engine, keep the library quiet otherwise
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)

    logger = logging.getLogger(__name__)
    logger.info(f"Logging initialized at {logging.getLevelName(log_level)} level")


def with_context(logger: logging.Logger, **context: Any) -> logging.LoggerAdapter:
    """
    Return a LoggerAdapter that injects correlation context like chat_id and landlord_id.

    Usage:
        log = with_context(logging.getLogger(__name__), chat_id="c-1", landlord_id="l-9")
        log.info("Handling tenant message")
    """
    class ContextAdapter(logging.LoggerAdapter):
        def process(self, msg, kwargs):
            extra = kwargs.get("extra", {})
            merged = {**context, **extra}
            kwargs["extra"] = merged
            # Prefix message with keys for easy grep
            tags = " ".join(f"{k}={v}" for k, v in merged.items() if v is not None)
            return (f"[{tags}] {msg}" if tags else msg, kwargs)

    return ContextAdapter(logger, {})
