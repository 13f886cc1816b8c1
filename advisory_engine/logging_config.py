"""Centralised structured logging setup for the advisory engine.

Importing this module configures *structlog* with a JSON pipeline that
carries session and user identifiers through contextvars, so log lines
emitted by concurrent stage tasks can be correlated per session.

Modules call :pyfunc:`configure_logging` once at import and then use
``structlog.get_logger(__name__)``. Repeated calls are no-ops unless
``force=True``.
"""

from __future__ import annotations

import logging
import os
from typing import Dict, Optional

import structlog
from structlog.contextvars import bind_contextvars, unbind_contextvars

__all__ = [
    "configure_logging",
    "bind_session_context",
    "clear_session_context",
    "get_logger",
]


def configure_logging(force: bool = False) -> None:  # noqa: D401
    """Setup structlog + stdlib bridging exactly once.

    Args:
        force: When True, reconfigure even if previously configured. Use only
               inside isolated scripts/tests that need a different renderer.
    """

    configured = getattr(structlog, "_is_configured", False)  # type: ignore[attr-defined]
    if configured and not force:
        return

    log_level = os.getenv("LOG_LEVEL", "INFO").upper()

    dev_mode = os.getenv("LOG_PRETTY", "0").lower() in {"1", "true", "yes"}
    if dev_mode:
        renderer = structlog.dev.ConsoleRenderer()
    else:
        renderer = structlog.processors.JSONRenderer()

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    # Stdlib records (tenacity, redis) go through the same renderer
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=[structlog.contextvars.merge_contextvars],
        processors=[
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
    )

    root_logger = logging.getLogger()
    for h in list(root_logger.handlers):
        root_logger.removeHandler(h)

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level, logging.INFO))

    structlog.configure(
        processors=shared_processors + [renderer],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    setattr(structlog, "_is_configured", True)  # type: ignore[attr-defined]


def bind_session_context(
    session_id: Optional[str] = None,
    user_id: Optional[str] = None,
) -> None:
    """Bind session identifiers into structlog contextvars.

    Safe to call multiple times; only provided keys are updated.
    """
    payload: Dict[str, str] = {}
    if session_id:
        payload["session_id"] = session_id
    if user_id:
        payload["user_id"] = user_id
    if payload:
        bind_contextvars(**payload)


def clear_session_context() -> None:
    unbind_contextvars("session_id", "user_id")


def get_logger(name: Optional[str] = None):
    """Return a structlog logger; ensures configuration first."""
    configure_logging()
    return structlog.get_logger(name) if name else structlog.get_logger()


configure_logging()
