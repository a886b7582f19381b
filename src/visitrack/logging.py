"""Structured logging for the tracker.

Every entry carries the backend visit id once the visitor has consented.
``VisitorTracker`` binds it from the track response (or from the stored
``visitorSessionId`` on initialize) and clears it again on opt-out.
"""

from __future__ import annotations

from contextvars import ContextVar
from typing import Any

import structlog

__all__ = [
    "configure_logging",
    "get_logger",
    "visit_id_var",
    "bind_visit_id",
]

# Empty until a track response or initialize() supplies an id
visit_id_var: ContextVar[str] = ContextVar("visit_id", default="")


def bind_visit_id(visit_id: str | None) -> None:
    """Set the visit id for the current context; None clears it (opt-out)."""
    visit_id_var.set(visit_id or "")


def _add_visit_id(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Add ``visit_id`` to entries logged while a visit is bound."""
    vid = visit_id_var.get("")
    if vid:
        event_dict["visit_id"] = vid
    return event_dict


def configure_logging(*, json_output: bool = True, level: str = "INFO") -> None:
    """Configure structlog for the application.

    Args:
        json_output: JSON lines when True, structlog console output otherwise.
        level: Minimum level name, e.g. "INFO" (``Settings.log_level``).
    """
    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        _add_visit_id,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(**kwargs: Any) -> structlog.BoundLogger:
    """Bound logger, e.g. ``get_logger(component="visitor_tracker")`` for audit events."""
    return structlog.get_logger(**kwargs)  # type: ignore[no-any-return]
