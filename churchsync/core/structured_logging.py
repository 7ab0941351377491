"""Structured logging helpers (PII-safe)."""

import logging
from typing import Any

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_logging(level: str = "INFO") -> None:
    """Install a basic stream handler if the host has not configured logging."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
    )


def build_log_context(
    *,
    member_id: str | None = None,
    volunteer_id: str | None = None,
    table: str | None = None,
    operation: str | None = None,
    attempt: int | None = None,
    event: str | None = None,
) -> dict[str, Any]:
    """Return a log context dict with identifiers only (no names, phones or emails)."""
    context: dict[str, Any] = {}
    if member_id:
        context["member_id"] = member_id
    if volunteer_id:
        context["volunteer_id"] = volunteer_id
    if table:
        context["table"] = table
    if operation:
        context["operation"] = operation
    if attempt is not None:
        context["attempt"] = attempt
    if event:
        context["event"] = event
    return context
