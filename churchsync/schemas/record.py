"""Raw record store row and field coercion helpers.

These helpers are only used by the typed view converters in ``schemas``;
services work with the typed views.
"""

from datetime import date, datetime, timezone
from typing import Any

from pydantic import BaseModel, Field


class Record(BaseModel):
    """A row of the external record store."""

    id: str
    fields: dict[str, Any] = Field(default_factory=dict)
    created_time: datetime | None = None


def parse_store_datetime(value: Any) -> datetime | None:
    if not value or not isinstance(value, str):
        return None
    raw = value.strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_store_date(value: Any) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not value or not isinstance(value, str):
        return None
    try:
        return date.fromisoformat(value.strip()[:10])
    except ValueError:
        return None


def format_store_date(value: date | datetime) -> str:
    if isinstance(value, datetime):
        value = value.date()
    return value.isoformat()


def first_link(value: Any) -> str | None:
    """First id of a linked-record field."""
    if isinstance(value, list) and value:
        return str(value[0])
    return None


def link_list(value: Any) -> list[str]:
    if isinstance(value, list):
        return [str(v) for v in value]
    return []


def text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value or None
    return str(value)
