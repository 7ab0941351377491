"""Filter formula builder for record store queries.

Formulas are built from small node objects and rendered to the store's
formula syntax in one place, so identifiers and values are always quoted and
escaped the same way.

    And(LinkContains("Member", member_id), Eq("Status", "Assigned")).render()
    → "AND(FIND('rec1', ARRAYJOIN({Member})), {Status} = 'Assigned')"
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


def quote_field(name: str) -> str:
    """Render a field reference. Field names cannot contain braces."""
    if "{" in name or "}" in name:
        raise ValueError(f"Invalid field name: {name!r}")
    return "{" + name + "}"


def quote_value(value: Any) -> str:
    """Render a literal value."""
    if isinstance(value, Enum):
        value = value.value
    if isinstance(value, bool):
        return "TRUE()" if value else "FALSE()"
    if isinstance(value, (int, float)):
        return repr(value)
    text = str(value).replace("\\", "\\\\").replace("'", "\\'")
    return f"'{text}'"


class Formula:
    """Base node."""

    def render(self) -> str:
        raise NotImplementedError

    def __str__(self) -> str:
        return self.render()


@dataclass(frozen=True)
class Eq(Formula):
    field: str
    value: Any

    def render(self) -> str:
        return f"{quote_field(self.field)} = {quote_value(self.value)}"


@dataclass(frozen=True)
class NotEq(Formula):
    field: str
    value: Any

    def render(self) -> str:
        return f"{quote_field(self.field)} != {quote_value(self.value)}"


@dataclass(frozen=True)
class LowerEq(Formula):
    """Case-insensitive equality; ``value`` must already be lowercase."""

    field: str
    value: str

    def render(self) -> str:
        return f"LOWER({quote_field(self.field)}) = {quote_value(self.value)}"


@dataclass(frozen=True)
class LinkContains(Formula):
    """Linked-record field contains the given record id."""

    field: str
    record_id: str

    def render(self) -> str:
        return f"FIND({quote_value(self.record_id)}, ARRAYJOIN({quote_field(self.field)}))"


@dataclass(frozen=True)
class IsBlank(Formula):
    field: str

    def render(self) -> str:
        return f"{quote_field(self.field)} = BLANK()"


@dataclass(frozen=True)
class IsTrue(Formula):
    field: str

    def render(self) -> str:
        return f"{quote_field(self.field)} = TRUE()"


class _Compound(Formula):
    keyword = ""

    def __init__(self, *clauses: Formula) -> None:
        self.clauses = tuple(c for c in clauses if c is not None)

    def render(self) -> str:
        if not self.clauses:
            raise ValueError(f"{self.keyword} requires at least one clause")
        if len(self.clauses) == 1:
            return self.clauses[0].render()
        return f"{self.keyword}({', '.join(c.render() for c in self.clauses)})"

    def __eq__(self, other: object) -> bool:
        return type(self) is type(other) and self.clauses == other.clauses  # type: ignore[attr-defined]

    def __hash__(self) -> int:
        return hash((type(self).__name__, self.clauses))

    def __repr__(self) -> str:
        return f"{type(self).__name__}{self.clauses!r}"


class And(_Compound):
    keyword = "AND"


class Or(_Compound):
    keyword = "OR"


def any_of(field: str, values: list[Any]) -> Formula:
    """``field`` equals any of ``values``."""
    return Or(*(Eq(field, v) for v in values))
