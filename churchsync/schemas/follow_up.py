"""Pydantic schemas for follow-up assignments and volunteers."""

from datetime import date, timedelta
from typing import Any

from pydantic import BaseModel

from churchsync.db.enums import AssignmentStatus, VolunteerRole
from churchsync.db.tables import AssignmentFields, VolunteerFields
from churchsync.schemas.record import (
    Record,
    first_link,
    format_store_date,
    parse_store_date,
    text,
)


class FollowUpAssignment(BaseModel):
    id: str
    member_id: str
    assigned_to: str
    assigned_date: date
    due_date: date
    status: AssignmentStatus = AssignmentStatus.ASSIGNED


class Volunteer(BaseModel):
    id: str
    name: str = ""
    role: VolunteerRole = VolunteerRole.FOLLOW_UP
    phone: str | None = None
    email: str | None = None
    active: bool = False
    capacity: int


class CapacityInfo(BaseModel):
    volunteer_id: str
    volunteer_name: str
    capacity: int
    current_assignments: int
    available_slots: int
    has_capacity: bool


class ReassignmentCheck(BaseModel):
    needs_reassignment: bool
    available_volunteer: Volunteer | None = None
    reason: str | None = None


class AssignmentResult(BaseModel):
    """Outcome of ``assign_with_capacity_check``.

    ``warning`` is set when the preferred volunteer was over capacity, either
    because the work moved to another volunteer or because nobody had room and
    the preferred volunteer received it anyway.
    """

    assignment: FollowUpAssignment
    assigned_volunteer_id: str
    was_reassigned: bool
    warning: str | None = None


class CapacityReassignmentResult(BaseModel):
    reassigned: bool
    new_assignment: FollowUpAssignment | None = None
    new_owner_id: str | None = None
    warning: str | None = None


def assignment_from_record(record: Record) -> FollowUpAssignment:
    fields = record.fields
    today = date.today()
    try:
        status = AssignmentStatus(fields.get(AssignmentFields.STATUS))
    except ValueError:
        status = AssignmentStatus.ASSIGNED
    return FollowUpAssignment(
        id=record.id,
        member_id=first_link(fields.get(AssignmentFields.MEMBER)) or "",
        assigned_to=first_link(fields.get(AssignmentFields.ASSIGNED_TO)) or "",
        assigned_date=parse_store_date(fields.get(AssignmentFields.ASSIGNED_DATE)) or today,
        due_date=parse_store_date(fields.get(AssignmentFields.DUE_DATE)) or today,
        status=status,
    )


def assignment_create_fields(
    member_id: str, volunteer_id: str, assigned_date: date, due_in_days: int
) -> dict[str, Any]:
    return {
        AssignmentFields.MEMBER: [member_id],
        AssignmentFields.ASSIGNED_TO: [volunteer_id],
        AssignmentFields.ASSIGNED_DATE: format_store_date(assigned_date),
        AssignmentFields.DUE_DATE: format_store_date(assigned_date + timedelta(days=due_in_days)),
        AssignmentFields.STATUS: AssignmentStatus.ASSIGNED.value,
    }


def assignment_status_fields(status: AssignmentStatus) -> dict[str, Any]:
    return {AssignmentFields.STATUS: status.value}


def volunteer_from_record(record: Record, *, default_capacity: int) -> Volunteer:
    fields = record.fields
    try:
        role = VolunteerRole(fields.get(VolunteerFields.ROLE))
    except ValueError:
        role = VolunteerRole.FOLLOW_UP
    capacity = fields.get(VolunteerFields.CAPACITY)
    return Volunteer(
        id=record.id,
        name=text(fields.get(VolunteerFields.NAME)) or "",
        role=role,
        phone=text(fields.get(VolunteerFields.PHONE)),
        email=text(fields.get(VolunteerFields.EMAIL)),
        active=bool(fields.get(VolunteerFields.ACTIVE)),
        capacity=int(capacity) if isinstance(capacity, (int, float)) and capacity > 0 else default_capacity,
    )
