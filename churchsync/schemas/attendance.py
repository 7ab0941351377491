"""Pydantic schemas for attendance marks."""

from typing import Any

from pydantic import BaseModel

from churchsync.db.enums import SourceForm
from churchsync.db.tables import AttendanceFields
from churchsync.schemas.record import Record, first_link, text


class AttendanceMark(BaseModel):
    id: str
    member_id: str
    service_id: str
    present: bool = False
    source_form: SourceForm = SourceForm.MANUAL
    group_tag: str | None = None


class MarkPresentResult(BaseModel):
    """Which branch of the find-then-create-or-update protocol fired."""

    attendance: AttendanceMark
    created: bool
    updated: bool


def attendance_from_record(record: Record) -> AttendanceMark:
    fields = record.fields
    try:
        source_form = SourceForm(fields.get(AttendanceFields.SOURCE_FORM))
    except ValueError:
        source_form = SourceForm.MANUAL
    return AttendanceMark(
        id=record.id,
        member_id=first_link(fields.get(AttendanceFields.MEMBER)) or "",
        service_id=first_link(fields.get(AttendanceFields.SERVICE)) or "",
        present=bool(fields.get(AttendanceFields.PRESENT)),
        source_form=source_form,
        group_tag=text(fields.get(AttendanceFields.GROUP_TAG)),
    )


def attendance_create_fields(
    member_id: str, service_id: str, source_form: SourceForm
) -> dict[str, Any]:
    return {
        AttendanceFields.MEMBER: [member_id],
        AttendanceFields.SERVICE: [service_id],
        AttendanceFields.PRESENT: True,
        AttendanceFields.SOURCE_FORM: source_form.value,
    }


def attendance_present_fields(source_form: SourceForm) -> dict[str, Any]:
    return {
        AttendanceFields.PRESENT: True,
        AttendanceFields.SOURCE_FORM: source_form.value,
    }
