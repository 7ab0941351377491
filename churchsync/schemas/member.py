"""Pydantic schemas for members."""

from datetime import date
from typing import Any

from pydantic import BaseModel, Field

from churchsync.db.enums import FollowUpStatus, MemberSource, MemberStatus
from churchsync.db.tables import MemberFields
from churchsync.schemas.record import (
    Record,
    first_link,
    format_store_date,
    link_list,
    parse_store_date,
    text,
)


class Member(BaseModel):
    """Typed view of a Members row."""

    id: str
    first_name: str = ""
    last_name: str = ""
    phone: str | None = None
    email: str | None = None
    address: str | None = None
    postal_code: str | None = None
    gender: str | None = None
    dob: str | None = None
    status: MemberStatus = MemberStatus.EVANGELISM_CONTACT
    source: MemberSource = MemberSource.OTHER
    date_first_captured: date | None = None
    follow_up_owner: str | None = None
    follow_up_status: FollowUpStatus = FollowUpStatus.NOT_STARTED
    first_service_attended: str | None = None
    attendance_ids: list[str] = Field(default_factory=list)
    home_visit_ids: list[str] = Field(default_factory=list)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class MemberCreate(BaseModel):
    """Candidate identity from an intake channel."""

    first_name: str = ""
    last_name: str = ""
    phone: str | None = None
    email: str | None = None
    address: str | None = None
    postal_code: str | None = None
    status: MemberStatus
    source: MemberSource
    date_first_captured: date


class MemberUpdate(BaseModel):
    """Partial update. Only explicitly set fields are written."""

    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None
    email: str | None = None
    address: str | None = None
    postal_code: str | None = None
    gender: str | None = None
    dob: str | None = None
    status: MemberStatus | None = None
    date_first_captured: date | None = None
    follow_up_owner: str | None = None
    follow_up_status: FollowUpStatus | None = None
    first_service_attended: str | None = None
    attendance_ids: list[str] | None = None
    home_visit_ids: list[str] | None = None


_SCALAR_FIELDS = {
    "first_name": MemberFields.FIRST_NAME,
    "last_name": MemberFields.LAST_NAME,
    "phone": MemberFields.PHONE,
    "email": MemberFields.EMAIL,
    "address": MemberFields.ADDRESS,
    "postal_code": MemberFields.POSTAL_CODE,
    "gender": MemberFields.GENDER,
    "dob": MemberFields.DOB,
}
_LINK_FIELDS = {
    "follow_up_owner": MemberFields.FOLLOW_UP_OWNER,
    "first_service_attended": MemberFields.FIRST_SERVICE_ATTENDED,
}
_LIST_FIELDS = {
    "attendance_ids": MemberFields.ATTENDANCE,
    "home_visit_ids": MemberFields.HOME_VISITS,
}


def member_from_record(record: Record) -> Member:
    fields = record.fields
    return Member(
        id=record.id,
        first_name=text(fields.get(MemberFields.FIRST_NAME)) or "",
        last_name=text(fields.get(MemberFields.LAST_NAME)) or "",
        phone=text(fields.get(MemberFields.PHONE)),
        email=text(fields.get(MemberFields.EMAIL)),
        address=text(fields.get(MemberFields.ADDRESS)),
        postal_code=text(fields.get(MemberFields.POSTAL_CODE)),
        gender=text(fields.get(MemberFields.GENDER)),
        dob=text(fields.get(MemberFields.DOB)),
        status=_enum_or(MemberStatus, fields.get(MemberFields.STATUS), MemberStatus.EVANGELISM_CONTACT),
        source=_enum_or(MemberSource, fields.get(MemberFields.SOURCE), MemberSource.OTHER),
        date_first_captured=parse_store_date(fields.get(MemberFields.DATE_FIRST_CAPTURED)),
        follow_up_owner=first_link(fields.get(MemberFields.FOLLOW_UP_OWNER)),
        follow_up_status=_enum_or(
            FollowUpStatus, fields.get(MemberFields.FOLLOW_UP_STATUS), FollowUpStatus.NOT_STARTED
        ),
        first_service_attended=first_link(fields.get(MemberFields.FIRST_SERVICE_ATTENDED)),
        attendance_ids=link_list(fields.get(MemberFields.ATTENDANCE)),
        home_visit_ids=link_list(fields.get(MemberFields.HOME_VISITS)),
    )


def member_create_fields(data: MemberCreate) -> dict[str, Any]:
    """Fields for a new Members row; ``data`` must already be normalized."""
    fields: dict[str, Any] = {
        MemberFields.FIRST_NAME: data.first_name,
        MemberFields.LAST_NAME: data.last_name,
        MemberFields.STATUS: data.status.value,
        MemberFields.SOURCE: data.source.value,
        MemberFields.DATE_FIRST_CAPTURED: format_store_date(data.date_first_captured),
        MemberFields.FOLLOW_UP_STATUS: FollowUpStatus.NOT_STARTED.value,
    }
    if data.phone:
        fields[MemberFields.PHONE] = data.phone
    if data.email:
        fields[MemberFields.EMAIL] = data.email
    if data.address:
        fields[MemberFields.ADDRESS] = data.address
    if data.postal_code:
        fields[MemberFields.POSTAL_CODE] = data.postal_code
    return fields


def member_update_fields(update: MemberUpdate) -> dict[str, Any]:
    """Fields for a partial Members update (explicitly set values only)."""
    fields: dict[str, Any] = {}
    for name in update.model_fields_set:
        value = getattr(update, name)
        if name in _SCALAR_FIELDS:
            fields[_SCALAR_FIELDS[name]] = value
        elif name in _LINK_FIELDS:
            fields[_LINK_FIELDS[name]] = [value] if value else []
        elif name in _LIST_FIELDS:
            fields[_LIST_FIELDS[name]] = list(value or [])
        elif name == "status" and value is not None:
            fields[MemberFields.STATUS] = value.value
        elif name == "follow_up_status" and value is not None:
            fields[MemberFields.FOLLOW_UP_STATUS] = value.value
        elif name == "date_first_captured" and value is not None:
            fields[MemberFields.DATE_FIRST_CAPTURED] = format_store_date(value)
    return fields


def _enum_or(enum_cls, value, default):
    try:
        return enum_cls(value)
    except ValueError:
        return default
