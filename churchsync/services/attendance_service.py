"""Attendance marking.

``mark_present`` is find-then-create-or-update, so repeated delivery of the
same intake event leaves exactly one mark per (member, service).
"""

from __future__ import annotations

import logging

from churchsync.core.errors import AppError, ErrorCode
from churchsync.core.structured_logging import build_log_context
from churchsync.db.enums import SourceForm
from churchsync.db.tables import AttendanceFields, Tables
from churchsync.schemas.attendance import (
    AttendanceMark,
    MarkPresentResult,
    attendance_create_fields,
    attendance_from_record,
    attendance_present_fields,
)
from churchsync.services.record_client import RecordClient
from churchsync.utils.formula import And, IsTrue, LinkContains

logger = logging.getLogger(__name__)


class AttendanceServiceError(AppError):
    """Base exception for attendance service errors."""

    pass


class InvalidAttendanceInputError(AttendanceServiceError):
    def __init__(self, message: str) -> None:
        super().__init__(ErrorCode.INVALID_INPUT, message)


def _coerce_source_form(source_form: SourceForm | str) -> SourceForm:
    if isinstance(source_form, SourceForm):
        return source_form
    if not source_form or not SourceForm.has_value(source_form):
        raise InvalidAttendanceInputError(f"Unknown source form: {source_form!r}")
    return SourceForm(source_form)


class AttendanceService:
    def __init__(self, client: RecordClient) -> None:
        self.client = client

    async def find_attendance(self, member_id: str, service_id: str) -> AttendanceMark | None:
        records = await self.client.find_records(
            Tables.ATTENDANCE,
            And(
                LinkContains(AttendanceFields.MEMBER, member_id),
                LinkContains(AttendanceFields.SERVICE, service_id),
            ),
            max_records=1,
        )
        return attendance_from_record(records[0]) if records else None

    async def mark_present(
        self,
        member_id: str,
        service_id: str,
        source_form: SourceForm | str,
    ) -> MarkPresentResult:
        """
        Mark a member present at a service.

        Creates the mark if none exists for the pair, otherwise sets
        present=true and the latest source form on the existing one.

        Raises:
            InvalidAttendanceInputError: missing ids or unknown source form
        """
        if not member_id:
            raise InvalidAttendanceInputError("Member ID is required")
        if not service_id:
            raise InvalidAttendanceInputError("Service ID is required")
        form = _coerce_source_form(source_form)

        existing = await self.find_attendance(member_id, service_id)
        if existing is None:
            record = await self.client.create_record(
                Tables.ATTENDANCE, attendance_create_fields(member_id, service_id, form)
            )
            logger.info(
                "Attendance created",
                extra=build_log_context(member_id=member_id, table=Tables.ATTENDANCE, event="attendance_created"),
            )
            return MarkPresentResult(
                attendance=attendance_from_record(record), created=True, updated=False
            )

        record = await self.client.update_record(
            Tables.ATTENDANCE, existing.id, attendance_present_fields(form)
        )
        logger.debug(
            "Attendance already recorded, updated in place",
            extra=build_log_context(member_id=member_id, table=Tables.ATTENDANCE, event="attendance_updated"),
        )
        return MarkPresentResult(
            attendance=attendance_from_record(record), created=False, updated=True
        )

    async def get_service_attendance(self, service_id: str) -> list[AttendanceMark]:
        """Marks with present=true for a service."""
        if not service_id:
            raise InvalidAttendanceInputError("Service ID is required")
        records = await self.client.find_records(
            Tables.ATTENDANCE,
            And(
                LinkContains(AttendanceFields.SERVICE, service_id),
                IsTrue(AttendanceFields.PRESENT),
            ),
        )
        return [attendance_from_record(r) for r in records]

    async def get_member_attendance_history(self, member_id: str) -> list[AttendanceMark]:
        if not member_id:
            raise InvalidAttendanceInputError("Member ID is required")
        records = await self.client.find_records(
            Tables.ATTENDANCE, LinkContains(AttendanceFields.MEMBER, member_id)
        )
        return [attendance_from_record(r) for r in records]
