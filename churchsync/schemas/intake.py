"""Pydantic schemas for intake events and workflow results.

Events arrive already parsed from the intake forms; these schemas only carry
the values the workflows need.
"""

from datetime import date
from typing import Any

from pydantic import BaseModel

from churchsync.core.errors import AppError
from churchsync.db.tables import LINKED_MEMBER


class EvangelismEvent(BaseModel):
    record_id: str
    first_name: str = ""
    last_name: str = ""
    phone: str | None = None
    email: str | None = None
    postal_code: str | None = None
    captured_on: date
    captured_by: str | None = None  # Volunteer record id


class FirstTimerEvent(BaseModel):
    record_id: str
    first_name: str = ""
    last_name: str = ""
    phone: str | None = None
    email: str | None = None
    address: str | None = None
    postal_code: str | None = None
    service_id: str | None = None


class ReturnerEvent(BaseModel):
    record_id: str
    phone: str | None = None
    email: str | None = None
    service_id: str | None = None


class WorkflowError(BaseModel):
    code: str
    message: str
    retryable: bool = False

    @classmethod
    def from_error(cls, exc: BaseException) -> "WorkflowError":
        app_error = AppError.from_exception(exc)
        return cls(
            code=app_error.code.value,
            message=app_error.message,
            retryable=app_error.retryable,
        )


class EvangelismResult(BaseModel):
    success: bool
    member_id: str | None = None
    member_created: bool = False
    evangelism_record_linked: bool = False
    follow_up_assignment_id: str | None = None
    follow_up_assignment_created: bool = False
    follow_up_owner_updated: bool = False
    warning: str | None = None
    error: WorkflowError | None = None


class FirstTimerResult(BaseModel):
    success: bool
    member_id: str | None = None
    member_created: bool = False
    member_merged: bool = False
    first_timer_record_linked: bool = False
    attendance_marked: bool = False
    owner_reassigned: bool = False
    warning: str | None = None
    error: WorkflowError | None = None


class ReturnerResult(BaseModel):
    success: bool
    member_id: str | None = None
    status_updated: bool = False
    returner_record_linked: bool = False
    attendance_marked: bool = False
    error: WorkflowError | None = None


def linked_member_fields(member_id: str) -> dict[str, Any]:
    """Fields linking an intake register row to its member."""
    return {LINKED_MEMBER: [member_id]}
