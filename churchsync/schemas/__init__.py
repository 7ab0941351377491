"""Typed views of record store rows and service results."""

from churchsync.schemas.attendance import AttendanceMark, MarkPresentResult
from churchsync.schemas.cache import CacheEntry, CacheGetResult
from churchsync.schemas.follow_up import (
    AssignmentResult,
    CapacityInfo,
    CapacityReassignmentResult,
    FollowUpAssignment,
    ReassignmentCheck,
    Volunteer,
)
from churchsync.schemas.intake import (
    EvangelismEvent,
    EvangelismResult,
    FirstTimerEvent,
    FirstTimerResult,
    ReturnerEvent,
    ReturnerResult,
    WorkflowError,
)
from churchsync.schemas.member import Member, MemberCreate, MemberUpdate
from churchsync.schemas.record import Record

__all__ = [
    "AssignmentResult",
    "AttendanceMark",
    "CacheEntry",
    "CacheGetResult",
    "CapacityInfo",
    "CapacityReassignmentResult",
    "EvangelismEvent",
    "EvangelismResult",
    "FirstTimerEvent",
    "FirstTimerResult",
    "FollowUpAssignment",
    "MarkPresentResult",
    "Member",
    "MemberCreate",
    "MemberUpdate",
    "ReassignmentCheck",
    "Record",
    "ReturnerEvent",
    "ReturnerResult",
    "Volunteer",
    "WorkflowError",
]
