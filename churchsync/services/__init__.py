"""Service layer modules."""

from churchsync.services.attendance_service import AttendanceService
from churchsync.services.cache_service import CacheKeys, CachePatterns, CacheService
from churchsync.services.follow_up_service import FollowUpService
from churchsync.services.identity_lock import IdentityLock
from churchsync.services.intake_service import IntakeService
from churchsync.services.member_service import MemberService
from churchsync.services.record_client import RecordClient, RecordStoreError

__all__ = [
    "AttendanceService",
    "CacheKeys",
    "CachePatterns",
    "CacheService",
    "FollowUpService",
    "IdentityLock",
    "IntakeService",
    "MemberService",
    "RecordClient",
    "RecordStoreError",
]
