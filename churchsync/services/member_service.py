"""Member identity service: resolution, creation, and non-destructive merge.

A member is identified by normalized phone OR lowercased email. Intake
channels each collect part of a person's details, so instead of overwriting
we only ever fill gaps:

- ``merge_fields_into_member`` fills whitelisted empty fields from a patch;
- ``merge_members`` folds a duplicate member into a target (earliest
  admission date, union of linked records, references re-pointed).

Both are order-independent: applying the same patches in any order converges
on the same record.
"""

from __future__ import annotations

import logging

from churchsync.core.errors import AppError, ErrorCode
from churchsync.core.structured_logging import build_log_context
from churchsync.db.tables import (
    MEMBER_REFERENCE_TABLES,
    AttendanceFields,
    Tables,
)
from churchsync.schemas.attendance import attendance_from_record
from churchsync.schemas.member import (
    Member,
    MemberCreate,
    MemberUpdate,
    member_create_fields,
    member_from_record,
    member_update_fields,
)
from churchsync.schemas.record import link_list
from churchsync.services.identity_lock import IdentityLock, identity_lock_keys
from churchsync.services.record_client import RecordClient
from churchsync.utils.formula import LinkContains
from churchsync.utils.normalization import is_empty, normalize_email, normalize_name

logger = logging.getLogger(__name__)

# Fields a later intake event may fill in on an existing member
MERGE_FIELD_WHITELIST = (
    "address",
    "postal_code",
    "email",
    "phone",
    "first_service_attended",
)

# Scalars copied from a duplicate into the surviving member when empty there
MERGE_MEMBERS_SCALARS = (
    "first_name",
    "last_name",
    "phone",
    "email",
    "address",
    "postal_code",
    "gender",
    "dob",
)


class MemberServiceError(AppError):
    """Base exception for member service errors."""

    pass


class InvalidMemberInputError(MemberServiceError):
    def __init__(self, message: str) -> None:
        super().__init__(ErrorCode.INVALID_INPUT, message)


class DuplicateMemberError(MemberServiceError):
    """A member with the same phone or email already exists."""

    def __init__(self, existing_member_id: str) -> None:
        super().__init__(
            ErrorCode.DUPLICATE_MEMBER,
            "A member with this phone number or email already exists",
            details={"existing_member_id": existing_member_id},
        )
        self.existing_member_id = existing_member_id


class MemberNotFoundError(MemberServiceError):
    def __init__(self, member_id: str) -> None:
        super().__init__(
            ErrorCode.MEMBER_NOT_FOUND,
            "Member not found",
            details={"member_id": member_id},
        )


class MemberService:
    def __init__(
        self,
        client: RecordClient,
        identity_lock: IdentityLock,
    ) -> None:
        self.client = client
        self.identity_lock = identity_lock

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    async def find_member_by_phone_or_email(
        self, phone: str | None = None, email: str | None = None
    ) -> Member | None:
        record = await self.client.find_by_unique_key(Tables.MEMBERS, phone=phone, email=email)
        return member_from_record(record) if record else None

    async def get_member(self, member_id: str) -> Member:
        if not member_id:
            raise InvalidMemberInputError("Member ID is required")
        try:
            record = await self.client.get_record(Tables.MEMBERS, member_id)
        except AppError as exc:
            if exc.code == ErrorCode.NOT_FOUND:
                raise MemberNotFoundError(member_id) from exc
            raise
        return member_from_record(record)

    # ------------------------------------------------------------------
    # Create / update
    # ------------------------------------------------------------------

    async def create_member(self, data: MemberCreate) -> Member:
        """
        Create a member after re-resolving by unique key.

        Raises:
            InvalidMemberInputError: name or every contact field missing
            DuplicateMemberError: phone or email already belongs to a member
        """
        first_name = normalize_name(data.first_name)
        last_name = normalize_name(data.last_name)
        phone = self._normalize_phone(data.phone)
        email = normalize_email(data.email)

        if not first_name or not last_name:
            raise InvalidMemberInputError("First name and last name are required")
        if not phone and not email:
            raise InvalidMemberInputError("At least one of phone or email is required")

        candidate = data.model_copy(
            update={
                "first_name": first_name,
                "last_name": last_name,
                "phone": phone,
                "email": email,
                "address": normalize_name(data.address),
                "postal_code": normalize_name(data.postal_code),
            }
        )

        async with self.identity_lock.hold(identity_lock_keys(phone, email)):
            existing = await self.find_member_by_phone_or_email(phone=phone, email=email)
            if existing:
                raise DuplicateMemberError(existing.id)
            record = await self.client.create_record(Tables.MEMBERS, member_create_fields(candidate))

        logger.info(
            "Member created",
            extra=build_log_context(member_id=record.id, table=Tables.MEMBERS, event="member_created"),
        )
        return member_from_record(record)

    async def update_member(self, member_id: str, update: MemberUpdate) -> Member:
        """Partial update; only fields explicitly set on ``update`` are written."""
        if not member_id:
            raise InvalidMemberInputError("Member ID is required")

        normalized: dict = {}
        if "phone" in update.model_fields_set:
            normalized["phone"] = self._normalize_phone(update.phone)
        if "email" in update.model_fields_set:
            normalized["email"] = normalize_email(update.email)
        if normalized:
            update = update.model_copy(update=normalized)

        fields = member_update_fields(update)
        if not fields:
            return await self.get_member(member_id)

        record = await self.client.update_record(Tables.MEMBERS, member_id, fields)
        return member_from_record(record)

    # ------------------------------------------------------------------
    # Merge
    # ------------------------------------------------------------------

    async def merge_fields_into_member(self, member_id: str, patch: MemberUpdate) -> Member:
        """
        Fill empty whitelisted fields from ``patch``.

        Non-empty fields on the member are never overwritten. ``status`` is
        applied unconditionally (lifecycle promotion). Source provenance is
        never written here.
        """
        current = await self.get_member(member_id)
        changes: dict = {}

        for name in MERGE_FIELD_WHITELIST:
            value = getattr(patch, name)
            if name == "phone":
                value = self._normalize_phone(value)
            elif name == "email":
                value = normalize_email(value)
            if is_empty(value) or not is_empty(getattr(current, name)):
                continue
            changes[name] = value

        if patch.status is not None and patch.status != current.status:
            changes["status"] = patch.status

        if not changes:
            return current

        record = await self.client.update_record(
            Tables.MEMBERS, member_id, member_update_fields(MemberUpdate(**changes))
        )
        logger.info(
            "Merged %s field(s) into member",
            len(changes),
            extra=build_log_context(member_id=member_id, event="member_fields_merged"),
        )
        return member_from_record(record)

    async def merge_members(self, target_id: str, source_id: str) -> Member:
        """
        Fold ``source`` into ``target``.

        - admission date becomes the earlier of the two;
        - empty scalar fields on target are filled from source;
        - attendance and home visit links are unioned (written only if grown);
        - every table referencing source is re-pointed to target. Source
          attendance for a service the target already attended stays with
          source so a (member, service) pair never has two marks.

        The source member itself is left in place.
        """
        if not target_id or not source_id:
            raise InvalidMemberInputError("Target and source member IDs are required")
        if target_id == source_id:
            raise InvalidMemberInputError("Cannot merge a member into itself")

        target = await self.get_member(target_id)
        source = await self.get_member(source_id)

        duplicate_marks = await self._duplicate_attendance_ids(target_id, source_id)

        changes: dict = {}
        dates = [d for d in (target.date_first_captured, source.date_first_captured) if d]
        if dates and min(dates) != target.date_first_captured:
            changes["date_first_captured"] = min(dates)

        for name in MERGE_MEMBERS_SCALARS:
            if is_empty(getattr(target, name)) and not is_empty(getattr(source, name)):
                changes[name] = getattr(source, name)

        attendance = _union(
            target.attendance_ids,
            [a for a in source.attendance_ids if a not in duplicate_marks],
        )
        if len(attendance) > len(target.attendance_ids):
            changes["attendance_ids"] = attendance

        home_visits = _union(target.home_visit_ids, source.home_visit_ids)
        if len(home_visits) > len(target.home_visit_ids):
            changes["home_visit_ids"] = home_visits

        if changes:
            await self.client.update_record(
                Tables.MEMBERS, target_id, member_update_fields(MemberUpdate(**changes))
            )

        repointed = 0
        for table, field in MEMBER_REFERENCE_TABLES:
            skip = duplicate_marks if table == Tables.ATTENDANCE else set()
            repointed += await self._repoint_references(table, field, source_id, target_id, skip)

        logger.info(
            "Merged member %s into %s (%s fields, %s references re-pointed, %s duplicate marks kept)",
            source_id,
            target_id,
            len(changes),
            repointed,
            len(duplicate_marks),
            extra=build_log_context(member_id=target_id, event="members_merged"),
        )
        return await self.get_member(target_id)

    async def _duplicate_attendance_ids(self, target_id: str, source_id: str) -> set[str]:
        """Source attendance marks whose service the target already has a mark for."""
        target_marks = await self.client.find_records(
            Tables.ATTENDANCE, LinkContains(AttendanceFields.MEMBER, target_id)
        )
        source_marks = await self.client.find_records(
            Tables.ATTENDANCE, LinkContains(AttendanceFields.MEMBER, source_id)
        )
        seen = {attendance_from_record(r).service_id for r in target_marks}
        duplicates: set[str] = set()
        for record in source_marks:
            service_id = attendance_from_record(record).service_id
            if service_id in seen:
                duplicates.add(record.id)
            else:
                seen.add(service_id)
        return duplicates

    async def _repoint_references(
        self,
        table: str,
        field: str,
        source_id: str,
        target_id: str,
        skip: set[str],
    ) -> int:
        records = await self.client.find_records(table, LinkContains(field, source_id))
        updates = []
        for record in records:
            if record.id in skip:
                continue
            links = link_list(record.fields.get(field))
            if source_id not in links:
                continue
            repointed = _union([target_id if link == source_id else link for link in links], [])
            updates.append((record.id, {field: repointed}))
        if updates:
            await self.client.batch_update(table, updates)
        return len(updates)

    def _normalize_phone(self, phone: str | None) -> str | None:
        return self.client.normalize_phone(phone)


def _union(first: list[str], second: list[str]) -> list[str]:
    """Order-preserving set union."""
    result: list[str] = []
    for item in [*first, *second]:
        if item not in result:
            result.append(item)
    return result
