"""Intake workflows for evangelism, first timer and returner events.

Each workflow is a sequence of steps that are individually safe to re-run, so
a failed event can be redelivered as a whole:
- the member is resolved before it is created (and creation re-resolves
  under the identity lock);
- register links and field merges are idempotent writes;
- attendance uses find-then-create-or-update;
- a follow-up assignment is only created when the member has no active one.

Failures come back as a result with ``success=False`` and a structured error.
Side steps (attendance, capacity reassignment) are best-effort: they log a
warning and do not fail the workflow.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Callable

from churchsync.core.errors import AppError, ErrorCode
from churchsync.core.structured_logging import build_log_context
from churchsync.db.enums import MemberSource, MemberStatus, SourceForm
from churchsync.db.tables import Tables
from churchsync.schemas.intake import (
    EvangelismEvent,
    EvangelismResult,
    FirstTimerEvent,
    FirstTimerResult,
    ReturnerEvent,
    ReturnerResult,
    WorkflowError,
    linked_member_fields,
)
from churchsync.schemas.member import Member, MemberCreate, MemberUpdate
from churchsync.services.attendance_service import AttendanceService
from churchsync.services.follow_up_service import FollowUpService
from churchsync.services.member_service import DuplicateMemberError, MemberService
from churchsync.services.record_client import RecordClient

logger = logging.getLogger(__name__)


def _missing_contact_error() -> WorkflowError:
    return WorkflowError(
        code=ErrorCode.INVALID_INPUT.value,
        message="At least one of phone or email is required",
    )


class IntakeService:
    def __init__(
        self,
        client: RecordClient,
        members: MemberService,
        attendance: AttendanceService,
        follow_ups: FollowUpService,
        *,
        today: Callable[[], date] = date.today,
    ) -> None:
        self.client = client
        self.members = members
        self.attendance = attendance
        self.follow_ups = follow_ups
        self._today = today

    async def _resolve_or_create(self, candidate: MemberCreate) -> tuple[Member, bool]:
        """Existing member for the candidate's unique keys, or a newly created one."""
        existing = await self.members.find_member_by_phone_or_email(
            phone=candidate.phone, email=candidate.email
        )
        if existing:
            return existing, False
        try:
            return await self.members.create_member(candidate), True
        except DuplicateMemberError as exc:
            # Created concurrently between lookup and lock
            return await self.members.get_member(exc.existing_member_id), False

    async def _link_register_record(self, table: str, record_id: str, member_id: str) -> None:
        await self.client.update_record(table, record_id, linked_member_fields(member_id))

    async def _mark_attendance(
        self, member_id: str, service_id: str | None, source_form: SourceForm
    ) -> bool:
        if not service_id:
            return False
        try:
            await self.attendance.mark_present(member_id, service_id, source_form)
        except AppError:
            logger.warning(
                "Failed to mark attendance",
                exc_info=True,
                extra=build_log_context(member_id=member_id, event="attendance_failed"),
            )
            return False
        return True

    # ------------------------------------------------------------------
    # Evangelism
    # ------------------------------------------------------------------

    async def process_evangelism_event(self, event: EvangelismEvent) -> EvangelismResult:
        """Evangelism capture: resolve or create, link, assign follow-up to the capturer."""
        result = EvangelismResult(success=False)
        if not event.phone and not event.email:
            result.error = _missing_contact_error()
            return result

        try:
            member, created = await self._resolve_or_create(
                MemberCreate(
                    first_name=event.first_name,
                    last_name=event.last_name,
                    phone=event.phone,
                    email=event.email,
                    postal_code=event.postal_code,
                    status=MemberStatus.EVANGELISM_CONTACT,
                    source=MemberSource.EVANGELISM,
                    date_first_captured=event.captured_on,
                )
            )
            result.member_id = member.id
            result.member_created = created

            await self._link_register_record(Tables.EVANGELISM, event.record_id, member.id)
            result.evangelism_record_linked = True

            if event.captured_by:
                await self._assign_follow_up(member, event.captured_by, result)

            result.success = True
        except Exception as exc:
            result.error = self._workflow_error("evangelism", exc, result.member_id)
        return result

    async def _assign_follow_up(
        self, member: Member, volunteer_id: str, result: EvangelismResult
    ) -> None:
        active = await self.follow_ups.get_member_active_assignments(member.id)
        if active:
            owner_id = active[0].assigned_to
            result.follow_up_assignment_id = active[0].id
        else:
            assigned = await self.follow_ups.assign_with_capacity_check(member.id, volunteer_id)
            owner_id = assigned.assigned_volunteer_id
            result.follow_up_assignment_id = assigned.assignment.id
            result.follow_up_assignment_created = True
            result.warning = assigned.warning

        if member.follow_up_owner != owner_id:
            await self.members.update_member(member.id, MemberUpdate(follow_up_owner=owner_id))
            result.follow_up_owner_updated = True

    # ------------------------------------------------------------------
    # First timer
    # ------------------------------------------------------------------

    async def process_first_timer_event(self, event: FirstTimerEvent) -> FirstTimerResult:
        """
        First timer registration.

        An existing Evangelism Contact is promoted to First Timer and its empty
        fields filled; its current owner is checked for capacity. Otherwise a
        new First Timer is created.
        """
        result = FirstTimerResult(success=False)
        if not event.phone and not event.email:
            result.error = _missing_contact_error()
            return result

        try:
            member, created = await self._resolve_or_create(
                MemberCreate(
                    first_name=event.first_name,
                    last_name=event.last_name,
                    phone=event.phone,
                    email=event.email,
                    address=event.address,
                    postal_code=event.postal_code,
                    status=MemberStatus.FIRST_TIMER,
                    source=MemberSource.FIRST_TIMER_FORM,
                    date_first_captured=self._today(),
                )
            )
            result.member_id = member.id
            result.member_created = created

            promote = not created and member.status == MemberStatus.EVANGELISM_CONTACT
            patch = MemberUpdate(
                address=event.address,
                postal_code=event.postal_code,
                email=event.email,
                phone=event.phone,
                first_service_attended=event.service_id,
            )
            if promote:
                patch.status = MemberStatus.FIRST_TIMER
            await self.members.merge_fields_into_member(member.id, patch)
            result.member_merged = not created

            if promote and member.follow_up_owner:
                await self._check_owner_capacity(member, result)

            await self._link_register_record(
                Tables.FIRST_TIMERS_REGISTER, event.record_id, member.id
            )
            result.first_timer_record_linked = True

            result.attendance_marked = await self._mark_attendance(
                member.id, event.service_id, SourceForm.FIRST_TIMER
            )
            result.success = True
        except Exception as exc:
            result.error = self._workflow_error("first_timer", exc, result.member_id)
        return result

    async def _check_owner_capacity(self, member: Member, result: FirstTimerResult) -> None:
        try:
            outcome = await self.follow_ups.process_capacity_reassignment(
                member.id, member.follow_up_owner
            )
        except AppError:
            logger.warning(
                "Capacity reassignment check failed",
                exc_info=True,
                extra=build_log_context(
                    member_id=member.id,
                    volunteer_id=member.follow_up_owner,
                    event="capacity_reassignment_failed",
                ),
            )
            return
        result.owner_reassigned = outcome.reassigned
        result.warning = outcome.warning

    # ------------------------------------------------------------------
    # Returner
    # ------------------------------------------------------------------

    async def process_returner_event(self, event: ReturnerEvent) -> ReturnerResult:
        """Returner form: the member must already exist."""
        result = ReturnerResult(success=False)
        if not event.phone and not event.email:
            result.error = _missing_contact_error()
            return result

        try:
            member = await self.members.find_member_by_phone_or_email(
                phone=event.phone, email=event.email
            )
            if member is None:
                result.error = WorkflowError(
                    code=ErrorCode.RETURNER_NOT_IN_SYSTEM.value,
                    message="No existing member found. Please use the First Timer registration form instead.",
                )
                return result
            result.member_id = member.id

            if member.status in MemberStatus.promotable_to_returner():
                await self.members.update_member(
                    member.id, MemberUpdate(status=MemberStatus.RETURNER)
                )
                result.status_updated = True
                logger.info(
                    "Member promoted from %s to Returner",
                    member.status.value,
                    extra=build_log_context(member_id=member.id, event="status_promoted"),
                )

            await self._link_register_record(Tables.RETURNERS_REGISTER, event.record_id, member.id)
            result.returner_record_linked = True

            result.attendance_marked = await self._mark_attendance(
                member.id, event.service_id, SourceForm.RETURNER
            )
            result.success = True
        except Exception as exc:
            result.error = self._workflow_error("returner", exc, result.member_id)
        return result

    def _workflow_error(
        self, workflow: str, exc: Exception, member_id: str | None
    ) -> WorkflowError:
        context = build_log_context(member_id=member_id, operation=workflow, event="workflow_failed")
        if isinstance(exc, AppError):
            logger.warning(
                "%s workflow failed: %s", workflow, exc.code.value, extra=context
            )
        else:
            logger.exception("%s workflow failed unexpectedly", workflow, extra=context)
        return WorkflowError.from_error(exc)
