"""Follow-up assignment scheduling with volunteer capacity limits.

Assignment state machine:
    Assigned → In Progress → Completed
    Assigned | In Progress → Reassigned (terminal; a new row supersedes it)

Capacity policy is fail-open: when every volunteer is full the preferred
volunteer still gets the work and a warning is logged, so no member is left
without an owner.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Callable, Iterable

from churchsync.core.errors import AppError, ErrorCode
from churchsync.core.structured_logging import build_log_context
from churchsync.db.enums import (
    ASSIGNMENT_TRANSITIONS,
    AssignmentStatus,
    MemberStatus,
    VolunteerRole,
)
from churchsync.db.tables import AssignmentFields, MemberFields, Tables, VolunteerFields
from churchsync.schemas.follow_up import (
    AssignmentResult,
    CapacityInfo,
    CapacityReassignmentResult,
    FollowUpAssignment,
    ReassignmentCheck,
    Volunteer,
    assignment_create_fields,
    assignment_from_record,
    assignment_status_fields,
    volunteer_from_record,
)
from churchsync.schemas.member import Member, MemberUpdate, member_from_record, member_update_fields
from churchsync.schemas.record import format_store_date
from churchsync.services.record_client import RecordClient
from churchsync.utils.formula import And, Eq, IsBlank, IsTrue, LinkContains, any_of

logger = logging.getLogger(__name__)


class FollowUpServiceError(AppError):
    """Base exception for follow-up service errors."""

    pass


class InvalidFollowUpInputError(FollowUpServiceError):
    def __init__(self, message: str) -> None:
        super().__init__(ErrorCode.INVALID_INPUT, message)


class InvalidStatusTransitionError(FollowUpServiceError):
    def __init__(self, current: AssignmentStatus, requested: AssignmentStatus) -> None:
        super().__init__(
            ErrorCode.INVALID_INPUT,
            f"Cannot move assignment from {current.value} to {requested.value}",
            details={"current": current.value, "requested": requested.value},
        )


def _capacity_reason(info: CapacityInfo) -> str:
    return (
        f"Volunteer {info.volunteer_name or info.volunteer_id} has reached capacity "
        f"({info.current_assignments}/{info.capacity})"
    )


class FollowUpService:
    def __init__(
        self,
        client: RecordClient,
        *,
        default_due_days: int = 3,
        default_capacity: int = 20,
        today: Callable[[], date] = date.today,
    ) -> None:
        self.client = client
        self.default_due_days = default_due_days
        self.default_capacity = default_capacity
        self._today = today

    # ------------------------------------------------------------------
    # Assignments
    # ------------------------------------------------------------------

    async def create_assignment(
        self,
        member_id: str,
        volunteer_id: str,
        due_in_days: int | None = None,
    ) -> FollowUpAssignment:
        """Create an Assigned row due ``due_in_days`` after today."""
        if not member_id:
            raise InvalidFollowUpInputError("Member ID is required")
        if not volunteer_id:
            raise InvalidFollowUpInputError("Volunteer ID is required")
        days = self.default_due_days if due_in_days is None else due_in_days
        if days < 0:
            raise InvalidFollowUpInputError("due_in_days cannot be negative")

        record = await self.client.create_record(
            Tables.FOLLOW_UP_ASSIGNMENTS,
            assignment_create_fields(member_id, volunteer_id, self._today(), days),
        )
        logger.info(
            "Follow-up assignment created",
            extra=build_log_context(
                member_id=member_id,
                volunteer_id=volunteer_id,
                table=Tables.FOLLOW_UP_ASSIGNMENTS,
                event="assignment_created",
            ),
        )
        return assignment_from_record(record)

    async def get_assignment(self, assignment_id: str) -> FollowUpAssignment:
        record = await self.client.get_record(Tables.FOLLOW_UP_ASSIGNMENTS, assignment_id)
        return assignment_from_record(record)

    async def update_assignment_status(
        self, assignment_id: str, status: AssignmentStatus
    ) -> FollowUpAssignment:
        """Move an assignment along the state machine. Same-status is a no-op."""
        if not assignment_id:
            raise InvalidFollowUpInputError("Assignment ID is required")
        current = await self.get_assignment(assignment_id)
        if current.status == status:
            return current
        if status not in ASSIGNMENT_TRANSITIONS[current.status]:
            raise InvalidStatusTransitionError(current.status, status)

        record = await self.client.update_record(
            Tables.FOLLOW_UP_ASSIGNMENTS, assignment_id, assignment_status_fields(status)
        )
        return assignment_from_record(record)

    async def get_assignments_by_volunteer(
        self,
        volunteer_id: str,
        statuses: Iterable[AssignmentStatus] | None = None,
    ) -> list[FollowUpAssignment]:
        if not volunteer_id:
            raise InvalidFollowUpInputError("Volunteer ID is required")
        formula = LinkContains(AssignmentFields.ASSIGNED_TO, volunteer_id)
        if statuses is not None:
            formula = And(formula, any_of(AssignmentFields.STATUS, list(statuses)))
        records = await self.client.find_records(Tables.FOLLOW_UP_ASSIGNMENTS, formula)
        return [assignment_from_record(r) for r in records]

    async def get_member_active_assignments(self, member_id: str) -> list[FollowUpAssignment]:
        if not member_id:
            raise InvalidFollowUpInputError("Member ID is required")
        records = await self.client.find_records(
            Tables.FOLLOW_UP_ASSIGNMENTS,
            And(
                LinkContains(AssignmentFields.MEMBER, member_id),
                any_of(AssignmentFields.STATUS, AssignmentStatus.active()),
            ),
        )
        return [assignment_from_record(r) for r in records]

    async def get_due_assignments(self, due_on: date | None = None) -> list[FollowUpAssignment]:
        """Active assignments due on ``due_on`` (default: today)."""
        day = due_on or self._today()
        records = await self.client.find_records(
            Tables.FOLLOW_UP_ASSIGNMENTS,
            And(
                Eq(AssignmentFields.DUE_DATE, format_store_date(day)),
                any_of(AssignmentFields.STATUS, AssignmentStatus.active()),
            ),
        )
        return [assignment_from_record(r) for r in records]

    async def get_unassigned_members(self) -> list[Member]:
        """Evangelism contacts and first timers with no follow-up owner."""
        records = await self.client.find_records(
            Tables.MEMBERS,
            And(
                IsBlank(MemberFields.FOLLOW_UP_OWNER),
                any_of(MemberFields.STATUS, MemberStatus.unassigned_follow_up_statuses()),
            ),
        )
        return [member_from_record(r) for r in records]

    # ------------------------------------------------------------------
    # Volunteers & capacity
    # ------------------------------------------------------------------

    async def get_volunteer(self, volunteer_id: str) -> Volunteer:
        if not volunteer_id:
            raise InvalidFollowUpInputError("Volunteer ID is required")
        record = await self.client.get_record(Tables.VOLUNTEERS, volunteer_id)
        return volunteer_from_record(record, default_capacity=self.default_capacity)

    async def get_active_volunteers(
        self, role: VolunteerRole | None = VolunteerRole.FOLLOW_UP
    ) -> list[Volunteer]:
        """Active volunteers in store listing order."""
        formula = IsTrue(VolunteerFields.ACTIVE)
        if role is not None:
            formula = And(formula, Eq(VolunteerFields.ROLE, role))
        records = await self.client.find_records(Tables.VOLUNTEERS, formula)
        return [volunteer_from_record(r, default_capacity=self.default_capacity) for r in records]

    async def count_active_assignments(self, volunteer_id: str) -> int:
        active = await self.get_assignments_by_volunteer(volunteer_id, AssignmentStatus.active())
        return len(active)

    async def get_volunteer_capacity(self, volunteer: str | Volunteer) -> CapacityInfo:
        """
        Current load of a volunteer.

        current = assignments in {Assigned, In Progress}
        available = max(0, capacity - current)
        """
        if isinstance(volunteer, str):
            volunteer = await self.get_volunteer(volunteer)
        current = await self.count_active_assignments(volunteer.id)
        return CapacityInfo(
            volunteer_id=volunteer.id,
            volunteer_name=volunteer.name,
            capacity=volunteer.capacity,
            current_assignments=current,
            available_slots=max(0, volunteer.capacity - current),
            has_capacity=current < volunteer.capacity,
        )

    async def find_available_volunteer(
        self,
        role: VolunteerRole | None = VolunteerRole.FOLLOW_UP,
        exclude: Iterable[str] = (),
    ) -> Volunteer | None:
        """First active volunteer (listing order) with spare capacity."""
        excluded = set(exclude)
        for volunteer in await self.get_active_volunteers(role):
            if volunteer.id in excluded:
                continue
            info = await self.get_volunteer_capacity(volunteer)
            if info.has_capacity:
                return volunteer
        return None

    async def check_reassignment_needed(self, volunteer_id: str) -> ReassignmentCheck:
        info = await self.get_volunteer_capacity(volunteer_id)
        if info.has_capacity:
            return ReassignmentCheck(needs_reassignment=False)
        alternate = await self.find_available_volunteer(exclude=[volunteer_id])
        return ReassignmentCheck(
            needs_reassignment=True,
            available_volunteer=alternate,
            reason=_capacity_reason(info),
        )

    # ------------------------------------------------------------------
    # Capacity-aware assignment
    # ------------------------------------------------------------------

    async def assign_with_capacity_check(
        self,
        member_id: str,
        preferred_volunteer_id: str,
        due_in_days: int | None = None,
    ) -> AssignmentResult:
        """
        Assign a member, preferring ``preferred_volunteer_id``.

        1. Preferred volunteer has capacity: assign there.
        2. Otherwise: first other active volunteer with capacity.
        3. Nobody has capacity: assign to preferred anyway and warn.
        """
        if not member_id:
            raise InvalidFollowUpInputError("Member ID is required")
        if not preferred_volunteer_id:
            raise InvalidFollowUpInputError("Preferred volunteer ID is required")

        info = await self.get_volunteer_capacity(preferred_volunteer_id)
        if info.has_capacity:
            assignment = await self.create_assignment(member_id, preferred_volunteer_id, due_in_days)
            return AssignmentResult(
                assignment=assignment,
                assigned_volunteer_id=preferred_volunteer_id,
                was_reassigned=False,
            )

        reason = _capacity_reason(info)
        alternate = await self.find_available_volunteer(exclude=[preferred_volunteer_id])
        if alternate is not None:
            assignment = await self.create_assignment(member_id, alternate.id, due_in_days)
            logger.info(
                "Preferred volunteer %s at capacity (%s/%s), assigned to %s",
                preferred_volunteer_id,
                info.current_assignments,
                info.capacity,
                alternate.id,
                extra=build_log_context(
                    member_id=member_id, volunteer_id=alternate.id, event="capacity_reassigned"
                ),
            )
            return AssignmentResult(
                assignment=assignment,
                assigned_volunteer_id=alternate.id,
                was_reassigned=True,
                warning=f"{reason}; assigned to {alternate.name or alternate.id} instead",
            )

        warning = f"{reason} and no other volunteers have capacity; assigned anyway"
        logger.warning(
            "All volunteers at capacity, assigning to preferred volunteer %s (%s/%s)",
            preferred_volunteer_id,
            info.current_assignments,
            info.capacity,
            extra=build_log_context(
                member_id=member_id,
                volunteer_id=preferred_volunteer_id,
                event="capacity_exhausted",
            ),
        )
        assignment = await self.create_assignment(member_id, preferred_volunteer_id, due_in_days)
        return AssignmentResult(
            assignment=assignment,
            assigned_volunteer_id=preferred_volunteer_id,
            was_reassigned=False,
            warning=warning,
        )

    async def reassign_member(
        self,
        member_id: str,
        new_volunteer_id: str,
        reason: str | None = None,
    ) -> FollowUpAssignment:
        """
        Move a member to a new volunteer.

        Active assignments are marked Reassigned (kept for audit), a new
        assignment is created, and the member's follow-up owner is updated.
        """
        if not member_id:
            raise InvalidFollowUpInputError("Member ID is required")
        if not new_volunteer_id:
            raise InvalidFollowUpInputError("New volunteer ID is required")

        active = await self.get_member_active_assignments(member_id)
        if active:
            await self.client.batch_update(
                Tables.FOLLOW_UP_ASSIGNMENTS,
                [(a.id, assignment_status_fields(AssignmentStatus.REASSIGNED)) for a in active],
            )

        assignment = await self.create_assignment(member_id, new_volunteer_id)
        await self.client.update_record(
            Tables.MEMBERS,
            member_id,
            member_update_fields(MemberUpdate(follow_up_owner=new_volunteer_id)),
        )
        logger.info(
            "Member reassigned (%s superseded): %s",
            len(active),
            reason or "no reason given",
            extra=build_log_context(
                member_id=member_id, volunteer_id=new_volunteer_id, event="member_reassigned"
            ),
        )
        return assignment

    async def process_capacity_reassignment(
        self, member_id: str, current_owner_id: str
    ) -> CapacityReassignmentResult:
        """Move an existing member off an owner found to be over capacity."""
        if not member_id:
            raise InvalidFollowUpInputError("Member ID is required")
        if not current_owner_id:
            raise InvalidFollowUpInputError("Current owner ID is required")

        info = await self.get_volunteer_capacity(current_owner_id)
        if info.has_capacity:
            return CapacityReassignmentResult(reassigned=False)

        reason = _capacity_reason(info)
        alternate = await self.find_available_volunteer(exclude=[current_owner_id])
        if alternate is None:
            warning = f"{reason} but no other volunteers are available for reassignment"
            logger.warning(
                "Owner %s over capacity (%s/%s), no volunteer available",
                current_owner_id,
                info.current_assignments,
                info.capacity,
                extra=build_log_context(
                    member_id=member_id,
                    volunteer_id=current_owner_id,
                    event="capacity_exhausted",
                ),
            )
            return CapacityReassignmentResult(reassigned=False, warning=warning)

        assignment = await self.reassign_member(member_id, alternate.id, reason)
        return CapacityReassignmentResult(
            reassigned=True,
            new_assignment=assignment,
            new_owner_id=alternate.id,
        )
