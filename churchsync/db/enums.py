"""Enum definitions for record store values."""

from enum import Enum


class MemberStatus(str, Enum):
    """
    Member lifecycle status.

    Evangelism Contact → First Timer → Returner → Member
    """

    EVANGELISM_CONTACT = "Evangelism Contact"
    FIRST_TIMER = "First Timer"
    RETURNER = "Returner"
    MEMBER = "Member"

    @classmethod
    def unassigned_follow_up_statuses(cls) -> list["MemberStatus"]:
        """Statuses that still need a follow-up owner."""
        return [cls.EVANGELISM_CONTACT, cls.FIRST_TIMER]

    @classmethod
    def promotable_to_returner(cls) -> list["MemberStatus"]:
        return [cls.EVANGELISM_CONTACT, cls.FIRST_TIMER]


class MemberSource(str, Enum):
    """Intake channel that first captured a member. Immutable after creation."""

    FIRST_TIMER_FORM = "First Timer Form"
    RETURNER_FORM = "Returner Form"
    EVANGELISM = "Evangelism"
    OTHER = "Other"


class FollowUpStatus(str, Enum):
    NOT_STARTED = "Not Started"
    IN_PROGRESS = "In Progress"
    CONTACTED = "Contacted"
    VISITING = "Visiting"
    INTEGRATED = "Integrated"
    ESTABLISHED = "Established"


class AssignmentStatus(str, Enum):
    """
    Follow-up assignment state machine.

    Assigned → In Progress → Completed
    Assigned | In Progress → Reassigned (terminal, superseded by a new row)
    """

    ASSIGNED = "Assigned"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"
    REASSIGNED = "Reassigned"

    @classmethod
    def active(cls) -> list["AssignmentStatus"]:
        """Statuses that count against a volunteer's capacity."""
        return [cls.ASSIGNED, cls.IN_PROGRESS]

    @classmethod
    def terminal(cls) -> list["AssignmentStatus"]:
        return [cls.COMPLETED, cls.REASSIGNED]


ASSIGNMENT_TRANSITIONS: dict[AssignmentStatus, frozenset[AssignmentStatus]] = {
    AssignmentStatus.ASSIGNED: frozenset(
        {AssignmentStatus.IN_PROGRESS, AssignmentStatus.REASSIGNED}
    ),
    AssignmentStatus.IN_PROGRESS: frozenset(
        {AssignmentStatus.COMPLETED, AssignmentStatus.REASSIGNED}
    ),
    AssignmentStatus.COMPLETED: frozenset(),
    AssignmentStatus.REASSIGNED: frozenset(),
}


class SourceForm(str, Enum):
    """Tag recording which intake path marked attendance."""

    FIRST_TIMER = "First Timer"
    RETURNER = "Returner"
    EVANGELISM = "Evangelism"
    MANUAL = "Manual"

    @classmethod
    def has_value(cls, value: str) -> bool:
        return value in cls._value2member_map_


class VolunteerRole(str, Enum):
    PASTOR = "Pastor"
    ADMIN = "Admin"
    FOLLOW_UP = "Follow-up"
    DEPARTMENT_LEAD = "Department Lead"
    EVANGELISM = "Evangelism"
