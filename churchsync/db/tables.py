"""Record store table and field names."""


class Tables:
    MEMBERS = "Members"
    SERVICES = "Services"
    ATTENDANCE = "Attendance"
    EVANGELISM = "Evangelism"
    FIRST_TIMERS_REGISTER = "First Timers Register"
    RETURNERS_REGISTER = "Returners Register"
    FOLLOW_UP_ASSIGNMENTS = "Follow-up Assignments"
    FOLLOW_UP_INTERACTIONS = "Follow-up Interactions"
    HOME_VISITS = "Home Visits"
    VOLUNTEERS = "Volunteers"


class MemberFields:
    FIRST_NAME = "First Name"
    LAST_NAME = "Last Name"
    FULL_NAME = "Full Name"
    PHONE = "Phone"
    EMAIL = "Email"
    ADDRESS = "Address"
    POSTAL_CODE = "GhanaPost Code"
    GENDER = "Gender"
    DOB = "DOB"
    STATUS = "Status"
    SOURCE = "Source"
    DATE_FIRST_CAPTURED = "Date First Captured"
    FOLLOW_UP_OWNER = "Follow-up Owner"
    FOLLOW_UP_STATUS = "Follow-up Status"
    FIRST_SERVICE_ATTENDED = "First Service Attended"
    ATTENDANCE = "Attendance"
    HOME_VISITS = "Home Visits"


class AttendanceFields:
    MEMBER = "Member"
    SERVICE = "Service"
    PRESENT = "Present?"
    SOURCE_FORM = "Source Form"
    GROUP_TAG = "Group Tag"


class AssignmentFields:
    MEMBER = "Member"
    ASSIGNED_TO = "Assigned To"
    ASSIGNED_DATE = "Assigned Date"
    DUE_DATE = "Due Date"
    STATUS = "Status"


class VolunteerFields:
    NAME = "Name"
    ROLE = "Role"
    PHONE = "Phone"
    EMAIL = "Email"
    ACTIVE = "Active"
    CAPACITY = "Capacity"


LINKED_MEMBER = "Linked Member"

# Tables whose rows reference a member, with the linking field name.
# Merging re-points each of these from the source member to the target.
MEMBER_REFERENCE_TABLES: tuple[tuple[str, str], ...] = (
    (Tables.ATTENDANCE, AttendanceFields.MEMBER),
    (Tables.HOME_VISITS, "Member"),
    (Tables.FOLLOW_UP_ASSIGNMENTS, AssignmentFields.MEMBER),
    (Tables.FOLLOW_UP_INTERACTIONS, "Member"),
    (Tables.EVANGELISM, LINKED_MEMBER),
    (Tables.FIRST_TIMERS_REGISTER, LINKED_MEMBER),
    (Tables.RETURNERS_REGISTER, LINKED_MEMBER),
)
