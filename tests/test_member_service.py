"""Tests for member identity resolution and merge."""

import asyncio
from datetime import date

import pytest

from churchsync.core.errors import ErrorCode
from churchsync.db.enums import MemberSource, MemberStatus
from churchsync.db.tables import AttendanceFields, LINKED_MEMBER, MemberFields, Tables
from churchsync.schemas.member import MemberCreate, MemberUpdate
from churchsync.services.member_service import DuplicateMemberError, MemberNotFoundError


def _candidate(**overrides):
    data = dict(
        first_name="Ama",
        last_name="Mensah",
        phone="024 412 3456",
        email=None,
        status=MemberStatus.FIRST_TIMER,
        source=MemberSource.FIRST_TIMER_FORM,
        date_first_captured=date(2024, 2, 4),
    )
    data.update(overrides)
    return MemberCreate(**data)


def _seed_member(fake_client, record_id, **fields):
    base = {
        MemberFields.FIRST_NAME: "Ama",
        MemberFields.LAST_NAME: "Mensah",
        MemberFields.STATUS: MemberStatus.EVANGELISM_CONTACT.value,
        MemberFields.SOURCE: MemberSource.EVANGELISM.value,
    }
    base.update(fields)
    return fake_client.seed(Tables.MEMBERS, base, record_id=record_id)


# =============================================================================
# create_member
# =============================================================================


@pytest.mark.asyncio
async def test_create_member_normalizes_identity(member_service, fake_client):
    member = await member_service.create_member(
        _candidate(first_name="  Ama ", email=" Ama@Example.com ")
    )

    row = fake_client.rows(Tables.MEMBERS)[member.id]
    assert row[MemberFields.PHONE] == "+233244123456"
    assert row[MemberFields.EMAIL] == "ama@example.com"
    assert row[MemberFields.FIRST_NAME] == "Ama"
    assert row[MemberFields.SOURCE] == "First Timer Form"
    assert row[MemberFields.DATE_FIRST_CAPTURED] == "2024-02-04"
    assert member.status == MemberStatus.FIRST_TIMER


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "phone,email",
    [
        ("+233244123456", None),
        ("0244123456", None),
        ("00233 24 412 3456", None),
        (None, "AMA@example.com"),
        ("0200000000", "ama@EXAMPLE.com"),
    ],
)
async def test_second_member_with_same_unique_key_is_duplicate(member_service, phone, email):
    first = await member_service.create_member(_candidate(phone="0244123456", email="ama@example.com"))

    with pytest.raises(DuplicateMemberError) as exc_info:
        await member_service.create_member(_candidate(phone=phone, email=email))

    assert exc_info.value.code == ErrorCode.DUPLICATE_MEMBER
    assert exc_info.value.retryable is False
    assert exc_info.value.details["existing_member_id"] == first.id


@pytest.mark.asyncio
async def test_create_member_requires_names(member_service):
    with pytest.raises(Exception) as exc_info:
        await member_service.create_member(_candidate(last_name="  "))

    assert exc_info.value.code == ErrorCode.INVALID_INPUT


@pytest.mark.asyncio
async def test_create_member_requires_a_contact(member_service, fake_client):
    with pytest.raises(Exception) as exc_info:
        await member_service.create_member(_candidate(phone="n/a", email=" "))

    assert exc_info.value.code == ErrorCode.INVALID_INPUT
    assert fake_client.calls_to("create_record") == []


@pytest.mark.asyncio
async def test_concurrent_creates_yield_one_member(member_service, fake_client):
    results = await asyncio.gather(
        member_service.create_member(_candidate(phone="0244123456")),
        member_service.create_member(_candidate(phone="+233 24 412 3456")),
        return_exceptions=True,
    )

    created = [r for r in results if not isinstance(r, Exception)]
    duplicates = [r for r in results if isinstance(r, DuplicateMemberError)]
    assert len(created) == 1
    assert len(duplicates) == 1
    assert len(fake_client.rows(Tables.MEMBERS)) == 1


# =============================================================================
# lookup / update
# =============================================================================


@pytest.mark.asyncio
async def test_find_member_matches_legacy_phone_format(member_service, fake_client):
    _seed_member(fake_client, "recLegacy", **{MemberFields.PHONE: "0244123456"})

    member = await member_service.find_member_by_phone_or_email(phone="+233244123456")

    assert member.id == "recLegacy"


@pytest.mark.asyncio
async def test_get_member_not_found(member_service):
    with pytest.raises(MemberNotFoundError) as exc_info:
        await member_service.get_member("recMissing")

    assert exc_info.value.code == ErrorCode.MEMBER_NOT_FOUND


@pytest.mark.asyncio
async def test_update_member_writes_only_provided_fields(member_service, fake_client):
    _seed_member(fake_client, "recA", **{MemberFields.ADDRESS: "Old Rd"})

    member = await member_service.update_member(
        "recA", MemberUpdate(email="NEW@Example.com", follow_up_owner="recVol")
    )

    _, _, (record_id, fields) = fake_client.calls_to("update_record", Tables.MEMBERS)[-1]
    assert record_id == "recA"
    assert fields == {MemberFields.EMAIL: "new@example.com", MemberFields.FOLLOW_UP_OWNER: ["recVol"]}
    assert member.address == "Old Rd"
    assert member.follow_up_owner == "recVol"


@pytest.mark.asyncio
async def test_empty_update_is_a_read(member_service, fake_client):
    _seed_member(fake_client, "recA")

    member = await member_service.update_member("recA", MemberUpdate())

    assert member.id == "recA"
    assert fake_client.calls_to("update_record") == []


# =============================================================================
# merge_fields_into_member
# =============================================================================


@pytest.mark.asyncio
async def test_merge_fields_never_overwrites_non_empty(member_service, fake_client):
    _seed_member(
        fake_client,
        "recA",
        **{MemberFields.ADDRESS: "Old Rd", MemberFields.PHONE: "+233244123456"},
    )

    member = await member_service.merge_fields_into_member(
        "recA",
        MemberUpdate(
            address="New Rd",
            phone="0209999999",
            email="Ama@Example.com",
            postal_code="GA-123-4567",
            first_name="Changed",
        ),
    )

    assert member.address == "Old Rd"
    assert member.phone == "+233244123456"
    assert member.email == "ama@example.com"
    assert member.postal_code == "GA-123-4567"
    assert member.first_name == "Ama"


@pytest.mark.asyncio
async def test_merge_fields_sets_status_but_not_source(member_service, fake_client):
    _seed_member(fake_client, "recA")

    member = await member_service.merge_fields_into_member(
        "recA", MemberUpdate(status=MemberStatus.FIRST_TIMER)
    )

    assert member.status == MemberStatus.FIRST_TIMER
    assert member.source == MemberSource.EVANGELISM


@pytest.mark.asyncio
async def test_merge_fields_is_order_independent(fake_client, member_service):
    patches = [
        MemberUpdate(address="12 Ring Rd", email="a@example.com"),
        MemberUpdate(postal_code="GA-1", first_service_attended="svc1"),
        MemberUpdate(email="a@example.com", phone="0244123456"),
    ]
    _seed_member(fake_client, "recA")
    _seed_member(fake_client, "recB")

    for patch in patches:
        await member_service.merge_fields_into_member("recA", patch)
    for patch in reversed(patches):
        await member_service.merge_fields_into_member("recB", patch)

    a = await member_service.get_member("recA")
    b = await member_service.get_member("recB")
    assert a.model_dump(exclude={"id"}) == b.model_dump(exclude={"id"})
    assert a.first_service_attended == "svc1"
    assert a.phone == "+233244123456"


@pytest.mark.asyncio
async def test_scenario_reformatted_phone_merges_into_evangelism_contact(member_service, fake_client):
    _seed_member(fake_client, "recEv", **{MemberFields.PHONE: "0244123456"})

    existing = await member_service.find_member_by_phone_or_email(phone="+233244123456")
    assert existing.id == "recEv"

    member = await member_service.merge_fields_into_member(
        existing.id, MemberUpdate(address="12 Ring Rd", status=MemberStatus.FIRST_TIMER)
    )

    assert member.address == "12 Ring Rd"
    assert member.status == MemberStatus.FIRST_TIMER
    assert member.source == MemberSource.EVANGELISM
    assert member.phone == "0244123456"


# =============================================================================
# merge_members
# =============================================================================


def _seed_merge_fixture(fake_client):
    fake_client.seed(
        Tables.ATTENDANCE,
        {AttendanceFields.MEMBER: ["recTarget"], AttendanceFields.SERVICE: ["svc1"], AttendanceFields.PRESENT: True},
        record_id="att1",
    )
    fake_client.seed(
        Tables.ATTENDANCE,
        {AttendanceFields.MEMBER: ["recSource"], AttendanceFields.SERVICE: ["svc1"], AttendanceFields.PRESENT: True},
        record_id="att2",
    )
    fake_client.seed(
        Tables.ATTENDANCE,
        {AttendanceFields.MEMBER: ["recSource"], AttendanceFields.SERVICE: ["svc2"], AttendanceFields.PRESENT: True},
        record_id="att3",
    )
    fake_client.seed(Tables.EVANGELISM, {LINKED_MEMBER: ["recSource"]}, record_id="evg1")
    fake_client.seed(Tables.HOME_VISITS, {"Member": ["recSource"]}, record_id="visit1")
    _seed_member(
        fake_client,
        "recTarget",
        **{
            MemberFields.PHONE: "+233244123456",
            MemberFields.DATE_FIRST_CAPTURED: "2024-02-01",
            MemberFields.ATTENDANCE: ["att1"],
        },
    )
    _seed_member(
        fake_client,
        "recSource",
        **{
            MemberFields.PHONE: "+233209999999",
            MemberFields.EMAIL: "ama@example.com",
            MemberFields.ADDRESS: "12 Ring Rd",
            MemberFields.DATE_FIRST_CAPTURED: "2024-01-15",
            MemberFields.ATTENDANCE: ["att2", "att3"],
            MemberFields.HOME_VISITS: ["visit1"],
        },
    )


@pytest.mark.asyncio
async def test_merge_members_consolidates_identity(member_service, fake_client):
    _seed_merge_fixture(fake_client)

    merged = await member_service.merge_members("recTarget", "recSource")

    assert merged.date_first_captured == date(2024, 1, 15)
    assert merged.phone == "+233244123456"
    assert merged.email == "ama@example.com"
    assert merged.address == "12 Ring Rd"
    assert merged.attendance_ids == ["att1", "att3"]
    assert merged.home_visit_ids == ["visit1"]


@pytest.mark.asyncio
async def test_merge_members_repoints_references(member_service, fake_client):
    _seed_merge_fixture(fake_client)

    await member_service.merge_members("recTarget", "recSource")

    attendance = fake_client.rows(Tables.ATTENDANCE)
    assert attendance["att3"][AttendanceFields.MEMBER] == ["recTarget"]
    # Target already attended svc1; the source mark is not moved
    assert attendance["att2"][AttendanceFields.MEMBER] == ["recSource"]
    assert fake_client.rows(Tables.EVANGELISM)["evg1"][LINKED_MEMBER] == ["recTarget"]
    assert fake_client.rows(Tables.HOME_VISITS)["visit1"]["Member"] == ["recTarget"]


@pytest.mark.asyncio
async def test_merge_members_skips_link_write_when_union_does_not_grow(member_service, fake_client):
    _seed_member(fake_client, "recTarget", **{MemberFields.HOME_VISITS: ["visit1"]})
    _seed_member(fake_client, "recSource", **{MemberFields.HOME_VISITS: ["visit1"]})

    await member_service.merge_members("recTarget", "recSource")

    assert fake_client.calls_to("update_record", Tables.MEMBERS) == []


@pytest.mark.asyncio
async def test_merge_member_into_itself_is_rejected(member_service):
    with pytest.raises(Exception) as exc_info:
        await member_service.merge_members("recA", "recA")

    assert exc_info.value.code == ErrorCode.INVALID_INPUT
