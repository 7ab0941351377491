"""
Test configuration and fixtures.

Provides:
- FakeRecordClient: in-memory record store evaluating filter formula nodes
- FakeRedis: minimal async Redis (get/set/delete/scan_iter/lock)
- FakeClock: monotonic clock + sleep that advances it
- Service fixtures wired against the fakes
"""

from __future__ import annotations

import copy
import itertools
from datetime import date
from enum import Enum
from typing import Any

import pytest
from redis.exceptions import LockError, RedisError

from churchsync.core.errors import ErrorCode
from churchsync.services.attendance_service import AttendanceService
from churchsync.services.cache_service import glob_to_regex
from churchsync.services.follow_up_service import FollowUpService
from churchsync.services.identity_lock import IdentityLock
from churchsync.services.intake_service import IntakeService
from churchsync.services.member_service import MemberService
from churchsync.services.record_client import RecordClient, RecordStoreError
from churchsync.schemas.record import Record
from churchsync.utils.formula import (
    And,
    Eq,
    Formula,
    IsBlank,
    IsTrue,
    LinkContains,
    LowerEq,
    NotEq,
    Or,
)
from churchsync.utils.normalization import is_empty

TODAY = date(2024, 2, 27)


# =============================================================================
# Record store fake
# =============================================================================


def _literal(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def evaluate(formula: Formula, fields: dict[str, Any]) -> bool:
    """Evaluate a formula node against a row's fields."""
    if isinstance(formula, And):
        return all(evaluate(c, fields) for c in formula.clauses)
    if isinstance(formula, Or):
        return any(evaluate(c, fields) for c in formula.clauses)
    if isinstance(formula, Eq):
        return fields.get(formula.field) == _literal(formula.value)
    if isinstance(formula, NotEq):
        return fields.get(formula.field) != _literal(formula.value)
    if isinstance(formula, LowerEq):
        return str(fields.get(formula.field) or "").lower() == formula.value
    if isinstance(formula, LinkContains):
        return formula.record_id in (fields.get(formula.field) or [])
    if isinstance(formula, IsBlank):
        return is_empty(fields.get(formula.field))
    if isinstance(formula, IsTrue):
        return fields.get(formula.field) is True
    raise TypeError(f"Unsupported formula node: {formula!r}")


class FakeRecordClient(RecordClient):
    """RecordClient backed by dicts; inherits unique-key lookup and phone normalization."""

    def __init__(self, default_country_code: str | None = "233") -> None:
        self.default_country_code = default_country_code
        self.tables: dict[str, dict[str, dict[str, Any]]] = {}
        self.calls: list[tuple[str, str, Any]] = []
        self._ids = itertools.count(1)
        self._failures: dict[tuple[str, str], list[Exception]] = {}

    # -- test helpers -------------------------------------------------------

    def seed(self, table: str, fields: dict[str, Any], record_id: str | None = None) -> Record:
        record_id = record_id or f"rec{next(self._ids):05d}"
        self.tables.setdefault(table, {})[record_id] = copy.deepcopy(fields)
        return self._record(table, record_id)

    def rows(self, table: str) -> dict[str, dict[str, Any]]:
        return self.tables.get(table, {})

    def fail_next(self, method: str, table: str, exc: Exception) -> None:
        self._failures.setdefault((method, table), []).append(exc)

    def calls_to(self, method: str, table: str | None = None) -> list[tuple[str, str, Any]]:
        return [c for c in self.calls if c[0] == method and (table is None or c[1] == table)]

    # -- RecordClient surface ----------------------------------------------

    async def aclose(self) -> None:
        return None

    async def get_record(self, table: str, record_id: str) -> Record:
        self._call("get_record", table, record_id)
        self._require(table, record_id)
        return self._record(table, record_id)

    async def create_record(self, table: str, fields: dict[str, Any]) -> Record:
        self._call("create_record", table, fields)
        return self.seed(table, fields)

    async def update_record(self, table: str, record_id: str, fields: dict[str, Any]) -> Record:
        self._call("update_record", table, (record_id, fields))
        self._require(table, record_id)
        self.tables[table][record_id].update(copy.deepcopy(fields))
        return self._record(table, record_id)

    async def find_records(self, table, formula=None, *, max_records=None, sort=None):
        self._call("find_records", table, formula)
        matches = [
            self._record(table, record_id)
            for record_id, fields in self.rows(table).items()
            if formula is None or evaluate(formula, fields)
        ]
        return matches[:max_records] if max_records else matches

    async def batch_create(self, table, records):
        self._call("batch_create", table, records)
        return [self.seed(table, fields) for fields in records]

    async def batch_update(self, table, updates):
        self._call("batch_update", table, updates)
        results = []
        for record_id, fields in updates:
            self._require(table, record_id)
            self.tables[table][record_id].update(copy.deepcopy(fields))
            results.append(self._record(table, record_id))
        return results

    # -- internals -----------------------------------------------------------

    def _call(self, method: str, table: str, payload: Any) -> None:
        self.calls.append((method, table, payload))
        pending = self._failures.get((method, table))
        if pending:
            raise pending.pop(0)

    def _require(self, table: str, record_id: str) -> None:
        if record_id not in self.rows(table):
            raise RecordStoreError(
                ErrorCode.NOT_FOUND, "Record not found", details={"status_code": 404}
            )

    def _record(self, table: str, record_id: str) -> Record:
        return Record(id=record_id, fields=copy.deepcopy(self.tables[table][record_id]))


# =============================================================================
# Redis fake
# =============================================================================


class FakeRedisLock:
    def __init__(self, redis: "FakeRedis", name: str) -> None:
        self.redis = redis
        self.name = name
        self.owned = False

    async def acquire(self) -> bool:
        if self.name in self.redis.held_locks:
            return False
        self.redis.held_locks.add(self.name)
        self.redis.lock_history.append(self.name)
        self.owned = True
        return True

    async def release(self) -> None:
        if not self.owned:
            raise LockError("Cannot release an unlocked lock")
        self.redis.held_locks.discard(self.name)
        self.owned = False


class FakeRedis:
    def __init__(self) -> None:
        self.store: dict[str, Any] = {}
        self.expiry: dict[str, int] = {}
        self.held_locks: set[str] = set()
        self.lock_history: list[str] = []
        self.fail_reads = False
        self.fail_writes = False

    async def get(self, key: str):
        if self.fail_reads:
            raise RedisError("connection lost")
        return self.store.get(key)

    async def set(self, key: str, value, ex: int | None = None):
        if self.fail_writes:
            raise RedisError("connection lost")
        self.store[key] = value
        if ex is not None:
            self.expiry[key] = ex
        return True

    async def delete(self, *keys: str) -> int:
        if self.fail_writes:
            raise RedisError("connection lost")
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                removed += 1
        return removed

    async def scan_iter(self, match: str = "*", count: int | None = None):
        regex = glob_to_regex(match)
        for key in list(self.store):
            if regex.fullmatch(key):
                yield key

    def lock(self, name: str, timeout=None, blocking_timeout=None) -> FakeRedisLock:
        return FakeRedisLock(self, name)

    async def aclose(self) -> None:
        return None


# =============================================================================
# Clock
# =============================================================================


class FakeClock:
    """Monotonic clock whose ``sleep`` advances time instead of waiting."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def fake_client() -> FakeRecordClient:
    return FakeRecordClient()


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def member_service(fake_client) -> MemberService:
    return MemberService(fake_client, IdentityLock())


@pytest.fixture
def attendance_service(fake_client) -> AttendanceService:
    return AttendanceService(fake_client)


@pytest.fixture
def follow_up_service(fake_client) -> FollowUpService:
    return FollowUpService(
        fake_client, default_due_days=3, default_capacity=20, today=lambda: TODAY
    )


@pytest.fixture
def intake_service(fake_client, member_service, attendance_service, follow_up_service) -> IntakeService:
    return IntakeService(
        fake_client,
        member_service,
        attendance_service,
        follow_up_service,
        today=lambda: TODAY,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
