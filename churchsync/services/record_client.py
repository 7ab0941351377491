"""Record store client with client-side rate limiting and retry/backoff.

This is the only module that talks to the external record store (Airtable
REST API). Every call:
- waits for a token from the shared ``TokenBucket``;
- is retried with exponential backoff and jitter when the failure is
  classified retryable (429, 5xx, timeouts, transport errors);
- surfaces a ``RecordStoreError`` carrying an ``ErrorCode``.
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Any, Awaitable, Callable, Iterable, TypeVar
from urllib.parse import quote

import httpx

from churchsync.core.errors import AppError, ErrorCode
from churchsync.core.rate_limit import (
    DEFAULT_RETRY_POLICY,
    RetryPolicy,
    SleepFn,
    TokenBucket,
    calculate_backoff_delay,
)
from churchsync.core.structured_logging import build_log_context
from churchsync.db.tables import MemberFields
from churchsync.schemas.record import Record, parse_store_datetime
from churchsync.utils.formula import Eq, Formula, LowerEq, Or
from churchsync.utils.normalization import (
    normalize_email,
    normalize_phone,
    phone_match_variants,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Store limit for batch create/update
BATCH_SIZE = 10

HTTPX_TIMEOUT_SECONDS = 10.0


class RecordStoreError(AppError):
    """Classified record store failure."""

    pass


def classify_status(status_code: int, message: str, details: dict[str, Any]) -> RecordStoreError:
    """Map an HTTP error status to a typed error."""
    details = {"status_code": status_code, **details}
    if status_code == 429:
        return RecordStoreError(
            ErrorCode.RATE_LIMITED, message or "Record store rate limit exceeded", details=details
        )
    if status_code == 404:
        return RecordStoreError(ErrorCode.NOT_FOUND, message or "Record not found", details=details)
    if status_code in (400, 401, 403, 422):
        return RecordStoreError(
            ErrorCode.INVALID_REQUEST, message or "Invalid request", details=details
        )
    if status_code >= 500:
        return RecordStoreError(
            ErrorCode.SERVER_ERROR, message or "Record store server error", details=details
        )
    return RecordStoreError(
        ErrorCode.SERVER_ERROR,
        message or f"Unexpected record store response {status_code}",
        retryable=False,
        details=details,
    )


def classify_transport_error(exc: httpx.TransportError) -> RecordStoreError:
    if isinstance(exc, httpx.TimeoutException):
        return RecordStoreError(
            ErrorCode.TIMEOUT,
            "Record store request timed out",
            details={"error": type(exc).__name__},
        )
    return RecordStoreError(
        ErrorCode.SERVER_ERROR,
        "Record store connection failed",
        retryable=True,
        details={"error": type(exc).__name__},
    )


def _error_message(response: httpx.Response) -> tuple[str, dict[str, Any]]:
    try:
        payload = response.json()
    except ValueError:
        return response.text[:500], {}
    error = payload.get("error") if isinstance(payload, dict) else None
    if isinstance(error, dict):
        message = error.get("message") or ""
        return str(message), {"error_type": error.get("type")}
    if isinstance(error, str):
        return error, {"error_type": error}
    return "", {}


def chunked(items: list[T], size: int = BATCH_SIZE) -> Iterable[list[T]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


def _record_from_json(payload: dict[str, Any]) -> Record:
    return Record(
        id=payload["id"],
        fields=payload.get("fields") or {},
        created_time=parse_store_datetime(payload.get("createdTime")),
    )


class RecordClient:
    """Async gateway to the record store."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        rate_limiter: TokenBucket,
        retry_policy: RetryPolicy = DEFAULT_RETRY_POLICY,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = HTTPX_TIMEOUT_SECONDS,
        default_country_code: str | None = None,
        sleep: SleepFn = asyncio.sleep,
        rng: Callable[[float, float], float] = random.uniform,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.rate_limiter = rate_limiter
        self.retry_policy = retry_policy
        self.default_country_code = default_country_code
        self._headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=httpx.Timeout(timeout, connect=5.0))
        self._sleep = sleep
        self._rng = rng

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "RecordClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Point operations
    # ------------------------------------------------------------------

    async def get_record(self, table: str, record_id: str) -> Record:
        """Get a single record by id."""

        async def _op() -> Record:
            payload = await self._request("GET", self._record_url(table, record_id))
            return _record_from_json(payload)

        return await self._execute_with_retry(_op, operation="get", table=table)

    async def create_record(self, table: str, fields: dict[str, Any]) -> Record:
        """Create a new record."""

        async def _op() -> Record:
            payload = await self._request("POST", self._table_url(table), json={"fields": fields})
            return _record_from_json(payload)

        return await self._execute_with_retry(_op, operation="create", table=table)

    async def update_record(self, table: str, record_id: str, fields: dict[str, Any]) -> Record:
        """Update (PATCH) an existing record; unspecified fields are untouched."""

        async def _op() -> Record:
            payload = await self._request(
                "PATCH", self._record_url(table, record_id), json={"fields": fields}
            )
            return _record_from_json(payload)

        return await self._execute_with_retry(_op, operation="update", table=table)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def find_records(
        self,
        table: str,
        formula: Formula | str | None = None,
        *,
        max_records: int | None = None,
        sort: list[tuple[str, str]] | None = None,
    ) -> list[Record]:
        """
        List records matching a filter formula, following pagination.

        Args:
            table: Table name
            formula: Filter formula node (or a pre-rendered formula string)
            max_records: Upper bound on records returned
            sort: ``[(field, "asc" | "desc"), ...]``
        """
        params: dict[str, Any] = {}
        if formula is not None:
            params["filterByFormula"] = str(formula)
        if max_records:
            params["maxRecords"] = max_records
        for index, (field, direction) in enumerate(sort or []):
            params[f"sort[{index}][field]"] = field
            params[f"sort[{index}][direction]"] = direction

        records: list[Record] = []
        offset: str | None = None
        while True:
            page_params = dict(params)
            if offset:
                page_params["offset"] = offset

            async def _op() -> dict[str, Any]:
                return await self._request("GET", self._table_url(table), params=page_params)

            payload = await self._execute_with_retry(_op, operation="list", table=table)
            records.extend(_record_from_json(item) for item in payload.get("records", []))
            offset = payload.get("offset")
            if not offset or (max_records and len(records) >= max_records):
                break

        if max_records:
            return records[:max_records]
        return records

    async def find_by_unique_key(
        self,
        table: str,
        phone: str | None = None,
        email: str | None = None,
    ) -> Record | None:
        """
        Find the first record whose phone or email matches.

        Phones are compared after normalization (every stored spelling of the
        same number); emails are compared case-insensitively. Criteria are
        OR-ed. Returns the first record the store returns, or None.
        """
        clauses: list[Formula] = []
        for variant in phone_match_variants(phone, self.default_country_code):
            clauses.append(Eq(MemberFields.PHONE, variant))
        normalized_email = normalize_email(email)
        if normalized_email:
            clauses.append(LowerEq(MemberFields.EMAIL, normalized_email))
        if not clauses:
            return None

        records = await self.find_records(table, Or(*clauses), max_records=1)
        return records[0] if records else None

    def normalize_phone(self, phone: str | None) -> str | None:
        return normalize_phone(phone, self.default_country_code)

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------

    async def batch_create(self, table: str, records: list[dict[str, Any]]) -> list[Record]:
        """Create records in batches of ``BATCH_SIZE``."""
        results: list[Record] = []
        for batch in chunked(records):
            body = {"records": [{"fields": fields} for fields in batch]}

            async def _op(body: dict[str, Any] = body) -> list[Record]:
                payload = await self._request("POST", self._table_url(table), json=body)
                return [_record_from_json(item) for item in payload.get("records", [])]

            results.extend(await self._execute_with_retry(_op, operation="batch_create", table=table))
        return results

    async def batch_update(
        self, table: str, updates: list[tuple[str, dict[str, Any]]]
    ) -> list[Record]:
        """Update ``(record_id, fields)`` pairs in batches of ``BATCH_SIZE``."""
        results: list[Record] = []
        for batch in chunked(updates):
            body = {"records": [{"id": record_id, "fields": fields} for record_id, fields in batch]}

            async def _op(body: dict[str, Any] = body) -> list[Record]:
                payload = await self._request("PATCH", self._table_url(table), json=body)
                return [_record_from_json(item) for item in payload.get("records", [])]

            results.extend(await self._execute_with_retry(_op, operation="batch_update", table=table))
        return results

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _table_url(self, table: str) -> str:
        return f"{self.base_url}/{quote(table, safe='')}"

    def _record_url(self, table: str, record_id: str) -> str:
        return f"{self._table_url(table)}/{quote(record_id, safe='')}"

    async def _request(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """One rate-limited HTTP round trip; raises a classified error on failure."""
        await self.rate_limiter.acquire()
        try:
            response = await self._client.request(
                method, url, headers=self._headers, params=params, json=json
            )
        except httpx.TransportError as exc:
            raise classify_transport_error(exc) from exc

        if response.status_code >= 400:
            message, details = _error_message(response)
            raise classify_status(response.status_code, message, details)

        try:
            payload = response.json()
        except ValueError as exc:
            raise RecordStoreError(
                ErrorCode.SERVER_ERROR,
                "Record store returned invalid JSON",
                retryable=False,
                details={"status_code": response.status_code},
            ) from exc
        if not isinstance(payload, dict):
            raise RecordStoreError(
                ErrorCode.SERVER_ERROR,
                "Record store returned an unexpected payload",
                retryable=False,
            )
        return payload

    async def _execute_with_retry(
        self,
        operation_fn: Callable[[], Awaitable[T]],
        *,
        operation: str,
        table: str,
    ) -> T:
        max_retries = self.retry_policy.max_retries
        for attempt in range(max_retries + 1):
            try:
                return await operation_fn()
            except RecordStoreError as exc:
                if not exc.retryable:
                    raise
                if attempt >= max_retries:
                    logger.error(
                        "Record store %s on %s failed after %s attempts: %s",
                        operation,
                        table,
                        attempt + 1,
                        exc.code.value,
                        extra=build_log_context(table=table, operation=operation, attempt=attempt + 1),
                    )
                    raise
                delay = calculate_backoff_delay(attempt, self.retry_policy, rng=self._rng)
                logger.warning(
                    "Record store %s on %s returned %s, retrying in %.2fs (%s/%s)",
                    operation,
                    table,
                    exc.code.value,
                    delay,
                    attempt + 1,
                    max_retries,
                    extra=build_log_context(table=table, operation=operation, attempt=attempt + 1),
                )
                await self._sleep(delay)
        raise RecordStoreError(ErrorCode.INTERNAL_ERROR, "Retry loop exited unexpectedly")
