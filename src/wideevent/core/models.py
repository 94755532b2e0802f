"""Core domain models for wide events and queries over them."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

# Arbitrary caller JSON: Null | Bool | Number | String | Object | Array
PayloadValue = (
    None | bool | int | float | str | list["PayloadValue"] | dict[str, "PayloadValue"]
)
Payload = dict[str, Any]

Outcome = Literal["success", "error"]

FilterOperator = Literal["=", "!=", ">", "<", ">=", "<=", "LIKE", "IN"]
FILTER_OPERATORS: frozenset[str] = frozenset(
    {"=", "!=", ">", "<", ">=", "<=", "LIKE", "IN"}
)

FilterValue = str | int | float | bool | Sequence[str | int | float]

DEFAULT_LIMIT = 100


@dataclass(frozen=True)
class WideEvent:
    """The canonical record for one unit of work.

    Attributes:
        event_id: Unique id assigned at ingestion.
        project_id: Owning project (tenant).
        event_type: Caller-supplied event name.
        timestamp: Event time (caller supplied, or arrival time).
        ingested_at: Arrival time.
        trace_id: Correlation key shared by events of one operation.
        payload: Caller properties, nested objects permitted.
        status_code: First-class HTTP status extracted from the payload.
        outcome: First-class outcome extracted from the payload.
    """

    event_id: str
    project_id: str
    event_type: str
    timestamp: datetime
    ingested_at: datetime
    trace_id: str
    payload: Payload = field(default_factory=dict)
    status_code: int | None = None
    outcome: str | None = None

    def to_row(self) -> dict[str, Any]:
        """Convert to a column-store row.

        System data lives in ``_``-prefixed columns; the ``event`` column carries the
        caller's properties plus the resolved ``trace_id``.
        """
        return {
            "_id": self.event_id,
            "_project_id": self.project_id,
            "_timestamp": _format_timestamp(self.timestamp),
            "_ingested_at": _format_timestamp(self.ingested_at),
            "_event_type": self.event_type,
            "_status_code": self.status_code,
            "_outcome": self.outcome,
            "event": {**self.payload, "trace_id": self.trace_id},
        }


def _format_timestamp(value: datetime) -> str:
    return value.isoformat(timespec="milliseconds")


@dataclass(frozen=True)
class FilterCondition:
    """A single caller-supplied predicate on a payload or system field.

    Attributes:
        field: Dotted path, e.g. ``error.code``. Must match ``^[A-Za-z0-9_.]+$``.
        op: Comparison operator.
        value: Scalar, or a list of scalars for ``IN``.
    """

    field: str
    op: FilterOperator
    value: FilterValue


StatusFilter = Literal["error", "success"] | int


@dataclass(frozen=True)
class QueryOptions:
    """Tenant, window and pagination for a read query.

    Attributes:
        project_id: Tenant id. Required on every query.
        start_time: Inclusive lower bound on event time.
        end_time: Inclusive upper bound on event time.
        event_type: Restrict to one event type.
        status: ``"error"``, ``"success"`` or an exact status code.
        limit: Page size (default 100).
        offset: Rows to skip.
    """

    project_id: str
    start_time: datetime | None = None
    end_time: datetime | None = None
    event_type: str | None = None
    status: StatusFilter | None = None
    limit: int = DEFAULT_LIMIT
    offset: int = 0

    def __post_init__(self) -> None:
        if not self.project_id:
            raise ValueError("project_id is required")
        if self.limit < 0 or self.offset < 0:
            raise ValueError("limit and offset must be non-negative")


@dataclass(frozen=True)
class EventRow:
    """An event as returned by list/search/trace queries."""

    id: str
    timestamp: datetime
    event_type: str
    payload: Payload
    status_code: int | None = None
    outcome: str | None = None


@dataclass(frozen=True)
class AggregateRow:
    """One group of an aggregate-by-field query."""

    key: Any
    count: int
    error_count: int
    error_rate: float
    avg_duration_ms: float | None
    p95_duration_ms: float | None


@dataclass(frozen=True)
class LatencyRow:
    """Latency percentiles for one group."""

    key: Any
    p50: float | None
    p90: float | None
    p95: float | None
    p99: float | None
    count: int


@dataclass(frozen=True)
class ErrorGroupRow:
    """Error count for one (group, error type, error code) combination."""

    key: Any
    error_type: str | None
    error_code: str | None
    count: int


@dataclass(frozen=True)
class EventStats:
    """Totals for a query window. Rates are percentages rounded to integers."""

    total: int
    errors: int
    error_rate: int
    success_rate: int


@dataclass(frozen=True)
class FieldSuggestions:
    """Result of field discovery: observed event types and per-field values."""

    event_types: list[str] = field(default_factory=list)
    fields: dict[str, list[str]] = field(default_factory=dict)


@dataclass(frozen=True)
class ApiKeyRecord:
    """A stored ingestion credential. Only the hash of the key is kept.

    Attributes:
        id: Key id.
        key_hash: SHA-256 hex digest of the bearer token.
        start: Non-secret display prefix of the token.
        account_id: Owning account.
        project_id: Project the key writes to, if bound.
        enabled: False once revoked.
        expires_at: Optional expiry.
        request_count: Number of authenticated requests.
        last_request: Last time the key was seen.
        name: Display name.
    """

    id: str
    key_hash: str
    start: str
    account_id: str
    project_id: str | None
    enabled: bool = True
    expires_at: datetime | None = None
    request_count: int = 0
    last_request: datetime | None = None
    name: str | None = None

    def is_usable(self, now: datetime) -> bool:
        """Return True if the key is enabled and not past its expiry."""
        if not self.enabled:
            return False
        return self.expires_at is None or self.expires_at > now


@dataclass(frozen=True)
class AccountLimits:
    """Per-account plan limits as reported by the account service."""

    events_per_month: int | None = None


@dataclass(frozen=True)
class ReadyEvent:
    """A finalized capture-side event that passed sampling and can be sent.

    Attributes:
        event_type: Event name, ``"<METHOD> <path>"`` for requests.
        properties: The full event payload.
        timestamp: Event time.
    """

    event_type: str
    properties: Payload
    timestamp: datetime

    def to_body(self) -> dict[str, Any]:
        """Render as an ingest request body."""
        return {
            "event": self.event_type,
            "properties": self.properties,
            "timestamp": _format_timestamp(self.timestamp),
        }


@dataclass(frozen=True)
class Project:
    """A tenant: events are always stored and queried per project."""

    id: str
    account_id: str
    name: str
    created_at: datetime


@dataclass(frozen=True)
class IssuedKey:
    """A freshly created API key. The plaintext token is only available here."""

    token: str
    record: ApiKeyRecord
