"""Read-side query engine over the analytical event store.

Every operation compiles a tenant-scoped predicate through the filter compiler,
builds one SQL statement and runs it through an ``EventQueryPort``. Rows come
back as mappings and are converted to frozen result models here.

Store failures propagate as ``StoreError``: a query either fully succeeds or
fully fails.
"""

import json
import math
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from typing import Any

from wideevent.core.errors import ValidationError
from wideevent.core.fields import escape_like_contains, escape_value, resolve_field
from wideevent.core.filters import (
    ERROR_PREDICATE,
    SERVER_ERROR_PREDICATE,
    compile_predicate,
)
from wideevent.core.models import (
    AggregateRow,
    ErrorGroupRow,
    EventRow,
    EventStats,
    FilterCondition,
    LatencyRow,
    QueryOptions,
)
from wideevent.core.ports import EventQueryPort

EVENTS_TABLE = "events"

AGGREGATE_GROUP_LIMIT = 100
LATENCY_GROUP_LIMIT = 50
ERROR_GROUP_LIMIT = 100
TRACE_LIMIT = 20
DISCOVERY_SAMPLE_SIZE = 500

EVENT_COLUMNS = (
    "_id AS id, _timestamp AS timestamp, _event_type AS event_type, "
    "toString(event) AS payload, _status_code AS status_code, _outcome AS outcome"
)


def _numeric(expression: str) -> str:
    return f"CAST({expression}, 'Nullable(Float64)')"


def _to_float(value: Any) -> float | None:
    if value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return None if math.isnan(number) else number


def _to_int(value: Any) -> int:
    number = _to_float(value)
    return int(number) if number is not None else 0


def _to_optional_str(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _parse_payload(value: Any) -> dict[str, Any]:
    if isinstance(value, Mapping):
        return dict(value)
    if not value:
        return {}
    try:
        payload = json.loads(value)
    except (TypeError, json.JSONDecodeError):
        return {}
    return payload if isinstance(payload, dict) else {}


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def event_row_from_mapping(row: Mapping[str, Any]) -> EventRow:
    """Convert a store row selected with ``EVENT_COLUMNS`` into an EventRow."""
    status = _to_float(row.get("status_code"))
    return EventRow(
        id=str(row["id"]),
        timestamp=_parse_timestamp(row["timestamp"]),
        event_type=str(row.get("event_type") or ""),
        payload=_parse_payload(row.get("payload")),
        status_code=int(status) if status is not None else None,
        outcome=_to_optional_str(row.get("outcome")),
    )


class QueryEngine:
    """Read operations over wide events for one store.

    Args:
        store: Adapter implementing ``EventQueryPort``.
    """

    def __init__(self, store: EventQueryPort) -> None:
        self._store = store

    async def _fetch_events(self, sql: str) -> list[EventRow]:
        rows = await self._store.query(sql)
        return [event_row_from_mapping(row) for row in rows]

    async def list_events(
        self, options: QueryOptions, filters: Iterable[FilterCondition] = ()
    ) -> list[EventRow]:
        """Return one page of events, newest first."""
        where = compile_predicate(options, filters)
        sql = (
            f"SELECT {EVENT_COLUMNS} FROM {EVENTS_TABLE} WHERE {where} "
            f"ORDER BY _timestamp DESC LIMIT {int(options.limit)} "
            f"OFFSET {int(options.offset)}"
        )
        return await self._fetch_events(sql)

    async def aggregate(
        self,
        group_by: str,
        options: QueryOptions,
        filters: Iterable[FilterCondition] = (),
    ) -> list[AggregateRow]:
        """Group events by one field with counts, error rate and duration stats.

        Raises:
            ValidationError: If ``group_by`` is not a valid field name.
        """
        column = resolve_field(group_by)
        duration = _numeric(resolve_field("duration_ms"))
        where = compile_predicate(options, filters)
        sql = (
            f"SELECT {column} AS group_key, count() AS total, "
            f"countIf({SERVER_ERROR_PREDICATE}) AS errors, "
            "round(errors * 100.0 / total, 2) AS error_rate, "
            f"avg({duration}) AS avg_duration_ms, "
            f"quantile(0.95)({duration}) AS p95_duration_ms "
            f"FROM {EVENTS_TABLE} WHERE {where} "
            f"GROUP BY group_key ORDER BY total DESC LIMIT {AGGREGATE_GROUP_LIMIT}"
        )
        rows = await self._store.query(sql)
        return [
            AggregateRow(
                key=row.get("group_key"),
                count=_to_int(row.get("total")),
                error_count=_to_int(row.get("errors")),
                error_rate=_to_float(row.get("error_rate")) or 0.0,
                avg_duration_ms=_to_float(row.get("avg_duration_ms")),
                p95_duration_ms=_to_float(row.get("p95_duration_ms")),
            )
            for row in rows
        ]

    async def latency(
        self,
        group_by: str,
        options: QueryOptions,
        filters: Iterable[FilterCondition] = (),
        duration_field: str = "duration_ms",
    ) -> list[LatencyRow]:
        """Return p50/p90/p95/p99 of a duration field per group, slowest first.

        Raises:
            ValidationError: If ``group_by`` or ``duration_field`` is invalid.
        """
        column = resolve_field(group_by)
        duration = _numeric(resolve_field(duration_field))
        where = compile_predicate(options, filters)
        sql = (
            f"SELECT {column} AS group_key, "
            f"quantile(0.50)({duration}) AS p50, "
            f"quantile(0.90)({duration}) AS p90, "
            f"quantile(0.95)({duration}) AS p95, "
            f"quantile(0.99)({duration}) AS p99, "
            f"count() AS total "
            f"FROM {EVENTS_TABLE} WHERE {where} AND {duration} IS NOT NULL "
            f"GROUP BY group_key ORDER BY p99 DESC LIMIT {LATENCY_GROUP_LIMIT}"
        )
        rows = await self._store.query(sql)
        return [
            LatencyRow(
                key=row.get("group_key"),
                p50=_to_float(row.get("p50")),
                p90=_to_float(row.get("p90")),
                p95=_to_float(row.get("p95")),
                p99=_to_float(row.get("p99")),
                count=_to_int(row.get("total")),
            )
            for row in rows
        ]

    async def search(
        self,
        term: str,
        options: QueryOptions,
        fields: Iterable[str] | None = None,
        filters: Iterable[FilterCondition] = (),
    ) -> list[EventRow]:
        """Case-insensitive substring search across fields, newest first.

        With no field list the whole stringified payload is searched. Invalid
        field names are skipped. An empty term behaves like ``list_events``.
        """
        if not term:
            return await self.list_events(options, filters)
        pattern = escape_like_contains(term)
        if fields is None:
            targets = ["event"]
        else:
            targets = []
            for name in fields:
                try:
                    targets.append(resolve_field(name))
                except ValidationError:
                    continue
        if not targets:
            return []
        matches = " OR ".join(
            f"toString({target}) ILIKE {pattern}" for target in targets
        )
        where = compile_predicate(options, filters)
        sql = (
            f"SELECT {EVENT_COLUMNS} FROM {EVENTS_TABLE} "
            f"WHERE {where} AND ({matches}) "
            f"ORDER BY _timestamp DESC LIMIT {int(options.limit)} "
            f"OFFSET {int(options.offset)}"
        )
        return await self._fetch_events(sql)

    async def trace(
        self,
        trace_id: str,
        project_id: str,
        exclude_event_id: str | None = None,
    ) -> list[EventRow]:
        """Return the events of one trace in chronological order.

        Events match when their ``trace_id`` or ``request_id`` equals the given
        value. ``exclude_event_id`` removes the event being inspected, which
        turns the lookup into a related-events query.
        """
        tenant = QueryOptions(project_id=project_id)
        value = escape_value(trace_id)
        predicate = (
            f"{compile_predicate(tenant)} AND "
            f"({resolve_field('trace_id')} = {value} OR "
            f"{resolve_field('request_id')} = {value})"
        )
        if exclude_event_id is not None:
            predicate += f" AND _id != {escape_value(exclude_event_id)}"
        sql = (
            f"SELECT {EVENT_COLUMNS} FROM {EVENTS_TABLE} WHERE {predicate} "
            f"ORDER BY _timestamp ASC LIMIT {TRACE_LIMIT}"
        )
        return await self._fetch_events(sql)

    async def errors(
        self,
        group_by: str,
        options: QueryOptions,
        filters: Iterable[FilterCondition] = (),
    ) -> list[ErrorGroupRow]:
        """Group error rows by a field plus error type and code, most frequent first.

        Raises:
            ValidationError: If ``group_by`` is not a valid field name.
        """
        column = resolve_field(group_by)
        where = compile_predicate(options, filters)
        sql = (
            f"SELECT {column} AS group_key, "
            f"{resolve_field('error.type')} AS error_type, "
            f"{resolve_field('error.code')} AS error_code, "
            f"count() AS total "
            f"FROM {EVENTS_TABLE} WHERE {where} AND {SERVER_ERROR_PREDICATE} "
            "GROUP BY group_key, error_type, error_code "
            f"ORDER BY total DESC LIMIT {ERROR_GROUP_LIMIT}"
        )
        rows = await self._store.query(sql)
        return [
            ErrorGroupRow(
                key=row.get("group_key"),
                error_type=_to_optional_str(row.get("error_type")),
                error_code=_to_optional_str(row.get("error_code")),
                count=_to_int(row.get("total")),
            )
            for row in rows
        ]

    async def stats(
        self, options: QueryOptions, filters: Iterable[FilterCondition] = ()
    ) -> EventStats:
        """Return totals and rounded error/success percentages for a window."""
        where = compile_predicate(options, filters)
        sql = (
            f"SELECT count() AS total, countIf({ERROR_PREDICATE}) AS errors "
            f"FROM {EVENTS_TABLE} WHERE {where}"
        )
        rows = await self._store.query(sql)
        row = rows[0] if rows else {}
        total = _to_int(row.get("total"))
        errors = _to_int(row.get("errors"))
        if total == 0:
            return EventStats(total=0, errors=0, error_rate=0, success_rate=0)
        return EventStats(
            total=total,
            errors=errors,
            error_rate=_round_half_up(errors / total * 100),
            success_rate=_round_half_up((total - errors) / total * 100),
        )

    async def recent_sample(
        self, project_id: str, limit: int = DISCOVERY_SAMPLE_SIZE
    ) -> list[EventRow]:
        """Return the most recent events for a project."""
        return await self.list_events(QueryOptions(project_id=project_id, limit=limit))
