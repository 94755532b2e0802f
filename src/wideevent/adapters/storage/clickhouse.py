"""ClickHouse storage adapter over the HTTP interface.

Events live in one MergeTree table. System data is kept in ``_``-prefixed
columns and the caller's properties in a ``JSON`` column named ``event``,
whose sub-paths (``event.user.plan``) are queryable like ordinary columns.
Ingestion counts per project and day are maintained by a materialized view
into a ``SummingMergeTree``.
"""

import logging
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any

import httpx

from wideevent.core.encoding.ndjson import decode_rows, encode_rows
from wideevent.core.errors import StoreError
from wideevent.core.fields import escape_value
from wideevent.core.models import WideEvent

logger = logging.getLogger(__name__)

EVENTS_DDL = """
CREATE TABLE IF NOT EXISTS events (
    _id String,
    _project_id LowCardinality(String),
    _timestamp DateTime64(3, 'UTC'),
    _ingested_at DateTime64(3, 'UTC'),
    _event_type LowCardinality(String),
    _status_code Nullable(UInt16),
    _outcome LowCardinality(Nullable(String)),
    event JSON
) ENGINE = MergeTree()
PARTITION BY toYYYYMM(_timestamp)
ORDER BY (_project_id, _timestamp, _event_type)
"""

DAILY_USAGE_DDL = """
CREATE TABLE IF NOT EXISTS daily_usage (
    project_id String,
    day Date,
    count UInt64
) ENGINE = SummingMergeTree()
ORDER BY (project_id, day)
"""

DAILY_USAGE_MV_DDL = """
CREATE MATERIALIZED VIEW IF NOT EXISTS daily_usage_mv TO daily_usage AS
SELECT _project_id AS project_id, toDate(_ingested_at) AS day, count() AS count
FROM events
GROUP BY project_id, day
"""

SCHEMA_STATEMENTS = (EVENTS_DDL, DAILY_USAGE_DDL, DAILY_USAGE_MV_DDL)

_INSERT_EVENTS = "INSERT INTO events FORMAT JSONEachRow"


class ClickHouseEventStorage:
    """ClickHouse implementation of EventSinkPort, EventQueryPort and UsageCounterPort.

    Args:
        url: Base URL of the ClickHouse HTTP interface.
        database: Database holding the tables.
        username: ClickHouse user.
        password: ClickHouse password.
        timeout: Request timeout in seconds.
        client: Optional preconfigured client (tests inject a mock transport).
    """

    def __init__(
        self,
        url: str,
        database: str = "default",
        username: str = "default",
        password: str = "",
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._database = database
        self._client = client or httpx.AsyncClient(base_url=url, timeout=timeout)
        self._headers = {
            "X-ClickHouse-User": username,
            "X-ClickHouse-Key": password,
            "X-ClickHouse-Database": database,
        }

    async def close(self) -> None:
        await self._client.aclose()

    async def _post(
        self,
        sql: str,
        body: str | None = None,
        settings: dict[str, Any] | None = None,
    ) -> httpx.Response:
        params: dict[str, Any] = dict(settings or {})
        if body is None:
            content = sql
        else:
            params["query"] = sql
            content = body
        try:
            response = await self._client.post(
                "/", params=params, content=content.encode(), headers=self._headers
            )
        except httpx.HTTPError as exc:
            raise StoreError(f"ClickHouse request failed: {exc}") from exc
        if response.status_code >= 400:
            detail = response.text.strip()[:500]
            raise StoreError(f"ClickHouse returned {response.status_code}: {detail}")
        return response

    async def ensure_schema(self) -> None:
        """Create tables and views if they do not exist."""
        for statement in SCHEMA_STATEMENTS:
            await self._post(statement, settings={"allow_experimental_json_type": 1})
        logger.info("ClickHouse schema ready in database %s", self._database)

    async def insert(self, event: WideEvent) -> None:
        await self._post(
            _INSERT_EVENTS,
            body=encode_rows([event.to_row()]),
            settings={"date_time_input_format": "best_effort"},
        )

    async def query(self, sql: str) -> list[dict[str, Any]]:
        response = await self._post(
            sql,
            settings={
                "default_format": "JSONEachRow",
                "output_format_json_quote_64bit_integers": 0,
            },
        )
        try:
            return decode_rows(response.text)
        except ValueError as exc:
            raise StoreError(f"Malformed ClickHouse response: {exc}") from exc

    async def has_event_type(self, project_id: str, event_type: str) -> bool:
        rows = await self.query(
            "SELECT 1 AS found FROM events "
            f"WHERE _project_id = {escape_value(project_id)} "
            f"AND _event_type = {escape_value(event_type)} LIMIT 1"
        )
        return bool(rows)

    async def count_since(self, project_ids: Sequence[str], since: datetime) -> int:
        if not project_ids:
            return 0
        ids = ", ".join(escape_value(pid) for pid in project_ids)
        day = since.astimezone(UTC).date().isoformat()
        rows = await self.query(
            "SELECT sum(count) AS total FROM daily_usage "
            f"WHERE project_id IN ({ids}) AND day >= toDate({escape_value(day)})"
        )
        if not rows or rows[0].get("total") is None:
            return 0
        return int(rows[0]["total"])
