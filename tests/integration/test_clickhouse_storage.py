"""Integration tests for the ClickHouse adapter against a mocked HTTP interface."""

import json
from datetime import UTC, datetime

import httpx
import pytest

from wideevent.adapters.storage.clickhouse import (
    SCHEMA_STATEMENTS,
    ClickHouseEventStorage,
)
from wideevent.core.builder import build_event
from wideevent.core.errors import StoreError

pytestmark = [pytest.mark.tier(1), pytest.mark.storage]

NOW = datetime(2024, 5, 15, 12, tzinfo=UTC)


class FakeClickHouse:
    """Records requests and answers with a fixed NDJSON body or status."""

    def __init__(self, body: str = "", status: int = 200) -> None:
        self.body = body
        self.status = status
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status, text=self.body)

    def storage(self) -> ClickHouseEventStorage:
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(self), base_url="http://clickhouse"
        )
        return ClickHouseEventStorage(
            "http://clickhouse",
            database="analytics",
            username="writer",
            password="secret",
            client=client,
        )


class TestClickHouseWrites:
    """Tests for insert and schema setup."""

    @pytest.mark.tra("Storage.ClickHouse.Insert")
    async def test_insert_posts_json_each_row(self) -> None:
        server = FakeClickHouse()
        storage = server.storage()
        event = build_event(
            "proj_1", "checkout", {"status_code": 201}, now=NOW, id_factory=lambda: "e1"
        )

        await storage.insert(event)

        request = server.requests[0]
        assert request.method == "POST"
        assert request.url.params["query"] == "INSERT INTO events FORMAT JSONEachRow"
        assert request.headers["X-ClickHouse-User"] == "writer"
        assert request.headers["X-ClickHouse-Database"] == "analytics"
        row = json.loads(request.content)
        assert row["_id"] == "e1"
        assert row["_project_id"] == "proj_1"
        assert row["_status_code"] == 201
        assert row["event"] == {"status_code": 201, "trace_id": "e1"}

    @pytest.mark.tra("Storage.ClickHouse.Schema")
    async def test_ensure_schema_runs_every_statement(self) -> None:
        server = FakeClickHouse()

        await server.storage().ensure_schema()

        assert [r.content.decode() for r in server.requests] == list(SCHEMA_STATEMENTS)
        assert server.requests[0].url.params["allow_experimental_json_type"] == "1"

    @pytest.mark.tra("Storage.ClickHouse.Error")
    async def test_error_status_raises_store_error(self) -> None:
        server = FakeClickHouse(body="Code: 60. Table missing", status=404)

        with pytest.raises(StoreError, match="Table missing"):
            await server.storage().insert(build_event("proj_1", "x", {}, now=NOW))

    @pytest.mark.tra("Storage.ClickHouse.Unreachable")
    async def test_transport_error_raises_store_error(self) -> None:
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        client = httpx.AsyncClient(
            transport=httpx.MockTransport(refuse), base_url="http://clickhouse"
        )
        storage = ClickHouseEventStorage("http://clickhouse", client=client)

        with pytest.raises(StoreError, match="request failed"):
            await storage.query("SELECT 1")


class TestClickHouseReads:
    """Tests for query, duplicate check and usage counting."""

    @pytest.mark.tra("Storage.ClickHouse.Query")
    async def test_query_decodes_json_each_row(self) -> None:
        server = FakeClickHouse('{"total":3}\n{"total":4}\n')

        rows = await server.storage().query("SELECT count() AS total FROM events")

        assert rows == [{"total": 3}, {"total": 4}]
        request = server.requests[0]
        assert request.content.decode() == "SELECT count() AS total FROM events"
        assert request.url.params["default_format"] == "JSONEachRow"

    @pytest.mark.tra("Storage.ClickHouse.MalformedResponse")
    async def test_malformed_response_raises_store_error(self) -> None:
        server = FakeClickHouse("<html>proxy error</html>")

        with pytest.raises(StoreError, match="Malformed"):
            await server.storage().query("SELECT 1")

    @pytest.mark.tra("Storage.ClickHouse.HasEventType")
    async def test_has_event_type(self) -> None:
        found = FakeClickHouse('{"found":1}\n')
        missing = FakeClickHouse("")

        assert await found.storage().has_event_type("proj_1", "wideevent.ping")
        assert not await missing.storage().has_event_type("proj_1", "wideevent.ping")
        sql = found.requests[0].content.decode()
        assert "_project_id = 'proj_1'" in sql
        assert "_event_type = 'wideevent.ping'" in sql

    @pytest.mark.tra("Storage.ClickHouse.Usage")
    async def test_count_since_sums_daily_usage(self) -> None:
        server = FakeClickHouse('{"total":42}\n')

        count = await server.storage().count_since(
            ["proj_1", "proj_2"], datetime(2024, 5, 1, tzinfo=UTC)
        )

        assert count == 42
        sql = server.requests[0].content.decode()
        assert "FROM daily_usage" in sql
        assert "project_id IN ('proj_1', 'proj_2')" in sql
        assert "day >= toDate('2024-05-01')" in sql

    @pytest.mark.tra("Storage.ClickHouse.UsageEmpty")
    async def test_count_since_without_projects_skips_query(self) -> None:
        server = FakeClickHouse()

        assert await server.storage().count_since([], NOW) == 0
        assert server.requests == []
