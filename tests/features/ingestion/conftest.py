"""BDD step definitions for ingestion and request capture features."""

import json
from datetime import UTC, datetime, timedelta

import pytest
from pytest_bdd import given, parsers, then, when
from tests.features.ingestion.steps_helpers import (
    HandlerFailure,
    IngestionScenarioContext,
    ingest,
    run_async,
    simulate_request,
)
from tests.fakes import API_KEY, make_key_record

from wideevent.core.builder import build_event
from wideevent.core.gate import PING_EVENT_TYPE
from wideevent.core.sampling import SamplingConfig


@pytest.fixture
def ctx() -> IngestionScenarioContext:
    """Fresh scenario context for each test."""
    return IngestionScenarioContext()


def _add_key(ctx: IngestionScenarioContext, **overrides) -> None:
    fields = {"account_id": ctx.account_id, "project_id": ctx.project_id}
    fields.update(overrides)
    ctx.credentials.add(API_KEY, make_key_record(**fields))


# === Background Steps ===
@given(parsers.parse('a project "{project_id}" owned by account "{account_id}"'))
def step_project(
    ctx: IngestionScenarioContext, project_id: str, account_id: str
) -> None:
    ctx.project_id = project_id
    ctx.account_id = account_id


@given(parsers.parse("the account may ingest {limit:d} events per month"))
def step_allowance(ctx: IngestionScenarioContext, limit: int) -> None:
    ctx.events_per_month = limit


# === Credential Steps ===
@given("an enabled API key for the project")
def step_enabled_key(ctx: IngestionScenarioContext) -> None:
    _add_key(ctx)


@given("a disabled API key for the project")
def step_disabled_key(ctx: IngestionScenarioContext) -> None:
    _add_key(ctx, enabled=False)


@given("an API key for the project that expired yesterday")
def step_expired_key(ctx: IngestionScenarioContext) -> None:
    _add_key(ctx, expires_at=datetime.now(UTC) - timedelta(days=1))


@given("an enabled API key without a project")
def step_unbound_key(ctx: IngestionScenarioContext) -> None:
    _add_key(ctx, project_id=None)


@given(parsers.parse("the project already ingested {count:d} events this month"))
def step_prior_usage(ctx: IngestionScenarioContext, count: int) -> None:
    for _ in range(count):
        run_async(ctx.storage.insert(build_event(ctx.project_id, "seed", {})))


# === Capture Steps ===
@given("a service wrapped in the capture middleware")
def step_service(ctx: IngestionScenarioContext) -> None:
    ctx.sampling = SamplingConfig()


@given("the middleware keeps none of the normal traffic")
def step_drop_normal_traffic(ctx: IngestionScenarioContext) -> None:
    ctx.sampling = SamplingConfig(default_rate=0.0)


# === Action Steps ===
@when(parsers.parse('the client ingests "{event_type}" with properties {properties}'))
def step_ingest(
    ctx: IngestionScenarioContext, event_type: str, properties: str
) -> None:
    ingest(ctx, {"event": event_type, "properties": json.loads(properties)})


@when("the client pings twice")
def step_ping_twice(ctx: IngestionScenarioContext) -> None:
    body = {"event": PING_EVENT_TYPE, "properties": {"status_code": 200}}
    ingest(ctx, body)
    ingest(ctx, body)


@when(parsers.parse('the service handles "{method} {path}" successfully'))
def step_handle(ctx: IngestionScenarioContext, method: str, path: str) -> None:
    run_async(simulate_request(ctx, method, path))


@when(parsers.parse('the service fails while handling "{method} {path}"'))
def step_handle_failure(ctx: IngestionScenarioContext, method: str, path: str) -> None:
    run_async(simulate_request(ctx, method, path, fail=True))


# === Assertion Steps ===
@then(parsers.parse("the response status is {status:d}"))
def step_status(ctx: IngestionScenarioContext, status: int) -> None:
    assert ctx.result.status == status


@then(parsers.parse("every response status is {status:d}"))
def step_every_status(ctx: IngestionScenarioContext, status: int) -> None:
    assert [r.status for r in ctx.results] == [status] * len(ctx.results)


@then(parsers.re(r"(?P<count>\d+) events? (?:is|are) stored"))
def step_stored_count(ctx: IngestionScenarioContext, count: str) -> None:
    assert len(ctx.storage.events) == int(count)


@then(parsers.parse("the stored event has status code {status:d}"))
def step_stored_status(ctx: IngestionScenarioContext, status: int) -> None:
    assert ctx.storage.events[-1].status_code == status


@then("the stored event has no status code")
def step_stored_no_status(ctx: IngestionScenarioContext) -> None:
    assert ctx.storage.events[-1].status_code is None


@then(parsers.parse('the stored event type is "{event_type}"'))
def step_stored_type(ctx: IngestionScenarioContext, event_type: str) -> None:
    assert ctx.storage.events[-1].event_type == event_type


@then(parsers.parse('the stored event outcome is "{outcome}"'))
def step_stored_outcome(ctx: IngestionScenarioContext, outcome: str) -> None:
    assert ctx.storage.events[-1].outcome == outcome


@then(parsers.parse("the response reports {current:d} of {limit:d} events used"))
def step_quota_body(ctx: IngestionScenarioContext, current: int, limit: int) -> None:
    body = ctx.result.body
    assert body["limitReached"] is True
    assert body["currentCount"] == current
    assert body["limit"] == limit


@then("the handler error reached the server")
def step_error_propagated(ctx: IngestionScenarioContext) -> None:
    assert isinstance(ctx.error, HandlerFailure)
