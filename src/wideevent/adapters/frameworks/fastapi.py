"""FastAPI adapter: ingest endpoint plus read endpoints for the dashboard."""

import dataclasses
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from wideevent.adapters.frameworks.query_params import (
    parse_filters,
    parse_query_options,
    parse_search_fields,
)
from wideevent.core.discovery import FieldDiscovery
from wideevent.core.errors import InvalidRequestError, WideEventError
from wideevent.core.gate import IngestionGate
from wideevent.core.logs import log_exception
from wideevent.core.query import QueryEngine


def _jsonable(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {
            f.name: _jsonable(getattr(value, f.name)) for f in dataclasses.fields(value)
        }
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, list):
        return [_jsonable(item) for item in value]
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    return value


def _query_params(request: Request) -> dict[str, list[str]]:
    params = request.query_params
    return {key: params.getlist(key) for key in params.keys()}


def _group_by(params: dict[str, list[str]]) -> str:
    values = params.get("group_by")
    if not values or not values[0]:
        raise InvalidRequestError("group_by is required")
    return values[0]


async def _handle_endpoint(
    endpoint_func: Callable[[], Awaitable[Any]], log_message: str
) -> JSONResponse:
    """Run an endpoint body, mapping domain errors to JSON error responses."""
    try:
        result = await endpoint_func()
    except WideEventError as exc:
        return JSONResponse(status_code=exc.status_code, content=exc.to_body())
    except Exception:
        log_exception(log_message)
        return JSONResponse(status_code=500, content={"error": "Internal Server Error"})
    return JSONResponse(content=_jsonable(result))


def create_wideevent_router(
    gate: IngestionGate,
    engine: QueryEngine,
    discovery: FieldDiscovery | None = None,
) -> APIRouter:
    """Create a FastAPI router with ingest and query endpoints.

    Read endpoints authenticate with the same project API key used for
    ingestion and are always scoped to that key's project.

    Args:
        gate: Ingestion gate for writes and credential checks.
        engine: Query engine for reads.
        discovery: Field discovery engine (defaults to one over ``engine``).

    Returns:
        APIRouter with /ingest, /events*, /traces/{trace_id} and /fields.
    """
    router = APIRouter()
    discovery = discovery or FieldDiscovery(engine)

    async def _project_id(request: Request) -> str:
        record = await gate.authenticate(request.headers.get("authorization"))
        return str(record.project_id)

    @router.post("/ingest")
    async def ingest(request: Request) -> JSONResponse:
        """Accept one event: ``{event, properties, timestamp?}``."""
        raw = await request.body()
        result = await gate.ingest_bytes(request.headers.get("authorization"), raw)
        return JSONResponse(status_code=result.status, content=result.body)

    @router.get("/events")
    async def list_events(request: Request) -> JSONResponse:
        """List events, newest first. ``search`` switches to substring search."""

        async def run() -> Any:
            params = _query_params(request)
            options = parse_query_options(await _project_id(request), params)
            filters = parse_filters(params)
            term = (params.get("search") or [""])[0]
            if term:
                events = await engine.search(
                    term, options, parse_search_fields(params), filters
                )
            else:
                events = await engine.list_events(options, filters)
            return {"events": events}

        return await _handle_endpoint(run, "Error listing events")

    @router.get("/events/aggregate")
    async def aggregate(request: Request) -> JSONResponse:
        async def run() -> Any:
            params = _query_params(request)
            options = parse_query_options(await _project_id(request), params)
            rows = await engine.aggregate(
                _group_by(params), options, parse_filters(params)
            )
            return {"groups": rows}

        return await _handle_endpoint(run, "Error aggregating events")

    @router.get("/events/latency")
    async def latency(request: Request) -> JSONResponse:
        async def run() -> Any:
            params = _query_params(request)
            options = parse_query_options(await _project_id(request), params)
            duration_field = (params.get("duration_field") or ["duration_ms"])[0]
            rows = await engine.latency(
                _group_by(params), options, parse_filters(params), duration_field
            )
            return {"groups": rows}

        return await _handle_endpoint(run, "Error computing latency percentiles")

    @router.get("/events/errors")
    async def errors(request: Request) -> JSONResponse:
        async def run() -> Any:
            params = _query_params(request)
            options = parse_query_options(await _project_id(request), params)
            rows = await engine.errors(
                _group_by(params), options, parse_filters(params)
            )
            return {"groups": rows}

        return await _handle_endpoint(run, "Error analyzing errors")

    @router.get("/events/stats")
    async def stats(request: Request) -> JSONResponse:
        async def run() -> Any:
            params = _query_params(request)
            options = parse_query_options(await _project_id(request), params)
            return await engine.stats(options, parse_filters(params))

        return await _handle_endpoint(run, "Error computing stats")

    @router.get("/traces/{trace_id}")
    async def trace(trace_id: str, request: Request) -> JSONResponse:
        """Events sharing a trace id, oldest first. ``exclude`` drops one event id."""

        async def run() -> Any:
            exclude = request.query_params.get("exclude") or None
            events = await engine.trace(
                trace_id, await _project_id(request), exclude_event_id=exclude
            )
            return {"events": events}

        return await _handle_endpoint(run, "Error fetching trace")

    @router.get("/fields")
    async def fields(request: Request) -> JSONResponse:
        """Observed event types and per-field value suggestions."""

        async def run() -> Any:
            suggestions = await discovery.discover(await _project_id(request))
            return {
                "eventTypes": suggestions.event_types,
                "fields": suggestions.fields,
            }

        return await _handle_endpoint(run, "Error discovering fields")

    return router
