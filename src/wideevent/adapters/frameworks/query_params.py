"""Query-string parsing shared by the HTTP adapters.

Turns dashboard-style parameters into ``QueryOptions`` and ``FilterCondition``
lists. Parameters are the ``dict[str, list[str]]`` produced by
``urllib.parse.parse_qs``. Malformed values fall back to defaults instead of
failing the request.
"""

import math
from datetime import UTC, datetime

from wideevent.core.builder import parse_timestamp
from wideevent.core.models import DEFAULT_LIMIT, FilterCondition, QueryOptions

MAX_LIMIT = 1000

# Parameters with a fixed meaning. Every other key is a payload field filter.
RESERVED_PARAMS = frozenset(
    {
        "limit",
        "offset",
        "type",
        "status",
        "since",
        "until",
        "search",
        "fields",
        "group_by",
        "duration_field",
        "exclude",
    }
)


def _first(params: dict[str, list[str]], name: str) -> str | None:
    values = params.get(name)
    if not values:
        return None
    value = values[0].strip()
    return value or None


def _parse_int(raw: str | None, default: int, low: int, high: int) -> int:
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return min(max(value, low), high)


def _parse_time_param(raw: str | None) -> datetime | None:
    """Parse an ISO 8601 timestamp or a non-negative UNIX timestamp."""
    if raw is None:
        return None
    try:
        seconds = float(raw)
    except ValueError:
        return parse_timestamp(raw)
    if seconds < 0 or not math.isfinite(seconds):
        return None
    try:
        return datetime.fromtimestamp(seconds, tz=UTC)
    except (OverflowError, OSError, ValueError):
        return None


def _parse_status_param(raw: str | None) -> str | int | None:
    if raw is None:
        return None
    lowered = raw.lower()
    if lowered in ("error", "success"):
        return lowered
    try:
        return int(raw)
    except ValueError:
        return None


def parse_query_options(
    project_id: str, params: dict[str, list[str]]
) -> QueryOptions:
    """Build QueryOptions from query parameters.

    Args:
        project_id: Tenant resolved from the caller's credential.
        params: Parsed query string parameters.

    Returns:
        Options with ``limit`` clamped to [1, 1000] and ``offset`` >= 0.
    """
    return QueryOptions(
        project_id=project_id,
        start_time=_parse_time_param(_first(params, "since")),
        end_time=_parse_time_param(_first(params, "until")),
        event_type=_first(params, "type"),
        status=_parse_status_param(_first(params, "status")),
        limit=_parse_int(_first(params, "limit"), DEFAULT_LIMIT, 1, MAX_LIMIT),
        offset=_parse_int(_first(params, "offset"), 0, 0, 2**31 - 1),
    )


def parse_filters(params: dict[str, list[str]]) -> list[FilterCondition]:
    """Turn non-reserved parameters into substring ``LIKE`` filters.

    Field names are not validated here; the filter compiler drops invalid ones.
    """
    filters = []
    for key, values in params.items():
        if key in RESERVED_PARAMS:
            continue
        for value in values:
            if value:
                filters.append(
                    FilterCondition(field=key, op="LIKE", value=f"%{value}%")
                )
    return filters


def parse_search_fields(params: dict[str, list[str]]) -> list[str] | None:
    """Return the comma-separated ``fields`` list, or None to search everything."""
    raw = _first(params, "fields")
    if raw is None:
        return None
    return [name.strip() for name in raw.split(",") if name.strip()]
