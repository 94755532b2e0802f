"""Field discovery: what fields and values exist in a project's recent events.

Discovery is a best-effort heuristic rebuilt on every call from a fresh sample
of recent events. It powers interactive filter suggestions, so long values and
structured leaves are left out.
"""

import math
from collections.abc import Iterable, Iterator
from typing import Any

from wideevent.core.models import EventRow, FieldSuggestions
from wideevent.core.query import DISCOVERY_SAMPLE_SIZE, QueryEngine

MAX_VALUE_LENGTH = 50
MAX_VALUES_PER_FIELD = 25
MAX_EVENT_TYPES = 30

STATUS_FIELD = "status_code"


def stringify(value: Any) -> str | None:
    """Render a scalar (or list of scalars) the way it appears in a filter box.

    Returns:
        The text form, or None for null, objects and nested lists.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        if value.is_integer():
            return str(int(value))
        return repr(value)
    if isinstance(value, (int, str)):
        return str(value)
    if isinstance(value, list):
        parts = []
        for item in value:
            if isinstance(item, (dict, list)):
                return None
            parts.append(stringify(item) or "")
        return ",".join(parts)
    return None


def as_number(text: str) -> float | None:
    """Return the numeric value of ``text``, or None if it is not a number."""
    stripped = text.strip()
    if not stripped:
        return 0.0
    if "_" in stripped:
        return None
    try:
        number = float(stripped)
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def flatten(payload: dict[str, Any], prefix: str = "") -> Iterator[tuple[str, Any]]:
    """Yield ``(dotted path, leaf value)`` pairs, recursing into nested objects."""
    for key, value in payload.items():
        path = f"{prefix}.{key}" if prefix else key
        if isinstance(value, dict):
            yield from flatten(value, path)
        else:
            yield path, value


def order_values(values: Iterable[str]) -> list[str]:
    """Numbers first in ascending numeric order, then other strings sorted."""
    numeric: list[tuple[float, str]] = []
    text: list[str] = []
    for value in values:
        number = as_number(value)
        if number is None:
            text.append(value)
        else:
            numeric.append((number, value))
    numeric.sort(key=lambda pair: pair[0])
    return [value for _, value in numeric] + sorted(text)


class _FieldIndex:
    def __init__(self) -> None:
        self.values: dict[str, set[str]] = {}

    def add(self, path: str, value: Any) -> None:
        text = stringify(value)
        if text is None or len(text) > MAX_VALUE_LENGTH:
            return
        self.values.setdefault(path, set()).add(text)

    def add_status_categories(self) -> None:
        codes = self.values.get(STATUS_FIELD)
        if not codes:
            return
        numbers = [n for n in (as_number(code) for code in codes) if n is not None]
        if any(n >= 400 for n in numbers):
            codes.add("error")
        if any(200 <= n < 400 for n in numbers):
            codes.add("success")


def collect_suggestions(events: Iterable[EventRow]) -> FieldSuggestions:
    """Reduce a sample of events to event types and per-field value suggestions."""
    index = _FieldIndex()
    event_types: list[str] = []
    seen_types: set[str] = set()

    for event in events:
        if event.event_type and event.event_type not in seen_types:
            seen_types.add(event.event_type)
            event_types.append(event.event_type)
        if event.status_code:
            index.add(STATUS_FIELD, event.status_code)
        if event.outcome:
            index.add("outcome", event.outcome)
        for path, value in flatten(event.payload):
            index.add(path, value)

    index.add_status_categories()
    fields = {
        path: order_values(values)[:MAX_VALUES_PER_FIELD]
        for path, values in index.values.items()
    }
    return FieldSuggestions(event_types=event_types[:MAX_EVENT_TYPES], fields=fields)


class FieldDiscovery:
    """Discovers fields from a project's most recent events.

    Args:
        engine: Query engine used to fetch the sample.
        sample_size: Number of recent events to inspect.
    """

    def __init__(
        self, engine: QueryEngine, sample_size: int = DISCOVERY_SAMPLE_SIZE
    ) -> None:
        self._engine = engine
        self._sample_size = sample_size

    async def discover(self, project_id: str) -> FieldSuggestions:
        sample = await self._engine.recent_sample(project_id, limit=self._sample_size)
        return collect_suggestions(sample)
