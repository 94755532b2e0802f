"""Assembly of wide-event records from raw input.

``build_event`` is the ingestion-side transform: it never fails on malformed
business payloads, it degrades to absent optional fields instead.

``WideEventBuilder`` is the capture-side helper handlers use to enrich the
in-progress event for the current request.
"""

import math
import time
import traceback
import uuid
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from typing import Any, Self

from wideevent.core.models import Payload, WideEvent

STATUS_ALIASES = (
    "status_code",
    "statusCode",
    "http_status",
    "httpStatus",
    "response_code",
)

DEFAULT_EVENT_TYPE = "unknown"


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO 8601 timestamp. Naive values are taken as UTC.

    Returns:
        The parsed datetime, or None when the value is missing or unparseable.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value)
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def extract_status_code(properties: Mapping[str, Any]) -> int | None:
    """Return the status code from the first alias that is present.

    Only a finite number is accepted. A present but non-numeric alias yields
    None rather than falling through to later aliases.
    """
    for alias in STATUS_ALIASES:
        value = properties.get(alias)
        if value is None:
            continue
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return None
        if isinstance(value, float) and not math.isfinite(value):
            return None
        return int(value)
    return None


def extract_outcome(properties: Mapping[str, Any]) -> str | None:
    """Return ``outcome`` if it is a string."""
    outcome = properties.get("outcome")
    return outcome if isinstance(outcome, str) else None


def resolve_trace_id(
    properties: Mapping[str, Any], id_factory: Callable[[], str]
) -> str:
    """Return the caller's ``trace_id`` (or ``request_id``), else a new id."""
    for key in ("trace_id", "request_id"):
        value = properties.get(key)
        if value not in (None, "") and not isinstance(value, (dict, list)):
            return str(value)
    return id_factory()


def _new_id() -> str:
    return str(uuid.uuid4())


def build_event(
    project_id: str,
    event_type: Any,
    properties: Any,
    timestamp: Any = None,
    *,
    now: datetime | None = None,
    id_factory: Callable[[], str] = _new_id,
) -> WideEvent:
    """Produce a WideEvent from raw ingest input.

    Args:
        project_id: Owning project.
        event_type: Caller event name; empty or non-string becomes ``"unknown"``.
        properties: Caller property map; anything but a mapping becomes ``{}``.
        timestamp: Optional caller timestamp (ISO 8601 string or datetime).
        now: Arrival time, defaults to the current UTC time.
        id_factory: Generator for event and trace ids.

    Returns:
        The canonical record.
    """
    ingested_at = now or datetime.now(UTC)
    payload: Payload = dict(properties) if isinstance(properties, Mapping) else {}
    if not isinstance(event_type, str) or not event_type:
        event_type = DEFAULT_EVENT_TYPE
    return WideEvent(
        event_id=id_factory(),
        project_id=project_id,
        event_type=event_type,
        timestamp=parse_timestamp(timestamp) or ingested_at,
        ingested_at=ingested_at,
        trace_id=resolve_trace_id(payload, id_factory),
        payload=payload,
        status_code=extract_status_code(payload),
        outcome=extract_outcome(payload),
    )


class WideEventBuilder:
    """Fluent helper for enriching an in-progress event.

    Every method mutates the wrapped mapping and returns the builder, so calls
    can be chained::

        WideEventBuilder(event).set_user("usr_1").set_context("cart", {"items": 3})
    """

    def __init__(self, event: dict[str, Any]) -> None:
        self._event = event

    @property
    def event(self) -> dict[str, Any]:
        return self._event

    def set(self, key: str, value: Any) -> Self:
        self._event[key] = value
        return self

    def set_context(self, name: str, data: Mapping[str, Any]) -> Self:
        """Replace the named context object."""
        self._event[name] = dict(data)
        return self

    def merge_context(self, name: str, data: Mapping[str, Any]) -> Self:
        """Merge into the named context object, creating it if needed."""
        existing = self._event.get(name)
        if isinstance(existing, dict):
            self._event[name] = {**existing, **data}
        else:
            self._event[name] = dict(data)
        return self

    def set_user(self, user_id: str) -> Self:
        self._event["user_id"] = user_id
        return self

    def set_error(self, error: BaseException | Mapping[str, Any]) -> Self:
        """Mark the event as failed and attach a structured ``error`` object.

        Exceptions contribute their type name, message and formatted traceback.
        Mappings are copied, with ``type`` defaulting to ``"Error"``.
        """
        self._event["outcome"] = "error"
        if isinstance(error, BaseException):
            self._event["error"] = {
                "type": type(error).__name__,
                "message": str(error),
                "stack": "".join(traceback.format_exception(error)),
            }
        else:
            details = dict(error)
            details["type"] = details.get("type") or "Error"
            self._event["error"] = details
        return self

    def set_status(self, code: int) -> Self:
        self._event["status_code"] = code
        self._event["outcome"] = "error" if code >= 400 else "success"
        return self

    def set_timing(self, key: str, start: float) -> Self:
        """Record milliseconds elapsed since ``start`` (a perf_counter reading)."""
        self._event[key] = round((time.perf_counter() - start) * 1000, 3)
        return self
