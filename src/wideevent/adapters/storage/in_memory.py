"""In-memory event storage adapter."""

from collections.abc import Sequence
from datetime import datetime

from wideevent.core.models import WideEvent


class InMemoryEventStorage:
    """In-memory implementation of EventSinkPort and UsageCounterPort.

    Stores events in a list. Suitable for testing and for running the
    ingestion gate without an analytical store.
    """

    def __init__(self) -> None:
        self._events: list[WideEvent] = []

    @property
    def events(self) -> list[WideEvent]:
        """Stored events in insertion order."""
        return list(self._events)

    async def insert(self, event: WideEvent) -> None:
        """Write an event to storage."""
        self._events.append(event)

    async def has_event_type(self, project_id: str, event_type: str) -> bool:
        return any(
            e.project_id == project_id and e.event_type == event_type
            for e in self._events
        )

    async def count_since(self, project_ids: Sequence[str], since: datetime) -> int:
        """Count events ingested for the projects at or after ``since``."""
        wanted = set(project_ids)
        return sum(
            1
            for e in self._events
            if e.project_id in wanted and e.ingested_at >= since
        )

    async def count(self) -> int:
        """Return total number of stored events."""
        return len(self._events)

    async def clear(self) -> None:
        """Remove all stored events."""
        self._events.clear()
