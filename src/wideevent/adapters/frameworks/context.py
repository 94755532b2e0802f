"""Request-scoped access to the in-progress wide event.

The capture middleware binds the event for the current request in a
``ContextVar``, so handlers and the code they await can enrich it without
threading it through call signatures.
"""

from contextvars import ContextVar, Token
from typing import Any

from wideevent.core.builder import WideEventBuilder

_current_event: ContextVar[dict[str, Any] | None] = ContextVar(
    "wideevent_current_event", default=None
)


def bind_event(event: dict[str, Any]) -> Token[dict[str, Any] | None]:
    """Bind ``event`` as the current request's event."""
    return _current_event.set(event)


def unbind_event(token: Token[dict[str, Any] | None]) -> None:
    _current_event.reset(token)


def current_event() -> dict[str, Any] | None:
    """Return the event for the current request, or None outside a request."""
    return _current_event.get()


def current_builder() -> WideEventBuilder | None:
    """Return a builder over the current request's event, if any."""
    event = _current_event.get()
    return WideEventBuilder(event) if event is not None else None
