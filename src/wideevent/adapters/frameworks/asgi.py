"""ASGI adapters: the ingest endpoint and the request-capture middleware.

Both are plain ASGI callables, usable with any ASGI server (uvicorn,
hypercorn, daphne) or framework (Starlette, FastAPI) without extra
dependencies.
"""

import asyncio
import fnmatch
import json
import logging
import time
import uuid
from collections.abc import Callable, Coroutine
from datetime import UTC, datetime
from typing import Any

from wideevent.adapters.frameworks.context import bind_event, unbind_event
from wideevent.core.builder import WideEventBuilder, parse_timestamp
from wideevent.core.gate import IngestionGate
from wideevent.core.logs import log_exception
from wideevent.core.models import ReadyEvent
from wideevent.core.ports import EventTransportPort
from wideevent.core.sampling import SamplingConfig, should_keep

logger = logging.getLogger(__name__)

# ASGI type aliases
Scope = dict[str, Any]
Receive = Callable[[], Coroutine[Any, Any, dict[str, Any]]]
Send = Callable[[dict[str, Any]], Coroutine[Any, Any, None]]
ASGIApp = Callable[[Scope, Receive, Send], Coroutine[Any, Any, None]]

TRACE_HEADER = "x-wideevent-trace-id"
REQUEST_ID_HEADER = "x-request-id"


def _get_header(scope: Scope, name: str) -> str | None:
    """Return the first value of a header (case-insensitive), if present."""
    wanted = name.lower().encode()
    headers: list[tuple[bytes, bytes]] = scope.get("headers", [])
    for key, value in headers:
        if key.lower() == wanted:
            return value.decode("latin-1")
    return None


def _extract_trace_id(scope: Scope) -> str:
    """Take the trace id from the trace header, then X-Request-ID, else generate one."""
    for header in (TRACE_HEADER, REQUEST_ID_HEADER):
        value = _get_header(scope, header)
        if value:
            return value
    return str(uuid.uuid4())


async def _read_body(receive: Receive) -> bytes:
    """Read the full request body from ASGI receive events."""
    chunks: list[bytes] = []
    while True:
        message = await receive()
        if message["type"] == "http.disconnect":
            break
        chunks.append(message.get("body", b""))
        if not message.get("more_body", False):
            break
    return b"".join(chunks)


async def _send_response(send: Send, status: int, content_type: str, body: str) -> None:
    """Send an HTTP response with headers and body.

    Args:
        send: ASGI send callable for writing response.
        status: HTTP status code.
        content_type: Content-Type header value.
        body: Response body as string (will be encoded to bytes).
    """
    headers = [(b"content-type", content_type.encode())]
    await send({"type": "http.response.start", "status": status, "headers": headers})
    await send({"type": "http.response.body", "body": body.encode()})


async def _send_json(send: Send, status: int, payload: dict[str, Any]) -> None:
    await _send_response(send, status, "application/json", json.dumps(payload))


def create_asgi_app(gate: IngestionGate) -> ASGIApp:
    """Create an ASGI app exposing ``POST /ingest`` and a ``GET /`` health check.

    Args:
        gate: Ingestion gate that authenticates and stores events.

    Returns:
        ASGI application callable.
    """

    async def app(scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            return

        path = scope["path"]
        method = scope["method"]

        if path == "/":
            await _send_json(send, 200, {"status": "ok", "service": "wideevent"})
        elif path == "/ingest":
            if method != "POST":
                await _send_json(send, 405, {"error": "Method Not Allowed"})
                return
            raw = await _read_body(receive)
            authorization = _get_header(scope, "authorization")
            try:
                result = await gate.ingest_bytes(authorization, raw)
            except Exception:
                log_exception("Unhandled error in ingest endpoint")
                await _send_json(send, 500, {"error": "Internal Server Error"})
                return
            await _send_json(send, result.status, result.body)
        else:
            await _send_response(send, 404, "text/plain", "Not Found")

    return app


class WideEventMiddleware:
    """ASGI middleware that captures one wide event per request.

    The event is seeded with request context, exposed to the handler through
    ``scope["state"]["wide_event"]`` and ``current_event()``, finalized with
    status, outcome, duration and error details once the handler returns or
    raises, passed through the sampling decision, and sent in the background.
    The trace id is echoed in the response headers.

    A request cancelled mid-handler emits nothing.
    """

    def __init__(
        self,
        app: ASGIApp,
        transport: EventTransportPort,
        service: str,
        environment: str = "development",
        region: str | None = None,
        sampling: SamplingConfig | None = None,
        exclude_paths: list[str] | None = None,
    ) -> None:
        """Initialize the middleware.

        Args:
            app: The ASGI application to wrap.
            transport: Where finalized events are sent.
            service: Service name tagged on every event.
            environment: Environment tag.
            region: Optional region tag.
            sampling: Tail sampling policy (default keeps everything).
            exclude_paths: Paths to skip entirely. Supports exact matches and
                wildcard patterns (e.g., "/internal/*").
        """
        self.app = app
        self.transport = transport
        self.service = service
        self.environment = environment
        self.region = region
        self.sampling = sampling or SamplingConfig()
        self.exclude_paths = exclude_paths or []
        self._pending: set[asyncio.Task[bool]] = set()

    def _path_excluded(self, path: str) -> bool:
        """Check if path matches any pattern in exclude_paths."""
        return any(fnmatch.fnmatch(path, pattern) for pattern in self.exclude_paths)

    def _seed_event(self, scope: Scope, trace_id: str) -> dict[str, Any]:
        event: dict[str, Any] = {
            "request_id": trace_id,
            "trace_id": trace_id,
            "timestamp": datetime.now(UTC).isoformat(timespec="milliseconds"),
            "method": scope["method"],
            "path": scope["path"],
            "service": self.service,
            "environment": self.environment,
        }
        if self.region:
            event["region"] = self.region
        return event

    def finalize(self, event: dict[str, Any]) -> ReadyEvent | None:
        """Apply sampling to a completed event.

        Returns:
            The event ready to send, or None if sampling dropped it.
        """
        if not should_keep(event, self.sampling):
            return None
        timestamp = parse_timestamp(event.get("timestamp")) or datetime.now(UTC)
        return ReadyEvent(
            event_type=f"{event.get('method')} {event.get('path')}",
            properties=event,
            timestamp=timestamp,
        )

    async def send(self, ready: ReadyEvent) -> bool:
        """Deliver a finalized event; failures are logged and reported as False."""
        try:
            return await self.transport.send(ready)
        except Exception:
            log_exception("Failed to send wide event", event_type=ready.event_type)
            return False

    def _dispatch(self, ready: ReadyEvent) -> None:
        task = asyncio.create_task(self.send(ready))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def flush(self) -> None:
        """Wait for all in-flight emissions to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending))

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        """ASGI callable interface that processes requests through the wrapped app."""
        if scope["type"] != "http" or self._path_excluded(scope["path"]):
            await self.app(scope, receive, send)
            return

        start_time = time.perf_counter()
        trace_id = _extract_trace_id(scope)
        event = self._seed_event(scope, trace_id)
        scope.setdefault("state", {})["wide_event"] = event
        captured: dict[str, Any] = {"status": None}

        async def wrapped_send(message: dict[str, Any]) -> None:
            if message["type"] == "http.response.start":
                captured["status"] = message["status"]
                headers = list(message.get("headers", []))
                headers.append((TRACE_HEADER.encode(), trace_id.encode("latin-1")))
                message = {**message, "headers": headers}
            await send(message)

        error: Exception | None = None
        token = bind_event(event)
        try:
            await self.app(scope, receive, wrapped_send)
        except Exception as exc:
            error = exc
        finally:
            unbind_event(token)

        builder = WideEventBuilder(event)
        if error is not None:
            builder.set_status(500).set_error(error)
        elif captured["status"] is not None:
            builder.set_status(captured["status"])
        event["duration_ms"] = round((time.perf_counter() - start_time) * 1000, 3)

        ready = self.finalize(event)
        if ready is not None:
            self._dispatch(ready)
        if error is not None:
            raise error
