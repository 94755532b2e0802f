"""Transports that deliver finalized events to an ingestion gate.

Transports report failure through their return value and never raise, so
event emission can never fail the operation being observed.
"""

import logging
import platform
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import httpx

from wideevent.core.gate import PING_EVENT_TYPE, IngestionGate
from wideevent.core.logs import log_exception
from wideevent.core.models import Payload, ReadyEvent

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:3005"
SDK_NAME = "wideevent-python"


@dataclass(frozen=True)
class PingResult:
    """Outcome of a connectivity check."""

    success: bool
    latency_ms: float
    error: Any = None


def ping_properties() -> Payload:
    return {
        "status_code": 200,
        "outcome": "success",
        "duration_ms": 0,
        "sdk": SDK_NAME,
        "runtime": "python",
        "python_version": platform.python_version(),
        "platform": platform.system().lower(),
        "ping_type": "connection_test",
        "message": "Connected and ready.",
    }


class HttpIngestTransport:
    """EventTransportPort implementation posting to ``{base_url}/ingest``.

    Args:
        api_key: Bearer token for the project.
        base_url: Base URL of the ingest service.
        timeout: Request timeout in seconds.
        client: Optional preconfigured client (tests inject a mock transport).
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._headers = {"Authorization": f"Bearer {api_key}"}

    async def close(self) -> None:
        await self._client.aclose()

    async def send(self, event: ReadyEvent) -> bool:
        try:
            response = await self._client.post(
                "/ingest", json=event.to_body(), headers=self._headers
            )
        except Exception:
            log_exception("Event delivery failed", event_type=event.event_type)
            return False
        if not response.is_success:
            logger.warning(
                "Ingestion rejected %s with status %d: %s",
                event.event_type,
                response.status_code,
                response.text[:200],
            )
            return False
        return True

    async def ingest(
        self,
        event_type: str,
        properties: Payload | None = None,
        timestamp: datetime | None = None,
    ) -> bool:
        """Send an ad-hoc event."""
        ready = ReadyEvent(
            event_type=event_type,
            properties=dict(properties or {}),
            timestamp=timestamp or datetime.now(UTC),
        )
        return await self.send(ready)

    async def ping(self) -> PingResult:
        """Send the connectivity event and report round-trip latency.

        Only the first ping per project is stored; repeated pings still succeed.
        """
        start = time.perf_counter()
        success = await self.ingest(PING_EVENT_TYPE, ping_properties())
        latency_ms = (time.perf_counter() - start) * 1000
        error = None if success else "Ping was not accepted"
        return PingResult(success=success, latency_ms=latency_ms, error=error)


class InProcessTransport:
    """EventTransportPort that feeds an IngestionGate in the same process.

    Args:
        gate: Gate to ingest through.
        api_key: Bearer token presented to the gate.
    """

    def __init__(self, gate: IngestionGate, api_key: str) -> None:
        self._gate = gate
        self._authorization = f"Bearer {api_key}"

    async def send(self, event: ReadyEvent) -> bool:
        try:
            result = await self._gate.ingest(self._authorization, event.to_body())
        except Exception:
            log_exception("In-process ingestion failed", event_type=event.event_type)
            return False
        if not result.accepted:
            logger.warning(
                "Ingestion rejected %s with status %d", event.event_type, result.status
            )
        return result.accepted
