"""Ingestion gate: the write path from an authenticated request to a stored row.

Each request walks ``AUTHENTICATING -> QUOTA_CHECK -> DUP_CHECK -> BUILD ->
PERSIST -> ACK``. Any gate can end the request early in ``REJECTED``, and the
result records which stage rejected it.

The gate fails closed on credentials and on a known exceeded quota, and fails
open on collaborator outages (limits service, usage counter, duplicate check,
credential usage bookkeeping), which are logged and skipped.
"""

import json
import logging
import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from wideevent.core.auth import display_prefix, hash_api_key, parse_bearer
from wideevent.core.builder import build_event
from wideevent.core.errors import (
    AuthError,
    DependencyError,
    InvalidRequestError,
    PersistenceError,
    ProjectBindingError,
    QuotaExceeded,
    WideEventError,
)
from wideevent.core.logs import log_exception
from wideevent.core.models import AccountLimits, ApiKeyRecord
from wideevent.core.ports import CredentialStorePort, EventSinkPort, UsageCounterPort
from wideevent.core.quota import QuotaCache

logger = logging.getLogger(__name__)

PING_EVENT_TYPE = "wideevent.ping"
DEFAULT_EVENTS_PER_MONTH = 10_000

SUCCESS_BODY: dict[str, Any] = {"success": True}

# Stand-in body for a request whose JSON could not be decoded.
MALFORMED_BODY = object()


class Stage(StrEnum):
    AUTHENTICATING = "authenticating"
    QUOTA_CHECK = "quota_check"
    DUP_CHECK = "dup_check"
    BUILD = "build"
    PERSIST = "persist"
    ACK = "ack"
    REJECTED = "rejected"


@dataclass(frozen=True)
class IngestResult:
    """Outcome of one ingest request.

    Attributes:
        status: HTTP status to answer with.
        body: JSON response body.
        stage: ``ACK`` on success, ``REJECTED`` otherwise.
        failed_stage: The stage that rejected the request, if any.
        event_id: Id of the stored event, when a row was written.
    """

    status: int
    body: dict[str, Any]
    stage: Stage
    failed_stage: Stage | None = None
    event_id: str | None = None

    @property
    def accepted(self) -> bool:
        return self.stage is Stage.ACK


def month_start(now: datetime) -> datetime:
    """Return midnight UTC on the first day of ``now``'s month."""
    now = now.astimezone(UTC)
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _new_id() -> str:
    return str(uuid.uuid4())


class IngestionGate:
    """Authenticates, meters and persists incoming events.

    Args:
        credentials: Relational store of API keys and projects.
        sink: Analytical store the events are written to.
        usage: Per-project ingestion counters.
        quota: Cache in front of the account-limits service. Without one,
            every account gets the default cap.
        default_events_per_month: Cap applied when an account has no limit set.
        clock: Current time source.
        id_factory: Generator for event and trace ids.
    """

    def __init__(
        self,
        credentials: CredentialStorePort,
        sink: EventSinkPort,
        usage: UsageCounterPort,
        quota: QuotaCache[AccountLimits] | None = None,
        default_events_per_month: int = DEFAULT_EVENTS_PER_MONTH,
        clock: Callable[[], datetime] = _utcnow,
        id_factory: Callable[[], str] = _new_id,
    ) -> None:
        self._credentials = credentials
        self._sink = sink
        self._usage = usage
        self._quota = quota
        self._default_events_per_month = default_events_per_month
        self._clock = clock
        self._id_factory = id_factory

    async def authenticate(self, authorization: str | None) -> ApiKeyRecord:
        """Resolve an ``Authorization`` header to a usable, project-bound key.

        Raises:
            AuthError: Missing, unknown, disabled or expired credential.
            ProjectBindingError: The key is not bound to a project.
            DependencyError: The credential store could not be queried.
        """
        token = parse_bearer(authorization)
        if token is None:
            raise AuthError("Missing or invalid Authorization header")
        try:
            record = await self._credentials.find_by_hash(hash_api_key(token))
        except Exception as exc:
            log_exception("Credential lookup failed", key=display_prefix(token))
            raise DependencyError("Credential lookup failed") from exc
        if record is None:
            raise AuthError("Invalid API key")
        now = self._clock()
        if not record.is_usable(now):
            logger.info("Rejected unusable key %s", record.start)
            raise AuthError("API key is disabled or expired")
        if not record.project_id:
            raise ProjectBindingError("API key is not associated with a project")
        await self._record_usage(record, now)
        return record

    async def _record_usage(self, record: ApiKeyRecord, now: datetime) -> None:
        try:
            await self._credentials.record_usage(record.id, now)
        except Exception:
            log_exception("Failed to record key usage", key=record.start)

    async def check_quota(self, record: ApiKeyRecord) -> None:
        """Reject when the owning account has used its monthly allowance.

        Raises:
            QuotaExceeded: Current-period usage is at or above the cap.
        """
        limits = AccountLimits()
        if self._quota is not None:
            limits = await self._quota.get(record.account_id)
        cap = limits.events_per_month
        if cap is None:
            cap = self._default_events_per_month
        try:
            project_ids = await self._credentials.project_ids_for_account(
                record.account_id
            )
            if record.project_id and record.project_id not in project_ids:
                project_ids.append(record.project_id)
            current = await self._usage.count_since(
                project_ids, month_start(self._clock())
            )
        except Exception:
            log_exception(
                "Usage count failed, skipping quota", account=record.account_id
            )
            return
        if current >= cap:
            raise QuotaExceeded(current_count=current, limit=cap)

    async def _is_duplicate_ping(self, project_id: str) -> bool:
        try:
            return await self._sink.has_event_type(project_id, PING_EVENT_TYPE)
        except Exception:
            log_exception("Duplicate check failed", project=project_id)
            return False

    async def ingest(self, authorization: str | None, body: Any) -> IngestResult:
        """Run one decoded ingest request through every stage.

        Args:
            authorization: Raw ``Authorization`` header value.
            body: Decoded JSON body ``{event, properties, timestamp?}``.
        """
        stage = Stage.AUTHENTICATING
        try:
            record = await self.authenticate(authorization)
            project_id = str(record.project_id)

            stage = Stage.QUOTA_CHECK
            await self.check_quota(record)

            stage = Stage.DUP_CHECK
            if body is MALFORMED_BODY:
                raise InvalidRequestError("Invalid JSON body")
            if not isinstance(body, Mapping):
                raise InvalidRequestError("Request body must be a JSON object")
            event_type = body.get("event")
            if event_type == PING_EVENT_TYPE and await self._is_duplicate_ping(
                project_id
            ):
                logger.debug("Suppressed duplicate ping for project %s", project_id)
                return IngestResult(200, dict(SUCCESS_BODY), Stage.ACK)

            stage = Stage.BUILD
            event = build_event(
                project_id,
                event_type,
                body.get("properties"),
                body.get("timestamp"),
                now=self._clock(),
                id_factory=self._id_factory,
            )

            stage = Stage.PERSIST
            try:
                await self._sink.insert(event)
            except Exception as exc:
                log_exception(
                    "Failed to store event",
                    project=project_id,
                    event_type=event.event_type,
                )
                raise PersistenceError("Failed to store event") from exc
        except WideEventError as exc:
            return IngestResult(
                exc.status_code, exc.to_body(), Stage.REJECTED, failed_stage=stage
            )
        return IngestResult(200, dict(SUCCESS_BODY), Stage.ACK, event_id=event.event_id)

    async def ingest_bytes(
        self, authorization: str | None, raw: bytes
    ) -> IngestResult:
        """Decode a raw JSON body and ingest it.

        Malformed JSON is rejected with 400 once the caller is authenticated,
        so callers with bad credentials always see 401 first.
        """
        try:
            body = json.loads(raw) if raw else None
        except (UnicodeDecodeError, json.JSONDecodeError):
            body = MALFORMED_BODY
        return await self.ingest(authorization, body)
