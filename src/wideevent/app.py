"""Service app factory wiring storage, credentials, limits and the HTTP router."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from wideevent.adapters.frameworks.fastapi import create_wideevent_router
from wideevent.adapters.limits import HttpAccountLimits
from wideevent.adapters.storage.clickhouse import ClickHouseEventStorage
from wideevent.adapters.storage.sqlite_credentials import SQLiteCredentialStore
from wideevent.config import Settings, get_settings
from wideevent.core.discovery import FieldDiscovery
from wideevent.core.errors import StoreError
from wideevent.core.gate import IngestionGate
from wideevent.core.models import AccountLimits
from wideevent.core.query import QueryEngine
from wideevent.core.quota import QuotaCache

logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the FastAPI service.

    Storage clients are created here and connect lazily. The lifespan applies
    the ClickHouse schema, starts the quota cache sweep, and closes every
    client on shutdown.
    """
    settings = settings or get_settings()

    events = ClickHouseEventStorage(
        url=settings.clickhouse_url,
        database=settings.clickhouse_database,
        username=settings.clickhouse_user,
        password=settings.clickhouse_password,
        timeout=settings.clickhouse_timeout_seconds,
    )
    credentials = SQLiteCredentialStore(settings.credentials_db_path)

    limits: HttpAccountLimits | None = None
    quota: QuotaCache[AccountLimits] | None = None
    if settings.limits_url:
        limits = HttpAccountLimits(
            settings.limits_url,
            secret=settings.limits_secret,
            timeout=settings.limits_timeout_seconds,
        )
        quota = QuotaCache(
            limits.fetch_limits,
            default=AccountLimits(),
            ttl=settings.quota_ttl_seconds,
            sweep_interval=settings.quota_sweep_interval_seconds,
            timeout=settings.limits_timeout_seconds,
        )
    else:
        logger.warning("No limits service configured, applying the default cap")

    gate = IngestionGate(
        credentials=credentials,
        sink=events,
        usage=events,
        quota=quota,
        default_events_per_month=settings.default_events_per_month,
    )
    engine = QueryEngine(events)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        try:
            await events.ensure_schema()
        except StoreError:
            logger.exception("Could not apply ClickHouse schema")
        if quota is not None:
            await quota.start()
        yield
        if quota is not None:
            await quota.close()
        if limits is not None:
            await limits.close()
        await events.close()
        await credentials.close()

    app = FastAPI(title="wideevent", version="0.1.0", lifespan=lifespan)
    app.include_router(create_wideevent_router(gate, engine, FieldDiscovery(engine)))

    @app.get("/")
    async def root() -> dict[str, str]:
        return {"status": "ok", "service": "wideevent"}

    app.state.gate = gate
    app.state.credentials = credentials
    return app
