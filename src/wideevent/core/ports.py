"""Port interfaces for storage and collaborator adapters.

These protocols define the contracts that adapters must implement.
The core domain depends only on these interfaces, not concrete implementations.
"""

from collections.abc import Sequence
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from wideevent.core.models import AccountLimits, ApiKeyRecord, ReadyEvent, WideEvent


@runtime_checkable
class EventSinkPort(Protocol):
    """Port for writing events to the analytical store.

    Examples: ClickHouseEventStorage, InMemoryEventStorage.
    """

    async def insert(self, event: WideEvent) -> None:
        """Persist a single event.

        Raises:
            StoreError: If the store rejects the write.
        """
        ...

    async def has_event_type(self, project_id: str, event_type: str) -> bool:
        """Return True if at least one event of this type exists for the project."""
        ...


@runtime_checkable
class EventQueryPort(Protocol):
    """Port for read-only queries against the analytical store."""

    async def query(self, sql: str) -> list[dict[str, Any]]:
        """Execute a read query and return rows as mappings.

        Raises:
            StoreError: If the query fails.
        """
        ...


@runtime_checkable
class UsageCounterPort(Protocol):
    """Port for per-project ingestion counters."""

    async def count_since(self, project_ids: Sequence[str], since: datetime) -> int:
        """Return the number of events ingested for the projects since a time."""
        ...


@runtime_checkable
class CredentialStorePort(Protocol):
    """Port for the relational store of projects and API keys.

    Examples: SQLiteCredentialStore.
    """

    async def find_by_hash(self, key_hash: str) -> ApiKeyRecord | None:
        """Look up a key by the SHA-256 hex digest of its token."""
        ...

    async def record_usage(self, key_id: str, when: datetime) -> None:
        """Increment the key's request counter and set its last-seen time."""
        ...

    async def project_ids_for_account(self, account_id: str) -> list[str]:
        """Return the ids of all projects owned by an account."""
        ...


@runtime_checkable
class AccountLimitsPort(Protocol):
    """Port for the external account-limits service."""

    async def fetch_limits(self, account_id: str) -> AccountLimits:
        """Fetch plan limits for an account.

        Raises:
            DependencyError: If the service cannot be reached or answers badly.
        """
        ...


@runtime_checkable
class EventTransportPort(Protocol):
    """Port for shipping finalized events to an ingestion gate.

    Examples: HttpIngestTransport, InProcessTransport.
    """

    async def send(self, event: ReadyEvent) -> bool:
        """Send one event. Returns True on acceptance and never raises."""
        ...
