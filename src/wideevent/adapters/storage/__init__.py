"""Storage adapters implementing core ports."""

from wideevent.adapters.storage.clickhouse import ClickHouseEventStorage
from wideevent.adapters.storage.in_memory import InMemoryEventStorage
from wideevent.adapters.storage.sqlite_credentials import SQLiteCredentialStore

__all__ = [
    "ClickHouseEventStorage",
    "InMemoryEventStorage",
    "SQLiteCredentialStore",
]
