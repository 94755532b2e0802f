"""SQLite storage adapter for projects and API keys."""

import uuid
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from wideevent.adapters.storage.sqlite_base import (
    AsyncConnectionManager,
    from_epoch,
    to_epoch,
)
from wideevent.core.auth import display_prefix, generate_api_key, hash_api_key
from wideevent.core.models import ApiKeyRecord, IssuedKey, Project

_CREDENTIALS_SCHEMA = """
CREATE TABLE IF NOT EXISTS projects (
    id TEXT PRIMARY KEY,
    account_id TEXT NOT NULL,
    name TEXT NOT NULL,
    created_at REAL NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_projects_account ON projects(account_id);
CREATE TABLE IF NOT EXISTS api_keys (
    id TEXT PRIMARY KEY,
    key_hash TEXT NOT NULL UNIQUE,
    start TEXT NOT NULL,
    account_id TEXT NOT NULL,
    project_id TEXT REFERENCES projects(id) ON DELETE CASCADE,
    name TEXT,
    enabled INTEGER NOT NULL DEFAULT 1,
    expires_at REAL,
    request_count INTEGER NOT NULL DEFAULT 0,
    last_request REAL,
    created_at REAL NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_api_keys_project ON api_keys(project_id);
"""

_INSERT_PROJECT = """
INSERT INTO projects (id, account_id, name, created_at) VALUES (?, ?, ?, ?)
"""

_SELECT_PROJECTS = """
SELECT id, account_id, name, created_at
FROM projects
WHERE account_id = ?
ORDER BY created_at ASC, rowid ASC
"""

_INSERT_KEY = """
INSERT INTO api_keys (
    id, key_hash, start, account_id, project_id, name, enabled, expires_at,
    request_count, last_request, created_at
) VALUES (?, ?, ?, ?, ?, ?, 1, ?, 0, NULL, ?)
"""

_KEY_COLUMNS = """
id, key_hash, start, account_id, project_id, name, enabled, expires_at,
request_count, last_request
"""

_SELECT_KEY_BY_HASH = f"SELECT {_KEY_COLUMNS} FROM api_keys WHERE key_hash = ?"

_SELECT_KEYS_BY_PROJECT = f"""
SELECT {_KEY_COLUMNS} FROM api_keys
WHERE project_id = ?
ORDER BY created_at ASC, rowid ASC
"""

_RECORD_USAGE = """
UPDATE api_keys
SET request_count = request_count + 1, last_request = ?
WHERE id = ?
"""

_DISABLE_KEY = "UPDATE api_keys SET enabled = 0 WHERE id = ? AND enabled = 1"


def _key_from_row(row: Mapping[str, Any]) -> ApiKeyRecord:
    return ApiKeyRecord(
        id=row["id"],
        key_hash=row["key_hash"],
        start=row["start"],
        account_id=row["account_id"],
        project_id=row["project_id"],
        enabled=bool(row["enabled"]),
        expires_at=from_epoch(row["expires_at"]),
        request_count=row["request_count"],
        last_request=from_epoch(row["last_request"]),
        name=row["name"],
    )


class SQLiteCredentialStore:
    """SQLite implementation of CredentialStorePort.

    Holds projects and their API keys using aiosqlite. Only the SHA-256 hash
    and a display prefix of each key are stored; the plaintext token is
    returned once, from ``create_key``.

    For :memory: databases, a persistent connection is maintained since
    in-memory databases are connection-scoped in SQLite.
    """

    def __init__(self, db_path: str) -> None:
        self._manager = AsyncConnectionManager(db_path, _CREDENTIALS_SCHEMA)

    async def close(self) -> None:
        await self._manager.close()

    async def create_project(self, account_id: str, name: str) -> Project:
        """Create a project owned by ``account_id``."""
        project = Project(
            id=str(uuid.uuid4()),
            account_id=account_id,
            name=name,
            created_at=datetime.now(UTC),
        )
        async with self._manager.connection() as db:
            await db.execute(
                _INSERT_PROJECT,
                (project.id, account_id, name, to_epoch(project.created_at)),
            )
            await db.commit()
        return project

    async def list_projects(self, account_id: str) -> list[Project]:
        """Return the account's projects, oldest first."""
        async with self._manager.connection() as db:
            async with db.execute(_SELECT_PROJECTS, (account_id,)) as cursor:
                rows = await cursor.fetchall()
        return [
            Project(
                id=row["id"],
                account_id=row["account_id"],
                name=row["name"],
                created_at=from_epoch(row["created_at"]) or datetime.now(UTC),
            )
            for row in rows
        ]

    async def project_ids_for_account(self, account_id: str) -> list[str]:
        return [project.id for project in await self.list_projects(account_id)]

    async def create_key(
        self,
        account_id: str,
        project_id: str | None = None,
        name: str | None = None,
        expires_at: datetime | None = None,
    ) -> IssuedKey:
        """Issue a new API key.

        Args:
            account_id: Owning account.
            project_id: Project the key writes to. Unbound keys are rejected
                at ingestion.
            name: Display name.
            expires_at: Optional expiry.

        Returns:
            The plaintext token together with its stored record.
        """
        token = generate_api_key()
        record = ApiKeyRecord(
            id=str(uuid.uuid4()),
            key_hash=hash_api_key(token),
            start=display_prefix(token),
            account_id=account_id,
            project_id=project_id,
            expires_at=expires_at,
            name=name,
        )
        async with self._manager.connection() as db:
            await db.execute(
                _INSERT_KEY,
                (
                    record.id,
                    record.key_hash,
                    record.start,
                    account_id,
                    project_id,
                    name,
                    to_epoch(expires_at),
                    to_epoch(datetime.now(UTC)),
                ),
            )
            await db.commit()
        return IssuedKey(token=token, record=record)

    async def find_by_hash(self, key_hash: str) -> ApiKeyRecord | None:
        async with self._manager.connection() as db:
            async with db.execute(_SELECT_KEY_BY_HASH, (key_hash,)) as cursor:
                row = await cursor.fetchone()
        return _key_from_row(row) if row is not None else None

    async def list_keys(self, project_id: str) -> list[ApiKeyRecord]:
        """Return the project's keys, oldest first."""
        async with self._manager.connection() as db:
            async with db.execute(_SELECT_KEYS_BY_PROJECT, (project_id,)) as cursor:
                rows = await cursor.fetchall()
        return [_key_from_row(row) for row in rows]

    async def record_usage(self, key_id: str, when: datetime) -> None:
        async with self._manager.connection() as db:
            await db.execute(_RECORD_USAGE, (to_epoch(when), key_id))
            await db.commit()

    async def revoke_key(self, key_id: str) -> bool:
        """Disable a key.

        Returns:
            True if an enabled key was disabled.
        """
        async with self._manager.connection() as db:
            cursor = await db.execute(_DISABLE_KEY, (key_id,))
            revoked = cursor.rowcount > 0
            await db.commit()
        return revoked
