"""Tests for port interfaces."""

import pytest
from tests.fakes import FakeCredentialStore, RecordingQueryStore, RecordingTransport

from wideevent.adapters.limits import HttpAccountLimits
from wideevent.adapters.storage.clickhouse import ClickHouseEventStorage
from wideevent.adapters.storage.sqlite_credentials import SQLiteCredentialStore
from wideevent.adapters.transport import HttpIngestTransport
from wideevent.core.ports import (
    AccountLimitsPort,
    CredentialStorePort,
    EventQueryPort,
    EventSinkPort,
    EventTransportPort,
    UsageCounterPort,
)


class TestPortConformance:
    """Adapters and test doubles satisfy the runtime-checkable ports."""

    @pytest.mark.core
    def test_clickhouse_storage_implements_storage_ports(self) -> None:
        storage = ClickHouseEventStorage("http://clickhouse:8123")

        assert isinstance(storage, EventSinkPort)
        assert isinstance(storage, EventQueryPort)
        assert isinstance(storage, UsageCounterPort)

    @pytest.mark.core
    def test_sqlite_credentials_implement_credential_port(self) -> None:
        assert isinstance(SQLiteCredentialStore(":memory:"), CredentialStorePort)

    @pytest.mark.core
    def test_http_clients_implement_ports(self) -> None:
        assert isinstance(HttpAccountLimits("http://limits"), AccountLimitsPort)
        assert isinstance(HttpIngestTransport("we_key"), EventTransportPort)

    @pytest.mark.core
    def test_fakes_implement_ports(self) -> None:
        assert isinstance(RecordingQueryStore(), EventQueryPort)
        assert isinstance(FakeCredentialStore(), CredentialStorePort)
        assert isinstance(RecordingTransport(), EventTransportPort)

    @pytest.mark.core
    def test_object_missing_methods_is_rejected(self) -> None:
        class Incomplete:
            async def insert(self, event: object) -> None:
                pass

        assert not isinstance(Incomplete(), EventSinkPort)
