"""Integration tests for the service app factory and settings."""

from pathlib import Path

import pytest

from wideevent.app import create_app
from wideevent.config import Settings

pytestmark = [pytest.mark.tier(2)]


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        clickhouse_url="http://clickhouse.invalid:8123",
        credentials_db_path=str(tmp_path / "credentials.db"),
    )


class TestSettings:
    """Tests for environment-driven settings."""

    @pytest.mark.tra("Config.Defaults")
    def test_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("WIDEEVENT_PORT", raising=False)

        settings = Settings(_env_file=None)

        assert settings.port == 3005
        assert settings.default_events_per_month == 10_000
        assert settings.quota_ttl_seconds == 300
        assert settings.limits_url is None

    @pytest.mark.tra("Config.Environment")
    def test_environment_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("WIDEEVENT_PORT", "8080")
        monkeypatch.setenv("WIDEEVENT_LIMITS_URL", "http://limits:4000")

        settings = Settings(_env_file=None)

        assert settings.port == 8080
        assert settings.limits_url == "http://limits:4000"


class TestCreateApp:
    """Tests for create_app()."""

    @pytest.mark.tra("App.Health")
    async def test_health_check(self, asgi_test_client, settings: Settings) -> None:
        async with asgi_test_client(create_app(settings)) as client:
            response = await client.get("/")

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "service": "wideevent"}

    @pytest.mark.tra("App.IngestRequiresKey")
    async def test_ingest_without_key_is_401(
        self, asgi_test_client, settings: Settings
    ) -> None:
        async with asgi_test_client(create_app(settings)) as client:
            response = await client.post("/ingest", json={"event": "x"})

        assert response.status_code == 401

    @pytest.mark.tra("App.UnknownKey")
    async def test_unknown_key_checks_credential_store(
        self, asgi_test_client, settings: Settings
    ) -> None:
        app = create_app(settings)

        async with asgi_test_client(app) as client:
            response = await client.get(
                "/events", headers={"Authorization": "Bearer we_unknown"}
            )
        await app.state.credentials.close()

        assert response.status_code == 401
        assert response.json() == {"error": "Invalid API key"}

    @pytest.mark.tra("App.LimitsConfigured")
    def test_limits_service_enables_quota_cache(self, tmp_path: Path) -> None:
        settings = Settings(
            limits_url="http://limits.invalid",
            credentials_db_path=str(tmp_path / "c.db"),
        )

        app = create_app(settings)

        assert app.state.gate is not None
