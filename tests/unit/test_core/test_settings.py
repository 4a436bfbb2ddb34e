"""Unit tests for the per-domain settings."""

from __future__ import annotations

from datetime import timedelta

import pytest
from pydantic import ValidationError

from relay_service.core.settings.app import AppSettings
from relay_service.core.settings.delivery import DeliverySettings
from relay_service.core.settings.idempotency import IdempotencySettings
from relay_service.core.settings.nats import NatsSettings
from relay_service.core.settings.outbox import OutboxSettings
from relay_service.core.settings.postgres import PostgresSettings
from relay_service.core.settings.retention import RetentionSettings


@pytest.mark.unit
class TestWorkerPolicySettings:
    def test_defaults(self):
        settings = OutboxSettings()

        assert settings.enabled is True
        assert settings.batch_size == 50
        assert settings.max_attempts == 10
        assert settings.lease == timedelta(seconds=30)
        assert settings.backoff_jitter_min <= settings.backoff_jitter_max

    def test_env_prefix_and_iso_durations(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("OUTBOX_BATCH_SIZE", "7")
        monkeypatch.setenv("OUTBOX_LEASE", "PT1M")
        monkeypatch.setenv("DELIVERY_MAX_ATTEMPTS", "3")

        assert OutboxSettings().batch_size == 7
        assert OutboxSettings().lease == timedelta(minutes=1)
        assert DeliverySettings().max_attempts == 3
        assert DeliverySettings().batch_size == 50

    def test_inverted_jitter_rejected(self):
        with pytest.raises(ValidationError, match="backoff_jitter_min"):
            OutboxSettings(backoff_jitter_min=2.0, backoff_jitter_max=1.0)

    def test_inverted_backoff_bounds_rejected(self):
        with pytest.raises(ValidationError, match="backoff_min"):
            DeliverySettings(backoff_min=timedelta(minutes=10), backoff_max=timedelta(minutes=1))

    def test_non_positive_lease_rejected(self):
        with pytest.raises(ValidationError):
            OutboxSettings(lease=timedelta(0))

    def test_frozen(self):
        settings = OutboxSettings()

        with pytest.raises(ValidationError):
            settings.batch_size = 1


@pytest.mark.unit
class TestNatsSettings:
    def test_subjects(self):
        settings = NatsSettings(subject_prefix="entitlements.events")

        assert settings.subject_filter == "entitlements.events.>"
        assert settings.subject_for("EntitlementGranted") == "entitlements.events.EntitlementGranted"

    def test_duplicate_window_must_be_positive(self):
        with pytest.raises(ValidationError, match="duration must be positive"):
            NatsSettings(duplicate_window=timedelta(0))

    def test_disabled_is_not_configured(self):
        assert NatsSettings(enabled=False).is_configured is False
        assert NatsSettings(enabled=True).is_configured is True

    def test_advisory_subjects_follow_consumer(self):
        settings = NatsSettings(stream="ENTITLEMENTS", durable="notification-service")

        assert settings.max_deliveries_advisory_subject == (
            "$JS.EVENT.ADVISORY.CONSUMER.MAX_DELIVERIES.ENTITLEMENTS.notification-service"
        )
        assert settings.terminated_advisory_subject == (
            "$JS.EVENT.ADVISORY.CONSUMER.MSG_TERMINATED.ENTITLEMENTS.notification-service"
        )

    def test_reconnect_interval_from_env(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("NATS_RECONNECT_INTERVAL", "PT2S")

        assert NatsSettings().reconnect_interval == timedelta(seconds=2)

        with pytest.raises(ValidationError):
            NatsSettings(reconnect_interval=timedelta(0))


@pytest.mark.unit
class TestOtherSettings:
    def test_app_defaults(self):
        settings = AppSettings()

        assert settings.api_prefix == "/api/v1"
        assert settings.environment == "test"  # From env var in conftest
        assert settings.is_production is False

    def test_sqlite_fallback_when_postgres_disabled(self):
        settings = PostgresSettings(enabled=False, sqlite_url="sqlite+aiosqlite:///:memory:")

        assert settings.is_configured is False
        assert settings.get_sqlalchemy_url() == "sqlite+aiosqlite:///:memory:"
        assert "pool_size" not in settings.sqlalchemy_engine_kwargs()

    def test_postgres_url_quotes_password(self):
        settings = PostgresSettings(enabled=True, password="p@ss word", host="db", name="relay")

        url = settings.get_sqlalchemy_url()
        assert url.startswith("postgresql+psycopg://postgres:p%40ss+word@db:5432/relay")

    def test_idempotency_ttl_must_be_positive(self):
        with pytest.raises(ValidationError):
            IdempotencySettings(ttl=timedelta(seconds=-1))

    def test_retention_defaults(self):
        settings = RetentionSettings()

        assert settings.published_ttl == timedelta(days=7)
        assert settings.failed_ttl == timedelta(days=30)
        assert settings.notification_ttl == timedelta(days=30)
