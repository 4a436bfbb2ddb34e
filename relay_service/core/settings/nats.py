"""NATS JetStream messaging settings for FastStream."""

from __future__ import annotations

from datetime import timedelta

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class NatsSettings(BaseSettings):
    """NATS connection, stream and consumer settings.

    Environment variables use NATS_ prefix.
    Example: NATS_SERVERS='["nats://nats:4222"]', NATS_DUPLICATE_WINDOW=PT2H

    The stream's duplicate window must exceed the worst-case publisher retry
    span, otherwise a row re-published after lease recovery may be delivered
    twice downstream.
    """

    # ─────────────────────────────────────────────────────
    # Enable/disable toggle
    # ─────────────────────────────────────────────────────
    enabled: bool = Field(
        default=True,
        description="Enable NATS integration for this service.",
    )

    # ─────────────────────────────────────────────────────
    # Connection
    # ─────────────────────────────────────────────────────
    servers: list[str] = Field(
        default_factory=lambda: ["nats://localhost:4222"],
        min_length=1,
        description="NATS server URLs.",
    )
    connection_name: str = Field(default="relay-service", max_length=100)
    connect_timeout: float = Field(
        default=10.0,
        gt=0,
        le=300.0,
        description="Seconds to wait for the initial connection at startup.",
    )
    graceful_timeout: float = Field(
        default=15.0,
        ge=0,
        le=300.0,
        description="Seconds to wait for in-flight handlers on shutdown.",
    )
    reconnect_interval: timedelta = Field(
        default=timedelta(seconds=5),
        description="Pause between broker start attempts after a failed startup.",
    )

    # ─────────────────────────────────────────────────────
    # Stream
    # ─────────────────────────────────────────────────────
    stream: str = Field(
        default="ENTITLEMENTS",
        min_length=1,
        max_length=64,
        description="JetStream stream holding entitlement events.",
    )
    subject_prefix: str = Field(
        default="entitlements.events",
        min_length=1,
        description="Events publish to '<prefix>.<event_type>'.",
    )
    duplicate_window: timedelta = Field(
        default=timedelta(hours=2),
        description="Stream duplicate-suppression window keyed by Nats-Msg-Id.",
    )
    publish_timeout: timedelta = Field(
        default=timedelta(seconds=5),
        description="Upper bound for a single publish acknowledgement.",
    )
    startup_require_nats: bool = Field(
        default=False,
        description=(
            "Fail startup when the broker cannot be reached. Otherwise run degraded: "
            "commands still commit, outbox rows wait and the broker is retried in the background."
        ),
    )

    # ─────────────────────────────────────────────────────
    # Consumer
    # ─────────────────────────────────────────────────────
    consumer_enabled: bool = Field(
        default=True,
        description="Subscribe to the stream and feed the notification queue.",
    )
    durable: str = Field(default="notification-service", min_length=1, max_length=64)
    ack_wait: timedelta = Field(default=timedelta(seconds=30))
    max_deliver: int = Field(default=10, ge=1, le=1000)

    # ─────────────────────────────────────────────────────
    # Consumer advisories (NATS-side dead letters)
    # ─────────────────────────────────────────────────────
    advisory_enabled: bool = Field(
        default=True,
        description="Record MAX_DELIVERIES and MSG_TERMINATED advisories of the consumer in notification_nats_dlq.",
    )
    advisory_stream: str = Field(
        default="ENTITLEMENTS_ADVISORIES",
        min_length=1,
        max_length=64,
        description="Stream capturing the consumer advisories so none are lost while the service is down.",
    )
    advisory_durable: str = Field(default="notification-advisories", min_length=1, max_length=48)

    model_config = SettingsConfigDict(
        env_prefix="NATS_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
        env_ignore_empty=True,
    )

    @field_validator("duplicate_window", "publish_timeout", "ack_wait", "reconnect_interval")
    @classmethod
    def _positive_duration(cls, value: timedelta) -> timedelta:
        if value <= timedelta(0):
            msg = "duration must be positive"
            raise ValueError(msg)
        return value

    @property
    def is_configured(self) -> bool:
        """Check if NATS is enabled with at least one server."""
        return self.enabled and bool(self.servers)

    @property
    def subject_filter(self) -> str:
        """Wildcard subject covering every event type."""
        return f"{self.subject_prefix}.>"

    def subject_for(self, event_type: str) -> str:
        """Subject an event of ``event_type`` is published to."""
        return f"{self.subject_prefix}.{event_type}"

    @property
    def max_deliveries_advisory_subject(self) -> str:
        return f"$JS.EVENT.ADVISORY.CONSUMER.MAX_DELIVERIES.{self.stream}.{self.durable}"

    @property
    def terminated_advisory_subject(self) -> str:
        return f"$JS.EVENT.ADVISORY.CONSUMER.MSG_TERMINATED.{self.stream}.{self.durable}"
