from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from peerwatch.membership.keys import validate_namespace


class PeerWatchSettings(BaseSettings):
    """Membership configuration settings."""

    model_config = SettingsConfigDict(
        env_file=".env", env_prefix="PEERWATCH_", extra="ignore"
    )

    address: str = Field(
        "",
        description="Explicit host to advertise. Empty triggers outbound-IP detection.",
    )
    port: int = Field(
        6666, ge=0, le=65535, description="Port appended to the advertised host."
    )
    namespace: str = Field(
        "peerwatch",
        description="Namespace under which membership records are stored.",
    )
    lease_ttl: int = Field(
        2, ge=1, description="TTL in seconds of the liveness lease."
    )
    poll_interval: float = Field(
        5.0, gt=0, description="Interval in seconds between reconciliation polls."
    )
    poll_timeout: float = Field(
        1.0, gt=0, description="Request timeout in seconds for one snapshot fetch."
    )
    watch_retry_delay: float = Field(
        1.0,
        ge=0,
        description="Delay in seconds before resubscribing a terminated watch.",
    )
    reconnect_backoff_initial: float = Field(
        0.5, ge=0, description="First delay in seconds between re-registration attempts."
    )
    reconnect_backoff_max: float = Field(
        10.0, ge=0, description="Upper bound in seconds for re-registration backoff."
    )
    probe_host: str = Field(
        "8.8.8.8",
        description="External endpoint used only to discover the locally-routed address.",
    )
    probe_port: int = Field(80, ge=1, le=65535, description="Port of the probe endpoint.")
    etcd_url: str = Field(
        "http://127.0.0.1:2379",
        description="Base URL of the etcd v3 JSON gateway.",
    )
    log_level: str = Field("INFO", description="Log level for the loguru sink.")
    debug_scopes: tuple[str, ...] = Field(
        (), description="Module scopes that always log at DEBUG."
    )

    @field_validator("namespace")
    @classmethod
    def _validate_namespace(cls, value: str) -> str:
        return validate_namespace(value)
