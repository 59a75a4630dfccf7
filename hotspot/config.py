"""
Gateway configuration, read from the environment or a .env file.

A gateway that cannot reach its store or enforce access must not start,
so invalid settings raise ConfigurationError at import time.
"""

import sys

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when critical configuration is missing or invalid."""

    pass


KNOWN_ENFORCERS = ("iptables", "radius", "chilli")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Key/value store - NO DEFAULT for production safety
    redis_url: str = ""
    redis_socket_timeout: float = 5.0

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_title: str = "Hotspot Access Gateway"
    api_version: str = "0.1.0"
    api_description: str = "Payment-gated network access for hotspot devices"

    # Admin routes - static key sent in X-Admin-Key
    admin_api_key: str = ""

    # Fraud gate
    risk_threshold: int = 70
    ip_attempt_cap: int = 10
    mac_attempt_cap: int = 5
    attempt_window_seconds: int = 3600
    burst_window_seconds: int = 5
    suspicious_activity_ttl_seconds: int = 86400

    # Payment ledger
    min_payment_amount: int = 1
    max_payment_amount: int = 150_000
    default_payment_amount: int = 20
    match_window_seconds: int = 900
    pending_payment_ttl_seconds: int = 3600
    confirmed_payment_ttl_seconds: int = 86400

    # Sessions and grants
    session_ttl_minutes: int = 60

    # Enforcement backends (comma-separated, in application order)
    enabled_enforcers: str = ""
    enforcer_timeout_seconds: float = 10.0
    iptables_binary: str = "iptables"
    iptables_chain: str = "FORWARD"
    radius_database_url: str = ""
    chilli_localusers_path: str = "/etc/chilli/localusers"
    chilli_reload_command: str = "killall -HUP chilli"

    # Deferred removal sweep
    removal_sweep_enabled: bool = True
    removal_sweep_interval_seconds: float = 15.0
    removal_sweep_batch_size: int = 100
    removal_record_grace_seconds: int = 86400
    removal_claim_lease_seconds: int = 300  # claimed but unfinished removals reappear after this
    removal_retry_delay_seconds: int = 60

    # Payment Provider - M-Pesa Daraja
    mpesa_environment: str = "sandbox"  # sandbox or production
    mpesa_consumer_key: str = ""
    mpesa_consumer_secret: str = ""
    mpesa_shortcode: str = "123456"
    mpesa_passkey: str = ""
    mpesa_callback_url: str = ""
    mpesa_request_timeout: float = 30.0
    webhook_secret: str = ""  # HMAC secret for X-Mpesa-Signature

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability - Metrics
    metrics_enabled: bool = True

    # Observability - Tracing
    tracing_enabled: bool = False
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    service_name: str = "hotspot-access-gateway"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @model_validator(mode="after")
    def validate_critical_config(self) -> "Settings":
        """
        FAIL FAST: Validate critical configuration at startup.

        The app MUST NOT start if the store is unreachable by configuration
        or an unknown enforcement backend is requested.
        """
        errors: list[str] = []

        if not self.redis_url:
            errors.append("REDIS_URL is required but empty or missing")
        elif not self.redis_url.startswith(("redis://", "rediss://", "unix://")):
            errors.append(f"REDIS_URL must be a Redis URL, got: {self.redis_url[:20]}...")

        unknown = [name for name in self.enforcer_names if name not in KNOWN_ENFORCERS]
        if unknown:
            errors.append(f"ENABLED_ENFORCERS contains unknown backends: {', '.join(unknown)}")

        if "radius" in self.enforcer_names and not self.radius_database_url:
            errors.append("RADIUS_DATABASE_URL is required when the radius enforcer is enabled")

        if self.min_payment_amount < 1 or self.max_payment_amount < self.min_payment_amount:
            errors.append("Payment amount bounds are invalid")

        if errors:
            error_msg = "\n".join(
                [
                    "",
                    "=" * 60,
                    "CRITICAL CONFIGURATION ERROR - APPLICATION CANNOT START",
                    "=" * 60,
                    *[f"  ✗ {e}" for e in errors],
                    "=" * 60,
                    "",
                ]
            )
            print(error_msg, file=sys.stderr)
            raise ConfigurationError(error_msg)

        return self

    @property
    def enforcer_names(self) -> list[str]:
        """Enabled enforcers in configured order, duplicates dropped."""
        names: list[str] = []
        for raw in self.enabled_enforcers.split(","):
            name = raw.strip().lower()
            if name and name not in names:
                names.append(name)
        return names

    @property
    def session_ttl_seconds(self) -> int:
        """Default lifetime of a grant and its session."""
        return self.session_ttl_minutes * 60

    @property
    def chilli_reload_argv(self) -> list[str]:
        """Reload command split into argv (never run through a shell)."""
        return self.chilli_reload_command.split()

    @property
    def mpesa_base_url(self) -> str:
        """Daraja API base URL for the configured environment."""
        if self.mpesa_environment == "production":
            return "https://api.safaricom.co.ke"
        return "https://sandbox.safaricom.co.ke"


# Global settings instance - validates at import time
settings = Settings()


def get_settings() -> Settings:
    """Get application settings instance."""
    return settings
