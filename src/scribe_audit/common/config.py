"""Scribe-Audit configuration via pydantic-settings."""

import json
import warnings
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

_INSECURE_DEFAULTS = {
    "api_key": "insecure-operator-key-change-me",
    "admin_key": "insecure-admin-key-change-me",
}


class AuditSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="SCRIBE_AUDIT_")

    environment: str = "development"
    log_level: str = "INFO"

    # Audit secrets keyring used to seed an empty secret store.
    # JSON dict mapping version (int) to secret, e.g. '{"1": "old", "2": "new"}'.
    # The highest version becomes the default on import.
    audit_secrets: str = ""

    # Database
    db_url: str = "sqlite+aiosqlite:///./data/scribe_audit.db"

    # API
    api_title: str = "Scribe-Audit"
    api_version: str = "0.1.0"
    api_key: str = "insecure-operator-key-change-me"
    admin_key: str = "insecure-admin-key-change-me"
    host: str = "0.0.0.0"
    port: int = 8080
    api_prefix: str = ""
    cors_origins: list[str] = ["http://localhost:3000", "http://localhost:8000"]

    # Chain writer
    append_max_retries: int = 5
    append_retry_backoff: float = 0.02  # seconds, doubled per attempt

    # Verification
    verify_concurrency: int = 8
    verify_batch_size: int = 500
    verify_timeout_seconds: float = 600.0

    # Scheduler cadence
    incremental_interval_seconds: int = 300  # 5 minutes
    full_interval_seconds: int = 604800  # weekly

    @property
    def audit_keyring(self) -> dict[int, str]:
        """Return the bootstrap keyring as {version_int: secret}.

        Empty when no keyring is configured.
        """
        if not self.audit_secrets:
            return {}
        try:
            raw = json.loads(self.audit_secrets)
        except (json.JSONDecodeError, TypeError) as exc:
            raise ValueError(
                "SCRIBE_AUDIT_AUDIT_SECRETS must be valid JSON "
                f"(e.g. '{{\"1\": \"secret\"}}'), got a {type(self.audit_secrets).__name__}"
            ) from exc
        return {int(k): v for k, v in raw.items()}

    def validate_for_production(self) -> None:
        """Raise if insecure defaults are used in non-development environments."""
        insecure_fields = [
            field
            for field, default in _INSECURE_DEFAULTS.items()
            if getattr(self, field) == default
        ]

        if self.environment != "development" and insecure_fields:
            env_vars = ", ".join(f"SCRIBE_AUDIT_{f.upper()}" for f in insecure_fields)
            raise RuntimeError(
                f"Insecure default values detected in '{self.environment}' environment. "
                f"Set these environment variables to secure values: {env_vars}. "
                "Generate secrets with: python -c \"import secrets; print(secrets.token_urlsafe(48))\""
            )

        if insecure_fields:
            warnings.warn(
                "Using insecure default keys — set SCRIBE_AUDIT_API_KEY and "
                "SCRIBE_AUDIT_ADMIN_KEY for production",
                UserWarning,
                stacklevel=2,
            )


@lru_cache
def get_settings() -> AuditSettings:
    settings = AuditSettings()
    settings.validate_for_production()
    return settings
