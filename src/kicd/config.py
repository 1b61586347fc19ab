"""Configuration management for the kicd relay."""

from functools import lru_cache
from typing import Annotated

import httpx
from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Shortest static webhook secret accepted at startup
MIN_SECRET_LENGTH = 32


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # HTTP
    host: str = Field(default="0.0.0.0", description="Listen address")
    port: int = Field(default=8080, description="Listen port")
    max_body_bytes: int = Field(
        default=1024**2, ge=1, description="Largest accepted webhook body (bytes)"
    )
    signature_header: str = Field(
        default="X-Hub-Signature", description="Header carrying the prefixed hex digest"
    )

    # Slack
    slack_url: SecretStr | None = Field(
        default=None, description="Slack incoming webhook URL for rollout reports"
    )
    notify_timeout: float = Field(default=10.0, description="Slack request timeout (seconds)")

    # Signing keys: either a Kubernetes secret holding rotating master keys...
    secret_namespace: str | None = Field(
        default=None, description="Namespace of the secret holding the master keys"
    )
    secret_name: str | None = Field(
        default=None, description="Name of the secret holding the master keys"
    )
    secret_key_fields: Annotated[
        list[str],
        Field(
            default_factory=lambda: ["master_key", "master_key_old"],
            description="Secret data fields to use as master keys, newest first",
        ),
    ]
    secret_cache_seconds: float = Field(
        default=0.0, description="How long a fetched secret may be reused (0 disables caching)"
    )
    # ...or static shared secrets, newest first
    webhook_secrets: Annotated[
        list[SecretStr],
        Field(default_factory=list, description="Static webhook secrets, newest first"),
    ]

    # Kubernetes
    kubeconfig: str | None = Field(
        default=None, description="Kubeconfig path used when not running in-cluster"
    )
    label_prefix: str = Field(default="ki-cd/", description="Prefix of the rollout label key")

    # Conflict retry
    conflict_retry_attempts: int = Field(
        default=5, ge=1, description="Update attempts per workload"
    )
    conflict_retry_delay: float = Field(
        default=0.01, ge=0, description="Initial delay between conflicting attempts (seconds)"
    )
    conflict_retry_factor: float = Field(
        default=1.0, ge=1.0, description="Backoff multiplier between attempts"
    )

    # Application
    shutdown_grace_seconds: float = Field(
        default=30.0, description="Time pending rollouts get to finish on shutdown"
    )
    environment: str = Field(default="production", description="Environment name")
    log_level: str = Field(default="INFO", description="Logging level")

    @field_validator("webhook_secrets")
    @classmethod
    def _check_secret_strength(cls, value: list[SecretStr]) -> list[SecretStr]:
        for secret in value:
            if len(secret.get_secret_value()) < MIN_SECRET_LENGTH:
                raise ValueError(
                    f"webhook secrets must be at least {MIN_SECRET_LENGTH} characters long"
                )
        return value

    @field_validator("slack_url")
    @classmethod
    def _check_slack_url(cls, value: SecretStr | None) -> SecretStr | None:
        if value is None:
            return value
        try:
            url = httpx.URL(value.get_secret_value())
        except httpx.InvalidURL as exc:
            raise ValueError(f"SLACK_URL is not a valid URL: {exc}") from exc
        if url.scheme not in ("http", "https") or not url.host:
            raise ValueError("SLACK_URL must be an absolute http(s) URL")
        return value

    @model_validator(mode="after")
    def _check_key_source(self) -> "Settings":
        if bool(self.secret_namespace) != bool(self.secret_name):
            raise ValueError("SECRET_NAMESPACE and SECRET_NAME must be set together")
        if not self.uses_secret_store and not self.webhook_secrets:
            raise ValueError(
                "no signing key configured: set SECRET_NAMESPACE/SECRET_NAME or WEBHOOK_SECRETS"
            )
        if self.slack_url is None and not self.is_development:
            raise ValueError("SLACK_URL not provided")
        return self

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment.lower() == "development"

    @property
    def uses_secret_store(self) -> bool:
        """Whether signing keys come from a Kubernetes secret."""
        return bool(self.secret_namespace and self.secret_name)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
