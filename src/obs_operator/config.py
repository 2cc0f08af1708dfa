"""Process settings for the observability operator."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Operator settings loaded from environment and .env."""

    model_config = SettingsConfigDict(
        env_prefix="OBS_OPERATOR_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Kubernetes
    kubeconfig: Path | None = Field(
        default=None,
        description="Path to kubeconfig; in-cluster config is tried first",
    )
    context: str | None = Field(default=None, description="Kubernetes context to use")
    namespace: str = Field(
        default="managed-application-services-observability",
        description="Namespace holding the Observability instance and its managed objects",
    )

    # Scheduling
    success_requeue_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Delay before the next pass after a fully successful pass",
    )
    failure_requeue_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Delay before the next pass after a failed or in-progress stage",
    )

    # Remote repositories and backends
    http_timeout_seconds: float = Field(default=30.0, gt=0, description="Timeout for every outbound HTTP call")
    insecure_skip_verify: bool = Field(
        default=False,
        description="Skip TLS verification for repository and token endpoints",
    )
    token_refresh_margin_seconds: int = Field(
        default=3600,
        ge=0,
        description="Refresh a backend token once it expires within this many seconds",
    )

    # Images
    token_refresher_image: str = Field(
        default="quay.io/observatorium/token-refresher:master-2021-06-03-a835a06",
        description="Image for the token-refresher proxy",
    )
    promtail_image: str = Field(
        default="quay.io/integreatly/promtail:v2.2.1",
        description="Image for the log shipper daemonset",
    )


def get_settings() -> Settings:
    """Return validated settings instance."""
    return Settings()
