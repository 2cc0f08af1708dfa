"""Repository index documents published by configuration repositories."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

logger = logging.getLogger(__name__)


class AuthType(str, Enum):
    """How a backend target authenticates writes."""

    NONE = ""
    DEX = "dex"  # operator holds a bearer token
    REDHAT = "redhat"  # token-refresher proxy holds the credential
    UNKNOWN = "unknown"


class _IndexModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


def _ref_id(value: Any) -> str:
    # accepts either a bare id or {"id": ...}
    if isinstance(value, dict):
        return value.get("id", "") or ""
    return value or ""


class RepositoryInfo(_IndexModel):
    """Location and credentials of one configuration repository."""

    repository: str
    channel: str = "resources"
    access_token: str = ""
    tag: str = ""


class DexConfig(_IndexModel):
    url: str = ""
    username: str = ""
    password: str = ""
    secret: str = ""
    credential_secret_name: str = Field(default="", alias="credentialSecretName")
    credential_secret_namespace: str = Field(default="", alias="credentialSecretNamespace")


class RedhatSsoConfig(_IndexModel):
    url: str = ""
    realm: str = ""
    metrics_client: str = Field(default="", alias="metricsClient")
    metrics_secret: str = Field(default="", alias="metricsSecret")
    logs_client: str = Field(default="", alias="logsClient")
    logs_secret: str = Field(default="", alias="logsSecret")

    def has_auth_server(self) -> bool:
        return bool(self.url and self.realm)

    def has_metrics(self) -> bool:
        return bool(self.metrics_client and self.metrics_secret)

    def has_logs(self) -> bool:
        return bool(self.logs_client and self.logs_secret)

    def auth_url(self) -> str:
        return f"{self.url.rstrip('/')}/realms/{self.realm}"


class ObservatoriumIndex(_IndexModel):
    """A remote backend that receives metrics and logs."""

    id: str
    gateway: str = ""
    tenant: str = ""
    auth_type: AuthType = Field(default=AuthType.NONE, alias="authType")
    dex_config: DexConfig | None = Field(default=None, alias="dexConfig")
    redhat_sso_config: RedhatSsoConfig | None = Field(default=None, alias="redhatSsoConfig")
    secret_name: str = Field(default="", alias="secretName")
    secret_namespace: str = Field(default="", alias="secretNamespace")

    @field_validator("auth_type", mode="before")
    @classmethod
    def _known_auth_type(cls, value: Any) -> Any:
        if value is None:
            return AuthType.NONE
        try:
            return AuthType(value)
        except ValueError:
            logger.warning("Unknown observatorium auth type %r", value)
            return AuthType.UNKNOWN

    def is_valid(self) -> bool:
        return bool(self.gateway and self.tenant)

    def metrics_url(self) -> str:
        return f"{self.gateway.rstrip('/')}/api/metrics/v1/{self.tenant}/api/v1/receive"

    def logs_url(self) -> str:
        return f"{self.gateway.rstrip('/')}/api/logs/v1/{self.tenant}/loki/api/v1/push"


class GrafanaIndex(_IndexModel):
    dashboards: list[str] = Field(default_factory=list)
    dashboard_label_selector: dict[str, str] = Field(default_factory=dict, alias="dashboardLabelSelector")


class PrometheusIndex(_IndexModel):
    rules: list[str] = Field(default_factory=list)
    pod_monitors: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("pod_monitors", "podMonitors"),
    )
    federation: str = ""
    remote_write: str = Field(default="", alias="remoteWrite")
    observatorium: str = ""
    override_prometheus_pvc_size: str = Field(default="", alias="overridePrometheusPvcSize")

    @field_validator("observatorium", mode="before")
    @classmethod
    def _observatorium_id(cls, value: Any) -> Any:
        return _ref_id(value)


class PromtailIndex(_IndexModel):
    enabled: bool = False
    namespace_label_selector: dict[str, str] = Field(default_factory=dict, alias="namespaceLabelSelector")
    observatorium: str = ""

    @field_validator("observatorium", mode="before")
    @classmethod
    def _observatorium_id(cls, value: Any) -> Any:
        return _ref_id(value)


class AlertmanagerIndex(_IndexModel):
    pagerduty_secret_name: str = Field(default="", alias="pagerDutySecretName")
    pagerduty_secret_namespace: str = Field(default="", alias="pagerDutySecretNamespace")
    deadmans_snitch_secret_name: str = Field(default="", alias="deadmansSnitchSecretName")
    deadmans_snitch_secret_namespace: str = Field(default="", alias="deadmansSnitchSecretNamespace")


class RepositoryConfig(_IndexModel):
    grafana: GrafanaIndex | None = None
    prometheus: PrometheusIndex | None = None
    promtail: PromtailIndex | None = None
    alertmanager: AlertmanagerIndex | None = None
    observatoria: list[ObservatoriumIndex] = Field(default_factory=list)


class RepositoryIndex(_IndexModel):
    """Parsed index.json of a configuration repository."""

    id: str
    config: RepositoryConfig = Field(default_factory=RepositoryConfig)

    # Filled in by the fetcher, never read from the document
    base_url: str = Field(default="", exclude=True)
    access_token: str = Field(default="", exclude=True)
    tag: str = Field(default="", exclude=True)

    @model_validator(mode="before")
    @classmethod
    def _flat_config(cls, data: Any) -> Any:
        if isinstance(data, dict) and "config" not in data:
            sections = {k: v for k, v in data.items() if k in RepositoryConfig.model_fields}
            if sections:
                rest = {k: v for k, v in data.items() if k not in sections}
                return {**rest, "config": sections}
        return data

    def get_observatorium(self, observatorium_id: str) -> ObservatoriumIndex | None:
        for target in self.config.observatoria:
            if target.id == observatorium_id:
                return target
        return None

    def promtail_enabled(self) -> bool:
        return self.config.promtail is not None and self.config.promtail.enabled
