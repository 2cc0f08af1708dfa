"""Typed view of the Observability custom resource."""

from __future__ import annotations

import re
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

GROUP = "observability.redhat.com"
VERSION = "v1"
KIND = "Observability"

FINALIZER = "observability-cleanup"

DEFAULT_PROMETHEUS_NAME = "observability-prometheus"
LEGACY_PROMETHEUS_NAME = "kafka-prometheus"
DEFAULT_ALERTMANAGER_NAME = "kafka-alertmanager"
DEFAULT_GRAFANA_NAME = "kafka-grafana"

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h)")
_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


class StageName(str, Enum):
    """Pipeline stages in execution order."""

    GRAFANA_INSTALLATION = "Grafana"
    GRAFANA_CONFIGURATION = "GrafanaConfiguration"
    PROMETHEUS_INSTALLATION = "Prometheus"
    PROMETHEUS_CONFIGURATION = "PrometheusConfiguration"
    PROMETHEUS_RULES = "PrometheusRules"
    CSV_REMOVAL = "CsvRemoval"
    TOKEN_REQUEST = "TokenRequest"
    PROMTAIL_INSTALLATION = "PromtailInstallation"
    ALERTMANAGER_INSTALLATION = "AlertmanagerInstallation"
    CONFIGURATION = "Configuration"
    MIGRATION = "Migration"


class StageStatus(str, Enum):
    """Outcome of a single stage."""

    SUCCESS = "success"
    FAILED = "failed"
    IN_PROGRESS = "in progress"


def parse_duration(value: str) -> float:
    """Parse a Go-style duration such as '1h30m' or '90s' into seconds."""
    text = value.strip()
    if not text:
        raise ValueError("empty duration")
    pos = 0
    total = 0.0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    if pos != len(text):
        raise ValueError(f"invalid duration {value!r}")
    return total


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class LabelSelector(_CamelModel):
    """Equality-based label selector."""

    match_labels: dict[str, str] = Field(default_factory=dict)


class SelfContained(_CamelModel):
    """Switches and overrides for a stack that runs without central services."""

    disable_repo_sync: bool = False
    disable_observatorium: bool = False
    disable_pager_duty: bool = False
    disable_deadmans_snitch: bool = False
    grafana_dashboard_label_selector: LabelSelector | None = None
    pod_monitor_label_selector: LabelSelector | None = None
    rule_label_selector: LabelSelector | None = None
    prometheus_version: str | None = None
    prometheus_resource_requirement: dict[str, Any] | None = None


class StorageSpec(_CamelModel):
    prometheus_storage_spec: dict[str, Any] | None = None


class ObservabilitySpec(_CamelModel):
    """Desired state declared on the instance."""

    cluster_id: str | None = None
    resync_period: str | None = None
    retention: str | None = None
    configuration_selector: LabelSelector | None = None
    alertmanager_default_name: str | None = None
    grafana_default_name: str | None = None
    prometheus_default_name: str | None = None
    tolerations: list[dict[str, Any]] = Field(default_factory=list)
    affinity: dict[str, Any] | None = None
    storage: StorageSpec | None = None
    self_contained: SelfContained | None = None


class ObservabilityStatus(_CamelModel):
    """Progress record persisted on the instance."""

    stage: StageName | None = None
    stage_status: StageStatus | None = None
    last_message: str = ""
    token_expires: int = 0  # earliest token expiry, epoch seconds
    cluster_id: str = ""
    dashboards_last_synced: int = 0
    migrated: bool = False

    def to_patch(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class ObjectMeta(_CamelModel):
    name: str
    namespace: str = ""
    uid: str = ""
    resource_version: str = ""
    labels: dict[str, str] = Field(default_factory=dict)
    finalizers: list[str] = Field(default_factory=list)
    deletion_timestamp: str | None = None


class Observability(_CamelModel):
    """The Observability custom resource."""

    api_version: str = f"{GROUP}/{VERSION}"
    kind: str = KIND
    metadata: ObjectMeta
    spec: ObservabilitySpec = Field(default_factory=ObservabilitySpec)
    status: ObservabilityStatus = Field(default_factory=ObservabilityStatus)

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    @property
    def deleting(self) -> bool:
        return self.metadata.deletion_timestamp is not None

    def external_sync_disabled(self) -> bool:
        sc = self.spec.self_contained
        return sc is not None and sc.disable_repo_sync

    def observatorium_disabled(self) -> bool:
        sc = self.spec.self_contained
        return sc is not None and sc.disable_observatorium

    def pagerduty_disabled(self) -> bool:
        sc = self.spec.self_contained
        return sc is not None and sc.disable_pager_duty

    def deadmans_snitch_disabled(self) -> bool:
        sc = self.spec.self_contained
        return sc is not None and sc.disable_deadmans_snitch

    def resync_seconds(self) -> float | None:
        """Configured resync period in seconds, or None when unset or malformed."""
        if not self.spec.resync_period:
            return None
        try:
            return parse_duration(self.spec.resync_period)
        except ValueError:
            return None

    def prometheus_name(self) -> str:
        return self.spec.prometheus_default_name or DEFAULT_PROMETHEUS_NAME

    def alertmanager_name(self) -> str:
        return self.spec.alertmanager_default_name or DEFAULT_ALERTMANAGER_NAME

    def grafana_name(self) -> str:
        return self.spec.grafana_default_name or DEFAULT_GRAFANA_NAME

    def selector_override(self, field: str) -> LabelSelector | None:
        """Return a self-contained selector override by field name, if set."""
        sc = self.spec.self_contained
        if sc is None:
            return None
        return getattr(sc, field)

    def owner_reference(self) -> dict[str, Any]:
        return {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "name": self.metadata.name,
            "uid": self.metadata.uid,
            "controller": True,
            "blockOwnerDeletion": True,
        }

    @classmethod
    def from_object(cls, obj: dict[str, Any]) -> Observability:
        return cls.model_validate(obj)
