"""Tests for the instance and repository index models."""

from __future__ import annotations

import pytest
import yaml

from conftest import make_instance
from obs_operator.api.alertmanager import AlertmanagerConfigRoot
from obs_operator.api.index import AuthType, RepositoryIndex
from obs_operator.api.types import (
    DEFAULT_PROMETHEUS_NAME,
    ObservabilityStatus,
    StageName,
    StageStatus,
    parse_duration,
)


class TestParseDuration:
    def test_compound(self) -> None:
        assert parse_duration("1h30m") == 5400

    def test_seconds_and_millis(self) -> None:
        assert parse_duration("90s") == 90
        assert parse_duration("500ms") == 0.5

    @pytest.mark.parametrize("value", ["", "10", "1d", "h1", "5m x"])
    def test_invalid(self, value: str) -> None:
        with pytest.raises(ValueError):
            parse_duration(value)


class TestObservability:
    def test_defaults_without_self_contained(self) -> None:
        instance = make_instance()
        assert not instance.external_sync_disabled()
        assert not instance.observatorium_disabled()
        assert not instance.pagerduty_disabled()
        assert not instance.deadmans_snitch_disabled()
        assert instance.prometheus_name() == DEFAULT_PROMETHEUS_NAME
        assert instance.resync_seconds() is None

    def test_self_contained_switches(self) -> None:
        instance = make_instance(
            selfContained={"disableRepoSync": True, "disablePagerDuty": True},
            prometheusDefaultName="my-prom",
            resyncPeriod="1h",
        )
        assert instance.external_sync_disabled()
        assert instance.pagerduty_disabled()
        assert not instance.deadmans_snitch_disabled()
        assert instance.prometheus_name() == "my-prom"
        assert instance.resync_seconds() == 3600

    def test_malformed_resync_period_is_ignored(self) -> None:
        assert make_instance(resyncPeriod="soon").resync_seconds() is None

    def test_status_round_trips_camel_case(self) -> None:
        status = ObservabilityStatus(
            stage=StageName.TOKEN_REQUEST, stage_status=StageStatus.IN_PROGRESS, token_expires=42
        )
        patch = status.to_patch()
        assert patch["stageStatus"] == "in progress"
        assert patch["tokenExpires"] == 42
        assert ObservabilityStatus.model_validate(patch) == status

    def test_deleting(self) -> None:
        instance = make_instance()
        assert not instance.deleting
        instance.metadata.deletion_timestamp = "2024-01-01T00:00:00Z"
        assert instance.deleting


class TestRepositoryIndex:
    def test_full_document(self) -> None:
        index = RepositoryIndex.model_validate(
            {
                "id": "kafka",
                "config": {
                    "grafana": {"dashboards": ["dashboards/a.json"]},
                    "prometheus": {
                        "rules": ["rules/r.yaml"],
                        "pod_monitors": ["monitors/m.yaml"],
                        "observatorium": {"id": "obs-1"},
                    },
                    "promtail": {"enabled": True, "observatorium": "obs-1"},
                    "observatoria": [
                        {"id": "obs-1", "gateway": "https://gw", "tenant": "t", "authType": "dex"}
                    ],
                },
            }
        )
        assert index.config.prometheus.pod_monitors == ["monitors/m.yaml"]
        assert index.config.prometheus.observatorium == "obs-1"
        assert index.promtail_enabled()
        target = index.get_observatorium("obs-1")
        assert target is not None and target.auth_type == AuthType.DEX
        assert target.is_valid()
        assert index.get_observatorium("missing") is None

    def test_camel_case_pod_monitors(self) -> None:
        index = RepositoryIndex.model_validate(
            {"id": "x", "config": {"prometheus": {"podMonitors": ["m.yaml"]}}}
        )
        assert index.config.prometheus.pod_monitors == ["m.yaml"]

    def test_flat_document(self) -> None:
        index = RepositoryIndex.model_validate({"id": "x", "grafana": {"dashboards": ["d.json"]}})
        assert index.config.grafana.dashboards == ["d.json"]

    def test_unknown_auth_type(self) -> None:
        index = RepositoryIndex.model_validate(
            {"id": "x", "config": {"observatoria": [{"id": "o", "authType": "kerberos"}]}}
        )
        target = index.get_observatorium("o")
        assert target.auth_type == AuthType.UNKNOWN
        assert not target.is_valid()

    def test_backend_urls(self) -> None:
        index = RepositoryIndex.model_validate(
            {"id": "x", "config": {"observatoria": [{"id": "o", "gateway": "https://gw/", "tenant": "mk"}]}}
        )
        target = index.get_observatorium("o")
        assert target.metrics_url() == "https://gw/api/metrics/v1/mk/api/v1/receive"
        assert target.logs_url() == "https://gw/api/logs/v1/mk/loki/api/v1/push"


class TestAlertmanagerConfigRoot:
    def test_empty_document(self) -> None:
        doc = yaml.safe_load(AlertmanagerConfigRoot().to_yaml())
        assert doc == {
            "global": {"resolve_timeout": "5m"},
            "route": {"receiver": "default-receiver", "routes": []},
            "receivers": [{"name": "default-receiver"}],
        }
