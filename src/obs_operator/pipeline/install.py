"""Installation stages: fill the fixed shapes of the Grafana, Prometheus, promtail and Alertmanager objects."""

from __future__ import annotations

import logging
from typing import Any

import yaml

from obs_operator.alerting.builder import config_secret_name
from obs_operator.api.types import Observability, ObservabilityStatus, StageStatus
from obs_operator.cluster import kinds
from obs_operator.cluster.objects import encode_data, managed_labels, object_meta
from obs_operator.fetch.fetcher import FetchError
from obs_operator.pipeline.context import PassContext
from obs_operator.sync import promtail
from obs_operator.sync.remote_write import remote_write_specs

logger = logging.getLogger(__name__)

GRAFANA_DEPLOYMENT = "grafana-deployment"
GRAFANA_DATASOURCE = "on-cluster-prometheus"
PROMETHEUS_PORT = 9090
DEFAULT_PVC_SIZE = "250Gi"
SCRAPE_CONFIG_SECRET = "additional-scrape-configs"
SCRAPE_CONFIG_KEY = "additional-scrape-config.yaml"
SLO_RULE_NAME = "kafka-prometheus-rules"

# (alert for, severity, short window, long window, burn factor)
_BURN_RATE_ALERTS = (
    ("2m", "critical", "5m", "1h", "14.40"),
    ("15m", "critical", "30m", "6h", "6.00"),
    ("1h", "warning", "2h", "1d", "3.00"),
    ("3h", "warning", "6h", "3d", "1.00"),
)
_SLO_TARGET = "0.90000"
_FAILED_PRODUCE = "kafka_server_brokertopicmetrics_failed_produce_requests_total"
_TOTAL_PRODUCE = "kafka_server_brokertopicmetrics_total_produce_requests_total"


def _selector(instance: Observability, override: str) -> dict[str, Any]:
    sel = instance.selector_override(override)
    return {"matchLabels": sel.match_labels if sel is not None else managed_labels()}


def _deployment_extras(instance: Observability) -> dict[str, Any]:
    extras: dict[str, Any] = {}
    if instance.spec.tolerations:
        extras["tolerations"] = instance.spec.tolerations
    if instance.spec.affinity:
        extras["affinity"] = instance.spec.affinity
    return extras


class GrafanaInstallation:
    """Grafana CR with anonymous access and the dashboard selector."""

    def reconcile(self, ctx: PassContext, instance: Observability, status: ObservabilityStatus) -> StageStatus:
        grafana = {
            "metadata": object_meta(
                instance.grafana_name(), instance.namespace, managed_labels(), instance.owner_reference()
            ),
            "spec": {
                "config": {
                    "log": {"mode": "console", "level": "warn"},
                    "auth.anonymous": {"enabled": True},
                },
                "dashboardLabelSelector": [_selector(instance, "grafana_dashboard_label_selector")],
                "deployment": _deployment_extras(instance),
            },
        }
        ctx.cluster.create_or_update(kinds.GRAFANA, grafana)
        return StageStatus.SUCCESS

    def cleanup(self, ctx: PassContext, instance: Observability) -> StageStatus:
        """Delete the Grafana CR and wait until its deployment is gone."""
        ctx.cluster.delete(kinds.GRAFANA, instance.grafana_name(), instance.namespace)
        if ctx.cluster.get(kinds.DEPLOYMENT, GRAFANA_DEPLOYMENT, instance.namespace) is not None:
            return StageStatus.IN_PROGRESS
        return StageStatus.SUCCESS


class GrafanaConfiguration:
    """Default Prometheus datasource for Grafana."""

    def reconcile(self, ctx: PassContext, instance: Observability, status: ObservabilityStatus) -> StageStatus:
        url = f"http://prometheus-operated.{instance.namespace}.svc:{PROMETHEUS_PORT}"
        datasource = {
            "metadata": object_meta(
                GRAFANA_DATASOURCE, instance.namespace, managed_labels(), instance.owner_reference()
            ),
            "spec": {
                "name": "prometheus.yaml",
                "datasources": [
                    {
                        "name": "Prometheus",
                        "type": "prometheus",
                        "access": "proxy",
                        "url": url,
                        "isDefault": True,
                        "editable": False,
                        "jsonData": {"timeInterval": "5s"},
                    }
                ],
            },
        }
        ctx.cluster.create_or_update(kinds.GRAFANA_DATASOURCE, datasource)
        return StageStatus.SUCCESS

    def cleanup(self, ctx: PassContext, instance: Observability) -> StageStatus:
        ctx.cluster.delete(kinds.GRAFANA_DATASOURCE, GRAFANA_DATASOURCE, instance.namespace)
        return StageStatus.SUCCESS


class PrometheusInstallation:
    """Service account the Prometheus pods run as."""

    def reconcile(self, ctx: PassContext, instance: Observability, status: ObservabilityStatus) -> StageStatus:
        account = {
            "metadata": object_meta(
                instance.prometheus_name(), instance.namespace, managed_labels(), instance.owner_reference()
            )
        }
        ctx.cluster.create_or_update(kinds.SERVICE_ACCOUNT, account)
        return StageStatus.SUCCESS

    def cleanup(self, ctx: PassContext, instance: Observability) -> StageStatus:
        ctx.cluster.delete(kinds.SERVICE_ACCOUNT, instance.prometheus_name(), instance.namespace)
        return StageStatus.SUCCESS


class PrometheusConfiguration:
    """Prometheus CR with remote write, token secrets and federation scrape configs."""

    def _scrape_configs(self, ctx: PassContext) -> list[Any]:
        configs: list[Any] = []
        for index in ctx.indexes:
            prom = index.config.prometheus
            if prom is None or not prom.federation:
                continue
            url = f"{index.base_url}/{prom.federation.lstrip('/')}"
            try:
                document = ctx.fetcher.fetch_document(url, index.access_token, index.tag)
            except FetchError as e:
                logger.error("Skipping federation config of index %s: %s", index.id, e)
                continue
            if isinstance(document, list):
                configs.extend(document)
            elif isinstance(document, dict):
                configs.append(document)
        return configs

    def _storage(self, ctx: PassContext, instance: Observability) -> dict[str, Any]:
        if instance.spec.storage and instance.spec.storage.prometheus_storage_spec:
            return instance.spec.storage.prometheus_storage_spec
        size = DEFAULT_PVC_SIZE
        for index in ctx.indexes:
            if index.config.prometheus and index.config.prometheus.override_prometheus_pvc_size:
                size = index.config.prometheus.override_prometheus_pvc_size
                break
        return {
            "volumeClaimTemplate": {
                "spec": {"accessModes": ["ReadWriteOnce"], "resources": {"requests": {"storage": size}}}
            }
        }

    def reconcile(self, ctx: PassContext, instance: Observability, status: ObservabilityStatus) -> StageStatus:
        scrape_secret = {
            "metadata": object_meta(
                SCRAPE_CONFIG_SECRET, instance.namespace, managed_labels(), instance.owner_reference()
            ),
            "type": "Opaque",
            "data": encode_data({SCRAPE_CONFIG_KEY: yaml.safe_dump(self._scrape_configs(ctx), sort_keys=False)}),
        }
        ctx.cluster.create_or_update(kinds.SECRET, scrape_secret)

        token_secrets = [] if instance.observatorium_disabled() else ctx.tokens.token_secret_names(instance)
        spec: dict[str, Any] = {
            "serviceAccountName": instance.prometheus_name(),
            "externalLabels": {"cluster_id": status.cluster_id},
            "podMonitorSelector": _selector(instance, "pod_monitor_label_selector"),
            "ruleSelector": _selector(instance, "rule_label_selector"),
            "storage": self._storage(ctx, instance),
            "secrets": token_secrets,
            "remoteWrite": remote_write_specs(
                ctx.cluster, ctx.fetcher, instance, ctx.indexes, set(token_secrets)
            ),
            "additionalScrapeConfigs": {"name": SCRAPE_CONFIG_SECRET, "key": SCRAPE_CONFIG_KEY},
            "alerting": {
                "alertmanagers": [
                    {"namespace": instance.namespace, "name": "alertmanager-operated", "port": "web"}
                ]
            },
            **_deployment_extras(instance),
        }
        if instance.spec.retention:
            spec["retention"] = instance.spec.retention
        sc = instance.spec.self_contained
        if sc is not None and sc.prometheus_version:
            spec["version"] = sc.prometheus_version
        if sc is not None and sc.prometheus_resource_requirement:
            spec["resources"] = sc.prometheus_resource_requirement

        prometheus = {
            "metadata": object_meta(
                instance.prometheus_name(), instance.namespace, managed_labels(), instance.owner_reference()
            ),
            "spec": spec,
        }
        ctx.cluster.create_or_update(kinds.PROMETHEUS, prometheus)
        return StageStatus.SUCCESS

    def cleanup(self, ctx: PassContext, instance: Observability) -> StageStatus:
        ctx.cluster.delete(kinds.PROMETHEUS, instance.prometheus_name(), instance.namespace)
        ctx.cluster.delete(kinds.SECRET, SCRAPE_CONFIG_SECRET, instance.namespace)
        statefulset = f"prometheus-{instance.prometheus_name()}"
        if ctx.cluster.get(kinds.STATEFUL_SET, statefulset, instance.namespace) is not None:
            return StageStatus.IN_PROGRESS
        return StageStatus.SUCCESS


def _slo_rules() -> list[dict[str, Any]]:
    rules: list[dict[str, Any]] = []
    windows: list[str] = []
    for for_, severity, short, long, factor in _BURN_RATE_ALERTS:
        threshold = f"({factor} * (1-{_SLO_TARGET}))"
        rules.append(
            {
                "alert": "ErrorBudgetBurn_ProduceRequests",
                "for": for_,
                "expr": (
                    f"sum({_FAILED_PRODUCE}:burnrate{short}{{}}) > {threshold} "
                    f"and sum({_FAILED_PRODUCE}:burnrate{long}{{}}) > {threshold}"
                ),
                "labels": {"name": "FailedProduceRequestsPerSec", "severity": severity},
                "annotations": {
                    "message": "High error budget burn for Failed Produce Requests (current value: {{ $value }})"
                },
            }
        )
        windows.extend(w for w in (short, long) if w not in windows)
    for window in windows:
        rules.append(
            {
                "record": f"{_FAILED_PRODUCE}:burnrate{window}",
                "expr": f"sum(rate({_FAILED_PRODUCE}{{}}[{window}])) / sum(rate({_TOTAL_PRODUCE}{{}}[{window}]))",
                "labels": {"name": "FailedProduceRequestsPerSec"},
            }
        )
    return rules


class PrometheusRules:
    """Built-in error-budget rules that ship with every stack."""

    def reconcile(self, ctx: PassContext, instance: Observability, status: ObservabilityStatus) -> StageStatus:
        rule = {
            "metadata": object_meta(SLO_RULE_NAME, instance.namespace, managed_labels(), instance.owner_reference()),
            "spec": {"groups": [{"name": "kafka-api-slo", "rules": _slo_rules()}]},
        }
        ctx.cluster.create_or_update(kinds.PROMETHEUS_RULE, rule)
        return StageStatus.SUCCESS

    def cleanup(self, ctx: PassContext, instance: Observability) -> StageStatus:
        ctx.cluster.delete(kinds.PROMETHEUS_RULE, SLO_RULE_NAME, instance.namespace)
        return StageStatus.SUCCESS


class PromtailInstallation:
    """Service account for the promtail daemon set."""

    def reconcile(self, ctx: PassContext, instance: Observability, status: ObservabilityStatus) -> StageStatus:
        account = {
            "metadata": object_meta(
                promtail.SERVICE_ACCOUNT, instance.namespace, managed_labels(), instance.owner_reference()
            )
        }
        ctx.cluster.create_or_update(kinds.SERVICE_ACCOUNT, account)
        return StageStatus.SUCCESS

    def cleanup(self, ctx: PassContext, instance: Observability) -> StageStatus:
        ctx.cluster.delete(kinds.SERVICE_ACCOUNT, promtail.SERVICE_ACCOUNT, instance.namespace)
        return StageStatus.SUCCESS


class AlertmanagerInstallation:
    """Alertmanager CR reading its config from the merged routing secret."""

    def reconcile(self, ctx: PassContext, instance: Observability, status: ObservabilityStatus) -> StageStatus:
        alertmanager = {
            "metadata": object_meta(
                instance.alertmanager_name(), instance.namespace, managed_labels(), instance.owner_reference()
            ),
            "spec": {
                "replicas": 1,
                "configSecret": config_secret_name(instance),
                **_deployment_extras(instance),
            },
        }
        ctx.cluster.create_or_update(kinds.ALERTMANAGER, alertmanager)
        return StageStatus.SUCCESS

    def cleanup(self, ctx: PassContext, instance: Observability) -> StageStatus:
        """Delete the Alertmanager CR and its config secret."""
        ctx.cluster.delete(kinds.ALERTMANAGER, instance.alertmanager_name(), instance.namespace)
        ctx.cluster.delete(kinds.SECRET, config_secret_name(instance), instance.namespace)
        return StageStatus.SUCCESS
