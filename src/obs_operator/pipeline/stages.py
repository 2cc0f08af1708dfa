"""Token, configuration, cleanup and migration stages, and the fixed stage order."""

from __future__ import annotations

import logging

from obs_operator.alerting.builder import reconcile_alertmanager_secret
from obs_operator.api.types import LEGACY_PROMETHEUS_NAME, Observability, ObservabilityStatus, StageName, StageStatus
from obs_operator.cluster import kinds
from obs_operator.pipeline.context import PassContext, StageReconciler
from obs_operator.pipeline.install import (
    AlertmanagerInstallation,
    GrafanaConfiguration,
    GrafanaInstallation,
    PrometheusConfiguration,
    PrometheusInstallation,
    PrometheusRules,
    PromtailInstallation,
)

logger = logging.getLogger(__name__)

# Operators that used to be installed through OLM and are now managed directly
LEGACY_CSV_PREFIXES = ("grafana-operator.", "prometheusoperator.")


class CsvRemoval:
    """Removes legacy operator CSVs on teardown. Nothing to do while running."""

    def reconcile(self, ctx: PassContext, instance: Observability, status: ObservabilityStatus) -> StageStatus:
        return StageStatus.SUCCESS

    def cleanup(self, ctx: PassContext, instance: Observability) -> StageStatus:
        """Delete matching CSVs; in progress until none are left."""
        deleted = False
        for csv in ctx.cluster.list(kinds.CLUSTER_SERVICE_VERSION, instance.namespace):
            name = csv["metadata"]["name"]
            if name.startswith(LEGACY_CSV_PREFIXES):
                deleted = ctx.cluster.delete(kinds.CLUSTER_SERVICE_VERSION, name, instance.namespace) or deleted
        return StageStatus.IN_PROGRESS if deleted else StageStatus.SUCCESS


class TokenRequest:
    """Keep backend tokens fresh and record the earliest expiry."""

    def reconcile(self, ctx: PassContext, instance: Observability, status: ObservabilityStatus) -> StageStatus:
        status.token_expires = ctx.tokens.reconcile(instance, ctx.indexes)
        return StageStatus.SUCCESS

    def cleanup(self, ctx: PassContext, instance: Observability) -> StageStatus:
        ctx.tokens.cleanup(instance)
        return StageStatus.SUCCESS


class Configuration:
    """Synchronize repository-declared objects and the alert routing config."""

    def due(self, ctx: PassContext, instance: Observability, status: ObservabilityStatus) -> bool:
        period = instance.resync_seconds()
        if not period or not status.dashboards_last_synced:
            return True
        if ctx.now() >= status.dashboards_last_synced + period:
            return True
        return ctx.tokens.any_expired(instance)

    def reconcile(self, ctx: PassContext, instance: Observability, status: ObservabilityStatus) -> StageStatus:
        if not self.due(ctx, instance, status):
            logger.debug("Configuration of %s/%s is fresh, skipping sync", instance.namespace, instance.name)
            return StageStatus.SUCCESS
        ctx.synchronizer.sync(instance, ctx.indexes)
        reconcile_alertmanager_secret(ctx.cluster, instance, ctx.indexes)
        if instance.resync_seconds():
            status.dashboards_last_synced = ctx.now()
        return StageStatus.SUCCESS

    def cleanup(self, ctx: PassContext, instance: Observability) -> StageStatus:
        ctx.synchronizer.cleanup(instance)
        return StageStatus.SUCCESS


class Migration:
    """Remove Prometheus objects left behind under the legacy name, once."""

    def reconcile(self, ctx: PassContext, instance: Observability, status: ObservabilityStatus) -> StageStatus:
        if status.migrated:
            return StageStatus.SUCCESS
        if instance.prometheus_name() != LEGACY_PROMETHEUS_NAME:
            for kind in (kinds.PROMETHEUS, kinds.SERVICE, kinds.SERVICE_ACCOUNT):
                ctx.cluster.delete(kind, LEGACY_PROMETHEUS_NAME, instance.namespace)
            statefulset = f"prometheus-{LEGACY_PROMETHEUS_NAME}"
            if ctx.cluster.get(kinds.STATEFUL_SET, statefulset, instance.namespace) is not None:
                return StageStatus.IN_PROGRESS
        status.migrated = True
        return StageStatus.SUCCESS

    def cleanup(self, ctx: PassContext, instance: Observability) -> StageStatus:
        return StageStatus.SUCCESS


def default_stages() -> list[tuple[StageName, StageReconciler]]:
    return [
        (StageName.GRAFANA_INSTALLATION, GrafanaInstallation()),
        (StageName.GRAFANA_CONFIGURATION, GrafanaConfiguration()),
        (StageName.PROMETHEUS_INSTALLATION, PrometheusInstallation()),
        (StageName.PROMETHEUS_CONFIGURATION, PrometheusConfiguration()),
        (StageName.PROMETHEUS_RULES, PrometheusRules()),
        (StageName.CSV_REMOVAL, CsvRemoval()),
        (StageName.TOKEN_REQUEST, TokenRequest()),
        (StageName.PROMTAIL_INSTALLATION, PromtailInstallation()),
        (StageName.ALERTMANAGER_INSTALLATION, AlertmanagerInstallation()),
        (StageName.CONFIGURATION, Configuration()),
        (StageName.MIGRATION, Migration()),
    ]
