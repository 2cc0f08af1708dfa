"""Kinds the operator reads or writes, and how each maps onto the kubernetes client."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ResourceKind:
    """Maps a kind to a kubernetes client API class and call names."""

    kind: str
    api_version: str
    plural: str
    api_class: str = "CustomObjectsApi"
    method_suffix: str = ""  # typed APIs only, e.g. read_namespaced_<suffix>
    namespaced: bool = True

    @property
    def custom(self) -> bool:
        return self.api_class == "CustomObjectsApi"

    @property
    def group(self) -> str:
        return self.api_version.rpartition("/")[0]

    @property
    def version(self) -> str:
        return self.api_version.rpartition("/")[2]

    def __str__(self) -> str:
        return self.kind


SECRET = ResourceKind("Secret", "v1", "secrets", "CoreV1Api", "secret")
CONFIG_MAP = ResourceKind("ConfigMap", "v1", "configmaps", "CoreV1Api", "config_map")
SERVICE = ResourceKind("Service", "v1", "services", "CoreV1Api", "service")
SERVICE_ACCOUNT = ResourceKind("ServiceAccount", "v1", "serviceaccounts", "CoreV1Api", "service_account")
NAMESPACE = ResourceKind("Namespace", "v1", "namespaces", "CoreV1Api", "namespace", namespaced=False)

DEPLOYMENT = ResourceKind("Deployment", "apps/v1", "deployments", "AppsV1Api", "deployment")
DAEMON_SET = ResourceKind("DaemonSet", "apps/v1", "daemonsets", "AppsV1Api", "daemon_set")
STATEFUL_SET = ResourceKind("StatefulSet", "apps/v1", "statefulsets", "AppsV1Api", "stateful_set")

GRAFANA = ResourceKind("Grafana", "integreatly.org/v1alpha1", "grafanas")
GRAFANA_DASHBOARD = ResourceKind("GrafanaDashboard", "integreatly.org/v1alpha1", "grafanadashboards")
GRAFANA_DATASOURCE = ResourceKind("GrafanaDataSource", "integreatly.org/v1alpha1", "grafanadatasources")

PROMETHEUS = ResourceKind("Prometheus", "monitoring.coreos.com/v1", "prometheuses")
PROMETHEUS_RULE = ResourceKind("PrometheusRule", "monitoring.coreos.com/v1", "prometheusrules")
POD_MONITOR = ResourceKind("PodMonitor", "monitoring.coreos.com/v1", "podmonitors")
ALERTMANAGER = ResourceKind("Alertmanager", "monitoring.coreos.com/v1", "alertmanagers")

CLUSTER_SERVICE_VERSION = ResourceKind(
    "ClusterServiceVersion", "operators.coreos.com/v1alpha1", "clusterserviceversions"
)
CLUSTER_VERSION = ResourceKind("ClusterVersion", "config.openshift.io/v1", "clusterversions", namespaced=False)

OBSERVABILITY = ResourceKind("Observability", "observability.redhat.com/v1", "observabilities")
