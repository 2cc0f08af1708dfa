"""Per-index log shipper (promtail) configs and daemonsets."""

from __future__ import annotations

import hashlib
import logging
from typing import Any

import yaml

from obs_operator.api.index import AuthType, ObservatoriumIndex, RepositoryIndex
from obs_operator.api.types import Observability
from obs_operator.cluster import kinds
from obs_operator.cluster.client import ClusterClient
from obs_operator.cluster.objects import COMPONENT_LABEL, NAME_LABEL, managed_labels, object_meta
from obs_operator.sync.converge import ConvergeResult, converge
from obs_operator.sync.token_refresher import LOGS, refresher_name, refresher_url
from obs_operator.token.manager import TOKEN_KEY, token_secret_name
from obs_operator.token.targets import resolve_target

logger = logging.getLogger(__name__)

COMPONENT = "log-shipper"
SERVICE_ACCOUNT = "kafka-promtail"
CONFIG_FILE = "promtail.yaml"
CONFIG_DIR = "/etc/promtail"
TOKEN_DIR = "/opt/secrets"
HTTP_PORT = 9080


def configmap_name(index_id: str) -> str:
    return f"promtail-config-{index_id}"


def daemonset_name(index_id: str) -> str:
    return f"promtail-{index_id}"


def _client(instance: Observability, target: ObservatoriumIndex) -> dict[str, Any] | None:
    if target.auth_type == AuthType.DEX:
        return {"url": target.logs_url(), "bearer_token_file": f"{TOKEN_DIR}/{TOKEN_KEY}"}
    if target.auth_type == AuthType.REDHAT:
        sso = target.redhat_sso_config
        if sso is None or not sso.has_auth_server() or not sso.has_logs():
            logger.error("Observatorium %s lacks SSO logs credentials", target.id)
            return None
        return {"url": refresher_url(refresher_name(LOGS, target.id), instance.namespace)}
    if target.auth_type == AuthType.NONE:
        return {"url": target.logs_url()}
    logger.error("Observatorium %s uses an unsupported auth type", target.id)
    return None


def render_config(client: dict[str, Any], namespaces: list[str]) -> str:
    config = {
        "server": {"http_listen_port": HTTP_PORT, "grpc_listen_port": 0},
        "positions": {"filename": "/tmp/positions.yaml"},
        "clients": [client],
        "scrape_configs": [
            {
                "job_name": "kubernetes-pods",
                "kubernetes_sd_configs": [{"role": "pod", "namespaces": {"names": namespaces}}],
                "relabel_configs": [
                    {"source_labels": ["__meta_kubernetes_namespace"], "target_label": "namespace"},
                    {"source_labels": ["__meta_kubernetes_pod_name"], "target_label": "pod"},
                    {"source_labels": ["__meta_kubernetes_pod_container_name"], "target_label": "container"},
                    {
                        "source_labels": ["__meta_kubernetes_pod_uid", "__meta_kubernetes_pod_container_name"],
                        "separator": "/",
                        "replacement": "/var/log/pods/*$1/*.log",
                        "target_label": "__path__",
                    },
                ],
            }
        ],
    }
    return yaml.safe_dump(config, sort_keys=False)


def _daemonset(
    instance: Observability,
    index_id: str,
    image: str,
    config_hash: str,
    token_secret: str | None,
) -> dict[str, Any]:
    name = daemonset_name(index_id)
    selector = {COMPONENT_LABEL: COMPONENT, NAME_LABEL: name}
    mounts = [
        {"name": "config", "mountPath": CONFIG_DIR},
        {"name": "pods", "mountPath": "/var/log/pods", "readOnly": True},
    ]
    volumes: list[dict[str, Any]] = [
        {"name": "config", "configMap": {"name": configmap_name(index_id)}},
        {"name": "pods", "hostPath": {"path": "/var/log/pods"}},
    ]
    if token_secret:
        mounts.append({"name": "token", "mountPath": TOKEN_DIR, "readOnly": True})
        volumes.append({"name": "token", "secret": {"secretName": token_secret}})
    return {
        "metadata": object_meta(name, instance.namespace, managed_labels(selector), instance.owner_reference()),
        "spec": {
            "selector": {"matchLabels": selector},
            "template": {
                "metadata": {"labels": selector},
                "spec": {
                    "serviceAccountName": SERVICE_ACCOUNT,
                    "containers": [
                        {
                            "name": "promtail",
                            "image": image,
                            "args": [f"-config.file={CONFIG_DIR}/{CONFIG_FILE}"],
                            "env": [{"name": "CONFIG_HASH", "value": config_hash}],
                            "ports": [{"name": "http", "containerPort": HTTP_PORT}],
                            "volumeMounts": mounts,
                        }
                    ],
                    "volumes": volumes,
                },
            },
        },
    }


def desired_promtail(
    cluster: ClusterClient,
    instance: Observability,
    indexes: list[RepositoryIndex],
    image: str,
) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
    """(configmaps, daemonsets) for every index that ships logs."""
    configmaps: list[dict[str, Any]] = []
    daemonsets: list[dict[str, Any]] = []
    if instance.external_sync_disabled() or instance.observatorium_disabled():
        return configmaps, daemonsets
    for index in indexes:
        promtail = index.config.promtail
        if promtail is None or not promtail.enabled or not promtail.observatorium:
            continue
        target = resolve_target(cluster, instance, index, promtail.observatorium)
        if target is None:
            continue
        if not target.is_valid():
            logger.error("Observatorium %s is missing gateway or tenant", target.id)
            continue
        client = _client(instance, target)
        if client is None:
            continue
        namespaces = sorted(
            ns["metadata"]["name"]
            for ns in cluster.list(kinds.NAMESPACE, labels=promtail.namespace_label_selector)
        )
        text = render_config(client, namespaces)
        config_hash = hashlib.sha256(text.encode()).hexdigest()
        labels = managed_labels({COMPONENT_LABEL: COMPONENT})
        configmaps.append(
            {
                "metadata": object_meta(
                    configmap_name(index.id), instance.namespace, labels, instance.owner_reference()
                ),
                "data": {CONFIG_FILE: text},
            }
        )
        token_secret = token_secret_name(target) if target.auth_type == AuthType.DEX else None
        daemonsets.append(_daemonset(instance, index.id, image, config_hash, token_secret))
    return configmaps, daemonsets


def sync_promtail(
    cluster: ClusterClient,
    instance: Observability,
    indexes: list[RepositoryIndex],
    image: str,
) -> list[ConvergeResult]:
    configmaps, daemonsets = desired_promtail(cluster, instance, indexes, image)
    selector = managed_labels({COMPONENT_LABEL: COMPONENT})
    return [
        converge(cluster, kinds.CONFIG_MAP, instance.namespace, configmaps, selector),
        converge(cluster, kinds.DAEMON_SET, instance.namespace, daemonsets, selector),
    ]
