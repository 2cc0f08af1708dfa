"""Token-refresher proxies for backends that authenticate through an SSO server."""

from __future__ import annotations

import logging
from typing import Any

from obs_operator.api.index import AuthType, ObservatoriumIndex, RepositoryIndex
from obs_operator.api.types import Observability
from obs_operator.cluster import kinds
from obs_operator.cluster.client import ClusterClient
from obs_operator.cluster.objects import COMPONENT_LABEL, NAME_LABEL, managed_labels, object_meta
from obs_operator.sync.converge import ConvergeResult, converge
from obs_operator.token.targets import targets_of

logger = logging.getLogger(__name__)

METRICS = "metrics"
LOGS = "logs"
COMPONENT = "authentication-proxy"
PROXY_PORT = 80
TARGET_PORT = 8080
OIDC_AUDIENCE = "observatorium-telemeter"


def refresher_name(signal: str, target_id: str) -> str:
    return f"token-refresher-{signal}-{target_id}"


def refresher_url(name: str, namespace: str) -> str:
    return f"http://{name}.{namespace}.svc.cluster.local"


def _selector_labels(name: str) -> dict[str, str]:
    return {COMPONENT_LABEL: COMPONENT, NAME_LABEL: name}


def _service(instance: Observability, name: str) -> dict[str, Any]:
    return {
        "metadata": object_meta(
            name, instance.namespace, managed_labels(_selector_labels(name)), instance.owner_reference()
        ),
        "spec": {
            "selector": _selector_labels(name),
            "ports": [{"name": "http", "port": PROXY_PORT, "targetPort": TARGET_PORT, "protocol": "TCP"}],
        },
    }


def _deployment(
    instance: Observability,
    name: str,
    image: str,
    url: str,
    client_id: str,
    client_secret: str,
    issuer_url: str,
) -> dict[str, Any]:
    labels = _selector_labels(name)
    return {
        "metadata": object_meta(name, instance.namespace, managed_labels(labels), instance.owner_reference()),
        "spec": {
            "replicas": 1,
            "selector": {"matchLabels": labels},
            "template": {
                "metadata": {"labels": labels},
                "spec": {
                    "containers": [
                        {
                            "name": "token-refresher",
                            "image": image,
                            "args": [
                                f"--oidc.audience={OIDC_AUDIENCE}",
                                "--log.level=debug",
                                f"--oidc.client-id={client_id}",
                                f"--oidc.client-secret={client_secret}",
                                f"--oidc.issuer-url={issuer_url}",
                                f"--url={url}",
                            ],
                            "ports": [{"name": "http", "containerPort": TARGET_PORT}],
                        }
                    ],
                },
            },
        },
    }


def desired_refreshers(
    cluster: ClusterClient,
    instance: Observability,
    indexes: list[RepositoryIndex],
    image: str,
) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
    """(services, deployments) for every SSO-authenticated target."""
    services: list[dict[str, Any]] = []
    deployments: list[dict[str, Any]] = []
    if instance.observatorium_disabled():
        return services, deployments
    seen: set[str] = set()
    for index in indexes:
        for target in targets_of(cluster, instance, index):
            if target.auth_type != AuthType.REDHAT:
                continue
            for name, spec in _proxy_specs(index, target):
                if name in seen:
                    continue
                seen.add(name)
                services.append(_service(instance, name))
                deployments.append(_deployment(instance, name, image, **spec))
    return services, deployments


def _proxy_specs(index: RepositoryIndex, target: ObservatoriumIndex) -> list[tuple[str, dict[str, str]]]:
    sso = target.redhat_sso_config
    if not target.is_valid():
        logger.error("Observatorium %s is missing gateway or tenant", target.id)
        return []
    if sso is None or not sso.has_auth_server():
        logger.error("Observatorium %s has no SSO auth server configured", target.id)
        return []
    specs = []
    if sso.has_metrics():
        specs.append(
            (
                refresher_name(METRICS, target.id),
                {
                    "url": target.metrics_url(),
                    "client_id": sso.metrics_client,
                    "client_secret": sso.metrics_secret,
                    "issuer_url": sso.auth_url(),
                },
            )
        )
    if sso.has_logs() and index.promtail_enabled():
        specs.append(
            (
                refresher_name(LOGS, target.id),
                {
                    "url": target.logs_url(),
                    "client_id": sso.logs_client,
                    "client_secret": sso.logs_secret,
                    "issuer_url": sso.auth_url(),
                },
            )
        )
    return specs


def sync_token_refreshers(
    cluster: ClusterClient,
    instance: Observability,
    indexes: list[RepositoryIndex],
    image: str,
) -> list[ConvergeResult]:
    services, deployments = desired_refreshers(cluster, instance, indexes, image)
    selector = managed_labels({COMPONENT_LABEL: COMPONENT})
    return [
        converge(cluster, kinds.SERVICE, instance.namespace, services, selector),
        converge(cluster, kinds.DEPLOYMENT, instance.namespace, deployments, selector),
    ]
