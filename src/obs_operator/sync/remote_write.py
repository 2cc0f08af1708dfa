"""Prometheus remote-write entries for backend targets."""

from __future__ import annotations

import logging
from typing import Any

from obs_operator.api.index import AuthType, ObservatoriumIndex, RepositoryIndex
from obs_operator.api.types import Observability
from obs_operator.cluster.client import ClusterClient
from obs_operator.fetch.fetcher import FetchError, RepositoryFetcher
from obs_operator.sync.token_refresher import METRICS, refresher_name, refresher_url
from obs_operator.token.manager import TOKEN_KEY, token_secret_name
from obs_operator.token.targets import resolve_target

logger = logging.getLogger(__name__)

# Where the Prometheus operator mounts entries of Prometheus.spec.secrets
PROMETHEUS_SECRETS_DIR = "/etc/prometheus/secrets"


def _patterns(document: Any) -> list[str]:
    if isinstance(document, dict):
        document = document.get("patterns")
    if not isinstance(document, list):
        return []
    return [str(p) for p in document if p]


def _endpoint(
    instance: Observability,
    target: ObservatoriumIndex,
    token_secrets: set[str],
) -> dict[str, Any] | None:
    if target.auth_type == AuthType.DEX:
        secret = token_secret_name(target)
        if secret not in token_secrets:
            logger.warning("No token yet for observatorium %s, remote write deferred", target.id)
            return None
        return {"url": target.metrics_url(), "bearerTokenFile": f"{PROMETHEUS_SECRETS_DIR}/{secret}/{TOKEN_KEY}"}
    if target.auth_type == AuthType.REDHAT:
        sso = target.redhat_sso_config
        if sso is None or not sso.has_auth_server() or not sso.has_metrics():
            logger.error("Observatorium %s lacks SSO metrics credentials", target.id)
            return None
        return {"url": refresher_url(refresher_name(METRICS, target.id), instance.namespace)}
    if target.auth_type == AuthType.NONE:
        return {"url": target.metrics_url()}
    logger.error("Observatorium %s uses an unsupported auth type", target.id)
    return None


def remote_write_specs(
    cluster: ClusterClient,
    fetcher: RepositoryFetcher,
    instance: Observability,
    indexes: list[RepositoryIndex],
    token_secrets: set[str],
) -> list[dict[str, Any]]:
    """One remote-write entry per index that ships metrics to a resolvable target."""
    if instance.observatorium_disabled():
        return []
    specs: list[dict[str, Any]] = []
    urls: set[str] = set()
    for index in indexes:
        prom = index.config.prometheus
        if prom is None or not prom.remote_write or not prom.observatorium:
            continue
        target = resolve_target(cluster, instance, index, prom.observatorium)
        if target is None:
            continue
        if not target.is_valid():
            logger.error("Observatorium %s is missing gateway or tenant", target.id)
            continue
        endpoint = _endpoint(instance, target, token_secrets)
        if endpoint is None or endpoint["url"] in urls:
            continue
        url = f"{index.base_url}/{prom.remote_write.lstrip('/')}"
        try:
            patterns = _patterns(fetcher.fetch_document(url, index.access_token, index.tag))
        except FetchError as e:
            logger.error("Skipping remote write for index %s: %s", index.id, e)
            continue
        if patterns:
            endpoint["writeRelabelConfigs"] = [
                {"sourceLabels": ["__name__"], "regex": "|".join(patterns), "action": "keep"}
            ]
        urls.add(endpoint["url"])
        specs.append(endpoint)
    return specs
