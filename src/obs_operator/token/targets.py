"""Resolve backend targets, filling fields kept in a referenced secret."""

from __future__ import annotations

import logging

from kubernetes.client.rest import ApiException

from obs_operator.api.index import DexConfig, ObservatoriumIndex, RedhatSsoConfig, RepositoryIndex
from obs_operator.api.types import Observability
from obs_operator.cluster import kinds
from obs_operator.cluster.client import ClusterClient
from obs_operator.cluster.objects import secret_value

logger = logging.getLogger(__name__)

# secret key -> target field
_TARGET_KEYS = {"authType": "auth_type", "gateway": "gateway", "tenant": "tenant"}
_DEX_KEYS = {"dexUrl": "url", "dexUsername": "username", "dexPassword": "password", "dexSecret": "secret"}
_SSO_KEYS = {
    "redHatSsoAuthServerUrl": "url",
    "redHatSsoRealm": "realm",
    "metricsClient": "metrics_client",
    "metricsSecret": "metrics_secret",
    "logsClient": "logs_client",
    "logsSecret": "logs_secret",
}


def _fill(values: dict[str, str], secret: dict, keys: dict[str, str]) -> dict[str, str]:
    out = dict(values)
    for key, field in keys.items():
        if not out.get(field):
            value = secret_value(secret, key)
            if value:
                out[field] = value
    return out


def resolve_target(
    cluster: ClusterClient,
    instance: Observability,
    index: RepositoryIndex,
    target_id: str,
) -> ObservatoriumIndex | None:
    """Look up a target by id; None (logged) when it is missing or its secret is unreadable."""
    target = index.get_observatorium(target_id)
    if target is None:
        logger.error("Index %s references unknown observatorium %r", index.id, target_id)
        return None
    if not target.secret_name:
        return target
    namespace = target.secret_namespace or instance.namespace
    try:
        secret = cluster.get(kinds.SECRET, target.secret_name, namespace)
    except ApiException as e:
        logger.error("Cannot read secret %s/%s for observatorium %s: %s", namespace, target.secret_name, target.id, e.reason)
        return None
    if secret is None:
        logger.error("Secret %s/%s for observatorium %s not found", namespace, target.secret_name, target.id)
        return None

    try:
        fields = _fill(
            {"auth_type": target.auth_type.value, "gateway": target.gateway, "tenant": target.tenant},
            secret,
            _TARGET_KEYS,
        )
        dex = _fill((target.dex_config or DexConfig()).model_dump(), secret, _DEX_KEYS)
        sso = _fill((target.redhat_sso_config or RedhatSsoConfig()).model_dump(), secret, _SSO_KEYS)
    except ValueError as e:
        logger.error("Secret %s/%s for observatorium %s is undecodable: %s", namespace, target.secret_name, target.id, e)
        return None
    return ObservatoriumIndex.model_validate(
        {
            **fields,
            "id": target.id,
            "dex_config": dex if any(dex.values()) else None,
            "redhat_sso_config": sso if any(sso.values()) else None,
        }
    )


def targets_of(
    cluster: ClusterClient,
    instance: Observability,
    index: RepositoryIndex,
) -> list[ObservatoriumIndex]:
    """Every resolvable target declared by an index."""
    resolved = []
    for target in index.config.observatoria:
        found = resolve_target(cluster, instance, index, target.id)
        if found is not None:
            resolved.append(found)
    return resolved
