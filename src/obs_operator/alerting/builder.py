"""Build the merged Alertmanager configuration from all repository indexes."""

from __future__ import annotations

import logging

from kubernetes.client.rest import ApiException

from obs_operator.api.alertmanager import (
    AlertmanagerConfigRoot,
    PagerDutyConfig,
    Receiver,
    Route,
    WebhookConfig,
)
from obs_operator.api.index import RepositoryIndex
from obs_operator.api.types import Observability
from obs_operator.cluster import kinds
from obs_operator.cluster.client import ApplyResult, ClusterClient
from obs_operator.cluster.objects import PROVENANCE_LABEL, encode_data, managed_labels, object_meta, secret_value

logger = logging.getLogger(__name__)

CONFIG_KEY = "alertmanager.yaml"
PAGERDUTY_KEYS = ("PAGERDUTY_KEY", "serviceKey")
SNITCH_URL_KEYS = ("SNITCH_URL", "url")
PAGERDUTY_PLACEHOLDER = "dummy"
SNITCH_PLACEHOLDER = "http://dummy"
SNITCH_REPEAT_INTERVAL = "5m"
DEADMANS_SWITCH_ALERT = "DeadMansSwitch"


def config_secret_name(instance: Observability) -> str:
    return f"alertmanager-{instance.alertmanager_name()}"


def _lookup(
    cluster: ClusterClient,
    instance: Observability,
    name: str,
    namespace: str,
    keys: tuple[str, ...],
    placeholder: str,
) -> str:
    """First present key of the named secret, or the placeholder."""
    if not name:
        return placeholder
    namespace = namespace or instance.namespace
    try:
        secret = cluster.get(kinds.SECRET, name, namespace)
        if secret is None:
            logger.error("Integration secret %s/%s not found, using placeholder", namespace, name)
            return placeholder
        for key in keys:
            value = secret_value(secret, key)
            if value:
                return value
    except ApiException as e:
        logger.error("Cannot read integration secret %s/%s: %s, using placeholder", namespace, name, e.reason)
        return placeholder
    except ValueError as e:
        logger.error("Integration secret %s/%s is undecodable: %s, using placeholder", namespace, name, e)
        return placeholder
    logger.error("Integration secret %s/%s has none of %s, using placeholder", namespace, name, ", ".join(keys))
    return placeholder


def build_alertmanager_config(
    cluster: ClusterClient,
    instance: Observability,
    indexes: list[RepositoryIndex],
) -> AlertmanagerConfigRoot:
    """Route critical alerts of each index to its paging service and its heartbeat to its snitch."""
    root = AlertmanagerConfigRoot()
    routes = root.route.routes if root.route.routes is not None else []
    for index in indexes:
        am = index.config.alertmanager
        if am is None:
            continue
        if not instance.pagerduty_disabled():
            receiver = f"{index.id}-pagerduty"
            key = _lookup(
                cluster, instance, am.pagerduty_secret_name, am.pagerduty_secret_namespace,
                PAGERDUTY_KEYS, PAGERDUTY_PLACEHOLDER,
            )
            root.receivers.append(Receiver(name=receiver, pagerduty_configs=[PagerDutyConfig(service_key=key)]))
            routes.append(Route(receiver=receiver, match={"severity": "critical", PROVENANCE_LABEL: index.id}))
        if not instance.deadmans_snitch_disabled():
            receiver = f"{index.id}-deadmanssnitch"
            url = _lookup(
                cluster, instance, am.deadmans_snitch_secret_name, am.deadmans_snitch_secret_namespace,
                SNITCH_URL_KEYS, SNITCH_PLACEHOLDER,
            )
            root.receivers.append(Receiver(name=receiver, webhook_configs=[WebhookConfig(url=url)]))
            routes.append(
                Route(
                    receiver=receiver,
                    match={"alertname": DEADMANS_SWITCH_ALERT, PROVENANCE_LABEL: index.id},
                    repeat_interval=SNITCH_REPEAT_INTERVAL,
                )
            )
    root.route.routes = routes
    return root


def reconcile_alertmanager_secret(
    cluster: ClusterClient,
    instance: Observability,
    indexes: list[RepositoryIndex],
) -> ApplyResult:
    """Overwrite the Alertmanager config secret with a freshly built document."""
    config = build_alertmanager_config(cluster, instance, indexes)
    secret = {
        "metadata": object_meta(
            config_secret_name(instance), instance.namespace, managed_labels(), instance.owner_reference()
        ),
        "type": "Opaque",
        "data": encode_data({CONFIG_KEY: config.to_yaml()}),
    }
    return cluster.create_or_update(kinds.SECRET, secret)
