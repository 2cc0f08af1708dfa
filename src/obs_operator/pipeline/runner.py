"""Outer scheduling loop: reconcile instances on change or when their requeue delay expires."""

from __future__ import annotations

import logging
import time
from typing import Callable

from kubernetes.client.rest import ApiException
from pydantic import ValidationError

from obs_operator.api.types import Observability, StageStatus
from obs_operator.cluster import kinds
from obs_operator.cluster.client import ClusterClient
from obs_operator.config import Settings, get_settings
from obs_operator.fetch.fetcher import RepositoryFetcher, build_session
from obs_operator.pipeline.controller import ObservabilityController, ReconcileResult
from obs_operator.token.fetchers import TOKEN_FETCHERS
from obs_operator.token.manager import TokenManager

logger = logging.getLogger(__name__)


def build_controller(settings: Settings, cluster: ClusterClient | None = None) -> ObservabilityController:
    """Wire a controller from settings."""
    if cluster is None:
        cluster = ClusterClient.from_config(
            str(settings.kubeconfig) if settings.kubeconfig else None, settings.context
        )
    session = build_session()
    verify = not settings.insecure_skip_verify
    fetcher = RepositoryFetcher(session, timeout=settings.http_timeout_seconds, verify=verify)
    token_fetchers = {
        auth: cls(cluster, session, timeout=settings.http_timeout_seconds, verify=verify)
        for auth, cls in TOKEN_FETCHERS.items()
    }
    tokens = TokenManager(cluster, token_fetchers, margin_seconds=settings.token_refresh_margin_seconds)
    return ObservabilityController(cluster, fetcher, settings, tokens)


def _failed(controller: ObservabilityController, message: str) -> ReconcileResult:
    return ReconcileResult(
        stage=None,
        status=StageStatus.FAILED,
        requeue_after=controller.settings.failure_requeue_seconds,
        message=message,
    )


def reconcile_all(controller: ObservabilityController, namespace: str) -> list[ReconcileResult]:
    """One pass over every instance in the namespace."""
    try:
        objects = controller.cluster.list(kinds.OBSERVABILITY, namespace)
    except ApiException as e:
        logger.error("Cannot list instances in %s: %s", namespace, e.reason)
        return [_failed(controller, f"instance list failed: {e.reason}")]
    results = []
    for obj in objects:
        try:
            instance = Observability.from_object(obj)
        except ValidationError as e:
            logger.error("Ignoring malformed instance %s: %s", obj.get("metadata", {}).get("name"), e)
            continue
        try:
            result = controller.reconcile(instance)
        except ApiException as e:
            logger.error("Reconcile of %s/%s failed: %s", instance.namespace, instance.name, e.reason)
            result = _failed(controller, e.reason or str(e))
        logger.info(
            "Reconciled %s/%s: stage=%s status=%s next in %.0fs",
            instance.namespace,
            instance.name,
            result.stage.value if result.stage else "-",
            result.status.value,
            result.requeue_after,
        )
        results.append(result)
    return results


def run_operator(
    namespace: str | None = None,
    once: bool = False,
    settings: Settings | None = None,
    controller: ObservabilityController | None = None,
) -> list[ReconcileResult]:
    """Reconcile until interrupted, or once. Returns the results of the last pass."""
    settings = settings or get_settings()
    namespace = namespace or settings.namespace
    controller = controller or build_controller(settings)
    while True:
        results = reconcile_all(controller, namespace)
        if once:
            return results
        delay = min((r.requeue_after for r in results), default=settings.success_requeue_seconds)
        _wait_for_change(controller.cluster, namespace, delay)


def _wait_for_change(
    cluster: ClusterClient,
    namespace: str,
    delay: float,
    sleep: Callable[[float], None] = time.sleep,
) -> None:
    """Block until an instance changes or the delay elapses."""
    try:
        seen = {
            obj["metadata"]["name"]: obj["metadata"].get("resourceVersion")
            for obj in cluster.list(kinds.OBSERVABILITY, namespace)
        }
        for event in cluster.watch(kinds.OBSERVABILITY, namespace, timeout_seconds=max(1, int(delay))):
            meta = (event.get("object") or {}).get("metadata") or {}
            # the watch replays current objects first
            if event.get("type") != "DELETED" and seen.get(meta.get("name")) == meta.get("resourceVersion"):
                continue
            logger.debug("Instance %s %s, reconciling", meta.get("name"), str(event.get("type")).lower())
            return
    except ApiException as e:
        logger.warning("Watch on %s failed, retrying in %.0fs: %s", namespace, delay, e.reason)
        sleep(delay)
