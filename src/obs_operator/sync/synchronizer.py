"""Drift-based synchronization of repository-declared objects."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable

from obs_operator.api.index import RepositoryIndex
from obs_operator.api.types import Observability
from obs_operator.cluster import kinds
from obs_operator.cluster.client import ClusterClient
from obs_operator.cluster.kinds import ResourceKind
from obs_operator.cluster.objects import PROVENANCE_LABEL, managed_labels
from obs_operator.fetch.fetcher import RepositoryFetcher
from obs_operator.sync.converge import ConvergeResult, converge
from obs_operator.sync.documents import build_dashboard, build_pod_monitor, build_rule
from obs_operator.sync.promtail import sync_promtail
from obs_operator.sync.resources import ResourceInfo, fetch_objects, unique_resources
from obs_operator.sync.token_refresher import sync_token_refreshers

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DocumentSource:
    """Where a document kind is declared in an index and how it becomes an object."""

    kind: ResourceKind
    paths: Callable[[RepositoryIndex], list[str]]
    build: Callable[[Observability, ResourceInfo, bytes], dict[str, Any] | None]


def _dashboard_paths(index: RepositoryIndex) -> list[str]:
    return index.config.grafana.dashboards if index.config.grafana else []


def _rule_paths(index: RepositoryIndex) -> list[str]:
    return index.config.prometheus.rules if index.config.prometheus else []


def _pod_monitor_paths(index: RepositoryIndex) -> list[str]:
    return index.config.prometheus.pod_monitors if index.config.prometheus else []


def _from_repository(obj: dict[str, Any]) -> bool:
    return PROVENANCE_LABEL in (obj["metadata"].get("labels") or {})


DASHBOARDS = DocumentSource(kinds.GRAFANA_DASHBOARD, _dashboard_paths, build_dashboard)
RULES = DocumentSource(kinds.PROMETHEUS_RULE, _rule_paths, build_rule)
POD_MONITORS = DocumentSource(kinds.POD_MONITOR, _pod_monitor_paths, build_pod_monitor)

DOCUMENT_SOURCES = (DASHBOARDS, RULES, POD_MONITORS)


class ResourceSynchronizer:
    """Makes managed objects in the instance namespace match the repository indexes."""

    def __init__(
        self,
        cluster: ClusterClient,
        fetcher: RepositoryFetcher,
        token_refresher_image: str,
        promtail_image: str,
    ) -> None:
        self._cluster = cluster
        self._fetcher = fetcher
        self._token_refresher_image = token_refresher_image
        self._promtail_image = promtail_image

    def sync_documents(
        self,
        source: DocumentSource,
        instance: Observability,
        indexes: list[RepositoryIndex],
    ) -> ConvergeResult:
        resources = unique_resources(indexes, source.paths)
        desired = fetch_objects(
            self._fetcher, resources, lambda info, body: source.build(instance, info, body)
        )
        return converge(
            self._cluster,
            source.kind,
            instance.namespace,
            desired,
            managed_labels(),
            declared=[r.name for r in resources],
            owned=_from_repository,
        )

    def sync(self, instance: Observability, indexes: list[RepositoryIndex]) -> list[ConvergeResult]:
        """Converge every synchronized kind; with no indexes every managed object is pruned."""
        results = [self.sync_documents(source, instance, indexes) for source in DOCUMENT_SOURCES]
        results.extend(sync_token_refreshers(self._cluster, instance, indexes, self._token_refresher_image))
        results.extend(sync_promtail(self._cluster, instance, indexes, self._promtail_image))
        return results

    def cleanup(self, instance: Observability) -> None:
        """Remove every object this synchronizer manages."""
        self.sync(instance, [])
