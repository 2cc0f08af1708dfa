"""Discover repository bindings and resolve their indexes."""

from __future__ import annotations

import logging

from obs_operator.api.index import RepositoryIndex, RepositoryInfo
from obs_operator.api.types import Observability
from obs_operator.cluster import kinds
from obs_operator.cluster.client import ClusterClient
from obs_operator.fetch.fetcher import FetchError, RepositoryFetcher, is_valid_url

logger = logging.getLogger(__name__)

# ConfigMap keys of a repository binding
REPOSITORY_KEY = "repository"
CHANNEL_KEY = "channel"
ACCESS_TOKEN_KEY = "access_token"
TAG_KEY = "tag"


def list_repositories(cluster: ClusterClient, instance: Observability) -> list[RepositoryInfo]:
    """Repository bindings selected by the instance's configuration selector."""
    selector = instance.spec.configuration_selector
    if selector is None or not selector.match_labels:
        return []
    repos: list[RepositoryInfo] = []
    for cm in cluster.list(kinds.CONFIG_MAP, labels=selector.match_labels):
        data = cm.get("data") or {}
        name = cm["metadata"]["name"]
        url = data.get(REPOSITORY_KEY, "")
        if not is_valid_url(url):
            logger.warning("Repository binding %s has invalid url %r, skipping", name, url)
            continue
        repos.append(
            RepositoryInfo(
                repository=url,
                channel=data.get(CHANNEL_KEY) or "resources",
                access_token=data.get(ACCESS_TOKEN_KEY, ""),
                tag=data.get(TAG_KEY, ""),
            )
        )
    return repos


def resolve_indexes(
    cluster: ClusterClient,
    fetcher: RepositoryFetcher,
    instance: Observability,
) -> list[RepositoryIndex]:
    """Fetch the index of every bound repository; failing ones are skipped."""
    if instance.external_sync_disabled():
        return []
    indexes: list[RepositoryIndex] = []
    for repo in list_repositories(cluster, instance):
        try:
            indexes.append(fetcher.fetch_index(repo))
        except FetchError as e:
            logger.error("Skipping repository %s: %s", repo.repository, e)
    return indexes
