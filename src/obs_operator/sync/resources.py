"""Resolve resource paths declared by indexes into fetchable, de-duplicated items."""

from __future__ import annotations

import logging
import posixpath
from dataclasses import dataclass
from typing import Any, Callable, Iterable

from obs_operator.api.index import RepositoryIndex
from obs_operator.fetch.fetcher import FetchError, RepositoryFetcher

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResourceInfo:
    """One remote document to materialize as a cluster object."""

    index_id: str
    name: str
    url: str
    access_token: str
    tag: str
    path: str

    @property
    def extension(self) -> str:
        return posixpath.splitext(self.path)[1].lower()


def name_from_path(path: str) -> str:
    """'dashboards/kafka.json' -> 'kafka'."""
    base = posixpath.basename(path.rstrip("/"))
    return posixpath.splitext(base)[0]


def unique_resources(
    indexes: Iterable[RepositoryIndex],
    paths: Callable[[RepositoryIndex], list[str]],
) -> list[ResourceInfo]:
    """First index (then first path) claiming a derived name wins."""
    seen: set[str] = set()
    out: list[ResourceInfo] = []
    for index in indexes:
        for path in paths(index):
            name = name_from_path(path)
            if not name:
                continue
            if name in seen:
                logger.debug("Resource %s from index %s shadowed by an earlier index", name, index.id)
                continue
            seen.add(name)
            out.append(
                ResourceInfo(
                    index_id=index.id,
                    name=name,
                    url=f"{index.base_url}/{path.lstrip('/')}",
                    access_token=index.access_token,
                    tag=index.tag,
                    path=path,
                )
            )
    return out


def fetch_objects(
    fetcher: RepositoryFetcher,
    resources: Iterable[ResourceInfo],
    build: Callable[[ResourceInfo, bytes], dict[str, Any] | None],
) -> list[dict[str, Any]]:
    """Fetch and build each resource; any failure skips only that resource."""
    objects = []
    for info in resources:
        try:
            body = fetcher.fetch_resource(info.url, info.access_token, info.tag)
        except FetchError as e:
            logger.error("Skipping %s from index %s: %s", info.name, info.index_id, e)
            continue
        try:
            obj = build(info, body)
        except (ValueError, TypeError, AttributeError) as e:
            logger.error("Skipping %s from index %s: cannot decode %s: %s", info.name, info.index_id, info.path, e)
            continue
        if obj is not None:
            objects.append(obj)
    return objects
