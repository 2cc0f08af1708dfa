"""Shared fixtures: an in-memory cluster and a canned repository fetcher."""

from __future__ import annotations

import copy
import json
from typing import Any

import pytest
from kubernetes.client.rest import ApiException

from obs_operator.api.types import FINALIZER, Observability
from obs_operator.cluster import kinds
from obs_operator.cluster.client import ClusterClient
from obs_operator.cluster.kinds import ResourceKind
from obs_operator.cluster.objects import encode_data
from obs_operator.config import Settings
from obs_operator.fetch.fetcher import FetchError, RepositoryFetcher

NAMESPACE = "obs"
REPO_URL = "https://repo.example.com/config"
BINDING_LABELS = {"app": "obs-config"}
NOW = 1_700_000_000


def _parse_selector(selector: str) -> dict[str, str]:
    if not selector:
        return {}
    return dict(part.split("=", 1) for part in selector.split(","))


class FakeCluster(ClusterClient):
    """ClusterClient whose raw API primitives work on an in-memory store."""

    def __init__(self) -> None:
        super().__init__(None)
        self.objects: dict[tuple[str, str, str], dict[str, Any]] = {}
        self.writes: list[tuple[str, str, str]] = []
        self.forbidden: set[str] = set()  # namespaces whose reads are denied
        self._version = 0

    def _key(self, kind: ResourceKind, namespace: str | None, name: str) -> tuple[str, str, str]:
        return kind.kind, (namespace or "") if kind.namespaced else "", name

    def _bump(self, obj: dict[str, Any]) -> None:
        self._version += 1
        obj["metadata"]["resourceVersion"] = str(self._version)

    def seed(self, kind: ResourceKind, obj: dict[str, Any]) -> dict[str, Any]:
        stored = {"apiVersion": kind.api_version, "kind": kind.kind, **copy.deepcopy(obj)}
        self._bump(stored)
        meta = stored["metadata"]
        self.objects[self._key(kind, meta.get("namespace"), meta["name"])] = stored
        return stored

    def stored(self, kind: ResourceKind, name: str, namespace: str = NAMESPACE) -> dict[str, Any] | None:
        return self.objects.get(self._key(kind, namespace, name))

    def names(self, kind: ResourceKind, namespace: str = NAMESPACE) -> set[str]:
        return {k[2] for k in self.objects if k[0] == kind.kind and k[1] == namespace}

    def mutations(self) -> int:
        return len(self.writes)

    def _read(self, kind, name, namespace):
        if namespace in self.forbidden:
            raise ApiException(status=403, reason="Forbidden")
        obj = self.objects.get(self._key(kind, namespace, name))
        return copy.deepcopy(obj) if obj is not None else None

    def _list(self, kind, namespace, label_selector):
        wanted = _parse_selector(label_selector)
        out = []
        for (k, ns, _), obj in sorted(self.objects.items()):
            if k != kind.kind or (namespace and kind.namespaced and ns != namespace):
                continue
            labels = obj["metadata"].get("labels") or {}
            if all(labels.get(key) == value for key, value in wanted.items()):
                out.append(copy.deepcopy(obj))
        return out

    def _create(self, kind, body):
        meta = body["metadata"]
        key = self._key(kind, meta.get("namespace"), meta["name"])
        if key in self.objects:
            raise ApiException(status=409, reason="AlreadyExists")
        self.seed(kind, body)
        self.writes.append(("create", kind.kind, meta["name"]))

    def _replace(self, kind, body):
        meta = body["metadata"]
        key = self._key(kind, meta.get("namespace"), meta["name"])
        current = self.objects.get(key)
        if current is None:
            raise ApiException(status=404, reason="NotFound")
        if meta.get("resourceVersion") != current["metadata"]["resourceVersion"]:
            raise ApiException(status=409, reason="Conflict")
        self.seed(kind, body)
        self.writes.append(("replace", kind.kind, meta["name"]))

    def _delete(self, kind, name, namespace):
        key = self._key(kind, namespace, name)
        if key not in self.objects:
            raise ApiException(status=404, reason="NotFound")
        del self.objects[key]
        self.writes.append(("delete", kind.kind, name))

    def _patch(self, kind, name, namespace, body, subresource=None):
        obj = self.objects[self._key(kind, namespace, name)]
        if subresource == "status":
            obj["status"] = copy.deepcopy(body["status"])
            self.writes.append(("status", kind.kind, name))
        else:
            obj["metadata"].update(copy.deepcopy(body["metadata"]))
            self.writes.append(("patch", kind.kind, name))
        self._bump(obj)


class StubFetcher(RepositoryFetcher):
    """Serves canned documents by URL; anything else is a 404."""

    def __init__(self, documents: dict[str, Any] | None = None) -> None:
        super().__init__(session=None)
        self.documents: dict[str, Any] = dict(documents or {})
        self.calls: list[str] = []

    def add(self, url: str, document: Any) -> None:
        self.documents[url] = document

    def fetch_resource(self, url: str, access_token: str = "", tag: str = "") -> bytes:
        self.calls.append(url)
        if url not in self.documents:
            raise FetchError(f"unexpected status 404 from {url}")
        document = self.documents[url]
        if isinstance(document, Exception):
            raise document
        if isinstance(document, bytes):
            return document
        if isinstance(document, str):
            return document.encode()
        return json.dumps(document).encode()


def make_instance(namespace: str = NAMESPACE, status: dict[str, Any] | None = None, **spec: Any) -> Observability:
    spec.setdefault("configurationSelector", {"matchLabels": BINDING_LABELS})
    return Observability.from_object(
        {
            "metadata": {
                "name": "observability-stack",
                "namespace": namespace,
                "uid": "uid-1",
                "finalizers": [FINALIZER],
            },
            "spec": spec,
            "status": status or {},
        }
    )


def seed_binding(cluster: FakeCluster, name: str = "repo", url: str = REPO_URL, tag: str = "") -> None:
    data = {"repository": url, "channel": "resources", "access_token": "gh-token"}
    if tag:
        data["tag"] = tag
    cluster.seed(
        kinds.CONFIG_MAP,
        {"metadata": {"name": name, "namespace": NAMESPACE, "labels": BINDING_LABELS}, "data": data},
    )


def seed_secret(cluster: FakeCluster, name: str, values: dict[str, str], namespace: str = NAMESPACE) -> None:
    cluster.seed(kinds.SECRET, {"metadata": {"name": name, "namespace": namespace}, "data": encode_data(values)})


def seed_instance(cluster: FakeCluster, instance: Observability) -> None:
    cluster.seed(kinds.OBSERVABILITY, instance.model_dump(mode="json", by_alias=True))


@pytest.fixture
def cluster() -> FakeCluster:
    return FakeCluster()


@pytest.fixture
def fetcher() -> StubFetcher:
    return StubFetcher()


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, namespace=NAMESPACE)


@pytest.fixture
def instance() -> Observability:
    return make_instance()
