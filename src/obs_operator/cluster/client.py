"""Thin dict-based client over the kubernetes API with create-or-update semantics."""

from __future__ import annotations

import copy
import logging
from enum import Enum
from typing import Any, Iterator

from kubernetes import client, config, watch
from kubernetes.client.rest import ApiException

from obs_operator.cluster.kinds import ResourceKind

logger = logging.getLogger(__name__)

# Attempts for create-or-update when the API server reports a write conflict
CONFLICT_RETRIES = 3

# Top-level fields replaced wholesale instead of merged into the live object
_REPLACED_FIELDS = ("data", "stringData", "binaryData")
_SKIPPED_FIELDS = ("apiVersion", "kind", "metadata", "status")


class ApplyResult(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


def load_kube_config(kubeconfig_path: str | None, context: str | None) -> client.Configuration:
    """Explicit kubeconfig or context first, then the service account, then the default kubeconfig."""
    if not kubeconfig_path and not context:
        try:
            config.load_incluster_config()
            logger.info("Using in-cluster service account credentials")
            return client.Configuration.get_default_copy()
        except config.ConfigException:
            logger.debug("Not running in a cluster, falling back to kubeconfig")
    config.load_kube_config(config_file=kubeconfig_path, context=context)
    logger.info("Using kubeconfig %s (context %s)", kubeconfig_path or "default", context or "current")
    return client.Configuration.get_default_copy()


def _overlay(live: Any, desired: Any) -> Any:
    """Lay desired values over a live value, keeping server-populated keys."""
    if isinstance(live, dict) and isinstance(desired, dict):
        out = dict(live)
        for key, value in desired.items():
            out[key] = _overlay(live.get(key), value)
        return out
    if isinstance(live, list) and isinstance(desired, list) and len(live) == len(desired):
        return [_overlay(a, b) for a, b in zip(live, desired)]
    return copy.deepcopy(desired)


def merge_object(existing: dict[str, Any], desired: dict[str, Any]) -> dict[str, Any]:
    """Return the live object updated with every field the desired object declares."""
    merged = copy.deepcopy(existing)
    meta = merged.setdefault("metadata", {})
    want = desired.get("metadata", {})
    for key in ("labels", "annotations"):
        if want.get(key):
            meta[key] = {**(meta.get(key) or {}), **want[key]}
    if "ownerReferences" in want:
        meta["ownerReferences"] = _overlay(meta.get("ownerReferences"), want["ownerReferences"])
    for key, value in desired.items():
        if key in _SKIPPED_FIELDS:
            continue
        if key in _REPLACED_FIELDS:
            merged[key] = copy.deepcopy(value)
        else:
            merged[key] = _overlay(merged.get(key), value)
    return merged


def _selector(labels: dict[str, str] | None) -> str:
    if not labels:
        return ""
    return ",".join(f"{k}={v}" for k, v in sorted(labels.items()))


class ClusterClient:
    """Reads and writes cluster objects as plain dicts.

    All API traffic goes through the ``_read``/``_list``/``_create``/``_replace``/
    ``_delete``/``_patch`` primitives; everything above them is pure object logic.
    """

    def __init__(self, api_client: client.ApiClient | None = None) -> None:
        self._api_client = api_client
        self._apis: dict[str, Any] = {}

    @classmethod
    def from_config(cls, kubeconfig: str | None = None, context: str | None = None) -> ClusterClient:
        cfg = load_kube_config(kubeconfig, context)
        return cls(client.ApiClient(cfg))

    # Public operations

    def get(self, kind: ResourceKind, name: str, namespace: str | None = None) -> dict[str, Any] | None:
        """Return the object, or None if it does not exist."""
        return self._read(kind, name, namespace)

    def list(
        self,
        kind: ResourceKind,
        namespace: str | None = None,
        labels: dict[str, str] | None = None,
    ) -> list[dict[str, Any]]:
        """List objects, across all namespaces when namespace is None."""
        return self._list(kind, namespace, _selector(labels))

    def create_or_update(self, kind: ResourceKind, obj: dict[str, Any]) -> ApplyResult:
        """Make the live object carry every field of obj. No write when nothing differs."""
        meta = obj["metadata"]
        attempt = 1
        while True:
            try:
                result = self._apply_once(kind, obj)
                break
            except ApiException as e:
                if e.status != 409 or attempt >= CONFLICT_RETRIES:
                    raise
                logger.debug(
                    "Conflict writing %s %s/%s, retrying (%d/%d)",
                    kind, meta.get("namespace"), meta["name"], attempt, CONFLICT_RETRIES,
                )
                attempt += 1
        if result != ApplyResult.UNCHANGED:
            logger.info("%s %s %s/%s", result.value.capitalize(), kind, meta.get("namespace"), meta["name"])
        return result

    def delete(self, kind: ResourceKind, name: str, namespace: str | None = None) -> bool:
        """Delete the object; returns False if it was already absent."""
        try:
            self._delete(kind, name, namespace)
        except ApiException as e:
            if e.status == 404:
                return False
            raise
        logger.info("Deleted %s %s/%s", kind, namespace, name)
        return True

    def patch_status(self, kind: ResourceKind, name: str, namespace: str, status: dict[str, Any]) -> None:
        self._patch(kind, name, namespace, {"status": status}, subresource="status")

    def set_finalizers(self, kind: ResourceKind, name: str, namespace: str, finalizers: list[str]) -> None:
        self._patch(kind, name, namespace, {"metadata": {"finalizers": finalizers}})

    def watch(self, kind: ResourceKind, namespace: str, timeout_seconds: int) -> Iterator[dict[str, Any]]:
        """Yield change events for a custom kind until the timeout elapses."""
        api = self._api(kind)
        stream = watch.Watch().stream(
            api.list_namespaced_custom_object,
            kind.group,
            kind.version,
            namespace,
            kind.plural,
            timeout_seconds=timeout_seconds,
        )
        yield from stream

    # Object logic

    def _apply_once(self, kind: ResourceKind, obj: dict[str, Any]) -> ApplyResult:
        meta = obj["metadata"]
        body = {"apiVersion": kind.api_version, "kind": kind.kind, **obj}
        existing = self._read(kind, meta["name"], meta.get("namespace"))
        if existing is None:
            self._create(kind, body)
            return ApplyResult.CREATED
        merged = merge_object(existing, body)
        if merged == existing:
            return ApplyResult.UNCHANGED
        self._replace(kind, merged)
        return ApplyResult.UPDATED

    # Raw API primitives

    def _api(self, kind: ResourceKind) -> Any:
        if kind.api_class not in self._apis:
            self._apis[kind.api_class] = getattr(client, kind.api_class)(self._api_client)
        return self._apis[kind.api_class]

    def _to_dict(self, obj: Any) -> dict[str, Any]:
        if isinstance(obj, dict):
            return obj
        api_client = self._api_client or client.ApiClient()
        return api_client.sanitize_for_serialization(obj)

    def _read(self, kind: ResourceKind, name: str, namespace: str | None) -> dict[str, Any] | None:
        api = self._api(kind)
        try:
            if kind.custom and kind.namespaced:
                obj = api.get_namespaced_custom_object(kind.group, kind.version, namespace, kind.plural, name)
            elif kind.custom:
                obj = api.get_cluster_custom_object(kind.group, kind.version, kind.plural, name)
            elif kind.namespaced:
                obj = getattr(api, f"read_namespaced_{kind.method_suffix}")(name, namespace)
            else:
                obj = getattr(api, f"read_{kind.method_suffix}")(name)
        except ApiException as e:
            if e.status == 404:
                return None
            raise
        return self._to_dict(obj)

    def _list(self, kind: ResourceKind, namespace: str | None, label_selector: str) -> list[dict[str, Any]]:
        api = self._api(kind)
        if kind.custom and kind.namespaced and namespace:
            result = api.list_namespaced_custom_object(
                kind.group, kind.version, namespace, kind.plural, label_selector=label_selector
            )
        elif kind.custom:
            result = api.list_cluster_custom_object(
                kind.group, kind.version, kind.plural, label_selector=label_selector
            )
        elif kind.namespaced and namespace:
            result = getattr(api, f"list_namespaced_{kind.method_suffix}")(namespace, label_selector=label_selector)
        elif kind.namespaced:
            result = getattr(api, f"list_{kind.method_suffix}_for_all_namespaces")(label_selector=label_selector)
        else:
            result = getattr(api, f"list_{kind.method_suffix}")(label_selector=label_selector)
        return list(self._to_dict(result).get("items") or [])

    def _create(self, kind: ResourceKind, body: dict[str, Any]) -> None:
        api = self._api(kind)
        namespace = body["metadata"].get("namespace")
        if kind.custom:
            api.create_namespaced_custom_object(kind.group, kind.version, namespace, kind.plural, body)
        else:
            getattr(api, f"create_namespaced_{kind.method_suffix}")(namespace, body)

    def _replace(self, kind: ResourceKind, body: dict[str, Any]) -> None:
        api = self._api(kind)
        name = body["metadata"]["name"]
        namespace = body["metadata"].get("namespace")
        if kind.custom:
            api.replace_namespaced_custom_object(kind.group, kind.version, namespace, kind.plural, name, body)
        else:
            getattr(api, f"replace_namespaced_{kind.method_suffix}")(name, namespace, body)

    def _delete(self, kind: ResourceKind, name: str, namespace: str | None) -> None:
        api = self._api(kind)
        if kind.custom:
            api.delete_namespaced_custom_object(kind.group, kind.version, namespace, kind.plural, name)
        else:
            getattr(api, f"delete_namespaced_{kind.method_suffix}")(name, namespace)

    def _patch(
        self,
        kind: ResourceKind,
        name: str,
        namespace: str,
        body: dict[str, Any],
        subresource: str | None = None,
    ) -> None:
        api = self._api(kind)
        if kind.custom and subresource == "status":
            api.patch_namespaced_custom_object_status(kind.group, kind.version, namespace, kind.plural, name, body)
        elif kind.custom:
            api.patch_namespaced_custom_object(kind.group, kind.version, namespace, kind.plural, name, body)
        else:
            getattr(api, f"patch_namespaced_{kind.method_suffix}")(name, namespace, body)
