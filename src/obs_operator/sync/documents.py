"""Turn fetched repository documents into dashboard, rule and pod-monitor objects."""

from __future__ import annotations

import json
import logging
from typing import Any

import yaml

from obs_operator.api.types import Observability
from obs_operator.cluster.objects import PROVENANCE_LABEL, managed_labels, merge_labels, object_meta
from obs_operator.sync.resources import ResourceInfo

logger = logging.getLogger(__name__)

JSON_EXTENSIONS = (".json",)
JSONNET_EXTENSIONS = (".jsonnet", ".grafonnet")
YAML_EXTENSIONS = (".yaml", ".yml")


def _load_yaml_object(body: bytes) -> dict[str, Any]:
    try:
        doc = yaml.safe_load(body)
    except yaml.YAMLError as e:
        raise ValueError(str(e)) from e
    if not isinstance(doc, dict):
        raise ValueError("document is not a mapping")
    return doc


def _mapping(value: Any, what: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"{what} is not a mapping")
    return value


def _mappings(value: Any, what: str) -> list[dict[str, Any]]:
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(item, dict) for item in value):
        raise ValueError(f"{what} is not a list of mappings")
    return value


def _doc_labels(doc: dict[str, Any]) -> dict[str, str]:
    metadata = _mapping(doc.get("metadata"), "metadata")
    return _mapping(metadata.get("labels"), "metadata.labels")


def _metadata(instance: Observability, info: ResourceInfo, doc_labels: dict[str, str] | None) -> dict[str, Any]:
    labels = merge_labels(doc_labels, managed_labels({PROVENANCE_LABEL: info.index_id}))
    return object_meta(info.name, instance.namespace, labels, instance.owner_reference())


def build_dashboard(instance: Observability, info: ResourceInfo, body: bytes) -> dict[str, Any] | None:
    """GrafanaDashboard for a .json, .jsonnet/.grafonnet or .yaml source."""
    doc_labels: dict[str, str] | None = None
    if info.extension in JSON_EXTENSIONS:
        text = body.decode()
        json.loads(text)
        spec: dict[str, Any] = {"json": text}
    elif info.extension in JSONNET_EXTENSIONS:
        spec = {"jsonnet": body.decode()}
    elif info.extension in YAML_EXTENSIONS:
        doc = _load_yaml_object(body)
        spec = dict(_mapping(doc.get("spec"), "spec"))
        doc_labels = _doc_labels(doc)
    else:
        logger.warning("Dashboard %s has unsupported source type %r, skipping", info.path, info.extension)
        return None
    spec.setdefault("name", f"{info.name}.json")
    return {"metadata": _metadata(instance, info, doc_labels), "spec": spec}


def build_rule(instance: Observability, info: ResourceInfo, body: bytes) -> dict[str, Any]:
    """PrometheusRule with every rule labelled with its index id."""
    doc = _load_yaml_object(body)
    spec = dict(_mapping(doc.get("spec"), "spec"))
    for group in _mappings(spec.get("groups"), "spec.groups"):
        for rule in _mappings(group.get("rules"), "rules"):
            labels = _mapping(rule.get("labels"), "rule labels")
            rule["labels"] = merge_labels(labels, {PROVENANCE_LABEL: info.index_id})
    return {"metadata": _metadata(instance, info, _doc_labels(doc)), "spec": spec}


def build_pod_monitor(instance: Observability, info: ResourceInfo, body: bytes) -> dict[str, Any]:
    doc = _load_yaml_object(body)
    spec = dict(_mapping(doc.get("spec"), "spec"))
    return {"metadata": _metadata(instance, info, _doc_labels(doc)), "spec": spec}
