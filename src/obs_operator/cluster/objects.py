"""Helpers for building and reading plain-dict cluster objects."""

from __future__ import annotations

import base64
from typing import Any

MANAGED_BY_LABEL = "managed-by"
MANAGED_BY_VALUE = "observability-operator"
PROVENANCE_LABEL = "observability"  # id of the repository index an object came from
COMPONENT_LABEL = "app.kubernetes.io/component"
NAME_LABEL = "app.kubernetes.io/name"


def managed_labels(extra: dict[str, str] | None = None) -> dict[str, str]:
    labels = {MANAGED_BY_LABEL: MANAGED_BY_VALUE}
    if extra:
        labels.update(extra)
    return labels


def merge_labels(existing: dict[str, str] | None, requested: dict[str, str]) -> dict[str, str]:
    """Requested labels win over labels already present."""
    return {**(existing or {}), **requested}


def object_meta(
    name: str,
    namespace: str,
    labels: dict[str, str] | None = None,
    owner: dict[str, Any] | None = None,
) -> dict[str, Any]:
    meta: dict[str, Any] = {"name": name, "namespace": namespace}
    if labels:
        meta["labels"] = labels
    if owner:
        meta["ownerReferences"] = [owner]
    return meta


def encode_data(values: dict[str, str]) -> dict[str, str]:
    return {k: base64.b64encode(v.encode()).decode() for k, v in values.items()}


def secret_value(secret: dict[str, Any], key: str) -> str | None:
    """Decoded value of a secret key, or None if the key is absent."""
    data = secret.get("data") or {}
    if key in data and data[key] is not None:
        return base64.b64decode(data[key]).decode()
    string_data = secret.get("stringData") or {}
    return string_data.get(key)
