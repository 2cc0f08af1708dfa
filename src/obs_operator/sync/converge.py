"""Converge a set of managed objects of one kind onto a desired set."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

from obs_operator.cluster.client import ApplyResult, ClusterClient
from obs_operator.cluster.kinds import ResourceKind

logger = logging.getLogger(__name__)


@dataclass
class ConvergeResult:
    """Names touched by one converge call."""

    kind: str
    created: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.created or self.updated or self.deleted)


def converge(
    cluster: ClusterClient,
    kind: ResourceKind,
    namespace: str,
    desired: Iterable[dict[str, Any]],
    selector: dict[str, str],
    declared: Iterable[str] | None = None,
    owned: Callable[[dict[str, Any]], bool] | None = None,
) -> ConvergeResult:
    """Create or update every desired object, then delete selected objects not declared.

    ``declared`` defaults to the desired names. Passing a wider set keeps objects
    that were declared this pass but could not be produced. ``owned`` narrows
    which selected objects are eligible for deletion.
    """
    result = ConvergeResult(kind=kind.kind)
    desired = list(desired)
    keep = {obj["metadata"]["name"] for obj in desired}
    if declared is not None:
        keep.update(declared)

    for obj in desired:
        name = obj["metadata"]["name"]
        outcome = cluster.create_or_update(kind, obj)
        if outcome == ApplyResult.CREATED:
            result.created.append(name)
        elif outcome == ApplyResult.UPDATED:
            result.updated.append(name)
        else:
            result.unchanged.append(name)

    for existing in cluster.list(kind, namespace, selector):
        name = existing["metadata"]["name"]
        if name not in keep and (owned is None or owned(existing)):
            if cluster.delete(kind, name, namespace):
                result.deleted.append(name)

    if result.changed:
        logger.info(
            "%s: %d created, %d updated, %d deleted",
            kind, len(result.created), len(result.updated), len(result.deleted),
        )
    return result
