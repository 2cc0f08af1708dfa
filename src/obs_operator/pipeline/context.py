"""Per-pass context shared by all stages, and the stage contract."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable, Protocol

from obs_operator.api.index import RepositoryIndex
from obs_operator.api.types import Observability, ObservabilityStatus, StageStatus
from obs_operator.cluster.client import ClusterClient
from obs_operator.config import Settings
from obs_operator.fetch.fetcher import RepositoryFetcher
from obs_operator.fetch.repositories import resolve_indexes
from obs_operator.sync.synchronizer import ResourceSynchronizer
from obs_operator.token.manager import TokenManager


@dataclass
class PassContext:
    """Collaborators for one reconcile pass; repository indexes are fetched at most once."""

    cluster: ClusterClient
    fetcher: RepositoryFetcher
    settings: Settings
    tokens: TokenManager
    synchronizer: ResourceSynchronizer
    instance: Observability
    clock: Callable[[], float] = time.time
    _indexes: list[RepositoryIndex] | None = field(default=None, repr=False)

    @property
    def indexes(self) -> list[RepositoryIndex]:
        if self._indexes is None:
            self._indexes = resolve_indexes(self.cluster, self.fetcher, self.instance)
        return self._indexes

    def now(self) -> int:
        return int(self.clock())


class StageReconciler(Protocol):
    """One step of the pipeline.

    ``reconcile`` may update ``status`` fields it owns and returns the stage outcome;
    it raises on error. ``cleanup`` undoes the stage during teardown.
    """

    def reconcile(self, ctx: PassContext, instance: Observability, status: ObservabilityStatus) -> StageStatus:
        ...

    def cleanup(self, ctx: PassContext, instance: Observability) -> StageStatus:
        ...
