"""Stage pipeline controller: one reconcile pass over an Observability instance."""

from __future__ import annotations

import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Callable

from kubernetes.client.rest import ApiException

from obs_operator.api.types import FINALIZER, Observability, ObservabilityStatus, StageName, StageStatus
from obs_operator.cluster import kinds
from obs_operator.cluster.client import ClusterClient
from obs_operator.config import Settings
from obs_operator.fetch.fetcher import RepositoryFetcher
from obs_operator.pipeline.context import PassContext, StageReconciler
from obs_operator.pipeline.stages import default_stages
from obs_operator.sync.synchronizer import ResourceSynchronizer
from obs_operator.token.manager import TokenManager

logger = logging.getLogger(__name__)

CLUSTER_VERSION_NAME = "version"


@dataclass
class StageCounters:
    """Reconcile counts per stage."""

    total: Counter = field(default_factory=Counter)
    failed: Counter = field(default_factory=Counter)

    def record(self, stage: StageName, status: StageStatus) -> None:
        self.total[stage.value] += 1
        if status == StageStatus.FAILED:
            self.failed[stage.value] += 1


@dataclass
class ReconcileResult:
    """Outcome of one pass and when to run the next one."""

    stage: StageName | None
    status: StageStatus
    requeue_after: float
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.status == StageStatus.SUCCESS


class ObservabilityController:
    """Runs the fixed stage sequence for an instance and persists progress."""

    def __init__(
        self,
        cluster: ClusterClient,
        fetcher: RepositoryFetcher,
        settings: Settings,
        tokens: TokenManager,
        synchronizer: ResourceSynchronizer | None = None,
        stages: list[tuple[StageName, StageReconciler]] | None = None,
        counters: StageCounters | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.cluster = cluster
        self.fetcher = fetcher
        self.settings = settings
        self.tokens = tokens
        self.synchronizer = synchronizer or ResourceSynchronizer(
            cluster, fetcher, settings.token_refresher_image, settings.promtail_image
        )
        self.stages = stages if stages is not None else default_stages()
        self.counters = counters or StageCounters()
        self.clock = clock

    def context(self, instance: Observability) -> PassContext:
        return PassContext(
            cluster=self.cluster,
            fetcher=self.fetcher,
            settings=self.settings,
            tokens=self.tokens,
            synchronizer=self.synchronizer,
            instance=instance,
            clock=self.clock,
        )

    def _result(self, stage: StageName | None, status: StageStatus, message: str = "") -> ReconcileResult:
        delay = (
            self.settings.success_requeue_seconds
            if status == StageStatus.SUCCESS
            else self.settings.failure_requeue_seconds
        )
        return ReconcileResult(stage=stage, status=status, requeue_after=delay, message=message)

    def reconcile(self, instance: Observability) -> ReconcileResult:
        """Run one pass. Stage and API errors become a failed result, never an exception."""
        ctx = self.context(instance)
        if instance.deleting:
            return self._teardown(ctx, instance)

        try:
            self._ensure_finalizer(instance)
        except ApiException as e:
            logger.error("Failed to add finalizer to %s/%s: %s", instance.namespace, instance.name, e.reason)
            return self._result(None, StageStatus.FAILED, f"finalizer update failed: {e.reason}")
        status = instance.status.model_copy(deep=True)
        self._fill_cluster_id(instance, status)

        stage: StageName | None = None
        outcome = StageStatus.SUCCESS
        message = ""
        for stage, reconciler in self.stages:
            try:
                outcome = reconciler.reconcile(ctx, instance, status)
                message = ""
            except Exception as e:
                logger.exception("Stage %s failed for %s/%s", stage.value, instance.namespace, instance.name)
                outcome = StageStatus.FAILED
                message = str(e)
            self.counters.record(stage, outcome)
            if outcome != StageStatus.SUCCESS:
                break

        status.stage = stage
        status.stage_status = outcome
        status.last_message = message
        if not self._write_status(instance, status):
            return self._result(stage, StageStatus.FAILED, "status update failed")
        return self._result(stage, outcome, message)

    def _teardown(self, ctx: PassContext, instance: Observability) -> ReconcileResult:
        """Clean up stages in reverse order, then release the finalizer."""
        if FINALIZER not in instance.metadata.finalizers:
            return self._result(None, StageStatus.SUCCESS)
        for stage, reconciler in reversed(self.stages):
            try:
                outcome = reconciler.cleanup(ctx, instance)
                message = ""
            except Exception as e:
                logger.exception("Cleanup of stage %s failed for %s/%s", stage.value, instance.namespace, instance.name)
                outcome = StageStatus.FAILED
                message = str(e)
            if outcome != StageStatus.SUCCESS:
                logger.info("Teardown of %s/%s waiting on stage %s", instance.namespace, instance.name, stage.value)
                return self._result(stage, outcome, message)
        finalizers = [f for f in instance.metadata.finalizers if f != FINALIZER]
        try:
            self.cluster.set_finalizers(kinds.OBSERVABILITY, instance.name, instance.namespace, finalizers)
        except ApiException as e:
            logger.error("Failed to remove finalizer from %s/%s: %s", instance.namespace, instance.name, e.reason)
            return self._result(None, StageStatus.FAILED, f"finalizer update failed: {e.reason}")
        logger.info("Teardown of %s/%s complete", instance.namespace, instance.name)
        return self._result(None, StageStatus.SUCCESS)

    def _ensure_finalizer(self, instance: Observability) -> None:
        """Add the cleanup finalizer if missing."""
        if FINALIZER in instance.metadata.finalizers:
            return
        finalizers = [*instance.metadata.finalizers, FINALIZER]
        self.cluster.set_finalizers(kinds.OBSERVABILITY, instance.name, instance.namespace, finalizers)
        instance.metadata.finalizers = finalizers

    def _fill_cluster_id(self, instance: Observability, status: ObservabilityStatus) -> None:
        if instance.spec.cluster_id:
            status.cluster_id = instance.spec.cluster_id
            return
        if status.cluster_id:
            return
        try:
            version = self.cluster.get(kinds.CLUSTER_VERSION, CLUSTER_VERSION_NAME)
        except ApiException as e:
            logger.warning("Cannot read cluster version: %s", e.reason)
            return
        if version is not None:
            status.cluster_id = (version.get("spec") or {}).get("clusterID", "")

    def _write_status(self, instance: Observability, status: ObservabilityStatus) -> bool:
        if status == instance.status:
            return True
        try:
            self.cluster.patch_status(kinds.OBSERVABILITY, instance.name, instance.namespace, status.to_patch())
        except ApiException as e:
            logger.error("Failed to update status of %s/%s: %s", instance.namespace, instance.name, e.reason)
            return False
        instance.status = status
        return True
