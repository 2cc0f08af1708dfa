"""Stage pipeline: ordered stages, controller and scheduling loop."""

from obs_operator.pipeline.context import PassContext, StageReconciler
from obs_operator.pipeline.controller import ObservabilityController, ReconcileResult, StageCounters
from obs_operator.pipeline.runner import build_controller, reconcile_all, run_operator
from obs_operator.pipeline.stages import default_stages

__all__ = [
    "ObservabilityController",
    "PassContext",
    "ReconcileResult",
    "StageCounters",
    "StageReconciler",
    "build_controller",
    "default_stages",
    "reconcile_all",
    "run_operator",
]
