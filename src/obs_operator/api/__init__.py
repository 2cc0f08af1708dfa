"""Typed models for the instance, repository indexes and generated documents."""

from obs_operator.api.alertmanager import AlertmanagerConfigRoot, Receiver, Route
from obs_operator.api.index import (
    AuthType,
    ObservatoriumIndex,
    RepositoryIndex,
    RepositoryInfo,
)
from obs_operator.api.types import (
    LabelSelector,
    Observability,
    ObservabilityStatus,
    StageName,
    StageStatus,
)

__all__ = [
    "AlertmanagerConfigRoot",
    "AuthType",
    "LabelSelector",
    "Observability",
    "ObservabilityStatus",
    "ObservatoriumIndex",
    "Receiver",
    "RepositoryIndex",
    "RepositoryInfo",
    "Route",
    "StageName",
    "StageStatus",
]
