"""Cluster access: kind table and dict-based client."""

from obs_operator.cluster import kinds
from obs_operator.cluster.client import ApplyResult, ClusterClient, load_kube_config, merge_object
from obs_operator.cluster.kinds import ResourceKind

__all__ = [
    "ApplyResult",
    "ClusterClient",
    "ResourceKind",
    "kinds",
    "load_kube_config",
    "merge_object",
]
