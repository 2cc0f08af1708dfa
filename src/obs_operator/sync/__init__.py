"""Drift-based synchronization of repository-declared objects."""

from obs_operator.sync.converge import ConvergeResult, converge
from obs_operator.sync.remote_write import remote_write_specs
from obs_operator.sync.resources import ResourceInfo, name_from_path, unique_resources
from obs_operator.sync.synchronizer import DOCUMENT_SOURCES, ResourceSynchronizer

__all__ = [
    "ConvergeResult",
    "DOCUMENT_SOURCES",
    "ResourceInfo",
    "ResourceSynchronizer",
    "converge",
    "name_from_path",
    "remote_write_specs",
    "unique_resources",
]
