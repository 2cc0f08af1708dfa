"""Alert routing: merged Alertmanager configuration."""

from obs_operator.alerting.builder import (
    build_alertmanager_config,
    config_secret_name,
    reconcile_alertmanager_secret,
)

__all__ = [
    "build_alertmanager_config",
    "config_secret_name",
    "reconcile_alertmanager_secret",
]
