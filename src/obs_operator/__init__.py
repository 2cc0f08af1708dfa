"""Observability operator: installs and reconciles a managed monitoring stack."""

__version__ = "0.1.0"
