"""Alertmanager configuration document."""

from __future__ import annotations

from typing import Any

import yaml
from pydantic import BaseModel, Field

DEFAULT_RECEIVER = "default-receiver"
DEFAULT_RESOLVE_TIMEOUT = "5m"


class Global(BaseModel):
    resolve_timeout: str = DEFAULT_RESOLVE_TIMEOUT


class PagerDutyConfig(BaseModel):
    service_key: str


class WebhookConfig(BaseModel):
    url: str


class Receiver(BaseModel):
    name: str
    pagerduty_configs: list[PagerDutyConfig] | None = None
    webhook_configs: list[WebhookConfig] | None = None


class Route(BaseModel):
    receiver: str
    match: dict[str, str] | None = None
    repeat_interval: str | None = None
    routes: list[Route] | None = None


class AlertmanagerConfigRoot(BaseModel):
    """Top level of alertmanager.yaml."""

    global_: Global = Field(default_factory=Global, alias="global")
    route: Route = Field(default_factory=lambda: Route(receiver=DEFAULT_RECEIVER, routes=[]))
    receivers: list[Receiver] = Field(default_factory=lambda: [Receiver(name=DEFAULT_RECEIVER)])

    model_config = {"populate_by_name": True}

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.to_dict(), sort_keys=False, default_flow_style=False)
