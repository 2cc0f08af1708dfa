"""Tests for the merged Alertmanager configuration."""

from __future__ import annotations

import base64

import yaml

from conftest import NAMESPACE, FakeCluster, make_instance, seed_secret
from obs_operator.alerting import build_alertmanager_config, reconcile_alertmanager_secret
from obs_operator.api.index import RepositoryIndex
from obs_operator.cluster import kinds
from obs_operator.cluster.client import ApplyResult
from obs_operator.cluster.objects import secret_value


def _index(index_id: str, pagerduty: str = "", snitch: str = "") -> RepositoryIndex:
    alertmanager = {}
    if pagerduty:
        alertmanager["pagerDutySecretName"] = pagerduty
    if snitch:
        alertmanager["deadmansSnitchSecretName"] = snitch
    return RepositoryIndex.model_validate({"id": index_id, "config": {"alertmanager": alertmanager}})


def _receivers(doc: dict) -> dict[str, dict]:
    return {r["name"]: r for r in doc["receivers"]}


class TestBuildAlertmanagerConfig:
    def test_routes_per_index(self, cluster: FakeCluster) -> None:
        seed_secret(cluster, "pd-a", {"PAGERDUTY_KEY": "key-a"})
        seed_secret(cluster, "pd-b", {"serviceKey": "key-b"})
        seed_secret(cluster, "snitch-a", {"SNITCH_URL": "https://nosnch.in/a"})
        indexes = [_index("a", "pd-a", "snitch-a"), _index("b", "pd-b")]

        doc = build_alertmanager_config(cluster, make_instance(), indexes).to_dict()

        receivers = _receivers(doc)
        assert receivers["a-pagerduty"]["pagerduty_configs"] == [{"service_key": "key-a"}]
        assert receivers["b-pagerduty"]["pagerduty_configs"] == [{"service_key": "key-b"}]
        assert receivers["a-deadmanssnitch"]["webhook_configs"] == [{"url": "https://nosnch.in/a"}]
        assert receivers["b-deadmanssnitch"]["webhook_configs"] == [{"url": "http://dummy"}]
        routes = {r["receiver"]: r for r in doc["route"]["routes"]}
        assert routes["a-pagerduty"]["match"] == {"severity": "critical", "observability": "a"}
        assert routes["b-pagerduty"]["match"] == {"severity": "critical", "observability": "b"}
        assert routes["a-deadmanssnitch"]["match"] == {"alertname": "DeadMansSwitch", "observability": "a"}
        assert routes["a-deadmanssnitch"]["repeat_interval"] == "5m"
        assert doc["route"]["receiver"] == "default-receiver"

    def test_missing_secret_uses_placeholder(self, cluster: FakeCluster) -> None:
        doc = build_alertmanager_config(cluster, make_instance(), [_index("a", "absent")]).to_dict()
        assert _receivers(doc)["a-pagerduty"]["pagerduty_configs"] == [{"service_key": "dummy"}]

    def test_unreadable_secret_of_one_index_spares_the_other(self, cluster: FakeCluster) -> None:
        seed_secret(cluster, "pd-a", {"PAGERDUTY_KEY": "key-a"})
        cluster.forbidden.add("locked")
        locked = RepositoryIndex.model_validate(
            {"id": "b", "config": {"alertmanager": {"pagerDutySecretName": "pd-b", "pagerDutySecretNamespace": "locked"}}}
        )
        doc = build_alertmanager_config(cluster, make_instance(), [_index("a", "pd-a"), locked]).to_dict()
        receivers = _receivers(doc)
        assert receivers["a-pagerduty"]["pagerduty_configs"] == [{"service_key": "key-a"}]
        assert receivers["b-pagerduty"]["pagerduty_configs"] == [{"service_key": "dummy"}]

    def test_undecodable_secret_of_one_index_spares_the_other(self, cluster: FakeCluster) -> None:
        seed_secret(cluster, "snitch-a", {"SNITCH_URL": "https://nosnch.in/a"})
        cluster.seed(
            kinds.SECRET,
            {
                "metadata": {"name": "snitch-b", "namespace": NAMESPACE},
                "data": {"SNITCH_URL": base64.b64encode(b"\xff\xfe").decode()},
            },
        )
        indexes = [_index("a", snitch="snitch-a"), _index("b", snitch="snitch-b")]
        doc = build_alertmanager_config(cluster, make_instance(), indexes).to_dict()
        receivers = _receivers(doc)
        assert receivers["a-deadmanssnitch"]["webhook_configs"] == [{"url": "https://nosnch.in/a"}]
        assert receivers["b-deadmanssnitch"]["webhook_configs"] == [{"url": "http://dummy"}]

    def test_disabled_integrations(self, cluster: FakeCluster) -> None:
        instance = make_instance(selfContained={"disablePagerDuty": True, "disableDeadmansSnitch": True})
        doc = build_alertmanager_config(cluster, instance, [_index("a", "pd-a", "snitch-a")]).to_dict()
        assert doc["route"]["routes"] == []
        assert [r["name"] for r in doc["receivers"]] == ["default-receiver"]

    def test_index_without_alerting_section(self, cluster: FakeCluster) -> None:
        index = RepositoryIndex.model_validate({"id": "a", "config": {}})
        doc = build_alertmanager_config(cluster, make_instance(), [index]).to_dict()
        assert doc["route"]["routes"] == []


class TestAlertmanagerSecret:
    def test_written_then_unchanged(self, cluster: FakeCluster) -> None:
        seed_secret(cluster, "pd-a", {"PAGERDUTY_KEY": "key-a"})
        indexes = [_index("a", "pd-a")]
        assert reconcile_alertmanager_secret(cluster, make_instance(), indexes) == ApplyResult.CREATED
        assert reconcile_alertmanager_secret(cluster, make_instance(), indexes) == ApplyResult.UNCHANGED
        secret = cluster.stored(kinds.SECRET, "alertmanager-kafka-alertmanager")
        doc = yaml.safe_load(secret_value(secret, "alertmanager.yaml"))
        assert "a-pagerduty" in _receivers(doc)

    def test_removed_index_drops_its_routes(self, cluster: FakeCluster) -> None:
        reconcile_alertmanager_secret(cluster, make_instance(), [_index("a"), _index("b")])
        reconcile_alertmanager_secret(cluster, make_instance(), [_index("b")])
        secret = cluster.stored(kinds.SECRET, "alertmanager-kafka-alertmanager")
        doc = yaml.safe_load(secret_value(secret, "alertmanager.yaml"))
        assert set(_receivers(doc)) == {"default-receiver", "b-pagerduty", "b-deadmanssnitch"}
