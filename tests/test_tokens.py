"""Tests for backend target resolution, token fetching and the token manager."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
import requests

from conftest import NAMESPACE, NOW, FakeCluster, make_instance, seed_secret
from obs_operator.api.index import AuthType, RepositoryIndex
from obs_operator.cluster import kinds
from obs_operator.cluster.objects import encode_data, secret_value
from obs_operator.token import DexTokenFetcher, TokenFetchError, TokenManager, resolve_target, targets_of

DEX_TARGET = {
    "id": "obs-dex",
    "gateway": "https://gw",
    "tenant": "managedkafka",
    "authType": "dex",
    "dexConfig": {"url": "https://dex", "username": "u", "password": "p", "secret": "s"},
}
SSO_TARGET = {
    "id": "obs-sso",
    "gateway": "https://gw",
    "tenant": "managedkafka",
    "authType": "redhat",
    "redhatSsoConfig": {"url": "https://sso/auth/", "realm": "rh", "metricsClient": "c", "metricsSecret": "s"},
}


def _index(*targets: dict) -> RepositoryIndex:
    return RepositoryIndex.model_validate({"id": "kafka", "config": {"observatoria": list(targets)}})


class _FakeFetcher:
    def __init__(self, result: tuple[str, int] | Exception) -> None:
        self.result = result
        self.calls = 0

    def fetch(self, instance, target):
        self.calls += 1
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


def _manager(cluster: FakeCluster, fetcher: _FakeFetcher) -> TokenManager:
    return TokenManager(cluster, {AuthType.DEX: fetcher}, margin_seconds=3600, clock=lambda: NOW)


def _store_token(cluster: FakeCluster, token: str, expires: int | None) -> None:
    values = {"token": token}
    if expires is not None:
        values["lifetime"] = str(expires)
    cluster.seed(
        kinds.SECRET,
        {
            "metadata": {
                "name": "obs-token-obs-dex",
                "namespace": NAMESPACE,
                "labels": {"managed-by": "observability-operator", "purpose": "observatorium-token-secret"},
            },
            "data": encode_data(values),
        },
    )


class TestResolveTarget:
    def test_inline_target(self, cluster: FakeCluster) -> None:
        target = resolve_target(cluster, make_instance(), _index(DEX_TARGET), "obs-dex")
        assert target.tenant == "managedkafka"

    def test_unknown_id(self, cluster: FakeCluster) -> None:
        assert resolve_target(cluster, make_instance(), _index(DEX_TARGET), "nope") is None

    def test_fields_from_secret(self, cluster: FakeCluster) -> None:
        seed_secret(
            cluster,
            "obs-config",
            {"authType": "redhat", "gateway": "https://gw", "tenant": "t", "redHatSsoRealm": "rh",
             "redHatSsoAuthServerUrl": "https://sso", "metricsClient": "c", "metricsSecret": "s"},
        )
        index = _index({"id": "o", "secretName": "obs-config"})
        target = resolve_target(cluster, make_instance(), index, "o")
        assert target.auth_type == AuthType.REDHAT
        assert target.is_valid()
        assert target.redhat_sso_config.has_metrics()
        assert target.redhat_sso_config.auth_url() == "https://sso/realms/rh"

    def test_missing_secret(self, cluster: FakeCluster) -> None:
        index = _index({"id": "o", "secretName": "absent"})
        assert resolve_target(cluster, make_instance(), index, "o") is None

    def test_forbidden_secret_namespace(self, cluster: FakeCluster) -> None:
        cluster.forbidden.add("locked")
        index = _index(DEX_TARGET, {"id": "o", "secretName": "obs-config", "secretNamespace": "locked"})
        assert resolve_target(cluster, make_instance(), index, "o") is None
        assert [t.id for t in targets_of(cluster, make_instance(), index)] == ["obs-dex"]

    def test_undecodable_secret(self, cluster: FakeCluster) -> None:
        cluster.seed(
            kinds.SECRET,
            {"metadata": {"name": "obs-config", "namespace": NAMESPACE}, "data": {"gateway": "//4="}},
        )
        index = _index(DEX_TARGET, {"id": "o", "secretName": "obs-config"})
        assert resolve_target(cluster, make_instance(), index, "o") is None
        assert [t.id for t in targets_of(cluster, make_instance(), index)] == ["obs-dex"]


class TestDexTokenFetcher:
    def _fetcher(self, cluster: FakeCluster, response: MagicMock) -> tuple[DexTokenFetcher, MagicMock]:
        session = MagicMock()
        session.post.return_value = response
        return DexTokenFetcher(cluster, session, clock=lambda: NOW), session

    def test_password_grant(self, cluster: FakeCluster) -> None:
        resp = MagicMock(status_code=200)
        resp.json.return_value = {"id_token": "jwt", "expires_in": 7200}
        fetcher, session = self._fetcher(cluster, resp)
        target = _index(DEX_TARGET).get_observatorium("obs-dex")
        assert fetcher.fetch(make_instance(), target) == ("jwt", NOW + 7200)
        args, kwargs = session.post.call_args
        assert args[0] == "https://dex/dex/token"
        assert kwargs["data"] == {
            "grant_type": "password",
            "username": "u",
            "password": "p",
            "client_id": "managedkafka",
            "client_secret": "s",
            "scope": "openid email",
        }

    def test_credentials_from_secret(self, cluster: FakeCluster) -> None:
        seed_secret(cluster, "dex-creds", {"username": "su", "password": "sp", "secret": "ss"})
        resp = MagicMock(status_code=200)
        resp.json.return_value = {"id_token": "jwt", "expires_in": 60}
        fetcher, session = self._fetcher(cluster, resp)
        target = _index(
            {**DEX_TARGET, "dexConfig": {"url": "https://dex", "credentialSecretName": "dex-creds"}}
        ).get_observatorium("obs-dex")
        fetcher.fetch(make_instance(), target)
        assert session.post.call_args.kwargs["data"]["username"] == "su"

    def test_error_status(self, cluster: FakeCluster) -> None:
        fetcher, _ = self._fetcher(cluster, MagicMock(status_code=401))
        with pytest.raises(TokenFetchError):
            fetcher.fetch(make_instance(), _index(DEX_TARGET).get_observatorium("obs-dex"))

    def test_transport_error(self, cluster: FakeCluster) -> None:
        session = MagicMock()
        session.post.side_effect = requests.Timeout("slow")
        fetcher = DexTokenFetcher(cluster, session)
        with pytest.raises(TokenFetchError):
            fetcher.fetch(make_instance(), _index(DEX_TARGET).get_observatorium("obs-dex"))

    def test_no_dex_config(self, cluster: FakeCluster) -> None:
        fetcher, session = self._fetcher(cluster, MagicMock())
        target = _index({**DEX_TARGET, "dexConfig": None}).get_observatorium("obs-dex")
        with pytest.raises(TokenFetchError):
            fetcher.fetch(make_instance(), target)
        session.post.assert_not_called()

    def test_forbidden_credential_secret(self, cluster: FakeCluster) -> None:
        cluster.forbidden.add("locked")
        fetcher, session = self._fetcher(cluster, MagicMock())
        dex = {"url": "https://dex", "credentialSecretName": "dex-creds", "credentialSecretNamespace": "locked"}
        target = _index({**DEX_TARGET, "dexConfig": dex}).get_observatorium("obs-dex")
        with pytest.raises(TokenFetchError):
            fetcher.fetch(make_instance(), target)
        session.post.assert_not_called()


class TestTokenManager:
    def test_find_absent_record(self, cluster: FakeCluster) -> None:
        manager = _manager(cluster, _FakeFetcher(("t", 0)))
        target = _index(DEX_TARGET).get_observatorium("obs-dex")
        assert manager.find(make_instance(), target) == ("", 0)

    @pytest.mark.parametrize(
        ("token", "expires", "due"),
        [
            ("", 0, True),
            ("t", 0, False),
            ("t", NOW + 7200, False),
            ("t", NOW + 1800, True),
            ("t", NOW - 10, True),
        ],
    )
    def test_needs_refresh(self, cluster: FakeCluster, token: str, expires: int, due: bool) -> None:
        assert _manager(cluster, _FakeFetcher(("t", 0))).needs_refresh(token, expires) is due

    def test_first_pass_creates_record(self, cluster: FakeCluster) -> None:
        fetcher = _FakeFetcher(("fresh", NOW + 7200))
        manager = _manager(cluster, fetcher)
        earliest = manager.reconcile(make_instance(), [_index(DEX_TARGET)])
        assert earliest == NOW + 7200
        secret = cluster.stored(kinds.SECRET, "obs-token-obs-dex")
        assert secret_value(secret, "token") == "fresh"
        assert secret_value(secret, "lifetime") == str(NOW + 7200)
        assert secret["metadata"]["labels"]["purpose"] == "observatorium-token-secret"

    def test_valid_token_not_refreshed(self, cluster: FakeCluster) -> None:
        _store_token(cluster, "old", NOW + 7200)
        fetcher = _FakeFetcher(("new", NOW + 9000))
        manager = _manager(cluster, fetcher)
        before = cluster.mutations()
        assert manager.reconcile(make_instance(), [_index(DEX_TARGET)]) == NOW + 7200
        assert fetcher.calls == 0
        assert cluster.mutations() == before

    def test_expiring_token_refreshed_once(self, cluster: FakeCluster) -> None:
        _store_token(cluster, "old", NOW + 60)
        fetcher = _FakeFetcher(("new", NOW + 9000))
        manager = _manager(cluster, fetcher)
        manager.reconcile(make_instance(), [_index(DEX_TARGET)])
        assert fetcher.calls == 1
        assert secret_value(cluster.stored(kinds.SECRET, "obs-token-obs-dex"), "token") == "new"

    def test_failed_refresh_keeps_stale_record(self, cluster: FakeCluster) -> None:
        _store_token(cluster, "old", NOW + 60)
        manager = _manager(cluster, _FakeFetcher(TokenFetchError("down")))
        before = cluster.mutations()
        assert manager.reconcile(make_instance(), [_index(DEX_TARGET)]) == NOW + 60
        assert cluster.mutations() == before
        assert secret_value(cluster.stored(kinds.SECRET, "obs-token-obs-dex"), "token") == "old"

    def test_proxy_scheme_gets_no_record(self, cluster: FakeCluster) -> None:
        fetcher = _FakeFetcher(("t", NOW + 7200))
        manager = _manager(cluster, fetcher)
        assert manager.reconcile(make_instance(), [_index(SSO_TARGET)]) == 0
        assert fetcher.calls == 0
        assert cluster.names(kinds.SECRET) == set()

    def test_observatorium_disabled(self, cluster: FakeCluster) -> None:
        fetcher = _FakeFetcher(("t", NOW + 7200))
        instance = make_instance(selfContained={"disableObservatorium": True})
        assert _manager(cluster, fetcher).reconcile(instance, [_index(DEX_TARGET)]) == 0
        assert fetcher.calls == 0

    @pytest.mark.parametrize(("expires", "expired"), [(NOW + 7200, False), (NOW + 60, True), (None, True)])
    def test_any_expired(self, cluster: FakeCluster, expires: int | None, expired: bool) -> None:
        _store_token(cluster, "t", expires)
        assert _manager(cluster, _FakeFetcher(("t", 0))).any_expired(make_instance()) is expired

    def test_cleanup_removes_records(self, cluster: FakeCluster) -> None:
        _store_token(cluster, "t", NOW + 7200)
        _manager(cluster, _FakeFetcher(("t", 0))).cleanup(make_instance())
        assert cluster.names(kinds.SECRET) == set()
