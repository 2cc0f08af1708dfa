"""Token acquisition strategies, one per authentication scheme."""

from __future__ import annotations

import logging
import time
from typing import Callable, Protocol

import requests
from kubernetes.client.rest import ApiException

from obs_operator.api.index import AuthType, DexConfig, ObservatoriumIndex
from obs_operator.api.types import Observability
from obs_operator.cluster import kinds
from obs_operator.cluster.client import ClusterClient
from obs_operator.cluster.objects import secret_value

logger = logging.getLogger(__name__)

DEX_TOKEN_PATH = "/dex/token"
DEX_SCOPE = "openid email"


class TokenFetchError(Exception):
    """A backend token could not be obtained."""


class TokenFetcher(Protocol):
    def fetch(self, instance: Observability, target: ObservatoriumIndex) -> tuple[str, int]:
        """Return (token, expiry as epoch seconds)."""
        ...


class DexTokenFetcher:
    """Password grant against a Dex issuer; the tenant doubles as client id."""

    def __init__(
        self,
        cluster: ClusterClient,
        session: requests.Session,
        timeout: float = 30.0,
        verify: bool = True,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._cluster = cluster
        self._session = session
        self._timeout = timeout
        self._verify = verify
        self._clock = clock

    def _credentials(self, instance: Observability, dex: DexConfig) -> tuple[str, str, str]:
        if not dex.credential_secret_name:
            return dex.username, dex.password, dex.secret
        namespace = dex.credential_secret_namespace or instance.namespace
        ref = f"{namespace}/{dex.credential_secret_name}"
        try:
            secret = self._cluster.get(kinds.SECRET, dex.credential_secret_name, namespace)
            if secret is None:
                raise TokenFetchError(f"dex credential secret {ref} not found")
            return (
                secret_value(secret, "username") or dex.username,
                secret_value(secret, "password") or dex.password,
                secret_value(secret, "secret") or dex.secret,
            )
        except ApiException as e:
            raise TokenFetchError(f"cannot read dex credential secret {ref}: {e.reason}") from e
        except ValueError as e:
            raise TokenFetchError(f"dex credential secret {ref} is undecodable") from e

    def fetch(self, instance: Observability, target: ObservatoriumIndex) -> tuple[str, int]:
        dex = target.dex_config
        if dex is None or not dex.url:
            raise TokenFetchError(f"observatorium {target.id} has no dex config")
        username, password, client_secret = self._credentials(instance, dex)
        form = {
            "grant_type": "password",
            "username": username,
            "password": password,
            "client_id": target.tenant,
            "client_secret": client_secret,
            "scope": DEX_SCOPE,
        }
        url = f"{dex.url.rstrip('/')}{DEX_TOKEN_PATH}"
        try:
            resp = self._session.post(url, data=form, timeout=self._timeout, verify=self._verify)
        except requests.RequestException as e:
            raise TokenFetchError(f"token request to {url} failed: {e}") from e
        if resp.status_code != 200:
            raise TokenFetchError(f"token request to {url} returned {resp.status_code}")
        try:
            payload = resp.json()
            token = payload["id_token"]
            expires_in = int(payload["expires_in"])
        except (ValueError, KeyError, TypeError) as e:
            raise TokenFetchError(f"malformed token response from {url}") from e
        return token, int(self._clock()) + expires_in


# Schemes without an entry do not need an operator-held token
TOKEN_FETCHERS: dict[AuthType, type] = {
    AuthType.DEX: DexTokenFetcher,
}
