"""Backend token records: lookup, expiry gating, refresh and persistence."""

from __future__ import annotations

import logging
import time
from typing import Callable

from obs_operator.api.index import ObservatoriumIndex, RepositoryIndex
from obs_operator.api.types import Observability
from obs_operator.cluster import kinds
from obs_operator.cluster.client import ClusterClient
from obs_operator.cluster.objects import encode_data, managed_labels, object_meta, secret_value
from obs_operator.token.fetchers import TokenFetcher, TokenFetchError
from obs_operator.token.targets import targets_of

logger = logging.getLogger(__name__)

TOKEN_SECRET_PREFIX = "obs-token-"
TOKEN_KEY = "token"
LIFETIME_KEY = "lifetime"
PURPOSE_LABEL = "purpose"
PURPOSE_TOKEN = "observatorium-token-secret"


def token_secret_name(target: ObservatoriumIndex) -> str:
    return f"{TOKEN_SECRET_PREFIX}{target.id}"


def token_labels() -> dict[str, str]:
    return managed_labels({PURPOSE_LABEL: PURPOSE_TOKEN})


class TokenManager:
    """Keeps one token secret per token-issuing backend target."""

    def __init__(
        self,
        cluster: ClusterClient,
        fetchers: dict | None = None,
        margin_seconds: int = 3600,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._cluster = cluster
        self._fetchers: dict = fetchers or {}
        self._margin = margin_seconds
        self._clock = clock

    def fetcher_for(self, target: ObservatoriumIndex) -> TokenFetcher | None:
        return self._fetchers.get(target.auth_type)

    def find(self, instance: Observability, target: ObservatoriumIndex) -> tuple[str, int]:
        """Stored (token, expiry); ('', 0) when there is no record."""
        secret = self._cluster.get(kinds.SECRET, token_secret_name(target), instance.namespace)
        if secret is None:
            return "", 0
        token = secret_value(secret, TOKEN_KEY) or ""
        lifetime = secret_value(secret, LIFETIME_KEY)
        try:
            expires = int(lifetime) if lifetime else 0
        except ValueError:
            logger.warning("Token secret for %s has unreadable lifetime %r", target.id, lifetime)
            expires = 0
        return token, expires

    def expires_soon(self, expires: int) -> bool:
        return expires > 0 and self._clock() + self._margin >= expires

    def needs_refresh(self, token: str, expires: int) -> bool:
        return not token or self.expires_soon(expires)

    def refresh(self, instance: Observability, target: ObservatoriumIndex) -> tuple[str, int]:
        fetcher = self.fetcher_for(target)
        if fetcher is None:
            raise TokenFetchError(f"no token fetcher for auth type {target.auth_type.value!r}")
        return fetcher.fetch(instance, target)

    def save(self, instance: Observability, target: ObservatoriumIndex, token: str, expires: int) -> None:
        secret = {
            "metadata": object_meta(
                token_secret_name(target), instance.namespace, token_labels(), instance.owner_reference()
            ),
            "type": "Opaque",
            "data": encode_data({TOKEN_KEY: token, LIFETIME_KEY: str(expires)}),
        }
        self._cluster.create_or_update(kinds.SECRET, secret)

    def any_expired(self, instance: Observability) -> bool:
        """True if any stored token lacks a lifetime or is within the refresh margin."""
        for secret in self._cluster.list(kinds.SECRET, instance.namespace, token_labels()):
            lifetime = secret_value(secret, LIFETIME_KEY)
            if not lifetime:
                return True
            try:
                expires = int(lifetime)
            except ValueError:
                return True
            if self.expires_soon(expires):
                return True
        return False

    def token_secret_names(self, instance: Observability) -> list[str]:
        secrets = self._cluster.list(kinds.SECRET, instance.namespace, token_labels())
        return sorted(s["metadata"]["name"] for s in secrets)

    def reconcile(self, instance: Observability, indexes: list[RepositoryIndex]) -> int:
        """Refresh every due token; returns the earliest known expiry (0 if none)."""
        if instance.observatorium_disabled():
            return 0
        earliest = 0
        for index in indexes:
            for target in targets_of(self._cluster, instance, index):
                if self.fetcher_for(target) is None:
                    continue
                token, expires = self.find(instance, target)
                if self.needs_refresh(token, expires):
                    try:
                        token, expires = self.refresh(instance, target)
                    except TokenFetchError as e:
                        # keep whatever is stored; the next pass retries
                        logger.error("Token refresh for observatorium %s failed: %s", target.id, e)
                    else:
                        self.save(instance, target, token, expires)
                        logger.info("Refreshed token for observatorium %s", target.id)
                if expires and (earliest == 0 or expires < earliest):
                    earliest = expires
        return earliest

    def cleanup(self, instance: Observability) -> None:
        for name in self.token_secret_names(instance):
            self._cluster.delete(kinds.SECRET, name, instance.namespace)
