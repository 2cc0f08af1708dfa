"""Fetch repository indexes and the documents they reference."""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import urlparse

import requests
import yaml
from pydantic import ValidationError
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from obs_operator.api.index import RepositoryIndex, RepositoryInfo

logger = logging.getLogger(__name__)

RAW_ACCEPT_HEADER = "application/vnd.github.v3.raw"
INDEX_FILE = "index.json"


class FetchError(Exception):
    """A remote document could not be retrieved or decoded."""


def build_session() -> requests.Session:
    """Session with a small retry budget for gateway errors."""
    session = requests.Session()
    retry = Retry(
        total=2,
        backoff_factor=0.5,
        status_forcelist=[502, 503, 504],
        allowed_methods=["GET", "POST"],
    )
    adapter = HTTPAdapter(max_retries=retry, pool_connections=10, pool_maxsize=10)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


def is_valid_url(url: str) -> bool:
    parsed = urlparse(url)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


class RepositoryFetcher:
    """Authenticated GETs against configuration repositories."""

    def __init__(
        self,
        session: requests.Session | None = None,
        timeout: float = 30.0,
        verify: bool = True,
    ) -> None:
        self._session = session or build_session()
        self._timeout = timeout
        self._verify = verify

    def fetch_resource(self, url: str, access_token: str = "", tag: str = "") -> bytes:
        """GET one document. Raises FetchError on bad URL, transport error or non-200."""
        if not is_valid_url(url):
            raise FetchError(f"invalid url: {url!r}")
        headers = {"Accept": RAW_ACCEPT_HEADER}
        if access_token:
            headers["Authorization"] = f"token {access_token}"
        params = {"ref": tag} if tag else None
        try:
            resp = self._session.get(
                url, headers=headers, params=params, timeout=self._timeout, verify=self._verify
            )
        except requests.RequestException as e:
            raise FetchError(f"request to {url} failed: {e}") from e
        if resp.status_code != 200:
            raise FetchError(f"unexpected status {resp.status_code} from {url}")
        return resp.content

    def fetch_document(self, url: str, access_token: str = "", tag: str = "") -> Any:
        """GET and decode a YAML or JSON document."""
        body = self.fetch_resource(url, access_token, tag)
        try:
            return yaml.safe_load(body)
        except yaml.YAMLError as e:
            raise FetchError(f"cannot decode {url}: {e}") from e

    def fetch_index(self, repo: RepositoryInfo) -> RepositoryIndex:
        """Fetch {repository}/{channel}/index.json and attach repository context to it."""
        base_url = f"{repo.repository.rstrip('/')}/{repo.channel}"
        url = f"{base_url}/{INDEX_FILE}"
        document = self.fetch_document(url, repo.access_token, repo.tag)
        if not isinstance(document, dict):
            raise FetchError(f"index at {url} is not an object")
        try:
            index = RepositoryIndex.model_validate(document)
        except ValidationError as e:
            raise FetchError(f"index at {url} is malformed: {e}") from e
        return index.model_copy(update={"base_url": base_url, "access_token": repo.access_token, "tag": repo.tag})
