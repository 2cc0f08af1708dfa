"""Remote document fetching: repository indexes and referenced documents."""

from obs_operator.fetch.fetcher import FetchError, RepositoryFetcher, build_session, is_valid_url
from obs_operator.fetch.repositories import list_repositories, resolve_indexes

__all__ = [
    "FetchError",
    "RepositoryFetcher",
    "build_session",
    "is_valid_url",
    "list_repositories",
    "resolve_indexes",
]
