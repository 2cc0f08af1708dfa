"""Credential lifecycle for backend targets."""

from obs_operator.token.fetchers import TOKEN_FETCHERS, DexTokenFetcher, TokenFetcher, TokenFetchError
from obs_operator.token.manager import TokenManager, token_secret_name
from obs_operator.token.targets import resolve_target, targets_of

__all__ = [
    "DexTokenFetcher",
    "TOKEN_FETCHERS",
    "TokenFetchError",
    "TokenFetcher",
    "TokenManager",
    "resolve_target",
    "targets_of",
    "token_secret_name",
]
