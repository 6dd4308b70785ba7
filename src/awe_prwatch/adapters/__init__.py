from __future__ import annotations

from awe_prwatch.adapters.base import (
    ClientUnavailableError,
    GitHubClient,
    GitHubClientError,
    build_review_search_query,
    parse_repo_url,
)
from awe_prwatch.adapters.factory import ClientFactory, ClientSelection
from awe_prwatch.adapters.gh_cli import GhCliClient
from awe_prwatch.adapters.mock import MockClient
from awe_prwatch.adapters.noop import NoopClient
from awe_prwatch.adapters.token import TokenClient

__all__ = [
    'ClientFactory',
    'ClientSelection',
    'ClientUnavailableError',
    'GhCliClient',
    'GitHubClient',
    'GitHubClientError',
    'MockClient',
    'NoopClient',
    'TokenClient',
    'build_review_search_query',
    'parse_repo_url',
]
