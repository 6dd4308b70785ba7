from __future__ import annotations

from dataclasses import dataclass
import shutil
from typing import Callable

from awe_prwatch.adapters.base import GitHubClient, GitHubClientError
from awe_prwatch.adapters.gh_cli import GhCliClient
from awe_prwatch.adapters.mock import MockClient
from awe_prwatch.adapters.noop import NoopClient
from awe_prwatch.adapters.token import DEFAULT_API_BASE, TokenClient
from awe_prwatch.observability import get_logger
from awe_prwatch.secret_store import SecretStore, find_github_token

_log = get_logger('awe_prwatch.adapters.factory')


@dataclass(frozen=True)
class ClientSelection:
    client: GitHubClient
    auth_method: str


class ClientFactory:
    """Picks the remote client once at startup.

    Order: mock override, authenticated `gh`, token secret, no-op.
    """

    @classmethod
    def create(
        cls,
        *,
        mock: bool = False,
        secret_store: SecretStore | None = None,
        gh_command: str = 'gh',
        api_base: str = DEFAULT_API_BASE,
        timeout_seconds: int = 30,
        which: Callable[[str], str | None] = shutil.which,
        gh_probe: Callable[[GhCliClient], bool] | None = None,
    ) -> ClientSelection:
        if mock:
            _log.info('github_client_selected method=mock')
            return ClientSelection(client=MockClient(), auth_method='mock')

        if which(gh_command):
            gh = GhCliClient(command=gh_command, timeout_seconds=timeout_seconds)
            probe = gh_probe or cls._probe_gh
            if probe(gh):
                _log.info('github_client_selected method=gh_cli')
                return ClientSelection(client=gh, auth_method='gh_cli')
            _log.debug('gh_cli_not_authenticated command=%s', gh_command)

        token = find_github_token(secret_store)
        if token:
            _log.info('github_client_selected method=token')
            return ClientSelection(
                client=TokenClient(token, api_base=api_base, timeout_seconds=timeout_seconds),
                auth_method='token',
            )

        _log.warning('github_client_unavailable; integration disabled')
        return ClientSelection(client=NoopClient(), auth_method='none')

    @staticmethod
    def _probe_gh(client: GhCliClient) -> bool:
        try:
            return client.is_authenticated()
        except GitHubClientError:
            _log.debug('gh_auth_probe_failed', exc_info=True)
            return False


__all__ = ['ClientFactory', 'ClientSelection']
