from __future__ import annotations

import logging

from awe_prwatch.adapters.factory import ClientFactory
from awe_prwatch.api import create_app
from awe_prwatch.bus import InMemoryEventBus
from awe_prwatch.config import load_settings
from awe_prwatch.db import Database, SqlWatchRepository
from awe_prwatch.observability import configure_observability
from awe_prwatch.poller import Poller
from awe_prwatch.repository import InMemoryWatchRepository
from awe_prwatch.secret_store import EnvSecretStore
from awe_prwatch.service import GitHubWatchService

_log = logging.getLogger(__name__)


def build_app():
    settings = load_settings()
    configure_observability(
        service_name=settings.service_name,
        otlp_endpoint=settings.otel_endpoint,
    )

    try:
        db = Database(settings.database_url)
        db.create_schema()
        repo = SqlWatchRepository(db)
    except Exception:
        _log.exception('database bootstrap failed; falling back to in-memory repository')
        repo = InMemoryWatchRepository()

    selection = ClientFactory.create(
        mock=settings.mock_github,
        secret_store=EnvSecretStore(),
        gh_command=settings.gh_command,
        api_base=settings.github_api_base,
        timeout_seconds=settings.request_timeout_seconds,
    )
    service = GitHubWatchService(
        repository=repo,
        client=selection.client,
        auth_method=selection.auth_method,
        event_bus=InMemoryEventBus(),
    )
    poller = None
    if settings.autostart_poller:
        poller = Poller(
            service,
            pr_interval_seconds=settings.pr_poll_interval_seconds,
            review_interval_seconds=settings.review_poll_interval_seconds,
        )
    return create_app(service=service, poller=poller)


app = build_app()
