from __future__ import annotations

from dataclasses import dataclass
import os


@dataclass(frozen=True)
class Settings:
    database_url: str
    service_name: str
    otel_endpoint: str | None
    mock_github: bool
    gh_command: str
    github_api_base: str
    request_timeout_seconds: int
    pr_poll_interval_seconds: int
    review_poll_interval_seconds: int
    autostart_poller: bool


def _env_int(name: str, default: int, *, minimum: int = 1) -> int:
    raw = (os.getenv(name, '') or '').strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return max(minimum, value)


def _env_bool(name: str, default: bool) -> bool:
    raw = (os.getenv(name, '') or '').strip().lower()
    if not raw:
        return default
    return raw in {'1', 'true', 'yes', 'on'}


def load_settings() -> Settings:
    database_url = os.getenv('AWE_PRWATCH_DATABASE_URL', 'sqlite:///.agents/prwatch.sqlite3')
    service_name = os.getenv('AWE_PRWATCH_SERVICE_NAME', 'awe-prwatch')
    otel_endpoint = os.getenv('AWE_PRWATCH_OTEL_EXPORTER_OTLP_ENDPOINT')
    gh_command = str(os.getenv('AWE_PRWATCH_GH_COMMAND', 'gh') or 'gh').strip() or 'gh'
    github_api_base = str(
        os.getenv('AWE_PRWATCH_GITHUB_API_BASE', 'https://api.github.com') or 'https://api.github.com'
    ).strip().rstrip('/')
    return Settings(
        database_url=database_url,
        service_name=service_name,
        otel_endpoint=otel_endpoint,
        mock_github=_env_bool('AWE_PRWATCH_MOCK_GITHUB', False),
        gh_command=gh_command,
        github_api_base=github_api_base,
        request_timeout_seconds=_env_int('AWE_PRWATCH_REQUEST_TIMEOUT_SECONDS', 30, minimum=1),
        pr_poll_interval_seconds=_env_int('AWE_PRWATCH_PR_POLL_INTERVAL_SECONDS', 60, minimum=5),
        review_poll_interval_seconds=_env_int('AWE_PRWATCH_REVIEW_POLL_INTERVAL_SECONDS', 300, minimum=5),
        autostart_poller=_env_bool('AWE_PRWATCH_AUTOSTART_POLLER', True),
    )
