from __future__ import annotations

from datetime import datetime

import httpx

from awe_prwatch.adapters.base import (
    GitHubClient,
    GitHubClientError,
    build_review_search_query,
    convert_check_runs,
    convert_issue_comments,
    convert_orgs,
    convert_repos,
    convert_rest_pr,
    convert_review_comments,
    convert_reviews,
    convert_search_item,
    convert_status_contexts,
    format_time,
    normalize_review_event,
)
from awe_prwatch.aggregation import merge_and_sort_comments, merge_checks
from awe_prwatch.domain.models import PR, CheckRun, GitHubOrg, GitHubRepo, PRComment, PRReview
from awe_prwatch.observability import get_logger

_log = get_logger('awe_prwatch.adapters.token')

DEFAULT_API_BASE = 'https://api.github.com'
_API_VERSION = '2022-11-28'
_ERROR_BODY_LIMIT = 4096


class TokenClient(GitHubClient):
    """REST v3 client authenticated with a personal access token."""

    auth_method = 'token'

    def __init__(
        self,
        token: str,
        *,
        api_base: str = DEFAULT_API_BASE,
        timeout_seconds: int = 30,
        transport: httpx.BaseTransport | None = None,
    ):
        self._username = ''
        self.api_base = str(api_base or DEFAULT_API_BASE).rstrip('/')
        self._http = httpx.Client(
            base_url=self.api_base,
            timeout=max(1, int(timeout_seconds)),
            headers={
                'Authorization': f'token {token}',
                'Accept': 'application/vnd.github+json',
                'X-GitHub-Api-Version': _API_VERSION,
            },
            transport=transport,
        )

    def close(self) -> None:
        self._http.close()

    def is_authenticated(self) -> bool:
        try:
            self.get_authenticated_user()
        except GitHubClientError:
            return False
        return True

    def get_authenticated_user(self) -> str:
        if self._username:
            return self._username
        payload = self._get('/user') or {}
        self._username = str(payload.get('login') or '')
        return self._username

    def get_pr(self, owner: str, repo: str, number: int) -> PR:
        payload = self._get(f'/repos/{owner}/{repo}/pulls/{int(number)}') or {}
        return convert_rest_pr(payload, owner, repo)

    def find_pr_by_branch(self, owner: str, repo: str, branch: str) -> PR | None:
        payload = self._get(
            f'/repos/{owner}/{repo}/pulls',
            params={'head': f'{owner}:{branch}', 'state': 'open', 'per_page': 1},
        ) or []
        if not payload:
            return None
        return convert_rest_pr(payload[0], owner, repo)

    def list_authored_prs(self, owner: str, repo: str) -> list[PR]:
        user = self.get_authenticated_user()
        payload = self._get(f'/repos/{owner}/{repo}/pulls', params={'state': 'open', 'per_page': 100}) or []
        return [
            convert_rest_pr(item, owner, repo)
            for item in payload
            if str((item.get('user') or {}).get('login') or '') == user
        ]

    def list_review_requested_prs(self, scope: str, filter: str, custom_query: str) -> list[PR]:
        query = build_review_search_query(scope, filter, custom_query)
        payload = self._get('/search/issues', params={'q': query, 'per_page': 50}) or {}
        return [convert_search_item(item) for item in payload.get('items') or []]

    def list_user_orgs(self) -> list[GitHubOrg]:
        payload = self._get('/user/orgs', params={'per_page': 100}) or []
        return convert_orgs(payload)

    def search_org_repos(self, org: str, query: str, limit: int = 20) -> list[GitHubRepo]:
        q = f'org:{org}'
        if str(query or '').strip():
            q = f'{q} {str(query).strip()}'
        if int(limit or 0) <= 0:
            limit = 20
        payload = self._get('/search/repositories', params={'q': q, 'per_page': int(limit)}) or {}
        return convert_repos(payload.get('items') or [])

    def list_pr_reviews(self, owner: str, repo: str, number: int) -> list[PRReview]:
        payload = self._get(f'/repos/{owner}/{repo}/pulls/{int(number)}/reviews', params={'per_page': 100}) or []
        return convert_reviews(payload)

    def list_pr_comments(
        self,
        owner: str,
        repo: str,
        number: int,
        since: datetime | None = None,
    ) -> list[PRComment]:
        params: dict[str, object] = {'per_page': 100}
        if since is not None:
            params['since'] = format_time(since)
        review_raw = self._get(f'/repos/{owner}/{repo}/pulls/{int(number)}/comments', params=params) or []
        issue_raw = self._get(f'/repos/{owner}/{repo}/issues/{int(number)}/comments', params=params) or []
        return merge_and_sort_comments(
            convert_review_comments(review_raw),
            convert_issue_comments(issue_raw),
        )

    def list_check_runs(self, owner: str, repo: str, ref: str) -> list[CheckRun]:
        runs = self._get(f'/repos/{owner}/{repo}/commits/{ref}/check-runs') or {}
        status = self._get(f'/repos/{owner}/{repo}/commits/{ref}/status') or {}
        return merge_checks(
            convert_check_runs(runs.get('check_runs') or []),
            convert_status_contexts(status.get('statuses') or []),
        )

    def submit_review(self, owner: str, repo: str, number: int, event: str, body: str = '') -> None:
        payload = {'event': normalize_review_event(event)}
        if str(body or '').strip():
            payload['body'] = body
        self._request('POST', f'/repos/{owner}/{repo}/pulls/{int(number)}/reviews', json=payload)

    def _get(self, endpoint: str, *, params: dict | None = None):
        response = self._request('GET', endpoint, params=params)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise GitHubClientError(f'GitHub API {endpoint} returned invalid json') from exc

    def _request(self, method: str, endpoint: str, **kwargs) -> httpx.Response:
        try:
            response = self._http.request(method, endpoint, **kwargs)
        except httpx.HTTPError as exc:
            raise GitHubClientError(f'request {method} {endpoint}: {exc}') from exc
        if response.status_code >= 400:
            _log.debug('github_api_error method=%s endpoint=%s status=%s', method, endpoint, response.status_code)
            raise GitHubClientError(
                f'GitHub API {method} {endpoint} returned {response.status_code}: '
                f'{response.text[:_ERROR_BODY_LIMIT]}'
            )
        return response
