from __future__ import annotations

from datetime import datetime
import json
import shutil
import subprocess

from awe_prwatch.adapters.base import (
    GitHubClient,
    GitHubClientError,
    build_review_search_query,
    convert_check_runs,
    convert_issue_comments,
    convert_orgs,
    convert_repos,
    convert_review_comments,
    convert_reviews,
    convert_search_item,
    convert_status_contexts,
    decode_json_documents,
    format_time,
    normalize_pr_state,
    normalize_review_event,
    parse_time,
)
from awe_prwatch.aggregation import merge_and_sort_comments, merge_checks
from awe_prwatch.domain.models import PR, CheckRun, GitHubOrg, GitHubRepo, PRComment, PRReview, RequestedReviewer
from awe_prwatch.observability import get_logger

_log = get_logger('awe_prwatch.adapters.gh_cli')

_PR_VIEW_FIELDS = (
    'number,title,url,body,state,headRefName,headRefOid,baseRefName,author,isDraft,'
    'mergeable,additions,deletions,reviewRequests,createdAt,updatedAt,mergedAt,closedAt'
)
_PR_LIST_FIELDS = (
    'number,title,url,state,headRefName,headRefOid,baseRefName,author,isDraft,'
    'mergeable,additions,deletions,createdAt,updatedAt,mergedAt,closedAt'
)
_UNAUTHENTICATED_MARKERS = ('not logged', 'no accounts')


def gh_available(command: str = 'gh') -> bool:
    return shutil.which(command) is not None


def convert_gh_pr(raw: dict, owner: str, repo: str) -> PR:
    reviewers: list[RequestedReviewer] = []
    for item in raw.get('reviewRequests') or []:
        kind = str((item or {}).get('__typename') or '').strip().lower()
        if kind == 'team':
            login = str(item.get('slug') or item.get('name') or '')
            if login:
                reviewers.append(RequestedReviewer(login=login, type='team'))
            continue
        login = str((item or {}).get('login') or '')
        if login:
            reviewers.append(RequestedReviewer(login=login, type='user'))
    url = str(raw.get('url') or '')
    return PR(
        number=int(raw.get('number') or 0),
        title=str(raw.get('title') or ''),
        url=url,
        html_url=url,
        body=str(raw.get('body') or ''),
        state=normalize_pr_state(raw.get('state'), raw.get('mergedAt')),
        head_branch=str(raw.get('headRefName') or ''),
        head_sha=str(raw.get('headRefOid') or ''),
        base_branch=str(raw.get('baseRefName') or ''),
        author_login=str((raw.get('author') or {}).get('login') or ''),
        repo_owner=owner,
        repo_name=repo,
        draft=bool(raw.get('isDraft')),
        mergeable=str(raw.get('mergeable') or '').upper() == 'MERGEABLE',
        additions=int(raw.get('additions') or 0),
        deletions=int(raw.get('deletions') or 0),
        requested_reviewers=reviewers,
        created_at=parse_time(raw.get('createdAt')),
        updated_at=parse_time(raw.get('updatedAt')),
        merged_at=parse_time(raw.get('mergedAt')),
        closed_at=parse_time(raw.get('closedAt')),
    )


class GhCliClient(GitHubClient):
    """Talks to GitHub through the locally authenticated `gh` tool."""

    auth_method = 'gh_cli'

    def __init__(self, *, command: str = 'gh', timeout_seconds: int = 30):
        self.command = str(command or 'gh').strip() or 'gh'
        self.timeout_seconds = max(1, int(timeout_seconds))

    def is_authenticated(self) -> bool:
        completed = self._exec('auth', 'status', '--hostname', 'github.com')
        if completed.returncode == 0:
            return True
        text = f'{completed.stdout}\n{completed.stderr}'.lower()
        if any(marker in text for marker in _UNAUTHENTICATED_MARKERS):
            return False
        raise GitHubClientError(f'gh auth status failed: {completed.stderr.strip()}')

    def get_authenticated_user(self) -> str:
        return self._run('api', 'user', '-q', '.login').strip()

    def get_pr(self, owner: str, repo: str, number: int) -> PR:
        out = self._run(
            'pr', 'view', str(int(number)),
            '--repo', f'{owner}/{repo}',
            '--json', _PR_VIEW_FIELDS,
        )
        return convert_gh_pr(self._loads(out, 'pr view'), owner, repo)

    def find_pr_by_branch(self, owner: str, repo: str, branch: str) -> PR | None:
        out = self._run(
            'pr', 'list',
            '--repo', f'{owner}/{repo}',
            '--head', branch,
            '--state', 'open',
            '--json', _PR_LIST_FIELDS,
            '--limit', '1',
        )
        items = self._loads(out, 'pr list') or []
        if not items:
            return None
        return convert_gh_pr(items[0], owner, repo)

    def list_authored_prs(self, owner: str, repo: str) -> list[PR]:
        out = self._run(
            'pr', 'list',
            '--repo', f'{owner}/{repo}',
            '--author', '@me',
            '--state', 'open',
            '--json', _PR_LIST_FIELDS,
        )
        return [convert_gh_pr(item, owner, repo) for item in (self._loads(out, 'pr list') or [])]

    def list_review_requested_prs(self, scope: str, filter: str, custom_query: str) -> list[PR]:
        query = build_review_search_query(scope, filter, custom_query)
        out = self._run(
            'api', 'search/issues',
            '-X', 'GET',
            '-f', f'q={query}',
            '-f', 'per_page=50',
            '--jq', '.items',
        )
        return [convert_search_item(item) for item in (self._loads(out, 'search issues') or [])]

    def list_user_orgs(self) -> list[GitHubOrg]:
        out = self._run('api', 'user/orgs', '--paginate')
        return convert_orgs(decode_json_documents(out))

    def search_org_repos(self, org: str, query: str, limit: int = 20) -> list[GitHubRepo]:
        q = f'org:{org}'
        if str(query or '').strip():
            q = f'{q} {str(query).strip()}'
        if int(limit or 0) <= 0:
            limit = 20
        out = self._run(
            'api', 'search/repositories',
            '-X', 'GET',
            '-f', f'q={q}',
            '-f', f'per_page={int(limit)}',
            '--jq', '.items',
        )
        return convert_repos(self._loads(out, 'search repositories') or [])

    def list_pr_reviews(self, owner: str, repo: str, number: int) -> list[PRReview]:
        out = self._run('api', f'repos/{owner}/{repo}/pulls/{int(number)}/reviews', '--paginate')
        return convert_reviews(decode_json_documents(out))

    def list_pr_comments(
        self,
        owner: str,
        repo: str,
        number: int,
        since: datetime | None = None,
    ) -> list[PRComment]:
        suffix = f'?since={format_time(since)}' if since is not None else ''
        review_out = self._run('api', f'repos/{owner}/{repo}/pulls/{int(number)}/comments{suffix}', '--paginate')
        issue_out = self._run('api', f'repos/{owner}/{repo}/issues/{int(number)}/comments{suffix}', '--paginate')
        return merge_and_sort_comments(
            convert_review_comments(decode_json_documents(review_out)),
            convert_issue_comments(decode_json_documents(issue_out)),
        )

    def list_check_runs(self, owner: str, repo: str, ref: str) -> list[CheckRun]:
        runs_out = self._run('api', f'repos/{owner}/{repo}/commits/{ref}/check-runs', '--jq', '.check_runs')
        status_out = self._run('api', f'repos/{owner}/{repo}/commits/{ref}/status', '--jq', '.statuses')
        return merge_checks(
            convert_check_runs(self._loads(runs_out, 'check runs') or []),
            convert_status_contexts(self._loads(status_out, 'commit status') or []),
        )

    def submit_review(self, owner: str, repo: str, number: int, event: str, body: str = '') -> None:
        args = [
            'api', f'repos/{owner}/{repo}/pulls/{int(number)}/reviews',
            '-X', 'POST',
            '-f', f'event={normalize_review_event(event)}',
        ]
        if str(body or '').strip():
            args.extend(['-f', f'body={body}'])
        self._run(*args)

    def _exec(self, *args: str) -> subprocess.CompletedProcess:
        argv = [self.command, *args]
        try:
            return subprocess.run(
                argv,
                capture_output=True,
                text=True,
                encoding='utf-8',
                errors='replace',
                timeout=self.timeout_seconds,
                check=False,
            )
        except FileNotFoundError as exc:
            raise GitHubClientError(f'{self.command} not found') from exc
        except subprocess.TimeoutExpired as exc:
            raise GitHubClientError(f'{self.command} {args[0]} timed out after {self.timeout_seconds}s') from exc

    def _run(self, *args: str) -> str:
        completed = self._exec(*args)
        if completed.returncode != 0:
            _log.debug('gh_command_failed args=%s returncode=%s', args[:2], completed.returncode)
            raise GitHubClientError(
                f'{self.command} {args[0]} exited {completed.returncode}: {completed.stderr.strip()}'
            )
        return completed.stdout

    @staticmethod
    def _loads(text: str, label: str):
        raw = str(text or '').strip()
        if not raw:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            raise GitHubClientError(f'parse {label} response: {exc}') from exc
