from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timezone
import json

from awe_prwatch.aggregation import has_issues
from awe_prwatch.domain.models import (
    PR,
    PR_STATE_MERGED,
    CheckRun,
    CheckSource,
    CommentType,
    GitHubOrg,
    GitHubRepo,
    PRComment,
    PRFeedback,
    PRReview,
    RequestedReviewer,
    ReviewScope,
)

_BASE_QUERY_USER = 'type:pr state:open user-review-requested:@me'
_BASE_QUERY_USER_AND_TEAMS = 'type:pr state:open review-requested:@me'

REVIEW_EVENTS = ('APPROVE', 'COMMENT', 'REQUEST_CHANGES')


class GitHubClientError(RuntimeError):
    """A remote call failed or returned something unusable."""


class ClientUnavailableError(GitHubClientError):
    def __init__(self, message: str = 'github client not available'):
        super().__init__(message)


class GitHubClient(ABC):
    """Capability surface every remote implementation provides."""

    auth_method: str = 'none'

    @abstractmethod
    def is_authenticated(self) -> bool:
        raise NotImplementedError

    @abstractmethod
    def get_authenticated_user(self) -> str:
        raise NotImplementedError

    @abstractmethod
    def get_pr(self, owner: str, repo: str, number: int) -> PR:
        raise NotImplementedError

    @abstractmethod
    def find_pr_by_branch(self, owner: str, repo: str, branch: str) -> PR | None:
        raise NotImplementedError

    @abstractmethod
    def list_authored_prs(self, owner: str, repo: str) -> list[PR]:
        raise NotImplementedError

    @abstractmethod
    def list_review_requested_prs(self, scope: str, filter: str, custom_query: str) -> list[PR]:
        raise NotImplementedError

    @abstractmethod
    def list_user_orgs(self) -> list[GitHubOrg]:
        raise NotImplementedError

    @abstractmethod
    def search_org_repos(self, org: str, query: str, limit: int = 20) -> list[GitHubRepo]:
        raise NotImplementedError

    @abstractmethod
    def list_pr_reviews(self, owner: str, repo: str, number: int) -> list[PRReview]:
        raise NotImplementedError

    @abstractmethod
    def list_pr_comments(
        self,
        owner: str,
        repo: str,
        number: int,
        since: datetime | None = None,
    ) -> list[PRComment]:
        raise NotImplementedError

    @abstractmethod
    def list_check_runs(self, owner: str, repo: str, ref: str) -> list[CheckRun]:
        raise NotImplementedError

    @abstractmethod
    def submit_review(self, owner: str, repo: str, number: int, event: str, body: str = '') -> None:
        raise NotImplementedError

    def get_pr_feedback(self, owner: str, repo: str, number: int) -> PRFeedback:
        pr = self.get_pr(owner, repo, number)
        reviews = self.list_pr_reviews(owner, repo, number)
        comments = self.list_pr_comments(owner, repo, number)
        checks = self.list_check_runs(owner, repo, pr.head_sha) if pr.head_sha else []
        return PRFeedback(
            pr=pr,
            reviews=reviews,
            comments=comments,
            checks=checks,
            has_issues=has_issues(checks, reviews),
        )


def build_review_search_query(scope: str, filter: str, custom_query: str) -> str:
    custom = str(custom_query or '').strip()
    qualifier = str(filter or '').strip()
    if custom:
        if qualifier:
            return f'{custom} {qualifier}'
        return custom
    if str(scope or '').strip().lower() == ReviewScope.USER.value:
        base = _BASE_QUERY_USER
    else:
        base = _BASE_QUERY_USER_AND_TEAMS
    if qualifier:
        return f'{base} {qualifier}'
    return base


def parse_time(value) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    text = str(value).strip()
    if not text:
        return None
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_time(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')


def parse_repo_url(url: str) -> tuple[str, str]:
    """Owner and repo from an API url such as https://api.github.com/repos/o/r."""
    parts = [part for part in str(url or '').strip().rstrip('/').split('/')]
    if len(parts) < 2:
        return '', ''
    return parts[-2], parts[-1]


def normalize_pr_state(state: str | None, merged_at) -> str:
    if parse_time(merged_at) is not None:
        return PR_STATE_MERGED
    return str(state or '').strip().lower()


def decode_json_documents(text: str) -> list:
    """Decode output that may hold several JSON arrays back to back.

    `gh api --paginate` prints one array per page without joining them.
    """
    decoder = json.JSONDecoder()
    items: list = []
    raw = str(text or '')
    index = 0
    length = len(raw)
    while index < length:
        while index < length and raw[index].isspace():
            index += 1
        if index >= length:
            break
        value, index = decoder.raw_decode(raw, index)
        if isinstance(value, list):
            items.extend(value)
        else:
            items.append(value)
    return items


def _login(raw: dict | None) -> str:
    return str((raw or {}).get('login') or '')


def _is_bot(raw: dict | None) -> bool:
    return str((raw or {}).get('type') or '').strip().lower() == 'bot'


def convert_rest_pr(raw: dict, owner: str, repo: str) -> PR:
    reviewers: list[RequestedReviewer] = []
    for item in raw.get('requested_reviewers') or []:
        login = _login(item)
        if login:
            reviewers.append(RequestedReviewer(login=login, type='user'))
    for item in raw.get('requested_teams') or []:
        login = str((item or {}).get('slug') or (item or {}).get('name') or '')
        if login:
            reviewers.append(RequestedReviewer(login=login, type='team'))
    head = raw.get('head') or {}
    base = raw.get('base') or {}
    return PR(
        number=int(raw.get('number') or 0),
        title=str(raw.get('title') or ''),
        url=str(raw.get('url') or raw.get('html_url') or ''),
        html_url=str(raw.get('html_url') or ''),
        body=str(raw.get('body') or ''),
        state=normalize_pr_state(raw.get('state'), raw.get('merged_at')),
        head_branch=str(head.get('ref') or ''),
        head_sha=str(head.get('sha') or ''),
        base_branch=str(base.get('ref') or ''),
        author_login=_login(raw.get('user')),
        repo_owner=owner,
        repo_name=repo,
        draft=bool(raw.get('draft')),
        mergeable=bool(raw.get('mergeable')),
        additions=int(raw.get('additions') or 0),
        deletions=int(raw.get('deletions') or 0),
        requested_reviewers=reviewers,
        created_at=parse_time(raw.get('created_at')),
        updated_at=parse_time(raw.get('updated_at')),
        merged_at=parse_time(raw.get('merged_at')),
        closed_at=parse_time(raw.get('closed_at')),
    )


def convert_search_item(raw: dict) -> PR:
    owner, repo = parse_repo_url(str(raw.get('repository_url') or ''))
    html_url = str(raw.get('html_url') or '')
    return PR(
        number=int(raw.get('number') or 0),
        title=str(raw.get('title') or ''),
        url=html_url,
        html_url=html_url,
        state=str(raw.get('state') or '').strip().lower(),
        author_login=_login(raw.get('user')),
        repo_owner=owner,
        repo_name=repo,
        draft=bool(raw.get('draft')),
        created_at=parse_time(raw.get('created_at')),
        updated_at=parse_time(raw.get('updated_at')),
    )


def convert_reviews(raw_items: list[dict]) -> list[PRReview]:
    reviews: list[PRReview] = []
    for raw in raw_items:
        user = raw.get('user') or {}
        author = _login(user) or _login(raw.get('author'))
        created = parse_time(raw.get('submitted_at') or raw.get('submittedAt'))
        reviews.append(
            PRReview(
                id=int(raw.get('id') or 0),
                author=author,
                author_avatar=str(user.get('avatar_url') or ''),
                state=str(raw.get('state') or '').strip().upper(),
                body=str(raw.get('body') or ''),
                created_at=created or datetime.fromtimestamp(0, tz=timezone.utc),
            )
        )
    return reviews


def _comment_times(raw: dict) -> tuple[datetime, datetime]:
    created = parse_time(raw.get('created_at')) or datetime.fromtimestamp(0, tz=timezone.utc)
    updated = parse_time(raw.get('updated_at')) or created
    return created, updated


def convert_review_comments(raw_items: list[dict]) -> list[PRComment]:
    comments: list[PRComment] = []
    for raw in raw_items:
        user = raw.get('user') or {}
        created, updated = _comment_times(raw)
        reply = raw.get('in_reply_to_id')
        comments.append(
            PRComment(
                id=int(raw.get('id') or 0),
                author=_login(user),
                author_avatar=str(user.get('avatar_url') or ''),
                author_is_bot=_is_bot(user),
                body=str(raw.get('body') or ''),
                path=str(raw.get('path') or ''),
                line=int(raw.get('line') or 0),
                side=str(raw.get('side') or ''),
                comment_type=CommentType.REVIEW.value,
                created_at=created,
                updated_at=updated,
                in_reply_to=int(reply) if reply is not None else None,
            )
        )
    return comments


def convert_issue_comments(raw_items: list[dict]) -> list[PRComment]:
    comments: list[PRComment] = []
    for raw in raw_items:
        user = raw.get('user') or {}
        created, updated = _comment_times(raw)
        comments.append(
            PRComment(
                id=int(raw.get('id') or 0),
                author=_login(user),
                author_avatar=str(user.get('avatar_url') or ''),
                author_is_bot=_is_bot(user),
                body=str(raw.get('body') or ''),
                comment_type=CommentType.ISSUE.value,
                created_at=created,
                updated_at=updated,
            )
        )
    return comments


def convert_check_runs(raw_items: list[dict]) -> list[CheckRun]:
    checks: list[CheckRun] = []
    for raw in raw_items:
        output = raw.get('output') or {}
        checks.append(
            CheckRun(
                name=str(raw.get('name') or ''),
                source=CheckSource.CHECK_RUN.value,
                status=str(raw.get('status') or '').strip().lower(),
                conclusion=str(raw.get('conclusion') or '').strip().lower(),
                html_url=str(raw.get('html_url') or ''),
                output=str(output.get('summary') or ''),
                started_at=parse_time(raw.get('started_at')),
                completed_at=parse_time(raw.get('completed_at')),
            )
        )
    return checks


def convert_status_contexts(raw_items: list[dict]) -> list[CheckRun]:
    checks: list[CheckRun] = []
    for raw in raw_items:
        state = str(raw.get('state') or '').strip().lower()
        status = 'completed'
        conclusion = state
        if state == 'success':
            conclusion = 'success'
        elif state in {'failure', 'error'}:
            conclusion = 'failure'
        elif state == 'pending':
            status = 'in_progress'
            conclusion = ''
        checks.append(
            CheckRun(
                name=str(raw.get('context') or ''),
                source=CheckSource.STATUS_CONTEXT.value,
                status=status,
                conclusion=conclusion,
                html_url=str(raw.get('target_url') or ''),
                output=str(raw.get('description') or ''),
                started_at=parse_time(raw.get('created_at')),
                completed_at=parse_time(raw.get('updated_at')) if status == 'completed' else None,
            )
        )
    return checks


def convert_orgs(raw_items: list[dict]) -> list[GitHubOrg]:
    return [
        GitHubOrg(login=_login(item), avatar_url=str(item.get('avatar_url') or ''))
        for item in raw_items
    ]


def convert_repos(raw_items: list[dict]) -> list[GitHubRepo]:
    return [
        GitHubRepo(
            full_name=str(item.get('full_name') or ''),
            owner=_login(item.get('owner')),
            name=str(item.get('name') or ''),
            private=bool(item.get('private')),
        )
        for item in raw_items
    ]


def normalize_review_event(event: str) -> str:
    text = str(event or '').strip().upper()
    if text not in REVIEW_EVENTS:
        raise ValueError(f'invalid review event: {event}')
    return text
