from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from threading import Lock

from awe_prwatch.adapters.base import GitHubClient, GitHubClientError, normalize_review_event
from awe_prwatch.domain.models import PR, PR_STATE_OPEN, CheckRun, GitHubOrg, GitHubRepo, PRComment, PRReview


@dataclass(frozen=True)
class SubmittedReview:
    owner: str
    repo: str
    number: int
    event: str
    body: str


def _filter_matches(pr: PR, qualifier: str) -> bool:
    text = str(qualifier or '').strip()
    if not text:
        return True
    for token in text.split():
        if token.startswith('repo:'):
            owner, _, name = token[5:].partition('/')
            if pr.repo_owner != owner or pr.repo_name != name:
                return False
        elif token.startswith('org:'):
            if pr.repo_owner != token[4:]:
                return False
    return True


class MockClient(GitHubClient):
    """Deterministic in-memory GitHub used for development and tests.

    Fixtures are injected with the add_* helpers. A failure can be armed per
    operation name with set_failure; the next calls to that operation raise
    until clear_failures() is called.
    """

    auth_method = 'mock'

    def __init__(self, *, user: str = 'mock-user'):
        self._lock = Lock()
        self._user = user
        self._prs: dict[tuple[str, str, int], PR] = {}
        self._prs_by_branch: dict[tuple[str, str, str], PR] = {}
        self._reviews: dict[tuple[str, str, int], list[PRReview]] = {}
        self._comments: dict[tuple[str, str, int], list[PRComment]] = {}
        self._checks: dict[tuple[str, str, str], list[CheckRun]] = {}
        self._orgs: list[GitHubOrg] = []
        self._repos: dict[str, list[GitHubRepo]] = {}
        self._submitted: list[SubmittedReview] = []
        self._failures: dict[str, Exception] = {}
        self.search_calls: list[tuple[str, str, str]] = []

    # fixture injection

    def set_user(self, username: str) -> None:
        with self._lock:
            self._user = username

    def add_pr(self, pr: PR) -> None:
        with self._lock:
            self._prs[(pr.repo_owner, pr.repo_name, pr.number)] = pr
            if pr.head_branch:
                self._prs_by_branch[(pr.repo_owner, pr.repo_name, pr.head_branch)] = pr

    def add_reviews(self, owner: str, repo: str, number: int, reviews: list[PRReview]) -> None:
        with self._lock:
            self._reviews.setdefault((owner, repo, int(number)), []).extend(reviews)

    def add_comments(self, owner: str, repo: str, number: int, comments: list[PRComment]) -> None:
        with self._lock:
            self._comments.setdefault((owner, repo, int(number)), []).extend(comments)

    def add_check_runs(self, owner: str, repo: str, ref: str, checks: list[CheckRun]) -> None:
        with self._lock:
            self._checks.setdefault((owner, repo, ref), []).extend(checks)

    def add_orgs(self, orgs: list[GitHubOrg]) -> None:
        with self._lock:
            self._orgs.extend(orgs)

    def add_repos(self, org: str, repos: list[GitHubRepo]) -> None:
        with self._lock:
            self._repos.setdefault(org, []).extend(repos)

    def set_failure(self, operation: str, error: Exception | None = None) -> None:
        with self._lock:
            self._failures[operation] = error or GitHubClientError(f'mock: {operation} failed')

    def clear_failures(self) -> None:
        with self._lock:
            self._failures.clear()

    def submitted_reviews(self) -> list[SubmittedReview]:
        with self._lock:
            return list(self._submitted)

    def reset(self) -> None:
        with self._lock:
            self._prs.clear()
            self._prs_by_branch.clear()
            self._reviews.clear()
            self._comments.clear()
            self._checks.clear()
            self._orgs.clear()
            self._repos.clear()
            self._submitted.clear()
            self._failures.clear()
            self.search_calls.clear()

    # client surface

    def is_authenticated(self) -> bool:
        self._maybe_fail('is_authenticated')
        return True

    def get_authenticated_user(self) -> str:
        self._maybe_fail('get_authenticated_user')
        with self._lock:
            return self._user

    def get_pr(self, owner: str, repo: str, number: int) -> PR:
        self._maybe_fail('get_pr')
        with self._lock:
            pr = self._prs.get((owner, repo, int(number)))
        if pr is None:
            raise GitHubClientError(f'mock: PR {owner}/{repo}#{number} not found')
        return replace(pr, requested_reviewers=list(pr.requested_reviewers))

    def find_pr_by_branch(self, owner: str, repo: str, branch: str) -> PR | None:
        self._maybe_fail('find_pr_by_branch')
        with self._lock:
            pr = self._prs_by_branch.get((owner, repo, branch))
        if pr is None or pr.state != PR_STATE_OPEN:
            return None
        return replace(pr)

    def list_authored_prs(self, owner: str, repo: str) -> list[PR]:
        self._maybe_fail('list_authored_prs')
        with self._lock:
            return [
                replace(pr)
                for (pr_owner, pr_repo, _), pr in self._prs.items()
                if pr_owner == owner and pr_repo == repo and pr.author_login == self._user
            ]

    def list_review_requested_prs(self, scope: str, filter: str, custom_query: str) -> list[PR]:
        with self._lock:
            self.search_calls.append((scope, filter, custom_query))
        self._maybe_fail('list_review_requested_prs')
        if filter:
            self._maybe_fail(f'list_review_requested_prs:{filter}')
        with self._lock:
            items = list(self._prs.values())
        return [
            replace(pr, requested_reviewers=list(pr.requested_reviewers))
            for pr in items
            if pr.requested_reviewers and pr.state == PR_STATE_OPEN and _filter_matches(pr, filter)
        ]

    def list_user_orgs(self) -> list[GitHubOrg]:
        self._maybe_fail('list_user_orgs')
        with self._lock:
            return list(self._orgs)

    def search_org_repos(self, org: str, query: str, limit: int = 20) -> list[GitHubRepo]:
        self._maybe_fail('search_org_repos')
        needle = str(query or '').strip().lower()
        with self._lock:
            repos = list(self._repos.get(org, []))
        matched = [repo for repo in repos if not needle or needle in repo.name.lower()]
        if int(limit or 0) > 0:
            matched = matched[: int(limit)]
        return matched

    def list_pr_reviews(self, owner: str, repo: str, number: int) -> list[PRReview]:
        self._maybe_fail('list_pr_reviews')
        with self._lock:
            return list(self._reviews.get((owner, repo, int(number)), []))

    def list_pr_comments(
        self,
        owner: str,
        repo: str,
        number: int,
        since: datetime | None = None,
    ) -> list[PRComment]:
        self._maybe_fail('list_pr_comments')
        with self._lock:
            items = list(self._comments.get((owner, repo, int(number)), []))
        if since is None:
            return items
        return [item for item in items if item.updated_at > since]

    def list_check_runs(self, owner: str, repo: str, ref: str) -> list[CheckRun]:
        self._maybe_fail('list_check_runs')
        with self._lock:
            return list(self._checks.get((owner, repo, ref), []))

    def submit_review(self, owner: str, repo: str, number: int, event: str, body: str = '') -> None:
        self._maybe_fail('submit_review')
        normalized = normalize_review_event(event)
        with self._lock:
            self._submitted.append(
                SubmittedReview(owner=owner, repo=repo, number=int(number), event=normalized, body=body)
            )

    def _maybe_fail(self, operation: str) -> None:
        with self._lock:
            error = self._failures.get(operation)
        if error is not None:
            raise error
