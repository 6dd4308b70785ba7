from __future__ import annotations

from datetime import datetime

from awe_prwatch.adapters.base import ClientUnavailableError, GitHubClient
from awe_prwatch.domain.models import PR, CheckRun, GitHubOrg, GitHubRepo, PRComment, PRFeedback, PRReview


class NoopClient(GitHubClient):
    """Stand-in selected when no credentials are available.

    Every call raises ClientUnavailableError so callers can treat the whole
    integration as disabled.
    """

    auth_method = 'none'

    def is_authenticated(self) -> bool:
        raise ClientUnavailableError()

    def get_authenticated_user(self) -> str:
        raise ClientUnavailableError()

    def get_pr(self, owner: str, repo: str, number: int) -> PR:
        raise ClientUnavailableError()

    def find_pr_by_branch(self, owner: str, repo: str, branch: str) -> PR | None:
        raise ClientUnavailableError()

    def list_authored_prs(self, owner: str, repo: str) -> list[PR]:
        raise ClientUnavailableError()

    def list_review_requested_prs(self, scope: str, filter: str, custom_query: str) -> list[PR]:
        raise ClientUnavailableError()

    def list_user_orgs(self) -> list[GitHubOrg]:
        raise ClientUnavailableError()

    def search_org_repos(self, org: str, query: str, limit: int = 20) -> list[GitHubRepo]:
        raise ClientUnavailableError()

    def list_pr_reviews(self, owner: str, repo: str, number: int) -> list[PRReview]:
        raise ClientUnavailableError()

    def list_pr_comments(
        self,
        owner: str,
        repo: str,
        number: int,
        since: datetime | None = None,
    ) -> list[PRComment]:
        raise ClientUnavailableError()

    def list_check_runs(self, owner: str, repo: str, ref: str) -> list[CheckRun]:
        raise ClientUnavailableError()

    def submit_review(self, owner: str, repo: str, number: int, event: str, body: str = '') -> None:
        raise ClientUnavailableError()

    def get_pr_feedback(self, owner: str, repo: str, number: int) -> PRFeedback:
        raise ClientUnavailableError()
