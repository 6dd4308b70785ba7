from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class ReviewScope(str, Enum):
    USER = 'user'
    USER_AND_TEAMS = 'user_and_teams'


class ReviewEvent(str, Enum):
    APPROVE = 'APPROVE'
    COMMENT = 'COMMENT'
    REQUEST_CHANGES = 'REQUEST_CHANGES'


class AuthMethod(str, Enum):
    GH_CLI = 'gh_cli'
    TOKEN = 'token'
    MOCK = 'mock'
    NONE = 'none'


class CheckSource(str, Enum):
    CHECK_RUN = 'check_run'
    STATUS_CONTEXT = 'status_context'


class CommentType(str, Enum):
    REVIEW = 'review'
    ISSUE = 'issue'


DEFAULT_REVIEW_POLL_INTERVAL_SECONDS = 300
MIN_REVIEW_POLL_INTERVAL_SECONDS = 60

PR_STATE_OPEN = 'open'
PR_STATE_CLOSED = 'closed'
PR_STATE_MERGED = 'merged'


def clamp_poll_interval(value: int | None) -> int:
    if value is None or int(value) <= 0:
        return DEFAULT_REVIEW_POLL_INTERVAL_SECONDS
    return max(MIN_REVIEW_POLL_INTERVAL_SECONDS, int(value))


@dataclass(frozen=True)
class RequestedReviewer:
    login: str
    type: str = 'user'


@dataclass
class PR:
    number: int
    title: str = ''
    url: str = ''
    html_url: str = ''
    body: str = ''
    state: str = PR_STATE_OPEN
    head_branch: str = ''
    head_sha: str = ''
    base_branch: str = ''
    author_login: str = ''
    repo_owner: str = ''
    repo_name: str = ''
    draft: bool = False
    mergeable: bool = False
    additions: int = 0
    deletions: int = 0
    requested_reviewers: list[RequestedReviewer] = field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None
    merged_at: datetime | None = None
    closed_at: datetime | None = None


@dataclass
class PRReview:
    id: int
    author: str
    state: str
    created_at: datetime
    author_avatar: str = ''
    body: str = ''


@dataclass
class PRComment:
    id: int
    author: str
    body: str
    created_at: datetime
    updated_at: datetime
    comment_type: str = CommentType.REVIEW.value
    author_avatar: str = ''
    author_is_bot: bool = False
    path: str = ''
    line: int = 0
    side: str = ''
    in_reply_to: int | None = None


@dataclass
class CheckRun:
    name: str
    status: str
    conclusion: str = ''
    source: str = CheckSource.CHECK_RUN.value
    html_url: str = ''
    output: str = ''
    started_at: datetime | None = None
    completed_at: datetime | None = None


@dataclass
class PRFeedback:
    pr: PR
    reviews: list[PRReview] = field(default_factory=list)
    comments: list[PRComment] = field(default_factory=list)
    checks: list[CheckRun] = field(default_factory=list)
    has_issues: bool = False


@dataclass(frozen=True)
class RepoFilter:
    owner: str
    name: str = ''

    def qualifier(self) -> str:
        owner = str(self.owner or '').strip()
        name = str(self.name or '').strip()
        if name:
            return f'repo:{owner}/{name}'
        return f'org:{owner}'


@dataclass
class PRWatch:
    id: str
    session_id: str
    task_id: str
    owner: str
    repo: str
    pr_number: int
    branch: str
    created_at: datetime
    updated_at: datetime
    last_checked_at: datetime | None = None
    last_comment_at: datetime | None = None
    last_check_status: str = ''


@dataclass
class TaskPR:
    id: str
    task_id: str
    owner: str
    repo: str
    pr_number: int
    created_at: datetime
    updated_at: datetime
    pr_url: str = ''
    pr_title: str = ''
    head_branch: str = ''
    base_branch: str = ''
    author_login: str = ''
    state: str = PR_STATE_OPEN
    review_state: str = ''
    checks_state: str = ''
    review_count: int = 0
    pending_review_count: int = 0
    comment_count: int = 0
    additions: int = 0
    deletions: int = 0
    merged_at: datetime | None = None
    closed_at: datetime | None = None
    last_synced_at: datetime | None = None


@dataclass
class ReviewWatch:
    id: str
    workspace_id: str
    workflow_id: str
    workflow_step_id: str
    agent_profile_id: str
    created_at: datetime
    updated_at: datetime
    repos: list[RepoFilter] = field(default_factory=list)
    executor_profile_id: str = ''
    prompt: str = ''
    review_scope: str = ReviewScope.USER_AND_TEAMS.value
    custom_query: str = ''
    enabled: bool = True
    poll_interval_seconds: int = DEFAULT_REVIEW_POLL_INTERVAL_SECONDS
    last_polled_at: datetime | None = None


@dataclass
class ReviewPRTask:
    id: str
    review_watch_id: str
    repo_owner: str
    repo_name: str
    pr_number: int
    created_at: datetime
    pr_url: str = ''
    task_id: str = ''


@dataclass(frozen=True)
class GitHubStatus:
    authenticated: bool
    username: str = ''
    auth_method: str = AuthMethod.NONE.value


@dataclass(frozen=True)
class GitHubOrg:
    login: str
    avatar_url: str = ''


@dataclass(frozen=True)
class GitHubRepo:
    full_name: str
    owner: str
    name: str
    private: bool = False


@dataclass(frozen=True)
class DailyCount:
    date: str
    count: int


@dataclass
class PRStats:
    total_prs_created: int = 0
    total_prs_reviewed: int = 0
    total_comments: int = 0
    ci_pass_rate: float = 0.0
    approval_rate: float = 0.0
    avg_time_to_merge_hours: float = 0.0
    prs_by_day: list[DailyCount] = field(default_factory=list)
