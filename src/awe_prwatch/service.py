from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date, datetime, time as dt_time, timezone
from threading import Lock

from awe_prwatch.adapters.base import (
    ClientUnavailableError,
    GitHubClient,
    GitHubClientError,
    normalize_review_event,
)
from awe_prwatch.aggregation import (
    CHECK_STATUS_SUCCESS,
    REVIEW_STATE_APPROVED,
    derive_review_sync_state,
    find_latest_comment_time,
    overall_check_status,
)
from awe_prwatch.bus import EventBus
from awe_prwatch.domain.events import EventType, NewReviewPREvent, PRFeedbackEvent
from awe_prwatch.domain.models import (
    PR,
    DailyCount,
    GitHubOrg,
    GitHubRepo,
    GitHubStatus,
    PRFeedback,
    PRStats,
    PRWatch,
    RepoFilter,
    ReviewPRTask,
    ReviewScope,
    ReviewWatch,
    TaskPR,
    clamp_poll_interval,
)
from awe_prwatch.observability import get_logger
from awe_prwatch.repository import WatchRepository

_log = get_logger('awe_prwatch.service')

_REVIEW_SCOPES = {item.value for item in ReviewScope}


class InputValidationError(ValueError):
    def __init__(self, message: str, *, field: str | None = None, code: str = 'validation_error'):
        super().__init__(message)
        self.message = message
        self.field = field
        self.code = code


@dataclass(frozen=True)
class CreateReviewWatchInput:
    workspace_id: str
    workflow_id: str
    workflow_step_id: str
    agent_profile_id: str
    repos: list[RepoFilter] = field(default_factory=list)
    executor_profile_id: str = ''
    prompt: str = ''
    review_scope: str = ReviewScope.USER_AND_TEAMS.value
    custom_query: str = ''
    poll_interval_seconds: int = 0


@dataclass(frozen=True)
class UpdateReviewWatchInput:
    workflow_id: str | None = None
    workflow_step_id: str | None = None
    repos: list[RepoFilter] | None = None
    agent_profile_id: str | None = None
    executor_profile_id: str | None = None
    prompt: str | None = None
    review_scope: str | None = None
    custom_query: str | None = None
    enabled: bool | None = None
    poll_interval_seconds: int | None = None


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_pr_url(pr_url: str) -> tuple[str, str, int]:
    """Split https://github.com/{owner}/{repo}/pull/{n} into its parts.

    Surrounding whitespace, a trailing slash, a query string and a fragment
    are tolerated. Raises ValueError for anything else.
    """
    text = str(pr_url or '').strip()
    marker = '/pull/'
    idx = text.find(marker)
    if idx < 0:
        raise ValueError(f'url does not contain /pull/: {text}')
    number_text = text[idx + len(marker):]
    for sep in ('?', '#'):
        cut = number_text.find(sep)
        if cut >= 0:
            number_text = number_text[:cut]
    number_text = number_text.rstrip('/')
    try:
        number = int(number_text)
    except ValueError as exc:
        raise ValueError(f'invalid PR number in url: {text}') from exc
    if number <= 0:
        raise ValueError(f'invalid PR number in url: {text}')
    parts = text[:idx].rstrip('/').split('/')
    if len(parts) < 2:
        raise ValueError(f'cannot extract owner/repo from url: {text}')
    owner, repo = parts[-2], parts[-1]
    if not owner or not repo or owner.endswith(':'):
        raise ValueError(f'empty owner or repo in url: {text}')
    return owner, repo, number


def _pr_key(pr: PR) -> tuple[str, str, int]:
    return (pr.repo_owner, pr.repo_name, int(pr.number))


class GitHubWatchService:
    def __init__(
        self,
        *,
        repository: WatchRepository,
        client: GitHubClient | None,
        auth_method: str = 'none',
        event_bus: EventBus | None = None,
        initial_poll_workers: int = 1,
    ):
        self.repository = repository
        self.client = client
        self.auth_method = auth_method
        self.event_bus = event_bus
        self._initial_poll_pool = ThreadPoolExecutor(
            max_workers=max(1, int(initial_poll_workers)),
            thread_name_prefix='prwatch-initial-poll',
        )
        self._initial_poll_lock = Lock()
        self._initial_poll_futures: list[Future] = []

    @property
    def available(self) -> bool:
        return self.client is not None and self.auth_method != 'none'

    def _require_client(self) -> GitHubClient:
        if not self.available:
            raise ClientUnavailableError()
        return self.client

    def shutdown(self, *, wait: bool = True) -> None:
        self._initial_poll_pool.shutdown(wait=wait)

    def wait_for_initial_polls(self, timeout: float | None = None) -> None:
        with self._initial_poll_lock:
            pending = list(self._initial_poll_futures)
            self._initial_poll_futures.clear()
        for future in pending:
            future.result(timeout=timeout)

    # status

    def get_status(self) -> GitHubStatus:
        if not self.available:
            return GitHubStatus(authenticated=False, auth_method=self.auth_method)
        try:
            authenticated = bool(self.client.is_authenticated())
        except GitHubClientError:
            _log.debug('github_status_probe_failed', exc_info=True)
            return GitHubStatus(authenticated=False, auth_method=self.auth_method)
        username = ''
        if authenticated:
            try:
                username = self.client.get_authenticated_user()
            except GitHubClientError:
                _log.debug('github_status_user_lookup_failed', exc_info=True)
        return GitHubStatus(authenticated=authenticated, username=username, auth_method=self.auth_method)

    # PR watches

    def create_pr_watch(
        self,
        *,
        session_id: str,
        task_id: str,
        owner: str,
        repo: str,
        pr_number: int,
        branch: str,
    ) -> PRWatch:
        existing = self.repository.get_pr_watch_by_session(session_id)
        if existing is not None:
            return existing
        now = _utc_now()
        watch = self.repository.create_pr_watch(
            PRWatch(
                id='',
                session_id=session_id,
                task_id=task_id,
                owner=owner,
                repo=repo,
                pr_number=int(pr_number),
                branch=branch,
                created_at=now,
                updated_at=now,
            )
        )
        _log.info('pr_watch_created session_id=%s pr_number=%s', session_id, pr_number)
        return watch

    def ensure_pr_watch(self, *, session_id: str, task_id: str, owner: str, repo: str, branch: str) -> PRWatch:
        return self.create_pr_watch(
            session_id=session_id,
            task_id=task_id,
            owner=owner,
            repo=repo,
            pr_number=0,
            branch=branch,
        )

    def get_pr_watch_by_session(self, session_id: str) -> PRWatch | None:
        return self.repository.get_pr_watch_by_session(session_id)

    def list_active_pr_watches(self) -> list[PRWatch]:
        return self.repository.list_active_pr_watches()

    def delete_pr_watch(self, watch_id: str) -> bool:
        deleted = self.repository.delete_pr_watch(watch_id)
        if deleted:
            _log.info('pr_watch_deleted watch_id=%s', watch_id)
        return deleted

    def check_pr_watch(self, watch: PRWatch) -> tuple[PRFeedback, bool]:
        client = self._require_client()
        feedback = client.get_pr_feedback(watch.owner, watch.repo, watch.pr_number)

        has_new = False
        latest_comment_at = find_latest_comment_time(feedback.comments)
        if latest_comment_at is not None and (
            watch.last_comment_at is None or latest_comment_at > watch.last_comment_at
        ):
            has_new = True
        check_status = overall_check_status(feedback.checks)
        if check_status != (watch.last_check_status or ''):
            has_new = True

        stored_comment_at = latest_comment_at or watch.last_comment_at
        try:
            self.repository.update_pr_watch_timestamps(
                watch.id,
                checked_at=_utc_now(),
                comment_at=stored_comment_at,
                check_status=check_status,
            )
        except Exception:
            _log.exception('pr_watch_timestamp_update_failed watch_id=%s', watch.id)
        return feedback, has_new

    def detect_pr_for_watch(self, watch: PRWatch) -> bool:
        """Look for an open PR on the watch branch; never raises."""
        if int(watch.pr_number or 0) != 0:
            return False
        try:
            client = self._require_client()
            pr = client.find_pr_by_branch(watch.owner, watch.repo, watch.branch)
        except GitHubClientError as exc:
            _log.debug('pr_detect_failed watch_id=%s branch=%s error=%s', watch.id, watch.branch, exc)
            pr = None
        if pr is None:
            try:
                self.repository.touch_pr_watch(watch.id, _utc_now())
            except Exception:
                _log.debug('pr_watch_touch_failed watch_id=%s', watch.id, exc_info=True)
            return False
        if not pr.repo_owner:
            pr.repo_owner = watch.owner
        if not pr.repo_name:
            pr.repo_name = watch.repo
        # The watch only leaves the searching state once its TaskPR row exists.
        try:
            self.associate_pr_with_task(watch.task_id, pr)
            self.repository.update_pr_watch_pr_number(watch.id, pr.number)
            self.repository.touch_pr_watch(watch.id, _utc_now())
        except Exception:
            _log.debug('pr_detect_persist_failed watch_id=%s', watch.id, exc_info=True)
            return False
        watch.pr_number = pr.number
        _log.info('pr_detected watch_id=%s branch=%s pr_number=%s', watch.id, watch.branch, pr.number)
        return True

    # task PR associations

    def associate_pr_with_task(self, task_id: str, pr: PR) -> TaskPR:
        existing = self.repository.get_task_pr_by_number(task_id, pr.number)
        if existing is not None:
            return existing
        now = _utc_now()
        task_pr = self.repository.create_task_pr(
            TaskPR(
                id='',
                task_id=task_id,
                owner=pr.repo_owner,
                repo=pr.repo_name,
                pr_number=int(pr.number),
                pr_url=pr.html_url or pr.url,
                pr_title=pr.title,
                head_branch=pr.head_branch,
                base_branch=pr.base_branch,
                author_login=pr.author_login,
                state=pr.state,
                additions=int(pr.additions),
                deletions=int(pr.deletions),
                created_at=pr.created_at or now,
                updated_at=now,
                merged_at=pr.merged_at,
                closed_at=pr.closed_at,
            )
        )
        self._publish(EventType.TASK_PR_UPDATED, task_pr)
        _log.info('task_pr_associated task_id=%s pr_number=%s', task_id, pr.number)
        return task_pr

    def associate_pr_by_url(self, *, session_id: str, task_id: str, pr_url: str, branch: str = '') -> None:
        if not self.available:
            return
        try:
            owner, repo, number = parse_pr_url(pr_url)
        except ValueError:
            _log.error('pr_url_parse_failed url=%s', pr_url, exc_info=True)
            return
        try:
            pr = self.client.get_pr(owner, repo, number)
        except GitHubClientError:
            _log.error('pr_fetch_failed url=%s', pr_url, exc_info=True)
            return
        if not pr.repo_owner:
            pr.repo_owner = owner
        if not pr.repo_name:
            pr.repo_name = repo
        try:
            self.create_pr_watch(
                session_id=session_id,
                task_id=task_id,
                owner=owner,
                repo=repo,
                pr_number=number,
                branch=branch or pr.head_branch,
            )
        except Exception:
            _log.error('pr_watch_create_failed session_id=%s', session_id, exc_info=True)
        try:
            self.associate_pr_with_task(task_id, pr)
        except Exception:
            _log.error('task_pr_associate_failed task_id=%s', task_id, exc_info=True)

    def get_task_pr(self, task_id: str) -> TaskPR | None:
        return self.repository.get_task_pr(task_id)

    def list_task_prs(self, task_ids: list[str]) -> dict[str, TaskPR]:
        return self.repository.list_task_prs_by_task_ids(task_ids)

    def sync_task_pr(self, task_id: str, feedback: PRFeedback) -> TaskPR | None:
        task_pr = self.repository.get_task_pr_by_number(task_id, feedback.pr.number)
        if task_pr is None:
            return None
        pr = feedback.pr
        review_state, pending = derive_review_sync_state(pr, feedback.reviews)
        task_pr.pr_title = pr.title or task_pr.pr_title
        task_pr.pr_url = pr.html_url or pr.url or task_pr.pr_url
        task_pr.head_branch = pr.head_branch or task_pr.head_branch
        task_pr.base_branch = pr.base_branch or task_pr.base_branch
        task_pr.author_login = pr.author_login or task_pr.author_login
        task_pr.state = pr.state
        task_pr.additions = int(pr.additions)
        task_pr.deletions = int(pr.deletions)
        task_pr.merged_at = pr.merged_at
        task_pr.closed_at = pr.closed_at
        task_pr.comment_count = len(feedback.comments)
        task_pr.review_count = len(feedback.reviews)
        task_pr.review_state = review_state
        task_pr.pending_review_count = pending
        task_pr.checks_state = overall_check_status(feedback.checks)
        task_pr.last_synced_at = _utc_now()
        updated = self.repository.update_task_pr(task_pr)
        self._publish(EventType.TASK_PR_UPDATED, updated)
        return updated

    # live feedback

    def get_pr_feedback(self, owner: str, repo: str, number: int) -> PRFeedback:
        return self._require_client().get_pr_feedback(owner, repo, int(number))

    def submit_review(self, owner: str, repo: str, number: int, *, event: str, body: str = '') -> None:
        try:
            normalized = normalize_review_event(event)
        except ValueError as exc:
            raise InputValidationError(
                'event must be APPROVE, COMMENT, or REQUEST_CHANGES',
                field='event',
                code='invalid_review_event',
            ) from exc
        self._require_client().submit_review(owner, repo, int(number), normalized, body)
        _log.info('review_submitted repo=%s/%s pr_number=%s event=%s', owner, repo, number, normalized)

    # review watches

    @staticmethod
    def _normalize_scope(value: str | None) -> str:
        text = str(value or '').strip().lower()
        if not text:
            return ReviewScope.USER_AND_TEAMS.value
        if text not in _REVIEW_SCOPES:
            raise InputValidationError(
                f'review_scope must be one of {sorted(_REVIEW_SCOPES)}',
                field='review_scope',
            )
        return text

    @staticmethod
    def _normalize_repos(repos: list[RepoFilter] | None) -> list[RepoFilter]:
        out: list[RepoFilter] = []
        for index, item in enumerate(repos or []):
            owner = str(item.owner or '').strip()
            if not owner:
                raise InputValidationError('repo filter owner is required', field=f'repos[{index}].owner')
            out.append(RepoFilter(owner=owner, name=str(item.name or '').strip()))
        return out

    def create_review_watch(self, payload: CreateReviewWatchInput) -> ReviewWatch:
        workspace_id = str(payload.workspace_id or '').strip()
        if not workspace_id:
            raise InputValidationError('workspace_id is required', field='workspace_id')
        now = _utc_now()
        watch = self.repository.create_review_watch(
            ReviewWatch(
                id='',
                workspace_id=workspace_id,
                workflow_id=str(payload.workflow_id or '').strip(),
                workflow_step_id=str(payload.workflow_step_id or '').strip(),
                agent_profile_id=str(payload.agent_profile_id or '').strip(),
                executor_profile_id=str(payload.executor_profile_id or '').strip(),
                repos=self._normalize_repos(payload.repos),
                prompt=payload.prompt or '',
                review_scope=self._normalize_scope(payload.review_scope),
                custom_query=str(payload.custom_query or '').strip(),
                enabled=True,
                poll_interval_seconds=clamp_poll_interval(payload.poll_interval_seconds),
                created_at=now,
                updated_at=now,
            )
        )
        _log.info('review_watch_created watch_id=%s workspace_id=%s', watch.id, workspace_id)
        self._schedule_initial_poll(watch)
        return watch

    def _schedule_initial_poll(self, watch: ReviewWatch) -> None:
        if not self.available:
            return
        try:
            future = self._initial_poll_pool.submit(self._initial_review_check, watch)
        except RuntimeError:
            _log.debug('initial_review_poll_rejected watch_id=%s', watch.id)
            return
        with self._initial_poll_lock:
            self._initial_poll_futures = [item for item in self._initial_poll_futures if not item.done()]
            self._initial_poll_futures.append(future)

    def _initial_review_check(self, watch: ReviewWatch) -> None:
        try:
            new_prs = self.check_review_watch(watch)
        except Exception:
            _log.debug('initial_review_check_failed watch_id=%s', watch.id, exc_info=True)
            return
        for pr in new_prs:
            self.publish_new_review_pr(watch, pr)
        if new_prs:
            _log.info('initial_review_check_found watch_id=%s new_prs=%s', watch.id, len(new_prs))

    def get_review_watch(self, watch_id: str) -> ReviewWatch | None:
        return self.repository.get_review_watch(watch_id)

    def list_review_watches(self, workspace_id: str) -> list[ReviewWatch]:
        return self.repository.list_review_watches(workspace_id)

    def list_enabled_review_watches(self) -> list[ReviewWatch]:
        return self.repository.list_enabled_review_watches()

    def update_review_watch(self, watch_id: str, payload: UpdateReviewWatchInput) -> ReviewWatch:
        watch = self.repository.get_review_watch(watch_id)
        if watch is None:
            raise KeyError(watch_id)
        if payload.workflow_id is not None:
            watch.workflow_id = payload.workflow_id.strip()
        if payload.workflow_step_id is not None:
            watch.workflow_step_id = payload.workflow_step_id.strip()
        if payload.repos is not None:
            watch.repos = self._normalize_repos(payload.repos)
        if payload.agent_profile_id is not None:
            watch.agent_profile_id = payload.agent_profile_id.strip()
        if payload.executor_profile_id is not None:
            watch.executor_profile_id = payload.executor_profile_id.strip()
        if payload.prompt is not None:
            watch.prompt = payload.prompt
        if payload.review_scope is not None:
            watch.review_scope = self._normalize_scope(payload.review_scope)
        if payload.custom_query is not None:
            watch.custom_query = payload.custom_query.strip()
        if payload.enabled is not None:
            watch.enabled = bool(payload.enabled)
        if payload.poll_interval_seconds is not None:
            watch.poll_interval_seconds = clamp_poll_interval(payload.poll_interval_seconds)
        return self.repository.update_review_watch(watch)

    def delete_review_watch(self, watch_id: str) -> bool:
        deleted = self.repository.delete_review_watch(watch_id)
        if deleted:
            _log.info('review_watch_deleted watch_id=%s', watch_id)
        return deleted

    def check_review_watch(self, watch: ReviewWatch) -> list[PR]:
        client = self._require_client()
        _log.debug('review_watch_check watch_id=%s repo_filters=%s', watch.id, len(watch.repos))
        prs = self._fetch_review_prs(client, watch)

        new_prs: list[PR] = []
        for pr in prs:
            try:
                seen = self.repository.has_review_pr_task(watch.id, pr.repo_owner, pr.repo_name, pr.number)
            except Exception:
                _log.error(
                    'review_ledger_lookup_failed watch_id=%s pr=%s/%s#%s',
                    watch.id, pr.repo_owner, pr.repo_name, pr.number,
                    exc_info=True,
                )
                continue
            if not seen:
                new_prs.append(pr)

        self._enrich_missing_branches(client, new_prs)

        polled_at = _utc_now()
        watch.last_polled_at = polled_at
        try:
            self.repository.update_review_watch_polled_at(watch.id, polled_at)
        except Exception:
            _log.error('review_watch_polled_at_update_failed watch_id=%s', watch.id, exc_info=True)
        return new_prs

    def _fetch_review_prs(self, client: GitHubClient, watch: ReviewWatch) -> list[PR]:
        if not watch.repos:
            return list(client.list_review_requested_prs(watch.review_scope, '', watch.custom_query))

        merged: list[PR] = []
        seen: set[tuple[str, str, int]] = set()
        for repo_filter in watch.repos:
            qualifier = repo_filter.qualifier()
            try:
                prs = client.list_review_requested_prs(watch.review_scope, qualifier, watch.custom_query)
            except GitHubClientError:
                _log.error('review_search_failed watch_id=%s filter=%s', watch.id, qualifier, exc_info=True)
                continue
            for pr in prs:
                key = _pr_key(pr)
                if key in seen:
                    continue
                seen.add(key)
                merged.append(pr)
        return merged

    @staticmethod
    def _enrich_missing_branches(client: GitHubClient, prs: list[PR]) -> None:
        for pr in prs:
            if pr.head_branch and pr.base_branch:
                continue
            try:
                full = client.get_pr(pr.repo_owner, pr.repo_name, pr.number)
            except GitHubClientError:
                _log.debug('review_pr_enrich_failed pr=%s/%s#%s', pr.repo_owner, pr.repo_name, pr.number, exc_info=True)
                continue
            pr.head_branch = pr.head_branch or full.head_branch
            pr.base_branch = pr.base_branch or full.base_branch
            pr.head_sha = pr.head_sha or full.head_sha
            if not pr.requested_reviewers:
                pr.requested_reviewers = list(full.requested_reviewers)

    def record_review_pr_task(
        self,
        *,
        review_watch_id: str,
        repo_owner: str,
        repo_name: str,
        pr_number: int,
        pr_url: str = '',
        task_id: str = '',
    ) -> bool:
        created = self.repository.create_review_pr_task(
            ReviewPRTask(
                id='',
                review_watch_id=review_watch_id,
                repo_owner=repo_owner,
                repo_name=repo_name,
                pr_number=int(pr_number),
                pr_url=pr_url,
                task_id=task_id,
                created_at=_utc_now(),
            )
        )
        if created:
            _log.info(
                'review_pr_recorded watch_id=%s pr=%s/%s#%s task_id=%s',
                review_watch_id, repo_owner, repo_name, pr_number, task_id,
            )
        return created

    def trigger_review_watch(self, watch_id: str) -> int:
        watch = self.repository.get_review_watch(watch_id)
        if watch is None:
            raise KeyError(watch_id)
        new_prs = self.check_review_watch(watch)
        for pr in new_prs:
            self.publish_new_review_pr(watch, pr)
        return len(new_prs)

    def trigger_all_review_checks(self, workspace_id: str) -> int:
        watches = self.repository.list_review_watches(workspace_id)
        enabled = [watch for watch in watches if watch.enabled]
        _log.info(
            'review_checks_triggered workspace_id=%s total_watches=%s enabled_watches=%s',
            workspace_id, len(watches), len(enabled),
        )
        total_new = 0
        for watch in enabled:
            try:
                new_prs = self.check_review_watch(watch)
            except GitHubClientError:
                _log.error('review_watch_check_failed watch_id=%s', watch.id, exc_info=True)
                continue
            for pr in new_prs:
                self.publish_new_review_pr(watch, pr)
            total_new += len(new_prs)
        _log.info('review_checks_completed workspace_id=%s new_prs=%s', workspace_id, total_new)
        return total_new

    # discovery helpers

    def list_user_orgs(self) -> list[GitHubOrg]:
        client = self._require_client()
        orgs = list(client.list_user_orgs())
        try:
            user = client.get_authenticated_user()
        except GitHubClientError:
            user = ''
        if user:
            orgs.insert(0, GitHubOrg(login=user))
        return orgs

    def search_org_repos(self, org: str, query: str = '', limit: int = 20) -> list[GitHubRepo]:
        org_text = str(org or '').strip()
        if not org_text:
            raise InputValidationError('org is required', field='org')
        return self._require_client().search_org_repos(org_text, str(query or '').strip(), int(limit or 20))

    def get_pr_stats(
        self,
        *,
        workspace_id: str | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> PRStats:
        # workspace_id needs the external tasks table to join on; accepted and ignored
        created_from = datetime.combine(start_date, dt_time.min, tzinfo=timezone.utc) if start_date else None
        created_to = datetime.combine(end_date, dt_time.max, tzinfo=timezone.utc) if end_date else None
        rows = self.repository.list_task_prs(created_from=created_from, created_to=created_to)

        stats = PRStats(total_prs_created=len(rows))
        stats.total_comments = sum(int(row.comment_count) for row in rows)

        with_checks = [row for row in rows if row.checks_state]
        if with_checks:
            passed = sum(1 for row in with_checks if row.checks_state == CHECK_STATUS_SUCCESS)
            stats.ci_pass_rate = passed / len(with_checks)

        reviewed = [row for row in rows if row.review_state]
        stats.total_prs_reviewed = len(reviewed)
        if reviewed:
            approved = sum(1 for row in reviewed if row.review_state == REVIEW_STATE_APPROVED)
            stats.approval_rate = approved / len(reviewed)

        merge_hours = [
            (row.merged_at - row.created_at).total_seconds() / 3600.0
            for row in rows
            if row.merged_at is not None and row.created_at is not None
        ]
        if merge_hours:
            stats.avg_time_to_merge_hours = sum(merge_hours) / len(merge_hours)

        per_day: dict[str, int] = {}
        for row in rows:
            key = row.created_at.astimezone(timezone.utc).date().isoformat()
            per_day[key] = per_day.get(key, 0) + 1
        stats.prs_by_day = [DailyCount(date=key, count=per_day[key]) for key in sorted(per_day)]
        return stats

    # events

    def publish_pr_feedback(self, watch: PRWatch, feedback: PRFeedback, *, checks_changed: bool) -> None:
        review_state, _ = derive_review_sync_state(feedback.pr, feedback.reviews)
        new_comments = len(feedback.comments)
        if watch.last_comment_at is not None:
            new_comments = sum(
                1 for comment in feedback.comments
                if (comment.updated_at or comment.created_at) > watch.last_comment_at
            )
        self._publish(
            EventType.PR_FEEDBACK,
            PRFeedbackEvent(
                session_id=watch.session_id,
                task_id=watch.task_id,
                owner=watch.owner,
                repo=watch.repo,
                pr_number=watch.pr_number,
                new_comments=new_comments,
                checks_changed=checks_changed,
                new_check_status=overall_check_status(feedback.checks),
                new_review_state=review_state,
            ),
        )

    def publish_new_review_pr(self, watch: ReviewWatch, pr: PR) -> None:
        self._publish(
            EventType.NEW_REVIEW_PR,
            NewReviewPREvent(
                review_watch_id=watch.id,
                workspace_id=watch.workspace_id,
                workflow_id=watch.workflow_id,
                workflow_step_id=watch.workflow_step_id,
                agent_profile_id=watch.agent_profile_id,
                executor_profile_id=watch.executor_profile_id,
                prompt=watch.prompt,
                pr=pr,
            ),
        )

    def _publish(self, event_type: EventType, payload: object) -> None:
        if self.event_bus is None:
            return
        try:
            self.event_bus.publish(event_type.value, payload)
        except Exception:
            _log.debug('event_publish_failed type=%s', event_type.value, exc_info=True)
