from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import asdict
from datetime import date, datetime
import logging
from typing import Literal

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from awe_prwatch.adapters.base import ClientUnavailableError, GitHubClientError
from awe_prwatch.adapters.noop import NoopClient
from awe_prwatch.domain.models import RepoFilter
from awe_prwatch.poller import Poller
from awe_prwatch.repository import InMemoryWatchRepository, WatchRepository
from awe_prwatch.service import (
    CreateReviewWatchInput,
    GitHubWatchService,
    InputValidationError,
    UpdateReviewWatchInput,
)

_log = logging.getLogger(__name__)


class RepoFilterModel(BaseModel):
    owner: str = Field(min_length=1, max_length=200)
    name: str = Field(default='', max_length=200)


class CreateReviewWatchRequest(BaseModel):
    workspace_id: str = Field(min_length=1, max_length=200)
    workflow_id: str = Field(min_length=1, max_length=200)
    workflow_step_id: str = Field(min_length=1, max_length=200)
    agent_profile_id: str = Field(min_length=1, max_length=200)
    executor_profile_id: str = Field(default='', max_length=200)
    repos: list[RepoFilterModel] = Field(default_factory=list)
    prompt: str = Field(default='', max_length=20000)
    review_scope: Literal['user', 'user_and_teams'] = Field(default='user_and_teams')
    custom_query: str = Field(default='', max_length=1000)
    poll_interval_seconds: int = Field(default=0, ge=0)


class UpdateReviewWatchRequest(BaseModel):
    workflow_id: str | None = Field(default=None, max_length=200)
    workflow_step_id: str | None = Field(default=None, max_length=200)
    agent_profile_id: str | None = Field(default=None, max_length=200)
    executor_profile_id: str | None = Field(default=None, max_length=200)
    repos: list[RepoFilterModel] | None = Field(default=None)
    prompt: str | None = Field(default=None, max_length=20000)
    review_scope: Literal['user', 'user_and_teams'] | None = Field(default=None)
    custom_query: str | None = Field(default=None, max_length=1000)
    enabled: bool | None = Field(default=None)
    poll_interval_seconds: int | None = Field(default=None, ge=0)


class SubmitReviewRequest(BaseModel):
    event: str = Field(min_length=1, max_length=32)
    body: str = Field(default='', max_length=65536)


class StatusResponse(BaseModel):
    authenticated: bool
    username: str
    auth_method: str


class RequestedReviewerResponse(BaseModel):
    login: str
    type: str


class PRResponse(BaseModel):
    number: int
    title: str
    url: str
    html_url: str
    body: str
    state: str
    head_branch: str
    head_sha: str
    base_branch: str
    author_login: str
    repo_owner: str
    repo_name: str
    draft: bool
    mergeable: bool
    additions: int
    deletions: int
    requested_reviewers: list[RequestedReviewerResponse]
    created_at: datetime | None
    updated_at: datetime | None
    merged_at: datetime | None
    closed_at: datetime | None


class PRReviewResponse(BaseModel):
    id: int
    author: str
    author_avatar: str
    state: str
    body: str
    created_at: datetime


class PRCommentResponse(BaseModel):
    id: int
    author: str
    author_avatar: str
    author_is_bot: bool
    body: str
    path: str
    line: int
    side: str
    comment_type: str
    in_reply_to: int | None
    created_at: datetime
    updated_at: datetime


class CheckRunResponse(BaseModel):
    name: str
    source: str
    status: str
    conclusion: str
    html_url: str
    output: str
    started_at: datetime | None
    completed_at: datetime | None


class PRFeedbackResponse(BaseModel):
    pr: PRResponse
    reviews: list[PRReviewResponse]
    comments: list[PRCommentResponse]
    checks: list[CheckRunResponse]
    has_issues: bool


class PRWatchResponse(BaseModel):
    id: str
    session_id: str
    task_id: str
    owner: str
    repo: str
    pr_number: int
    branch: str
    last_checked_at: datetime | None
    last_comment_at: datetime | None
    last_check_status: str
    created_at: datetime
    updated_at: datetime


class TaskPRResponse(BaseModel):
    id: str
    task_id: str
    owner: str
    repo: str
    pr_number: int
    pr_url: str
    pr_title: str
    head_branch: str
    base_branch: str
    author_login: str
    state: str
    review_state: str
    checks_state: str
    review_count: int
    pending_review_count: int
    comment_count: int
    additions: int
    deletions: int
    created_at: datetime
    merged_at: datetime | None
    closed_at: datetime | None
    last_synced_at: datetime | None
    updated_at: datetime


class ReviewWatchResponse(BaseModel):
    id: str
    workspace_id: str
    workflow_id: str
    workflow_step_id: str
    agent_profile_id: str
    executor_profile_id: str
    repos: list[RepoFilterModel]
    prompt: str
    review_scope: str
    custom_query: str
    enabled: bool
    poll_interval_seconds: int
    last_polled_at: datetime | None
    created_at: datetime
    updated_at: datetime


class TriggerResponse(BaseModel):
    new_prs: int


class DeletedResponse(BaseModel):
    deleted: bool


class OrgResponse(BaseModel):
    login: str
    avatar_url: str


class RepoResponse(BaseModel):
    full_name: str
    owner: str
    name: str
    private: bool


class DailyCountResponse(BaseModel):
    date: str
    count: int


class PRStatsResponse(BaseModel):
    total_prs_created: int
    total_prs_reviewed: int
    total_comments: int
    ci_pass_rate: float
    approval_rate: float
    avg_time_to_merge_hours: float
    prs_by_day: list[DailyCountResponse]


class ValidationErrorResponse(BaseModel):
    code: str
    message: str
    field: str | None = None


class AppState:
    def __init__(self, service: GitHubWatchService, poller: Poller | None = None):
        self.service = service
        self.poller = poller


def _repo_filters(items: list[RepoFilterModel] | None) -> list[RepoFilter] | None:
    if items is None:
        return None
    return [RepoFilter(owner=item.owner, name=item.name) for item in items]


def _parse_pr_number(raw: str) -> int:
    try:
        number = int(str(raw).strip())
    except ValueError as exc:
        raise InputValidationError('invalid PR number', field='number') from exc
    if number <= 0:
        raise InputValidationError('invalid PR number', field='number')
    return number


def _parse_day(raw: str | None, field: str) -> date | None:
    text = str(raw or '').strip()
    if not text:
        return None
    try:
        return datetime.strptime(text, '%Y-%m-%d').date()
    except ValueError as exc:
        raise InputValidationError(f'{field} must be YYYY-MM-DD', field=field) from exc


def _require_workspace(workspace_id: str | None) -> str:
    text = str(workspace_id or '').strip()
    if not text:
        raise InputValidationError('workspace_id is required', field='workspace_id')
    return text


def create_app(
    *,
    repository: WatchRepository | None = None,
    service: GitHubWatchService | None = None,
    poller: Poller | None = None,
) -> FastAPI:
    if service is None:
        service = GitHubWatchService(
            repository=repository or InMemoryWatchRepository(),
            client=NoopClient(),
            auth_method='none',
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if poller is not None:
            poller.start()
        try:
            yield
        finally:
            if poller is not None:
                poller.stop()
            service.shutdown(wait=False)

    app = FastAPI(title='awe-prwatch api', version='0.1.0', lifespan=lifespan)
    app.state.container = AppState(service=service, poller=poller)

    def _field_from_loc(loc: tuple | list | None) -> str | None:
        if not loc:
            return None
        source_prefixes = {'body', 'query', 'path', 'header', 'cookie'}
        parts = list(loc)
        if parts and str(parts[0]) in source_prefixes:
            parts = parts[1:]
        if not parts:
            return None

        field = ''
        for part in parts:
            if isinstance(part, int):
                field += f'[{part}]'
                continue
            text = str(part)
            field = f'{field}.{text}' if field else text
        return field or None

    def _error_payload(*, message: str, field: str | None = None, code: str = 'validation_error') -> dict:
        payload: dict[str, str] = {
            'code': code,
            'message': message,
        }
        if field:
            payload['field'] = field
        return payload

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation_error(request: Request, exc: RequestValidationError):  # noqa: ARG001
        details = exc.errors()
        if details:
            first = details[0]
            message = str(first.get('msg') or 'invalid request')
            field = _field_from_loc(first.get('loc'))
        else:
            message = 'invalid request'
            field = None
        return JSONResponse(status_code=400, content=_error_payload(message=message, field=field))

    @app.exception_handler(InputValidationError)
    async def handle_input_validation_error(request: Request, exc: InputValidationError):  # noqa: ARG001
        return JSONResponse(
            status_code=400,
            content=_error_payload(message=str(exc), field=exc.field, code=exc.code),
        )

    @app.exception_handler(ClientUnavailableError)
    async def handle_client_unavailable(request: Request, exc: ClientUnavailableError):  # noqa: ARG001
        return JSONResponse(
            status_code=503,
            content=_error_payload(message=str(exc), code='github_unavailable'),
        )

    @app.exception_handler(GitHubClientError)
    async def handle_client_error(request: Request, exc: GitHubClientError):  # noqa: ARG001
        _log.warning('github request failed path=%s error=%s', request.url.path, exc)
        return JSONResponse(
            status_code=502,
            content=_error_payload(message=str(exc), code='github_error'),
        )

    def get_service() -> GitHubWatchService:
        return app.state.container.service

    @app.get('/healthz')
    def healthz() -> dict[str, str]:
        return {'status': 'ok'}

    @app.get('/api/github/status', response_model=StatusResponse)
    def get_status(service: GitHubWatchService = Depends(get_service)) -> StatusResponse:
        return StatusResponse(**asdict(service.get_status()))

    @app.get('/api/github/task-prs', response_model=dict[str, TaskPRResponse])
    def list_task_prs(
        task_ids: str = Query(default=''),
        service: GitHubWatchService = Depends(get_service),
    ) -> dict[str, TaskPRResponse]:
        ids = [item.strip() for item in task_ids.split(',') if item.strip()]
        if not ids:
            raise InputValidationError('task_ids is required', field='task_ids')
        rows = service.list_task_prs(ids)
        return {task_id: TaskPRResponse(**asdict(row)) for task_id, row in rows.items()}

    @app.get('/api/github/task-prs/{task_id}', response_model=TaskPRResponse)
    def get_task_pr(task_id: str, service: GitHubWatchService = Depends(get_service)) -> TaskPRResponse:
        row = service.get_task_pr(task_id)
        if row is None:
            raise HTTPException(status_code=404, detail='task PR not found')
        return TaskPRResponse(**asdict(row))

    @app.get('/api/github/prs/{owner}/{repo}/{number}', response_model=PRFeedbackResponse)
    def get_pr_feedback(
        owner: str,
        repo: str,
        number: str,
        service: GitHubWatchService = Depends(get_service),
    ) -> PRFeedbackResponse:
        feedback = service.get_pr_feedback(owner, repo, _parse_pr_number(number))
        return PRFeedbackResponse(**asdict(feedback))

    @app.post('/api/github/prs/{owner}/{repo}/{number}/reviews')
    def submit_review(
        owner: str,
        repo: str,
        number: str,
        payload: SubmitReviewRequest,
        service: GitHubWatchService = Depends(get_service),
    ) -> dict[str, bool]:
        service.submit_review(owner, repo, _parse_pr_number(number), event=payload.event, body=payload.body)
        return {'submitted': True}

    @app.get('/api/github/watches/pr', response_model=list[PRWatchResponse])
    def list_pr_watches(service: GitHubWatchService = Depends(get_service)) -> list[PRWatchResponse]:
        return [PRWatchResponse(**asdict(row)) for row in service.list_active_pr_watches()]

    @app.delete('/api/github/watches/pr/{watch_id}', response_model=DeletedResponse)
    def delete_pr_watch(watch_id: str, service: GitHubWatchService = Depends(get_service)) -> DeletedResponse:
        if not service.delete_pr_watch(watch_id):
            raise HTTPException(status_code=404, detail='PR watch not found')
        return DeletedResponse(deleted=True)

    @app.get('/api/github/watches/review', response_model=list[ReviewWatchResponse])
    def list_review_watches(
        workspace_id: str | None = Query(default=None),
        service: GitHubWatchService = Depends(get_service),
    ) -> list[ReviewWatchResponse]:
        rows = service.list_review_watches(_require_workspace(workspace_id))
        return [ReviewWatchResponse(**asdict(row)) for row in rows]

    @app.post('/api/github/watches/review', response_model=ReviewWatchResponse, status_code=201)
    def create_review_watch(
        payload: CreateReviewWatchRequest,
        service: GitHubWatchService = Depends(get_service),
    ) -> ReviewWatchResponse:
        watch = service.create_review_watch(
            CreateReviewWatchInput(
                workspace_id=payload.workspace_id,
                workflow_id=payload.workflow_id,
                workflow_step_id=payload.workflow_step_id,
                agent_profile_id=payload.agent_profile_id,
                executor_profile_id=payload.executor_profile_id,
                repos=_repo_filters(payload.repos) or [],
                prompt=payload.prompt,
                review_scope=payload.review_scope,
                custom_query=payload.custom_query,
                poll_interval_seconds=payload.poll_interval_seconds,
            )
        )
        return ReviewWatchResponse(**asdict(watch))

    @app.post('/api/github/watches/review/trigger-all', response_model=TriggerResponse)
    def trigger_all_review_checks(
        workspace_id: str | None = Query(default=None),
        service: GitHubWatchService = Depends(get_service),
    ) -> TriggerResponse:
        return TriggerResponse(new_prs=service.trigger_all_review_checks(_require_workspace(workspace_id)))

    @app.put('/api/github/watches/review/{watch_id}', response_model=ReviewWatchResponse)
    def update_review_watch(
        watch_id: str,
        payload: UpdateReviewWatchRequest,
        service: GitHubWatchService = Depends(get_service),
    ) -> ReviewWatchResponse:
        try:
            watch = service.update_review_watch(
                watch_id,
                UpdateReviewWatchInput(
                    workflow_id=payload.workflow_id,
                    workflow_step_id=payload.workflow_step_id,
                    repos=_repo_filters(payload.repos),
                    agent_profile_id=payload.agent_profile_id,
                    executor_profile_id=payload.executor_profile_id,
                    prompt=payload.prompt,
                    review_scope=payload.review_scope,
                    custom_query=payload.custom_query,
                    enabled=payload.enabled,
                    poll_interval_seconds=payload.poll_interval_seconds,
                ),
            )
        except KeyError as exc:
            raise HTTPException(status_code=404, detail='review watch not found') from exc
        return ReviewWatchResponse(**asdict(watch))

    @app.delete('/api/github/watches/review/{watch_id}', response_model=DeletedResponse)
    def delete_review_watch(watch_id: str, service: GitHubWatchService = Depends(get_service)) -> DeletedResponse:
        if not service.delete_review_watch(watch_id):
            raise HTTPException(status_code=404, detail='review watch not found')
        return DeletedResponse(deleted=True)

    @app.post('/api/github/watches/review/{watch_id}/trigger', response_model=TriggerResponse)
    def trigger_review_watch(watch_id: str, service: GitHubWatchService = Depends(get_service)) -> TriggerResponse:
        try:
            count = service.trigger_review_watch(watch_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail='review watch not found') from exc
        return TriggerResponse(new_prs=count)

    @app.get('/api/github/orgs', response_model=list[OrgResponse])
    def list_user_orgs(service: GitHubWatchService = Depends(get_service)) -> list[OrgResponse]:
        return [OrgResponse(**asdict(org)) for org in service.list_user_orgs()]

    @app.get('/api/github/repos/search', response_model=list[RepoResponse])
    def search_org_repos(
        org: str = Query(default=''),
        q: str = Query(default=''),
        limit: int = Query(default=20, ge=1, le=100),
        service: GitHubWatchService = Depends(get_service),
    ) -> list[RepoResponse]:
        return [RepoResponse(**asdict(repo)) for repo in service.search_org_repos(org, q, limit)]

    @app.get('/api/github/stats', response_model=PRStatsResponse)
    def get_pr_stats(
        workspace_id: str | None = Query(default=None),
        start_date: str | None = Query(default=None),
        end_date: str | None = Query(default=None),
        service: GitHubWatchService = Depends(get_service),
    ) -> PRStatsResponse:
        stats = service.get_pr_stats(
            workspace_id=workspace_id,
            start_date=_parse_day(start_date, 'start_date'),
            end_date=_parse_day(end_date, 'end_date'),
        )
        return PRStatsResponse(**asdict(stats))

    return app
