from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime, timedelta, timezone

import pytest

from awe_prwatch.adapters.base import ClientUnavailableError
from awe_prwatch.adapters.mock import MockClient
from awe_prwatch.adapters.noop import NoopClient
from awe_prwatch.bus import InMemoryEventBus
from awe_prwatch.domain.models import (
    PR,
    CheckRun,
    GitHubOrg,
    GitHubRepo,
    PRComment,
    PRFeedback,
    PRReview,
    RepoFilter,
    RequestedReviewer,
    ReviewWatch,
    TaskPR,
)
from awe_prwatch.repository import InMemoryWatchRepository
from awe_prwatch.service import (
    CreateReviewWatchInput,
    GitHubWatchService,
    InputValidationError,
    UpdateReviewWatchInput,
    parse_pr_url,
)

T0 = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


class BranchlessSearchClient(MockClient):
    """Search results without branch data, like the real issue-search API."""

    def list_review_requested_prs(self, scope, filter, custom_query):
        prs = super().list_review_requested_prs(scope, filter, custom_query)
        return [replace(pr, head_branch='', base_branch='', head_sha='') for pr in prs]


def _service(client=None, *, auth_method: str = 'mock') -> tuple[GitHubWatchService, InMemoryWatchRepository, InMemoryEventBus]:
    repo = InMemoryWatchRepository()
    bus = InMemoryEventBus()
    service = GitHubWatchService(
        repository=repo,
        client=client if client is not None else MockClient(user='alice'),
        auth_method=auth_method,
        event_bus=bus,
    )
    return service, repo, bus


def _open_pr(number: int, *, owner: str = 'acme', repo: str = 'api', branch: str = '', reviewers=('alice',)) -> PR:
    return PR(
        number=number,
        title=f'PR {number}',
        html_url=f'https://github.com/{owner}/{repo}/pull/{number}',
        repo_owner=owner,
        repo_name=repo,
        head_branch=branch or f'feature-{number}',
        base_branch='main',
        head_sha=f'sha{number}',
        requested_reviewers=[RequestedReviewer(login) for login in reviewers],
        created_at=T0,
    )


def _comment(comment_id: int, minutes: int) -> PRComment:
    stamp = T0 + timedelta(minutes=minutes)
    return PRComment(id=comment_id, author='bob', body='nit', created_at=stamp, updated_at=stamp)


def _review_input(**overrides) -> CreateReviewWatchInput:
    values = dict(
        workspace_id='ws-1',
        workflow_id='wf-1',
        workflow_step_id='step-1',
        agent_profile_id='agent-1',
    )
    values.update(overrides)
    return CreateReviewWatchInput(**values)


@pytest.mark.parametrize(
    'url,expected',
    [
        ('https://github.com/acme/api/pull/42', ('acme', 'api', 42)),
        ('  https://github.com/acme/api/pull/42/  ', ('acme', 'api', 42)),
        ('https://github.com/acme/api/pull/42?diff=split#r1', ('acme', 'api', 42)),
        ('https://github.com/acme/api/pull/42#issuecomment-1', ('acme', 'api', 42)),
    ],
)
def test_parse_pr_url_accepts_common_forms(url, expected):
    assert parse_pr_url(url) == expected


@pytest.mark.parametrize(
    'url',
    [
        'https://github.com/acme/api/issues/42',
        'https://github.com/acme/api/pull/abc',
        'https://github.com/acme/api/pull/',
        '',
    ],
)
def test_parse_pr_url_rejects_malformed(url):
    with pytest.raises(ValueError):
        parse_pr_url(url)


def test_get_status_reports_mock_user():
    service, _, _ = _service()
    status = service.get_status()
    assert status.authenticated is True
    assert status.username == 'alice'
    assert status.auth_method == 'mock'


def test_unavailable_client_raises_immediately():
    service, _, _ = _service(NoopClient(), auth_method='none')
    assert service.get_status().authenticated is False
    with pytest.raises(ClientUnavailableError, match='github client not available'):
        service.get_pr_feedback('acme', 'api', 1)
    watch = service.create_pr_watch(
        session_id='s', task_id='t', owner='acme', repo='api', pr_number=1, branch='b',
    )
    with pytest.raises(ClientUnavailableError):
        service.check_pr_watch(watch)


def test_create_pr_watch_returns_existing_for_session():
    service, _, _ = _service()
    first = service.ensure_pr_watch(session_id='sess-1', task_id='task-1', owner='acme', repo='api', branch='feature-x')
    again = service.create_pr_watch(
        session_id='sess-1', task_id='task-1', owner='acme', repo='api', pr_number=5, branch='feature-x',
    )
    assert first.pr_number == 0
    assert again.id == first.id
    assert service.get_pr_watch_by_session('sess-1').id == first.id


def test_check_pr_watch_detects_new_comments_and_check_changes():
    client = MockClient()
    client.add_pr(_open_pr(7, branch='feature-x'))
    client.add_comments('acme', 'api', 7, [_comment(1, 1)])
    service, repo, _ = _service(client)
    watch = service.create_pr_watch(
        session_id='sess-1', task_id='task-1', owner='acme', repo='api', pr_number=7, branch='feature-x',
    )

    _, has_new = service.check_pr_watch(watch)
    assert has_new is True
    stored = repo.get_pr_watch(watch.id)
    assert stored.last_comment_at == T0 + timedelta(minutes=1)
    assert stored.last_checked_at is not None

    _, has_new = service.check_pr_watch(stored)
    assert has_new is False

    client.add_comments('acme', 'api', 7, [_comment(2, 30)])
    _, has_new = service.check_pr_watch(repo.get_pr_watch(watch.id))
    assert has_new is True

    client.add_check_runs('acme', 'api', 'sha7', [CheckRun(name='ci', status='in_progress')])
    feedback, has_new = service.check_pr_watch(repo.get_pr_watch(watch.id))
    assert has_new is True
    assert repo.get_pr_watch(watch.id).last_check_status == 'pending'
    assert len(feedback.comments) == 2


def test_check_pr_watch_keeps_previous_comment_time_when_no_comments():
    client = MockClient()
    client.add_pr(_open_pr(7))
    service, repo, _ = _service(client)
    watch = service.create_pr_watch(
        session_id='sess-1', task_id='task-1', owner='acme', repo='api', pr_number=7, branch='feature-7',
    )
    repo.update_pr_watch_timestamps(watch.id, checked_at=T0, comment_at=T0, check_status='')

    _, has_new = service.check_pr_watch(repo.get_pr_watch(watch.id))

    assert has_new is False
    assert repo.get_pr_watch(watch.id).last_comment_at == T0


def test_detect_pr_for_watch_associates_found_pr():
    client = MockClient()
    client.add_pr(_open_pr(7, branch='feature-x'))
    service, repo, bus = _service(client)
    watch = service.ensure_pr_watch(session_id='sess-1', task_id='task-1', owner='acme', repo='api', branch='feature-x')

    assert service.detect_pr_for_watch(watch) is True

    assert repo.get_pr_watch(watch.id).pr_number == 7
    task_pr = service.get_task_pr('task-1')
    assert task_pr is not None and task_pr.pr_number == 7
    assert task_pr.head_branch == 'feature-x'
    assert len(bus.of_type('github.task_pr_updated')) == 1


def test_detect_pr_for_watch_not_found_only_advances_checked_at():
    service, repo, _ = _service()
    watch = service.ensure_pr_watch(session_id='sess-1', task_id='task-1', owner='acme', repo='api', branch='nothing')

    assert service.detect_pr_for_watch(watch) is False

    stored = repo.get_pr_watch(watch.id)
    assert stored.pr_number == 0
    assert stored.last_checked_at is not None
    assert service.get_task_pr('task-1') is None


def test_detect_pr_for_watch_swallows_remote_failure():
    client = MockClient()
    client.set_failure('find_pr_by_branch')
    service, repo, _ = _service(client)
    watch = service.ensure_pr_watch(session_id='sess-1', task_id='task-1', owner='acme', repo='api', branch='feature-x')

    assert service.detect_pr_for_watch(watch) is False
    assert repo.get_pr_watch(watch.id).last_checked_at is not None


class TaskPRWriteFailsRepository(InMemoryWatchRepository):
    def create_task_pr(self, task_pr):
        raise RuntimeError('task_prs table unavailable')


def test_detect_pr_for_watch_keeps_searching_when_association_fails():
    client = MockClient()
    client.add_pr(_open_pr(7, branch='feature-x'))
    repo = TaskPRWriteFailsRepository()
    service = GitHubWatchService(repository=repo, client=client, auth_method='mock')
    watch = service.ensure_pr_watch(session_id='sess-1', task_id='task-1', owner='acme', repo='api', branch='feature-x')

    assert service.detect_pr_for_watch(watch) is False

    assert repo.get_pr_watch(watch.id).pr_number == 0
    assert service.get_task_pr('task-1') is None


def test_associate_pr_with_task_is_idempotent():
    service, repo, bus = _service()
    pr = _open_pr(7)
    first = service.associate_pr_with_task('task-1', pr)
    second = service.associate_pr_with_task('task-1', pr)
    assert first.id == second.id
    assert len(repo.list_task_prs()) == 1
    assert len(bus.of_type('github.task_pr_updated')) == 1


def test_associate_pr_by_url_creates_watch_and_association():
    client = MockClient()
    client.add_pr(_open_pr(42, branch='feature-42'))
    service, _, _ = _service(client)

    service.associate_pr_by_url(session_id='sess-1', task_id='task-1', pr_url='https://github.com/acme/api/pull/42/')

    watch = service.get_pr_watch_by_session('sess-1')
    assert watch is not None
    assert watch.pr_number == 42
    assert watch.branch == 'feature-42'
    assert service.get_task_pr('task-1').pr_number == 42


def test_associate_pr_by_url_logs_and_skips_bad_input():
    client = MockClient()
    service, repo, _ = _service(client)

    service.associate_pr_by_url(session_id='sess-1', task_id='task-1', pr_url='https://github.com/acme/api')
    service.associate_pr_by_url(session_id='sess-2', task_id='task-2', pr_url='https://github.com/acme/api/pull/404')

    assert repo.list_active_pr_watches() == []
    assert repo.list_task_prs() == []


def test_sync_task_pr_recomputes_summary():
    service, _, bus = _service()
    pr = _open_pr(7, reviewers=())
    service.associate_pr_with_task('task-1', pr)
    merged_pr = replace(pr, state='merged', additions=12, deletions=3, merged_at=T0 + timedelta(hours=2))
    feedback = PRFeedback(
        pr=merged_pr,
        reviews=[
            PRReview(id=1, author='bob', state='CHANGES_REQUESTED', created_at=T0),
            PRReview(id=2, author='bob', state='APPROVED', created_at=T0 + timedelta(minutes=5)),
        ],
        comments=[_comment(1, 1), _comment(2, 2)],
        checks=[CheckRun(name='ci', status='completed', conclusion='success')],
    )

    updated = service.sync_task_pr('task-1', feedback)

    assert updated.state == 'merged'
    assert updated.review_state == 'approved'
    assert updated.checks_state == 'success'
    assert updated.comment_count == 2
    assert updated.review_count == 2
    assert updated.pending_review_count == 0
    assert (updated.additions, updated.deletions) == (12, 3)
    assert updated.last_synced_at is not None
    assert len(bus.of_type('github.task_pr_updated')) == 2


def test_sync_task_pr_without_association_is_noop():
    service, _, bus = _service()
    assert service.sync_task_pr('task-404', PRFeedback(pr=_open_pr(1))) is None
    assert bus.events == []


def test_sync_task_pr_ignores_feedback_for_another_pr():
    service, _, bus = _service()
    original = service.associate_pr_with_task('task-1', _open_pr(5))
    other = replace(_open_pr(7), title='other', state='merged', merged_at=T0 + timedelta(hours=1))

    assert service.sync_task_pr('task-1', PRFeedback(pr=other)) is None

    stored = service.get_task_pr('task-1')
    assert stored.pr_number == 5
    assert stored.pr_title == original.pr_title
    assert stored.pr_url == 'https://github.com/acme/api/pull/5'
    assert stored.state == 'open'
    assert stored.merged_at is None
    assert len(bus.of_type('github.task_pr_updated')) == 1


def test_submit_review_validates_event():
    client = MockClient()
    service, _, _ = _service(client)
    with pytest.raises(InputValidationError) as excinfo:
        service.submit_review('acme', 'api', 1, event='MERGE')
    assert excinfo.value.field == 'event'

    service.submit_review('acme', 'api', 1, event='comment', body='looks fine')
    assert client.submitted_reviews()[0].event == 'COMMENT'


def test_create_review_watch_validates_and_clamps():
    service, _, _ = _service(NoopClient(), auth_method='none')
    with pytest.raises(InputValidationError):
        service.create_review_watch(_review_input(workspace_id='  '))
    with pytest.raises(InputValidationError):
        service.create_review_watch(_review_input(review_scope='everyone'))
    with pytest.raises(InputValidationError):
        service.create_review_watch(_review_input(repos=[RepoFilter('')]))

    fast = service.create_review_watch(_review_input(poll_interval_seconds=5))
    default = service.create_review_watch(_review_input())
    assert fast.poll_interval_seconds == 60
    assert default.poll_interval_seconds == 300
    assert default.repos == []
    assert default.review_scope == 'user_and_teams'


def test_create_review_watch_runs_initial_poll_in_background():
    client = MockClient(user='alice')
    client.add_pr(_open_pr(1))
    client.add_pr(_open_pr(2, repo='web'))
    service, repo, bus = _service(client)

    watch = service.create_review_watch(_review_input())
    service.wait_for_initial_polls(timeout=5)

    events = bus.of_type('github.new_review_pr')
    assert sorted(event.payload['pr']['number'] for event in events) == [1, 2]
    assert events[0].payload['review_watch_id'] == watch.id
    assert repo.get_review_watch(watch.id).last_polled_at is not None
    service.shutdown()


def test_update_review_watch_patches_only_given_fields():
    service, _, _ = _service(NoopClient(), auth_method='none')
    watch = service.create_review_watch(_review_input(prompt='original', custom_query='is:pr'))

    updated = service.update_review_watch(
        watch.id,
        UpdateReviewWatchInput(enabled=False, poll_interval_seconds=30, repos=[RepoFilter('acme')]),
    )

    assert updated.enabled is False
    assert updated.poll_interval_seconds == 60
    assert updated.repos == [RepoFilter('acme', '')]
    assert updated.prompt == 'original'
    assert updated.custom_query == 'is:pr'

    with pytest.raises(KeyError):
        service.update_review_watch('rvw-missing', UpdateReviewWatchInput(enabled=True))


def test_check_review_watch_dedups_through_ledger():
    client = MockClient(user='alice')
    client.add_pr(_open_pr(1))
    client.add_pr(_open_pr(2))
    client.add_pr(_open_pr(3, reviewers=()))
    service, repo, _ = _service(client)
    watch = repo.create_review_watch(_stub_watch())

    first = service.check_review_watch(watch)
    second = service.check_review_watch(watch)
    assert sorted(pr.number for pr in first) == [1, 2]
    assert sorted(pr.number for pr in second) == [1, 2]
    assert client.search_calls[-1] == ('user_and_teams', '', '')

    for pr in first:
        assert service.record_review_pr_task(
            review_watch_id=watch.id, repo_owner=pr.repo_owner, repo_name=pr.repo_name, pr_number=pr.number,
        )
    assert service.check_review_watch(watch) == []
    assert service.record_review_pr_task(
        review_watch_id=watch.id, repo_owner='acme', repo_name='api', pr_number=1,
    ) is False


def test_check_review_watch_searches_each_filter_and_skips_failures():
    client = MockClient(user='alice')
    client.add_pr(_open_pr(1, repo='api'))
    client.add_pr(_open_pr(2, repo='web'))
    client.add_pr(_open_pr(3, owner='tools', repo='cli'))
    client.set_failure('list_review_requested_prs:org:tools')
    service, repo, _ = _service(client)
    watch = repo.create_review_watch(
        replace(_stub_watch(), repos=[RepoFilter('acme', 'api'), RepoFilter('acme'), RepoFilter('tools')])
    )

    found = service.check_review_watch(watch)

    assert [(pr.repo_name, pr.number) for pr in found] == [('api', 1), ('web', 2)]
    assert [call[1] for call in client.search_calls] == ['repo:acme/api', 'org:acme', 'org:tools']


def test_check_review_watch_enriches_missing_branches():
    client = BranchlessSearchClient(user='alice')
    client.add_pr(_open_pr(1, branch='feature-one'))
    service, repo, _ = _service(client)
    watch = repo.create_review_watch(_stub_watch())

    [pr] = service.check_review_watch(watch)

    assert pr.head_branch == 'feature-one'
    assert pr.base_branch == 'main'
    assert repo.get_review_watch(watch.id).last_polled_at is not None


def test_check_review_watch_tolerates_enrichment_failure():
    client = BranchlessSearchClient(user='alice')
    client.add_pr(_open_pr(1))
    client.set_failure('get_pr')
    service, repo, _ = _service(client)
    watch = repo.create_review_watch(_stub_watch())

    [pr] = service.check_review_watch(watch)
    assert pr.head_branch == ''


def test_trigger_review_watch_and_trigger_all():
    client = MockClient(user='alice')
    client.add_pr(_open_pr(1))
    service, repo, bus = _service(client)
    enabled = repo.create_review_watch(_stub_watch())
    disabled = repo.create_review_watch(replace(_stub_watch(), enabled=False))

    assert service.trigger_review_watch(enabled.id) == 1
    assert service.trigger_all_review_checks('ws-1') == 1
    assert len(bus.of_type('github.new_review_pr')) == 2
    assert repo.get_review_watch(disabled.id).last_polled_at is None

    with pytest.raises(KeyError):
        service.trigger_review_watch('rvw-missing')


def test_list_user_orgs_prepends_authenticated_user():
    client = MockClient(user='alice')
    client.add_orgs([GitHubOrg(login='acme')])
    service, _, _ = _service(client)
    assert [org.login for org in service.list_user_orgs()] == ['alice', 'acme']


def test_search_org_repos_requires_org_and_applies_query():
    client = MockClient()
    client.add_repos('acme', [GitHubRepo('acme/api', 'acme', 'api'), GitHubRepo('acme/web', 'acme', 'web')])
    service, _, _ = _service(client)
    with pytest.raises(InputValidationError):
        service.search_org_repos('')
    assert [repo.name for repo in service.search_org_repos('acme', 'we')] == ['web']


def test_get_pr_stats_aggregates_task_prs():
    service, repo, _ = _service()
    day1 = T0
    day2 = T0 + timedelta(days=1)
    rows = [
        TaskPR(id='', task_id='t1', owner='acme', repo='api', pr_number=1, created_at=day1, updated_at=day1,
               checks_state='success', review_state='approved', comment_count=3, merged_at=day1 + timedelta(hours=4)),
        TaskPR(id='', task_id='t2', owner='acme', repo='api', pr_number=2, created_at=day1, updated_at=day1,
               checks_state='failure', review_state='changes_requested', comment_count=1),
        TaskPR(id='', task_id='t3', owner='acme', repo='api', pr_number=3, created_at=day2, updated_at=day2),
    ]
    for row in rows:
        repo.create_task_pr(row)

    stats = service.get_pr_stats()
    assert stats.total_prs_created == 3
    assert stats.total_comments == 4
    assert stats.ci_pass_rate == pytest.approx(0.5)
    assert stats.total_prs_reviewed == 2
    assert stats.approval_rate == pytest.approx(0.5)
    assert stats.avg_time_to_merge_hours == pytest.approx(4.0)
    assert [(item.date, item.count) for item in stats.prs_by_day] == [('2026-03-01', 2), ('2026-03-02', 1)]

    later = service.get_pr_stats(start_date=date(2026, 3, 2))
    assert later.total_prs_created == 1
    assert later.ci_pass_rate == 0.0
    earlier = service.get_pr_stats(end_date=date(2026, 3, 1))
    assert earlier.total_prs_created == 2


def test_publish_failure_is_swallowed():
    class ExplodingBus:
        def publish(self, event_type, payload):
            raise RuntimeError('bus down')

    service = GitHubWatchService(
        repository=InMemoryWatchRepository(),
        client=MockClient(),
        auth_method='mock',
        event_bus=ExplodingBus(),
    )
    assert service.associate_pr_with_task('task-1', _open_pr(1)).pr_number == 1


def _stub_watch() -> ReviewWatch:
    return ReviewWatch(
        id='',
        workspace_id='ws-1',
        workflow_id='wf-1',
        workflow_step_id='step-1',
        agent_profile_id='agent-1',
        created_at=T0,
        updated_at=T0,
    )
