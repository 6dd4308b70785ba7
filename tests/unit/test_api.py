from __future__ import annotations

from datetime import datetime, timezone

from fastapi.testclient import TestClient

from awe_prwatch.adapters.mock import MockClient
from awe_prwatch.api import create_app
from awe_prwatch.bus import InMemoryEventBus
from awe_prwatch.domain.models import PR, CheckRun, GitHubOrg, GitHubRepo, RequestedReviewer
from awe_prwatch.repository import InMemoryWatchRepository
from awe_prwatch.service import GitHubWatchService

T0 = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


def _pr(number: int, *, reviewers=('alice',)) -> PR:
    return PR(
        number=number,
        title=f'PR {number}',
        html_url=f'https://github.com/acme/api/pull/{number}',
        repo_owner='acme',
        repo_name='api',
        head_branch=f'feature-{number}',
        base_branch='main',
        head_sha=f'sha{number}',
        requested_reviewers=[RequestedReviewer(login) for login in reviewers],
        created_at=T0,
    )


def _client(mock: MockClient | None = None) -> tuple[TestClient, GitHubWatchService, MockClient]:
    mock = mock or MockClient(user='alice')
    service = GitHubWatchService(
        repository=InMemoryWatchRepository(),
        client=mock,
        auth_method='mock',
        event_bus=InMemoryEventBus(),
    )
    return TestClient(create_app(service=service)), service, mock


def _review_body(**overrides) -> dict:
    body = {
        'workspace_id': 'ws-1',
        'workflow_id': 'wf-1',
        'workflow_step_id': 'step-1',
        'agent_profile_id': 'agent-1',
    }
    body.update(overrides)
    return body


def test_healthz_and_status():
    client, _, _ = _client()
    assert client.get('/healthz').json() == {'status': 'ok'}
    status = client.get('/api/github/status').json()
    assert status == {'authenticated': True, 'username': 'alice', 'auth_method': 'mock'}


def test_default_app_reports_unavailable_client():
    client = TestClient(create_app())
    assert client.get('/api/github/status').json()['authenticated'] is False

    resp = client.get('/api/github/prs/acme/api/1')
    assert resp.status_code == 503
    assert resp.json()['code'] == 'github_unavailable'


def test_task_pr_routes():
    client, service, _ = _client()
    service.associate_pr_with_task('task-1', _pr(7))

    resp = client.get('/api/github/task-prs/task-1')
    assert resp.status_code == 200
    assert resp.json()['pr_number'] == 7

    assert client.get('/api/github/task-prs/task-404').status_code == 404

    listing = client.get('/api/github/task-prs', params={'task_ids': 'task-1, task-2'}).json()
    assert list(listing) == ['task-1']

    missing = client.get('/api/github/task-prs')
    assert missing.status_code == 400
    assert missing.json()['field'] == 'task_ids'


def test_pr_feedback_route_and_errors():
    mock = MockClient(user='alice')
    mock.add_pr(_pr(7))
    mock.add_check_runs('acme', 'api', 'sha7', [CheckRun(name='ci', status='completed', conclusion='success')])
    client, _, _ = _client(mock)

    body = client.get('/api/github/prs/acme/api/7').json()
    assert body['pr']['number'] == 7
    assert body['checks'][0]['name'] == 'ci'
    assert body['has_issues'] is False

    bad = client.get('/api/github/prs/acme/api/seven')
    assert bad.status_code == 400
    assert bad.json()['field'] == 'number'

    upstream = client.get('/api/github/prs/acme/api/99')
    assert upstream.status_code == 502
    assert upstream.json()['code'] == 'github_error'


def test_submit_review_route():
    client, _, mock = _client()

    resp = client.post('/api/github/prs/acme/api/7/reviews', json={'event': 'approve', 'body': 'lgtm'})
    assert resp.status_code == 200
    assert resp.json() == {'submitted': True}
    assert mock.submitted_reviews()[0].event == 'APPROVE'

    invalid = client.post('/api/github/prs/acme/api/7/reviews', json={'event': 'MERGE'})
    assert invalid.status_code == 400
    assert invalid.json() == {
        'code': 'invalid_review_event',
        'message': 'event must be APPROVE, COMMENT, or REQUEST_CHANGES',
        'field': 'event',
    }


def test_pr_watch_routes():
    client, service, _ = _client()
    watch = service.ensure_pr_watch(session_id='sess-1', task_id='task-1', owner='acme', repo='api', branch='feature-x')

    rows = client.get('/api/github/watches/pr').json()
    assert [row['id'] for row in rows] == [watch.id]

    assert client.delete(f'/api/github/watches/pr/{watch.id}').json() == {'deleted': True}
    assert client.delete(f'/api/github/watches/pr/{watch.id}').status_code == 404


def test_review_watch_lifecycle():
    mock = MockClient(user='alice')
    mock.add_pr(_pr(1))
    client, service, _ = _client(mock)

    created = client.post(
        '/api/github/watches/review',
        json=_review_body(repos=[{'owner': 'acme'}], poll_interval_seconds=10),
    )
    assert created.status_code == 201
    watch = created.json()
    assert watch['poll_interval_seconds'] == 60
    assert watch['repos'] == [{'owner': 'acme', 'name': ''}]
    service.wait_for_initial_polls(timeout=5)

    listed = client.get('/api/github/watches/review', params={'workspace_id': 'ws-1'}).json()
    assert [row['id'] for row in listed] == [watch['id']]

    updated = client.put(f'/api/github/watches/review/{watch["id"]}', json={'enabled': False, 'prompt': 'be strict'})
    assert updated.status_code == 200
    assert updated.json()['enabled'] is False
    assert updated.json()['prompt'] == 'be strict'
    assert updated.json()['workflow_id'] == 'wf-1'

    triggered = client.post(f'/api/github/watches/review/{watch["id"]}/trigger')
    assert triggered.json() == {'new_prs': 1}

    all_enabled = client.post('/api/github/watches/review/trigger-all', params={'workspace_id': 'ws-1'})
    assert all_enabled.json() == {'new_prs': 0}

    assert client.delete(f'/api/github/watches/review/{watch["id"]}').json() == {'deleted': True}
    assert client.put('/api/github/watches/review/rvw-missing', json={'enabled': True}).status_code == 404
    assert client.post('/api/github/watches/review/rvw-missing/trigger').status_code == 404
    assert client.delete('/api/github/watches/review/rvw-missing').status_code == 404


def test_review_watch_validation_errors():
    client, _, _ = _client()

    missing = client.post('/api/github/watches/review', json=_review_body(workflow_id=''))
    assert missing.status_code == 400
    assert missing.json()['code'] == 'validation_error'
    assert missing.json()['field'] == 'workflow_id'

    scope = client.post('/api/github/watches/review', json=_review_body(review_scope='everyone'))
    assert scope.status_code == 400
    assert scope.json()['field'] == 'review_scope'

    repo_owner = client.post('/api/github/watches/review', json=_review_body(repos=[{'owner': ''}]))
    assert repo_owner.status_code == 400
    assert repo_owner.json()['field'] == 'repos[0].owner'

    no_workspace = client.get('/api/github/watches/review')
    assert no_workspace.status_code == 400
    assert no_workspace.json()['field'] == 'workspace_id'


def test_discovery_routes():
    mock = MockClient(user='alice')
    mock.add_orgs([GitHubOrg(login='acme', avatar_url='https://avatars/acme')])
    mock.add_repos('acme', [GitHubRepo('acme/api', 'acme', 'api'), GitHubRepo('acme/web', 'acme', 'web', True)])
    client, _, _ = _client(mock)

    orgs = client.get('/api/github/orgs').json()
    assert [org['login'] for org in orgs] == ['alice', 'acme']

    repos = client.get('/api/github/repos/search', params={'org': 'acme', 'q': 'web'}).json()
    assert repos == [{'full_name': 'acme/web', 'owner': 'acme', 'name': 'web', 'private': True}]

    no_org = client.get('/api/github/repos/search')
    assert no_org.status_code == 400
    assert no_org.json()['field'] == 'org'


def test_stats_route_parses_dates():
    client, service, _ = _client()
    service.associate_pr_with_task('task-1', _pr(7))

    stats = client.get('/api/github/stats', params={'start_date': '2026-03-01', 'end_date': '2026-03-01'}).json()
    assert stats['total_prs_created'] == 1
    assert stats['prs_by_day'] == [{'date': '2026-03-01', 'count': 1}]

    bad = client.get('/api/github/stats', params={'start_date': '03/01/2026'})
    assert bad.status_code == 400
    assert bad.json()['field'] == 'start_date'


def test_lifespan_shuts_down_initial_poll_executor():
    client, service, _ = _client()
    calls: list[bool] = []
    service.shutdown = lambda *, wait=True: calls.append(wait)

    with client:
        assert client.get('/healthz').status_code == 200
        assert calls == []

    assert calls == [False]
