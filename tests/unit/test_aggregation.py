from __future__ import annotations

from datetime import datetime, timedelta, timezone

from awe_prwatch.aggregation import (
    count_pending_reviews,
    derive_review_sync_state,
    find_latest_comment_time,
    has_issues,
    latest_review_by_author,
    merge_and_sort_comments,
    merge_checks,
    overall_check_status,
    overall_review_state,
)
from awe_prwatch.domain.models import PR, CheckRun, PRComment, PRReview, RequestedReviewer

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _review(author: str, state: str, minutes: int) -> PRReview:
    return PRReview(id=minutes, author=author, state=state, created_at=T0 + timedelta(minutes=minutes))


def _comment(comment_id: int, minutes: int, *, updated_minutes: int | None = None, kind: str = 'review') -> PRComment:
    created = T0 + timedelta(minutes=minutes)
    updated = T0 + timedelta(minutes=updated_minutes) if updated_minutes is not None else created
    return PRComment(
        id=comment_id,
        author='alice',
        body=f'comment {comment_id}',
        created_at=created,
        updated_at=updated,
        comment_type=kind,
    )


def test_overall_check_status_empty_is_blank():
    assert overall_check_status([]) == ''


def test_overall_check_status_failure_wins_over_pending():
    checks = [
        CheckRun(name='lint', status='in_progress'),
        CheckRun(name='test', status='completed', conclusion='failure'),
    ]
    assert overall_check_status(checks) == 'failure'


def test_overall_check_status_pending_when_any_incomplete():
    checks = [
        CheckRun(name='lint', status='completed', conclusion='success'),
        CheckRun(name='test', status='queued'),
    ]
    assert overall_check_status(checks) == 'pending'


def test_overall_check_status_success_when_all_completed_without_failure():
    checks = [
        CheckRun(name='lint', status='completed', conclusion='success'),
        CheckRun(name='docs', status='completed', conclusion='skipped'),
        CheckRun(name='test', status='completed', conclusion='neutral'),
    ]
    assert overall_check_status(checks) == 'success'


def test_latest_review_by_author_keeps_newest_per_author():
    reviews = [
        _review('bob', 'CHANGES_REQUESTED', 1),
        _review('bob', 'APPROVED', 5),
        _review('carol', 'COMMENTED', 2),
    ]
    latest = latest_review_by_author(reviews)
    assert latest['bob'].state == 'APPROVED'
    assert latest['carol'].state == 'COMMENTED'


def test_latest_review_by_author_keeps_first_on_equal_timestamps():
    reviews = [_review('bob', 'APPROVED', 3), _review('bob', 'CHANGES_REQUESTED', 3)]
    assert latest_review_by_author(reviews)['bob'].state == 'APPROVED'


def test_overall_review_state_superseded_changes_request_does_not_count():
    reviews = [_review('bob', 'CHANGES_REQUESTED', 1), _review('bob', 'APPROVED', 10)]
    assert overall_review_state(reviews) == 'approved'


def test_overall_review_state_any_changes_requested_blocks():
    reviews = [_review('bob', 'APPROVED', 1), _review('carol', 'CHANGES_REQUESTED', 2)]
    assert overall_review_state(reviews) == 'changes_requested'


def test_overall_review_state_pending_when_mixed_without_blockers():
    reviews = [_review('bob', 'APPROVED', 1), _review('carol', 'COMMENTED', 2)]
    assert overall_review_state(reviews) == 'pending'
    assert overall_review_state([]) == ''


def test_count_pending_reviews_counts_latest_commented_or_pending():
    reviews = [
        _review('bob', 'COMMENTED', 1),
        _review('carol', 'PENDING', 2),
        _review('dave', 'COMMENTED', 1),
        _review('dave', 'APPROVED', 4),
    ]
    assert count_pending_reviews(reviews) == 2


def test_derive_review_sync_state_prefers_requested_reviewers():
    pr = PR(number=1, requested_reviewers=[RequestedReviewer('bob'), RequestedReviewer('core', 'team')])
    state, pending = derive_review_sync_state(pr, [])
    assert state == 'pending'
    assert pending == 2


def test_derive_review_sync_state_falls_back_to_review_history():
    pr = PR(number=1)
    reviews = [_review('bob', 'COMMENTED', 1), _review('carol', 'APPROVED', 2)]
    state, pending = derive_review_sync_state(pr, reviews)
    assert state == 'pending'
    assert pending == 1


def test_merge_checks_dedups_by_name_preferring_check_runs():
    runs = [CheckRun(name='ci/test', status='completed', conclusion='success', source='check_run')]
    statuses = [
        CheckRun(name='ci/test', status='completed', conclusion='failure', source='status_context'),
        CheckRun(name='deploy', status='in_progress', source='status_context'),
    ]
    merged = merge_checks(runs, statuses)
    assert [item.name for item in merged] == ['ci/test', 'deploy']
    assert merged[0].source == 'check_run'
    assert merged[0].conclusion == 'success'


def test_merge_and_sort_comments_orders_by_creation_time():
    review_comments = [_comment(1, 10), _comment(2, 1)]
    issue_comments = [_comment(3, 5, kind='issue')]
    ordered = merge_and_sort_comments(review_comments, issue_comments)
    assert [item.id for item in ordered] == [2, 3, 1]


def test_find_latest_comment_time_uses_updated_at():
    comments = [_comment(1, 1, updated_minutes=30), _comment(2, 20)]
    assert find_latest_comment_time(comments) == T0 + timedelta(minutes=30)
    assert find_latest_comment_time([]) is None


def test_has_issues_on_failing_check_or_changes_requested():
    failing = [CheckRun(name='t', status='completed', conclusion='failure')]
    assert has_issues(failing, []) is True
    assert has_issues([], [_review('bob', 'CHANGES_REQUESTED', 1)]) is True
    assert has_issues([], [_review('bob', 'APPROVED', 1)]) is False
