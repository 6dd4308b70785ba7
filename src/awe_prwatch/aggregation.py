"""Pure reductions from raw PR feedback to summary states.

Nothing here touches the network or storage; every function takes domain
values and returns domain values so the poll loops and the service can share
one definition of "failing", "approved" and "pending".
"""

from __future__ import annotations

from datetime import datetime

from awe_prwatch.domain.models import PR, CheckRun, PRComment, PRReview

CHECK_STATUS_SUCCESS = 'success'
CHECK_STATUS_FAILURE = 'failure'
CHECK_STATUS_PENDING = 'pending'

REVIEW_STATE_APPROVED = 'approved'
REVIEW_STATE_CHANGES_REQUESTED = 'changes_requested'
REVIEW_STATE_PENDING = 'pending'

_PENDING_REVIEW_STATES = {'PENDING', 'COMMENTED'}


def overall_check_status(checks: list[CheckRun]) -> str:
    if not checks:
        return ''
    has_pending = False
    for check in checks:
        status = str(check.status or '').strip().lower()
        if status == 'completed':
            if str(check.conclusion or '').strip().lower() == 'failure':
                return CHECK_STATUS_FAILURE
            continue
        has_pending = True
    return CHECK_STATUS_PENDING if has_pending else CHECK_STATUS_SUCCESS


def latest_review_by_author(reviews: list[PRReview]) -> dict[str, PRReview]:
    # Insertion order wins on equal timestamps.
    latest: dict[str, PRReview] = {}
    for review in reviews:
        current = latest.get(review.author)
        if current is None or review.created_at > current.created_at:
            latest[review.author] = review
    return latest


def overall_review_state(reviews: list[PRReview]) -> str:
    if not reviews:
        return ''
    latest = latest_review_by_author(reviews)
    states = [str(item.state or '').strip().upper() for item in latest.values()]
    if any(state == 'CHANGES_REQUESTED' for state in states):
        return REVIEW_STATE_CHANGES_REQUESTED
    if states and all(state == 'APPROVED' for state in states):
        return REVIEW_STATE_APPROVED
    return REVIEW_STATE_PENDING


def count_pending_reviews(reviews: list[PRReview]) -> int:
    latest = latest_review_by_author(reviews)
    return sum(
        1
        for item in latest.values()
        if str(item.state or '').strip().upper() in _PENDING_REVIEW_STATES
    )


def count_pending_requested_reviewers(pr: PR | None) -> int:
    if pr is None:
        return 0
    return len(pr.requested_reviewers or [])


def derive_review_sync_state(pr: PR | None, reviews: list[PRReview]) -> tuple[str, int]:
    """Return (review_state, pending_review_count) for a TaskPR row.

    Outstanding review requests on the PR are authoritative for the pending
    count; the per-author review history is only consulted when nobody is
    still requested.
    """
    state = overall_review_state(reviews)
    requested = count_pending_requested_reviewers(pr)
    if requested > 0:
        if not state:
            state = REVIEW_STATE_PENDING
        return state, requested
    return state, count_pending_reviews(reviews)


def merge_checks(check_runs: list[CheckRun], status_contexts: list[CheckRun]) -> list[CheckRun]:
    merged: list[CheckRun] = []
    seen: set[str] = set()
    for item in list(check_runs or []) + list(status_contexts or []):
        if item.name in seen:
            continue
        seen.add(item.name)
        merged.append(item)
    return merged


def merge_and_sort_comments(
    review_comments: list[PRComment],
    issue_comments: list[PRComment],
) -> list[PRComment]:
    combined = list(review_comments or []) + list(issue_comments or [])
    return sorted(combined, key=lambda item: item.created_at)


def find_latest_comment_time(comments: list[PRComment]) -> datetime | None:
    latest: datetime | None = None
    for comment in comments:
        stamp = comment.updated_at or comment.created_at
        if latest is None or stamp > latest:
            latest = stamp
    return latest


def has_issues(checks: list[CheckRun], reviews: list[PRReview]) -> bool:
    return (
        overall_check_status(checks) == CHECK_STATUS_FAILURE
        or overall_review_state(reviews) == REVIEW_STATE_CHANGES_REQUESTED
    )


__all__ = [
    'CHECK_STATUS_FAILURE',
    'CHECK_STATUS_PENDING',
    'CHECK_STATUS_SUCCESS',
    'REVIEW_STATE_APPROVED',
    'REVIEW_STATE_CHANGES_REQUESTED',
    'REVIEW_STATE_PENDING',
    'count_pending_requested_reviewers',
    'count_pending_reviews',
    'derive_review_sync_state',
    'find_latest_comment_time',
    'has_issues',
    'latest_review_by_author',
    'merge_and_sort_comments',
    'merge_checks',
    'overall_check_status',
    'overall_review_state',
]
