from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
import json
from threading import Lock
from typing import Protocol
from uuid import uuid4

from awe_prwatch.domain.models import (
    PRWatch,
    RepoFilter,
    ReviewPRTask,
    ReviewWatch,
    TaskPR,
    clamp_poll_interval,
)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    return f'{prefix}-{uuid4().hex[:12]}'


def encode_repo_filters(repos: list[RepoFilter] | None) -> str:
    return json.dumps(
        [{'owner': item.owner, 'name': item.name} for item in (repos or [])],
        ensure_ascii=True,
    )


def decode_repo_filters(raw: str | None) -> list[RepoFilter]:
    text = str(raw or '').strip()
    if not text:
        return []
    try:
        items = json.loads(text)
    except json.JSONDecodeError:
        return []
    if not isinstance(items, list):
        return []
    out: list[RepoFilter] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        owner = str(item.get('owner') or '').strip()
        if not owner:
            continue
        out.append(RepoFilter(owner=owner, name=str(item.get('name') or '').strip()))
    return out


class WatchRepository(Protocol):
    # PR watches
    def create_pr_watch(self, watch: PRWatch) -> PRWatch:
        ...

    def get_pr_watch(self, watch_id: str) -> PRWatch | None:
        ...

    def get_pr_watch_by_session(self, session_id: str) -> PRWatch | None:
        ...

    def list_active_pr_watches(self) -> list[PRWatch]:
        ...

    def update_pr_watch_timestamps(
        self,
        watch_id: str,
        *,
        checked_at: datetime,
        comment_at: datetime | None,
        check_status: str,
    ) -> None:
        ...

    def update_pr_watch_pr_number(self, watch_id: str, pr_number: int) -> None:
        ...

    def touch_pr_watch(self, watch_id: str, checked_at: datetime) -> None:
        ...

    def delete_pr_watch(self, watch_id: str) -> bool:
        ...

    # task PR associations
    def create_task_pr(self, task_pr: TaskPR) -> TaskPR:
        ...

    def get_task_pr(self, task_id: str) -> TaskPR | None:
        ...

    def get_task_pr_by_number(self, task_id: str, pr_number: int) -> TaskPR | None:
        ...

    def list_task_prs_by_task_ids(self, task_ids: list[str]) -> dict[str, TaskPR]:
        ...

    def list_task_prs(
        self,
        *,
        created_from: datetime | None = None,
        created_to: datetime | None = None,
    ) -> list[TaskPR]:
        ...

    def update_task_pr(self, task_pr: TaskPR) -> TaskPR:
        ...

    # review watches
    def create_review_watch(self, watch: ReviewWatch) -> ReviewWatch:
        ...

    def get_review_watch(self, watch_id: str) -> ReviewWatch | None:
        ...

    def list_review_watches(self, workspace_id: str) -> list[ReviewWatch]:
        ...

    def list_enabled_review_watches(self) -> list[ReviewWatch]:
        ...

    def update_review_watch(self, watch: ReviewWatch) -> ReviewWatch:
        ...

    def update_review_watch_polled_at(self, watch_id: str, polled_at: datetime) -> None:
        ...

    def delete_review_watch(self, watch_id: str) -> bool:
        ...

    # review dedup ledger
    def create_review_pr_task(self, row: ReviewPRTask) -> bool:
        ...

    def has_review_pr_task(self, review_watch_id: str, repo_owner: str, repo_name: str, pr_number: int) -> bool:
        ...

    def list_review_pr_tasks(self, review_watch_id: str) -> list[ReviewPRTask]:
        ...


class InMemoryWatchRepository:
    """Process-local store with the same uniqueness rules as the SQL tables."""

    def __init__(self):
        self._lock = Lock()
        self.pr_watches: dict[str, PRWatch] = {}
        self.task_prs: dict[str, TaskPR] = {}
        self.review_watches: dict[str, ReviewWatch] = {}
        self.review_pr_tasks: dict[tuple[str, str, str, int], ReviewPRTask] = {}

    # PR watches

    def create_pr_watch(self, watch: PRWatch) -> PRWatch:
        with self._lock:
            for existing in self.pr_watches.values():
                if existing.session_id == watch.session_id:
                    return replace(existing)
            row = replace(watch, id=watch.id or new_id('prw'))
            self.pr_watches[row.id] = row
            return replace(row)

    def get_pr_watch(self, watch_id: str) -> PRWatch | None:
        with self._lock:
            row = self.pr_watches.get(watch_id)
            return replace(row) if row is not None else None

    def get_pr_watch_by_session(self, session_id: str) -> PRWatch | None:
        with self._lock:
            for row in self.pr_watches.values():
                if row.session_id == session_id:
                    return replace(row)
        return None

    def list_active_pr_watches(self) -> list[PRWatch]:
        with self._lock:
            rows = sorted(self.pr_watches.values(), key=lambda item: item.created_at)
            return [replace(row) for row in rows]

    def update_pr_watch_timestamps(
        self,
        watch_id: str,
        *,
        checked_at: datetime,
        comment_at: datetime | None,
        check_status: str,
    ) -> None:
        with self._lock:
            row = self.pr_watches.get(watch_id)
            if row is None:
                raise KeyError(watch_id)
            row.last_checked_at = checked_at
            row.last_comment_at = comment_at
            row.last_check_status = check_status
            row.updated_at = _utc_now()

    def update_pr_watch_pr_number(self, watch_id: str, pr_number: int) -> None:
        with self._lock:
            row = self.pr_watches.get(watch_id)
            if row is None:
                raise KeyError(watch_id)
            row.pr_number = int(pr_number)
            row.updated_at = _utc_now()

    def touch_pr_watch(self, watch_id: str, checked_at: datetime) -> None:
        with self._lock:
            row = self.pr_watches.get(watch_id)
            if row is None:
                raise KeyError(watch_id)
            row.last_checked_at = checked_at
            row.updated_at = _utc_now()

    def delete_pr_watch(self, watch_id: str) -> bool:
        with self._lock:
            return self.pr_watches.pop(watch_id, None) is not None

    # task PR associations

    def create_task_pr(self, task_pr: TaskPR) -> TaskPR:
        with self._lock:
            for existing in self.task_prs.values():
                if existing.task_id == task_pr.task_id and existing.pr_number == task_pr.pr_number:
                    return replace(existing)
            row = replace(task_pr, id=task_pr.id or new_id('tpr'))
            self.task_prs[row.id] = row
            return replace(row)

    def get_task_pr(self, task_id: str) -> TaskPR | None:
        with self._lock:
            rows = [row for row in self.task_prs.values() if row.task_id == task_id]
        if not rows:
            return None
        rows.sort(key=lambda item: item.created_at)
        return replace(rows[0])

    def get_task_pr_by_number(self, task_id: str, pr_number: int) -> TaskPR | None:
        with self._lock:
            for row in self.task_prs.values():
                if row.task_id == task_id and row.pr_number == int(pr_number):
                    return replace(row)
        return None

    def list_task_prs_by_task_ids(self, task_ids: list[str]) -> dict[str, TaskPR]:
        wanted = {str(item) for item in task_ids or []}
        out: dict[str, TaskPR] = {}
        with self._lock:
            rows = sorted(self.task_prs.values(), key=lambda item: item.created_at)
        for row in rows:
            if row.task_id in wanted and row.task_id not in out:
                out[row.task_id] = replace(row)
        return out

    def list_task_prs(
        self,
        *,
        created_from: datetime | None = None,
        created_to: datetime | None = None,
    ) -> list[TaskPR]:
        with self._lock:
            rows = sorted(self.task_prs.values(), key=lambda item: item.created_at)
        return [
            replace(row)
            for row in rows
            if (created_from is None or row.created_at >= created_from)
            and (created_to is None or row.created_at <= created_to)
        ]

    def update_task_pr(self, task_pr: TaskPR) -> TaskPR:
        with self._lock:
            if task_pr.id not in self.task_prs:
                raise KeyError(task_pr.id)
            row = replace(task_pr, updated_at=_utc_now())
            self.task_prs[row.id] = row
            return replace(row)

    # review watches

    def create_review_watch(self, watch: ReviewWatch) -> ReviewWatch:
        row = replace(
            watch,
            id=watch.id or new_id('rvw'),
            repos=list(watch.repos),
            poll_interval_seconds=clamp_poll_interval(watch.poll_interval_seconds),
        )
        with self._lock:
            self.review_watches[row.id] = row
            return replace(row, repos=list(row.repos))

    def get_review_watch(self, watch_id: str) -> ReviewWatch | None:
        with self._lock:
            row = self.review_watches.get(watch_id)
            return replace(row, repos=list(row.repos)) if row is not None else None

    def list_review_watches(self, workspace_id: str) -> list[ReviewWatch]:
        with self._lock:
            rows = [row for row in self.review_watches.values() if row.workspace_id == workspace_id]
        rows.sort(key=lambda item: item.created_at)
        return [replace(row, repos=list(row.repos)) for row in rows]

    def list_enabled_review_watches(self) -> list[ReviewWatch]:
        with self._lock:
            rows = [row for row in self.review_watches.values() if row.enabled]
        rows.sort(key=lambda item: item.created_at)
        return [replace(row, repos=list(row.repos)) for row in rows]

    def update_review_watch(self, watch: ReviewWatch) -> ReviewWatch:
        with self._lock:
            if watch.id not in self.review_watches:
                raise KeyError(watch.id)
            row = replace(
                watch,
                repos=list(watch.repos),
                poll_interval_seconds=clamp_poll_interval(watch.poll_interval_seconds),
                updated_at=_utc_now(),
            )
            self.review_watches[row.id] = row
            return replace(row, repos=list(row.repos))

    def update_review_watch_polled_at(self, watch_id: str, polled_at: datetime) -> None:
        with self._lock:
            row = self.review_watches.get(watch_id)
            if row is None:
                raise KeyError(watch_id)
            row.last_polled_at = polled_at

    def delete_review_watch(self, watch_id: str) -> bool:
        with self._lock:
            return self.review_watches.pop(watch_id, None) is not None

    # review dedup ledger

    def create_review_pr_task(self, row: ReviewPRTask) -> bool:
        key = (row.review_watch_id, row.repo_owner, row.repo_name, int(row.pr_number))
        with self._lock:
            if key in self.review_pr_tasks:
                return False
            self.review_pr_tasks[key] = replace(row, id=row.id or new_id('rpt'))
            return True

    def has_review_pr_task(self, review_watch_id: str, repo_owner: str, repo_name: str, pr_number: int) -> bool:
        with self._lock:
            return (review_watch_id, repo_owner, repo_name, int(pr_number)) in self.review_pr_tasks

    def list_review_pr_tasks(self, review_watch_id: str) -> list[ReviewPRTask]:
        with self._lock:
            rows = [row for row in self.review_pr_tasks.values() if row.review_watch_id == review_watch_id]
        rows.sort(key=lambda item: item.created_at)
        return [replace(row) for row in rows]
