from __future__ import annotations

from datetime import datetime, timedelta, timezone
from threading import Event, Lock, Thread
from typing import Callable

from awe_prwatch.adapters.base import GitHubClientError
from awe_prwatch.aggregation import overall_check_status
from awe_prwatch.domain.models import PR_STATE_CLOSED, PR_STATE_MERGED, PRWatch, ReviewWatch
from awe_prwatch.observability import get_logger, poll_span, set_watch_context
from awe_prwatch.service import GitHubWatchService

_log = get_logger('awe_prwatch.poller')

DEFAULT_PR_POLL_INTERVAL_SECONDS = 60
DEFAULT_REVIEW_LOOP_INTERVAL_SECONDS = 300


def review_watch_due(watch: ReviewWatch, now: datetime) -> bool:
    if watch.last_polled_at is None:
        return True
    return now - watch.last_polled_at >= timedelta(seconds=int(watch.poll_interval_seconds))


class Poller:
    """Runs the PR feedback monitor and the review-queue loop on two daemon threads.

    Each loop runs one pass as soon as it starts, then sleeps on a shared stop event.
    `stop()` returns only after both threads have exited, so no pass is in flight afterwards.
    """

    def __init__(
        self,
        service: GitHubWatchService,
        *,
        pr_interval_seconds: float = DEFAULT_PR_POLL_INTERVAL_SECONDS,
        review_interval_seconds: float = DEFAULT_REVIEW_LOOP_INTERVAL_SECONDS,
    ):
        self.service = service
        self.pr_interval_seconds = float(pr_interval_seconds)
        self.review_interval_seconds = float(review_interval_seconds)
        self._lock = Lock()
        self._stop_event = Event()
        self._threads: list[Thread] = []

    @property
    def running(self) -> bool:
        with self._lock:
            return any(thread.is_alive() for thread in self._threads)

    def start(self) -> None:
        with self._lock:
            if self._threads:
                return
            self._stop_event = Event()
            self._threads = [
                Thread(
                    target=self._loop,
                    args=('pr_monitor', self.pr_interval_seconds, self.run_pr_pass, self._stop_event),
                    name='prwatch-pr-monitor',
                    daemon=True,
                ),
                Thread(
                    target=self._loop,
                    args=('review_queue', self.review_interval_seconds, self.run_review_pass, self._stop_event),
                    name='prwatch-review-queue',
                    daemon=True,
                ),
            ]
            for thread in self._threads:
                thread.start()
        _log.info(
            'poller_started pr_interval=%s review_interval=%s',
            self.pr_interval_seconds, self.review_interval_seconds,
        )

    def stop(self, timeout: float | None = None) -> None:
        with self._lock:
            threads = list(self._threads)
            self._stop_event.set()
        for thread in threads:
            thread.join(timeout)
        with self._lock:
            self._threads = []
        if threads:
            _log.info('poller_stopped')

    @staticmethod
    def _loop(name: str, interval: float, run_pass: Callable[[], int], stop_event: Event) -> None:
        while not stop_event.is_set():
            try:
                run_pass()
            except Exception:
                _log.exception('poll_pass_failed loop=%s', name)
            if stop_event.wait(interval):
                break

    # PR feedback monitor

    def run_pr_pass(self) -> int:
        """Check every active PR watch once. Returns how many reported new activity."""
        if not self.service.available:
            _log.debug('pr_pass_skipped reason=client_unavailable')
            return 0
        with poll_span('prwatch.pr_pass'):
            watches = self.service.list_active_pr_watches()
            changed = 0
            for watch in watches:
                set_watch_context(watch_id=watch.id, session_id=watch.session_id)
                try:
                    if self._check_one_pr_watch(watch):
                        changed += 1
                except Exception:
                    _log.exception('pr_watch_check_failed watch_id=%s', watch.id)
                finally:
                    set_watch_context(None, None)
            if watches:
                _log.debug('pr_pass_completed watches=%s changed=%s', len(watches), changed)
            return changed

    def _check_one_pr_watch(self, watch: PRWatch) -> bool:
        if int(watch.pr_number or 0) == 0:
            self.service.detect_pr_for_watch(watch)
            return False
        try:
            feedback, has_new = self.service.check_pr_watch(watch)
        except GitHubClientError as exc:
            _log.debug('pr_watch_fetch_failed watch_id=%s error=%s', watch.id, exc)
            return False

        checks_changed = overall_check_status(feedback.checks) != (watch.last_check_status or '')
        terminal = feedback.pr.state in {PR_STATE_MERGED, PR_STATE_CLOSED}
        if has_new:
            self.service.publish_pr_feedback(watch, feedback, checks_changed=checks_changed)
        if has_new or terminal:
            self.service.sync_task_pr(watch.task_id, feedback)
        if terminal:
            self.service.delete_pr_watch(watch.id)
            _log.info('pr_watch_closed watch_id=%s pr_number=%s state=%s', watch.id, watch.pr_number, feedback.pr.state)
        return has_new

    # review queue

    def run_review_pass(self) -> int:
        """Poll every enabled review watch that is due. Returns the number of new PRs found."""
        if not self.service.available:
            _log.debug('review_pass_skipped reason=client_unavailable')
            return 0
        with poll_span('prwatch.review_pass'):
            now = datetime.now(timezone.utc)
            total_new = 0
            for watch in self.service.list_enabled_review_watches():
                if not review_watch_due(watch, now):
                    continue
                set_watch_context(watch_id=watch.id)
                try:
                    new_prs = self.service.check_review_watch(watch)
                except GitHubClientError as exc:
                    _log.debug('review_watch_fetch_failed watch_id=%s error=%s', watch.id, exc)
                    continue
                except Exception:
                    _log.exception('review_watch_check_failed watch_id=%s', watch.id)
                    continue
                finally:
                    set_watch_context(None, None)
                for pr in new_prs:
                    self.service.publish_new_review_pr(watch, pr)
                total_new += len(new_prs)
            if total_new:
                _log.info('review_pass_completed new_prs=%s', total_new)
            return total_new
