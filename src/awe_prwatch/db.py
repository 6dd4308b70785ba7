from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
import time
from typing import Callable, Iterator, TypeVar

from sqlalchemy import (
    Boolean,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    delete,
    select,
    update,
)
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError, IntegrityError, OperationalError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker

from awe_prwatch.domain.models import (
    DEFAULT_REVIEW_POLL_INTERVAL_SECONDS,
    PRWatch,
    ReviewPRTask,
    ReviewWatch,
    TaskPR,
    clamp_poll_interval,
)
from awe_prwatch.repository import decode_repo_filters, encode_repo_filters, new_id

T = TypeVar('T')


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class PRWatchEntity(Base):
    __tablename__ = 'github_pr_watches'
    __table_args__ = (
        UniqueConstraint('session_id', name='uq_github_pr_watches_session_id'),
        Index('ix_github_pr_watches_pr_number', 'pr_number'),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    session_id: Mapped[str] = mapped_column(String(128), nullable=False)
    task_id: Mapped[str] = mapped_column(String(128), nullable=False)
    owner: Mapped[str] = mapped_column(String(255), nullable=False)
    repo: Mapped[str] = mapped_column(String(255), nullable=False)
    pr_number: Mapped[int] = mapped_column(Integer(), nullable=False, default=0)
    branch: Mapped[str] = mapped_column(String(255), nullable=False)
    last_checked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_comment_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_check_status: Mapped[str] = mapped_column(String(32), nullable=False, default='')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class TaskPREntity(Base):
    __tablename__ = 'github_task_prs'
    __table_args__ = (
        UniqueConstraint('task_id', 'pr_number', name='uq_github_task_prs_task_id_pr_number'),
        Index('ix_github_task_prs_task_id', 'task_id'),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    task_id: Mapped[str] = mapped_column(String(128), nullable=False)
    owner: Mapped[str] = mapped_column(String(255), nullable=False)
    repo: Mapped[str] = mapped_column(String(255), nullable=False)
    pr_number: Mapped[int] = mapped_column(Integer(), nullable=False)
    pr_url: Mapped[str] = mapped_column(Text(), nullable=False, default='')
    pr_title: Mapped[str] = mapped_column(Text(), nullable=False, default='')
    head_branch: Mapped[str] = mapped_column(String(255), nullable=False, default='')
    base_branch: Mapped[str] = mapped_column(String(255), nullable=False, default='')
    author_login: Mapped[str] = mapped_column(String(255), nullable=False, default='')
    state: Mapped[str] = mapped_column(String(32), nullable=False, default='open')
    review_state: Mapped[str] = mapped_column(String(32), nullable=False, default='')
    checks_state: Mapped[str] = mapped_column(String(32), nullable=False, default='')
    review_count: Mapped[int] = mapped_column(Integer(), nullable=False, default=0)
    pending_review_count: Mapped[int] = mapped_column(Integer(), nullable=False, default=0)
    comment_count: Mapped[int] = mapped_column(Integer(), nullable=False, default=0)
    additions: Mapped[int] = mapped_column(Integer(), nullable=False, default=0)
    deletions: Mapped[int] = mapped_column(Integer(), nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    merged_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class ReviewWatchEntity(Base):
    __tablename__ = 'github_review_watches'
    __table_args__ = (
        Index('ix_github_review_watches_workspace_id_created_at', 'workspace_id', 'created_at'),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    workspace_id: Mapped[str] = mapped_column(String(128), nullable=False)
    workflow_id: Mapped[str] = mapped_column(String(128), nullable=False)
    workflow_step_id: Mapped[str] = mapped_column(String(128), nullable=False)
    repos_json: Mapped[str] = mapped_column('repos', Text(), nullable=False, default='[]')
    agent_profile_id: Mapped[str] = mapped_column(String(128), nullable=False)
    executor_profile_id: Mapped[str] = mapped_column(String(128), nullable=False, default='')
    prompt: Mapped[str] = mapped_column(Text(), nullable=False, default='')
    review_scope: Mapped[str] = mapped_column(String(32), nullable=False, default='user_and_teams')
    custom_query: Mapped[str] = mapped_column(Text(), nullable=False, default='')
    enabled: Mapped[bool] = mapped_column(Boolean(), nullable=False, default=True)
    poll_interval_seconds: Mapped[int] = mapped_column(
        Integer(), nullable=False, default=DEFAULT_REVIEW_POLL_INTERVAL_SECONDS,
    )
    last_polled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class ReviewPRTaskEntity(Base):
    __tablename__ = 'github_review_pr_tasks'
    __table_args__ = (
        UniqueConstraint(
            'review_watch_id', 'repo_owner', 'repo_name', 'pr_number',
            name='uq_github_review_pr_tasks_watch_repo_pr',
        ),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    review_watch_id: Mapped[str] = mapped_column(String(64), nullable=False)
    repo_owner: Mapped[str] = mapped_column(String(255), nullable=False)
    repo_name: Mapped[str] = mapped_column(String(255), nullable=False)
    pr_number: Mapped[int] = mapped_column(Integer(), nullable=False)
    pr_url: Mapped[str] = mapped_column(Text(), nullable=False, default='')
    task_id: Mapped[str] = mapped_column(String(128), nullable=False, default='')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


def _ensure_sqlite_parent(url: str) -> None:
    try:
        parsed = make_url(url)
    except ArgumentError:
        return
    if not parsed.drivername.startswith('sqlite'):
        return
    database = str(parsed.database or '').strip()
    if not database or database == ':memory:':
        return
    Path(database).expanduser().resolve().parent.mkdir(parents=True, exist_ok=True)


class Database:
    def __init__(self, url: str):
        engine_kwargs: dict[str, object] = {
            'future': True,
        }
        if str(url or '').strip().lower().startswith('sqlite'):
            # Poll threads and API handlers share one sqlite file.
            engine_kwargs['connect_args'] = {'check_same_thread': False, 'timeout': 30}
            _ensure_sqlite_parent(url)
        self.engine = create_engine(url, **engine_kwargs)
        self.session_factory = sessionmaker(bind=self.engine, expire_on_commit=False, class_=Session)
        if self.engine.dialect.name == 'sqlite':
            self._configure_sqlite_pragmas()

    def create_schema(self) -> None:
        Base.metadata.create_all(self.engine)

    @contextmanager
    def session(self) -> Iterator[Session]:
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def _configure_sqlite_pragmas(self) -> None:
        with self.engine.connect() as conn:
            conn.exec_driver_sql('PRAGMA journal_mode=WAL')
            conn.exec_driver_sql('PRAGMA synchronous=NORMAL')
            conn.exec_driver_sql('PRAGMA busy_timeout=30000')


class SqlWatchRepository:
    def __init__(self, db: Database):
        self.db = db

    def _sqlite_lock_retry_attempts(self) -> int:
        return 8 if self.db.engine.dialect.name == 'sqlite' else 1

    @staticmethod
    def _is_sqlite_lock_error(exc: Exception) -> bool:
        text = str(exc or '').lower()
        return 'database is locked' in text or 'database table is locked' in text

    @staticmethod
    def _sqlite_lock_backoff_seconds(attempt: int) -> float:
        return min(0.2, 0.02 * (2 ** max(0, int(attempt) - 1)))

    def _write(self, op_name: str, fn: Callable[[Session], T]) -> T:
        attempts = self._sqlite_lock_retry_attempts()
        for attempt in range(1, attempts + 1):
            try:
                with self.db.session() as session:
                    return fn(session)
            except OperationalError as exc:
                if (not self._is_sqlite_lock_error(exc)) or attempt >= attempts:
                    raise
                time.sleep(self._sqlite_lock_backoff_seconds(attempt))
        raise RuntimeError(f'{op_name}_retry_exhausted')

    def _insert_ignore(self, entity: type[Base], values: dict) -> bool:
        """Insert a row unless a unique constraint already holds it."""
        dialect = self.db.engine.dialect.name

        def op(session: Session) -> bool:
            if dialect == 'sqlite':
                stmt = sqlite_insert(entity).values(**values).on_conflict_do_nothing()
            elif dialect == 'postgresql':
                stmt = pg_insert(entity).values(**values).on_conflict_do_nothing()
            else:
                session.add(entity(**values))
                session.flush()
                return True
            result = session.execute(stmt)
            return int(result.rowcount or 0) > 0

        try:
            return self._write(f'insert_{entity.__tablename__}', op)
        except IntegrityError:
            return False

    # PR watches

    def create_pr_watch(self, watch: PRWatch) -> PRWatch:
        values = {
            'id': watch.id or new_id('prw'),
            'session_id': watch.session_id,
            'task_id': watch.task_id,
            'owner': watch.owner,
            'repo': watch.repo,
            'pr_number': int(watch.pr_number),
            'branch': watch.branch,
            'last_checked_at': watch.last_checked_at,
            'last_comment_at': watch.last_comment_at,
            'last_check_status': watch.last_check_status or '',
            'created_at': watch.created_at,
            'updated_at': watch.updated_at,
        }
        self._insert_ignore(PRWatchEntity, values)
        existing = self.get_pr_watch_by_session(watch.session_id)
        if existing is None:
            raise RuntimeError('create_pr_watch_missing_row')
        return existing

    def get_pr_watch(self, watch_id: str) -> PRWatch | None:
        with self.db.session() as session:
            row = session.get(PRWatchEntity, watch_id)
            return self._pr_watch_to_model(row) if row is not None else None

    def get_pr_watch_by_session(self, session_id: str) -> PRWatch | None:
        with self.db.session() as session:
            row = session.scalar(select(PRWatchEntity).where(PRWatchEntity.session_id == session_id))
            return self._pr_watch_to_model(row) if row is not None else None

    def list_active_pr_watches(self) -> list[PRWatch]:
        with self.db.session() as session:
            rows = session.scalars(select(PRWatchEntity).order_by(PRWatchEntity.created_at.asc())).all()
            return [self._pr_watch_to_model(row) for row in rows]

    def update_pr_watch_timestamps(
        self,
        watch_id: str,
        *,
        checked_at: datetime,
        comment_at: datetime | None,
        check_status: str,
    ) -> None:
        self._update_pr_watch(
            watch_id,
            last_checked_at=checked_at,
            last_comment_at=comment_at,
            last_check_status=check_status or '',
        )

    def update_pr_watch_pr_number(self, watch_id: str, pr_number: int) -> None:
        self._update_pr_watch(watch_id, pr_number=int(pr_number))

    def touch_pr_watch(self, watch_id: str, checked_at: datetime) -> None:
        self._update_pr_watch(watch_id, last_checked_at=checked_at)

    def _update_pr_watch(self, watch_id: str, **values) -> None:
        def op(session: Session) -> None:
            result = session.execute(
                update(PRWatchEntity)
                .where(PRWatchEntity.id == watch_id)
                .values(updated_at=_utc_now(), **values)
            )
            if int(result.rowcount or 0) == 0:
                raise KeyError(watch_id)

        self._write('update_pr_watch', op)

    def delete_pr_watch(self, watch_id: str) -> bool:
        def op(session: Session) -> bool:
            result = session.execute(delete(PRWatchEntity).where(PRWatchEntity.id == watch_id))
            return int(result.rowcount or 0) > 0

        return self._write('delete_pr_watch', op)

    # task PR associations

    def create_task_pr(self, task_pr: TaskPR) -> TaskPR:
        values = self._task_pr_values(task_pr)
        values['id'] = task_pr.id or new_id('tpr')
        self._insert_ignore(TaskPREntity, values)
        existing = self.get_task_pr_by_number(task_pr.task_id, task_pr.pr_number)
        if existing is None:
            raise RuntimeError('create_task_pr_missing_row')
        return existing

    def get_task_pr(self, task_id: str) -> TaskPR | None:
        with self.db.session() as session:
            row = session.scalar(
                select(TaskPREntity)
                .where(TaskPREntity.task_id == task_id)
                .order_by(TaskPREntity.created_at.asc())
                .limit(1)
            )
            return self._task_pr_to_model(row) if row is not None else None

    def get_task_pr_by_number(self, task_id: str, pr_number: int) -> TaskPR | None:
        with self.db.session() as session:
            row = session.scalar(
                select(TaskPREntity).where(
                    TaskPREntity.task_id == task_id,
                    TaskPREntity.pr_number == int(pr_number),
                )
            )
            return self._task_pr_to_model(row) if row is not None else None

    def list_task_prs_by_task_ids(self, task_ids: list[str]) -> dict[str, TaskPR]:
        ids = [str(item) for item in task_ids or [] if str(item)]
        if not ids:
            return {}
        with self.db.session() as session:
            rows = session.scalars(
                select(TaskPREntity)
                .where(TaskPREntity.task_id.in_(ids))
                .order_by(TaskPREntity.created_at.asc())
            ).all()
            out: dict[str, TaskPR] = {}
            for row in rows:
                if row.task_id not in out:
                    out[row.task_id] = self._task_pr_to_model(row)
            return out

    def list_task_prs(
        self,
        *,
        created_from: datetime | None = None,
        created_to: datetime | None = None,
    ) -> list[TaskPR]:
        stmt = select(TaskPREntity)
        if created_from is not None:
            stmt = stmt.where(TaskPREntity.created_at >= created_from)
        if created_to is not None:
            stmt = stmt.where(TaskPREntity.created_at <= created_to)
        with self.db.session() as session:
            rows = session.scalars(stmt.order_by(TaskPREntity.created_at.asc())).all()
            return [self._task_pr_to_model(row) for row in rows]

    def update_task_pr(self, task_pr: TaskPR) -> TaskPR:
        values = self._task_pr_values(task_pr)
        values['updated_at'] = _utc_now()
        values.pop('created_at', None)

        def op(session: Session) -> None:
            result = session.execute(
                update(TaskPREntity).where(TaskPREntity.id == task_pr.id).values(**values)
            )
            if int(result.rowcount or 0) == 0:
                raise KeyError(task_pr.id)

        self._write('update_task_pr', op)
        refreshed = self.get_task_pr_by_number(task_pr.task_id, task_pr.pr_number)
        if refreshed is None:
            raise KeyError(task_pr.id)
        return refreshed

    # review watches

    def create_review_watch(self, watch: ReviewWatch) -> ReviewWatch:
        watch_id = watch.id or new_id('rvw')

        def op(session: Session) -> None:
            session.add(
                ReviewWatchEntity(
                    id=watch_id,
                    workspace_id=watch.workspace_id,
                    workflow_id=watch.workflow_id,
                    workflow_step_id=watch.workflow_step_id,
                    repos_json=encode_repo_filters(watch.repos),
                    agent_profile_id=watch.agent_profile_id,
                    executor_profile_id=watch.executor_profile_id or '',
                    prompt=watch.prompt or '',
                    review_scope=watch.review_scope or 'user_and_teams',
                    custom_query=watch.custom_query or '',
                    enabled=bool(watch.enabled),
                    poll_interval_seconds=clamp_poll_interval(watch.poll_interval_seconds),
                    last_polled_at=watch.last_polled_at,
                    created_at=watch.created_at,
                    updated_at=watch.updated_at,
                )
            )

        self._write('create_review_watch', op)
        created = self.get_review_watch(watch_id)
        if created is None:
            raise RuntimeError('create_review_watch_missing_row')
        return created

    def get_review_watch(self, watch_id: str) -> ReviewWatch | None:
        with self.db.session() as session:
            row = session.get(ReviewWatchEntity, watch_id)
            return self._review_watch_to_model(row) if row is not None else None

    def list_review_watches(self, workspace_id: str) -> list[ReviewWatch]:
        with self.db.session() as session:
            rows = session.scalars(
                select(ReviewWatchEntity)
                .where(ReviewWatchEntity.workspace_id == workspace_id)
                .order_by(ReviewWatchEntity.created_at.asc())
            ).all()
            return [self._review_watch_to_model(row) for row in rows]

    def list_enabled_review_watches(self) -> list[ReviewWatch]:
        with self.db.session() as session:
            rows = session.scalars(
                select(ReviewWatchEntity)
                .where(ReviewWatchEntity.enabled.is_(True))
                .order_by(ReviewWatchEntity.created_at.asc())
            ).all()
            return [self._review_watch_to_model(row) for row in rows]

    def update_review_watch(self, watch: ReviewWatch) -> ReviewWatch:
        def op(session: Session) -> None:
            result = session.execute(
                update(ReviewWatchEntity)
                .where(ReviewWatchEntity.id == watch.id)
                .values(
                    workflow_id=watch.workflow_id,
                    workflow_step_id=watch.workflow_step_id,
                    repos_json=encode_repo_filters(watch.repos),
                    agent_profile_id=watch.agent_profile_id,
                    executor_profile_id=watch.executor_profile_id or '',
                    prompt=watch.prompt or '',
                    review_scope=watch.review_scope or 'user_and_teams',
                    custom_query=watch.custom_query or '',
                    enabled=bool(watch.enabled),
                    poll_interval_seconds=clamp_poll_interval(watch.poll_interval_seconds),
                    updated_at=_utc_now(),
                )
            )
            if int(result.rowcount or 0) == 0:
                raise KeyError(watch.id)

        self._write('update_review_watch', op)
        updated = self.get_review_watch(watch.id)
        if updated is None:
            raise KeyError(watch.id)
        return updated

    def update_review_watch_polled_at(self, watch_id: str, polled_at: datetime) -> None:
        def op(session: Session) -> None:
            result = session.execute(
                update(ReviewWatchEntity)
                .where(ReviewWatchEntity.id == watch_id)
                .values(last_polled_at=polled_at)
            )
            if int(result.rowcount or 0) == 0:
                raise KeyError(watch_id)

        self._write('update_review_watch_polled_at', op)

    def delete_review_watch(self, watch_id: str) -> bool:
        def op(session: Session) -> bool:
            result = session.execute(delete(ReviewWatchEntity).where(ReviewWatchEntity.id == watch_id))
            return int(result.rowcount or 0) > 0

        return self._write('delete_review_watch', op)

    # review dedup ledger

    def create_review_pr_task(self, row: ReviewPRTask) -> bool:
        return self._insert_ignore(
            ReviewPRTaskEntity,
            {
                'id': row.id or new_id('rpt'),
                'review_watch_id': row.review_watch_id,
                'repo_owner': row.repo_owner,
                'repo_name': row.repo_name,
                'pr_number': int(row.pr_number),
                'pr_url': row.pr_url or '',
                'task_id': row.task_id or '',
                'created_at': row.created_at,
            },
        )

    def has_review_pr_task(self, review_watch_id: str, repo_owner: str, repo_name: str, pr_number: int) -> bool:
        with self.db.session() as session:
            found = session.scalar(
                select(ReviewPRTaskEntity.id).where(
                    ReviewPRTaskEntity.review_watch_id == review_watch_id,
                    ReviewPRTaskEntity.repo_owner == repo_owner,
                    ReviewPRTaskEntity.repo_name == repo_name,
                    ReviewPRTaskEntity.pr_number == int(pr_number),
                )
            )
            return found is not None

    def list_review_pr_tasks(self, review_watch_id: str) -> list[ReviewPRTask]:
        with self.db.session() as session:
            rows = session.scalars(
                select(ReviewPRTaskEntity)
                .where(ReviewPRTaskEntity.review_watch_id == review_watch_id)
                .order_by(ReviewPRTaskEntity.created_at.asc())
            ).all()
            return [
                ReviewPRTask(
                    id=row.id,
                    review_watch_id=row.review_watch_id,
                    repo_owner=row.repo_owner,
                    repo_name=row.repo_name,
                    pr_number=int(row.pr_number),
                    pr_url=row.pr_url,
                    task_id=row.task_id,
                    created_at=_as_utc(row.created_at),
                )
                for row in rows
            ]

    # row mapping

    @staticmethod
    def _task_pr_values(task_pr: TaskPR) -> dict:
        return {
            'task_id': task_pr.task_id,
            'owner': task_pr.owner,
            'repo': task_pr.repo,
            'pr_number': int(task_pr.pr_number),
            'pr_url': task_pr.pr_url or '',
            'pr_title': task_pr.pr_title or '',
            'head_branch': task_pr.head_branch or '',
            'base_branch': task_pr.base_branch or '',
            'author_login': task_pr.author_login or '',
            'state': task_pr.state or 'open',
            'review_state': task_pr.review_state or '',
            'checks_state': task_pr.checks_state or '',
            'review_count': int(task_pr.review_count),
            'pending_review_count': int(task_pr.pending_review_count),
            'comment_count': int(task_pr.comment_count),
            'additions': int(task_pr.additions),
            'deletions': int(task_pr.deletions),
            'created_at': task_pr.created_at,
            'merged_at': task_pr.merged_at,
            'closed_at': task_pr.closed_at,
            'last_synced_at': task_pr.last_synced_at,
            'updated_at': task_pr.updated_at,
        }

    @staticmethod
    def _pr_watch_to_model(row: PRWatchEntity) -> PRWatch:
        return PRWatch(
            id=row.id,
            session_id=row.session_id,
            task_id=row.task_id,
            owner=row.owner,
            repo=row.repo,
            pr_number=int(row.pr_number),
            branch=row.branch,
            last_checked_at=_as_utc(row.last_checked_at),
            last_comment_at=_as_utc(row.last_comment_at),
            last_check_status=row.last_check_status or '',
            created_at=_as_utc(row.created_at),
            updated_at=_as_utc(row.updated_at),
        )

    @staticmethod
    def _task_pr_to_model(row: TaskPREntity) -> TaskPR:
        return TaskPR(
            id=row.id,
            task_id=row.task_id,
            owner=row.owner,
            repo=row.repo,
            pr_number=int(row.pr_number),
            pr_url=row.pr_url,
            pr_title=row.pr_title,
            head_branch=row.head_branch,
            base_branch=row.base_branch,
            author_login=row.author_login,
            state=row.state,
            review_state=row.review_state,
            checks_state=row.checks_state,
            review_count=int(row.review_count),
            pending_review_count=int(row.pending_review_count),
            comment_count=int(row.comment_count),
            additions=int(row.additions),
            deletions=int(row.deletions),
            created_at=_as_utc(row.created_at),
            merged_at=_as_utc(row.merged_at),
            closed_at=_as_utc(row.closed_at),
            last_synced_at=_as_utc(row.last_synced_at),
            updated_at=_as_utc(row.updated_at),
        )

    @staticmethod
    def _review_watch_to_model(row: ReviewWatchEntity) -> ReviewWatch:
        return ReviewWatch(
            id=row.id,
            workspace_id=row.workspace_id,
            workflow_id=row.workflow_id,
            workflow_step_id=row.workflow_step_id,
            repos=decode_repo_filters(row.repos_json),
            agent_profile_id=row.agent_profile_id,
            executor_profile_id=row.executor_profile_id,
            prompt=row.prompt,
            review_scope=row.review_scope,
            custom_query=row.custom_query,
            enabled=bool(row.enabled),
            poll_interval_seconds=int(row.poll_interval_seconds),
            last_polled_at=_as_utc(row.last_polled_at),
            created_at=_as_utc(row.created_at),
            updated_at=_as_utc(row.updated_at),
        )
