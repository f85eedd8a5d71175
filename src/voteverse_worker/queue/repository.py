"""Persistent job store facade for vote and post queues."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from datetime import date, datetime, timedelta
from pathlib import Path
from uuid import uuid4

from sqlalchemy import func
from sqlalchemy import update as sa_update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from voteverse_worker.queue.models import (
    GeneratedPost,
    HeartbeatStatus,
    HeartbeatView,
    HeartbeatWrite,
    JobKind,
    JobStatus,
    JobView,
    OperatorType,
    PostJobView,
    QueueStats,
    RetryDecision,
    UserView,
    VoteCreate,
    VoteJobView,
    VoteResponseView,
    VoteSuggestion,
    VoteType,
    VoteView,
)
from voteverse_worker.storage.alembic_runner import upgrade_head
from voteverse_worker.storage.common import (
    build_sqlite_engine,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from voteverse_worker.storage.sqlmodel_models import (
    AppUser,
    PostJob,
    Vote,
    VoteJob,
    VoteResponse,
    WorkerHeartbeat,
)

logger = logging.getLogger(__name__)

_JOB_TABLES: dict[JobKind, type[VoteJob] | type[PostJob]] = {
    JobKind.VOTE: VoteJob,
    JobKind.POST: PostJob,
}


class QueueRepository:
    """Job queue persistence backed by SQLModel + SQLite.

    Every status transition is a single conditional UPDATE on the row's
    current status, so several worker processes can share one database.
    """

    def __init__(self, db_path: Path, *, sqlite_busy_timeout_ms: int = 5000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=sqlite_busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        upgrade_head(self.db_path)

    # -- users ---------------------------------------------------------------

    def upsert_user(
        self,
        *,
        user_id: str,
        nickname: str = "",
        access_token: str | None = None,
        external_user_id: str | None = None,
    ) -> UserView:
        """Create a user or refresh its nickname and credentials."""

        with Session(self.engine) as session:
            row = session.exec(select(AppUser).where(AppUser.user_id == user_id)).one_or_none()
            if row is None:
                row = AppUser(
                    user_id=user_id,
                    nickname=nickname,
                    access_token=access_token,
                    external_user_id=external_user_id,
                    created_at=to_db_datetime(utc_now()),
                )
            else:
                row.nickname = nickname or row.nickname
                row.access_token = access_token
                row.external_user_id = external_user_id or row.external_user_id
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_user_view(row)

    def get_user(self, user_id: str) -> UserView | None:
        with Session(self.engine) as session:
            row = session.exec(select(AppUser).where(AppUser.user_id == user_id)).one_or_none()
            return _to_user_view(row) if row is not None else None

    def list_authorized_users(self) -> list[UserView]:
        """Users holding a non-empty external access token."""

        with Session(self.engine) as session:
            rows = session.exec(
                select(AppUser)
                .where(
                    col(AppUser.access_token).is_not(None),
                    col(AppUser.access_token) != "",
                )
                .order_by(col(AppUser.created_at).asc()),
            ).all()
        return [_to_user_view(row) for row in rows]

    # -- votes ---------------------------------------------------------------

    def create_vote(self, payload: VoteCreate) -> VoteView:
        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            row = Vote(
                vote_id=payload.vote_id or str(uuid4()),
                title=payload.title,
                description=payload.description,
                vote_type=payload.vote_type.value,
                options_json=json.dumps(payload.options, ensure_ascii=False),
                operator_type=payload.operator_type.value,
                created_by=payload.created_by,
                created_at=now,
                active_at=now,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_vote_view(row)

    def get_vote(self, vote_id: str) -> VoteView | None:
        with Session(self.engine) as session:
            row = session.exec(select(Vote).where(Vote.vote_id == vote_id)).one_or_none()
            return _to_vote_view(row) if row is not None else None

    def find_vote_for_post_job(self, *, job_id: str) -> VoteView | None:
        """Vote already materialized by the given post job, if any."""

        with Session(self.engine) as session:
            row = session.exec(select(Vote).where(Vote.post_job_id == job_id)).one_or_none()
            return _to_vote_view(row) if row is not None else None

    def list_vote_ids_without_ai_response(self, *, user_id: str) -> list[str]:
        """Votes the user's AI agent has not answered yet, oldest first."""

        answered = select(VoteResponse.vote_id).where(
            VoteResponse.user_id == user_id,
            VoteResponse.operator_type == OperatorType.AI.value,
        )
        with Session(self.engine) as session:
            rows = session.exec(
                select(Vote.vote_id)
                .where(col(Vote.vote_id).not_in(answered))
                .order_by(col(Vote.created_at).asc()),
            ).all()
        return list(rows)

    def count_votes(self) -> int:
        with Session(self.engine) as session:
            return session.exec(select(func.count()).select_from(Vote)).one()

    def has_ai_response(self, *, vote_id: str, user_id: str) -> bool:
        with Session(self.engine) as session:
            row = session.exec(
                select(VoteResponse.response_id)
                .where(
                    VoteResponse.vote_id == vote_id,
                    VoteResponse.user_id == user_id,
                    VoteResponse.operator_type == OperatorType.AI.value,
                )
                .limit(1),
            ).first()
        return row is not None

    def list_vote_responses(
        self,
        *,
        vote_id: str | None = None,
        user_id: str | None = None,
    ) -> list[VoteResponseView]:
        with Session(self.engine) as session:
            statement = select(VoteResponse).order_by(col(VoteResponse.created_at).asc())
            if vote_id is not None:
                statement = statement.where(VoteResponse.vote_id == vote_id)
            if user_id is not None:
                statement = statement.where(VoteResponse.user_id == user_id)
            rows = session.exec(statement).all()
        return [_to_response_view(row) for row in rows]

    # -- enqueue -------------------------------------------------------------

    def enqueue_vote_jobs(
        self,
        *,
        user_id: str,
        vote_ids: Iterable[str],
        priority: int = 0,
        created_at: datetime | None = None,
    ) -> int:
        """Insert pending vote jobs, skipping (user, vote) pairs already queued."""

        now = to_db_datetime(utc_now())
        stamped = to_db_datetime(created_at) if created_at is not None else now
        inserted = 0
        with Session(self.engine) as session:
            for vote_id in vote_ids:
                statement = (
                    sqlite_insert(VoteJob.__table__)  # type: ignore[attr-defined]
                    .values(
                        job_id=str(uuid4()),
                        user_id=user_id,
                        vote_id=vote_id,
                        priority=priority,
                        status=JobStatus.PENDING.value,
                        retry_count=0,
                        created_at=stamped,
                        updated_at=now,
                    )
                    .on_conflict_do_nothing(index_elements=["user_id", "vote_id"])
                )
                inserted += session.exec(statement).rowcount  # type: ignore[call-overload]
            session.commit()
        return inserted

    def enqueue_post_jobs(self, *, user_ids: Iterable[str], day: date) -> int:
        """Insert one pending post job per user for `day`, skipping existing ones."""

        now = to_db_datetime(utc_now())
        inserted = 0
        with Session(self.engine) as session:
            for user_id in user_ids:
                statement = (
                    sqlite_insert(PostJob.__table__)  # type: ignore[attr-defined]
                    .values(
                        job_id=str(uuid4()),
                        user_id=user_id,
                        priority=0,
                        status=JobStatus.PENDING.value,
                        retry_count=0,
                        scheduled_for=day,
                        created_at=now,
                        updated_at=now,
                    )
                    .on_conflict_do_nothing(index_elements=["user_id", "scheduled_for"])
                )
                inserted += session.exec(statement).rowcount  # type: ignore[call-overload]
            session.commit()
        return inserted

    def has_post_jobs_for_day(self, day: date) -> bool:
        with Session(self.engine) as session:
            row = session.exec(
                select(PostJob.job_id).where(PostJob.scheduled_for == day).limit(1),
            ).first()
        return row is not None

    # -- claim & transitions -------------------------------------------------

    def claim_vote_jobs(self, *, limit: int) -> list[VoteJobView]:
        """Claim up to `limit` pending vote jobs by (priority desc, created_at asc)."""

        jobs = self._claim(kind=JobKind.VOTE, limit=limit)
        return [job for job in jobs if isinstance(job, VoteJobView)]

    def claim_post_jobs(self, *, limit: int) -> list[PostJobView]:
        """Claim up to `limit` pending post jobs by (priority desc, created_at asc)."""

        jobs = self._claim(kind=JobKind.POST, limit=limit)
        return [job for job in jobs if isinstance(job, PostJobView)]

    def _claim(self, *, kind: JobKind, limit: int) -> list[JobView]:
        table = _JOB_TABLES[kind]
        if limit <= 0:
            return []

        with Session(self.engine) as session:
            candidate_ids = session.exec(
                select(table.job_id)
                .where(table.status == JobStatus.PENDING.value)
                .order_by(col(table.priority).desc(), col(table.created_at).asc())
                .limit(limit),
            ).all()

        claimed: list[JobView] = []
        for job_id in candidate_ids:
            now = to_db_datetime(utc_now())
            with Session(self.engine) as session:
                result = session.exec(
                    sa_update(table)
                    .where(
                        col(table.job_id) == job_id,
                        col(table.status) == JobStatus.PENDING.value,
                    )
                    .values(
                        status=JobStatus.PROCESSING.value,
                        started_at=now,
                        completed_at=None,
                        updated_at=now,
                    ),
                )
                if result.rowcount != 1:
                    session.rollback()
                    logger.debug("Lost claim race for %s job %s", kind.value, job_id)
                    continue
                row = session.exec(select(table).where(table.job_id == job_id)).one()
                view = _to_job_view(row)
                session.commit()
            claimed.append(view)
        return claimed

    def get_job(self, *, kind: JobKind, job_id: str) -> JobView | None:
        table = _JOB_TABLES[kind]
        with Session(self.engine) as session:
            row = session.exec(select(table).where(table.job_id == job_id)).one_or_none()
            return _to_job_view(row) if row is not None else None

    def release_job(self, *, kind: JobKind, job_id: str) -> bool:
        """Return a claimed but unstarted job to pending without using a retry."""

        table = _JOB_TABLES[kind]
        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(table)
                .where(
                    col(table.job_id) == job_id,
                    col(table.status) == JobStatus.PROCESSING.value,
                )
                .values(
                    status=JobStatus.PENDING.value,
                    started_at=None,
                    updated_at=now,
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
            return True

    def mark_job_started(self, *, kind: JobKind, job_id: str) -> bool:
        """Restamp `started_at` when processing of a claimed job actually begins."""

        table = _JOB_TABLES[kind]
        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(table)
                .where(
                    col(table.job_id) == job_id,
                    col(table.status) == JobStatus.PROCESSING.value,
                )
                .values(started_at=now, updated_at=now),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
            return True

    def mark_job_completed(
        self,
        *,
        kind: JobKind,
        job_id: str,
        vote_id: str | None = None,
    ) -> bool:
        """Complete a processing job whose result already exists."""

        table = _JOB_TABLES[kind]
        now = to_db_datetime(utc_now())
        values: dict[str, object] = {
            "status": JobStatus.COMPLETED.value,
            "completed_at": now,
            "error": None,
            "updated_at": now,
        }
        if kind == JobKind.POST and vote_id is not None:
            values["vote_id"] = vote_id
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(table)
                .where(
                    col(table.job_id) == job_id,
                    col(table.status) == JobStatus.PROCESSING.value,
                )
                .values(**values),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
            return True

    def complete_vote_job(
        self,
        *,
        job_id: str,
        vote_id: str,
        user_id: str,
        suggestion: VoteSuggestion,
    ) -> bool:
        """Persist the AI response, touch the vote and complete the job atomically."""

        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            session.add(
                VoteResponse(
                    response_id=str(uuid4()),
                    vote_id=vote_id,
                    user_id=user_id,
                    choice_json=json.dumps(suggestion.choice),
                    reason=suggestion.reason or None,
                    operator_type=OperatorType.AI.value,
                    created_at=now,
                ),
            )
            try:
                session.flush()
            except IntegrityError:
                session.rollback()
                if not self.has_ai_response(vote_id=vote_id, user_id=user_id):
                    raise
                logger.info(
                    "Vote %s already has an AI response from user %s; completing job %s",
                    vote_id,
                    user_id,
                    job_id,
                )
                return self.mark_job_completed(kind=JobKind.VOTE, job_id=job_id)

            session.exec(
                sa_update(Vote).where(col(Vote.vote_id) == vote_id).values(active_at=now),
            )
            result = session.exec(
                sa_update(VoteJob)
                .where(
                    col(VoteJob.job_id) == job_id,
                    col(VoteJob.status) == JobStatus.PROCESSING.value,
                )
                .values(
                    status=JobStatus.COMPLETED.value,
                    completed_at=now,
                    error=None,
                    updated_at=now,
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
            return True

    def complete_post_job(
        self,
        *,
        job_id: str,
        user_id: str,
        post: GeneratedPost,
    ) -> str | None:
        """Create the AI vote, link it to the job and complete the job atomically.

        Returns the new vote id, or None when the job was no longer processing.
        """

        now = to_db_datetime(utc_now())
        vote_id = str(uuid4())
        with Session(self.engine) as session:
            session.add(
                Vote(
                    vote_id=vote_id,
                    title=post.title,
                    description=post.description or None,
                    vote_type=post.vote_type.value,
                    options_json=json.dumps(post.options, ensure_ascii=False),
                    operator_type=OperatorType.AI.value,
                    created_by=user_id,
                    post_job_id=job_id,
                    created_at=now,
                    active_at=now,
                ),
            )
            try:
                session.flush()
            except IntegrityError:
                session.rollback()
                existing = self.find_vote_for_post_job(job_id=job_id)
                if existing is None:
                    raise
                self.mark_job_completed(kind=JobKind.POST, job_id=job_id, vote_id=existing.vote_id)
                return None

            result = session.exec(
                sa_update(PostJob)
                .where(
                    col(PostJob.job_id) == job_id,
                    col(PostJob.status) == JobStatus.PROCESSING.value,
                )
                .values(
                    status=JobStatus.COMPLETED.value,
                    vote_id=vote_id,
                    completed_at=now,
                    error=None,
                    updated_at=now,
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return None
            session.commit()
            return vote_id

    def record_job_failure(
        self,
        *,
        kind: JobKind,
        job_id: str,
        error: str,
        max_retries: int,
    ) -> RetryDecision:
        """Count one failed attempt; requeue below `max_retries`, else fail terminally."""

        table = _JOB_TABLES[kind]
        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            row = session.exec(select(table).where(table.job_id == job_id)).one_or_none()
            if row is None:
                raise RuntimeError(f"Job not found: {kind.value}/{job_id}")
            if row.status != JobStatus.PROCESSING.value:
                return RetryDecision(applied=False, status=None, retry_count=row.retry_count)

            previous_count = row.retry_count
            retry_count = previous_count + 1
            status = JobStatus.PENDING if retry_count < max_retries else JobStatus.FAILED
            result = session.exec(
                sa_update(table)
                .where(
                    col(table.job_id) == job_id,
                    col(table.status) == JobStatus.PROCESSING.value,
                    col(table.retry_count) == previous_count,
                )
                .values(
                    status=status.value,
                    retry_count=retry_count,
                    error=error,
                    completed_at=now if status == JobStatus.FAILED else None,
                    updated_at=now,
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return RetryDecision(applied=False, status=None, retry_count=previous_count)
            session.commit()
        return RetryDecision(applied=True, status=status, retry_count=retry_count)

    def recover_stale_jobs(
        self,
        *,
        kind: JobKind,
        stale_after: timedelta,
        max_retries: int,
    ) -> int:
        """Charge a failed attempt to jobs left in processing past `stale_after`."""

        if stale_after.total_seconds() <= 0:
            raise ValueError("stale_after must be > 0")

        table = _JOB_TABLES[kind]
        cutoff = to_db_datetime(utc_now() - stale_after)
        with Session(self.engine) as session:
            stale_ids = session.exec(
                select(table.job_id).where(
                    table.status == JobStatus.PROCESSING.value,
                    col(table.started_at).is_not(None),
                    col(table.started_at) < cutoff,
                ),
            ).all()

        recovered = 0
        for job_id in stale_ids:
            decision = self.record_job_failure(
                kind=kind,
                job_id=job_id,
                error=(
                    "Stale processing claim recovered after "
                    f"{int(stale_after.total_seconds())}s without completion"
                ),
                max_retries=max_retries,
            )
            if decision.applied:
                recovered += 1
                logger.warning(
                    "Recovered stale %s job %s -> %s (retry %d/%d)",
                    kind.value,
                    job_id,
                    decision.status.value if decision.status else "unknown",
                    decision.retry_count,
                    max_retries,
                )
        return recovered

    # -- status reads --------------------------------------------------------

    def count_pending(self, kind: JobKind) -> int:
        table = _JOB_TABLES[kind]
        with Session(self.engine) as session:
            return session.exec(
                select(func.count())
                .select_from(table)
                .where(table.status == JobStatus.PENDING.value),
            ).one()

    def queue_stats(self, *, kind: JobKind, user_id: str | None = None) -> QueueStats:
        """Per-status job counts, optionally scoped to one user."""

        table = _JOB_TABLES[kind]
        statement = select(table.status, func.count()).group_by(table.status)
        if user_id is not None:
            statement = statement.where(table.user_id == user_id)
        with Session(self.engine) as session:
            rows = session.exec(statement).all()

        stats = QueueStats()
        for status, count in rows:
            if status in {item.value for item in JobStatus}:
                setattr(stats, status, int(count))
        return stats

    def list_recent_jobs(
        self,
        *,
        kind: JobKind,
        user_id: str | None = None,
        limit: int = 10,
    ) -> list[JobView]:
        table = _JOB_TABLES[kind]
        statement = select(table).order_by(col(table.created_at).desc()).limit(limit)
        if user_id is not None:
            statement = statement.where(table.user_id == user_id)
        with Session(self.engine) as session:
            rows = session.exec(statement).all()
            return [_to_job_view(row) for row in rows]

    # -- heartbeat -----------------------------------------------------------

    def upsert_heartbeat(self, payload: HeartbeatWrite) -> None:
        """Insert or overwrite the liveness row for one worker instance."""

        now = to_db_datetime(utc_now())
        values = {
            "status": payload.status.value,
            "pid": payload.pid,
            "hostname": payload.hostname,
            "uptime_seconds": payload.uptime_seconds,
            "total_processed": payload.total_processed,
            "last_activity_at": now,
            "started_at": to_db_datetime(payload.started_at),
            "updated_at": now,
        }
        statement = (
            sqlite_insert(WorkerHeartbeat.__table__)  # type: ignore[attr-defined]
            .values(instance_id=payload.instance_id, **values)
            .on_conflict_do_update(index_elements=["instance_id"], set_=values)
        )
        with Session(self.engine) as session:
            session.exec(statement)  # type: ignore[call-overload]
            session.commit()

    def get_heartbeat(self, instance_id: str) -> HeartbeatView | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(WorkerHeartbeat).where(WorkerHeartbeat.instance_id == instance_id),
            ).one_or_none()
            return _to_heartbeat_view(row) if row is not None else None

    def list_heartbeats(self) -> list[HeartbeatView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(WorkerHeartbeat).order_by(col(WorkerHeartbeat.last_activity_at).desc()),
            ).all()
            return [_to_heartbeat_view(row) for row in rows]


def _optional_aware(value: datetime | None) -> datetime | None:
    return to_utc_aware_datetime(value) if value is not None else None


def _to_user_view(row: AppUser) -> UserView:
    return UserView(
        user_id=row.user_id,
        nickname=row.nickname,
        access_token=row.access_token,
        external_user_id=row.external_user_id,
        created_at=to_utc_aware_datetime(row.created_at),
    )


def _to_vote_view(row: Vote) -> VoteView:
    options = json.loads(row.options_json)
    return VoteView(
        vote_id=row.vote_id,
        title=row.title,
        description=row.description,
        vote_type=VoteType(row.vote_type),
        options=[str(option) for option in options] if isinstance(options, list) else [],
        operator_type=OperatorType(row.operator_type),
        created_by=row.created_by,
        post_job_id=row.post_job_id,
        created_at=to_utc_aware_datetime(row.created_at),
        active_at=to_utc_aware_datetime(row.active_at),
    )


def _to_response_view(row: VoteResponse) -> VoteResponseView:
    return VoteResponseView(
        response_id=row.response_id,
        vote_id=row.vote_id,
        user_id=row.user_id,
        choice=json.loads(row.choice_json),
        reason=row.reason,
        operator_type=OperatorType(row.operator_type),
        created_at=to_utc_aware_datetime(row.created_at),
    )


def _to_job_view(row: VoteJob | PostJob) -> JobView:
    if isinstance(row, PostJob):
        return PostJobView(
            job_id=row.job_id,
            user_id=row.user_id,
            vote_id=row.vote_id,
            priority=row.priority,
            status=JobStatus(row.status),
            retry_count=row.retry_count,
            error=row.error,
            scheduled_for=row.scheduled_for,
            created_at=to_utc_aware_datetime(row.created_at),
            started_at=_optional_aware(row.started_at),
            completed_at=_optional_aware(row.completed_at),
        )
    return VoteJobView(
        job_id=row.job_id,
        user_id=row.user_id,
        vote_id=row.vote_id,
        priority=row.priority,
        status=JobStatus(row.status),
        retry_count=row.retry_count,
        error=row.error,
        created_at=to_utc_aware_datetime(row.created_at),
        started_at=_optional_aware(row.started_at),
        completed_at=_optional_aware(row.completed_at),
    )


def _to_heartbeat_view(row: WorkerHeartbeat) -> HeartbeatView:
    return HeartbeatView(
        instance_id=row.instance_id,
        status=HeartbeatStatus(row.status),
        pid=row.pid,
        hostname=row.hostname,
        uptime_seconds=row.uptime_seconds,
        total_processed=row.total_processed,
        last_activity_at=to_utc_aware_datetime(row.last_activity_at),
        started_at=to_utc_aware_datetime(row.started_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )
