"""Controllers for worker and job queue CLI commands."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path

from voteverse_worker.config import Settings
from voteverse_worker.queue.completion import CompletionClient
from voteverse_worker.queue.heartbeat import HeartbeatReporter
from voteverse_worker.queue.lifecycle import build_lifecycle
from voteverse_worker.queue.models import JobKind, JobView, PostJobView
from voteverse_worker.queue.repository import QueueRepository
from voteverse_worker.queue.scheduler import QueueScheduler
from voteverse_worker.queue.services import EnqueueAutoVotes, QueueService
from voteverse_worker.storage.common import local_today, utc_now


@dataclass(slots=True)
class WorkerRunCommand:
    """CLI input for worker execution."""

    db_path: Path | None
    once: bool = False
    max_iterations: int | None = None


@dataclass(slots=True)
class WorkerHeartbeatsCommand:
    db_path: Path | None


@dataclass(slots=True)
class JobsStatusCommand:
    """CLI input for per-user queue status."""

    db_path: Path | None
    user_id: str
    kind: str = "vote"
    limit: int = 10


@dataclass(slots=True)
class EnqueueVotesCommand:
    db_path: Path | None
    user_id: str
    priority: int = 0


@dataclass(slots=True)
class DailyCheckCommand:
    db_path: Path | None


@dataclass(slots=True)
class RecoverStaleCommand:
    db_path: Path | None
    seconds: int | None = None


@dataclass(slots=True)
class QueueCliController:
    """Coordinates worker runs, enqueue and inspection CLI operations."""

    def run_worker(self, command: WorkerRunCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        settings.validate_for_worker()
        max_iterations = 1 if command.once else command.max_iterations
        with _repository(settings) as repository:
            with CompletionClient(
                base_url=settings.completion.base_url,
                timeout_seconds=settings.completion.timeout_seconds,
            ) as completion:
                lifecycle = build_lifecycle(
                    repository=repository,
                    settings=settings,
                    completion=completion,
                )
                summary = lifecycle.run(max_iterations=max_iterations)
                instance_id = lifecycle.heartbeat.instance_id

        return [
            f"Worker {instance_id} summary: "
            f"iterations={summary.iterations} claimed={summary.claimed} "
            f"completed={summary.completed} skipped={summary.skipped} "
            f"retried={summary.retried} failed={summary.failed} "
            f"released={summary.released} idle={summary.idle_iterations} "
            f"daily_jobs={summary.daily_jobs_created} errors={summary.loop_errors}",
        ]

    def heartbeats(self, command: WorkerHeartbeatsCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            rows = repository.list_heartbeats()

        now = utc_now()
        lines = [f"Worker instances: {len(rows)}"]
        for row in rows:
            age = max(0, int((now - row.last_activity_at).total_seconds()))
            lines.append(
                f"  {row.instance_id} status={row.status.value} pid={row.pid} "
                f"host={row.hostname} processed={row.total_processed} "
                f"uptime={row.uptime_seconds}s last_activity={age}s ago",
            )
        return lines

    def status(self, command: JobsStatusCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        kind = _parse_kind(command.kind)
        with _repository(settings) as repository:
            status = QueueService(repository=repository).queue_status(
                user_id=command.user_id,
                kind=kind,
                limit=command.limit,
            )

        stats = status.stats
        lines = [
            f"{kind.value.capitalize()} jobs for {command.user_id}: total={stats.total} "
            f"pending={stats.pending} processing={stats.processing} "
            f"completed={stats.completed} failed={stats.failed}",
        ]
        lines.extend(_format_job(job) for job in status.recent_jobs)
        return lines

    def enqueue_votes(self, command: EnqueueVotesCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            result = QueueService(repository=repository).enqueue_auto_votes(
                EnqueueAutoVotes(user_id=command.user_id, priority=command.priority),
            )
        if result.enqueued == 0 and result.already_answered == result.total_votes:
            headline = "All votes already answered."
        else:
            headline = "Vote jobs queued."
        return [
            headline,
            f"  total={result.total_votes} already_answered={result.already_answered} "
            f"queued={result.enqueued}",
        ]

    def daily_check(self, command: DailyCheckCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        today = local_today()
        with _repository(settings) as repository:
            scheduler = _inspection_scheduler(repository=repository, settings=settings)
            created = scheduler.ensure_daily_batch(today)
        if created == 0:
            return [f"Daily post jobs for {today.isoformat()}: nothing to create"]
        return [f"Daily post jobs for {today.isoformat()}: created={created}"]

    def recover_stale(self, command: RecoverStaleCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        seconds = command.seconds or settings.worker.stale_processing_seconds
        if seconds <= 0:
            raise ValueError("Stale threshold must be a positive number of seconds.")
        stale_after = timedelta(seconds=seconds)
        lines = []
        with _repository(settings) as repository:
            for kind in (JobKind.POST, JobKind.VOTE):
                recovered = repository.recover_stale_jobs(
                    kind=kind,
                    stale_after=stale_after,
                    max_retries=settings.worker.max_retries,
                )
                lines.append(f"Recovered stale {kind.value} jobs: {recovered}")
        return lines


def _parse_kind(value: str) -> JobKind:
    return JobKind(value.strip().lower())


def _format_job(job: JobView) -> str:
    target = job.vote_id or "-"
    extra = f" day={job.scheduled_for.isoformat()}" if isinstance(job, PostJobView) else ""
    return (
        f"  {job.job_id} status={job.status.value} vote={target}{extra} "
        f"priority={job.priority} retries={job.retry_count} "
        f"created_at={job.created_at.isoformat()} error={job.error or '-'}"
    )


def _inspection_scheduler(*, repository: QueueRepository, settings: Settings) -> QueueScheduler:
    """Scheduler without processors, for one-off maintenance commands."""

    return QueueScheduler(
        repository=repository,
        processors=[],
        heartbeat=HeartbeatReporter(repository=repository, instance_id=settings.worker.instance_id),
        settings=settings.worker,
    )


@contextmanager
def _repository(settings: Settings) -> Iterator[QueueRepository]:
    repository = QueueRepository(
        db_path=settings.db_path,
        sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()
