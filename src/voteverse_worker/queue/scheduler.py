"""Poll loop that drains the post and vote job queues."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import date, timedelta

from voteverse_worker.config import WorkerSettings
from voteverse_worker.queue.heartbeat import HeartbeatReporter
from voteverse_worker.queue.models import JobOutcome, JobView
from voteverse_worker.queue.processors import QueueProcessor
from voteverse_worker.queue.repository import QueueRepository
from voteverse_worker.storage.common import local_today

logger = logging.getLogger(__name__)
SLEEP_SLICE_SECONDS = 0.1


@dataclass(slots=True)
class WorkerRunSummary:
    """Aggregate worker counters for CLI reporting."""

    iterations: int = 0
    claimed: int = 0
    completed: int = 0
    skipped: int = 0
    retried: int = 0
    failed: int = 0
    released: int = 0
    idle_iterations: int = 0
    loop_errors: int = 0
    daily_jobs_created: int = 0

    def record(self, outcome: JobOutcome) -> None:
        if outcome == JobOutcome.COMPLETED:
            self.completed += 1
        elif outcome == JobOutcome.SKIPPED:
            self.skipped += 1
        elif outcome == JobOutcome.RETRIED:
            self.retried += 1
        else:
            self.failed += 1

    def merge(self, other: WorkerRunSummary) -> None:
        self.iterations += other.iterations
        self.claimed += other.claimed
        self.completed += other.completed
        self.skipped += other.skipped
        self.retried += other.retried
        self.failed += other.failed
        self.released += other.released
        self.idle_iterations += other.idle_iterations
        self.loop_errors += other.loop_errors
        self.daily_jobs_created += other.daily_jobs_created


class QueueScheduler:
    """Single-threaded cooperative loop over the registered queue processors.

    Processors are drained in registration order on every iteration. The
    stop flag is checked at the top of each iteration and before each job;
    jobs claimed but not started when a stop arrives go back to pending.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        repository: QueueRepository,
        processors: Sequence[QueueProcessor],
        heartbeat: HeartbeatReporter,
        settings: WorkerSettings,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.repository = repository
        self.processors = list(processors)
        self.heartbeat = heartbeat
        self.settings = settings
        self._sleep = sleep
        self._stop_requested = False

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    def stop(self) -> None:
        """Ask the loop to exit after the job in flight."""

        self._stop_requested = True

    def clear_stop(self) -> None:
        self._stop_requested = False

    def run(self, *, max_iterations: int | None = None) -> WorkerRunSummary:
        """Iterate until stopped or `max_iterations` is reached."""

        aggregate = WorkerRunSummary()
        while not self._stop_requested:
            try:
                summary = self.run_iteration()
            except Exception:  # noqa: BLE001
                logger.exception("Worker iteration failed")
                aggregate.iterations += 1
                aggregate.loop_errors += 1
                self._safe_heartbeat(self.heartbeat.report_error)
                if _limit_reached(aggregate, max_iterations):
                    break
                self._sleep_with_stop(self.settings.poll_interval_seconds)
                continue

            aggregate.merge(summary)
            if _limit_reached(aggregate, max_iterations):
                break
            if summary.claimed == 0:
                self._sleep_with_stop(self.settings.poll_interval_seconds)
        return aggregate

    def run_iteration(self) -> WorkerRunSummary:
        """Heartbeat, self-heal, then drain every queue once."""

        summary = WorkerRunSummary(iterations=1)
        if self._stop_requested:
            return summary

        self._heartbeat_if_due()
        self._recover_stale_jobs()
        if self.settings.daily_posts_enabled:
            summary.daily_jobs_created = self._run_daily_check()

        for processor in self.processors:
            if self._stop_requested:
                break
            self._drain(processor=processor, summary=summary)

        if summary.claimed == 0:
            summary.idle_iterations = 1
        return summary

    def ensure_daily_batch(self, day: date | None = None) -> int:
        """Create today's post job for every authorized user unless a batch exists.

        Recomputed from the queue itself, so it is safe across restarts and
        concurrent instances; duplicate inserts are skipped by the store.
        """

        target_day = day or local_today()
        if self.repository.has_post_jobs_for_day(target_day):
            return 0

        users = self.repository.list_authorized_users()
        if not users:
            logger.info("No authorized users; skipping daily post jobs for %s", target_day)
            return 0

        created = self.repository.enqueue_post_jobs(
            user_ids=[user.user_id for user in users],
            day=target_day,
        )
        logger.info("Created %d daily post jobs for %s", created, target_day.isoformat())
        return created

    def _drain(self, *, processor: QueueProcessor, summary: WorkerRunSummary) -> None:
        jobs = list(processor.claim_batch())
        if not jobs:
            return

        summary.claimed += len(jobs)
        logger.info("Claimed %d %s job(s)", len(jobs), processor.kind.value)
        for index, job in enumerate(jobs):
            if self._stop_requested:
                summary.released += self._release(processor=processor, jobs=jobs[index:])
                return

            outcome = processor.process_one(job)
            summary.record(outcome)
            if outcome == JobOutcome.COMPLETED:
                self.heartbeat.record_processed()

            self._heartbeat_if_due()
            self._sleep_with_stop(processor.pacing_delay_seconds)

    def _release(self, *, processor: QueueProcessor, jobs: Sequence[JobView]) -> int:
        released = 0
        for job in jobs:
            try:
                if processor.release(job):
                    released += 1
            except Exception:  # noqa: BLE001
                logger.exception("Could not release %s job %s", processor.kind.value, job.job_id)
        if released:
            logger.info(
                "Stop requested; returned %d unstarted %s job(s) to pending",
                released,
                processor.kind.value,
            )
        return released

    def _heartbeat_if_due(self) -> None:
        if self.heartbeat.is_due(self.settings.heartbeat_interval_seconds):
            self._safe_heartbeat(self.heartbeat.report_running)

    def _safe_heartbeat(self, report: Callable[[], None]) -> None:
        try:
            report()
        except Exception as error:  # noqa: BLE001
            logger.warning("Heartbeat update failed: %s", error)

    def _run_daily_check(self) -> int:
        try:
            return self.ensure_daily_batch()
        except Exception as error:  # noqa: BLE001
            logger.warning("Daily post job check failed: %s", error)
            return 0

    def _recover_stale_jobs(self) -> None:
        if self.settings.stale_processing_seconds <= 0:
            return
        stale_after = timedelta(seconds=self.settings.stale_processing_seconds)
        for processor in self.processors:
            try:
                self.repository.recover_stale_jobs(
                    kind=processor.kind,
                    stale_after=stale_after,
                    max_retries=self.settings.max_retries,
                )
            except Exception as error:  # noqa: BLE001
                logger.warning("Stale %s job recovery failed: %s", processor.kind.value, error)

    def _sleep_with_stop(self, seconds: float) -> None:
        remaining = seconds
        while not self._stop_requested and remaining > 0:
            step = min(SLEEP_SLICE_SECONDS, remaining)
            self._sleep(step)
            # Rounded so float drift does not add a trailing sub-microsecond slice.
            remaining = round(remaining - step, 6)


def _limit_reached(summary: WorkerRunSummary, max_iterations: int | None) -> bool:
    return max_iterations is not None and summary.iterations >= max_iterations
