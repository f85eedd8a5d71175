"""Process lifecycle around the queue scheduler."""

from __future__ import annotations

import logging
import signal
from collections.abc import Callable, Iterator
from contextlib import contextmanager

from voteverse_worker.config import Settings
from voteverse_worker.queue.completion import CompletionClient
from voteverse_worker.queue.heartbeat import HeartbeatReporter
from voteverse_worker.queue.processors import (
    CompletionBackend,
    PostJobProcessor,
    QueueProcessor,
    VoteJobProcessor,
)
from voteverse_worker.queue.repository import QueueRepository
from voteverse_worker.queue.scheduler import QueueScheduler, WorkerRunSummary

logger = logging.getLogger(__name__)


class WorkerLifecycle:
    """Starts the loop, maps SIGINT/SIGTERM to `stop()`, reports final status."""

    def __init__(self, *, scheduler: QueueScheduler, heartbeat: HeartbeatReporter) -> None:
        self.scheduler = scheduler
        self.heartbeat = heartbeat
        self._running = False
        self._stop_signal_name: str | None = None

    @property
    def running(self) -> bool:
        return self._running

    def run(self, *, max_iterations: int | None = None) -> WorkerRunSummary:
        """Run the scheduler until stopped; blocks the calling thread.

        A stop requested before this call or during an earlier run is cleared,
        so a stopped lifecycle can be started again.
        """

        if self._running:
            raise RuntimeError("Worker is already running.")

        self._running = True
        self._stop_signal_name = None
        self.scheduler.clear_stop()
        logger.info("Worker %s starting", self.heartbeat.instance_id)
        self._report(self.heartbeat.report_running)
        try:
            with self._signal_handlers():
                summary = self.scheduler.run(max_iterations=max_iterations)
        except BaseException:
            self._report(self.heartbeat.report_error)
            raise
        finally:
            self._running = False

        self._report(self.heartbeat.report_stopped)
        logger.info(
            "Worker %s stopped%s: completed=%d retried=%d failed=%d",
            self.heartbeat.instance_id,
            f" on {self._stop_signal_name}" if self._stop_signal_name else "",
            summary.completed,
            summary.retried,
            summary.failed,
        )
        return summary

    def stop(self) -> None:
        """Request a graceful stop; safe to call repeatedly."""

        if not self.scheduler.stop_requested:
            logger.info("Stop requested for worker %s", self.heartbeat.instance_id)
        self.scheduler.stop()

    def _report(self, report: Callable[[], None]) -> None:
        try:
            report()
        except Exception as error:  # noqa: BLE001
            logger.warning("Heartbeat update failed: %s", error)

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        if not hasattr(signal, "SIGINT"):
            yield
            return

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            try:
                name = signal.Signals(signum).name
            except ValueError:
                name = str(signum)
            self._stop_signal_name = name
            self.stop()

        try:
            signal.signal(signal.SIGINT, _handler)
            signal.signal(signal.SIGTERM, _handler)
        except ValueError:
            # Signal handlers can only be installed in main thread.
            yield
            return
        try:
            yield
        finally:
            signal.signal(signal.SIGINT, original_sigint)
            signal.signal(signal.SIGTERM, original_sigterm)


def build_processors(
    *,
    repository: QueueRepository,
    completion: CompletionBackend,
    settings: Settings,
) -> list[QueueProcessor]:
    """Post jobs first: they are slower and feed new votes into the vote queue."""

    worker = settings.worker
    return [
        PostJobProcessor(
            repository=repository,
            completion=completion,
            completion_path=settings.completion.chat_path,
            batch_size=worker.post_batch_size,
            pacing_delay_seconds=worker.post_process_delay_seconds,
            max_retries=worker.max_retries,
        ),
        VoteJobProcessor(
            repository=repository,
            completion=completion,
            completion_path=settings.completion.act_path,
            batch_size=worker.vote_batch_size,
            pacing_delay_seconds=worker.vote_process_delay_seconds,
            max_retries=worker.max_retries,
        ),
    ]


def build_lifecycle(
    *,
    repository: QueueRepository,
    settings: Settings,
    completion: CompletionBackend | None = None,
) -> WorkerLifecycle:
    """Wire one independent worker instance from explicit settings."""

    backend = completion or CompletionClient(
        base_url=settings.completion.base_url,
        timeout_seconds=settings.completion.timeout_seconds,
    )
    heartbeat = HeartbeatReporter(repository=repository, instance_id=settings.worker.instance_id)
    scheduler = QueueScheduler(
        repository=repository,
        processors=build_processors(repository=repository, completion=backend, settings=settings),
        heartbeat=heartbeat,
        settings=settings.worker,
    )
    return WorkerLifecycle(scheduler=scheduler, heartbeat=heartbeat)
