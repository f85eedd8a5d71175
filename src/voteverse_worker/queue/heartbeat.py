"""Liveness reporting for worker instances."""

from __future__ import annotations

import logging
import os
import socket
import time
from datetime import datetime

from voteverse_worker.queue.models import HeartbeatStatus, HeartbeatWrite
from voteverse_worker.queue.repository import QueueRepository
from voteverse_worker.storage.common import utc_now

logger = logging.getLogger(__name__)

INSTANCE_ID_ENV = "VOTEVERSE_WORKER_INSTANCE_ID"


def default_instance_id() -> str:
    """Instance identity from the environment, else host name and pid."""

    configured = os.getenv(INSTANCE_ID_ENV, "").strip()
    if configured:
        return configured
    return f"worker-{socket.gethostname()}-{os.getpid()}"


class HeartbeatReporter:
    """Upserts this instance's heartbeat row.

    Writes are advisory: a monitor treats an instance as dead once
    `last_activity_at` falls behind a multiple of the heartbeat interval.
    """

    def __init__(
        self,
        *,
        repository: QueueRepository,
        instance_id: str | None = None,
        started_at: datetime | None = None,
    ) -> None:
        self.repository = repository
        self.instance_id = instance_id or default_instance_id()
        self.started_at = started_at or utc_now()
        self.total_processed = 0
        self._pid = os.getpid()
        self._hostname = socket.gethostname()
        self._last_report_monotonic: float | None = None

    def record_processed(self) -> None:
        self.total_processed += 1

    def is_due(self, interval_seconds: float) -> bool:
        """Whether `interval_seconds` passed since the last successful report."""

        if self._last_report_monotonic is None:
            return True
        return time.monotonic() - self._last_report_monotonic >= interval_seconds

    @property
    def uptime_seconds(self) -> int:
        return max(0, int((utc_now() - self.started_at).total_seconds()))

    def report_running(self) -> None:
        self._report(HeartbeatStatus.RUNNING)

    def report_stopped(self) -> None:
        self._report(HeartbeatStatus.STOPPED)

    def report_error(self) -> None:
        self._report(HeartbeatStatus.ERROR)

    def _report(self, status: HeartbeatStatus) -> None:
        self.repository.upsert_heartbeat(
            HeartbeatWrite(
                instance_id=self.instance_id,
                status=status,
                pid=self._pid,
                hostname=self._hostname,
                uptime_seconds=self.uptime_seconds,
                total_processed=self.total_processed,
                started_at=self.started_at,
            ),
        )
        self._last_report_monotonic = time.monotonic()
        logger.debug(
            "Heartbeat %s: instance=%s processed=%d",
            status.value,
            self.instance_id,
            self.total_processed,
        )
