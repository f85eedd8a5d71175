from __future__ import annotations

import signal

import allure
import pytest

from voteverse_worker.config import CompletionSettings, Settings, WorkerSettings
from voteverse_worker.queue.lifecycle import WorkerLifecycle, build_lifecycle
from voteverse_worker.queue.models import HeartbeatStatus, JobKind
from voteverse_worker.queue.repository import QueueRepository

pytestmark = [
    allure.epic("Job Queue"),
    allure.feature("Worker Lifecycle"),
]


def _lifecycle(
    repository: QueueRepository,
    completion,  # noqa: ANN001
    worker: WorkerSettings,
) -> WorkerLifecycle:
    settings = Settings(
        db_path=repository.db_path,
        worker=worker,
        completion=CompletionSettings(base_url="https://agent.example.com"),
    )
    return build_lifecycle(repository=repository, settings=settings, completion=completion)


def test_build_lifecycle_drains_posts_before_votes(
    repository: QueueRepository,
    scripted_completion,
    fast_settings: WorkerSettings,
) -> None:
    lifecycle = _lifecycle(repository, scripted_completion(), fast_settings)

    processors = lifecycle.scheduler.processors
    assert [processor.kind for processor in processors] == [JobKind.POST, JobKind.VOTE]
    assert [processor.completion_path for processor in processors] == [
        "/api/secondme/chat/stream",
        "/api/secondme/act/stream",
    ]
    assert [processor.batch_size for processor in processors] == [1, 10]
    assert lifecycle.heartbeat.instance_id == "test-worker"


def test_run_reports_running_then_stopped(
    repository: QueueRepository,
    scripted_completion,
    fast_settings: WorkerSettings,
) -> None:
    lifecycle = _lifecycle(repository, scripted_completion(), fast_settings)

    summary = lifecycle.run(max_iterations=1)

    assert summary.iterations == 1
    assert lifecycle.running is False
    heartbeat = repository.get_heartbeat("test-worker")
    assert heartbeat is not None
    assert heartbeat.status == HeartbeatStatus.STOPPED


def test_stopped_lifecycle_can_run_again(
    repository: QueueRepository,
    scripted_completion,
    fast_settings: WorkerSettings,
) -> None:
    lifecycle = _lifecycle(repository, scripted_completion(), fast_settings)

    lifecycle.stop()
    lifecycle.stop()
    assert lifecycle.scheduler.stop_requested is True

    first = lifecycle.run(max_iterations=1)
    lifecycle.stop()
    second = lifecycle.run(max_iterations=2)

    assert first.iterations == 1
    assert second.iterations == 2
    heartbeat = repository.get_heartbeat("test-worker")
    assert heartbeat is not None
    assert heartbeat.status == HeartbeatStatus.STOPPED


def test_signal_handler_requests_graceful_stop(
    repository: QueueRepository,
    scripted_completion,
    fast_settings: WorkerSettings,
) -> None:
    lifecycle = _lifecycle(repository, scripted_completion(), fast_settings)
    original = signal.getsignal(signal.SIGTERM)

    def claim_and_receive_sigterm() -> list:
        signal.raise_signal(signal.SIGTERM)
        return []

    lifecycle.scheduler.processors[0].claim_batch = claim_and_receive_sigterm

    summary = lifecycle.run()

    assert summary.iterations == 1
    assert lifecycle.scheduler.stop_requested is True
    assert signal.getsignal(signal.SIGTERM) == original
    heartbeat = repository.get_heartbeat("test-worker")
    assert heartbeat is not None
    assert heartbeat.status == HeartbeatStatus.STOPPED


def test_run_reports_error_when_loop_raises(
    repository: QueueRepository,
    scripted_completion,
    fast_settings: WorkerSettings,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    lifecycle = _lifecycle(repository, scripted_completion(), fast_settings)

    def explode(*, max_iterations=None):  # noqa: ANN001, ANN202
        raise KeyboardInterrupt

    monkeypatch.setattr(lifecycle.scheduler, "run", explode)

    with pytest.raises(KeyboardInterrupt):
        lifecycle.run()

    assert lifecycle.running is False
    heartbeat = repository.get_heartbeat("test-worker")
    assert heartbeat is not None
    assert heartbeat.status == HeartbeatStatus.ERROR
