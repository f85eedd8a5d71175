"""CLI entrypoint for voteverse-worker."""

import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any

import rich_click as click

from voteverse_worker import __version__
from voteverse_worker.queue.controllers import (
    DailyCheckCommand,
    EnqueueVotesCommand,
    JobsStatusCommand,
    QueueCliController,
    RecoverStaleCommand,
    WorkerHeartbeatsCommand,
    WorkerRunCommand,
)

click.rich_click.USE_MARKDOWN = True
QUEUE_CONTROLLER = QueueCliController()
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@click.group()
@click.version_option(version=__version__, prog_name="voteverse-worker")
def voteverse_worker() -> None:
    """Voteverse background job worker CLI."""


@voteverse_worker.group()
def worker() -> None:
    """Worker process commands."""


@voteverse_worker.group()
def jobs() -> None:
    """Job queue commands."""


@worker.command("run")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--once/--loop",
    default=False,
    show_default=True,
    help="Run a single poll iteration or loop until SIGINT/SIGTERM.",
)
@click.option(
    "--max-iterations",
    type=click.IntRange(min=1),
    default=None,
    help="Optional cap for poll iterations in loop mode.",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="INFO",
    show_default=True,
    help="Logging level for the worker process.",
)
def worker_run(
    db_path: Path | None,
    once: bool,
    max_iterations: int | None,
    log_level: str,
) -> None:
    """Run the vote/post job worker."""

    logging.basicConfig(level=getattr(logging, log_level.upper()), format=LOG_FORMAT)
    _emit_lines(
        _invoke(
            QUEUE_CONTROLLER.run_worker,
            WorkerRunCommand(
                db_path=db_path,
                once=once,
                max_iterations=max_iterations,
            ),
        ),
    )


@worker.command("heartbeats")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
def worker_heartbeats(db_path: Path | None) -> None:
    """List worker instances and their last heartbeat."""

    _emit_lines(QUEUE_CONTROLLER.heartbeats(WorkerHeartbeatsCommand(db_path=db_path)))


@jobs.command("status")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--user-id", required=True, help="User id.")
@click.option(
    "--kind",
    type=click.Choice(["vote", "post"], case_sensitive=False),
    default="vote",
    show_default=True,
    help="Which queue to inspect.",
)
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=500),
    default=10,
    show_default=True,
    help="Max recent jobs to print.",
)
def jobs_status(db_path: Path | None, user_id: str, kind: str, limit: int) -> None:
    """Show per-status counts and recent jobs for one user."""

    _emit_lines(
        QUEUE_CONTROLLER.status(
            JobsStatusCommand(
                db_path=db_path,
                user_id=user_id,
                kind=kind,
                limit=limit,
            ),
        ),
    )


@jobs.command("enqueue-votes")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--user-id", required=True, help="User id.")
@click.option(
    "--priority",
    type=int,
    default=0,
    show_default=True,
    help="Queue priority; higher is claimed first.",
)
def jobs_enqueue_votes(db_path: Path | None, user_id: str, priority: int) -> None:
    """Queue an AI vote for every vote the user has not answered as AI."""

    _emit_lines(
        _invoke(
            QUEUE_CONTROLLER.enqueue_votes,
            EnqueueVotesCommand(
                db_path=db_path,
                user_id=user_id,
                priority=priority,
            ),
        ),
    )


@jobs.command("daily-check")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
def jobs_daily_check(db_path: Path | None) -> None:
    """Create today's post jobs for authorized users if none exist yet."""

    _emit_lines(QUEUE_CONTROLLER.daily_check(DailyCheckCommand(db_path=db_path)))


@jobs.command("recover-stale")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--seconds",
    type=click.IntRange(min=1),
    default=None,
    help="Processing age threshold; defaults to VOTEVERSE_STALE_PROCESSING_SECONDS.",
)
def jobs_recover_stale(db_path: Path | None, seconds: int | None) -> None:
    """Charge a failed attempt to jobs stuck in processing."""

    _emit_lines(
        _invoke(
            QUEUE_CONTROLLER.recover_stale,
            RecoverStaleCommand(db_path=db_path, seconds=seconds),
        ),
    )


def _invoke(handler: Callable[[Any], list[str]], command: object) -> list[str]:
    try:
        return handler(command)
    except ValueError as error:
        raise click.ClickException(str(error)) from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    voteverse_worker()
