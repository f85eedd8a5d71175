"""Runtime configuration for the vote/post job worker."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse


@dataclass(slots=True)
class WorkerSettings:
    """Scheduler pacing, batching and retry policy."""

    vote_batch_size: int = 10
    vote_process_delay_seconds: float = 3.0
    post_batch_size: int = 1
    post_process_delay_seconds: float = 10.0
    poll_interval_seconds: float = 5.0
    max_retries: int = 3
    heartbeat_interval_seconds: float = 30.0
    stale_processing_seconds: int = 1_800
    daily_posts_enabled: bool = True
    instance_id: str | None = None


@dataclass(slots=True)
class CompletionSettings:
    """Agent completion service endpoints."""

    base_url: str = ""
    act_path: str = "/api/secondme/act/stream"
    chat_path: str = "/api/secondme/chat/stream"
    timeout_seconds: float = 60.0


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".voteverse.db")
    sqlite_busy_timeout_ms: int = 5_000
    worker: WorkerSettings = field(default_factory=WorkerSettings)
    completion: CompletionSettings = field(default_factory=CompletionSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            db_path=db_path or Path(os.getenv("VOTEVERSE_DB_PATH", ".voteverse.db")),
            sqlite_busy_timeout_ms=int(os.getenv("VOTEVERSE_SQLITE_BUSY_TIMEOUT_MS", "5000")),
            worker=WorkerSettings(
                vote_batch_size=int(os.getenv("VOTEVERSE_VOTE_BATCH_SIZE", "10")),
                vote_process_delay_seconds=float(
                    os.getenv("VOTEVERSE_VOTE_PROCESS_DELAY_SECONDS", "3.0"),
                ),
                post_batch_size=int(os.getenv("VOTEVERSE_POST_BATCH_SIZE", "1")),
                post_process_delay_seconds=float(
                    os.getenv("VOTEVERSE_POST_PROCESS_DELAY_SECONDS", "10.0"),
                ),
                poll_interval_seconds=float(os.getenv("VOTEVERSE_POLL_INTERVAL_SECONDS", "5.0")),
                max_retries=int(os.getenv("VOTEVERSE_MAX_RETRIES", "3")),
                heartbeat_interval_seconds=float(
                    os.getenv("VOTEVERSE_HEARTBEAT_INTERVAL_SECONDS", "30.0"),
                ),
                stale_processing_seconds=int(
                    os.getenv("VOTEVERSE_STALE_PROCESSING_SECONDS", "1800"),
                ),
                daily_posts_enabled=_env_bool("VOTEVERSE_DAILY_POSTS_ENABLED", default=True),
                instance_id=os.getenv("VOTEVERSE_WORKER_INSTANCE_ID") or None,
            ),
            completion=CompletionSettings(
                base_url=os.getenv("VOTEVERSE_COMPLETION_BASE_URL", "").strip(),
                act_path=os.getenv("VOTEVERSE_COMPLETION_ACT_PATH", "/api/secondme/act/stream"),
                chat_path=os.getenv(
                    "VOTEVERSE_COMPLETION_CHAT_PATH",
                    "/api/secondme/chat/stream",
                ),
                timeout_seconds=float(os.getenv("VOTEVERSE_COMPLETION_TIMEOUT_SECONDS", "60.0")),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error for out-of-range worker settings."""

        worker = self.worker
        if worker.vote_batch_size <= 0:
            raise ValueError("VOTEVERSE_VOTE_BATCH_SIZE must be a positive integer.")
        if worker.post_batch_size <= 0:
            raise ValueError("VOTEVERSE_POST_BATCH_SIZE must be a positive integer.")
        if worker.vote_process_delay_seconds < 0:
            raise ValueError("VOTEVERSE_VOTE_PROCESS_DELAY_SECONDS must be >= 0.")
        if worker.post_process_delay_seconds < 0:
            raise ValueError("VOTEVERSE_POST_PROCESS_DELAY_SECONDS must be >= 0.")
        if worker.poll_interval_seconds < 0:
            raise ValueError("VOTEVERSE_POLL_INTERVAL_SECONDS must be >= 0.")
        if worker.max_retries <= 0:
            raise ValueError("VOTEVERSE_MAX_RETRIES must be a positive integer.")
        if worker.heartbeat_interval_seconds <= 0:
            raise ValueError("VOTEVERSE_HEARTBEAT_INTERVAL_SECONDS must be > 0.")
        if worker.stale_processing_seconds < 0:
            raise ValueError("VOTEVERSE_STALE_PROCESSING_SECONDS must be >= 0.")
        if self.completion.timeout_seconds <= 0:
            raise ValueError("VOTEVERSE_COMPLETION_TIMEOUT_SECONDS must be > 0.")

    def validate_for_worker(self) -> None:
        """Validate settings plus the completion endpoint the worker calls."""

        self.validate()
        _validate_base_url(self.completion.base_url)


def _validate_base_url(value: str) -> None:
    if not value:
        raise ValueError(
            "Completion service URL is required. Set VOTEVERSE_COMPLETION_BASE_URL.",
        )
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError(
            "Invalid completion service URL: "
            f"{value!r}. Expected an absolute URL with http:// or https:// scheme.",
        )


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
