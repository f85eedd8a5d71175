"""Domain models for the vote/post job queues."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum


class JobStatus(str, Enum):
    """Durable job lifecycle states."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class JobKind(str, Enum):
    VOTE = "vote"
    POST = "post"


class JobOutcome(str, Enum):
    """Result of one processing attempt, as seen by the scheduler."""

    COMPLETED = "completed"
    SKIPPED = "skipped"
    RETRIED = "retried"
    FAILED = "failed"


class OperatorType(str, Enum):
    """Who cast a vote response or created a vote."""

    HUMAN = "human"
    AI = "ai"


class VoteType(str, Enum):
    SINGLE = "single"
    MULTIPLE = "multiple"


class HeartbeatStatus(str, Enum):
    RUNNING = "running"
    STOPPED = "stopped"
    ERROR = "error"


@dataclass(slots=True)
class UserView:
    user_id: str
    nickname: str
    access_token: str | None
    external_user_id: str | None
    created_at: datetime


@dataclass(slots=True)
class VoteCreate:
    """Input payload for inserting a vote."""

    title: str
    options: list[str]
    created_by: str
    description: str | None = None
    vote_type: VoteType = VoteType.SINGLE
    operator_type: OperatorType = OperatorType.HUMAN
    vote_id: str | None = None


@dataclass(slots=True)
class VoteView:
    vote_id: str
    title: str
    description: str | None
    vote_type: VoteType
    options: list[str]
    operator_type: OperatorType
    created_by: str
    post_job_id: str | None
    created_at: datetime
    active_at: datetime


@dataclass(slots=True)
class VoteResponseView:
    response_id: str
    vote_id: str
    user_id: str
    choice: int | list[int]
    reason: str | None
    operator_type: OperatorType
    created_at: datetime


@dataclass(slots=True)
class VoteJobView:
    """Readable vote-job row for processors and status reads."""

    job_id: str
    user_id: str
    vote_id: str
    priority: int
    status: JobStatus
    retry_count: int
    error: str | None
    created_at: datetime
    started_at: datetime | None
    completed_at: datetime | None
    kind: JobKind = JobKind.VOTE


@dataclass(slots=True)
class PostJobView:
    """Readable post-job row for processors and status reads."""

    job_id: str
    user_id: str
    vote_id: str | None
    priority: int
    status: JobStatus
    retry_count: int
    error: str | None
    scheduled_for: date
    created_at: datetime
    started_at: datetime | None
    completed_at: datetime | None
    kind: JobKind = JobKind.POST


JobView = VoteJobView | PostJobView


@dataclass(slots=True)
class RetryDecision:
    """Outcome of recording one failed attempt on a job row."""

    applied: bool
    status: JobStatus | None
    retry_count: int


@dataclass(slots=True)
class QueueStats:
    """Per-status job counts used by queue-progress reads."""

    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0

    @property
    def total(self) -> int:
        return self.pending + self.processing + self.completed + self.failed


@dataclass(slots=True)
class HeartbeatWrite:
    instance_id: str
    status: HeartbeatStatus
    pid: int
    hostname: str
    uptime_seconds: int
    total_processed: int
    started_at: datetime


@dataclass(slots=True)
class HeartbeatView:
    instance_id: str
    status: HeartbeatStatus
    pid: int
    hostname: str
    uptime_seconds: int
    total_processed: int
    last_activity_at: datetime
    started_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class PromptPair:
    """Natural-language prompt plus the strict output-format instruction."""

    message: str
    action_control: str


@dataclass(slots=True)
class VoteSuggestion:
    """Validated AI answer for a vote job."""

    choice: int | list[int]
    reason: str


@dataclass(slots=True)
class GeneratedPost:
    """Validated AI-generated vote for a post job."""

    title: str
    description: str
    vote_type: VoteType
    options: list[str] = field(default_factory=list)
