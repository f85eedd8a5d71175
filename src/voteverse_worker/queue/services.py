"""Use-case services for the vote and post job queues."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from voteverse_worker.queue.models import JobKind, JobView, QueueStats
from voteverse_worker.queue.repository import QueueRepository

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class EnqueueAutoVotes:
    """Queue an AI vote for every vote the user has not answered as AI."""

    user_id: str
    priority: int = 0


@dataclass(slots=True)
class EnqueueResult:
    total_votes: int
    already_answered: int
    enqueued: int


@dataclass(slots=True)
class QueueStatus:
    kind: JobKind
    stats: QueueStats
    recent_jobs: list[JobView] = field(default_factory=list)


class QueueService:
    """Entry points used by request handlers to feed and inspect the worker."""

    def __init__(self, *, repository: QueueRepository) -> None:
        self.repository = repository

    def enqueue_auto_votes(self, command: EnqueueAutoVotes) -> EnqueueResult:
        """Insert pending vote jobs; pairs already queued are left untouched."""

        if self.repository.get_user(command.user_id) is None:
            raise ValueError(f"User not found: {command.user_id}")

        total_votes = self.repository.count_votes()
        vote_ids = self.repository.list_vote_ids_without_ai_response(user_id=command.user_id)
        already_answered = total_votes - len(vote_ids)
        if not vote_ids:
            return EnqueueResult(
                total_votes=total_votes,
                already_answered=already_answered,
                enqueued=0,
            )

        enqueued = self.repository.enqueue_vote_jobs(
            user_id=command.user_id,
            vote_ids=vote_ids,
            priority=command.priority,
        )
        logger.info(
            "Queued %d vote job(s) for user %s (votes=%d, answered=%d)",
            enqueued,
            command.user_id,
            total_votes,
            already_answered,
        )
        return EnqueueResult(
            total_votes=total_votes,
            already_answered=already_answered,
            enqueued=enqueued,
        )

    def queue_status(self, *, user_id: str, kind: JobKind, limit: int = 10) -> QueueStatus:
        """Per-status counts plus the user's most recent jobs."""

        return QueueStatus(
            kind=kind,
            stats=self.repository.queue_stats(kind=kind, user_id=user_id),
            recent_jobs=self.repository.list_recent_jobs(kind=kind, user_id=user_id, limit=limit),
        )
