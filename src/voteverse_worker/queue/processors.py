"""Per-kind job processors sharing one attempt/retry protocol."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import ClassVar, Protocol

from voteverse_worker.queue.errors import WorkerError, describe_error
from voteverse_worker.queue.models import (
    JobKind,
    JobOutcome,
    JobStatus,
    JobView,
    PostJobView,
    UserView,
    VoteJobView,
)
from voteverse_worker.queue.parsing import (
    parse_json_object,
    validate_generated_post,
    validate_vote_choice,
)
from voteverse_worker.queue.prompts import build_post_prompt, build_vote_prompt
from voteverse_worker.queue.repository import QueueRepository

logger = logging.getLogger(__name__)


class CompletionBackend(Protocol):
    def complete(
        self,
        *,
        path: str,
        message: str,
        action_control: str,
        access_token: str,
    ) -> str: ...


class QueueProcessor(Protocol):
    """One registered queue the scheduler drains."""

    kind: JobKind
    batch_size: int
    pacing_delay_seconds: float

    def claim_batch(self) -> Sequence[JobView]: ...

    def process_one(self, job: JobView) -> JobOutcome: ...

    def release(self, job: JobView) -> bool: ...


class _BaseJobProcessor:
    """Runs one claimed job to completed, requeued or failed; never raises."""

    kind: ClassVar[JobKind]

    def __init__(  # noqa: PLR0913
        self,
        *,
        repository: QueueRepository,
        completion: CompletionBackend,
        completion_path: str,
        batch_size: int,
        pacing_delay_seconds: float,
        max_retries: int = 3,
    ) -> None:
        self.repository = repository
        self.completion = completion
        self.completion_path = completion_path
        self.batch_size = batch_size
        self.pacing_delay_seconds = pacing_delay_seconds
        self.max_retries = max_retries

    def release(self, job: JobView) -> bool:
        return self.repository.release_job(kind=self.kind, job_id=job.job_id)

    def process_one(self, job: JobView) -> JobOutcome:
        try:
            self.repository.mark_job_started(kind=self.kind, job_id=job.job_id)
            return self._execute(job)
        except Exception as error:  # noqa: BLE001
            return self._handle_failure(job=job, error=error)

    def _execute(self, job: JobView) -> JobOutcome:
        raise NotImplementedError

    def _handle_failure(self, *, job: JobView, error: Exception) -> JobOutcome:
        message = describe_error(error)
        try:
            decision = self.repository.record_job_failure(
                kind=self.kind,
                job_id=job.job_id,
                error=message,
                max_retries=self.max_retries,
            )
        except Exception:  # noqa: BLE001
            # Row stays in processing; stale-claim recovery charges the attempt later.
            logger.exception(
                "Could not record failure of %s job %s: %s",
                self.kind.value,
                job.job_id,
                message,
            )
            return JobOutcome.RETRIED

        if not decision.applied:
            logger.warning(
                "%s job %s changed state before failure could be recorded: %s",
                self.kind.value,
                job.job_id,
                message,
            )
            return JobOutcome.SKIPPED
        if decision.status == JobStatus.PENDING:
            logger.warning(
                "%s job %s failed, will retry (%d/%d): %s",
                self.kind.value,
                job.job_id,
                decision.retry_count,
                self.max_retries,
                message,
            )
            return JobOutcome.RETRIED
        logger.error(
            "%s job %s failed permanently after %d attempts: %s",
            self.kind.value,
            job.job_id,
            decision.retry_count,
            message,
        )
        return JobOutcome.FAILED

    def _require_credentials(self, user_id: str) -> tuple[UserView, str]:
        user = self.repository.get_user(user_id)
        if user is None:
            raise WorkerError(f"User not found: {user_id}")
        if not user.access_token:
            raise WorkerError(f"User {user_id} has no access token")
        return user, user.access_token


class VoteJobProcessor(_BaseJobProcessor):
    """Casts the user's AI vote on one target vote."""

    kind = JobKind.VOTE

    def claim_batch(self) -> Sequence[JobView]:
        return self.repository.claim_vote_jobs(limit=self.batch_size)

    def _execute(self, job: JobView) -> JobOutcome:
        if not isinstance(job, VoteJobView):
            raise TypeError(f"Expected vote job, got {job.kind.value}")

        if self.repository.has_ai_response(vote_id=job.vote_id, user_id=job.user_id):
            logger.info(
                "User %s already answered vote %s as AI; completing job %s",
                job.user_id,
                job.vote_id,
                job.job_id,
            )
            self.repository.mark_job_completed(kind=self.kind, job_id=job.job_id)
            return JobOutcome.SKIPPED

        vote = self.repository.get_vote(job.vote_id)
        if vote is None:
            raise WorkerError(f"Vote not found: {job.vote_id}")
        if not vote.options:
            raise WorkerError(f"Vote {job.vote_id} has no options")
        _, access_token = self._require_credentials(job.user_id)

        prompt = build_vote_prompt(vote)
        text = self.completion.complete(
            path=self.completion_path,
            message=prompt.message,
            action_control=prompt.action_control,
            access_token=access_token,
        )
        suggestion = validate_vote_choice(
            parse_json_object(text),
            option_count=len(vote.options),
            vote_type=vote.vote_type,
        )
        if not self.repository.complete_vote_job(
            job_id=job.job_id,
            vote_id=job.vote_id,
            user_id=job.user_id,
            suggestion=suggestion,
        ):
            logger.warning("Vote job %s was no longer processing; response discarded", job.job_id)
            return JobOutcome.SKIPPED

        logger.info(
            "Vote job %s completed: user %s chose %s on vote %s",
            job.job_id,
            job.user_id,
            suggestion.choice,
            job.vote_id,
        )
        return JobOutcome.COMPLETED


class PostJobProcessor(_BaseJobProcessor):
    """Generates the user's daily AI-authored vote."""

    kind = JobKind.POST

    def claim_batch(self) -> Sequence[JobView]:
        return self.repository.claim_post_jobs(limit=self.batch_size)

    def _execute(self, job: JobView) -> JobOutcome:
        if not isinstance(job, PostJobView):
            raise TypeError(f"Expected post job, got {job.kind.value}")

        existing = self.repository.find_vote_for_post_job(job_id=job.job_id)
        if existing is not None:
            logger.info("Post job %s already produced vote %s", job.job_id, existing.vote_id)
            self.repository.mark_job_completed(
                kind=self.kind,
                job_id=job.job_id,
                vote_id=existing.vote_id,
            )
            return JobOutcome.SKIPPED

        user, access_token = self._require_credentials(job.user_id)
        prompt = build_post_prompt(user.nickname)
        text = self.completion.complete(
            path=self.completion_path,
            message=prompt.message,
            action_control=prompt.action_control,
            access_token=access_token,
        )
        post = validate_generated_post(parse_json_object(text))
        vote_id = self.repository.complete_post_job(
            job_id=job.job_id,
            user_id=job.user_id,
            post=post,
        )
        if vote_id is None:
            logger.warning("Post job %s was no longer processing; vote discarded", job.job_id)
            return JobOutcome.SKIPPED

        logger.info(
            "Post job %s completed: user %s created vote %s (%s)",
            job.job_id,
            job.user_id,
            vote_id,
            post.title,
        )
        return JobOutcome.COMPLETED
