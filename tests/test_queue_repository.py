from __future__ import annotations

from datetime import UTC, date, datetime, timedelta

import allure
from sqlalchemy import update as sa_update
from sqlmodel import Session, col

from voteverse_worker.queue.models import (
    GeneratedPost,
    HeartbeatStatus,
    HeartbeatWrite,
    JobKind,
    JobStatus,
    OperatorType,
    VoteSuggestion,
    VoteType,
)
from voteverse_worker.queue.repository import QueueRepository
from voteverse_worker.storage.common import to_db_datetime
from voteverse_worker.storage.sqlmodel_models import VoteJob, VoteResponse

pytestmark = [
    allure.epic("Job Queue"),
    allure.feature("Durable Queue Store"),
]


def test_enqueue_vote_jobs_skips_existing_user_vote_pairs(
    repository: QueueRepository,
    seed_user,
    seed_vote,
) -> None:
    seed_user("user-1")
    first = seed_vote("First")
    second = seed_vote("Second")

    assert repository.enqueue_vote_jobs(user_id="user-1", vote_ids=[first.vote_id]) == 1
    assert (
        repository.enqueue_vote_jobs(user_id="user-1", vote_ids=[first.vote_id, second.vote_id])
        == 1
    )
    assert repository.count_pending(JobKind.VOTE) == 2


def test_claim_orders_by_priority_then_age_and_stamps_started_at(
    repository: QueueRepository,
    seed_user,
    seed_vote,
) -> None:
    seed_user("user-1")
    oldest = seed_vote("Oldest")
    newer = seed_vote("Newer")
    urgent = seed_vote("Urgent")
    base = datetime(2026, 10, 1, 8, 0, tzinfo=UTC)
    repository.enqueue_vote_jobs(user_id="user-1", vote_ids=[newer.vote_id], created_at=base)
    repository.enqueue_vote_jobs(
        user_id="user-1",
        vote_ids=[oldest.vote_id],
        created_at=base - timedelta(hours=1),
    )
    repository.enqueue_vote_jobs(
        user_id="user-1",
        vote_ids=[urgent.vote_id],
        priority=5,
        created_at=base + timedelta(hours=1),
    )

    claimed = repository.claim_vote_jobs(limit=10)

    assert [job.vote_id for job in claimed] == [urgent.vote_id, oldest.vote_id, newer.vote_id]
    assert all(job.status == JobStatus.PROCESSING for job in claimed)
    assert all(job.started_at is not None for job in claimed)


def test_claim_never_hands_the_same_job_to_two_workers(
    repository: QueueRepository,
    seed_user,
    seed_vote,
) -> None:
    seed_user("user-1")
    vote_ids = [seed_vote(f"Vote {index}").vote_id for index in range(3)]
    repository.enqueue_vote_jobs(user_id="user-1", vote_ids=vote_ids)
    other = QueueRepository(repository.db_path)
    try:
        first = repository.claim_vote_jobs(limit=2)
        second = other.claim_vote_jobs(limit=10)
        third = repository.claim_vote_jobs(limit=10)
    finally:
        other.close()

    claimed_ids = [job.job_id for job in [*first, *second, *third]]
    assert len(first) == 2
    assert len(second) == 1
    assert third == []
    assert len(set(claimed_ids)) == 3


def test_release_returns_job_to_pending_without_using_a_retry(
    repository: QueueRepository,
    seed_user,
    seed_vote,
) -> None:
    seed_user("user-1")
    repository.enqueue_vote_jobs(user_id="user-1", vote_ids=[seed_vote().vote_id])
    (job,) = repository.claim_vote_jobs(limit=1)

    assert repository.release_job(kind=JobKind.VOTE, job_id=job.job_id) is True
    assert repository.release_job(kind=JobKind.VOTE, job_id=job.job_id) is False

    released = repository.get_job(kind=JobKind.VOTE, job_id=job.job_id)
    assert released is not None
    assert released.status == JobStatus.PENDING
    assert released.retry_count == 0
    assert released.started_at is None


def test_record_job_failure_requeues_until_budget_is_spent(
    repository: QueueRepository,
    seed_user,
    seed_vote,
) -> None:
    seed_user("user-1")
    repository.enqueue_vote_jobs(user_id="user-1", vote_ids=[seed_vote().vote_id])

    decisions = []
    for _ in range(3):
        (job,) = repository.claim_vote_jobs(limit=1)
        decisions.append(
            repository.record_job_failure(
                kind=JobKind.VOTE,
                job_id=job.job_id,
                error="TransportError: boom",
                max_retries=3,
            ),
        )

    assert [decision.status for decision in decisions] == [
        JobStatus.PENDING,
        JobStatus.PENDING,
        JobStatus.FAILED,
    ]
    assert [decision.retry_count for decision in decisions] == [1, 2, 3]
    final = repository.get_job(kind=JobKind.VOTE, job_id=job.job_id)
    assert final is not None
    assert final.status == JobStatus.FAILED
    assert final.retry_count == 3
    assert final.error == "TransportError: boom"
    assert final.completed_at is not None
    assert repository.claim_vote_jobs(limit=1) == []


def test_record_job_failure_is_not_applied_twice(
    repository: QueueRepository,
    seed_user,
    seed_vote,
) -> None:
    seed_user("user-1")
    repository.enqueue_vote_jobs(user_id="user-1", vote_ids=[seed_vote().vote_id])
    (job,) = repository.claim_vote_jobs(limit=1)

    first = repository.record_job_failure(
        kind=JobKind.VOTE,
        job_id=job.job_id,
        error="ParseError: bad",
        max_retries=3,
    )
    second = repository.record_job_failure(
        kind=JobKind.VOTE,
        job_id=job.job_id,
        error="ParseError: bad",
        max_retries=3,
    )

    assert first.applied is True
    assert second.applied is False
    stored = repository.get_job(kind=JobKind.VOTE, job_id=job.job_id)
    assert stored is not None
    assert stored.retry_count == 1


def test_complete_vote_job_persists_response_and_touches_vote(
    repository: QueueRepository,
    seed_user,
    seed_vote,
) -> None:
    seed_user("user-1")
    vote = seed_vote()
    repository.enqueue_vote_jobs(user_id="user-1", vote_ids=[vote.vote_id])
    (job,) = repository.claim_vote_jobs(limit=1)

    completed = repository.complete_vote_job(
        job_id=job.job_id,
        vote_id=vote.vote_id,
        user_id="user-1",
        suggestion=VoteSuggestion(choice=1, reason="picks B"),
    )

    assert completed is True
    (response,) = repository.list_vote_responses(vote_id=vote.vote_id)
    assert response.choice == 1
    assert response.reason == "picks B"
    assert response.operator_type == OperatorType.AI
    assert repository.has_ai_response(vote_id=vote.vote_id, user_id="user-1") is True
    refreshed = repository.get_vote(vote.vote_id)
    assert refreshed is not None
    assert refreshed.active_at >= vote.active_at
    stored = repository.get_job(kind=JobKind.VOTE, job_id=job.job_id)
    assert stored is not None
    assert stored.status == JobStatus.COMPLETED


def test_complete_vote_job_with_existing_ai_response_keeps_one_row(
    repository: QueueRepository,
    seed_user,
    seed_vote,
) -> None:
    seed_user("user-1")
    vote = seed_vote()
    repository.enqueue_vote_jobs(user_id="user-1", vote_ids=[vote.vote_id])
    (job,) = repository.claim_vote_jobs(limit=1)
    with Session(repository.engine) as session:
        session.add(
            VoteResponse(
                response_id="concurrent",
                vote_id=vote.vote_id,
                user_id="user-1",
                choice_json="0",
                reason="written elsewhere",
                operator_type=OperatorType.AI.value,
                created_at=to_db_datetime(datetime.now(tz=UTC)),
            ),
        )
        session.commit()

    completed = repository.complete_vote_job(
        job_id=job.job_id,
        vote_id=vote.vote_id,
        user_id="user-1",
        suggestion=VoteSuggestion(choice=1, reason="late duplicate"),
    )

    assert completed is True
    responses = repository.list_vote_responses(vote_id=vote.vote_id, user_id="user-1")
    assert [response.response_id for response in responses] == ["concurrent"]


def test_human_response_does_not_count_as_ai_response(
    repository: QueueRepository,
    seed_user,
    seed_vote,
) -> None:
    seed_user("user-1")
    vote = seed_vote()
    with Session(repository.engine) as session:
        session.add(
            VoteResponse(
                response_id="human",
                vote_id=vote.vote_id,
                user_id="user-1",
                choice_json="0",
                operator_type=OperatorType.HUMAN.value,
                created_at=to_db_datetime(datetime.now(tz=UTC)),
            ),
        )
        session.commit()

    assert repository.has_ai_response(vote_id=vote.vote_id, user_id="user-1") is False
    assert repository.list_vote_ids_without_ai_response(user_id="user-1") == [vote.vote_id]


def test_complete_post_job_creates_ai_vote_linked_to_job(
    repository: QueueRepository,
    seed_user,
) -> None:
    seed_user("user-1")
    day = date(2026, 10, 17)
    repository.enqueue_post_jobs(user_ids=["user-1"], day=day)
    (job,) = repository.claim_post_jobs(limit=1)

    vote_id = repository.complete_post_job(
        job_id=job.job_id,
        user_id="user-1",
        post=GeneratedPost(
            title="Remote or office?",
            description="Where do you work best?",
            vote_type=VoteType.SINGLE,
            options=["Remote", "Office", "Hybrid"],
        ),
    )

    assert vote_id is not None
    vote = repository.find_vote_for_post_job(job_id=job.job_id)
    assert vote is not None
    assert vote.vote_id == vote_id
    assert vote.operator_type == OperatorType.AI
    assert vote.created_by == "user-1"
    assert vote.options == ["Remote", "Office", "Hybrid"]
    stored = repository.get_job(kind=JobKind.POST, job_id=job.job_id)
    assert stored is not None
    assert stored.status == JobStatus.COMPLETED
    assert stored.vote_id == vote_id


def test_enqueue_post_jobs_is_unique_per_user_and_day(
    repository: QueueRepository,
    seed_user,
) -> None:
    seed_user("user-1")
    seed_user("user-2")
    day = date(2026, 10, 17)

    assert repository.has_post_jobs_for_day(day) is False
    assert repository.enqueue_post_jobs(user_ids=["user-1", "user-2"], day=day) == 2
    assert repository.enqueue_post_jobs(user_ids=["user-1", "user-2"], day=day) == 0
    assert repository.enqueue_post_jobs(user_ids=["user-1"], day=day + timedelta(days=1)) == 1
    assert repository.has_post_jobs_for_day(day) is True


def test_list_authorized_users_requires_non_empty_token(
    repository: QueueRepository,
    seed_user,
) -> None:
    seed_user("with-token", token="secret")
    seed_user("no-token", token=None)
    seed_user("blank-token", token="")

    assert [user.user_id for user in repository.list_authorized_users()] == ["with-token"]


def test_recover_stale_jobs_charges_one_attempt(
    repository: QueueRepository,
    seed_user,
    seed_vote,
) -> None:
    seed_user("user-1")
    repository.enqueue_vote_jobs(user_id="user-1", vote_ids=[seed_vote().vote_id])
    (job,) = repository.claim_vote_jobs(limit=1)
    with Session(repository.engine) as session:
        session.exec(
            sa_update(VoteJob)
            .where(col(VoteJob.job_id) == job.job_id)
            .values(started_at=to_db_datetime(datetime.now(tz=UTC) - timedelta(hours=2))),
        )
        session.commit()

    recovered = repository.recover_stale_jobs(
        kind=JobKind.VOTE,
        stale_after=timedelta(minutes=30),
        max_retries=3,
    )

    assert recovered == 1
    stored = repository.get_job(kind=JobKind.VOTE, job_id=job.job_id)
    assert stored is not None
    assert stored.status == JobStatus.PENDING
    assert stored.retry_count == 1
    assert stored.error is not None
    assert "Stale processing claim" in stored.error


def test_recover_stale_jobs_ignores_fresh_claims(
    repository: QueueRepository,
    seed_user,
    seed_vote,
) -> None:
    seed_user("user-1")
    repository.enqueue_vote_jobs(user_id="user-1", vote_ids=[seed_vote().vote_id])
    repository.claim_vote_jobs(limit=1)

    assert (
        repository.recover_stale_jobs(
            kind=JobKind.VOTE,
            stale_after=timedelta(minutes=30),
            max_retries=3,
        )
        == 0
    )


def test_queue_stats_are_scoped_per_user(
    repository: QueueRepository,
    seed_user,
    seed_vote,
) -> None:
    seed_user("user-1")
    seed_user("user-2")
    votes = [seed_vote(f"Vote {index}").vote_id for index in range(3)]
    repository.enqueue_vote_jobs(user_id="user-1", vote_ids=votes)
    repository.enqueue_vote_jobs(user_id="user-2", vote_ids=votes[:1])
    (job,) = repository.claim_vote_jobs(limit=1)
    repository.record_job_failure(
        kind=JobKind.VOTE,
        job_id=job.job_id,
        error="x",
        max_retries=1,
    )

    user_stats = repository.queue_stats(kind=JobKind.VOTE, user_id="user-1")
    all_stats = repository.queue_stats(kind=JobKind.VOTE)

    assert user_stats.total == 3
    assert all_stats.total == 4
    assert all_stats.failed == 1
    assert all_stats.pending == 3
    assert len(repository.list_recent_jobs(kind=JobKind.VOTE, user_id="user-2")) == 1


def test_upsert_heartbeat_keeps_one_row_per_instance(repository: QueueRepository) -> None:
    started_at = datetime(2026, 10, 17, 9, 0, tzinfo=UTC)
    for status, processed in ((HeartbeatStatus.RUNNING, 1), (HeartbeatStatus.STOPPED, 4)):
        repository.upsert_heartbeat(
            HeartbeatWrite(
                instance_id="worker-a",
                status=status,
                pid=42,
                hostname="host",
                uptime_seconds=10,
                total_processed=processed,
                started_at=started_at,
            ),
        )

    (row,) = repository.list_heartbeats()
    assert row.instance_id == "worker-a"
    assert row.status == HeartbeatStatus.STOPPED
    assert row.total_processed == 4
    assert row.started_at == started_at
    assert repository.get_heartbeat("missing") is None
