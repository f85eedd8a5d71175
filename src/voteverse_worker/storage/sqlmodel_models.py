"""SQLModel ORM tables for the vote/post job store."""

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Text,
    UniqueConstraint,
)
from sqlmodel import Field, SQLModel


class AppUser(SQLModel, table=True):
    __tablename__ = "users"  # type: ignore[bad-override]

    user_id: str = Field(primary_key=True, index=True)
    nickname: str = Field(default="")
    access_token: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    external_user_id: str | None = Field(default=None, index=True)
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class Vote(SQLModel, table=True):
    __tablename__ = "votes"  # type: ignore[bad-override]

    vote_id: str = Field(primary_key=True)
    title: str
    description: str | None = Field(default=None, sa_column=Column(Text))
    vote_type: str = Field(default="single")
    options_json: str = Field(sa_column=Column(Text, nullable=False))
    operator_type: str = Field(default="human", index=True)
    created_by: str = Field(
        sa_column=Column(
            ForeignKey("users.user_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    post_job_id: str | None = Field(default=None, unique=True)
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    active_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class VoteResponse(SQLModel, table=True):
    __tablename__ = "vote_responses"  # type: ignore[bad-override]
    __table_args__ = (
        UniqueConstraint(
            "vote_id",
            "user_id",
            "operator_type",
            name="uq_vote_responses_vote_user_operator",
        ),
    )

    response_id: str = Field(primary_key=True)
    vote_id: str = Field(
        sa_column=Column(
            ForeignKey("votes.vote_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    user_id: str = Field(
        sa_column=Column(
            ForeignKey("users.user_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    choice_json: str = Field(sa_column=Column(Text, nullable=False))
    reason: str | None = Field(default=None, sa_column=Column(Text))
    operator_type: str = Field(default="human")
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class VoteJob(SQLModel, table=True):
    __tablename__ = "vote_jobs"  # type: ignore[bad-override]
    __table_args__ = (
        UniqueConstraint("user_id", "vote_id", name="uq_vote_jobs_user_vote"),
        Index("idx_vote_jobs_queue", "status", "priority", "created_at"),
    )

    job_id: str = Field(primary_key=True)
    user_id: str = Field(
        sa_column=Column(
            ForeignKey("users.user_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    vote_id: str = Field(
        sa_column=Column(
            ForeignKey("votes.vote_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    priority: int = Field(default=0)
    status: str = Field(index=True)
    retry_count: int = Field(default=0)
    error: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    started_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    completed_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class PostJob(SQLModel, table=True):
    __tablename__ = "post_jobs"  # type: ignore[bad-override]
    __table_args__ = (
        UniqueConstraint("user_id", "scheduled_for", name="uq_post_jobs_user_day"),
        Index("idx_post_jobs_queue", "status", "priority", "created_at"),
    )

    job_id: str = Field(primary_key=True)
    user_id: str = Field(
        sa_column=Column(
            ForeignKey("users.user_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    vote_id: str | None = Field(default=None)
    priority: int = Field(default=0)
    status: str = Field(index=True)
    retry_count: int = Field(default=0)
    error: str | None = Field(default=None, sa_column=Column(Text))
    scheduled_for: date = Field(sa_column=Column(Date, nullable=False, index=True))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    started_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    completed_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class WorkerHeartbeat(SQLModel, table=True):
    __tablename__ = "worker_heartbeats"  # type: ignore[bad-override]

    instance_id: str = Field(primary_key=True)
    status: str = Field(index=True)
    pid: int
    hostname: str = Field(default="")
    uptime_seconds: int = Field(default=0)
    total_processed: int = Field(default=0)
    last_activity_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    started_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
