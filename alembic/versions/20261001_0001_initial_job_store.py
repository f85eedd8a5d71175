"""Initial vote/post job store schema."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261001_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("nickname", sa.String(), nullable=False, server_default=""),
        sa.Column("access_token", sa.Text(), nullable=True),
        sa.Column("external_user_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("user_id"),
    )
    op.create_index("ix_users_user_id", "users", ["user_id"], unique=False)
    op.create_index("ix_users_external_user_id", "users", ["external_user_id"], unique=False)

    op.create_table(
        "votes",
        sa.Column("vote_id", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("vote_type", sa.String(), nullable=False, server_default="single"),
        sa.Column("options_json", sa.Text(), nullable=False),
        sa.Column("operator_type", sa.String(), nullable=False, server_default="human"),
        sa.Column("created_by", sa.String(), nullable=False),
        sa.Column("post_job_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("active_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["created_by"], ["users.user_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("vote_id"),
        sa.UniqueConstraint("post_job_id"),
    )
    op.create_index("ix_votes_created_by", "votes", ["created_by"], unique=False)
    op.create_index("ix_votes_operator_type", "votes", ["operator_type"], unique=False)

    op.create_table(
        "vote_responses",
        sa.Column("response_id", sa.String(), nullable=False),
        sa.Column("vote_id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("choice_json", sa.Text(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("operator_type", sa.String(), nullable=False, server_default="human"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["vote_id"], ["votes.vote_id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.user_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("response_id"),
        sa.UniqueConstraint(
            "vote_id",
            "user_id",
            "operator_type",
            name="uq_vote_responses_vote_user_operator",
        ),
    )
    op.create_index("ix_vote_responses_vote_id", "vote_responses", ["vote_id"], unique=False)
    op.create_index("ix_vote_responses_user_id", "vote_responses", ["user_id"], unique=False)

    op.create_table(
        "vote_jobs",
        sa.Column("job_id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("vote_id", sa.String(), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.user_id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["vote_id"], ["votes.vote_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("job_id"),
        sa.UniqueConstraint("user_id", "vote_id", name="uq_vote_jobs_user_vote"),
    )
    op.create_index("ix_vote_jobs_user_id", "vote_jobs", ["user_id"], unique=False)
    op.create_index("ix_vote_jobs_vote_id", "vote_jobs", ["vote_id"], unique=False)
    op.create_index("ix_vote_jobs_status", "vote_jobs", ["status"], unique=False)
    op.create_index(
        "idx_vote_jobs_queue",
        "vote_jobs",
        ["status", "priority", "created_at"],
        unique=False,
    )

    op.create_table(
        "post_jobs",
        sa.Column("job_id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("vote_id", sa.String(), nullable=True),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("scheduled_for", sa.Date(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.user_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("job_id"),
        sa.UniqueConstraint("user_id", "scheduled_for", name="uq_post_jobs_user_day"),
    )
    op.create_index("ix_post_jobs_user_id", "post_jobs", ["user_id"], unique=False)
    op.create_index("ix_post_jobs_status", "post_jobs", ["status"], unique=False)
    op.create_index("ix_post_jobs_scheduled_for", "post_jobs", ["scheduled_for"], unique=False)
    op.create_index(
        "idx_post_jobs_queue",
        "post_jobs",
        ["status", "priority", "created_at"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_table("post_jobs")
    op.drop_table("vote_jobs")
    op.drop_table("vote_responses")
    op.drop_table("votes")
    op.drop_table("users")
