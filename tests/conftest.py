"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator
from pathlib import Path

import pytest

from voteverse_worker.config import WorkerSettings
from voteverse_worker.queue.models import UserView, VoteCreate, VoteType, VoteView
from voteverse_worker.queue.repository import QueueRepository


class ScriptedCompletion:
    """Completion backend returning canned replies, or raising canned errors, in order."""

    def __init__(
        self,
        responses: Iterable[str | BaseException] = (),
        *,
        on_call: Callable[[int], None] | None = None,
        default: str | None = None,
    ) -> None:
        self.responses = list(responses)
        self.on_call = on_call
        self.default = default
        self.calls: list[dict[str, str]] = []

    def complete(
        self,
        *,
        path: str,
        message: str,
        action_control: str,
        access_token: str,
    ) -> str:
        self.calls.append(
            {
                "path": path,
                "message": message,
                "action_control": action_control,
                "access_token": access_token,
            },
        )
        if self.on_call is not None:
            self.on_call(len(self.calls))
        if self.responses:
            item = self.responses.pop(0)
        elif self.default is not None:
            item = self.default
        else:
            raise AssertionError("Unexpected completion call")
        if isinstance(item, BaseException):
            raise item
        return item


@pytest.fixture()
def repository(tmp_path: Path) -> Iterator[QueueRepository]:
    repo = QueueRepository(tmp_path / "queue.db")
    repo.init_schema()
    try:
        yield repo
    finally:
        repo.close()


@pytest.fixture()
def scripted_completion() -> type[ScriptedCompletion]:
    return ScriptedCompletion


@pytest.fixture()
def fast_settings() -> WorkerSettings:
    """Worker settings without pacing, polling or daily post creation."""

    return WorkerSettings(
        vote_process_delay_seconds=0.0,
        post_process_delay_seconds=0.0,
        poll_interval_seconds=0.0,
        heartbeat_interval_seconds=30.0,
        daily_posts_enabled=False,
        instance_id="test-worker",
    )


@pytest.fixture()
def seed_user(repository: QueueRepository) -> Callable[..., UserView]:
    def _seed(
        user_id: str = "user-1",
        token: str | None = "token-1",
        nickname: str = "",
    ) -> UserView:
        return repository.upsert_user(
            user_id=user_id,
            nickname=nickname or user_id,
            access_token=token,
        )

    return _seed


@pytest.fixture()
def seed_vote(repository: QueueRepository) -> Callable[..., VoteView]:
    def _seed(
        title: str = "Tea or coffee?",
        options: tuple[str, ...] = ("A", "B"),
        *,
        created_by: str = "author",
        vote_type: VoteType = VoteType.SINGLE,
    ) -> VoteView:
        if repository.get_user(created_by) is None:
            repository.upsert_user(user_id=created_by, nickname=created_by)
        return repository.create_vote(
            VoteCreate(
                title=title,
                options=list(options),
                created_by=created_by,
                vote_type=vote_type,
            ),
        )

    return _seed
