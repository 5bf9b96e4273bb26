"""Seed scenarios for development and preview environments.

A ``SeedLoader`` only exists in processes where seeding is allowed; the
application factory never builds one in production.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from mantle.database import Database
from mantle.models.repos import IngestionStatus, Repo
from mantle.models.user import User

logger = logging.getLogger(__name__)

TEST_USER_ID = UUID("00000000-0000-4000-a000-000000000001")
TEST_USER_GITHUB_ID = 12345678
TEST_REPO_ID = UUID("00000000-0000-4000-a000-000000000101")
TEST_REPO_GITHUB_ID = 987654321
TEST_INSTALLATION_ID = 11111111


class UnknownScenarioError(Exception):
    """The requested seed scenario does not exist."""

    pass


@dataclass(frozen=True)
class SeedResult:
    scenario: str
    users: int = 0
    repos: int = 0


async def _upsert_test_user(session: AsyncSession) -> None:
    stmt = insert(User).values(
        id=TEST_USER_ID,
        github_id=TEST_USER_GITHUB_ID,
        github_username="mantle-test-user",
        email="test-user@example.com",
        avatar_url=None,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["id"],
        set_={
            "github_id": stmt.excluded.github_id,
            "github_username": stmt.excluded.github_username,
            "email": stmt.excluded.email,
            "avatar_url": stmt.excluded.avatar_url,
            "updated_at": func.now(),
        },
    )
    await session.execute(stmt)


async def _upsert_test_repo(session: AsyncSession) -> None:
    stmt = insert(Repo).values(
        id=TEST_REPO_ID,
        user_id=TEST_USER_ID,
        github_id=TEST_REPO_GITHUB_ID,
        github_full_name="mantle-test-user/sample-repo",
        default_branch="main",
        private=False,
        installation_id=TEST_INSTALLATION_ID,
        ingestion_status=IngestionStatus.PENDING.value,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["id"],
        set_={
            "github_full_name": stmt.excluded.github_full_name,
            "installation_id": stmt.excluded.installation_id,
            "default_branch": stmt.excluded.default_branch,
            "private": stmt.excluded.private,
            "updated_at": func.now(),
        },
    )
    await session.execute(stmt)


async def _seed_empty(session: AsyncSession) -> SeedResult:
    return SeedResult(scenario="empty")


async def _seed_with_test_user(session: AsyncSession) -> SeedResult:
    await _upsert_test_user(session)
    return SeedResult(scenario="with-test-user", users=1)


async def _seed_with_repo(session: AsyncSession) -> SeedResult:
    await _upsert_test_user(session)
    await _upsert_test_repo(session)
    return SeedResult(scenario="with-repo", users=1, repos=1)


SCENARIOS: dict[str, Callable[[AsyncSession], Awaitable[SeedResult]]] = {
    "empty": _seed_empty,
    "with-test-user": _seed_with_test_user,
    "with-repo": _seed_with_repo,
}


class SeedLoader:
    """Loads named seed scenarios. Every scenario is safe to re-run."""

    def __init__(self, database: Database):
        self.database = database

    async def load(self, scenario: str) -> SeedResult:
        seed = SCENARIOS.get(scenario)
        if seed is None:
            raise UnknownScenarioError(f"Unknown seed scenario: {scenario}")

        async with self.database.session() as session:
            result = await seed(session)
            await session.commit()

        logger.info(
            "Seed scenario loaded",
            extra={"scenario": scenario, "users": result.users, "repos": result.repos},
        )
        return result
