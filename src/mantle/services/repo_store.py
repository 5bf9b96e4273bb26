"""Repository registry persistence.

Status transitions go through conditional UPDATE statements so two
workers racing on the same repository cannot both claim it.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from mantle.models.repos import IngestionStatus, Repo

logger = logging.getLogger(__name__)

CLAIMABLE_STATUSES = (IngestionStatus.PENDING.value, IngestionStatus.FAILED.value)


class RepoStore:
    """Reads and status writes for tracked repositories."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, repo_id: UUID) -> Repo | None:
        result = await self._session.execute(select(Repo).where(Repo.id == repo_id))
        return result.scalar_one_or_none()

    async def refresh(self, repo: Repo) -> Repo:
        await self._session.refresh(repo)
        return repo

    async def find_by_github_ids(self, github_ids: Iterable[int]) -> list[Repo]:
        """Tracked repos among the given GitHub repository ids."""
        ids = list(dict.fromkeys(github_ids))
        if not ids:
            return []
        result = await self._session.execute(select(Repo).where(Repo.github_id.in_(ids)))
        return list(result.scalars().all())

    async def claim_for_ingestion(self, repo_id: UUID, *, stale_before: datetime) -> bool:
        """
        Move a repo to ``ingesting`` if nobody else holds it.

        A repo is claimable when it is pending or failed, or when it has
        been ingesting since before ``stale_before`` (a crashed worker).

        Returns:
            True if this caller now owns the ingestion
        """
        result = await self._session.execute(
            update(Repo)
            .where(
                Repo.id == repo_id,
                or_(
                    Repo.ingestion_status.in_(CLAIMABLE_STATUSES),
                    and_(
                        Repo.ingestion_status == IngestionStatus.INGESTING.value,
                        Repo.updated_at < stale_before,
                    ),
                ),
            )
            .values(
                ingestion_status=IngestionStatus.INGESTING.value,
                last_error=None,
                updated_at=datetime.now(UTC),
            )
            .returning(Repo.id)
            .execution_options(synchronize_session=False)
        )
        return result.scalar_one_or_none() is not None

    async def mark_ingested(
        self,
        repo_id: UUID,
        *,
        commit_sha: str,
        file_count: int,
        token_count: int,
    ) -> None:
        now = datetime.now(UTC)
        await self._set_status(
            repo_id,
            ingestion_status=IngestionStatus.INGESTED.value,
            last_ingested_at=now,
            last_ingested_commit_sha=commit_sha,
            file_count=file_count,
            token_count=token_count,
            last_error=None,
        )

    async def mark_failed(
        self,
        repo_id: UUID,
        *,
        error: str,
        file_count: int | None = None,
        token_count: int | None = None,
    ) -> None:
        """Record a failure; counts are only written when provided."""
        fields: dict = {
            "ingestion_status": IngestionStatus.FAILED.value,
            "last_error": error,
        }
        if file_count is not None:
            fields["file_count"] = file_count
        if token_count is not None:
            fields["token_count"] = token_count
        await self._set_status(repo_id, **fields)

    async def reset_to_pending(self, repo_id: UUID, *, stale_before: datetime) -> bool:
        """Queue a repo for re-ingestion unless one is running.

        An ``ingesting`` repo last touched before ``stale_before`` is treated
        like ``claim_for_ingestion`` treats it: its holder is presumed dead.

        Returns False when the repo is ingesting under a live claim.
        """
        result = await self._session.execute(
            update(Repo)
            .where(
                Repo.id == repo_id,
                or_(
                    Repo.ingestion_status != IngestionStatus.INGESTING.value,
                    Repo.updated_at < stale_before,
                ),
            )
            .values(
                ingestion_status=IngestionStatus.PENDING.value,
                last_error=None,
                updated_at=datetime.now(UTC),
            )
            .returning(Repo.id)
            .execution_options(synchronize_session=False)
        )
        return result.scalar_one_or_none() is not None

    async def _set_status(self, repo_id: UUID, **fields) -> None:
        fields["updated_at"] = datetime.now(UTC)
        await self._session.execute(
            update(Repo)
            .where(Repo.id == repo_id)
            .values(**fields)
            .execution_options(synchronize_session=False)
        )
        logger.debug(
            "Repo status written",
            extra={"repo_id": str(repo_id), "status": fields.get("ingestion_status")},
        )
