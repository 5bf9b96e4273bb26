"""Repository ingestion API endpoints."""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from mantle.config import Settings, get_settings
from mantle.database import get_db_session
from mantle.schemas.ingestion import IngestionQueuedResponse, RepoIngestionStatus
from mantle.services.ingestion_trigger import CeleryIngestionTrigger, get_ingestion_trigger
from mantle.services.repo_store import RepoStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/repos", tags=["repos"])


@router.post(
    "/{repo_id}/ingest",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=IngestionQueuedResponse,
    summary="Queue a re-ingestion of a tracked repository",
)
async def trigger_repo_ingestion(
    repo_id: UUID,
    session: AsyncSession = Depends(get_db_session),
    trigger: CeleryIngestionTrigger = Depends(get_ingestion_trigger),
    settings: Settings = Depends(get_settings),
) -> IngestionQueuedResponse:
    """Reset the repo to pending and enqueue one ingestion job."""
    store = RepoStore(session)
    repo = await store.get(repo_id)
    if repo is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Repo not found")

    stale_before = datetime.now(UTC) - timedelta(seconds=settings.ingestion_stale_after_seconds)
    if not await store.reset_to_pending(repo_id, stale_before=stale_before):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Ingestion already in progress",
        )
    await session.commit()

    try:
        task_id = trigger.trigger(repo_id)
    except Exception as e:
        logger.error(
            "Failed to enqueue ingestion",
            extra={"repo_id": str(repo_id), "error": str(e)},
            exc_info=True,
        )
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Could not schedule ingestion",
        ) from e

    logger.info(
        "Manual ingestion queued",
        extra={"repo_id": str(repo_id), "task_id": task_id},
    )
    return IngestionQueuedResponse(repo_id=repo_id, task_id=task_id)


@router.get(
    "/{repo_id}/ingestion",
    response_model=RepoIngestionStatus,
    summary="Ingestion status of a tracked repository",
)
async def get_repo_ingestion(
    repo_id: UUID,
    session: AsyncSession = Depends(get_db_session),
) -> RepoIngestionStatus:
    repo = await RepoStore(session).get(repo_id)
    if repo is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Repo not found")
    return RepoIngestionStatus.model_validate(repo)

