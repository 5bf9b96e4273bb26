"""Schemas for repository ingestion results and the repos API."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class IngestRepoResult(BaseModel):
    """Outcome of one ingestion pipeline run."""

    success: bool
    repo_id: str
    file_count: int | None = None
    token_count: int | None = None
    commit_sha: str | None = None
    error: str | None = None


class IngestionQueuedResponse(BaseModel):
    repo_id: UUID
    task_id: str
    status: str = "queued"


class RepoIngestionStatus(BaseModel):
    """Ingestion status fields of a tracked repository."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    github_full_name: str
    ingestion_status: str
    last_ingested_at: datetime | None = None
    last_ingested_commit_sha: str | None = None
    file_count: int | None = None
    token_count: int | None = None
    last_error: str | None = None
