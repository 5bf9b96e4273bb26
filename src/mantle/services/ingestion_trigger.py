"""Schedules ingestion jobs on the Celery queue."""

import logging
from uuid import UUID

logger = logging.getLogger(__name__)


class CeleryIngestionTrigger:
    """Enqueues exactly one ingestion task per call without waiting on it."""

    def trigger(self, repo_id: UUID) -> str:
        from mantle.tasks.ingestion_tasks import ingest_repository

        result = ingest_repository.apply_async(kwargs={"repo_id": str(repo_id)})
        logger.debug(
            "Ingestion task enqueued",
            extra={"repo_id": str(repo_id), "task_id": result.id},
        )
        return result.id


def get_ingestion_trigger() -> CeleryIngestionTrigger:
    """FastAPI dependency for the ingestion trigger."""
    return CeleryIngestionTrigger()
