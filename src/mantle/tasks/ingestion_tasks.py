"""Celery tasks for repository ingestion.

Each task run owns its own ``Database`` handle: it is opened inside the
task's event loop and disposed before ``asyncio.run`` returns.
"""

import asyncio
import logging
from typing import Any

from celery import Task

from mantle.celery_app import celery_app
from mantle.config import get_settings
from mantle.database import Database
from mantle.ingestion.errors import FatalIngestionError
from mantle.ingestion.pipeline import RepoIngestionPipeline
from mantle.ops.retry_policy import compute_backoff_seconds

logger = logging.getLogger(__name__)


class BaseTask(Task):
    """Base task class with common error handling."""

    abstract = True

    def on_failure(
        self,
        exc: Exception,
        task_id: str,
        args: tuple,
        kwargs: dict,
        einfo: Any,
    ) -> None:
        from mantle.observability.metrics import METRICS

        METRICS.celery_tasks_total.labels(task=str(self.name), status="fail").inc()
        logger.error(
            "Task failed",
            extra={
                "task_id": task_id,
                "task_name": self.name,
                "error": str(exc),
                "task_args": args,
                "task_kwargs": kwargs,
            },
            exc_info=exc,
        )

    def on_retry(
        self,
        exc: Exception,
        task_id: str,
        args: tuple,
        kwargs: dict,
        einfo: Any,
    ) -> None:
        from mantle.observability.metrics import METRICS

        METRICS.celery_tasks_total.labels(task=str(self.name), status="retry").inc()
        logger.warning(
            "Task retrying",
            extra={
                "task_id": task_id,
                "task_name": self.name,
                "error": str(exc),
                "retry_count": self.request.retries,
            },
        )

    def on_success(
        self,
        retval: Any,
        task_id: str,
        args: tuple,
        kwargs: dict,
    ) -> None:
        from mantle.observability.metrics import METRICS

        METRICS.celery_tasks_total.labels(task=str(self.name), status="success").inc()
        logger.info(
            "Task completed successfully",
            extra={
                "task_id": task_id,
                "task_name": self.name,
            },
        )


async def run_ingestion(repo_id: str) -> dict:
    """Run the pipeline for one repo with a task-scoped database handle."""
    settings = get_settings()
    database = Database.from_settings(settings)
    try:
        async with database.session() as session:
            pipeline = RepoIngestionPipeline.from_settings(session, settings)
            result = await pipeline.run(repo_id)
            return result.model_dump()
    finally:
        await database.close()


@celery_app.task(
    bind=True,
    base=BaseTask,
    max_retries=None,
)
def ingest_repository(self, repo_id: str) -> dict:
    """
    Ingest a repository's file tree.

    Transient failures are retried with exponential backoff until
    ``ingestion_max_attempts`` runs have been made. Fatal errors (unknown
    repo, malformed name, no installation) fail immediately.

    Args:
        repo_id: UUID of the repo to ingest

    Returns:
        Dict form of the ingestion result
    """
    from mantle.core.logging import repo_id_ctx
    from mantle.observability.metrics import METRICS
    from mantle.observability.tracing import init_tracing, start_span

    METRICS.celery_tasks_total.labels(task=str(self.name), status="started").inc()
    repo_id_ctx.set(repo_id)
    init_tracing(service_name="mantle-worker")

    settings = get_settings()
    attempt = self.request.retries + 1

    logger.info(
        "Starting repo ingestion",
        extra={"repo_id": repo_id, "task_id": self.request.id, "attempt": attempt},
    )

    try:
        with start_span("ingest_repository", attributes={"repo_id": repo_id, "attempt": attempt}):
            return asyncio.run(run_ingestion(repo_id))
    except FatalIngestionError:
        raise
    except Exception as e:
        if attempt >= settings.ingestion_max_attempts:
            raise
        countdown = compute_backoff_seconds(
            attempt=attempt,
            base=settings.ingestion_retry_min_delay_seconds,
            maximum=settings.ingestion_retry_max_delay_seconds,
            factor=settings.ingestion_retry_factor,
        )
        logger.warning(
            "Repo ingestion retry scheduled",
            extra={"repo_id": repo_id, "countdown_seconds": countdown, "attempt": attempt},
        )
        raise self.retry(countdown=countdown, exc=e)
