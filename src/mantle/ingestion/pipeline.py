"""Repository ingestion pipeline.

Fetches a repository's file tree through the GitHub App installation,
indexes it, estimates its token cost and records the results:

1. Load the repo; an already ``ingested`` repo returns its stored counts.
2. Claim it (``ingesting``) in its own committed write.
3. Fetch, index and check the token limit.
4. Store file rows and mark it ``ingested`` in one transaction.

Any failure after the claim marks the repo ``failed`` and re-raises so
the job layer can decide whether to retry.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from datetime import UTC, datetime, timedelta
from typing import Protocol
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from mantle.config import Settings, get_settings
from mantle.core.logging import repo_id_ctx
from mantle.ingestion.errors import (
    InvalidRepositoryNameError,
    MissingInstallationError,
    RepoNotFoundError,
)
from mantle.ingestion.file_indexer import (
    DEFAULT_MAX_FILE_SIZE,
    IndexedFile,
    index_file_tree_with_tokens,
)
from mantle.ingestion.file_storage import StoreFilesResult, store_indexed_files
from mantle.ingestion.token_counter import TOKEN_LIMIT, create_oversized_message
from mantle.models.repos import IngestionStatus, Repo
from mantle.observability.metrics import METRICS
from mantle.observability.tracing import start_span
from mantle.schemas.ingestion import IngestRepoResult
from mantle.services.github_content import FileTree, fetch_file_tree
from mantle.services.repo_store import RepoStore

logger = logging.getLogger(__name__)

ALREADY_IN_PROGRESS = "Ingestion already in progress"

TreeFetcher = Callable[[int, str, str, str], Awaitable[FileTree]]


class FileStore(Protocol):
    def __call__(
        self,
        session: AsyncSession,
        repo_id: UUID,
        files: Sequence[IndexedFile],
        *,
        seen_at: datetime,
    ) -> Awaitable[StoreFilesResult]: ...


def parse_github_full_name(full_name: str) -> tuple[str, str]:
    """Split ``owner/repo``; anything else raises InvalidRepositoryNameError."""
    parts = full_name.split("/")
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise InvalidRepositoryNameError(full_name)
    return parts[0], parts[1]


class RepoIngestionPipeline:
    """Runs one ingestion of one repository against a database session."""

    def __init__(
        self,
        session: AsyncSession,
        *,
        tree_fetcher: TreeFetcher = fetch_file_tree,
        repo_store: RepoStore | None = None,
        file_store: FileStore = store_indexed_files,
        token_limit: int = TOKEN_LIMIT,
        max_file_size: int = DEFAULT_MAX_FILE_SIZE,
        stale_after: timedelta = timedelta(minutes=15),
    ):
        self.session = session
        self.tree_fetcher = tree_fetcher
        self.repos = repo_store or RepoStore(session)
        self.file_store = file_store
        self.token_limit = token_limit
        self.max_file_size = max_file_size
        self.stale_after = stale_after

    @classmethod
    def from_settings(
        cls,
        session: AsyncSession,
        settings: Settings | None = None,
        **kwargs,
    ) -> "RepoIngestionPipeline":
        settings = settings or get_settings()
        return cls(
            session,
            token_limit=settings.ingestion_token_limit,
            max_file_size=settings.ingestion_max_file_size_bytes,
            stale_after=timedelta(seconds=settings.ingestion_stale_after_seconds),
            **kwargs,
        )

    async def run(self, repo_id: str) -> IngestRepoResult:
        token = repo_id_ctx.set(repo_id)
        try:
            return await self._run(repo_id)
        finally:
            repo_id_ctx.reset(token)

    async def _run(self, repo_id: str) -> IngestRepoResult:
        try:
            repo_uuid = UUID(repo_id)
        except ValueError:
            raise RepoNotFoundError(repo_id) from None

        repo = await self.repos.get(repo_uuid)
        if repo is None:
            raise RepoNotFoundError(repo_id)

        if repo.ingestion_status == IngestionStatus.INGESTED.value:
            logger.info("Repo already ingested, skipping", extra={"repo_id": repo_id})
            METRICS.ingestion_runs_total.labels(outcome="skipped").inc()
            return self._stored_result(repo_id, repo)

        stale_before = datetime.now(UTC) - self.stale_after
        claimed = await self.repos.claim_for_ingestion(repo_uuid, stale_before=stale_before)
        if not claimed:
            await self.session.rollback()
            current = await self.repos.get(repo_uuid)
            if current is not None:
                current = await self.repos.refresh(current)
            if current is not None and current.ingestion_status == IngestionStatus.INGESTED.value:
                METRICS.ingestion_runs_total.labels(outcome="skipped").inc()
                return self._stored_result(repo_id, current)

            logger.info("Repo ingestion held by another worker", extra={"repo_id": repo_id})
            METRICS.ingestion_runs_total.labels(outcome="in_progress").inc()
            return IngestRepoResult(success=False, repo_id=repo_id, error=ALREADY_IN_PROGRESS)

        await self.session.commit()

        try:
            return await self._ingest(repo_id, repo_uuid, repo)
        except Exception as e:
            METRICS.ingestion_runs_total.labels(outcome="error").inc()
            logger.error(
                "Ingestion failed",
                extra={"repo_id": repo_id, "error": str(e)},
                exc_info=True,
            )
            await self._record_failure(repo_uuid, str(e))
            raise

    async def _ingest(self, repo_id: str, repo_uuid: UUID, repo: Repo) -> IngestRepoResult:
        owner, name = parse_github_full_name(repo.github_full_name)
        if repo.installation_id is None:
            raise MissingInstallationError(repo_id)

        ref = repo.default_branch
        logger.info(
            "Fetching file tree",
            extra={"repo_id": repo_id, "repo": f"{owner}/{name}", "ref": ref},
        )
        started = time.perf_counter()
        with start_span(
            "ingestion.fetch_tree",
            attributes={"repo_id": repo_id, "repo": f"{owner}/{name}", "ref": ref},
        ):
            tree = await self.tree_fetcher(repo.installation_id, owner, name, ref)
        METRICS.ingestion_stage_duration_seconds.labels(stage="fetch_tree").observe(
            time.perf_counter() - started
        )

        if tree.truncated:
            logger.warning(
                "File tree truncated, large repository",
                extra={"repo_id": repo_id, "repo": f"{owner}/{name}"},
            )

        with start_span("ingestion.index", attributes={"repo_id": repo_id}):
            indexed = index_file_tree_with_tokens(
                tree.files,
                token_limit=self.token_limit,
                max_file_size=self.max_file_size,
            )
        stats = indexed.stats
        tokens = indexed.token_count

        logger.info(
            "Indexed file tree",
            extra={
                "repo_id": repo_id,
                "total_files": stats.total_files,
                "included_files": stats.included_files,
                "excluded_by_path": stats.excluded_by_path,
                "excluded_by_extension": stats.excluded_by_extension,
                "excluded_by_size": stats.excluded_by_size,
                "estimated_tokens": tokens.estimated_tokens,
            },
        )

        if tokens.exceeds_limit:
            message = create_oversized_message(tokens)
            logger.warning(
                "Repo exceeds token limit",
                extra={"repo_id": repo_id, "error": message},
            )
            await self.repos.mark_failed(
                repo_uuid,
                error=message,
                file_count=stats.included_files,
                token_count=tokens.estimated_tokens,
            )
            await self.session.commit()
            METRICS.ingestion_runs_total.labels(outcome="oversized").inc()
            return IngestRepoResult(
                success=False,
                repo_id=repo_id,
                file_count=stats.included_files,
                token_count=tokens.estimated_tokens,
                error=message,
            )

        started = time.perf_counter()
        with start_span(
            "ingestion.store_files",
            attributes={"repo_id": repo_id, "files": len(indexed.files)},
        ):
            await self.file_store(
                self.session,
                repo_uuid,
                indexed.files,
                seen_at=datetime.now(UTC),
            )
            await self.repos.mark_ingested(
                repo_uuid,
                commit_sha=tree.sha,
                file_count=stats.included_files,
                token_count=tokens.estimated_tokens,
            )
            await self.session.commit()
        METRICS.ingestion_stage_duration_seconds.labels(stage="store_files").observe(
            time.perf_counter() - started
        )

        METRICS.ingestion_runs_total.labels(outcome="ingested").inc()
        logger.info(
            "Repo ingested",
            extra={
                "repo_id": repo_id,
                "file_count": stats.included_files,
                "token_count": tokens.estimated_tokens,
                "commit_sha": tree.sha,
            },
        )
        return IngestRepoResult(
            success=True,
            repo_id=repo_id,
            file_count=stats.included_files,
            token_count=tokens.estimated_tokens,
            commit_sha=tree.sha,
        )

    async def _record_failure(self, repo_uuid: UUID, message: str) -> None:
        """Best-effort write of the failed status; the original error still propagates."""
        try:
            await self.session.rollback()
            await self.repos.mark_failed(repo_uuid, error=message)
            await self.session.commit()
        except Exception as write_error:
            logger.error(
                "Could not record ingestion failure",
                extra={"repo_id": str(repo_uuid), "error": str(write_error)},
                exc_info=True,
            )
            await self.session.rollback()

    @staticmethod
    def _stored_result(repo_id: str, repo: Repo) -> IngestRepoResult:
        return IngestRepoResult(
            success=True,
            repo_id=repo_id,
            file_count=repo.file_count or 0,
            token_count=repo.token_count or 0,
            commit_sha=repo.last_ingested_commit_sha,
        )
