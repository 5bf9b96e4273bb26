"""Persist indexed file metadata to ``repo_files``."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy import delete
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from mantle.ingestion.file_indexer import IndexedFile
from mantle.ingestion.token_counter import estimate_tokens
from mantle.models.repos import RepoFile

logger = logging.getLogger(__name__)

UPSERT_BATCH_SIZE = 500


@dataclass(frozen=True)
class StoreFilesResult:
    stored: int
    pruned: int = 0


async def store_indexed_files(
    session: AsyncSession,
    repo_id: UUID,
    files: Sequence[IndexedFile],
    *,
    seen_at: datetime,
) -> StoreFilesResult:
    """
    Upsert file rows for a repo and prune rows not seen in this run.

    Rows are keyed by (repo_id, file_path). Every stored row gets
    ``last_seen_at = seen_at``; rows left with an older timestamp belong
    to files that disappeared from the tree and are deleted.

    The caller owns the transaction.
    """
    stored = 0
    for start in range(0, len(files), UPSERT_BATCH_SIZE):
        batch = files[start : start + UPSERT_BATCH_SIZE]
        stmt = insert(RepoFile).values(
            [
                {
                    "repo_id": repo_id,
                    "file_path": f.file_path,
                    "language": f.language,
                    "size_bytes": f.size_bytes,
                    "token_estimate": estimate_tokens(f.size_bytes),
                    "last_seen_at": seen_at,
                }
                for f in batch
            ]
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["repo_id", "file_path"],
            set_={
                "language": stmt.excluded.language,
                "size_bytes": stmt.excluded.size_bytes,
                "token_estimate": stmt.excluded.token_estimate,
                "last_seen_at": stmt.excluded.last_seen_at,
            },
        )
        await session.execute(stmt)
        stored += len(batch)

    result = await session.execute(
        delete(RepoFile)
        .where(RepoFile.repo_id == repo_id, RepoFile.last_seen_at < seen_at)
        .execution_options(synchronize_session=False)
    )
    pruned = result.rowcount or 0

    logger.info(
        "Stored repo files",
        extra={"repo_id": str(repo_id), "stored": stored, "pruned": pruned},
    )
    return StoreFilesResult(stored=stored, pruned=pruned)
