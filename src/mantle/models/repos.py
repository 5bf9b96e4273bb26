"""Repository registry models: tracked repos and their indexed files."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import Mapped, mapped_column

from mantle.models.base import Base


class IngestionStatus(str, Enum):
    """Ingestion lifecycle of a tracked repository."""

    PENDING = "pending"
    INGESTING = "ingesting"
    INGESTED = "ingested"
    FAILED = "failed"


class Repo(Base):
    """A GitHub repository connected by a user for analysis."""

    __tablename__ = "repos"

    id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    user_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )

    # GitHub identity
    github_id: Mapped[int] = mapped_column(BigInteger, unique=True, nullable=False)
    github_full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    default_branch: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        default="main",
        server_default="main",
    )
    private: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # External GitHub installation id (not a foreign key)
    installation_id: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)

    # Ingestion
    ingestion_status: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default=IngestionStatus.PENDING.value,
        server_default=IngestionStatus.PENDING.value,
    )
    last_ingested_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    last_ingested_commit_sha: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    file_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    token_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Owned by the pattern extraction service
    extraction_status: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default="pending",
        server_default="pending",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        CheckConstraint(
            "ingestion_status IN ('pending', 'ingesting', 'ingested', 'failed')",
            name="ck_repos_ingestion_status",
        ),
        Index("ix_repos_user_id", "user_id"),
        Index("ix_repos_installation_id", "installation_id"),
        Index("ix_repos_ingestion_status", "ingestion_status"),
    )

    def __repr__(self) -> str:
        return (
            f"<Repo(id={self.id}, full_name={self.github_full_name}, "
            f"status={self.ingestion_status})>"
        )


class RepoFile(Base):
    """A file seen in the latest ingestion of a repository."""

    __tablename__ = "repo_files"

    id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    repo_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("repos.id", ondelete="CASCADE"),
        nullable=False,
    )
    file_path: Mapped[str] = mapped_column(Text, nullable=False)
    language: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    size_bytes: Mapped[int] = mapped_column(Integer, nullable=False)
    token_estimate: Mapped[int] = mapped_column(Integer, nullable=False)
    last_seen_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        Index("ux_repo_files_repo_path", "repo_id", "file_path", unique=True),
        Index("ix_repo_files_repo_last_seen", "repo_id", "last_seen_at"),
    )

    def __repr__(self) -> str:
        return f"<RepoFile(repo_id={self.repo_id}, path={self.file_path})>"
