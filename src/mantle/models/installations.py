"""GitHub App installation models.

An installation row is the canonical record of a GitHub App install on a
user or organization account, plus a cached view of the repositories the
installation can see. Members map platform users to installations.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, Boolean, DateTime, ForeignKey, Index, String, func, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import Mapped, mapped_column

from mantle.models.base import Base


class InstallationAccountType(str, Enum):
    """GitHub account kinds an App can be installed on."""

    USER = "User"
    ORGANIZATION = "Organization"


class MemberRole(str, Enum):
    OWNER = "owner"
    MEMBER = "member"


class MembershipDiscovery(str, Enum):
    """How a user was found to belong to an installation."""

    PERSONAL_MATCH = "personal_match"
    ORG_API_CHECK = "org_api_check"
    MANUAL = "manual"
    MIGRATION = "migration"


class GitHubInstallation(Base):
    """A GitHub App installation and its repository cache."""

    __tablename__ = "github_installations"

    id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )

    # External GitHub installation id, upsert key
    installation_id: Mapped[int] = mapped_column(BigInteger, unique=True, nullable=False)

    # Account the App is installed on
    account_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    account_login: Mapped[str] = mapped_column(String(255), nullable=False)
    account_type: Mapped[str] = mapped_column(String(32), nullable=False)
    account_avatar_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    # Lifecycle
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=text("true"),
    )
    suspended_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Repositories visible to the installation: [{id, full_name, private}]
    repositories_cache: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONB,
        nullable=False,
        default=list,
        server_default=text("'[]'::jsonb"),
    )
    repositories_cache_updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
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
        Index("ix_github_installations_account_id", "account_id"),
        Index("ix_github_installations_account_login", "account_login"),
    )

    @property
    def is_suspended(self) -> bool:
        return self.suspended_at is not None

    def __repr__(self) -> str:
        return (
            f"<GitHubInstallation(installation_id={self.installation_id}, "
            f"account={self.account_login}, active={self.is_active})>"
        )


class InstallationMember(Base):
    """Link between a platform user and an installation."""

    __tablename__ = "installation_members"

    id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    installation_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("github_installations.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    role: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default=MemberRole.MEMBER.value,
        server_default=MemberRole.MEMBER.value,
    )
    discovered_via: Mapped[str] = mapped_column(String(32), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    verified_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    __table_args__ = (
        Index(
            "ux_installation_members_installation_user",
            "installation_id",
            "user_id",
            unique=True,
        ),
        Index("ix_installation_members_user_id", "user_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<InstallationMember(installation_id={self.installation_id}, "
            f"user_id={self.user_id}, role={self.role})>"
        )
