"""Persistence for GitHub App installations and their members."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from sqlalchemy import literal_column, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from mantle.models.installations import (
    GitHubInstallation,
    InstallationMember,
    MemberRole,
    MembershipDiscovery,
)
from mantle.models.user import User

logger = logging.getLogger(__name__)


class InstallationStore:
    """Installation rows keyed by the external GitHub installation id."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def upsert_installation(
        self,
        *,
        installation_id: int,
        account_id: int,
        account_login: str,
        account_type: str,
        account_avatar_url: str | None,
        repositories: list[dict[str, Any]] | None,
    ) -> tuple[UUID, bool]:
        """
        Insert or refresh an installation.

        A conflicting row is reactivated and its account fields refreshed.
        The repository cache is only written when ``repositories`` is not
        None; an empty list replaces the cache with ``[]``.

        Returns:
            Tuple of (installation row id, is_new)
        """
        now = datetime.now(UTC)
        values: dict[str, Any] = {
            "installation_id": installation_id,
            "account_id": account_id,
            "account_login": account_login,
            "account_type": account_type,
            "account_avatar_url": account_avatar_url,
            "is_active": True,
            "suspended_at": None,
        }
        if repositories is not None:
            values["repositories_cache"] = repositories
            values["repositories_cache_updated_at"] = now

        stmt = insert(GitHubInstallation).values(**values)
        set_ = {
            "account_id": stmt.excluded.account_id,
            "account_login": stmt.excluded.account_login,
            "account_type": stmt.excluded.account_type,
            "account_avatar_url": stmt.excluded.account_avatar_url,
            "is_active": True,
            "suspended_at": None,
            "updated_at": now,
        }
        if repositories is not None:
            set_["repositories_cache"] = stmt.excluded.repositories_cache
            set_["repositories_cache_updated_at"] = stmt.excluded.repositories_cache_updated_at

        stmt = stmt.on_conflict_do_update(
            index_elements=["installation_id"],
            set_=set_,
        ).returning(GitHubInstallation.id, literal_column("(xmax = 0)").label("inserted"))

        result = await self._session.execute(stmt)
        row = result.one()
        return row.id, bool(row.inserted)

    async def get_by_installation_id(self, installation_id: int) -> GitHubInstallation | None:
        result = await self._session.execute(
            select(GitHubInstallation).where(
                GitHubInstallation.installation_id == installation_id,
            )
        )
        return result.scalar_one_or_none()

    async def get_for_update(self, installation_id: int) -> GitHubInstallation | None:
        """Load an installation row and lock it until the transaction ends."""
        result = await self._session.execute(
            select(GitHubInstallation)
            .where(GitHubInstallation.installation_id == installation_id)
            .with_for_update()
        )
        return result.scalar_one_or_none()

    async def set_state(self, installation_id: int, **fields: Any) -> bool:
        """Update lifecycle columns. Returns False when no row matched."""
        fields["updated_at"] = datetime.now(UTC)
        result = await self._session.execute(
            update(GitHubInstallation)
            .where(GitHubInstallation.installation_id == installation_id)
            .values(**fields)
            .returning(GitHubInstallation.id)
        )
        return result.scalar_one_or_none() is not None

    async def replace_repository_cache(
        self,
        installation: GitHubInstallation,
        repositories: list[dict[str, Any]],
    ) -> None:
        now = datetime.now(UTC)
        installation.repositories_cache = repositories
        installation.repositories_cache_updated_at = now
        installation.updated_at = now
        await self._session.flush()

    async def find_user_by_github_id(self, github_id: int) -> User | None:
        result = await self._session.execute(select(User).where(User.github_id == github_id))
        return result.scalar_one_or_none()

    async def has_member(self, installation_row_id: UUID) -> bool:
        """True when any user is already linked to the installation."""
        result = await self._session.execute(
            select(InstallationMember.id)
            .where(InstallationMember.installation_id == installation_row_id)
            .limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def add_member(
        self,
        *,
        installation_row_id: UUID,
        user_id: UUID,
        role: MemberRole,
        discovered_via: MembershipDiscovery,
    ) -> bool:
        """Insert a membership; an existing (installation, user) pair is left alone."""
        stmt = (
            insert(InstallationMember)
            .values(
                installation_id=installation_row_id,
                user_id=user_id,
                role=role.value,
                discovered_via=discovered_via.value,
                verified_at=datetime.now(UTC),
            )
            .on_conflict_do_nothing(index_elements=["installation_id", "user_id"])
            .returning(InstallationMember.id)
        )
        result = await self._session.execute(stmt)
        inserted = result.scalar_one_or_none() is not None
        if not inserted:
            logger.debug(
                "Installation membership already present",
                extra={"installation_row_id": str(installation_row_id), "user_id": str(user_id)},
            )
        return inserted
