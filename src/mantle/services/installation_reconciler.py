"""GitHub App installation reconciler.

Keeps installation rows and their repository caches in step with the
``installation`` and ``installation_repositories`` webhook events, links
personal installations to their owners, and schedules ingestion for
tracked repositories that become visible.

Installation lifecycle: absent -> active -> {suspended, active} -> inactive.
Deletion only clears ``is_active``; rows are never removed.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from datetime import UTC, datetime
from typing import Any, Protocol
from uuid import UUID

from mantle.models.installations import (
    InstallationAccountType,
    MemberRole,
    MembershipDiscovery,
)
from mantle.observability.metrics import METRICS
from mantle.schemas.github import (
    InstallationEventPayload,
    InstallationRepositoriesEventPayload,
    InstallationRepository,
)
from mantle.schemas.webhooks import WebhookAck
from mantle.services.installation_store import InstallationStore
from mantle.services.repo_store import RepoStore

logger = logging.getLogger(__name__)

STATE_ACTIONS = ("suspended", "unsuspended", "deleted")


class IngestionTrigger(Protocol):
    def trigger(self, repo_id: UUID) -> str: ...


def merge_repository_cache(
    existing: Iterable[dict[str, Any]],
    added: Iterable[dict[str, Any]],
    removed: Iterable[dict[str, Any]],
) -> list[dict[str, Any]]:
    """
    Apply an add/remove delta to a repository cache.

    Entries are keyed by repository id. Added entries replace any existing
    entry with the same id, so replaying the same delta is a no-op.
    """
    added_by_id: dict[int, dict[str, Any]] = {}
    for entry in added:
        added_by_id[entry["id"]] = entry

    dropped_ids = {entry["id"] for entry in removed} | set(added_by_id)
    kept = [entry for entry in existing if entry.get("id") not in dropped_ids]
    return kept + list(added_by_id.values())


class InstallationReconciler:
    """Applies installation lifecycle events to persisted state."""

    def __init__(
        self,
        installations: InstallationStore,
        repos: RepoStore,
        trigger: IngestionTrigger,
    ) -> None:
        self.installations = installations
        self.repos = repos
        self.trigger = trigger

    async def handle_installation(self, payload: InstallationEventPayload) -> WebhookAck:
        """Dispatch an ``installation`` event by action."""
        action = payload.action
        installation = payload.installation

        logger.info(
            "Installation event",
            extra={
                "action": action,
                "installation_id": installation.id,
                "account_login": installation.account.login,
            },
        )

        if action == "created":
            installation_row_id, _ = await self.capture_installation(payload)

            auto_linked = False
            if installation.account.type != InstallationAccountType.ORGANIZATION.value:
                auto_linked = await self.auto_link_personal_installation(
                    installation_row_id,
                    installation.account.id,
                )

            triggered, skipped = 0, 0
            if payload.repositories:
                triggered, skipped = await self.trigger_ingestion_for_repos(payload.repositories)

            return WebhookAck(
                message="Installation created and captured",
                installation_id=str(installation_row_id),
                auto_linked=auto_linked,
                triggered=triggered,
                skipped=skipped,
            )

        if action in STATE_ACTIONS:
            await self.update_installation_state(installation.id, action)
            return WebhookAck(message=f"Installation {action} processed")

        return WebhookAck(message=f"Installation action '{action}' acknowledged")

    async def handle_installation_repositories(
        self,
        payload: InstallationRepositoriesEventPayload,
    ) -> WebhookAck:
        """Apply an ``installation_repositories`` delta and schedule new repos."""
        added = payload.repositories_added
        removed = payload.repositories_removed
        cache_updated = False
        if added or removed:
            cache_updated = await self.update_repository_cache(
                payload.installation.id, added, removed
            )

        if removed:
            logger.info(
                "Repositories removed from installation",
                extra={
                    "installation_id": payload.installation.id,
                    "repos": [r.full_name for r in removed],
                },
            )

        if not added:
            return WebhookAck(
                message=f"Repository {payload.action} processed",
                cache_updated=cache_updated,
            )

        triggered, skipped = await self.trigger_ingestion_for_repos(added)
        return WebhookAck(
            message=f"Repository {payload.action} processed",
            cache_updated=cache_updated,
            triggered=triggered,
            skipped=skipped,
        )

    async def capture_installation(self, payload: InstallationEventPayload) -> tuple[UUID, bool]:
        """Upsert the installation row. Returns (row id, is_new)."""
        account = payload.installation.account
        account_type = (
            InstallationAccountType.ORGANIZATION.value
            if account.type == InstallationAccountType.ORGANIZATION.value
            else InstallationAccountType.USER.value
        )
        repositories = (
            None
            if payload.repositories is None
            else [repo.to_cache_entry() for repo in payload.repositories]
        )

        installation_row_id, is_new = await self.installations.upsert_installation(
            installation_id=payload.installation.id,
            account_id=account.id,
            account_login=account.login,
            account_type=account_type,
            account_avatar_url=account.avatar_url,
            repositories=repositories,
        )

        logger.info(
            "Captured new installation" if is_new else "Updated installation",
            extra={
                "installation_id": payload.installation.id,
                "installation_row_id": str(installation_row_id),
                "account_login": account.login,
            },
        )
        return installation_row_id, is_new

    async def auto_link_personal_installation(
        self,
        installation_row_id: UUID,
        github_account_id: int,
    ) -> bool:
        """
        Link a personal installation to the user who owns the account.

        Returns:
            True if the installation is linked after this call
        """
        user = await self.installations.find_user_by_github_id(github_account_id)
        if user is None:
            logger.info(
                "No user to auto-link installation",
                extra={"github_account_id": github_account_id},
            )
            return False

        if await self.installations.has_member(installation_row_id):
            logger.info(
                "Installation already linked",
                extra={"installation_row_id": str(installation_row_id)},
            )
            return True

        await self.installations.add_member(
            installation_row_id=installation_row_id,
            user_id=user.id,
            role=MemberRole.OWNER,
            discovered_via=MembershipDiscovery.PERSONAL_MATCH,
        )
        logger.info(
            "Auto-linked personal installation",
            extra={"installation_row_id": str(installation_row_id), "user_id": str(user.id)},
        )
        return True

    async def update_installation_state(self, installation_id: int, action: str) -> None:
        """Apply suspended / unsuspended / deleted. The cache is left alone."""
        if action == "deleted":
            fields: dict[str, Any] = {"is_active": False}
        elif action == "suspended":
            fields = {"suspended_at": datetime.now(UTC)}
        elif action == "unsuspended":
            fields = {"suspended_at": None}
        else:
            raise ValueError(f"Unsupported installation state action: {action}")

        matched = await self.installations.set_state(installation_id, **fields)
        if not matched:
            logger.warning(
                "Installation not found for state change",
                extra={"installation_id": installation_id, "action": action},
            )
            return

        logger.info(
            "Installation state updated",
            extra={"installation_id": installation_id, "action": action},
        )

    async def update_repository_cache(
        self,
        installation_id: int,
        added: Sequence[InstallationRepository],
        removed: Sequence[InstallationRepository],
    ) -> bool:
        """Merge a repository delta into the locked installation row."""
        installation = await self.installations.get_for_update(installation_id)
        if installation is None:
            logger.warning(
                "Installation not found for cache update",
                extra={"installation_id": installation_id},
            )
            return False

        merged = merge_repository_cache(
            installation.repositories_cache or [],
            [repo.to_cache_entry() for repo in added],
            [repo.to_cache_entry() for repo in removed],
        )
        await self.installations.replace_repository_cache(installation, merged)

        logger.info(
            "Repository cache updated",
            extra={
                "installation_id": installation_id,
                "added": len(added),
                "removed": len(removed),
                "cache_size": len(merged),
            },
        )
        return True

    async def trigger_ingestion_for_repos(
        self,
        github_repos: Sequence[InstallationRepository],
    ) -> tuple[int, int]:
        """
        Schedule ingestion for tracked repos among ``github_repos``.

        Untracked repositories are never connected here. A failure to
        schedule one repo is logged and does not stop the others.

        Returns:
            Tuple of (triggered, skipped)
        """
        if not github_repos:
            return 0, 0

        tracked = await self.repos.find_by_github_ids(repo.id for repo in github_repos)
        if not tracked:
            logger.info(
                "No tracked repos among visible repositories",
                extra={"repos": [repo.full_name for repo in github_repos]},
            )
            return 0, len(github_repos)

        triggered = 0
        for repo in tracked:
            try:
                task_id = self.trigger.trigger(repo.id)
            except Exception as e:
                METRICS.ingestion_triggers_total.labels(outcome="error").inc()
                logger.error(
                    "Failed to trigger ingestion",
                    extra={
                        "repo_id": str(repo.id),
                        "full_name": repo.github_full_name,
                        "error": str(e),
                    },
                    exc_info=True,
                )
                continue

            METRICS.ingestion_triggers_total.labels(outcome="queued").inc()
            logger.info(
                "Triggered ingestion",
                extra={
                    "repo_id": str(repo.id),
                    "full_name": repo.github_full_name,
                    "task_id": task_id,
                },
            )
            triggered += 1

        return triggered, len(github_repos) - triggered
