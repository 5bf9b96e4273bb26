from __future__ import annotations

from types import SimpleNamespace
from typing import Any
from uuid import UUID, uuid4

import pytest

from mantle.models.installations import MemberRole, MembershipDiscovery
from mantle.schemas.github import (
    InstallationEventPayload,
    InstallationRepositoriesEventPayload,
)
from mantle.services.installation_reconciler import (
    InstallationReconciler,
    merge_repository_cache,
)


class _FakeInstallationStore:
    def __init__(self, *, user: Any = None, has_member: bool = False, exists: bool = True):
        self.row_id = uuid4()
        self.user = user
        self._has_member = has_member
        self.exists = exists
        self.upserts: list[dict[str, Any]] = []
        self.members: list[dict[str, Any]] = []
        self.state_changes: list[tuple[int, dict[str, Any]]] = []
        self.row = SimpleNamespace(installation_id=4242, repositories_cache=[])

    async def upsert_installation(self, **kwargs: Any) -> tuple[UUID, bool]:
        self.upserts.append(kwargs)
        return self.row_id, len(self.upserts) == 1

    async def find_user_by_github_id(self, github_id: int) -> Any:
        return self.user

    async def has_member(self, installation_row_id: UUID) -> bool:
        return self._has_member

    async def add_member(self, **kwargs: Any) -> bool:
        self.members.append(kwargs)
        return True

    async def set_state(self, installation_id: int, **fields: Any) -> bool:
        self.state_changes.append((installation_id, fields))
        return self.exists

    async def get_for_update(self, installation_id: int) -> Any:
        return self.row if self.exists else None

    async def replace_repository_cache(self, installation: Any, repositories: list) -> None:
        installation.repositories_cache = repositories


class _FakeRepoStore:
    def __init__(self, tracked: list[Any] | None = None):
        self.tracked = tracked or []
        self.lookups: list[list[int]] = []

    async def find_by_github_ids(self, github_ids) -> list[Any]:
        ids = list(github_ids)
        self.lookups.append(ids)
        return [repo for repo in self.tracked if repo.github_id in ids]


class _FakeTrigger:
    def __init__(self, fail_for: set[UUID] | None = None):
        self.fail_for = fail_for or set()
        self.calls: list[UUID] = []

    def trigger(self, repo_id: UUID) -> str:
        self.calls.append(repo_id)
        if repo_id in self.fail_for:
            raise RuntimeError("broker unavailable")
        return f"task-{len(self.calls)}"


def _tracked_repo(github_id: int, full_name: str) -> SimpleNamespace:
    return SimpleNamespace(id=uuid4(), github_id=github_id, github_full_name=full_name)


def _reconciler(
    installations: _FakeInstallationStore | None = None,
    repos: _FakeRepoStore | None = None,
    trigger: _FakeTrigger | None = None,
) -> InstallationReconciler:
    return InstallationReconciler(
        installations=installations or _FakeInstallationStore(),
        repos=repos or _FakeRepoStore(),
        trigger=trigger or _FakeTrigger(),
    )


def test_merge_repository_cache_applies_delta() -> None:
    existing = [{"id": 1, "full_name": "o/a"}, {"id": 2, "full_name": "o/b"}]

    merged = merge_repository_cache(
        existing,
        added=[{"id": 3, "full_name": "o/c"}],
        removed=[{"id": 1, "full_name": "o/a"}],
    )

    assert [entry["id"] for entry in merged] == [2, 3]


def test_merge_repository_cache_is_idempotent() -> None:
    existing = [{"id": 1, "full_name": "o/a"}]
    added = [{"id": 2, "full_name": "o/b"}, {"id": 2, "full_name": "o/b"}]
    removed = [{"id": 9, "full_name": "o/gone"}]

    once = merge_repository_cache(existing, added, removed)
    twice = merge_repository_cache(once, added, removed)

    assert once == twice
    assert [entry["id"] for entry in twice] == [1, 2]


def test_merge_repository_cache_replaces_renamed_entry() -> None:
    merged = merge_repository_cache(
        [{"id": 1, "full_name": "o/old"}],
        added=[{"id": 1, "full_name": "o/new"}],
        removed=[],
    )
    assert merged == [{"id": 1, "full_name": "o/new"}]


@pytest.mark.asyncio
async def test_created_personal_installation_is_captured_and_linked(
    installation_created_payload,
) -> None:
    user = SimpleNamespace(id=uuid4())
    installations = _FakeInstallationStore(user=user)
    reconciler = _reconciler(installations=installations)

    ack = await reconciler.handle_installation(
        InstallationEventPayload.model_validate(installation_created_payload)
    )

    assert ack.message == "Installation created and captured"
    assert ack.installation_id == str(installations.row_id)
    assert ack.auto_linked is True
    assert ack.triggered == 0
    assert ack.skipped == 2

    upsert = installations.upserts[0]
    assert upsert["installation_id"] == 4242
    assert upsert["account_type"] == "User"
    assert upsert["repositories"] == [
        {"id": 101, "full_name": "octocat/hello-world", "private": False},
        {"id": 102, "full_name": "octocat/secret-sauce", "private": True},
    ]
    assert installations.members == [
        {
            "installation_row_id": installations.row_id,
            "user_id": user.id,
            "role": MemberRole.OWNER,
            "discovered_via": MembershipDiscovery.PERSONAL_MATCH,
        }
    ]


@pytest.mark.asyncio
async def test_created_installation_without_repositories_key_keeps_cache(
    installation_created_payload,
) -> None:
    payload = dict(installation_created_payload)
    payload.pop("repositories")
    installations = _FakeInstallationStore()

    ack = await _reconciler(installations=installations).handle_installation(
        InstallationEventPayload.model_validate(payload)
    )

    assert installations.upserts[0]["repositories"] is None
    assert ack.auto_linked is False
    assert ack.triggered == 0
    assert ack.skipped == 0


@pytest.mark.asyncio
async def test_created_installation_with_empty_repositories_clears_cache(
    installation_created_payload,
) -> None:
    installations = _FakeInstallationStore()
    trigger = _FakeTrigger()
    repos = _FakeRepoStore([_tracked_repo(101, "octocat/hello-world")])

    ack = await _reconciler(
        installations=installations, repos=repos, trigger=trigger
    ).handle_installation(
        InstallationEventPayload.model_validate(
            {**installation_created_payload, "repositories": []}
        )
    )

    assert installations.upserts[0]["repositories"] == []
    assert (ack.triggered, ack.skipped) == (0, 0)
    assert trigger.calls == []
    assert repos.lookups == []


@pytest.mark.asyncio
async def test_organization_installation_is_never_auto_linked(
    installation_created_payload,
) -> None:
    payload = dict(installation_created_payload)
    payload["installation"] = {
        "id": 4242,
        "account": {"id": 77, "login": "acme", "type": "Organization"},
    }
    installations = _FakeInstallationStore(user=SimpleNamespace(id=uuid4()))

    ack = await _reconciler(installations=installations).handle_installation(
        InstallationEventPayload.model_validate(payload)
    )

    assert ack.auto_linked is False
    assert installations.members == []
    assert installations.upserts[0]["account_type"] == "Organization"


@pytest.mark.asyncio
async def test_existing_membership_counts_as_linked() -> None:
    installations = _FakeInstallationStore(user=SimpleNamespace(id=uuid4()), has_member=True)

    linked = await _reconciler(installations=installations).auto_link_personal_installation(
        installations.row_id, 9001
    )

    assert linked is True
    assert installations.members == []


@pytest.mark.asyncio
async def test_redelivered_creation_triggers_tracked_repos_again(
    installation_created_payload,
) -> None:
    tracked = _tracked_repo(101, "octocat/hello-world")
    trigger = _FakeTrigger()
    reconciler = _reconciler(repos=_FakeRepoStore([tracked]), trigger=trigger)
    payload = InstallationEventPayload.model_validate(installation_created_payload)

    first = await reconciler.handle_installation(payload)
    second = await reconciler.handle_installation(payload)

    assert first.installation_id == second.installation_id
    assert (first.triggered, first.skipped) == (1, 1)
    assert trigger.calls == [tracked.id, tracked.id]


@pytest.mark.asyncio
@pytest.mark.parametrize("action", ["suspended", "unsuspended", "deleted"])
async def test_state_actions_update_flags_only(action: str, installation_created_payload) -> None:
    installations = _FakeInstallationStore()
    payload = InstallationEventPayload.model_validate(
        {**installation_created_payload, "action": action}
    )

    ack = await _reconciler(installations=installations).handle_installation(payload)

    assert ack.message == f"Installation {action} processed"
    assert installations.upserts == []
    installation_id, fields = installations.state_changes[0]
    assert installation_id == 4242
    if action == "deleted":
        assert fields == {"is_active": False}
    elif action == "suspended":
        assert fields["suspended_at"] is not None
    else:
        assert fields == {"suspended_at": None}


@pytest.mark.asyncio
async def test_state_change_for_unknown_installation_is_acknowledged(
    installation_created_payload,
) -> None:
    installations = _FakeInstallationStore(exists=False)
    payload = InstallationEventPayload.model_validate(
        {**installation_created_payload, "action": "deleted"}
    )

    ack = await _reconciler(installations=installations).handle_installation(payload)

    assert ack.message == "Installation deleted processed"


@pytest.mark.asyncio
async def test_unknown_installation_action_is_acknowledged(installation_created_payload) -> None:
    installations = _FakeInstallationStore()
    payload = InstallationEventPayload.model_validate(
        {**installation_created_payload, "action": "new_permissions_accepted"}
    )

    ack = await _reconciler(installations=installations).handle_installation(payload)

    assert ack.message == "Installation action 'new_permissions_accepted' acknowledged"
    assert installations.upserts == []
    assert installations.state_changes == []


@pytest.mark.asyncio
async def test_update_installation_state_rejects_unknown_action() -> None:
    with pytest.raises(ValueError):
        await _reconciler().update_installation_state(4242, "renamed")


@pytest.mark.asyncio
async def test_repositories_added_updates_cache_and_triggers_tracked() -> None:
    installations = _FakeInstallationStore()
    installations.row.repositories_cache = [{"id": 1, "full_name": "o/old", "private": False}]
    tracked = _tracked_repo(2, "o/new")
    trigger = _FakeTrigger()
    payload = InstallationRepositoriesEventPayload.model_validate(
        {
            "action": "added",
            "installation": {"id": 4242},
            "repositories_added": [
                {"id": 2, "full_name": "o/new", "private": False},
                {"id": 3, "full_name": "o/untracked", "private": True},
            ],
            "repositories_removed": [],
        }
    )

    ack = await _reconciler(
        installations=installations,
        repos=_FakeRepoStore([tracked]),
        trigger=trigger,
    ).handle_installation_repositories(payload)

    assert ack.body() == {
        "message": "Repository added processed",
        "cache_updated": True,
        "triggered": 1,
        "skipped": 1,
    }
    assert [entry["id"] for entry in installations.row.repositories_cache] == [1, 2, 3]
    assert trigger.calls == [tracked.id]


@pytest.mark.asyncio
async def test_repositories_removed_only_updates_cache() -> None:
    installations = _FakeInstallationStore()
    installations.row.repositories_cache = [
        {"id": 1, "full_name": "o/a", "private": False},
        {"id": 2, "full_name": "o/b", "private": False},
    ]
    trigger = _FakeTrigger()
    payload = InstallationRepositoriesEventPayload.model_validate(
        {
            "action": "removed",
            "installation": {"id": 4242},
            "repositories_removed": [{"id": 1, "full_name": "o/a"}],
        }
    )

    reconciler = _reconciler(installations=installations, trigger=trigger)
    ack = await reconciler.handle_installation_repositories(payload)

    assert ack.body() == {"message": "Repository removed processed", "cache_updated": True}
    assert installations.row.repositories_cache == [{"id": 2, "full_name": "o/b", "private": False}]
    assert trigger.calls == []


@pytest.mark.asyncio
async def test_cache_update_for_unknown_installation_is_skipped() -> None:
    installations = _FakeInstallationStore(exists=False)
    payload = InstallationRepositoriesEventPayload.model_validate(
        {
            "action": "added",
            "installation": {"id": 999},
            "repositories_added": [{"id": 5, "full_name": "o/e"}],
        }
    )

    ack = await _reconciler(installations=installations).handle_installation_repositories(payload)

    assert ack.cache_updated is False
    assert ack.triggered == 0
    assert ack.skipped == 1


@pytest.mark.asyncio
async def test_trigger_failure_does_not_stop_other_repos() -> None:
    first = _tracked_repo(1, "o/a")
    second = _tracked_repo(2, "o/b")
    trigger = _FakeTrigger(fail_for={first.id})
    reconciler = _reconciler(repos=_FakeRepoStore([first, second]), trigger=trigger)
    payload = InstallationRepositoriesEventPayload.model_validate(
        {
            "action": "added",
            "installation": {"id": 4242},
            "repositories_added": [
                {"id": 1, "full_name": "o/a"},
                {"id": 2, "full_name": "o/b"},
            ],
        }
    )

    triggered, skipped = await reconciler.trigger_ingestion_for_repos(payload.repositories_added)

    assert trigger.calls == [first.id, second.id]
    assert (triggered, skipped) == (1, 1)


@pytest.mark.asyncio
async def test_trigger_with_no_repos_skips_lookup() -> None:
    repos = _FakeRepoStore()

    assert await _reconciler(repos=repos).trigger_ingestion_for_repos([]) == (0, 0)
    assert repos.lookups == []
