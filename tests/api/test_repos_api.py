from __future__ import annotations

from datetime import UTC, datetime, timedelta
from types import SimpleNamespace
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from mantle.database import get_db_session
from mantle.services.ingestion_trigger import get_ingestion_trigger

REPO_STORE = "mantle.services.repo_store.RepoStore"


class _Trigger:
    def __init__(self, journal: list[str], *, fail: bool = False):
        self.journal = journal
        self.fail = fail

    def trigger(self, repo_id) -> str:
        self.journal.append("trigger")
        if self.fail:
            raise ConnectionError("broker down")
        return "task-123"


class _JournalSession:
    def __init__(self, journal: list[str]):
        self.journal = journal

    async def commit(self) -> None:
        self.journal.append("commit")

    async def rollback(self) -> None:
        self.journal.append("rollback")


def _repo(**overrides):
    values = {
        "id": uuid4(),
        "github_full_name": "octocat/hello-world",
        "ingestion_status": "ingested",
        "last_ingested_at": datetime(2026, 1, 9, tzinfo=UTC),
        "last_ingested_commit_sha": "c0ffee",
        "file_count": 2,
        "token_count": 375,
        "last_error": None,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


@pytest.fixture
def journal() -> list[str]:
    return []


def _client(
    client: TestClient,
    journal: list[str],
    monkeypatch: pytest.MonkeyPatch,
    *,
    repo=None,
    resettable: bool = True,
    cutoffs: list | None = None,
    trigger_fails: bool = False,
) -> TestClient:
    cutoffs = [] if cutoffs is None else cutoffs

    async def _get(self, repo_id):
        return repo if repo is not None and repo.id == repo_id else None

    async def _reset(self, repo_id, *, stale_before):
        journal.append("reset")
        cutoffs.append(stale_before)
        return resettable

    async def _override_db():
        yield _JournalSession(journal)

    monkeypatch.setattr(f"{REPO_STORE}.get", _get)
    monkeypatch.setattr(f"{REPO_STORE}.reset_to_pending", _reset)
    client.app.dependency_overrides[get_db_session] = _override_db
    client.app.dependency_overrides[get_ingestion_trigger] = lambda: _Trigger(
        journal, fail=trigger_fails
    )
    return client


def test_ingest_queues_after_commit(client, journal, monkeypatch) -> None:
    repo = _repo()
    api = _client(client, journal, monkeypatch, repo=repo)

    res = api.post(f"/api/v1/repos/{repo.id}/ingest")

    assert res.status_code == 202
    assert res.json() == {"repo_id": str(repo.id), "task_id": "task-123", "status": "queued"}
    assert journal == ["reset", "commit", "trigger"]


def test_ingest_unknown_repo_returns_404(client, journal, monkeypatch) -> None:
    api = _client(client, journal, monkeypatch)

    res = api.post(f"/api/v1/repos/{uuid4()}/ingest")

    assert res.status_code == 404
    assert res.json()["detail"] == "Repo not found"
    assert "trigger" not in journal


def test_ingest_while_ingesting_returns_409(client, journal, monkeypatch) -> None:
    repo = _repo(ingestion_status="ingesting")
    api = _client(client, journal, monkeypatch, repo=repo, resettable=False)

    res = api.post(f"/api/v1/repos/{repo.id}/ingest")

    assert res.status_code == 409
    assert res.json()["detail"] == "Ingestion already in progress"
    assert "trigger" not in journal


def test_ingest_passes_stale_cutoff_for_abandoned_run(client, journal, monkeypatch) -> None:
    repo = _repo(ingestion_status="ingesting")
    cutoffs: list = []
    api = _client(client, journal, monkeypatch, repo=repo, cutoffs=cutoffs)

    res = api.post(f"/api/v1/repos/{repo.id}/ingest")

    assert res.status_code == 202
    assert journal == ["reset", "commit", "trigger"]
    age = datetime.now(UTC) - cutoffs[0]
    assert timedelta(seconds=890) < age < timedelta(seconds=910)


def test_ingest_with_broker_down_returns_503(client, journal, monkeypatch) -> None:
    repo = _repo(ingestion_status="failed")
    api = _client(client, journal, monkeypatch, repo=repo, trigger_fails=True)

    res = api.post(f"/api/v1/repos/{repo.id}/ingest")

    assert res.status_code == 503
    assert res.json()["detail"] == "Could not schedule ingestion"


def test_ingest_rejects_malformed_repo_id(client, journal, monkeypatch) -> None:
    api = _client(client, journal, monkeypatch)

    res = api.post("/api/v1/repos/not-a-uuid/ingest")

    assert res.status_code == 422


def test_ingestion_status(client, journal, monkeypatch) -> None:
    repo = _repo()
    api = _client(client, journal, monkeypatch, repo=repo)

    res = api.get(f"/api/v1/repos/{repo.id}/ingestion")

    assert res.status_code == 200
    body = res.json()
    assert body["id"] == str(repo.id)
    assert body["ingestion_status"] == "ingested"
    assert body["file_count"] == 2
    assert body["token_count"] == 375
    assert body["last_ingested_commit_sha"] == "c0ffee"


def test_ingestion_status_unknown_repo_returns_404(client, journal, monkeypatch) -> None:
    api = _client(client, journal, monkeypatch)

    res = api.get(f"/api/v1/repos/{uuid4()}/ingestion")

    assert res.status_code == 404
