from __future__ import annotations

import pytest

from mantle.config import get_settings
from mantle.ingestion.errors import InvalidRepositoryNameError
from mantle.tasks import ingestion_tasks
from mantle.tasks.ingestion_tasks import ingest_repository


class _RetryScheduled(Exception):
    pass


@pytest.fixture
def retries(monkeypatch: pytest.MonkeyPatch) -> list[dict]:
    scheduled: list[dict] = []

    def fake_retry(*, countdown: int, exc: Exception) -> Exception:
        scheduled.append({"countdown": countdown, "exc": exc})
        return _RetryScheduled()

    monkeypatch.setattr(ingest_repository, "retry", fake_retry)
    return scheduled


@pytest.fixture(autouse=True)
def _settings(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("INGESTION_MAX_ATTEMPTS", "3")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def _run_ingestion_raising(exc: Exception):
    async def fake(repo_id: str) -> dict:
        raise exc

    return fake


def test_task_returns_pipeline_result(monkeypatch: pytest.MonkeyPatch, retries) -> None:
    async def fake(repo_id: str) -> dict:
        return {"success": True, "repo_id": repo_id, "file_count": 2}

    monkeypatch.setattr(ingestion_tasks, "run_ingestion", fake)

    assert ingest_repository("repo-1") == {"success": True, "repo_id": "repo-1", "file_count": 2}
    assert retries == []


def test_transient_failure_schedules_backoff_retry(
    monkeypatch: pytest.MonkeyPatch, retries
) -> None:
    error = ConnectionError("github unreachable")
    monkeypatch.setattr(ingestion_tasks, "run_ingestion", _run_ingestion_raising(error))

    with pytest.raises(_RetryScheduled):
        ingest_repository("repo-1")

    assert retries == [{"countdown": 1, "exc": error}]


def test_fatal_failure_is_not_retried(monkeypatch: pytest.MonkeyPatch, retries) -> None:
    monkeypatch.setattr(
        ingestion_tasks,
        "run_ingestion",
        _run_ingestion_raising(InvalidRepositoryNameError("invalid-format")),
    )

    with pytest.raises(InvalidRepositoryNameError):
        ingest_repository("repo-1")

    assert retries == []


def test_last_attempt_reraises(monkeypatch: pytest.MonkeyPatch, retries) -> None:
    monkeypatch.setenv("INGESTION_MAX_ATTEMPTS", "1")
    get_settings.cache_clear()
    monkeypatch.setattr(
        ingestion_tasks, "run_ingestion", _run_ingestion_raising(TimeoutError("slow"))
    )

    with pytest.raises(TimeoutError):
        ingest_repository("repo-1")

    assert retries == []


def test_on_failure_logs_task_arguments(caplog: pytest.LogCaptureFixture) -> None:
    error = RuntimeError("boom")

    with caplog.at_level("ERROR", logger=ingestion_tasks.__name__):
        ingest_repository.on_failure(error, "task-1", ("repo-1",), {"repo_id": "repo-1"}, None)

    record = next(r for r in caplog.records if r.getMessage() == "Task failed")
    assert record.task_id == "task-1"
    assert record.task_args == ("repo-1",)
    assert record.task_kwargs == {"repo_id": "repo-1"}
    assert record.error == "boom"
