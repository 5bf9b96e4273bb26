"""Test configuration and fixtures."""

from collections.abc import Generator
from typing import Any

import pytest
from fastapi.testclient import TestClient

from mantle.config import get_settings

TEST_WEBHOOK_SECRET = "test-webhook-secret"


class FakeSession:
    """Stand-in for AsyncSession that records transaction calls."""

    def __init__(self) -> None:
        self.commits = 0
        self.rollbacks = 0
        self.closed = False

    async def commit(self) -> None:
        self.commits += 1

    async def rollback(self) -> None:
        self.rollbacks += 1

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def client(monkeypatch: pytest.MonkeyPatch) -> Generator[TestClient, None, None]:
    """Test client with no webhook secret configured.

    The lifespan is not run, so routes that touch the database need their
    dependencies overridden.
    """
    from mantle.main import create_app

    monkeypatch.setenv("GITHUB_WEBHOOK_SECRET", "")
    get_settings.cache_clear()
    app = create_app()
    yield TestClient(app)
    app.dependency_overrides.clear()
    get_settings.cache_clear()


@pytest.fixture
def webhook_secret() -> str:
    return TEST_WEBHOOK_SECRET


@pytest.fixture
def signed_client(
    client: TestClient,
    webhook_secret: str,
    monkeypatch: pytest.MonkeyPatch,
) -> TestClient:
    """Test client with a webhook secret configured."""
    monkeypatch.setenv("GITHUB_WEBHOOK_SECRET", webhook_secret)
    get_settings.cache_clear()
    return client


@pytest.fixture
def installation_created_payload() -> dict[str, Any]:
    """Sample ``installation.created`` delivery for a personal account."""
    return {
        "action": "created",
        "installation": {
            "id": 4242,
            "account": {
                "id": 9001,
                "login": "octocat",
                "type": "User",
                "avatar_url": "https://avatars.githubusercontent.com/u/9001",
            },
        },
        "repositories": [
            {"id": 101, "full_name": "octocat/hello-world", "private": False},
            {"id": 102, "full_name": "octocat/secret-sauce", "private": True},
        ],
        "sender": {"login": "octocat"},
    }
