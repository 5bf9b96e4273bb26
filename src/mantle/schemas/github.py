"""Pydantic schemas for GitHub App webhook payloads.

Reference: https://docs.github.com/en/webhooks/webhook-events-and-payloads

Only the fields the dispatcher and reconciler read are modelled; anything
else GitHub sends is ignored.
"""

from pydantic import BaseModel, ConfigDict


class GitHubPayloadModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


class GitHubAccount(GitHubPayloadModel):
    """User or organization an installation belongs to."""

    id: int
    login: str
    type: str = "User"
    avatar_url: str | None = None


class InstallationRef(GitHubPayloadModel):
    """The installation object embedded in installation events."""

    id: int
    account: GitHubAccount


class InstallationRepository(GitHubPayloadModel):
    """Repository entry as listed in installation events."""

    id: int
    full_name: str
    private: bool = False

    def to_cache_entry(self) -> dict:
        return {"id": self.id, "full_name": self.full_name, "private": self.private}


class InstallationEventPayload(GitHubPayloadModel):
    """Payload of the ``installation`` event.

    ``repositories`` is ``None`` when GitHub omits the key, which is
    different from an empty list.
    """

    action: str
    installation: InstallationRef
    repositories: list[InstallationRepository] | None = None


class InstallationIdRef(GitHubPayloadModel):
    id: int


class InstallationRepositoriesEventPayload(GitHubPayloadModel):
    """Payload of the ``installation_repositories`` event."""

    action: str
    installation: InstallationIdRef
    repositories_added: list[InstallationRepository] = []
    repositories_removed: list[InstallationRepository] = []


class PullRequestRef(GitHubPayloadModel):
    number: int


class PullRequestEventPayload(GitHubPayloadModel):
    """Payload of the ``pull_request`` event."""

    action: str
    number: int | None = None
    pull_request: PullRequestRef | None = None

    @property
    def pr_number(self) -> int | None:
        if self.number is not None:
            return self.number
        if self.pull_request is not None:
            return self.pull_request.number
        return None
