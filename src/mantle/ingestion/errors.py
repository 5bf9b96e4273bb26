"""Ingestion exceptions.

``FatalIngestionError`` subclasses mark failures a retry cannot fix; the
task layer re-raises them without scheduling another attempt.
"""


class IngestionError(Exception):
    """Base exception for repository ingestion."""

    pass


class FatalIngestionError(IngestionError):
    """Ingestion failure that must not be retried."""

    pass


class RepoNotFoundError(FatalIngestionError):
    def __init__(self, repo_id: str):
        super().__init__(f"Repo not found: {repo_id}")
        self.repo_id = repo_id


class InvalidRepositoryNameError(FatalIngestionError):
    def __init__(self, full_name: str):
        super().__init__(f"Invalid GitHub full name format: {full_name}")
        self.full_name = full_name


class MissingInstallationError(FatalIngestionError):
    def __init__(self, repo_id: str):
        super().__init__(f"Repo has no GitHub App installation: {repo_id}")
        self.repo_id = repo_id
