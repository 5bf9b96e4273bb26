"""Routes verified GitHub webhook events to their handlers."""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, ValidationError

from mantle.schemas.github import (
    InstallationEventPayload,
    InstallationRepositoriesEventPayload,
    PullRequestEventPayload,
)
from mantle.schemas.webhooks import WebhookAck
from mantle.services.installation_reconciler import InstallationReconciler

logger = logging.getLogger(__name__)

ANALYZED_PR_ACTIONS = ("opened", "synchronize")


class InvalidWebhookPayloadError(Exception):
    """A recognized event whose payload does not match its schema."""

    def __init__(self, event_type: str, errors: list[dict[str, Any]] | None = None):
        super().__init__(f"Invalid {event_type} payload")
        self.event_type = event_type
        self.errors = errors or []


def _parse(model: type[BaseModel], event_type: str, payload: Any) -> Any:
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        raise InvalidWebhookPayloadError(
            event_type, e.errors(include_url=False, include_context=False)
        ) from e


class WebhookDispatcher:
    """Classifies an event by type and delegates to the matching handler."""

    def __init__(self, reconciler: InstallationReconciler):
        self.reconciler = reconciler

    async def dispatch(self, event_type: str | None, payload: Any) -> WebhookAck:
        if event_type == "ping":
            return self.handle_ping(payload)

        if event_type == "pull_request":
            return self.handle_pull_request(_parse(PullRequestEventPayload, event_type, payload))

        if event_type == "installation":
            return await self.reconciler.handle_installation(
                _parse(InstallationEventPayload, event_type, payload)
            )

        if event_type == "installation_repositories":
            return await self.reconciler.handle_installation_repositories(
                _parse(InstallationRepositoriesEventPayload, event_type, payload)
            )

        logger.info("Unhandled webhook event type", extra={"event_type": event_type})
        return WebhookAck(message=f"Event '{event_type}' not handled")

    @staticmethod
    def handle_ping(payload: Any) -> WebhookAck:
        zen = payload.get("zen") if isinstance(payload, dict) else None
        logger.info("GitHub webhook ping received", extra={"zen": zen})
        return WebhookAck(message="pong")

    @staticmethod
    def handle_pull_request(payload: PullRequestEventPayload) -> WebhookAck:
        """Classify a PR event. Analysis itself runs in the analysis service."""
        number = payload.pr_number
        if payload.action not in ANALYZED_PR_ACTIONS:
            return WebhookAck(message=f"PR action '{payload.action}' ignored", queued=False)

        logger.info(
            "PR analysis requested",
            extra={"pr_number": number, "action": payload.action},
        )
        return WebhookAck(
            message=f"PR #{number} {payload.action} - analysis queued",
            queued=True,
        )
