"""GitHub App webhook handler.

Receives GitHub App webhook events, validates signatures, and dispatches
installation lifecycle and pull request events.
"""

import json
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from mantle.core.logging import correlation_id_ctx, delivery_id_ctx
from mantle.core.security import get_verified_github_payload
from mantle.database import get_db_session
from mantle.observability.metrics import METRICS
from mantle.services.ingestion_trigger import CeleryIngestionTrigger, get_ingestion_trigger
from mantle.services.installation_reconciler import InstallationReconciler
from mantle.services.installation_store import InstallationStore
from mantle.services.repo_store import RepoStore
from mantle.services.webhook_dispatcher import InvalidWebhookPayloadError, WebhookDispatcher

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


def get_webhook_dispatcher(
    session: AsyncSession = Depends(get_db_session),
    trigger: CeleryIngestionTrigger = Depends(get_ingestion_trigger),
) -> WebhookDispatcher:
    reconciler = InstallationReconciler(
        installations=InstallationStore(session),
        repos=RepoStore(session),
        trigger=trigger,
    )
    return WebhookDispatcher(reconciler)


@router.post("/github")
async def github_webhook(
    verified_payload: tuple[bytes, str | None, str | None] = Depends(get_verified_github_payload),
    dispatcher: WebhookDispatcher = Depends(get_webhook_dispatcher),
    session: AsyncSession = Depends(get_db_session),
) -> JSONResponse:
    """
    GitHub App webhook endpoint.

    Handles:
    - ping: webhook configured
    - pull_request: opened / synchronize are queued for analysis
    - installation: created / suspended / unsuspended / deleted
    - installation_repositories: repos added to or removed from an install

    Returns:
        - 200: Event processed or acknowledged
        - 400: Invalid JSON or payload shape
        - 401: Missing or invalid signature (handled by dependency)
        - 500: Secret not configured, or a handler failed
    """
    raw_body, event_type, delivery_id = verified_payload

    if delivery_id:
        correlation_id_ctx.set(delivery_id)
        delivery_id_ctx.set(delivery_id)

    try:
        payload = json.loads(raw_body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        logger.warning(
            "Invalid JSON payload",
            extra={"error": str(e), "delivery_id": delivery_id},
        )
        METRICS.webhook_events_total.labels(event=str(event_type), outcome="invalid").inc()
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid JSON payload",
        )

    logger.info(
        "Received GitHub webhook",
        extra={"event_type": event_type, "delivery_id": delivery_id},
    )

    try:
        ack = await dispatcher.dispatch(event_type, payload)
    except InvalidWebhookPayloadError as e:
        logger.warning(
            "Webhook payload failed validation",
            extra={"event_type": event_type, "delivery_id": delivery_id, "errors": e.errors},
        )
        await session.rollback()
        METRICS.webhook_events_total.labels(event=str(event_type), outcome="invalid").inc()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except Exception as e:
        logger.error(
            "Error handling webhook",
            extra={"event_type": event_type, "delivery_id": delivery_id, "error": str(e)},
            exc_info=True,
        )
        await session.rollback()
        METRICS.webhook_events_total.labels(event=str(event_type), outcome="error").inc()
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Internal error processing webhook"},
        )

    METRICS.webhook_events_total.labels(event=str(event_type), outcome="processed").inc()
    return JSONResponse(content=ack.body())
