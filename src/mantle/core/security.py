"""Security utilities for webhook signature verification.

GitHub uses HMAC-SHA256 for webhook signature verification.
Reference: https://docs.github.com/en/webhooks/using-webhooks/validating-webhook-deliveries
"""
import hashlib
import hmac
import logging
import re
from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request, status

from mantle.config import Settings, get_settings
from mantle.observability.metrics import METRICS

logger = logging.getLogger(__name__)
security_logger = logging.getLogger("mantle.security")

SIGNATURE_PREFIX = "sha256="
_HEX_DIGEST_RE = re.compile(r"^[0-9a-f]{64}$")


class WebhookSignatureError(Exception):
    """Raised when a webhook request fails authentication."""

    pass


class MissingSignatureError(WebhookSignatureError):
    """The X-Hub-Signature-256 header was not sent."""

    pass


class WebhookSecretNotConfiguredError(Exception):
    """The server has no webhook secret to verify against."""

    pass


def compute_github_signature(payload: bytes, secret: str) -> str:
    """Return the ``sha256=<hex>`` signature GitHub would send for ``payload``."""
    digest = hmac.new(
        key=secret.encode("utf-8"),
        msg=payload,
        digestmod=hashlib.sha256,
    ).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_github_signature(
    payload: bytes,
    signature_header: str | None,
    secret: str,
) -> bool:
    """
    Verify GitHub webhook signature using HMAC-SHA256.

    Args:
        payload: Raw request body bytes, exactly as received
        signature_header: X-Hub-Signature-256 header value
        secret: Webhook secret configured in GitHub

    Returns:
        True if the signature matches, False if it is malformed or wrong

    Raises:
        MissingSignatureError: If the signature header is absent
        WebhookSecretNotConfiguredError: If no secret is configured
    """
    if not signature_header:
        raise MissingSignatureError("Missing X-Hub-Signature-256 header")

    if not secret:
        raise WebhookSecretNotConfiguredError("GITHUB_WEBHOOK_SECRET is not configured")

    if not signature_header.startswith(SIGNATURE_PREFIX):
        return False

    received_digest = signature_header[len(SIGNATURE_PREFIX) :]
    if not _HEX_DIGEST_RE.match(received_digest):
        return False

    expected_digest = compute_github_signature(payload, secret)[len(SIGNATURE_PREFIX) :]

    # Use timing-safe comparison to prevent timing attacks
    return hmac.compare_digest(received_digest, expected_digest)


def client_ip(request: Request) -> str:
    """First hop of X-Forwarded-For, falling back to the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client is not None:
        return request.client.host
    return "unknown"


def log_security_event(
    event: str,
    *,
    event_type: str | None,
    delivery_id: str | None,
    ip: str,
    **details: str,
) -> None:
    """Emit a structured security record for monitoring and alerting."""
    METRICS.webhook_signature_rejections_total.labels(reason=event).inc()
    security_logger.error(
        "Webhook security event",
        extra={
            "security_event": event,
            "event_type": event_type,
            "delivery_id": delivery_id,
            "client_ip": ip,
            **details,
        },
    )


async def get_verified_github_payload(
    request: Request,
    x_hub_signature_256: Annotated[str | None, Header()] = None,
    x_github_event: Annotated[str | None, Header()] = None,
    x_github_delivery: Annotated[str | None, Header()] = None,
    settings: Settings = Depends(get_settings),
) -> tuple[bytes, str | None, str | None]:
    """
    FastAPI dependency for verified GitHub webhook payloads.

    Reads the raw request body, verifies the signature, and returns
    the payload along with event type and delivery ID.

    Raises:
        HTTPException 401: If the signature is missing or invalid
        HTTPException 500: If the webhook secret is not configured
    """
    body = await request.body()
    ip = client_ip(request)

    try:
        valid = verify_github_signature(
            payload=body,
            signature_header=x_hub_signature_256,
            secret=settings.github_webhook_secret,
        )
    except MissingSignatureError:
        log_security_event(
            "signature_missing",
            event_type=x_github_event,
            delivery_id=x_github_delivery,
            ip=ip,
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing signature",
        )
    except WebhookSecretNotConfiguredError:
        log_security_event(
            "secret_missing",
            event_type=x_github_event,
            delivery_id=x_github_delivery,
            ip=ip,
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook not configured",
        )

    if not valid:
        log_security_event(
            "signature_invalid",
            event_type=x_github_event,
            delivery_id=x_github_delivery,
            ip=ip,
            signature_prefix=f"{(x_hub_signature_256 or '')[:16]}...",
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid signature",
        )

    logger.debug(
        "Webhook signature verified",
        extra={"delivery_id": x_github_delivery, "event_type": x_github_event},
    )
    return body, x_github_event, x_github_delivery
