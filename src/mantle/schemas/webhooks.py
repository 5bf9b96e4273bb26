"""Response bodies returned to GitHub by the webhook endpoint."""

from pydantic import BaseModel


class WebhookAck(BaseModel):
    """Acknowledgement for a processed delivery.

    Optional fields are dropped from the JSON body when unset.
    """

    message: str
    queued: bool | None = None
    installation_id: str | None = None
    auto_linked: bool | None = None
    cache_updated: bool | None = None
    triggered: int | None = None
    skipped: int | None = None

    def body(self) -> dict:
        return self.model_dump(exclude_none=True)
