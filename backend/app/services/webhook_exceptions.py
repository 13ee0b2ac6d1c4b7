"""Custom exceptions for webhook ingestion and build reconciliation."""
from __future__ import annotations

from typing import Optional


class WebhookError(Exception):
    """Base exception for webhook failures."""

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        event_type: Optional[str] = None,
        pipeline_id: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.provider = provider
        self.event_type = event_type
        self.pipeline_id = pipeline_id


class MalformedWebhookError(WebhookError):
    """Raised when the payload does not identify a target or lacks required fields."""


class PipelineNotFoundError(MalformedWebhookError):
    """Raised when the identified target matches no active pipeline."""


class WebhookVerificationError(WebhookError):
    """Raised when the signature or token does not match the pipeline secret."""


class ReconciliationError(WebhookError):
    """Raised when a canonical event could not be merged into stored state."""


class StoreUnavailableError(ReconciliationError):
    """Raised when the document store reports itself unavailable."""
