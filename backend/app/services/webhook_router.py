"""
Webhook processing: identify, verify, normalize, reconcile.

One ``WebhookProcessor.process`` call handles one inbound delivery and always
returns a ``WebhookOutcome``. Every adapter or persistence error is converted
to an outcome here so the HTTP layer can answer with a definitive status.

States::

    RECEIVED -> IDENTIFIED -> VERIFIED -> NORMALIZED -> RECONCILED -> PUBLISHED
                                       \\-> ACKNOWLEDGED_IGNORED
    terminal rejections: REJECTED_MALFORMED, REJECTED_UNVERIFIED, FAILED
"""

import json
import logging
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel
from pymongo.database import Database

from app.ci_providers import WebhookProviderRegistry
from app.ci_providers.base import WebhookProviderInterface
from app.ci_providers.models import CIProvider, LookupMode, WebhookTarget
from app.config import settings
from app.database.availability import AlwaysAvailable
from app.entities.pipeline import Pipeline
from app.repositories.pipeline import PipelineRepository
from app.services.build_reconciler import BuildReconciler, ReconcileResult
from app.services.webhook_exceptions import (
    MalformedWebhookError,
    PipelineNotFoundError,
    ReconciliationError,
    WebhookVerificationError,
)

logger = logging.getLogger(__name__)


class WebhookState(str, Enum):
    RECEIVED = "received"
    IDENTIFIED = "identified"
    VERIFIED = "verified"
    NORMALIZED = "normalized"
    RECONCILED = "reconciled"
    PUBLISHED = "published"
    ACKNOWLEDGED_IGNORED = "acknowledged_ignored"
    REJECTED_UNVERIFIED = "rejected_unverified"
    REJECTED_MALFORMED = "rejected_malformed"
    FAILED = "failed"


SUCCESS_STATES = {WebhookState.PUBLISHED, WebhookState.ACKNOWLEDGED_IGNORED}


class WebhookOutcome(BaseModel):
    state: WebhookState
    status_code: int
    message: str
    provider: str
    event_type: Optional[str] = None
    pipeline_id: Optional[str] = None
    delivery_id: Optional[str] = None
    build: Optional[Dict[str, Any]] = None

    @property
    def success(self) -> bool:
        return self.state in SUCCESS_STATES

    def to_response(self) -> Dict[str, Any]:
        body = {
            "success": self.success,
            "message": self.message,
            "state": self.state.value,
            "provider": self.provider,
            "event_type": self.event_type,
        }
        if self.pipeline_id:
            body["pipeline_id"] = self.pipeline_id
        if self.build:
            body["build"] = self.build
        return body


def _build_summary(result: ReconcileResult) -> Dict[str, Any]:
    build = result.build
    return {
        "id": str(build.id),
        "build_number": build.build_number,
        "status": build.status,
        "created": result.created,
        "finalized": result.finalized,
    }


class _Context:
    """Mutable per-delivery state threaded through the pipeline steps."""

    def __init__(self, provider: CIProvider):
        self.provider = provider
        self.state = WebhookState.RECEIVED
        self.target: Optional[WebhookTarget] = None
        self.pipeline: Optional[Pipeline] = None

    @property
    def event_type(self) -> Optional[str]:
        return self.target.event_type if self.target else None

    @property
    def pipeline_id(self) -> Optional[str]:
        return str(self.pipeline.id) if self.pipeline else None

    def log_fields(self) -> str:
        return f"provider={self.provider.value} pipeline={self.pipeline_id} event={self.event_type}"

    def outcome(self, state: WebhookState, status_code: int, message: str, **extra: Any) -> WebhookOutcome:
        self.state = state
        return WebhookOutcome(
            state=state,
            status_code=status_code,
            message=message,
            provider=self.provider.value,
            event_type=self.event_type,
            pipeline_id=self.pipeline_id,
            delivery_id=self.target.delivery_id if self.target else None,
            **extra,
        )


class WebhookProcessor:
    def __init__(
        self,
        db: Database,
        reconciler: BuildReconciler,
        availability=None,
        require_secret: Optional[bool] = None,
    ):
        self.pipeline_repo = PipelineRepository(db)
        self.reconciler = reconciler
        self.availability = availability or AlwaysAvailable()
        self.require_secret = (
            settings.WEBHOOK_REQUIRE_SECRET if require_secret is None else require_secret
        )

    def process(
        self,
        provider: CIProvider,
        raw_body: bytes,
        headers: Mapping[str, str],
        query: Optional[Mapping[str, str]] = None,
        path_params: Optional[Mapping[str, str]] = None,
    ) -> WebhookOutcome:
        """
        Run one delivery through the state machine.

        Never raises: malformed input answers 400 (404 for an unknown
        pipeline), a bad signature 401, ignored events 200/202, and any
        processing failure 500.
        """
        ctx = _Context(provider)
        headers = {k.lower(): v for k, v in headers.items()}
        query = query or {}
        path_params = path_params or {}

        try:
            adapter = WebhookProviderRegistry.get(provider)
            return self._run(ctx, adapter, raw_body, headers, query, path_params)
        except PipelineNotFoundError as e:
            logger.warning(f"Webhook rejected {ctx.log_fields()}: {e.message}")
            return ctx.outcome(WebhookState.REJECTED_MALFORMED, 404, e.message)
        except MalformedWebhookError as e:
            logger.warning(f"Webhook rejected {ctx.log_fields()}: {e.message}")
            return ctx.outcome(WebhookState.REJECTED_MALFORMED, 400, e.message)
        except WebhookVerificationError as e:
            logger.warning(f"Webhook rejected {ctx.log_fields()}: {e.message}")
            return ctx.outcome(WebhookState.REJECTED_UNVERIFIED, 401, e.message)
        except ReconciliationError as e:
            logger.error(f"Webhook processing failed {ctx.log_fields()}: {e.message}")
            return ctx.outcome(WebhookState.FAILED, 500, "Failed to process webhook")
        except Exception as e:
            logger.exception(f"Unexpected webhook error {ctx.log_fields()}: {e}")
            return ctx.outcome(WebhookState.FAILED, 500, "Failed to process webhook")

    def _run(
        self,
        ctx: _Context,
        adapter: WebhookProviderInterface,
        raw_body: bytes,
        headers: Dict[str, str],
        query: Mapping[str, str],
        path_params: Mapping[str, str],
    ) -> WebhookOutcome:
        payload = self._parse_body(raw_body, ctx.provider)

        ctx.target = adapter.identify(headers, payload, query, path_params)
        ctx.state = WebhookState.IDENTIFIED

        ctx.pipeline = self._find_pipeline(ctx.provider, ctx.target)

        if not adapter.verify(raw_body, headers, ctx.pipeline.webhook_secret, self.require_secret):
            raise WebhookVerificationError(
                "Invalid webhook signature",
                provider=ctx.provider.value,
                event_type=ctx.event_type,
                pipeline_id=ctx.pipeline_id,
            )
        ctx.state = WebhookState.VERIFIED

        normalized = adapter.normalize(ctx.target.event_type, payload, ctx.pipeline)
        if normalized.is_ignored:
            logger.info(f"Webhook ignored {ctx.log_fields()}: {normalized.ignored_reason}")
            if not normalized.recognized:
                return ctx.outcome(
                    WebhookState.ACKNOWLEDGED_IGNORED,
                    202,
                    f"Event {ctx.event_type} not processed",
                )
            return ctx.outcome(WebhookState.ACKNOWLEDGED_IGNORED, 200, normalized.ignored_reason)
        ctx.state = WebhookState.NORMALIZED

        result = self.reconciler.reconcile(ctx.pipeline, normalized.event)
        if result.skipped:
            logger.info(f"Webhook ignored {ctx.log_fields()}: {result.skipped_reason}")
            return ctx.outcome(WebhookState.ACKNOWLEDGED_IGNORED, 200, result.skipped_reason)
        ctx.state = WebhookState.RECONCILED

        logger.info(
            f"Webhook processed {ctx.log_fields()} build=#{result.build.build_number} "
            f"status={result.build.status} created={result.created}"
        )
        return ctx.outcome(
            WebhookState.PUBLISHED,
            200,
            "Webhook processed successfully",
            build=_build_summary(result),
        )

    @staticmethod
    def _parse_body(raw_body: bytes, provider: CIProvider) -> Dict[str, Any]:
        if len(raw_body) > settings.WEBHOOK_MAX_BODY_BYTES:
            raise MalformedWebhookError("Payload too large", provider=provider.value)
        if not raw_body.strip():
            raise MalformedWebhookError("Empty payload", provider=provider.value)
        try:
            payload = json.loads(raw_body)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise MalformedWebhookError(f"Invalid JSON payload: {e}", provider=provider.value) from e
        if not isinstance(payload, dict):
            raise MalformedWebhookError("Payload must be a JSON object", provider=provider.value)
        return payload

    def _find_pipeline(self, provider: CIProvider, target: WebhookTarget) -> Pipeline:
        self.availability.ensure_available()
        if target.lookup == LookupMode.PIPELINE_ID:
            pipeline = self.pipeline_repo.find_active_by_id(target.key, provider=provider.value)
        else:
            pipeline = self.pipeline_repo.find_active_by_repository(provider.value, target.key)

        if pipeline is None:
            raise PipelineNotFoundError(
                "Pipeline not found",
                provider=provider.value,
                event_type=target.event_type,
            )
        return pipeline
