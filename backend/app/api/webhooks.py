"""CI/CD provider webhook endpoints."""

import logging
from typing import Dict, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pymongo.database import Database

from app.ci_providers.models import CIProvider
from app.database.availability import get_availability
from app.database.mongo import get_db
from app.services.build_reconciler import BuildReconciler
from app.services.event_publisher import get_event_publisher
from app.services.notification_service import NotificationService
from app.services.webhook_router import WebhookProcessor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/webhooks", tags=["Webhooks"])


def get_webhook_processor(db: Database = Depends(get_db)) -> WebhookProcessor:
    availability = get_availability()
    publisher = get_event_publisher()
    reconciler = BuildReconciler(
        db,
        publisher=publisher,
        notifier=NotificationService(db, publisher=publisher),
        availability=availability,
    )
    return WebhookProcessor(db, reconciler, availability=availability)


async def _handle(
    provider: CIProvider,
    request: Request,
    processor: WebhookProcessor,
    path_params: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    body = await request.body()
    outcome = processor.process(
        provider,
        body,
        request.headers,
        query=dict(request.query_params),
        path_params=path_params,
    )
    return JSONResponse(status_code=outcome.status_code, content=outcome.to_response())


@router.post("/github")
async def github_webhook(
    request: Request,
    processor: WebhookProcessor = Depends(get_webhook_processor),
):
    """GitHub push, pull_request, workflow_run, workflow_job and check_run events."""
    return await _handle(CIProvider.GITHUB, request, processor)


@router.post("/gitlab")
async def gitlab_webhook(
    request: Request,
    processor: WebhookProcessor = Depends(get_webhook_processor),
):
    """GitLab push, merge request, pipeline and job hooks."""
    return await _handle(CIProvider.GITLAB, request, processor)


@router.post("/jenkins")
async def jenkins_webhook(
    request: Request,
    processor: WebhookProcessor = Depends(get_webhook_processor),
):
    """Jenkins Notification plugin; pipeline id via ?pipelineId= or X-Pipeline-Id."""
    return await _handle(CIProvider.JENKINS, request, processor)


@router.post("/circleci")
async def circleci_webhook(
    request: Request,
    processor: WebhookProcessor = Depends(get_webhook_processor),
):
    """CircleCI workflow-completed and job-completed webhooks."""
    return await _handle(CIProvider.CIRCLECI, request, processor)


@router.post("/bitbucket")
async def bitbucket_webhook(
    request: Request,
    processor: WebhookProcessor = Depends(get_webhook_processor),
):
    return await _handle(CIProvider.BITBUCKET, request, processor)


@router.post("/azure")
async def azure_webhook(
    request: Request,
    processor: WebhookProcessor = Depends(get_webhook_processor),
):
    return await _handle(CIProvider.AZURE, request, processor)


@router.post("/generic/{pipeline_id}")
async def generic_webhook(
    pipeline_id: str,
    request: Request,
    processor: WebhookProcessor = Depends(get_webhook_processor),
):
    """Provider-neutral build updates for custom CI scripts."""
    return await _handle(
        CIProvider.GENERIC, request, processor, path_params={"pipeline_id": pipeline_id}
    )
