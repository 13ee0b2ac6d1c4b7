import logging
from typing import TYPE_CHECKING, Any, Dict, Mapping

from app.utils.datetime import parse_datetime

from .base import WebhookProviderInterface, branch_matches, branch_mismatch, strip_ref
from .factory import WebhookProviderRegistry
from .models import (
    BuildStatus,
    CanonicalBuild,
    CanonicalCommit,
    CIProvider,
    CommitAuthor,
    NormalizeResult,
    SignatureScheme,
    WebhookTarget,
)

if TYPE_CHECKING:
    from app.entities.pipeline import Pipeline

logger = logging.getLogger(__name__)

RESULT_MAP = {
    "succeeded": BuildStatus.SUCCESS,
    "partiallysucceeded": BuildStatus.FAILURE,
    "failed": BuildStatus.FAILURE,
    "canceled": BuildStatus.CANCELED,
}


@WebhookProviderRegistry.register(CIProvider.AZURE)
class AzureDevOpsWebhookProvider(WebhookProviderInterface):
    """Azure DevOps service hooks, authenticated with HTTP Basic."""

    event_header = "x-vss-eventtype"
    signature_header = "authorization"
    signature_scheme = SignatureScheme.BASIC_AUTH_PASSWORD

    @property
    def provider_type(self) -> CIProvider:
        return CIProvider.AZURE

    @property
    def name(self) -> str:
        return "Azure DevOps"

    def identify(
        self,
        headers: Mapping[str, str],
        body: Dict[str, Any],
        query: Mapping[str, str],
        path_params: Mapping[str, str],
    ) -> WebhookTarget:
        event_type = body.get("eventType") or self.event_type_from_headers(headers)
        if not event_type:
            raise self._malformed("Azure DevOps event type not found")
        target = self._pipeline_id_target(event_type, headers, query, path_params)
        target.delivery_id = body.get("id")
        return target

    def normalize(
        self,
        event_type: str,
        payload: Dict[str, Any],
        pipeline: "Pipeline",
    ) -> NormalizeResult:
        if event_type != "build.complete":
            return NormalizeResult.unsupported(event_type)

        resource = payload.get("resource")
        if not resource or resource.get("id") is None:
            raise self._malformed("build.complete event without resource.id", event_type)

        branch = strip_ref(resource.get("sourceBranch"))
        if branch and not branch_matches(pipeline, branch):
            return branch_mismatch(pipeline, branch)

        requested_for = resource.get("requestedFor") or {}
        web_link = ((resource.get("_links") or {}).get("web") or {}).get("href")
        build = CanonicalBuild(
            external_id=str(resource["id"]),
            status=RESULT_MAP.get((resource.get("result") or "").lower(), BuildStatus.UNKNOWN),
            started_at=parse_datetime(resource.get("startTime")),
            finished_at=parse_datetime(resource.get("finishTime"), default_now=True),
            commit=CanonicalCommit(
                sha=resource.get("sourceVersion"),
                author=CommitAuthor(
                    name=requested_for.get("displayName"),
                    email=requested_for.get("uniqueName"),
                )
                if requested_for
                else None,
                branch=branch,
            ),
            provider_url=web_link or resource.get("url"),
        )
        return self._event(event_type, pipeline, build, payload)
