import logging
from typing import TYPE_CHECKING, Any, Dict, Mapping, Optional

from app.utils.datetime import parse_datetime

from .base import WebhookProviderInterface, branch_matches, branch_mismatch
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

STATUS_MAP = {
    "success": BuildStatus.SUCCESS,
    "failed": BuildStatus.FAILURE,
    "error": BuildStatus.FAILURE,
    "failing": BuildStatus.FAILURE,
    "infrastructure_fail": BuildStatus.FAILURE,
    "timedout": BuildStatus.FAILURE,
    "canceled": BuildStatus.CANCELED,
    "not_run": BuildStatus.SKIPPED,
    "running": BuildStatus.RUNNING,
    "on_hold": BuildStatus.PENDING,
    "queued": BuildStatus.PENDING,
}


def normalize_status(raw_status: Optional[str]) -> BuildStatus:
    """Normalize CircleCI workflow/job status to BuildStatus enum."""
    return STATUS_MAP.get((raw_status or "").lower(), BuildStatus.UNKNOWN)


@WebhookProviderRegistry.register(CIProvider.CIRCLECI)
class CircleCIWebhookProvider(WebhookProviderInterface):
    event_header = "circleci-event-type"
    signature_header = "circleci-signature"
    signature_scheme = SignatureScheme.HMAC_SHA256_HEX
    signature_optional = True

    @property
    def provider_type(self) -> CIProvider:
        return CIProvider.CIRCLECI

    @property
    def name(self) -> str:
        return "CircleCI"

    def identify(
        self,
        headers: Mapping[str, str],
        body: Dict[str, Any],
        query: Mapping[str, str],
        path_params: Mapping[str, str],
    ) -> WebhookTarget:
        event_type = self.event_type_from_headers(headers) or body.get("type")
        if not event_type:
            raise self._malformed("CircleCI event type not found")
        target = self._pipeline_id_target(event_type, headers, query, path_params)
        target.delivery_id = body.get("id")
        return target

    def normalize(
        self,
        event_type: str,
        payload: Dict[str, Any],
        pipeline: "Pipeline",
    ) -> NormalizeResult:
        if event_type not in ("workflow-completed", "job-completed"):
            return NormalizeResult.unsupported(event_type)

        workflow = payload.get("workflow")
        if not workflow or not workflow.get("id"):
            raise self._malformed("CircleCI payload without workflow.id", event_type)

        vcs = (payload.get("pipeline") or {}).get("vcs") or {}
        branch = vcs.get("branch")
        if branch and not branch_matches(pipeline, branch):
            return branch_mismatch(pipeline, branch)

        commit_data = vcs.get("commit") or {}
        author_data = commit_data.get("author") or {}
        commit = CanonicalCommit(
            sha=vcs.get("revision"),
            message=commit_data.get("subject"),
            author=CommitAuthor(name=author_data.get("name"), email=author_data.get("email"))
            if author_data
            else None,
            branch=branch,
        )

        if event_type == "workflow-completed":
            build = CanonicalBuild(
                external_id=workflow["id"],
                status=normalize_status(workflow.get("status")),
                started_at=parse_datetime(workflow.get("created_at")),
                finished_at=parse_datetime(workflow.get("stopped_at"), default_now=True),
                commit=commit,
                provider_url=workflow.get("url"),
            )
        else:
            job = payload.get("job") or {}
            status = normalize_status(job.get("status"))
            # Jobs report progress of the workflow, not its outcome
            if status in (BuildStatus.SUCCESS, BuildStatus.SKIPPED):
                status = BuildStatus.RUNNING
            build = CanonicalBuild(
                external_id=workflow["id"],
                status=status,
                started_at=parse_datetime(job.get("started_at")),
                commit=commit,
                provider_url=workflow.get("url"),
            )
        return self._event(event_type, pipeline, build, payload)
