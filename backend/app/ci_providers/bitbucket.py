import logging
from typing import TYPE_CHECKING, Any, Dict, Mapping

from app.utils.datetime import parse_datetime

from .base import WebhookProviderInterface, branch_matches, branch_mismatch
from .factory import WebhookProviderRegistry
from .models import (
    BuildStatus,
    CanonicalBuild,
    CanonicalCommit,
    CIProvider,
    CommitAuthor,
    LookupMode,
    MatchBy,
    NormalizeResult,
    SignatureScheme,
    WebhookTarget,
)

if TYPE_CHECKING:
    from app.entities.pipeline import Pipeline

logger = logging.getLogger(__name__)

COMMIT_STATUS_EVENTS = {"repo:commit_status_created", "repo:commit_status_updated"}

STATE_MAP = {
    "INPROGRESS": BuildStatus.RUNNING,
    "SUCCESSFUL": BuildStatus.SUCCESS,
    "FAILED": BuildStatus.FAILURE,
    "STOPPED": BuildStatus.CANCELED,
}


def _author_from_raw(raw: str | None) -> CommitAuthor | None:
    # Bitbucket sends "Name <email>"
    if not raw:
        return None
    name, _, rest = raw.partition("<")
    return CommitAuthor(name=name.strip() or None, email=rest.rstrip(">").strip() or None)


@WebhookProviderRegistry.register(CIProvider.BITBUCKET)
class BitbucketWebhookProvider(WebhookProviderInterface):
    """Bitbucket Cloud: commit status updates from Pipelines and pushes."""

    event_header = "x-event-key"
    signature_header = "x-hub-signature"
    signature_scheme = SignatureScheme.HMAC_SHA256_PREFIXED

    @property
    def provider_type(self) -> CIProvider:
        return CIProvider.BITBUCKET

    @property
    def name(self) -> str:
        return "Bitbucket Pipelines"

    def identify(
        self,
        headers: Mapping[str, str],
        body: Dict[str, Any],
        query: Mapping[str, str],
        path_params: Mapping[str, str],
    ) -> WebhookTarget:
        event_type = self.event_type_from_headers(headers)
        if not event_type:
            raise self._malformed("Missing x-event-key header")

        links = (body.get("repository") or {}).get("links") or {}
        repo_url = (links.get("html") or {}).get("href")
        if not repo_url:
            raise self._malformed("Repository URL not found in payload", event_type)

        return WebhookTarget(
            event_type=event_type,
            lookup=LookupMode.REPOSITORY_URL,
            key=repo_url,
            delivery_id=headers.get("x-request-uuid"),
        )

    def normalize(
        self,
        event_type: str,
        payload: Dict[str, Any],
        pipeline: "Pipeline",
    ) -> NormalizeResult:
        if event_type == "repo:push":
            return self._normalize_push(payload, pipeline)
        if event_type in COMMIT_STATUS_EVENTS:
            return self._normalize_commit_status(event_type, payload, pipeline)
        return NormalizeResult.unsupported(event_type)

    def _normalize_push(self, payload: Dict[str, Any], pipeline: "Pipeline") -> NormalizeResult:
        changes = (payload.get("push") or {}).get("changes") or []
        new_ref = next((c.get("new") for c in changes if c.get("new")), None)
        if not new_ref:
            return NormalizeResult.ignore("branch_deleted")

        branch = new_ref.get("name")
        if not branch_matches(pipeline, branch):
            return branch_mismatch(pipeline, branch)

        target = new_ref.get("target") or {}
        sha = target.get("hash")
        if not sha:
            raise self._malformed("Push change without target hash", "repo:push")

        build = CanonicalBuild(
            external_id=sha,
            status=BuildStatus.PENDING,
            commit=CanonicalCommit(
                sha=sha,
                message=target.get("message"),
                author=_author_from_raw((target.get("author") or {}).get("raw")),
                branch=branch,
            ),
        )
        return self._event("repo:push", pipeline, build, payload, match_by=MatchBy.COMMIT_SHA)

    def _normalize_commit_status(
        self, event_type: str, payload: Dict[str, Any], pipeline: "Pipeline"
    ) -> NormalizeResult:
        commit_status = payload.get("commit_status")
        if not commit_status:
            raise self._malformed("Commit status event without commit_status", event_type)

        branch = commit_status.get("refname")
        if branch and not branch_matches(pipeline, branch):
            return branch_mismatch(pipeline, branch)

        commit = commit_status.get("commit") or {}
        status = STATE_MAP.get((commit_status.get("state") or "").upper(), BuildStatus.UNKNOWN)
        build = CanonicalBuild(
            status=status,
            started_at=parse_datetime(commit_status.get("created_on")),
            finished_at=parse_datetime(commit_status.get("updated_on"))
            if status in (BuildStatus.SUCCESS, BuildStatus.FAILURE, BuildStatus.CANCELED)
            else None,
            commit=CanonicalCommit(
                sha=commit.get("hash"),
                message=commit.get("message"),
                author=_author_from_raw((commit.get("author") or {}).get("raw")),
                branch=branch,
            ),
            provider_url=commit_status.get("url"),
        )
        if commit_status.get("key") and commit.get("hash"):
            build.external_id = f"{commit_status['key']}:{commit['hash']}"
        return self._event(event_type, pipeline, build, payload)
