import logging
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional

from app.utils.datetime import parse_datetime

from .base import (
    WebhookProviderInterface,
    branch_matches,
    branch_mismatch,
    optional_id,
    strip_ref,
)
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

MERGE_REQUEST_ACTIONS = {"open", "reopen", "update"}

STATUS_MAP = {
    "created": BuildStatus.PENDING,
    "waiting_for_resource": BuildStatus.PENDING,
    "preparing": BuildStatus.PENDING,
    "pending": BuildStatus.PENDING,
    "manual": BuildStatus.PENDING,
    "scheduled": BuildStatus.PENDING,
    "running": BuildStatus.RUNNING,
    "success": BuildStatus.SUCCESS,
    "failed": BuildStatus.FAILURE,
    "canceled": BuildStatus.CANCELED,
    "skipped": BuildStatus.SKIPPED,
}


def normalize_status(raw_status: Optional[str]) -> BuildStatus:
    """Normalize GitLab pipeline/job status to BuildStatus enum."""
    return STATUS_MAP.get((raw_status or "").lower(), BuildStatus.UNKNOWN)


def _project_url(body: Dict[str, Any]) -> Optional[str]:
    project = body.get("project") or {}
    repository = body.get("repository") or {}
    return project.get("web_url") or repository.get("homepage")


def _commit_author(commit: Dict[str, Any]) -> Optional[CommitAuthor]:
    author = commit.get("author")
    if isinstance(author, dict):
        return CommitAuthor(name=author.get("name"), email=author.get("email"))
    if commit.get("author_name"):
        return CommitAuthor(name=commit.get("author_name"), email=commit.get("author_email"))
    return None


def _head_commit(commits: List[Dict[str, Any]], sha: Optional[str]) -> Optional[Dict[str, Any]]:
    for commit in commits:
        if commit.get("id") == sha:
            return commit
    return commits[-1] if commits else None


@WebhookProviderRegistry.register(CIProvider.GITLAB)
class GitLabWebhookProvider(WebhookProviderInterface):
    event_header = "x-gitlab-event"
    signature_header = "x-gitlab-token"
    signature_scheme = SignatureScheme.RAW_TOKEN

    @property
    def provider_type(self) -> CIProvider:
        return CIProvider.GITLAB

    @property
    def name(self) -> str:
        return "GitLab CI"

    def identify(
        self,
        headers: Mapping[str, str],
        body: Dict[str, Any],
        query: Mapping[str, str],
        path_params: Mapping[str, str],
    ) -> WebhookTarget:
        event_type = self.event_type_from_headers(headers)
        if not event_type:
            raise self._malformed("Missing x-gitlab-event header")

        project_url = _project_url(body)
        if not project_url:
            raise self._malformed("Project URL not found in payload", event_type)

        return WebhookTarget(
            event_type=event_type,
            lookup=LookupMode.REPOSITORY_URL,
            key=project_url,
            delivery_id=headers.get("x-gitlab-event-uuid"),
        )

    def normalize(
        self,
        event_type: str,
        payload: Dict[str, Any],
        pipeline: "Pipeline",
    ) -> NormalizeResult:
        handlers = {
            "Push Hook": self._normalize_push,
            "Merge Request Hook": self._normalize_merge_request,
            "Pipeline Hook": self._normalize_pipeline,
            "Job Hook": self._normalize_job,
        }
        handler = handlers.get(event_type)
        if handler is None:
            return NormalizeResult.unsupported(event_type)
        return handler(payload, pipeline)

    def _normalize_push(self, payload: Dict[str, Any], pipeline: "Pipeline") -> NormalizeResult:
        branch = strip_ref(payload.get("ref"))
        if not branch_matches(pipeline, branch):
            return branch_mismatch(pipeline, branch)

        sha = payload.get("checkout_sha")
        if not sha:
            # Branch deletion carries no checkout commit
            return NormalizeResult.ignore("branch_deleted")

        commit = _head_commit(payload.get("commits") or [], sha) or {}
        author = _commit_author(commit)
        if author is None and payload.get("user_name"):
            author = CommitAuthor(
                name=payload.get("user_name"),
                email=payload.get("user_email"),
                avatar_url=payload.get("user_avatar"),
            )

        build = CanonicalBuild(
            external_id=sha,
            status=BuildStatus.PENDING,
            commit=CanonicalCommit(
                sha=sha,
                message=commit.get("message"),
                author=author,
                branch=branch,
                url=commit.get("url"),
            ),
            provider_url=commit.get("url"),
        )
        return self._event("Push Hook", pipeline, build, payload, match_by=MatchBy.COMMIT_SHA)

    def _normalize_merge_request(
        self, payload: Dict[str, Any], pipeline: "Pipeline"
    ) -> NormalizeResult:
        attrs = payload.get("object_attributes")
        if not attrs:
            raise self._malformed("Merge request event without object_attributes", "Merge Request Hook")

        action = attrs.get("action")
        if action not in MERGE_REQUEST_ACTIONS:
            return NormalizeResult.ignore(f"action_{action}_ignored")

        target_branch = attrs.get("target_branch")
        if not branch_matches(pipeline, target_branch):
            return branch_mismatch(pipeline, target_branch)

        last_commit = attrs.get("last_commit") or {}
        user = payload.get("user") or {}
        iid = attrs.get("iid")
        author = _commit_author(last_commit)
        if author is None and user:
            author = CommitAuthor(name=user.get("username"), avatar_url=user.get("avatar_url"))

        build = CanonicalBuild(
            external_id=f"mr-{iid}",
            status=BuildStatus.PENDING,
            commit=CanonicalCommit(
                sha=last_commit.get("id"),
                message=f"MR !{iid}: {attrs.get('title') or ''}".rstrip(),
                author=author,
                branch=attrs.get("source_branch"),
                url=attrs.get("url"),
            ),
            provider_url=attrs.get("url"),
        )
        return self._event("Merge Request Hook", pipeline, build, payload)

    def _normalize_pipeline(self, payload: Dict[str, Any], pipeline: "Pipeline") -> NormalizeResult:
        attrs = payload.get("object_attributes")
        if not attrs or not attrs.get("sha"):
            raise self._malformed("Pipeline event without object_attributes.sha", "Pipeline Hook")

        branch = attrs.get("ref")
        if not attrs.get("tag") and not branch_matches(pipeline, branch):
            return branch_mismatch(pipeline, branch)

        commit = payload.get("commit") or {}
        pipeline_url = attrs.get("url")
        if not pipeline_url and _project_url(payload) and attrs.get("id"):
            pipeline_url = f"{_project_url(payload)}/-/pipelines/{attrs['id']}"

        build = CanonicalBuild(
            external_id=optional_id(attrs.get("id")),
            status=normalize_status(attrs.get("status")),
            started_at=parse_datetime(attrs.get("created_at")),
            finished_at=parse_datetime(attrs.get("finished_at")),
            commit=CanonicalCommit(
                sha=attrs["sha"],
                message=commit.get("message"),
                author=_commit_author(commit),
                branch=branch,
                url=commit.get("url"),
            ),
            provider_url=pipeline_url,
        )
        return self._event("Pipeline Hook", pipeline, build, payload, match_by=MatchBy.COMMIT_SHA)

    def _normalize_job(self, payload: Dict[str, Any], pipeline: "Pipeline") -> NormalizeResult:
        sha = payload.get("sha")
        if not sha:
            raise self._malformed("Job event without sha", "Job Hook")

        status = normalize_status(payload.get("build_status"))
        # The pipeline event carries the final verdict, a finished job only means progress
        if status in (BuildStatus.SUCCESS, BuildStatus.SKIPPED):
            status = BuildStatus.RUNNING

        commit = payload.get("commit") or {}
        build = CanonicalBuild(
            external_id=str(payload["pipeline_id"]) if payload.get("pipeline_id") else None,
            status=status,
            started_at=parse_datetime(payload.get("build_started_at")),
            commit=CanonicalCommit(
                sha=sha,
                message=commit.get("message"),
                author=_commit_author(commit),
                branch=payload.get("ref"),
            ),
        )
        return self._event("Job Hook", pipeline, build, payload, match_by=MatchBy.COMMIT_SHA)
