import logging
from typing import TYPE_CHECKING, Any, Dict, Mapping, Optional

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

PULL_REQUEST_ACTIONS = {"opened", "reopened", "synchronize"}

CONCLUSION_MAP = {
    "success": BuildStatus.SUCCESS,
    "failure": BuildStatus.FAILURE,
    "timed_out": BuildStatus.FAILURE,
    "action_required": BuildStatus.FAILURE,
    "startup_failure": BuildStatus.FAILURE,
    "cancelled": BuildStatus.CANCELED,
    "skipped": BuildStatus.SKIPPED,
    "neutral": BuildStatus.SUCCESS,
    "stale": BuildStatus.CANCELED,
}

RUN_STATUS_MAP = {
    "in_progress": BuildStatus.RUNNING,
    "queued": BuildStatus.PENDING,
    "waiting": BuildStatus.PENDING,
    "pending": BuildStatus.PENDING,
    "requested": BuildStatus.PENDING,
}


def map_run_status(status: Optional[str], conclusion: Optional[str]) -> BuildStatus:
    """Map a workflow run/job/check status and conclusion to BuildStatus."""
    status = (status or "").lower()
    if status == "completed":
        return CONCLUSION_MAP.get((conclusion or "").lower(), BuildStatus.UNKNOWN)
    return RUN_STATUS_MAP.get(status, BuildStatus.UNKNOWN)


def _author(data: Optional[Dict[str, Any]], avatar_url: Optional[str] = None) -> Optional[CommitAuthor]:
    if not data:
        return None
    return CommitAuthor(
        name=data.get("name") or data.get("login"),
        email=data.get("email"),
        avatar_url=avatar_url or data.get("avatar_url"),
    )


@WebhookProviderRegistry.register(CIProvider.GITHUB)
class GitHubWebhookProvider(WebhookProviderInterface):
    event_header = "x-github-event"
    signature_header = "x-hub-signature-256"
    signature_scheme = SignatureScheme.HMAC_SHA256_PREFIXED
    # GitHub always signs deliveries
    allows_unsigned_when_no_secret = False

    @property
    def provider_type(self) -> CIProvider:
        return CIProvider.GITHUB

    @property
    def name(self) -> str:
        return "GitHub Actions"

    def identify(
        self,
        headers: Mapping[str, str],
        body: Dict[str, Any],
        query: Mapping[str, str],
        path_params: Mapping[str, str],
    ) -> WebhookTarget:
        event_type = self.event_type_from_headers(headers)
        if not event_type:
            raise self._malformed("Missing x-github-event header")

        repository = body.get("repository") or {}
        repo_url = repository.get("html_url")
        if not repo_url:
            raise self._malformed("Repository URL not found in payload", event_type)

        return WebhookTarget(
            event_type=event_type,
            lookup=LookupMode.REPOSITORY_URL,
            key=repo_url,
            delivery_id=headers.get("x-github-delivery"),
        )

    def normalize(
        self,
        event_type: str,
        payload: Dict[str, Any],
        pipeline: "Pipeline",
    ) -> NormalizeResult:
        if event_type == "ping":
            return NormalizeResult.ignore("ping")
        if event_type == "push":
            return self._normalize_push(payload, pipeline)
        if event_type == "pull_request":
            return self._normalize_pull_request(payload, pipeline)
        if event_type == "workflow_run":
            return self._normalize_workflow_run(payload, pipeline)
        if event_type == "workflow_job":
            return self._normalize_workflow_job(payload, pipeline)
        if event_type == "check_run":
            return self._normalize_check_run(payload, pipeline)
        return NormalizeResult.unsupported(event_type)

    def _normalize_push(self, payload: Dict[str, Any], pipeline: "Pipeline") -> NormalizeResult:
        branch = strip_ref(payload.get("ref"))
        if not branch_matches(pipeline, branch):
            return branch_mismatch(pipeline, branch)

        head_commit = payload.get("head_commit")
        if not head_commit:
            if payload.get("deleted"):
                return NormalizeResult.ignore("branch_deleted")
            raise self._malformed("No head commit in push event", "push")

        sha = payload.get("after") or head_commit.get("id")
        sender = payload.get("sender") or {}
        build = CanonicalBuild(
            external_id=sha,
            status=BuildStatus.PENDING,
            commit=CanonicalCommit(
                sha=sha,
                message=head_commit.get("message"),
                author=_author(head_commit.get("author"), sender.get("avatar_url")),
                branch=branch,
                url=head_commit.get("url"),
            ),
            provider_url=head_commit.get("url"),
        )
        return self._event("push", pipeline, build, payload, match_by=MatchBy.COMMIT_SHA)

    def _normalize_pull_request(
        self, payload: Dict[str, Any], pipeline: "Pipeline"
    ) -> NormalizeResult:
        action = payload.get("action")
        if action not in PULL_REQUEST_ACTIONS:
            return NormalizeResult.ignore(f"action_{action}_ignored")

        pr = payload.get("pull_request")
        if not pr:
            raise self._malformed("No pull_request object in event", "pull_request")

        base_branch = (pr.get("base") or {}).get("ref")
        if not branch_matches(pipeline, base_branch):
            return branch_mismatch(pipeline, base_branch)

        head = pr.get("head") or {}
        number = pr.get("number") or payload.get("number")
        user = pr.get("user") or {}
        build = CanonicalBuild(
            external_id=f"pr-{number}",
            status=BuildStatus.PENDING,
            commit=CanonicalCommit(
                sha=head.get("sha"),
                message=f"PR #{number}: {pr.get('title') or ''}".rstrip(),
                author=_author(user),
                branch=head.get("ref"),
                url=pr.get("html_url"),
            ),
            provider_url=pr.get("html_url"),
        )
        return self._event("pull_request", pipeline, build, payload)

    def _normalize_workflow_run(
        self, payload: Dict[str, Any], pipeline: "Pipeline"
    ) -> NormalizeResult:
        run = payload.get("workflow_run")
        if not run or not run.get("head_sha"):
            raise self._malformed("workflow_run payload without head_sha", "workflow_run")

        status = map_run_status(run.get("status"), run.get("conclusion"))
        head_commit = run.get("head_commit") or {}
        attempt = run.get("run_attempt") or 1
        retry = attempt > 1
        run_id = optional_id(run.get("id"))
        if run_id and retry:
            run_id = f"{run_id}:{attempt}"

        build = CanonicalBuild(
            external_id=run_id,
            status=status,
            started_at=parse_datetime(run.get("run_started_at") or run.get("created_at")),
            commit=CanonicalCommit(
                sha=run["head_sha"],
                branch=run.get("head_branch"),
            ),
            provider_url=run.get("html_url"),
        )
        if head_commit.get("message"):
            build.commit.message = head_commit["message"]
        if head_commit.get("author"):
            build.commit.author = _author(head_commit["author"])
        if run.get("status") == "completed":
            build.finished_at = parse_datetime(run.get("updated_at"), default_now=True)

        return self._event(
            "workflow_run",
            pipeline,
            build,
            payload,
            match_by=MatchBy.EXTERNAL_ID if retry else MatchBy.COMMIT_SHA,
            retry=retry,
        )

    def _normalize_workflow_job(
        self, payload: Dict[str, Any], pipeline: "Pipeline"
    ) -> NormalizeResult:
        job = payload.get("workflow_job")
        if not job or not job.get("head_sha"):
            raise self._malformed("workflow_job payload without head_sha", "workflow_job")

        status = map_run_status(job.get("status"), job.get("conclusion"))
        # A single job finishing does not finish the run
        if status in (BuildStatus.SUCCESS, BuildStatus.SKIPPED):
            status = BuildStatus.RUNNING

        build = CanonicalBuild(
            external_id=optional_id(job.get("run_id") or job.get("id")),
            status=status,
            started_at=parse_datetime(job.get("started_at")),
            commit=CanonicalCommit(sha=job["head_sha"], branch=job.get("head_branch")),
            provider_url=job.get("html_url"),
        )
        return self._event("workflow_job", pipeline, build, payload, match_by=MatchBy.COMMIT_SHA)

    def _normalize_check_run(self, payload: Dict[str, Any], pipeline: "Pipeline") -> NormalizeResult:
        action = payload.get("action")
        if action != "completed":
            return NormalizeResult.ignore(f"action_{action}_ignored")

        check_run = payload.get("check_run")
        if not check_run or not check_run.get("head_sha"):
            raise self._malformed("check_run payload without head_sha", "check_run")

        build = CanonicalBuild(
            status=CONCLUSION_MAP.get((check_run.get("conclusion") or "").lower(), BuildStatus.UNKNOWN),
            finished_at=parse_datetime(check_run.get("completed_at"), default_now=True),
            commit=CanonicalCommit(sha=check_run["head_sha"]),
            provider_url=check_run.get("html_url"),
        )
        return self._event(
            "check_run",
            pipeline,
            build,
            payload,
            match_by=MatchBy.COMMIT_SHA,
            create_if_missing=False,
        )
