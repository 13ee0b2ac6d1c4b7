import logging
from datetime import timedelta
from typing import TYPE_CHECKING, Any, Dict, Mapping, Optional

from app.utils.datetime import parse_datetime, utc_now

from .base import WebhookProviderInterface, branch_matches, branch_mismatch, strip_ref
from .factory import WebhookProviderRegistry
from .models import (
    BuildStatus,
    CanonicalBuild,
    CanonicalCommit,
    CIProvider,
    NormalizeResult,
    SignatureScheme,
    WebhookTarget,
)

if TYPE_CHECKING:
    from app.entities.pipeline import Pipeline

logger = logging.getLogger(__name__)

# Notification plugin sends no event header, every delivery is a build phase change
JENKINS_EVENT_TYPE = "build"

PHASE_MAP = {
    "QUEUED": BuildStatus.PENDING,
    "STARTED": BuildStatus.RUNNING,
}

RESULT_MAP = {
    "SUCCESS": BuildStatus.SUCCESS,
    "FAILURE": BuildStatus.FAILURE,
    "UNSTABLE": BuildStatus.FAILURE,
    "ABORTED": BuildStatus.CANCELED,
    "NOT_BUILT": BuildStatus.SKIPPED,
}


def normalize_status(phase: Optional[str], result: Optional[str]) -> BuildStatus:
    """Map a notification plugin phase/status pair to BuildStatus."""
    phase = (phase or "").upper()
    if phase in PHASE_MAP:
        return PHASE_MAP[phase]
    if phase in ("COMPLETED", "FINALIZED"):
        return RESULT_MAP.get((result or "").upper(), BuildStatus.UNKNOWN)
    return BuildStatus.UNKNOWN


@WebhookProviderRegistry.register(CIProvider.JENKINS)
class JenkinsWebhookProvider(WebhookProviderInterface):
    signature_header = "x-jenkins-token"
    signature_scheme = SignatureScheme.RAW_TOKEN

    @property
    def provider_type(self) -> CIProvider:
        return CIProvider.JENKINS

    @property
    def name(self) -> str:
        return "Jenkins"

    def identify(
        self,
        headers: Mapping[str, str],
        body: Dict[str, Any],
        query: Mapping[str, str],
        path_params: Mapping[str, str],
    ) -> WebhookTarget:
        return self._pipeline_id_target(JENKINS_EVENT_TYPE, headers, query, path_params)

    def normalize(
        self,
        event_type: str,
        payload: Dict[str, Any],
        pipeline: "Pipeline",
    ) -> NormalizeResult:
        if event_type != JENKINS_EVENT_TYPE:
            return NormalizeResult.unsupported(event_type)

        build_data = payload.get("build")
        if not isinstance(build_data, dict) or build_data.get("number") is None:
            raise self._malformed("Jenkins payload without build.number", event_type)

        scm = build_data.get("scm") or {}
        branch = strip_ref(scm.get("branch"))
        if branch and not branch_matches(pipeline, branch):
            return branch_mismatch(pipeline, branch)

        phase = (build_data.get("phase") or "").upper()
        status = normalize_status(phase, build_data.get("status"))

        started_at = parse_datetime(build_data.get("timestamp"))
        if started_at is None and phase == "STARTED":
            started_at = utc_now()

        finished_at = None
        if phase in ("COMPLETED", "FINALIZED"):
            duration_ms = build_data.get("duration")
            if started_at is not None and isinstance(duration_ms, (int, float)) and duration_ms > 0:
                finished_at = started_at + timedelta(milliseconds=duration_ms)
            else:
                finished_at = utc_now()

        build = CanonicalBuild(
            external_id=str(build_data["number"]),
            status=status,
            started_at=started_at,
            finished_at=finished_at,
            commit=CanonicalCommit(sha=scm.get("commit"), branch=branch),
            provider_url=build_data.get("full_url"),
        )
        return self._event(event_type, pipeline, build, payload)
