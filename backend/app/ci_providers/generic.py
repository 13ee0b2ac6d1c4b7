import logging
from typing import TYPE_CHECKING, Any, Dict, Mapping

from app.utils.datetime import parse_datetime

from .base import WebhookProviderInterface, branch_matches, branch_mismatch
from .factory import WebhookProviderRegistry
from .models import (
    CanonicalBuild,
    CanonicalCommit,
    CIProvider,
    CommitAuthor,
    NormalizeResult,
    SignatureScheme,
    WebhookTarget,
    coerce_status,
)

if TYPE_CHECKING:
    from app.entities.pipeline import Pipeline

logger = logging.getLogger(__name__)

GENERIC_EVENT_TYPE = "build"


def _author(raw: Any) -> CommitAuthor | None:
    if isinstance(raw, dict):
        return CommitAuthor(
            name=raw.get("name"), email=raw.get("email"), avatar_url=raw.get("avatarUrl")
        )
    if isinstance(raw, str) and raw:
        return CommitAuthor(name=raw)
    return None


@WebhookProviderRegistry.register(CIProvider.GENERIC)
class GenericWebhookProvider(WebhookProviderInterface):
    """
    Provider-neutral webhook for custom CI scripts.

    Payload::

        {
          "externalId": "42", "status": "running",
          "startedAt": "...", "finishedAt": "...", "url": "...",
          "commit": {"sha": "...", "message": "...", "author": "...", "branch": "main"},
          "comment": "optional note appended to the build",
          "retry": false
        }
    """

    event_header = "x-webhook-event"
    signature_header = "x-webhook-token"
    signature_scheme = SignatureScheme.RAW_TOKEN

    @property
    def provider_type(self) -> CIProvider:
        return CIProvider.GENERIC

    @property
    def name(self) -> str:
        return "Generic"

    def identify(
        self,
        headers: Mapping[str, str],
        body: Dict[str, Any],
        query: Mapping[str, str],
        path_params: Mapping[str, str],
    ) -> WebhookTarget:
        event_type = self.event_type_from_headers(headers) or body.get("event") or GENERIC_EVENT_TYPE
        return self._pipeline_id_target(event_type, headers, query, path_params)

    def normalize(
        self,
        event_type: str,
        payload: Dict[str, Any],
        pipeline: "Pipeline",
    ) -> NormalizeResult:
        if event_type != GENERIC_EVENT_TYPE:
            return NormalizeResult.unsupported(event_type)

        commit_data = payload.get("commit") or {}
        if not isinstance(commit_data, dict):
            raise self._malformed("commit must be an object", event_type)

        external_id = payload.get("externalId")
        sha = commit_data.get("sha")
        if not external_id and not sha:
            raise self._malformed("Either externalId or commit.sha is required", event_type)

        branch = commit_data.get("branch")
        if branch and not branch_matches(pipeline, branch):
            return branch_mismatch(pipeline, branch)

        build = CanonicalBuild(
            external_id=str(external_id) if external_id else None,
            status=coerce_status(payload.get("status")) if payload.get("status") else None,
            started_at=parse_datetime(payload.get("startedAt")),
            finished_at=parse_datetime(payload.get("finishedAt")),
            commit=CanonicalCommit(
                sha=sha,
                message=commit_data.get("message"),
                author=_author(commit_data.get("author")),
                branch=branch,
                url=commit_data.get("url"),
            ),
            provider_url=payload.get("url"),
            comment=payload.get("comment") or None,
        )
        return self._event(
            event_type, pipeline, build, payload, retry=bool(payload.get("retry"))
        )
