from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Dict, Mapping, Optional

from app.services import signature
from app.services.webhook_exceptions import MalformedWebhookError

from .models import (
    CanonicalBuild,
    CanonicalEvent,
    CIProvider,
    LookupMode,
    MatchBy,
    NormalizeResult,
    SignatureScheme,
    WebhookTarget,
)

if TYPE_CHECKING:
    from app.entities.pipeline import Pipeline

PIPELINE_ID_QUERY_PARAM = "pipelineId"
PIPELINE_ID_HEADER = "x-pipeline-id"


class WebhookProviderInterface(ABC):
    """
    Translates one provider's webhook deliveries into canonical events.

    Subclasses declare which headers carry the event type and the signature,
    how the signature is checked, and implement ``identify``/``normalize``.
    Header mappings passed in are expected to have lower-cased keys.
    """

    event_header: Optional[str] = None
    signature_header: str = ""
    signature_scheme: SignatureScheme = SignatureScheme.RAW_TOKEN
    # Accept deliveries that carry no signature header at all
    signature_optional: bool = False
    # Accept deliveries for pipelines that have no webhook secret configured
    allows_unsigned_when_no_secret: bool = True

    @property
    @abstractmethod
    def provider_type(self) -> CIProvider:
        pass

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @abstractmethod
    def identify(
        self,
        headers: Mapping[str, str],
        body: Dict[str, Any],
        query: Mapping[str, str],
        path_params: Mapping[str, str],
    ) -> WebhookTarget:
        """
        Work out the event type and which pipeline the delivery targets.

        Raises:
            MalformedWebhookError: If the target cannot be resolved
        """
        pass

    @abstractmethod
    def normalize(
        self,
        event_type: str,
        payload: Dict[str, Any],
        pipeline: "Pipeline",
    ) -> NormalizeResult:
        """
        Map a verified payload onto a canonical event.

        Unknown event types and filtered events yield an ignored result;
        only structurally broken payloads raise MalformedWebhookError.
        """
        pass

    def verify(
        self,
        raw_body: bytes,
        headers: Mapping[str, str],
        secret: Optional[str],
        require_secret: bool = False,
    ) -> bool:
        """Check the delivery against the pipeline secret using this provider's scheme."""
        if not secret:
            # No secret configured: provider policy decides
            return self.allows_unsigned_when_no_secret and not require_secret

        header_value = headers.get(self.signature_header) if self.signature_header else None
        if not header_value and self.signature_optional:
            return True

        return signature.verify(raw_body, header_value, secret, self.signature_scheme)

    def event_type_from_headers(self, headers: Mapping[str, str]) -> Optional[str]:
        if not self.event_header:
            return None
        value = headers.get(self.event_header)
        return value.strip() if value else None

    def _malformed(self, message: str, event_type: Optional[str] = None) -> MalformedWebhookError:
        return MalformedWebhookError(
            message, provider=self.provider_type.value, event_type=event_type
        )

    def _pipeline_id_target(
        self,
        event_type: str,
        headers: Mapping[str, str],
        query: Mapping[str, str],
        path_params: Mapping[str, str],
    ) -> WebhookTarget:
        """Target for providers whose payload carries no repository identity."""
        pipeline_id = (
            path_params.get("pipeline_id")
            or query.get(PIPELINE_ID_QUERY_PARAM)
            or headers.get(PIPELINE_ID_HEADER)
        )
        if not pipeline_id:
            raise self._malformed(
                "Pipeline ID not provided in webhook URL or headers", event_type
            )
        return WebhookTarget(
            event_type=event_type,
            lookup=LookupMode.PIPELINE_ID,
            key=pipeline_id.strip(),
        )

    def _event(
        self,
        event_type: str,
        pipeline: "Pipeline",
        build: CanonicalBuild,
        payload: Dict[str, Any],
        match_by: MatchBy = MatchBy.EXTERNAL_ID,
        create_if_missing: bool = True,
        retry: bool = False,
    ) -> NormalizeResult:
        return NormalizeResult.accept(
            CanonicalEvent(
                provider=self.provider_type,
                event_type=event_type,
                pipeline_ref=str(pipeline.id),
                build=build,
                match_by=match_by,
                create_if_missing=create_if_missing,
                retry=retry,
                raw=payload,
            )
        )


def strip_ref(ref: Optional[str]) -> Optional[str]:
    """Turn "refs/heads/main" into "main"; other refs are returned unchanged."""
    if not ref:
        return ref
    for prefix in ("refs/heads/", "refs/remotes/origin/", "origin/"):
        if ref.startswith(prefix):
            return ref[len(prefix):]
    return ref


def branch_matches(pipeline: "Pipeline", branch: Optional[str]) -> bool:
    """Exact comparison against the single tracked branch of the pipeline.

    ``branch_pattern`` is deliberately not consulted here. A pipeline with no
    tracked branch accepts every branch.
    """
    if not pipeline.branch:
        return True
    return branch == pipeline.branch


def branch_mismatch(pipeline: "Pipeline", branch: Optional[str]) -> NormalizeResult:
    return NormalizeResult.ignore(
        f"Event for branch {branch} ignored, monitoring {pipeline.branch}"
    )


def optional_id(value: Any) -> Optional[str]:
    """Provider ids arrive as ints or strings; a missing id stays None."""
    if value is None or value == "":
        return None
    return str(value)
