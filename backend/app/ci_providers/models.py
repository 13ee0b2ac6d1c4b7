from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class CIProvider(str, Enum):
    """Supported CI/CD providers."""

    GITHUB = "github"
    GITLAB = "gitlab"
    JENKINS = "jenkins"
    CIRCLECI = "circleci"
    BITBUCKET = "bitbucket"
    AZURE = "azure"
    GENERIC = "generic"


class BuildStatus(str, Enum):
    """Canonical build status shared by every provider."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILURE = "failure"
    CANCELED = "canceled"
    SKIPPED = "skipped"
    UNKNOWN = "unknown"


TERMINAL_STATUSES = frozenset(
    {BuildStatus.SUCCESS.value, BuildStatus.FAILURE.value, BuildStatus.CANCELED.value}
)


def is_terminal(status: Optional[str]) -> bool:
    return getattr(status, "value", status) in TERMINAL_STATUSES


def coerce_status(raw: Optional[str]) -> BuildStatus:
    """Map an arbitrary string onto BuildStatus, unknown when unmapped."""
    if not raw:
        return BuildStatus.UNKNOWN
    try:
        return BuildStatus(raw.lower())
    except ValueError:
        return BuildStatus.UNKNOWN


class SignatureScheme(str, Enum):
    """How a provider authenticates its webhook deliveries."""

    HMAC_SHA256_PREFIXED = "hmac-sha256-prefixed"  # "sha256=<hex>" (GitHub, Bitbucket)
    HMAC_SHA256_HEX = "hmac-sha256-hex"  # bare hex or "v1=<hex>" (CircleCI)
    RAW_TOKEN = "raw-token"  # shared token in a header (GitLab, Jenkins, generic)
    BASIC_AUTH_PASSWORD = "basic-auth-password"  # HTTP Basic password (Azure DevOps)


class LookupMode(str, Enum):
    """How the target pipeline is located."""

    REPOSITORY_URL = "repository_url"
    PIPELINE_ID = "pipeline_id"


class MatchBy(str, Enum):
    """Which key the reconciler uses to find an existing build."""

    EXTERNAL_ID = "external_id"
    COMMIT_SHA = "commit_sha"


class WebhookTarget(BaseModel):
    """Result of identifying an inbound delivery."""

    event_type: str
    lookup: LookupMode
    key: str
    delivery_id: Optional[str] = None


class CommitAuthor(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    avatar_url: Optional[str] = None


class CanonicalCommit(BaseModel):
    """Commit information carried by a canonical event.

    Only the fields a provider actually supplied are set; the reconciler
    merges ``model_fields_set`` so absent values never erase stored ones.
    """

    sha: Optional[str] = None
    message: Optional[str] = None
    author: Optional[CommitAuthor] = None
    branch: Optional[str] = None
    url: Optional[str] = None


class CanonicalBuild(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    external_id: Optional[str] = None
    status: Optional[BuildStatus] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    commit: CanonicalCommit = Field(default_factory=CanonicalCommit)
    provider_url: Optional[str] = None
    comment: Optional[str] = None


class CanonicalEvent(BaseModel):
    """Provider-neutral description of a build change.

    Produced by an adapter, consumed by the reconciler, never persisted.
    """

    model_config = ConfigDict(use_enum_values=True)

    provider: CIProvider
    event_type: str
    pipeline_ref: str
    build: CanonicalBuild
    match_by: MatchBy = MatchBy.EXTERNAL_ID
    # False for events that may only update a build created by another event
    create_if_missing: bool = True
    # Re-run of an earlier build: always a new Build record linked to the original
    retry: bool = False
    raw: Dict[str, Any] = Field(default_factory=dict, repr=False)


class NormalizeResult(BaseModel):
    """Either a canonical event or the reason the delivery was ignored.

    ``recognized`` distinguishes filtered-but-known events (branch mismatch,
    uninteresting action) from event types the adapter does not handle.
    """

    event: Optional[CanonicalEvent] = None
    ignored_reason: Optional[str] = None
    recognized: bool = True

    @classmethod
    def accept(cls, event: CanonicalEvent) -> "NormalizeResult":
        return cls(event=event)

    @classmethod
    def ignore(cls, reason: str, recognized: bool = True) -> "NormalizeResult":
        return cls(ignored_reason=reason, recognized=recognized)

    @classmethod
    def unsupported(cls, event_type: str) -> "NormalizeResult":
        return cls(ignored_reason=f"event_{event_type}_not_handled", recognized=False)

    @property
    def is_ignored(self) -> bool:
        return self.event is None
