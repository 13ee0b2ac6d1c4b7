"""
Build Entity - One execution of a pipeline as seen through webhooks.

Identity is (pipeline_id, external_id) when the provider supplies a build
identifier, otherwise (pipeline_id, commit.sha). ``build_number`` is
sequential per pipeline.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from app.ci_providers.models import BuildStatus, CIProvider
from app.utils.datetime import utc_now

from .base import BaseEntity, PyObjectId


class BuildCommitAuthor(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    avatar_url: Optional[str] = None


class BuildCommit(BaseModel):
    sha: Optional[str] = None
    message: Optional[str] = None
    author: Optional[BuildCommitAuthor] = None
    branch: Optional[str] = None
    url: Optional[str] = None


class BuildComment(BaseModel):
    author: Optional[str] = None
    body: str
    created_at: datetime = Field(default_factory=utc_now)


class BuildRetries(BaseModel):
    count: int = 0
    original_build_id: Optional[PyObjectId] = None

    class Config:
        arbitrary_types_allowed = True


class Build(BaseEntity):
    pipeline_id: PyObjectId
    organization_id: Optional[PyObjectId] = None
    provider: CIProvider

    external_id: Optional[str] = None
    external_url: Optional[str] = None
    build_number: int

    status: BuildStatus = BuildStatus.PENDING
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    duration: Optional[int] = None  # seconds

    commit: BuildCommit = Field(default_factory=BuildCommit)
    trigger: Optional[str] = None  # event type that created the build
    comments: List[BuildComment] = Field(default_factory=list)
    retries: BuildRetries = Field(default_factory=BuildRetries)
    metadata: Dict[str, Any] = Field(default_factory=dict)
