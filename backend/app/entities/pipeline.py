"""
Pipeline Entity - A monitored CI/CD pipeline.

Pipelines are created by the onboarding flow. The webhook core only reads
them and updates the ``last_build`` snapshot and the build statistics.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from app.ci_providers.models import BuildStatus, CIProvider

from .base import BaseEntity, PyObjectId


class PipelineConfig(BaseModel):
    notify_on_success: bool = False
    notify_on_failure: bool = True


class LastBuildSummary(BaseModel):
    """Snapshot of the highest-numbered build reconciled for a pipeline."""

    build_id: Optional[PyObjectId] = None
    build_number: int
    status: BuildStatus
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    duration: Optional[int] = None
    commit_sha: Optional[str] = None
    commit_message: Optional[str] = None
    commit_author: Optional[str] = None
    url: Optional[str] = None

    class Config:
        use_enum_values = True
        arbitrary_types_allowed = True


class Pipeline(BaseEntity):
    name: str
    organization_id: Optional[PyObjectId] = None
    integration_id: Optional[PyObjectId] = None
    provider: CIProvider
    external_id: Optional[str] = None
    repository_url: Optional[str] = None

    # Webhooks compare against ``branch`` only
    branch: Optional[str] = "main"
    branch_pattern: Optional[str] = None
    webhook_secret: Optional[str] = Field(default=None, repr=False)
    is_active: bool = True
    config: PipelineConfig = Field(default_factory=PipelineConfig)

    last_build: Optional[LastBuildSummary] = None

    # Statistics
    total_builds: int = 0
    success_rate: float = 0.0
    average_duration: Optional[float] = None
    last_build_status: Optional[BuildStatus] = None
    last_build_at: Optional[datetime] = None
    last_successful_build_at: Optional[datetime] = None
