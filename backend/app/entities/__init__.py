from .base import BaseEntity, PyObjectId
from .build import Build, BuildComment, BuildCommit, BuildCommitAuthor, BuildRetries
from .notification import Notification, NotificationSeverity, NotificationType
from .pipeline import LastBuildSummary, Pipeline, PipelineConfig

__all__ = [
    "BaseEntity",
    "PyObjectId",
    # Pipeline
    "Pipeline",
    "PipelineConfig",
    "LastBuildSummary",
    # Build
    "Build",
    "BuildCommit",
    "BuildCommitAuthor",
    "BuildComment",
    "BuildRetries",
    # Notification
    "Notification",
    "NotificationType",
    "NotificationSeverity",
]
