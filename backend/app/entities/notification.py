"""Notification entity for in-app build notifications."""

from enum import Enum
from typing import Optional

from pydantic import Field

from app.entities.base import BaseEntity, PyObjectId


class NotificationType(str, Enum):
    """Types of notifications."""

    BUILD_SUCCEEDED = "build_succeeded"
    BUILD_FAILED = "build_failed"
    BUILD_CANCELED = "build_canceled"
    SYSTEM = "system"


class NotificationSeverity(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class Notification(BaseEntity):
    """In-app notification for an organization."""

    organization_id: Optional[PyObjectId] = Field(
        default=None, description="Organization that receives this notification"
    )
    pipeline_id: Optional[PyObjectId] = Field(default=None, description="Related pipeline")
    build_id: Optional[PyObjectId] = Field(default=None, description="Related build")
    type: NotificationType = Field(..., description="Type of notification")
    severity: NotificationSeverity = Field(default=NotificationSeverity.INFO)
    title: str = Field(..., description="Notification title")
    message: str = Field(..., description="Notification message body")
    is_read: bool = Field(default=False, description="Whether notification has been read")
    link: Optional[str] = Field(default=None, description="URL to navigate on click")
    metadata: Optional[dict] = Field(default=None, description="Extra context data")
