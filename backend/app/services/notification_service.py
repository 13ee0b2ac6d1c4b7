"""
Build notifications - in-app only.

Created when a build reaches a terminal status, stored in MongoDB for UI
display and pushed to the organization topic. Email, Slack and other
channels are handled outside this service.
"""

import logging
from typing import Optional

from pymongo.database import Database
from pymongo.errors import PyMongoError

from app.ci_providers.models import BuildStatus
from app.config import settings
from app.entities.build import Build
from app.entities.notification import Notification, NotificationSeverity, NotificationType
from app.entities.pipeline import Pipeline
from app.repositories.notification import NotificationRepository
from app.services.event_publisher import EventPublisher

logger = logging.getLogger(__name__)

_TYPE_BY_STATUS = {
    BuildStatus.SUCCESS.value: NotificationType.BUILD_SUCCEEDED,
    BuildStatus.FAILURE.value: NotificationType.BUILD_FAILED,
    BuildStatus.CANCELED.value: NotificationType.BUILD_CANCELED,
}


def build_link(pipeline: Pipeline, build: Build) -> str:
    base = settings.FRONTEND_BASE_URL.rstrip("/")
    return f"{base}/pipelines/{pipeline.id}/builds/{build.build_number}"


def should_notify(pipeline: Pipeline, status: str) -> bool:
    """Apply the pipeline's notify_on_success / notify_on_failure switches."""
    if status == BuildStatus.SUCCESS.value:
        return pipeline.config.notify_on_success
    if status == BuildStatus.FAILURE.value:
        return pipeline.config.notify_on_failure
    return status == BuildStatus.CANCELED.value


class NotificationService:
    """
    Service for build notifications.

    Used by the build reconciler:
    Reconciler -> NotificationService -> Repository -> Database
    """

    def __init__(self, db: Database, publisher: Optional[EventPublisher] = None):
        self.db = db
        self.notification_repo = NotificationRepository(db)
        self.publisher = publisher

    def notify_build_finalized(self, pipeline: Pipeline, build: Build) -> Optional[Notification]:
        """
        Create an in-app notification for a build that just reached a terminal status.

        Failures are logged and swallowed: a notification problem never fails
        the webhook that finalized the build.

        Returns:
            The stored notification, or None when skipped or failed
        """
        status = build.status
        if not should_notify(pipeline, status):
            logger.debug(
                f"Notification skipped for build #{build.build_number} "
                f"pipeline={pipeline.id} status={status}"
            )
            return None

        author = build.commit.author.name if build.commit.author else None
        message_parts = [f"Pipeline {pipeline.name}"]
        if build.commit.message:
            message_parts.append(build.commit.message.splitlines()[0])
        if author:
            message_parts.append(f"by {author}")

        notification = Notification(
            organization_id=pipeline.organization_id,
            pipeline_id=pipeline.id,
            build_id=build.id,
            type=_TYPE_BY_STATUS[status],
            severity=(
                NotificationSeverity.SUCCESS
                if status == BuildStatus.SUCCESS.value
                else NotificationSeverity.ERROR
            ),
            title=f"Build #{build.build_number} {status}",
            message=" - ".join(message_parts),
            link=build_link(pipeline, build),
            metadata={
                "provider": build.provider,
                "commit_sha": build.commit.sha,
                "branch": build.commit.branch,
                "duration": build.duration,
            },
        )

        try:
            created = self.notification_repo.create(notification)
        except PyMongoError as e:
            logger.error(f"Failed to create notification for build {build.id}: {e}")
            return None

        if self.publisher is not None:
            self.publisher.publish_notification(created)

        logger.info(f"Created notification for build #{build.build_number} pipeline={pipeline.id}")
        return created
