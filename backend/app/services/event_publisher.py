"""
Build event publishing for real-time subscribers.

Events are fanned out to up to three topics (build, pipeline, organization)
on Redis pub/sub, and forwarded to WebSocket clients by ``app.api.websocket``.
Publishing is best effort: a failed emit is logged and never propagated to
the webhook that triggered it.
"""

import json
import logging
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol

import redis

from app.config import settings
from app.entities.build import Build, BuildComment
from app.entities.notification import Notification
from app.entities.pipeline import Pipeline

logger = logging.getLogger(__name__)

BUILD_COMMENT_EVENT = "build:comment"
BUILD_FINALIZED_EVENT = "build:finalized"
NOTIFICATION_CREATED_EVENT = "notification:created"


class TopicScope(str, Enum):
    BUILD = "build"
    PIPELINE = "pipeline"
    ORGANIZATION = "organization"


# Payload key that addresses each scope
SCOPE_KEYS = (
    (TopicScope.BUILD, "buildId"),
    (TopicScope.PIPELINE, "pipelineId"),
    (TopicScope.ORGANIZATION, "organizationId"),
)


def topic_for(scope: TopicScope, key: Any) -> str:
    """Topic name for a scope, e.g. ``build:65f0c...``."""
    return f"{TopicScope(scope).value}:{key}"


class TopicEmitter(Protocol):
    def emit(self, topic: str, message: Dict[str, Any]) -> Any: ...

    def broadcast(self, message: Dict[str, Any]) -> Any: ...


class RedisTopicEmitter:
    """Publishes JSON messages on Redis channels named after topics."""

    def __init__(
        self,
        client: Optional[redis.Redis] = None,
        prefix: Optional[str] = None,
        broadcast_channel: Optional[str] = None,
    ):
        self._client = client
        self.prefix = settings.EVENTS_CHANNEL_PREFIX if prefix is None else prefix
        self.broadcast_channel = (
            settings.EVENTS_BROADCAST_CHANNEL if broadcast_channel is None else broadcast_channel
        )

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            self._client = redis.from_url(settings.REDIS_URL)
        return self._client

    def channel_for(self, topic: str) -> str:
        return f"{self.prefix}{topic}"

    def emit(self, topic: str, message: Dict[str, Any]) -> int:
        receivers = self.client.publish(self.channel_for(topic), json.dumps(message, default=str))
        logger.debug(f"Published {message.get('event')} to {topic} ({receivers} subscribers)")
        return receivers

    def broadcast(self, message: Dict[str, Any]) -> int:
        if not self.broadcast_channel:
            return 0
        return self.client.publish(self.broadcast_channel, json.dumps(message, default=str))


def build_event_payload(build: Build, pipeline: Optional[Pipeline] = None) -> Dict[str, Any]:
    organization_id = build.organization_id or (pipeline.organization_id if pipeline else None)
    return {
        "buildId": str(build.id) if build.id else None,
        "pipelineId": str(build.pipeline_id),
        "organizationId": str(organization_id) if organization_id else None,
        "status": build.status,
        "buildNumber": build.build_number,
    }


class EventPublisher:
    def __init__(self, emitter: TopicEmitter):
        self.emitter = emitter

    def publish_build_event(self, event_name: str, payload: Dict[str, Any]) -> List[str]:
        """
        Emit ``payload`` to every scope whose key is present.

        Args:
            event_name: Event name, e.g. "build:updated"
            payload: Must carry buildId/pipelineId/organizationId (nullable)

        Returns:
            Topics the event was successfully emitted to
        """
        message = {"event": event_name, "data": payload}
        emitted: List[str] = []

        for scope, key_name in SCOPE_KEYS:
            key = payload.get(key_name)
            if not key:
                continue
            topic = topic_for(scope, key)
            try:
                self.emitter.emit(topic, message)
                emitted.append(topic)
            except Exception as e:
                logger.error(f"Failed to publish {event_name} to {topic}: {e}")

        try:
            self.emitter.broadcast(message)
        except Exception as e:
            logger.error(f"Failed to broadcast {event_name}: {e}")

        return emitted

    def publish_build_updated(self, build: Build, pipeline: Optional[Pipeline] = None) -> List[str]:
        return self.publish_build_event(
            settings.WEBHOOK_BUILD_EVENT_NAME, build_event_payload(build, pipeline)
        )

    def publish_build_finalized(self, build: Build, pipeline: Optional[Pipeline] = None) -> List[str]:
        payload = build_event_payload(build, pipeline)
        payload["build"] = build.model_dump(mode="json", exclude={"metadata"})
        return self.publish_build_event(BUILD_FINALIZED_EVENT, payload)

    def publish_build_comment(
        self, build: Build, comment: BuildComment, pipeline: Optional[Pipeline] = None
    ) -> List[str]:
        payload = build_event_payload(build, pipeline)
        payload["comment"] = comment.model_dump(mode="json")
        return self.publish_build_event(BUILD_COMMENT_EVENT, payload)

    def publish_notification(self, notification: Notification) -> List[str]:
        if not notification.organization_id:
            return []
        topic = topic_for(TopicScope.ORGANIZATION, notification.organization_id)
        message = {
            "event": NOTIFICATION_CREATED_EVENT,
            "data": notification.model_dump(mode="json"),
        }
        try:
            self.emitter.emit(topic, message)
        except Exception as e:
            logger.error(f"Failed to publish notification to {topic}: {e}")
            return []
        return [topic]


_publisher: Optional[EventPublisher] = None


def get_event_publisher() -> EventPublisher:
    global _publisher
    if _publisher is None:
        _publisher = EventPublisher(RedisTopicEmitter())
    return _publisher
