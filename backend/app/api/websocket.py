"""
WebSocket API for real-time build updates.

This module provides WebSocket endpoints for:
- Events of one topic: ``/ws/build/{id}``, ``/ws/pipeline/{id}``, ``/ws/organization/{id}``
- General broadcast events: ``/ws/events``

Messages are read from the Redis channels written by
``app.services.event_publisher.RedisTopicEmitter``.
"""

import json
import logging

import redis.asyncio as aioredis
from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from app.config import settings
from app.services.event_publisher import TopicScope, topic_for

logger = logging.getLogger(__name__)

router = APIRouter(tags=["WebSocket"])


async def get_async_redis():
    """Get async Redis client."""
    return aioredis.from_url(settings.REDIS_URL)


async def _stream_channel(websocket: WebSocket, channel: str, label: str) -> None:
    """Forward every message on ``channel`` to the socket, with heartbeats while idle."""
    redis = None
    pubsub = None
    try:
        await websocket.send_json({"type": "connected", "topic": label})

        redis = await get_async_redis()
        pubsub = redis.pubsub()
        await pubsub.subscribe(channel)

        while True:
            message = await pubsub.get_message(
                ignore_subscribe_messages=True,
                timeout=settings.WEBSOCKET_HEARTBEAT_SECONDS,
            )
            if not message:
                await websocket.send_json({"type": "heartbeat"})
                continue

            data = message.get("data")
            if isinstance(data, bytes):
                data = data.decode("utf-8")
            if data:
                await websocket.send_json(json.loads(data))

    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected from {label}")
    except Exception as e:
        logger.error(f"WebSocket error on {label}: {e}")
        try:
            await websocket.send_json({"type": "error", "message": str(e)})
        except Exception as send_error:
            logger.debug(f"Could not report error to {label}: {send_error}")
    finally:
        if pubsub is not None:
            try:
                await pubsub.unsubscribe(channel)
                await redis.close()
            except Exception as e:
                logger.debug(f"Redis cleanup failed for {label}: {e}")


@router.websocket("/ws/events")
async def events_websocket(websocket: WebSocket):
    """
    WebSocket endpoint for general event broadcasts.

    Receives every build event published, regardless of topic.
    """
    await websocket.accept()
    await _stream_channel(websocket, settings.EVENTS_BROADCAST_CHANNEL, "events")


@router.websocket("/ws/{scope}/{key}")
async def topic_websocket(websocket: WebSocket, scope: str, key: str):
    """
    WebSocket endpoint for one build, pipeline or organization topic.

    Events received:
    - {"type": "connected", "topic": "build:..."}
    - {"event": "build:updated", "data": {"buildId": ..., "status": ...}}
    - {"type": "heartbeat"}
    """
    await websocket.accept()
    try:
        topic = topic_for(TopicScope(scope), key)
    except ValueError:
        await websocket.send_json({"type": "error", "message": f"Unknown topic scope: {scope}"})
        await websocket.close(code=1008)
        return

    await _stream_channel(websocket, f"{settings.EVENTS_CHANNEL_PREFIX}{topic}", topic)
