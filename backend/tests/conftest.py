"""Shared fixtures: in-memory MongoDB (mongomock) and a mocked pub/sub emitter."""

from unittest.mock import MagicMock

import mongomock
import pytest
from bson import ObjectId

from app.entities.pipeline import Pipeline
from app.repositories.pipeline import PipelineRepository
from app.services.build_reconciler import BuildReconciler
from app.services.event_publisher import EventPublisher
from app.services.notification_service import NotificationService
from app.services.webhook_router import WebhookProcessor

from payloads import WEBHOOK_SECRET


@pytest.fixture
def db():
    client = mongomock.MongoClient()
    return client["pipelinehub_test"]


@pytest.fixture
def emitter():
    return MagicMock()


@pytest.fixture
def publisher(emitter):
    return EventPublisher(emitter)


@pytest.fixture
def notifier(db, publisher):
    return NotificationService(db, publisher=publisher)


@pytest.fixture
def reconciler(db, publisher, notifier):
    return BuildReconciler(db, publisher=publisher, notifier=notifier)


@pytest.fixture
def processor(db, reconciler):
    return WebhookProcessor(db, reconciler, require_secret=False)


@pytest.fixture
def make_pipeline(db):
    """Insert an active pipeline and return it; keyword arguments override defaults."""

    def _make(**overrides) -> Pipeline:
        data = {
            "name": "acme-api",
            "organization_id": ObjectId(),
            "provider": "github",
            "repository_url": "https://github.com/acme/api",
            "branch": "main",
            "webhook_secret": WEBHOOK_SECRET,
            "config": {"notify_on_success": True, "notify_on_failure": True},
        }
        data.update(overrides)
        return PipelineRepository(db).insert_one(Pipeline(**data))

    return _make


@pytest.fixture
def detached_pipeline():
    """A pipeline that is never stored, for adapter tests."""
    return Pipeline(
        _id=ObjectId(),
        name="acme-api",
        provider="github",
        repository_url="https://github.com/acme/api",
        branch="main",
        webhook_secret=WEBHOOK_SECRET,
    )


@pytest.fixture
def client(processor):
    from fastapi.testclient import TestClient

    from app.api.webhooks import get_webhook_processor
    from app.main import app

    app.dependency_overrides[get_webhook_processor] = lambda: processor
    yield TestClient(app)
    app.dependency_overrides.clear()

