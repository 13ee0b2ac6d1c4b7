"""Database index management for MongoDB collections."""

import logging
from typing import Any, List, Tuple

from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import OperationFailure

logger = logging.getLogger(__name__)


def ensure_indexes(db: Database) -> None:
    """
    Ensure all required indexes exist.

    Called on application startup. The unique build indexes are what turn a
    concurrent double creation into a DuplicateKeyError the reconciler can
    recover from.
    """
    _ensure_builds_indexes(db)
    _ensure_pipelines_indexes(db)
    _ensure_notifications_indexes(db)
    logger.info("Database indexes ensured successfully")


def _create_index(collection: Collection, keys: List[Tuple[str, int]], name: str, **options: Any) -> None:
    try:
        collection.create_index(keys, name=name, background=True, **options)
        logger.debug(f"Created index: {name}")
    except OperationFailure as e:
        # Index may already exist with different options
        if "already exists" not in str(e):
            logger.warning(f"Failed to create {name} index: {e}")


def _ensure_builds_indexes(db: Database) -> None:
    """Create indexes for builds collection."""
    collection = db.builds

    # One build per provider build id, builds without one are keyed by SHA
    _create_index(
        collection,
        [("pipeline_id", 1), ("external_id", 1)],
        name="pipeline_external_id_unique",
        unique=True,
        partialFilterExpression={"external_id": {"$type": "string"}},
    )
    _create_index(
        collection,
        [("pipeline_id", 1), ("build_number", 1)],
        name="pipeline_build_number_unique",
        unique=True,
    )
    _create_index(
        collection,
        [("pipeline_id", 1), ("commit.sha", 1)],
        name="pipeline_commit_sha_idx",
    )


def _ensure_pipelines_indexes(db: Database) -> None:
    """Create indexes for pipelines collection."""
    _create_index(
        db.pipelines,
        [("provider", 1), ("repository_url", 1), ("is_active", 1)],
        name="provider_repository_active_idx",
    )


def _ensure_notifications_indexes(db: Database) -> None:
    """Create indexes for notifications collection."""
    collection = db.notifications
    _create_index(
        collection,
        [("organization_id", 1), ("created_at", -1)],
        name="organization_created_at_idx",
    )
    _create_index(collection, [("build_id", 1)], name="build_id_idx")
