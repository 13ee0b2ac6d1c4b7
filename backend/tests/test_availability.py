"""Tests for the document store availability check and index setup."""

from unittest.mock import MagicMock

import pytest
from pymongo.errors import OperationFailure, ServerSelectionTimeoutError

from app.database.availability import AlwaysAvailable, DatabaseAvailability
from app.database.ensure_indexes import ensure_indexes
from app.services.webhook_exceptions import StoreUnavailableError


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


class TestDatabaseAvailability:
    def test_ping_result_is_cached(self):
        client = MagicMock()
        clock = FakeClock()
        availability = DatabaseAvailability(client, cache_seconds=5, clock=clock)

        assert availability.is_available() is True
        clock.now += 4
        assert availability.is_available() is True

        assert client.admin.command.call_count == 1

    def test_cache_expires(self):
        client = MagicMock()
        clock = FakeClock()
        availability = DatabaseAvailability(client, cache_seconds=5, clock=clock)

        availability.is_available()
        clock.now += 6
        availability.is_available()

        assert client.admin.command.call_count == 2

    def test_failed_ping_raises_on_ensure(self):
        client = MagicMock()
        client.admin.command.side_effect = ServerSelectionTimeoutError("no servers")
        availability = DatabaseAvailability(client, cache_seconds=5, clock=FakeClock())

        assert availability.is_available() is False
        with pytest.raises(StoreUnavailableError):
            availability.ensure_available()

    def test_invalidate_forces_new_ping(self):
        client = MagicMock()
        availability = DatabaseAvailability(client, cache_seconds=60, clock=FakeClock())

        availability.is_available()
        availability.invalidate()
        availability.is_available()

        assert client.admin.command.call_count == 2

    def test_always_available(self):
        availability = AlwaysAvailable()

        assert availability.is_available() is True
        availability.ensure_available()


class TestEnsureIndexes:
    def test_creates_unique_build_indexes(self):
        db = MagicMock()

        ensure_indexes(db)

        names = {c.kwargs["name"] for c in db.builds.create_index.call_args_list}
        assert names == {
            "pipeline_external_id_unique",
            "pipeline_build_number_unique",
            "pipeline_commit_sha_idx",
        }
        unique = [c for c in db.builds.create_index.call_args_list if c.kwargs.get("unique")]
        assert len(unique) == 2

    def test_existing_index_conflicts_are_tolerated(self):
        db = MagicMock()
        db.pipelines.create_index.side_effect = OperationFailure("Index already exists with different options")

        ensure_indexes(db)

        db.notifications.create_index.assert_called()
