"""
Document store availability checks.

The webhook core asks an injected availability object before touching the
database instead of reading a process-wide "database is up" flag.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from pymongo import MongoClient
from pymongo.errors import PyMongoError

from app.config import settings
from app.services.webhook_exceptions import StoreUnavailableError

logger = logging.getLogger(__name__)


class DatabaseAvailability:
    """Health-checked view of a MongoClient with a short-lived cached verdict."""

    def __init__(
        self,
        client: MongoClient,
        cache_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.cache_seconds = (
            settings.MONGODB_HEALTHCHECK_CACHE_SECONDS
            if cache_seconds is None
            else cache_seconds
        )
        self._clock = clock
        self._checked_at: Optional[float] = None
        self._available = False

    def is_available(self) -> bool:
        now = self._clock()
        if self._checked_at is not None and now - self._checked_at < self.cache_seconds:
            return self._available

        try:
            self.client.admin.command("ping")
            available = True
        except PyMongoError as e:
            logger.warning(f"MongoDB ping failed: {e}")
            available = False

        if available != self._available and self._checked_at is not None:
            logger.info(f"MongoDB availability changed: available={available}")

        self._available = available
        self._checked_at = now
        return available

    def ensure_available(self) -> None:
        if not self.is_available():
            raise StoreUnavailableError("Document store is unavailable")

    def invalidate(self) -> None:
        """Force the next check to ping the server again."""
        self._checked_at = None


class AlwaysAvailable:
    """Availability stand-in that never pings (scripts and tests)."""

    def is_available(self) -> bool:
        return True

    def ensure_available(self) -> None:
        return None

    def invalidate(self) -> None:
        return None


_availability: Optional[DatabaseAvailability] = None


def get_availability() -> DatabaseAvailability:
    global _availability
    if _availability is None:
        from app.database.mongo import get_client

        _availability = DatabaseAvailability(get_client())
    return _availability
