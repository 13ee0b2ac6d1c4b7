"""Repository for Notification entities."""

from typing import List

from bson import ObjectId
from pymongo import DESCENDING

from app.entities.notification import Notification
from app.repositories.base import BaseRepository


class NotificationRepository(BaseRepository[Notification]):
    """Repository for Notification entities."""

    def __init__(self, db) -> None:
        super().__init__(db, "notifications", Notification)

    def create(self, notification: Notification) -> Notification:
        return self.insert_one(notification)

    def find_by_build(self, build_id: ObjectId) -> List[Notification]:
        return self.find_many({"build_id": build_id}, sort=[("created_at", DESCENDING)])
