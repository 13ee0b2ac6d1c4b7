"""Repository for Build entities."""

from typing import Any, Dict, Optional

from bson import ObjectId
from pymongo import DESCENDING

from app.entities.build import Build, BuildComment
from app.repositories.base import BaseRepository
from app.utils.datetime import utc_now


class BuildRepository(BaseRepository[Build]):
    """Repository for Build entities."""

    def __init__(self, db) -> None:
        super().__init__(db, "builds", Build)

    def find_by_external_id(self, pipeline_id: ObjectId, external_id: str) -> Optional[Build]:
        return self.find_one({"pipeline_id": pipeline_id, "external_id": external_id})

    def find_by_commit_sha(self, pipeline_id: ObjectId, sha: str) -> Optional[Build]:
        """Latest build for a commit; re-runs share the SHA so the newest wins."""
        return self.find_one(
            {"pipeline_id": pipeline_id, "commit.sha": sha},
            sort=[("build_number", DESCENDING)],
        )

    def next_build_number(self, pipeline_id: ObjectId) -> int:
        """Highest build number for the pipeline plus one, starting at 1.

        Not atomic: concurrent callers can get the same number, the unique
        (pipeline_id, build_number) index turns that into a DuplicateKeyError.
        """
        doc = self.collection.find_one(
            {"pipeline_id": pipeline_id},
            projection={"build_number": 1},
            sort=[("build_number", DESCENDING)],
        )
        if not doc or doc.get("build_number") is None:
            return 1
        return int(doc["build_number"]) + 1

    def count_by_status(self, pipeline_id: ObjectId) -> Dict[str, int]:
        rows = self.aggregate(
            [
                {"$match": {"pipeline_id": pipeline_id}},
                {"$group": {"_id": "$status", "count": {"$sum": 1}}},
            ]
        )
        return {row["_id"]: row["count"] for row in rows if row.get("_id")}

    def save_fields(self, build_id: ObjectId, fields: Dict[str, Any]) -> Optional[Build]:
        """Merge ``fields`` into the stored build with ``$set`` (dotted paths allowed)."""
        if not fields:
            return self.find_by_id(build_id)
        return self.update_one(build_id, fields)

    def append_comment(self, build_id: ObjectId, comment: BuildComment) -> Optional[Build]:
        return self.find_one_and_update(
            {"_id": build_id},
            {
                "$push": {"comments": comment.model_dump()},
                "$set": {"updated_at": utc_now()},
            },
        )
