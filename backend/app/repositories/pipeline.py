"""Repository for Pipeline entities."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from bson import ObjectId

from app.entities.pipeline import LastBuildSummary, Pipeline
from app.repositories.base import BaseRepository
from app.utils.datetime import utc_now


def repository_url_variants(url: str) -> List[str]:
    """Spellings of the same repository URL that may be stored on a pipeline."""
    base = url.strip().rstrip("/")
    if base.endswith(".git"):
        base = base[: -len(".git")]
    return [base, f"{base}/", f"{base}.git"]


class PipelineRepository(BaseRepository[Pipeline]):
    """Repository for Pipeline entities."""

    def __init__(self, db) -> None:
        super().__init__(db, "pipelines", Pipeline)

    def find_active_by_repository(self, provider: str, repository_url: str) -> Optional[Pipeline]:
        return self.find_one(
            {
                "provider": provider,
                "repository_url": {"$in": repository_url_variants(repository_url)},
                "is_active": True,
            }
        )

    def find_active_by_id(
        self, pipeline_id: str | ObjectId, provider: Optional[str] = None
    ) -> Optional[Pipeline]:
        """Active pipeline by id; an unparseable id yields None."""
        identifier = self._to_object_id(pipeline_id)
        if identifier is None:
            return None
        query: Dict[str, Any] = {"_id": identifier, "is_active": True}
        if provider:
            query["provider"] = provider
        return self.find_one(query)

    def update_last_build_if_newer(
        self, pipeline_id: ObjectId, summary: LastBuildSummary
    ) -> bool:
        """
        Replace ``last_build`` unless it already describes a higher build number.

        The comparison happens inside the update filter, so two concurrent
        writers cannot move the snapshot backwards.

        Returns:
            True if the snapshot was written
        """
        return self.update_one_raw(
            {
                "_id": pipeline_id,
                "$or": [
                    {"last_build": None},
                    {"last_build.build_number": {"$lte": summary.build_number}},
                ],
            },
            {
                "$set": {
                    "last_build": summary.model_dump(),
                    "updated_at": utc_now(),
                }
            },
        )

    def increment_total_builds(self, pipeline_id: ObjectId) -> Optional[Pipeline]:
        return self.find_one_and_update(
            {"_id": pipeline_id},
            {"$inc": {"total_builds": 1}, "$set": {"updated_at": utc_now()}},
        )

    def apply_build_stats(
        self,
        pipeline_id: ObjectId,
        success_rate: float,
        average_duration: Optional[float],
        last_build_status: str,
        last_build_at: datetime,
        last_successful_build_at: Optional[datetime] = None,
    ) -> Optional[Pipeline]:
        updates: Dict[str, Any] = {
            "success_rate": success_rate,
            "last_build_status": last_build_status,
            "last_build_at": last_build_at,
        }
        if average_duration is not None:
            updates["average_duration"] = average_duration
        if last_successful_build_at is not None:
            updates["last_successful_build_at"] = last_successful_build_at
        return self.update_one(pipeline_id, updates)
