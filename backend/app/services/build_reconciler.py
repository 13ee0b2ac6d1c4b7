"""
Build reconciliation - merge canonical webhook events into stored builds.

For each accepted event the reconciler finds or creates the matching Build,
merges only the fields the event actually carries, keeps the pipeline's
``last_build`` snapshot and statistics current, and reports whether the
build just reached a terminal status. Publishing and notifications happen
only after persistence succeeded.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from pymongo.database import Database
from pymongo.errors import ConnectionFailure, DuplicateKeyError, PyMongoError

from app.ci_providers.models import BuildStatus, CanonicalEvent, MatchBy, is_terminal
from app.database.availability import AlwaysAvailable
from app.entities.build import Build, BuildComment, BuildCommit, BuildRetries
from app.entities.pipeline import LastBuildSummary, Pipeline
from app.repositories.build import BuildRepository
from app.repositories.pipeline import PipelineRepository
from app.services.event_publisher import EventPublisher
from app.services.notification_service import NotificationService
from app.services.webhook_exceptions import ReconciliationError
from app.utils.datetime import seconds_between, utc_now

logger = logging.getLogger(__name__)

# Weight of the previous average when folding in a new build duration
AVERAGE_DURATION_DECAY = 0.7
MAX_CREATE_ATTEMPTS = 3


@dataclass
class ReconcileResult:
    build: Optional[Build]
    created: bool = False
    finalized: bool = False
    previous_status: Optional[str] = None
    skipped_reason: Optional[str] = None
    comment: Optional[BuildComment] = None
    topics: List[str] = field(default_factory=list)

    @property
    def skipped(self) -> bool:
        return self.build is None


class BuildReconciler:
    def __init__(
        self,
        db: Database,
        publisher: Optional[EventPublisher] = None,
        notifier: Optional[NotificationService] = None,
        availability=None,
    ):
        self.build_repo = BuildRepository(db)
        self.pipeline_repo = PipelineRepository(db)
        self.publisher = publisher
        self.notifier = notifier
        self.availability = availability or AlwaysAvailable()

    def reconcile(self, pipeline: Pipeline, event: CanonicalEvent) -> ReconcileResult:
        """
        Merge one canonical event into persistent state.

        Raises:
            StoreUnavailableError: If the document store reports itself down
            ReconciliationError: If any persistence step failed; nothing is
                published in that case
        """
        self.availability.ensure_available()

        try:
            result = self._persist(pipeline, event)
        except PyMongoError as e:
            if isinstance(e, ConnectionFailure):
                self.availability.invalidate()
            logger.exception(
                f"Reconciliation failed provider={event.provider} pipeline={pipeline.id} "
                f"event={event.event_type} external_id={event.build.external_id} "
                f"sha={event.build.commit.sha}: {e}"
            )
            raise ReconciliationError(
                f"Failed to reconcile build: {e}",
                provider=event.provider,
                event_type=event.event_type,
                pipeline_id=str(pipeline.id),
            ) from e

        if result.skipped:
            return result

        if result.finalized:
            self._notify(pipeline, result.build)

        if self.publisher is not None:
            result.topics = self.publisher.publish_build_updated(result.build, pipeline)
            if result.comment is not None:
                self.publisher.publish_build_comment(result.build, result.comment)
            if result.finalized:
                self.publisher.publish_build_finalized(result.build, pipeline)

        return result

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _persist(self, pipeline: Pipeline, event: CanonicalEvent) -> ReconcileResult:
        incoming = event.build
        if not incoming.external_id and not incoming.commit.sha:
            raise ReconciliationError(
                "Event carries neither a build id nor a commit sha",
                provider=event.provider,
                event_type=event.event_type,
                pipeline_id=str(pipeline.id),
            )

        existing = self._find_existing(pipeline, event)
        if existing is None and not event.create_if_missing:
            logger.info(
                f"No build for sha={incoming.commit.sha} pipeline={pipeline.id} "
                f"event={event.event_type}, nothing to update"
            )
            return ReconcileResult(build=None, skipped_reason="no_matching_build")

        created = False
        if existing is None:
            build, created = self._create_or_adopt(pipeline, event)
        else:
            build = existing

        previous_status = None if created else build.status
        if not created:
            build = self._merge(build, event)

        comment = None
        if incoming.comment:
            comment = BuildComment(author=event.provider, body=incoming.comment)
            build = self.build_repo.append_comment(build.id, comment) or build

        if created:
            self.pipeline_repo.increment_total_builds(pipeline.id)

        self.pipeline_repo.update_last_build_if_newer(pipeline.id, self._summary(build))

        finalized = is_terminal(build.status) and build.status != previous_status
        if finalized:
            self._update_stats(pipeline, build)

        return ReconcileResult(
            build=build,
            created=created,
            finalized=finalized,
            previous_status=previous_status,
            comment=comment,
        )

    def _find_existing(self, pipeline: Pipeline, event: CanonicalEvent) -> Optional[Build]:
        external_id = event.build.external_id
        sha = event.build.commit.sha

        if event.retry:
            if external_id:
                return self.build_repo.find_by_external_id(pipeline.id, external_id)
            # Without an id, later events of the same re-run land on its open retry build
            latest = self.build_repo.find_by_commit_sha(pipeline.id, sha) if sha else None
            if latest is not None and latest.retries.count > 0 and not is_terminal(latest.status):
                return latest
            return None

        if event.match_by == MatchBy.EXTERNAL_ID and external_id:
            build = self.build_repo.find_by_external_id(pipeline.id, external_id)
            if build is not None:
                return build
        if sha:
            return self.build_repo.find_by_commit_sha(pipeline.id, sha)
        return None

    def _create_or_adopt(self, pipeline: Pipeline, event: CanonicalEvent) -> Tuple[Build, bool]:
        """
        Insert a new build, or merge into a concurrent writer's build.

        Build numbers are max+1 and may collide under concurrency; a
        collision on the build number is retried with a fresh number, a
        collision on the external id means another delivery created the same
        build first.
        """
        retries = self._retries_for(pipeline, event)

        for attempt in range(1, MAX_CREATE_ATTEMPTS + 1):
            build_number = self.build_repo.next_build_number(pipeline.id)
            try:
                build = self.build_repo.insert_one(
                    self._new_build(pipeline, event, build_number, retries)
                )
                logger.info(
                    f"Created build #{build_number} pipeline={pipeline.id} "
                    f"external_id={build.external_id} sha={build.commit.sha}"
                )
                return build, True
            except DuplicateKeyError:
                winner = self._find_existing(pipeline, event)
                if winner is not None:
                    logger.warning(
                        f"Concurrent creation of build for pipeline={pipeline.id} "
                        f"external_id={event.build.external_id}, merging into #{winner.build_number}"
                    )
                    return winner, False
                logger.warning(
                    f"Build number {build_number} already taken for pipeline={pipeline.id} "
                    f"(attempt {attempt}/{MAX_CREATE_ATTEMPTS})"
                )

        raise ReconciliationError(
            "Could not allocate a build number",
            provider=event.provider,
            event_type=event.event_type,
            pipeline_id=str(pipeline.id),
        )

    def _retries_for(self, pipeline: Pipeline, event: CanonicalEvent) -> BuildRetries:
        if not event.retry or not event.build.commit.sha:
            return BuildRetries()
        original = self.build_repo.find_by_commit_sha(pipeline.id, event.build.commit.sha)
        if original is None:
            return BuildRetries()
        return BuildRetries(
            count=original.retries.count + 1,
            original_build_id=original.retries.original_build_id or original.id,
        )

    def _new_build(
        self,
        pipeline: Pipeline,
        event: CanonicalEvent,
        build_number: int,
        retries: BuildRetries,
    ) -> Build:
        incoming = event.build
        return Build(
            pipeline_id=pipeline.id,
            organization_id=pipeline.organization_id,
            provider=event.provider,
            external_id=incoming.external_id,
            external_url=incoming.provider_url,
            build_number=build_number,
            status=incoming.status or BuildStatus.PENDING,
            started_at=incoming.started_at,
            finished_at=incoming.finished_at,
            duration=seconds_between(incoming.started_at, incoming.finished_at),
            commit=BuildCommit(**incoming.commit.model_dump(exclude_none=True)),
            trigger=event.event_type,
            retries=retries,
        )

    def _merge(self, build: Build, event: CanonicalEvent) -> Build:
        """Apply the fields present in ``event`` to ``build`` and persist the difference."""
        incoming = event.build
        updates: Dict[str, Any] = {}

        if incoming.status and incoming.status != build.status:
            if is_terminal(build.status) and not is_terminal(incoming.status):
                logger.info(
                    f"Ignoring {incoming.status} for build #{build.build_number} "
                    f"pipeline={build.pipeline_id}, already {build.status}"
                )
            else:
                updates["status"] = incoming.status

        # First reported start wins, redeliveries must not move it
        if incoming.started_at and build.started_at is None:
            updates["started_at"] = incoming.started_at
        if incoming.finished_at and incoming.finished_at != build.finished_at:
            updates["finished_at"] = incoming.finished_at

        started_at = updates.get("started_at", build.started_at)
        finished_at = updates.get("finished_at", build.finished_at)
        if "finished_at" in updates or (build.duration is None and "started_at" in updates):
            duration = seconds_between(started_at, finished_at)
            if duration is not None:
                updates["duration"] = duration

        updates.update(self._commit_updates(build.commit, incoming.commit.model_dump(exclude_none=True)))

        if incoming.provider_url and incoming.provider_url != build.external_url:
            updates["external_url"] = incoming.provider_url
        if incoming.external_id and not build.external_id and not event.retry:
            updates["external_id"] = incoming.external_id

        if not updates:
            return build
        logger.debug(f"Merging {sorted(updates)} into build #{build.build_number}")
        return self.build_repo.save_fields(build.id, updates) or build

    @staticmethod
    def _commit_updates(current: BuildCommit, incoming: Dict[str, Any]) -> Dict[str, Any]:
        updates: Dict[str, Any] = {}
        for name, value in incoming.items():
            if name == "author":
                current_author = current.author.model_dump() if current.author else {}
                for key, author_value in value.items():
                    if current_author.get(key) != author_value:
                        updates[f"commit.author.{key}"] = author_value
            elif getattr(current, name) != value:
                updates[f"commit.{name}"] = value
        return updates

    @staticmethod
    def _summary(build: Build) -> LastBuildSummary:
        author = build.commit.author
        return LastBuildSummary(
            build_id=build.id,
            build_number=build.build_number,
            status=build.status,
            started_at=build.started_at,
            finished_at=build.finished_at,
            duration=build.duration,
            commit_sha=build.commit.sha,
            commit_message=build.commit.message,
            commit_author=author.name if author else None,
            url=build.external_url,
        )

    def _update_stats(self, pipeline: Pipeline, build: Build) -> None:
        counts = self.build_repo.count_by_status(pipeline.id)
        total = sum(counts.values())
        success_rate = (
            round(counts.get(BuildStatus.SUCCESS.value, 0) / total * 100, 2) if total else 0.0
        )

        current = self.pipeline_repo.find_by_id(pipeline.id) or pipeline
        average_duration = None
        if build.duration is not None:
            if current.average_duration is None:
                average_duration = float(build.duration)
            else:
                average_duration = round(
                    AVERAGE_DURATION_DECAY * current.average_duration
                    + (1 - AVERAGE_DURATION_DECAY) * build.duration,
                    2,
                )

        finished_at = build.finished_at or utc_now()
        self.pipeline_repo.apply_build_stats(
            pipeline.id,
            success_rate=success_rate,
            average_duration=average_duration,
            last_build_status=build.status,
            last_build_at=finished_at,
            last_successful_build_at=(
                finished_at if build.status == BuildStatus.SUCCESS.value else None
            ),
        )

    def _notify(self, pipeline: Pipeline, build: Build) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier.notify_build_finalized(pipeline, build)
        except Exception as e:
            logger.exception(f"Notification failed for build {build.id}: {e}")
