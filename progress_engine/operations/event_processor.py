"""
Event Processor

Sole entry point of the engine. Processes one activity event for one player:

    validate → player get-or-create → event log claim → match → apply hits
    → grant rewards / update leaderboard → mark processed

Sub-steps commit independently; a failure part way through is reported and
the already committed steps stay in place. The failed event's claim is
released, and the retry that re-claims it first finishes any completion whose
rewards or leaderboard credit were left out. Redeliveries of a processed event
are recognised through the event log and change nothing.
"""

import asyncio
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Union

from progress_engine.config import Config
from progress_engine.database.catalog import CatalogReader, SqlCatalogStore
from progress_engine.database.event_log import EventLogStore
from progress_engine.database.progress_store import SqlProgressStore
from progress_engine.data_models.events import ActivityEvent
from progress_engine.data_models.results import ProcessingResult, SkipResult
from progress_engine.operations.leaderboard_updater import LeaderboardUpdater
from progress_engine.operations.matcher import Matcher
from progress_engine.operations.progress_tracker import ProgressTracker
from progress_engine.operations.reward_grantor import RewardGrantor
from progress_engine.utils.exceptions import EngineException, ErrorKind, ValidationError
from progress_engine.utils.logger import setup_logger
from progress_engine.utils.time_parser import utcnow

logger = setup_logger(__name__)


class EventProcessor:
    """Orchestrates matching, progress, rewards and leaderboard for one event."""

    def __init__(self, catalog: CatalogReader, progress_store: SqlProgressStore, event_log: EventLogStore,
                 matcher: Optional[Matcher] = None, tracker: Optional[ProgressTracker] = None,
                 grantor: Optional[RewardGrantor] = None, leaderboard: Optional[LeaderboardUpdater] = None,
                 processing_timeout: Optional[float] = None, clock: Callable[[], datetime] = utcnow):
        self.catalog = catalog
        self.progress_store = progress_store
        self.event_log = event_log
        self.matcher = matcher or Matcher(catalog, progress_store)
        self.tracker = tracker or ProgressTracker(catalog, progress_store)
        self.grantor = grantor or RewardGrantor(catalog, progress_store)
        self.leaderboard = leaderboard or LeaderboardUpdater(progress_store)
        self.processing_timeout = processing_timeout or Config.PROCESSING_TIMEOUT_SECONDS
        self.clock = clock
        self.logger = logger

    @classmethod
    def from_database(cls, database, audience_strategies=None, **kwargs) -> 'EventProcessor':
        """Wire the SQL-backed stores of an initialized Database."""
        factory = database.session_factory
        catalog = SqlCatalogStore(factory)
        progress_store = SqlProgressStore(factory, dialect_name=database.dialect_name)
        event_log = EventLogStore(factory, dialect_name=database.dialect_name)
        matcher = Matcher(catalog, progress_store, audience_strategies)
        return cls(catalog, progress_store, event_log, matcher=matcher, **kwargs)

    async def process_event(self, event: Union[ActivityEvent, Dict[str, Any]]) -> ProcessingResult:
        """
        Process one event.

        Never raises for engine errors: validation failures, storage failures
        and the processing timeout are reported as an unsuccessful result.
        """
        try:
            return await asyncio.wait_for(self._process(event), timeout=self.processing_timeout)
        except asyncio.TimeoutError:
            self.logger.error(f"Event processing exceeded {self.processing_timeout}s")
            return ProcessingResult.failure(
                ErrorKind.STORAGE_UNAVAILABLE,
                f"Processing timed out after {self.processing_timeout}s"
            )
        except ValidationError as e:
            self.logger.warning(e.message)
            return ProcessingResult.failure(e.kind, e.message)
        except EngineException as e:
            self.logger.error(f"Event processing failed: {e.message}")
            return ProcessingResult.failure(e.kind, e.message)

    async def _process(self, event: Union[ActivityEvent, Dict[str, Any]]) -> ProcessingResult:
        if not isinstance(event, ActivityEvent):
            event = ActivityEvent.from_payload(event)

        event_type = await self.catalog.get_event_type_by_name(event.event_type)
        if event_type is None:
            raise ValidationError(f"unknown event type '{event.event_type}'")

        now = self.clock()
        player = await self.progress_store.get_or_create_player(event.player_external_id)

        idempotency_key = event.resolve_idempotency_key()
        claim = await self.event_log.append(
            player.id, idempotency_key, event.to_payload(), now,
            game_id=event.game_id, event_type_id=event_type.id
        )
        if not claim.owned:
            if claim.processed:
                self.logger.info(f"Duplicate event {idempotency_key[:12]} for player {player.id}, skipped")
                return ProcessingResult(success=True, duplicate=True)
            self.logger.info(f"Event {idempotency_key[:12]} is being processed by another invocation")
            return ProcessingResult.failure(
                ErrorKind.CONFLICT_RETRY,
                f"Event {idempotency_key[:12]} is still being processed; retry later"
            )

        try:
            result = ProcessingResult(success=True)
            if claim.reclaimed:
                await self._recover_completions(player, now, result)
            await self._apply(event, player, now, result)
        except BaseException:
            # Cancellation by the processing timeout lands here too
            await asyncio.shield(self._release(claim.entry_id))
            raise

        await self.event_log.mark_processed(claim.entry_id, now)
        return result

    async def _apply(self, event: ActivityEvent, player, now: datetime, result: ProcessingResult) -> None:
        tasks = await self.matcher.find_eligible_tasks(event.event_type, player, game_id=event.game_id, now=now)
        for task in tasks:
            mission = task.mission
            hit = await self.tracker.apply_task_hit(player, task, mission, now)

            if hit.task_completed:
                await self._credit_task(player, task, hit.cycle_key, now, result)
            if hit.mission_completed:
                await self._complete_mission(player, mission, hit.cycle_key, hit.points_earned, now, result)

        if not tasks and not result.tasks_completed and not result.missions_completed:
            result.error = ErrorKind.NOT_ELIGIBLE

        self.logger.info(
            f"Processed '{event.event_type}' for player {player.id}: "
            f"{len(result.tasks_completed)} task(s), {len(result.missions_completed)} mission(s) completed"
        )

    async def _credit_task(self, player, task, cycle_key: str, now: datetime, result: ProcessingResult) -> None:
        if await self.leaderboard.record_task_completion(
                player, task.mission.game_id, now, task_id=task.id, cycle_key=cycle_key):
            result.tasks_completed.append(task.id)

    async def _complete_mission(self, player, mission, cycle_key: str, points_earned: int, now: datetime,
                                result: ProcessingResult) -> None:
        grants = await self.grantor.grant_rewards_for_mission(player, mission, now)
        result.rewards_granted.extend(grant.reward_id for grant in grants)
        if await self.leaderboard.record_mission_completion(
                player, mission.game_id, points_earned, now, mission_id=mission.id, cycle_key=cycle_key):
            result.missions_completed.append(mission.id)

    async def _recover_completions(self, player, now: datetime, result: ProcessingResult) -> None:
        """
        Finish completions an earlier failed attempt left half applied.

        A completed task without its credit marker may still owe its mission a
        recompute; a completed mission without one may still owe its rewards.
        Each step is idempotent, so repeating one that did commit is harmless.
        """
        for row in await self.progress_store.get_uncredited_task_completions(player.id):
            task = await self.catalog.get_task(row.task_id)
            if task is None:
                self.logger.warning(f"Completed task {row.task_id} is no longer in the catalog")
                continue
            mission = task.mission
            await self.progress_store.recompute_mission_progress(
                player.id, mission.id, mission.points_required, row.cycle_key, now
            )
            await self._credit_task(player, task, row.cycle_key, now, result)

        for row in await self.progress_store.get_uncredited_mission_completions(player.id):
            mission = await self.catalog.get_mission(row.mission_id)
            if mission is None:
                self.logger.warning(f"Completed mission {row.mission_id} is no longer in the catalog")
                continue
            await self._complete_mission(player, mission, row.cycle_key, row.points_earned, now, result)

        if result.tasks_completed or result.missions_completed:
            self.logger.info(
                f"Recovered {len(result.tasks_completed)} task(s) and "
                f"{len(result.missions_completed)} mission(s) for player {player.id}"
            )

    async def _release(self, entry_id: int) -> None:
        try:
            await self.event_log.release(entry_id)
        except EngineException as e:
            # The claim lapses after EVENT_CLAIM_TIMEOUT_SECONDS instead
            self.logger.warning(f"Could not release event log entry {entry_id}: {e.message}")

    async def skip_task(self, player_external_id: str, task_id: int) -> SkipResult:
        """Skip an optional task on behalf of a player identified by external id."""
        try:
            rejection = self.tracker.reject_skip(await self.catalog.get_task(task_id), task_id)
            if rejection is not None:
                return rejection
            player = await self.progress_store.get_or_create_player(player_external_id)
            return await self.tracker.skip_task(player, task_id, self.clock())
        except EngineException as e:
            self.logger.error(f"Skip of task {task_id} failed: {e.message}")
            return SkipResult(success=False, error=e.kind, message=e.message)
