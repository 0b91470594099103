"""
Progress Tracker

Applies task hits and skips to TaskProgress and rolls the result up into
MissionProgress. Every change is a single atomic store call; the tracker never
reads a counter, changes it and writes it back.
"""

from datetime import datetime
from typing import Optional

from progress_engine.constants import TaskStatus
from progress_engine.database.catalog import CatalogReader
from progress_engine.database.models import Mission, Player, Task
from progress_engine.database.progress_store import SqlProgressStore
from progress_engine.data_models.results import SkipResult, TaskHitResult
from progress_engine.utils.exceptions import ErrorKind
from progress_engine.utils.logger import setup_logger
from progress_engine.utils.recurrence import cycle_key_for
from progress_engine.utils.time_parser import utcnow

logger = setup_logger(__name__)


class ProgressTracker:
    """Task and mission progress transitions for one player."""

    def __init__(self, catalog: CatalogReader, progress_store: SqlProgressStore):
        self.catalog = catalog
        self.progress_store = progress_store
        self.logger = logger

    async def _mission_points(self, player_id: int, mission_id: int, cycle_key: str) -> int:
        progress = await self.progress_store.get_mission_progress(player_id, mission_id, cycle_key)
        return progress.points_earned if progress else 0

    async def apply_task_hit(self, player: Player, task: Task, mission: Mission,
                             now: Optional[datetime] = None) -> TaskHitResult:
        """
        Count one matching event against a task and recompute its mission.

        Exactly one concurrent caller sees task_completed (and, for the hit
        that carries the mission over its threshold, mission_completed).
        A hit on a terminal row changes nothing.
        """
        now = now or utcnow()
        cycle_key = cycle_key_for(mission, now)

        update = await self.progress_store.increment_task_progress(player.id, task, cycle_key, now)
        if update is None:
            self.logger.debug(f"Task {task.id} already terminal for player {player.id}, hit ignored")
            current = await self.progress_store.get_task_progress(player.id, task.id, cycle_key)
            skipped = current is not None and current.status == TaskStatus.SKIPPED
            return TaskHitResult(
                task_completed=False,
                mission_completed=False,
                points_earned=await self._mission_points(player.id, mission.id, cycle_key),
                progress=current.progress if current else 0,
                cycle_key=cycle_key,
                error=ErrorKind.ALREADY_SKIPPED if skipped else ErrorKind.ALREADY_COMPLETED,
            )

        recompute = await self.progress_store.recompute_mission_progress(
            player.id, mission.id, mission.points_required, cycle_key, now
        )
        if recompute is None:
            # Mission was already completed; its points are frozen
            points_earned = await self._mission_points(player.id, mission.id, cycle_key)
            mission_completed = False
        else:
            points_earned = recompute.points_earned
            mission_completed = recompute.completed_now

        if update.completed_now:
            self.logger.info(f"Player {player.id} completed task {task.id} ({task.name})")
        if mission_completed:
            self.logger.info(
                f"Player {player.id} completed mission {mission.id} ({mission.name}) "
                f"with {points_earned}/{mission.points_required} points"
            )

        return TaskHitResult(
            task_completed=update.completed_now,
            mission_completed=mission_completed,
            points_earned=points_earned,
            progress=update.progress,
            cycle_key=cycle_key,
        )

    @staticmethod
    def reject_skip(task: Optional[Task], task_id: int) -> Optional[SkipResult]:
        """Catalog-level skip checks; None when the task may be skipped."""
        if task is None:
            return SkipResult(success=False, error=ErrorKind.TASK_NOT_FOUND, message=f"Task {task_id} not found")
        if not task.is_optional:
            return SkipResult(success=False, error=ErrorKind.TASK_REQUIRED,
                              message=f"Task {task_id} is required and cannot be skipped")
        return None

    async def skip_task(self, player: Player, task_id: int, now: Optional[datetime] = None) -> SkipResult:
        """
        Skip an optional task.

        Checks run in order: unknown task, required task, already completed or
        skipped. A failed skip never changes state. A successful skip recomputes
        the mission's points but never completes or reopens the mission.
        """
        now = now or utcnow()

        task = await self.catalog.get_task(task_id)
        rejection = self.reject_skip(task, task_id)
        if rejection is not None:
            return rejection

        mission = task.mission
        cycle_key = cycle_key_for(mission, now)

        existing = await self.progress_store.get_task_progress(player.id, task_id, cycle_key)
        if existing is not None and existing.is_terminal:
            return self._terminal_failure(task_id, existing.status)

        if not await self.progress_store.skip_task_progress(player.id, task_id, cycle_key, now):
            # Lost a race with a concurrent completion or skip
            current = await self.progress_store.get_task_progress(player.id, task_id, cycle_key)
            return self._terminal_failure(task_id, current.status if current else TaskStatus.COMPLETED)

        recompute = await self.progress_store.recompute_mission_progress(
            player.id, mission.id, mission.points_required, cycle_key, now, allow_completion=False
        )
        if recompute is None:
            points_earned = await self._mission_points(player.id, mission.id, cycle_key)
        else:
            points_earned = recompute.points_earned

        self.logger.info(f"Player {player.id} skipped task {task_id} ({task.name})")
        return SkipResult(success=True, points_earned=points_earned)

    @staticmethod
    def _terminal_failure(task_id: int, status: str) -> SkipResult:
        if status == TaskStatus.SKIPPED:
            return SkipResult(success=False, error=ErrorKind.ALREADY_SKIPPED,
                              message=f"Task {task_id} was already skipped")
        return SkipResult(success=False, error=ErrorKind.ALREADY_COMPLETED,
                          message=f"Task {task_id} was already completed")
