"""
Matcher: candidate tasks for an incoming event.

A task is eligible when its event type matches, the task, mission and game are
active and inside their time windows, the player is in the audience of both
game and mission, any prerequisite mission is completed, and the player's
progress row for the current cycle is not terminal.
"""

from datetime import datetime
from typing import Dict, List, Optional

from progress_engine.constants import TaskStatus
from progress_engine.database.catalog import CatalogReader
from progress_engine.database.models import Player, Task
from progress_engine.database.progress_store import SqlProgressStore
from progress_engine.utils.audience import AudienceStrategy, default_audience_strategies, is_in_audience
from progress_engine.utils.logger import setup_logger
from progress_engine.utils.recurrence import cycle_key_for
from progress_engine.utils.time_parser import utcnow, within_window

logger = setup_logger(__name__)


class Matcher:
    """Resolves the tasks an event can advance for a player."""

    def __init__(self, catalog: CatalogReader, progress_store: SqlProgressStore,
                 audience_strategies: Optional[Dict[str, AudienceStrategy]] = None):
        self.catalog = catalog
        self.progress_store = progress_store
        self.audience_strategies = audience_strategies or default_audience_strategies()
        self.logger = logger

    def _is_available(self, task: Task, player: Player, now: datetime) -> bool:
        mission = task.mission
        game = mission.game
        if not within_window(game.start_date, game.end_date, now):
            return False
        if not within_window(mission.start_date, mission.end_date, now):
            return False
        if not is_in_audience(self.audience_strategies, game.target_type, game.target_players, player):
            return False
        return is_in_audience(self.audience_strategies, mission.target_type, mission.target_players, player)

    async def find_eligible_tasks(self, event_type: str, player: Player, game_id: Optional[int] = None,
                                  now: Optional[datetime] = None) -> List[Task]:
        """
        Get the tasks the event advances, ordered by order index then id.

        Args:
            event_type: Catalog event type name
            player: Player the event belongs to
            game_id: Restrict matching to one game's missions
            now: Evaluation time for windows and cycles
        """
        now = now or utcnow()
        candidates = await self.catalog.get_active_tasks_by_event_type(event_type, game_id=game_id)
        candidates = [task for task in candidates if self._is_available(task, player, now)]
        if not candidates:
            return []

        prerequisite_ids = {
            task.mission.prerequisite_mission_id
            for task in candidates
            if task.mission.prerequisite_mission_id is not None
        }
        completed_prerequisites = await self.progress_store.get_completed_mission_ids(
            player.id, prerequisite_ids
        )
        candidates = [
            task for task in candidates
            if task.mission.prerequisite_mission_id is None
            or task.mission.prerequisite_mission_id in completed_prerequisites
        ]

        keys = {(task.id, cycle_key_for(task.mission, now)) for task in candidates}
        statuses = await self.progress_store.get_task_statuses(player.id, keys)

        eligible = [
            task for task in candidates
            if statuses.get((task.id, cycle_key_for(task.mission, now))) not in TaskStatus.TERMINAL
        ]
        eligible.sort(key=lambda task: (task.order_index, task.id))

        self.logger.debug(
            f"Event '{event_type}' for player {player.id}: {len(eligible)} eligible task(s)"
        )
        return eligible
