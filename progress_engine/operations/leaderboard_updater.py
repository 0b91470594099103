"""
Leaderboard Updater

Maintains the running per-(player, game) totals and the player's cumulative
counters through atomic upsert-increments. Ranks are left to the batch
recalculation in LeaderboardService.

When a completion is named by its progress row (task or mission id plus
cycle), the increment is tied to that row's credit marker and applied at most
once, so a retried event can repeat this step safely.
"""

from datetime import datetime
from typing import Optional

from progress_engine.constants import RecurrenceConstants
from progress_engine.database.models import Player
from progress_engine.database.progress_store import SqlProgressStore
from progress_engine.utils.logger import setup_logger
from progress_engine.utils.time_parser import utcnow

logger = setup_logger(__name__)


class LeaderboardUpdater:

    def __init__(self, progress_store: SqlProgressStore):
        self.progress_store = progress_store
        self.logger = logger

    async def record_mission_completion(self, player: Player, game_id: int, points_earned: int,
                                        now: Optional[datetime] = None, mission_id: Optional[int] = None,
                                        cycle_key: str = RecurrenceConstants.NO_CYCLE) -> bool:
        """
        Add a completed mission and its points to the player's totals.

        Returns:
            False if the mission's progress row was already credited
        """
        now = now or utcnow()
        if mission_id is None:
            await self.progress_store.increment_leaderboard(player.id, game_id, now, points=points_earned, missions=1)
        elif not await self.progress_store.credit_mission_completion(
                player.id, mission_id, cycle_key, game_id, points_earned, now):
            self.logger.debug(f"Mission {mission_id} already credited to player {player.id}")
            return False

        self.logger.debug(f"Leaderboard: player {player.id} +{points_earned} points in game {game_id}")
        return True

    async def record_task_completion(self, player: Player, game_id: int, now: Optional[datetime] = None,
                                     task_id: Optional[int] = None,
                                     cycle_key: str = RecurrenceConstants.NO_CYCLE) -> bool:
        now = now or utcnow()
        if task_id is None:
            await self.progress_store.increment_leaderboard(player.id, game_id, now, tasks=1)
            return True
        return await self.progress_store.credit_task_completion(player.id, task_id, cycle_key, game_id, now)
