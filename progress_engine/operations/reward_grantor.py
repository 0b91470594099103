"""
Reward Grantor

Issues every reward configured for a completed mission. The (player, reward)
uniqueness makes a second grant a silent no-op, so the completion path may be
entered more than once without duplicating rewards.
"""

from datetime import datetime
from typing import List, Optional

from progress_engine.database.catalog import CatalogReader
from progress_engine.database.models import Mission, Player, PlayerReward
from progress_engine.database.progress_store import SqlProgressStore
from progress_engine.utils.logger import setup_logger
from progress_engine.utils.time_parser import utcnow

logger = setup_logger(__name__)


class RewardGrantor:

    def __init__(self, catalog: CatalogReader, progress_store: SqlProgressStore):
        self.catalog = catalog
        self.progress_store = progress_store
        self.logger = logger

    async def grant_rewards_for_mission(self, player: Player, mission: Mission,
                                        now: Optional[datetime] = None) -> List[PlayerReward]:
        """Grant the mission's rewards; only newly created grants are returned."""
        now = now or utcnow()
        rewards = await self.catalog.get_rewards_for_mission(mission.id)

        granted = []
        for reward in rewards:
            grant = await self.progress_store.insert_player_reward(player.id, reward, now)
            if grant is None:
                self.logger.debug(f"Reward {reward.id} already granted to player {player.id}")
                continue
            granted.append(grant)
            self.logger.info(f"Granted reward {reward.id} ({reward.name}) to player {player.id}")

        return granted
