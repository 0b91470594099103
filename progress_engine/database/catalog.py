"""
Catalog read port.

Games, missions, tasks, rewards and event types are read-only to the engine.
Components receive a CatalogReader instead of reaching for global state, so
tests and alternative backends can supply their own catalog.
"""

from abc import ABC, abstractmethod
from typing import List, Optional
from sqlalchemy import select
from sqlalchemy.orm import joinedload, selectinload

from progress_engine.database.models import EventType, Game, Mission, Reward, Task
from progress_engine.services.base import BaseService


class CatalogReader(ABC):
    """Read-only catalog lookups used by the engine."""

    @abstractmethod
    async def get_event_type_by_name(self, name: str) -> Optional[EventType]:
        pass

    @abstractmethod
    async def get_active_tasks_by_event_type(self, event_type: str, game_id: Optional[int] = None) -> List[Task]:
        """Active tasks listening for the event type, with mission and game loaded."""
        pass

    @abstractmethod
    async def get_task(self, task_id: int) -> Optional[Task]:
        pass

    @abstractmethod
    async def get_mission(self, mission_id: int) -> Optional[Mission]:
        pass

    @abstractmethod
    async def get_rewards_for_mission(self, mission_id: int) -> List[Reward]:
        pass


class SqlCatalogStore(BaseService, CatalogReader):
    """Catalog reader backed by the catalog tables."""

    async def get_event_type_by_name(self, name: str) -> Optional[EventType]:
        async def lookup():
            async with self.get_session() as session:
                result = await session.execute(
                    select(EventType).where(EventType.name == name)
                )
                return result.scalar_one_or_none()

        return await self.run_atomic("get_event_type_by_name", lookup)

    async def get_active_tasks_by_event_type(self, event_type: str, game_id: Optional[int] = None) -> List[Task]:
        async def lookup():
            async with self.get_session() as session:
                query = (
                    select(Task)
                    .join(Task.event_type)
                    .join(Task.mission)
                    .join(Mission.game)
                    .options(joinedload(Task.mission).joinedload(Mission.game))
                    .where(
                        EventType.name == event_type,
                        Task.is_active == True,
                        Mission.is_active == True,
                        Game.is_active == True,
                    )
                )
                if game_id is not None:
                    query = query.where(Mission.game_id == game_id)
                query = query.order_by(Task.order_index, Task.id)

                result = await session.execute(query)
                return list(result.scalars().unique().all())

        return await self.run_atomic("get_active_tasks_by_event_type", lookup)

    async def get_task(self, task_id: int) -> Optional[Task]:
        async def lookup():
            async with self.get_session() as session:
                result = await session.execute(
                    select(Task)
                    .options(joinedload(Task.mission).joinedload(Mission.game))
                    .where(Task.id == task_id)
                )
                return result.scalar_one_or_none()

        return await self.run_atomic("get_task", lookup)

    async def get_mission(self, mission_id: int) -> Optional[Mission]:
        async def lookup():
            async with self.get_session() as session:
                result = await session.execute(
                    select(Mission)
                    .options(joinedload(Mission.game), selectinload(Mission.tasks))
                    .where(Mission.id == mission_id)
                )
                return result.scalar_one_or_none()

        return await self.run_atomic("get_mission", lookup)

    async def get_rewards_for_mission(self, mission_id: int) -> List[Reward]:
        async def lookup():
            async with self.get_session() as session:
                result = await session.execute(
                    select(Reward)
                    .where(Reward.mission_id == mission_id)
                    .order_by(Reward.id)
                )
                return list(result.scalars().all())

        return await self.run_atomic("get_rewards_for_mission", lookup)
