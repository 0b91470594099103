"""
Progress store: the only shared mutable state of the engine.

Every counter and status change here is a single row-scoped statement
(upsert with ON CONFLICT, or UPDATE ... WHERE <expected state> RETURNING).
Rows are never read into memory, mutated and written back, so concurrent
invocations for the same player cannot lose updates, and exactly one caller
observes each status transition.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Collection, Dict, List, Optional, Set, Tuple
from sqlalchemy import and_, case, func, select, update
from sqlalchemy.dialects import postgresql, sqlite

from progress_engine.constants import MissionStatus, RewardStatus, TaskStatus
from progress_engine.database.models import (
    LeaderboardEntry, MissionProgress, Player, PlayerReward, Reward, Task, TaskProgress
)
from progress_engine.services.base import BaseService


@dataclass(frozen=True)
class TaskCounterUpdate:
    """Outcome of one atomic task increment."""
    progress: int
    status: str
    completed_now: bool


@dataclass(frozen=True)
class MissionRecompute:
    """Outcome of one mission recomputation."""
    points_earned: int
    status: str
    completed_now: bool


class AtomicCounterStore(ABC):
    """
    Narrow write capability handed to the engine.

    Only atomic increments, compare-and-set transitions and unique inserts are
    exposed; there is no general "save this row" operation.
    """

    @abstractmethod
    async def get_or_create_player(self, external_id: str, display_name: Optional[str] = None) -> Player:
        pass

    @abstractmethod
    async def increment_task_progress(self, player_id: int, task: Task, cycle_key: str,
                                      now: datetime) -> Optional[TaskCounterUpdate]:
        """Add one hit to a non-terminal row; None when the row is already terminal."""
        pass

    @abstractmethod
    async def skip_task_progress(self, player_id: int, task_id: int, cycle_key: str, now: datetime) -> bool:
        """Move a non-terminal row to skipped; False when the row is already terminal."""
        pass

    @abstractmethod
    async def recompute_mission_progress(self, player_id: int, mission_id: int, points_required: int,
                                         cycle_key: str, now: datetime,
                                         allow_completion: bool = True) -> Optional[MissionRecompute]:
        """Recompute points and complete the mission if reached; None when already completed."""
        pass

    @abstractmethod
    async def insert_player_reward(self, player_id: int, reward: Reward, now: datetime) -> Optional[PlayerReward]:
        """Grant a reward once; None when the player already holds it."""
        pass

    @abstractmethod
    async def increment_leaderboard(self, player_id: int, game_id: int, now: datetime, points: int = 0,
                                    missions: int = 0, tasks: int = 0) -> None:
        pass

    @abstractmethod
    async def credit_task_completion(self, player_id: int, task_id: int, cycle_key: str, game_id: int,
                                     now: datetime) -> bool:
        """Add a completed task to the totals once; False when already credited."""
        pass

    @abstractmethod
    async def credit_mission_completion(self, player_id: int, mission_id: int, cycle_key: str, game_id: int,
                                        points: int, now: datetime) -> bool:
        """Add a completed mission to the totals once; False when already credited."""
        pass


class SqlProgressStore(BaseService, AtomicCounterStore):
    """AtomicCounterStore backed by SQLite or PostgreSQL upserts."""

    def __init__(self, session_factory, dialect_name: str = 'sqlite', **kwargs):
        super().__init__(session_factory, **kwargs)
        self.dialect_name = dialect_name

    def _insert(self, model):
        """Dialect insert construct supporting ON CONFLICT clauses."""
        if self.dialect_name == 'postgresql':
            return postgresql.insert(model)
        return sqlite.insert(model)

    # Players

    async def get_or_create_player(self, external_id: str, display_name: Optional[str] = None) -> Player:
        async def upsert():
            async with self.get_session() as session:
                stmt = self._insert(Player).values(
                    external_id=external_id,
                    display_name=display_name or external_id,
                    points=0,
                    tasks_completed=0,
                    missions_completed=0,
                ).on_conflict_do_nothing(index_elements=['external_id'])
                await session.execute(stmt)

                result = await session.execute(
                    select(Player).where(Player.external_id == external_id)
                )
                return result.scalar_one()

        return await self.run_atomic("get_or_create_player", upsert)

    async def get_player(self, player_id: int) -> Optional[Player]:
        async def lookup():
            async with self.get_session() as session:
                return await session.get(Player, player_id)

        return await self.run_atomic("get_player", lookup)

    # Task progress

    async def increment_task_progress(self, player_id: int, task: Task, cycle_key: str,
                                      now: datetime) -> Optional[TaskCounterUpdate]:
        async def increment():
            async with self.get_session() as session:
                await session.execute(
                    self._insert(TaskProgress).values(
                        player_id=player_id,
                        task_id=task.id,
                        cycle_key=cycle_key,
                        status=TaskStatus.IN_PROGRESS,
                        progress=0,
                        created_at=now,
                        updated_at=now,
                    ).on_conflict_do_nothing(index_elements=['player_id', 'task_id', 'cycle_key'])
                )

                # The WHERE clause excludes terminal rows, so only one caller
                # can move the counter across the threshold
                reached = TaskProgress.progress + 1 >= task.required_progress
                stmt = (
                    update(TaskProgress)
                    .where(
                        TaskProgress.player_id == player_id,
                        TaskProgress.task_id == task.id,
                        TaskProgress.cycle_key == cycle_key,
                        TaskProgress.status.in_(TaskStatus.OPEN),
                    )
                    .values(
                        progress=TaskProgress.progress + 1,
                        status=case((reached, TaskStatus.COMPLETED), else_=TaskStatus.IN_PROGRESS),
                        completed_at=case((reached, now), else_=TaskProgress.completed_at),
                        updated_at=now,
                    )
                    .returning(TaskProgress.progress, TaskProgress.status)
                    .execution_options(synchronize_session=False)
                )
                row = (await session.execute(stmt)).one_or_none()
                if row is None:
                    return None
                return TaskCounterUpdate(
                    progress=row.progress,
                    status=row.status,
                    completed_now=row.status == TaskStatus.COMPLETED,
                )

        return await self.run_atomic("increment_task_progress", increment)

    async def skip_task_progress(self, player_id: int, task_id: int, cycle_key: str, now: datetime) -> bool:
        async def skip():
            async with self.get_session() as session:
                await session.execute(
                    self._insert(TaskProgress).values(
                        player_id=player_id,
                        task_id=task_id,
                        cycle_key=cycle_key,
                        status=TaskStatus.NOT_STARTED,
                        progress=0,
                        created_at=now,
                        updated_at=now,
                    ).on_conflict_do_nothing(index_elements=['player_id', 'task_id', 'cycle_key'])
                )
                stmt = (
                    update(TaskProgress)
                    .where(
                        TaskProgress.player_id == player_id,
                        TaskProgress.task_id == task_id,
                        TaskProgress.cycle_key == cycle_key,
                        TaskProgress.status.in_(TaskStatus.OPEN),
                    )
                    .values(status=TaskStatus.SKIPPED, skipped_at=now, updated_at=now)
                    .returning(TaskProgress.id)
                    .execution_options(synchronize_session=False)
                )
                return (await session.execute(stmt)).one_or_none() is not None

        return await self.run_atomic("skip_task_progress", skip)

    async def get_task_progress(self, player_id: int, task_id: int, cycle_key: str) -> Optional[TaskProgress]:
        async def lookup():
            async with self.get_session() as session:
                result = await session.execute(
                    select(TaskProgress).where(
                        TaskProgress.player_id == player_id,
                        TaskProgress.task_id == task_id,
                        TaskProgress.cycle_key == cycle_key,
                    )
                )
                return result.scalar_one_or_none()

        return await self.run_atomic("get_task_progress", lookup)

    async def get_task_statuses(self, player_id: int,
                                keys: Collection[Tuple[int, str]]) -> Dict[Tuple[int, str], str]:
        """Statuses of the player's (task_id, cycle_key) rows; missing rows are omitted."""
        if not keys:
            return {}
        task_ids = {task_id for task_id, _ in keys}

        async def lookup():
            async with self.get_session() as session:
                result = await session.execute(
                    select(TaskProgress.task_id, TaskProgress.cycle_key, TaskProgress.status).where(
                        TaskProgress.player_id == player_id,
                        TaskProgress.task_id.in_(task_ids),
                    )
                )
                wanted = set(keys)
                return {
                    (row.task_id, row.cycle_key): row.status
                    for row in result
                    if (row.task_id, row.cycle_key) in wanted
                }

        return await self.run_atomic("get_task_statuses", lookup)

    # Mission progress

    async def recompute_mission_progress(self, player_id: int, mission_id: int, points_required: int,
                                         cycle_key: str, now: datetime,
                                         allow_completion: bool = True) -> Optional[MissionRecompute]:
        async def recompute():
            async with self.get_session() as session:
                await session.execute(
                    self._insert(MissionProgress).values(
                        player_id=player_id,
                        mission_id=mission_id,
                        cycle_key=cycle_key,
                        status=MissionStatus.IN_PROGRESS,
                        points_earned=0,
                        started_at=now,
                        created_at=now,
                        updated_at=now,
                    ).on_conflict_do_nothing(index_elements=['player_id', 'mission_id', 'cycle_key'])
                )

                # Skipped and open tasks contribute nothing
                earned = (
                    select(func.coalesce(func.sum(Task.points), 0))
                    .select_from(TaskProgress)
                    .join(Task, Task.id == TaskProgress.task_id)
                    .where(
                        TaskProgress.player_id == player_id,
                        TaskProgress.cycle_key == cycle_key,
                        TaskProgress.status == TaskStatus.COMPLETED,
                        Task.mission_id == mission_id,
                    )
                    .scalar_subquery()
                )
                owner = and_(
                    MissionProgress.player_id == player_id,
                    MissionProgress.mission_id == mission_id,
                    MissionProgress.cycle_key == cycle_key,
                )
                refreshed = await session.execute(
                    update(MissionProgress)
                    .where(owner, MissionProgress.status != MissionStatus.COMPLETED)
                    .values(
                        points_earned=earned,
                        status=case(
                            (MissionProgress.status == MissionStatus.NOT_STARTED, MissionStatus.IN_PROGRESS),
                            else_=MissionProgress.status,
                        ),
                        started_at=func.coalesce(MissionProgress.started_at, now),
                        updated_at=now,
                    )
                    .returning(MissionProgress.points_earned, MissionProgress.status)
                    .execution_options(synchronize_session=False)
                )
                row = refreshed.one_or_none()
                if row is None:
                    return None
                if not allow_completion:
                    return MissionRecompute(points_earned=row.points_earned, status=row.status, completed_now=False)

                # Compare-and-set: only one caller flips the row to completed
                completed = await session.execute(
                    update(MissionProgress)
                    .where(
                        owner,
                        MissionProgress.status != MissionStatus.COMPLETED,
                        MissionProgress.points_earned >= points_required,
                    )
                    .values(status=MissionStatus.COMPLETED, completed_at=now, updated_at=now)
                    .returning(MissionProgress.points_earned)
                    .execution_options(synchronize_session=False)
                )
                if completed.one_or_none() is not None:
                    return MissionRecompute(points_earned=row.points_earned,
                                            status=MissionStatus.COMPLETED, completed_now=True)
                return MissionRecompute(points_earned=row.points_earned, status=row.status, completed_now=False)

        return await self.run_atomic("recompute_mission_progress", recompute)

    async def get_mission_progress(self, player_id: int, mission_id: int, cycle_key: str) -> Optional[MissionProgress]:
        async def lookup():
            async with self.get_session() as session:
                result = await session.execute(
                    select(MissionProgress).where(
                        MissionProgress.player_id == player_id,
                        MissionProgress.mission_id == mission_id,
                        MissionProgress.cycle_key == cycle_key,
                    )
                )
                return result.scalar_one_or_none()

        return await self.run_atomic("get_mission_progress", lookup)

    async def get_completed_mission_ids(self, player_id: int, mission_ids: Collection[int]) -> Set[int]:
        """Missions the player has completed in any cycle."""
        if not mission_ids:
            return set()

        async def lookup():
            async with self.get_session() as session:
                result = await session.execute(
                    select(MissionProgress.mission_id).where(
                        MissionProgress.player_id == player_id,
                        MissionProgress.mission_id.in_(set(mission_ids)),
                        MissionProgress.status == MissionStatus.COMPLETED,
                    ).distinct()
                )
                return set(result.scalars().all())

        return await self.run_atomic("get_completed_mission_ids", lookup)

    # Rewards

    async def insert_player_reward(self, player_id: int, reward: Reward, now: datetime) -> Optional[PlayerReward]:
        async def grant():
            async with self.get_session() as session:
                result = await session.execute(
                    self._insert(PlayerReward).values(
                        player_id=player_id,
                        reward_id=reward.id,
                        mission_id=reward.mission_id,
                        status=RewardStatus.EARNED,
                        earned_at=now,
                        expires_at=reward.expires_at,
                    )
                    .on_conflict_do_nothing(index_elements=['player_id', 'reward_id'])
                    .returning(PlayerReward.id)
                )
                grant_id = result.scalar_one_or_none()
                if grant_id is None:
                    return None
                return await session.get(PlayerReward, grant_id)

        return await self.run_atomic("insert_player_reward", grant)

    async def get_player_rewards(self, player_id: int) -> List[PlayerReward]:
        async def lookup():
            async with self.get_session() as session:
                result = await session.execute(
                    select(PlayerReward)
                    .where(PlayerReward.player_id == player_id)
                    .order_by(PlayerReward.id)
                )
                return list(result.scalars().all())

        return await self.run_atomic("get_player_rewards", lookup)

    # Leaderboard and player aggregates

    async def _add_to_totals(self, session, player_id: int, game_id: int, now: datetime, points: int = 0,
                             missions: int = 0, tasks: int = 0) -> None:
        stmt = self._insert(LeaderboardEntry).values(
            player_id=player_id,
            game_id=game_id,
            total_points=points,
            completed_missions=missions,
            completed_tasks=tasks,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=['player_id', 'game_id'],
            set_={
                'total_points': LeaderboardEntry.total_points + stmt.excluded.total_points,
                'completed_missions': LeaderboardEntry.completed_missions + stmt.excluded.completed_missions,
                'completed_tasks': LeaderboardEntry.completed_tasks + stmt.excluded.completed_tasks,
                'updated_at': stmt.excluded.updated_at,
            }
        )
        await session.execute(stmt)

        await session.execute(
            update(Player)
            .where(Player.id == player_id)
            .values(
                points=Player.points + points,
                missions_completed=Player.missions_completed + missions,
                tasks_completed=Player.tasks_completed + tasks,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )

    async def increment_leaderboard(self, player_id: int, game_id: int, now: datetime, points: int = 0,
                                    missions: int = 0, tasks: int = 0) -> None:
        async def increment():
            async with self.get_session() as session:
                await self._add_to_totals(session, player_id, game_id, now, points, missions, tasks)

        await self.run_atomic("increment_leaderboard", increment)

    async def credit_task_completion(self, player_id: int, task_id: int, cycle_key: str, game_id: int,
                                     now: datetime) -> bool:
        async def credit():
            async with self.get_session() as session:
                # The marker and the increments commit together
                marked = await session.execute(
                    update(TaskProgress)
                    .where(
                        TaskProgress.player_id == player_id,
                        TaskProgress.task_id == task_id,
                        TaskProgress.cycle_key == cycle_key,
                        TaskProgress.status == TaskStatus.COMPLETED,
                        TaskProgress.credited_at.is_(None),
                    )
                    .values(credited_at=now)
                    .returning(TaskProgress.id)
                    .execution_options(synchronize_session=False)
                )
                if marked.one_or_none() is None:
                    return False
                await self._add_to_totals(session, player_id, game_id, now, tasks=1)
                return True

        return await self.run_atomic("credit_task_completion", credit)

    async def credit_mission_completion(self, player_id: int, mission_id: int, cycle_key: str, game_id: int,
                                        points: int, now: datetime) -> bool:
        async def credit():
            async with self.get_session() as session:
                marked = await session.execute(
                    update(MissionProgress)
                    .where(
                        MissionProgress.player_id == player_id,
                        MissionProgress.mission_id == mission_id,
                        MissionProgress.cycle_key == cycle_key,
                        MissionProgress.status == MissionStatus.COMPLETED,
                        MissionProgress.credited_at.is_(None),
                    )
                    .values(credited_at=now)
                    .returning(MissionProgress.id)
                    .execution_options(synchronize_session=False)
                )
                if marked.one_or_none() is None:
                    return False
                await self._add_to_totals(session, player_id, game_id, now, points=points, missions=1)
                return True

        return await self.run_atomic("credit_mission_completion", credit)

    async def get_uncredited_task_completions(self, player_id: int) -> List[TaskProgress]:
        """Completed task rows whose leaderboard credit was never applied."""
        async def lookup():
            async with self.get_session() as session:
                result = await session.execute(
                    select(TaskProgress)
                    .where(
                        TaskProgress.player_id == player_id,
                        TaskProgress.status == TaskStatus.COMPLETED,
                        TaskProgress.credited_at.is_(None),
                    )
                    .order_by(TaskProgress.id)
                )
                return list(result.scalars().all())

        return await self.run_atomic("get_uncredited_task_completions", lookup)

    async def get_uncredited_mission_completions(self, player_id: int) -> List[MissionProgress]:
        """Completed mission rows whose rewards and leaderboard credit may be missing."""
        async def lookup():
            async with self.get_session() as session:
                result = await session.execute(
                    select(MissionProgress)
                    .where(
                        MissionProgress.player_id == player_id,
                        MissionProgress.status == MissionStatus.COMPLETED,
                        MissionProgress.credited_at.is_(None),
                    )
                    .order_by(MissionProgress.id)
                )
                return list(result.scalars().all())

        return await self.run_atomic("get_uncredited_mission_completions", lookup)

    async def get_leaderboard_entry(self, player_id: int, game_id: int) -> Optional[LeaderboardEntry]:
        async def lookup():
            async with self.get_session() as session:
                result = await session.execute(
                    select(LeaderboardEntry).where(
                        LeaderboardEntry.player_id == player_id,
                        LeaderboardEntry.game_id == game_id,
                    )
                )
                return result.scalar_one_or_none()

        return await self.run_atomic("get_leaderboard_entry", lookup)
