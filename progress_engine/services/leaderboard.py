"""
Leaderboard service

Read side of the per-game leaderboard plus the batch rank recalculation.
Players are ordered by total points descending; ties go to whoever reached
their total first (earliest updated_at), then to the lower entry id.
"""

import asyncio
import logging
import time
from typing import List, Optional
from sqlalchemy import func, select, update

from progress_engine.config import Config
from progress_engine.constants import CacheConstants, PaginationConstants
from progress_engine.data_models.leaderboard import LeaderboardPage, LeaderboardRow, LeaderboardStats, PlayerRanking
from progress_engine.database.models import LeaderboardEntry, Player
from progress_engine.services.base import BaseService
from progress_engine.utils.redis_utils import RedisUtils

logger = logging.getLogger(__name__)

RANKING_ORDER = [
    LeaderboardEntry.total_points.desc(),
    LeaderboardEntry.updated_at.asc(),
    LeaderboardEntry.id.asc(),
]


class LeaderboardService(BaseService):
    """Service for leaderboard queries and ranking with caching."""

    def __init__(self, session_factory, cache_ttl: Optional[int] = None, redis_client=None, **kwargs):
        super().__init__(session_factory, **kwargs)
        # TTL cache for leaderboard pages
        self._cache = {}
        self._cache_timestamps = {}
        self._cache_ttl = Config.LEADERBOARD_CACHE_TTL if cache_ttl is None else cache_ttl
        self._cache_max_size = CacheConstants.DEFAULT_MAX_CACHE_SIZE
        self._cache_lock = asyncio.Lock()
        self.redis_client = redis_client
        self._redis_checked = redis_client is not None

    async def _get_redis_client(self):
        """Get Redis client for rank recalculation locking. Returns None if unavailable."""
        if not self._redis_checked:
            self._redis_checked = True
            self.redis_client = await RedisUtils.create_redis_client()
            if self.redis_client is None:
                logger.warning("No Redis configured. Rank recalculation will run without locking.")
        return self.redis_client

    async def _is_cache_valid(self, key: str) -> bool:
        async with self._cache_lock:
            if key not in self._cache_timestamps:
                return False
            return time.time() - self._cache_timestamps[key] < self._cache_ttl

    async def _cleanup_cache(self):
        """Remove expired entries and enforce size limits."""
        async with self._cache_lock:
            current_time = time.time()
            expired_keys = [
                key for key, timestamp in self._cache_timestamps.items()
                if current_time - timestamp >= self._cache_ttl
            ]
            for key in expired_keys:
                self._cache.pop(key, None)
                self._cache_timestamps.pop(key, None)

            if len(self._cache) > self._cache_max_size:
                sorted_keys = sorted(self._cache_timestamps.items(), key=lambda x: x[1])
                for key, _ in sorted_keys[:len(self._cache) - self._cache_max_size]:
                    self._cache.pop(key, None)
                    self._cache_timestamps.pop(key, None)

    async def invalidate_cache(self, game_id: Optional[int] = None):
        """Drop cached pages, for one game or all of them."""
        async with self._cache_lock:
            prefix = f"leaderboard:{game_id}:" if game_id is not None else "leaderboard:"
            for key in [key for key in self._cache if key.startswith(prefix)]:
                self._cache.pop(key, None)
                self._cache_timestamps.pop(key, None)

    def _ranking_subquery(self, game_id: int):
        return (
            select(
                LeaderboardEntry.player_id,
                LeaderboardEntry.total_points,
                LeaderboardEntry.completed_missions,
                LeaderboardEntry.completed_tasks,
                LeaderboardEntry.updated_at,
                Player.display_name,
                func.row_number().over(order_by=RANKING_ORDER).label('rank'),
            )
            .join(Player, Player.id == LeaderboardEntry.player_id)
            .where(LeaderboardEntry.game_id == game_id)
            .subquery()
        )

    @staticmethod
    def _to_row(row) -> LeaderboardRow:
        return LeaderboardRow(
            rank=row.rank,
            player_id=row.player_id,
            display_name=row.display_name or f"Player {row.player_id}",
            total_points=row.total_points or 0,
            completed_missions=row.completed_missions or 0,
            completed_tasks=row.completed_tasks or 0,
            updated_at=row.updated_at,
        )

    async def recalculate_ranks(self, game_id: int) -> bool:
        """
        Write the ordinal rank of every entry in the game.

        Debounced per game through a Redis lock when Redis is configured.

        Returns:
            False if a recent recalculation still holds the lock
        """
        redis_client = await self._get_redis_client()
        if redis_client:
            lock_key = f"rank_recalculation_lock:{game_id}"
            is_locked = await redis_client.set(lock_key, "1", ex=Config.RANK_RECALC_LOCK_SECONDS, nx=True)
            if not is_locked:
                logger.info(f"Rank recalculation for game {game_id} throttled - lock exists")
                return False

        async def recalculate():
            async with self.get_session() as session:
                result = await session.execute(
                    select(LeaderboardEntry.id)
                    .where(LeaderboardEntry.game_id == game_id)
                    .order_by(*RANKING_ORDER)
                )
                ordered_ids = list(result.scalars().all())
                if ordered_ids:
                    await session.execute(
                        update(LeaderboardEntry),
                        [{'id': entry_id, 'rank': rank} for rank, entry_id in enumerate(ordered_ids, start=1)]
                    )
                return len(ordered_ids)

        ranked = await self.run_atomic("recalculate_ranks", recalculate)
        await self.invalidate_cache(game_id)
        logger.info(f"Recalculated ranks for {ranked} player(s) in game {game_id}")
        return True

    async def get_page(self, game_id: int, page: int = 1,
                       page_size: int = PaginationConstants.DEFAULT_PAGE_SIZE) -> LeaderboardPage:
        """Get a leaderboard page with read-time ranks."""
        if not isinstance(page, int) or page < 1:
            raise ValueError("page must be a positive integer")
        if not isinstance(page_size, int) or page_size < 1 or page_size > PaginationConstants.MAX_PAGE_SIZE:
            raise ValueError(f"page_size must be between 1 and {PaginationConstants.MAX_PAGE_SIZE}")

        cache_key = f"leaderboard:{game_id}:{page}:{page_size}"
        if await self._is_cache_valid(cache_key):
            async with self._cache_lock:
                return self._cache[cache_key]

        await self._cleanup_cache()

        async def load():
            async with self.get_session() as session:
                ranking = self._ranking_subquery(game_id)
                total_count = await session.scalar(select(func.count()).select_from(ranking))

                result = await session.execute(
                    select(ranking)
                    .order_by(ranking.c.rank)
                    .limit(page_size)
                    .offset((page - 1) * page_size)
                )
                entries = [self._to_row(row) for row in result]

                return LeaderboardPage(
                    entries=entries,
                    current_page=page,
                    total_pages=(total_count + page_size - 1) // page_size if total_count > 0 else 1,
                    total_players=total_count,
                    game_id=game_id,
                )

        leaderboard_page = await self.run_atomic("get_leaderboard_page", load)

        async with self._cache_lock:
            self._cache[cache_key] = leaderboard_page
            self._cache_timestamps[cache_key] = time.time()
        return leaderboard_page

    async def get_player_ranking(self, player_id: int, game_id: int) -> Optional[PlayerRanking]:
        """Get a player's rank in a game, or None if the player has no entry there."""
        async def load():
            async with self.get_session() as session:
                ranking = self._ranking_subquery(game_id)
                row = (await session.execute(
                    select(ranking).where(ranking.c.player_id == player_id)
                )).one_or_none()
                if row is None:
                    return None
                total_players = await session.scalar(select(func.count()).select_from(ranking))

                return PlayerRanking(
                    player_id=player_id,
                    game_id=game_id,
                    rank=row.rank,
                    total_players=total_players,
                    total_points=row.total_points,
                    percentile=round((total_players - row.rank + 1) / total_players * 100, 1),
                )

        return await self.run_atomic("get_player_ranking", load)

    async def get_nearby_players(self, player_id: int, game_id: int,
                                 range_size: int = PaginationConstants.DEFAULT_NEARBY_RANGE) -> List[LeaderboardRow]:
        """Get the players ranked just above and below a player, the player included."""
        if range_size < 0:
            raise ValueError("range_size must not be negative")

        async def load():
            async with self.get_session() as session:
                ranking = self._ranking_subquery(game_id)
                player_rank = await session.scalar(
                    select(ranking.c.rank).where(ranking.c.player_id == player_id)
                )
                if player_rank is None:
                    return []

                result = await session.execute(
                    select(ranking)
                    .where(ranking.c.rank.between(player_rank - range_size, player_rank + range_size))
                    .order_by(ranking.c.rank)
                )
                return [self._to_row(row) for row in result]

        return await self.run_atomic("get_nearby_players", load)

    async def get_statistics(self, game_id: int) -> LeaderboardStats:
        async def load():
            async with self.get_session() as session:
                row = (await session.execute(
                    select(
                        func.count(LeaderboardEntry.id).label('total_players'),
                        func.max(LeaderboardEntry.total_points).label('top_score'),
                        func.avg(LeaderboardEntry.total_points).label('average_score'),
                        func.sum(LeaderboardEntry.completed_missions).label('missions'),
                        func.sum(LeaderboardEntry.completed_tasks).label('tasks'),
                    ).where(LeaderboardEntry.game_id == game_id)
                )).one()

                return LeaderboardStats(
                    game_id=game_id,
                    total_players=row.total_players or 0,
                    top_score=row.top_score or 0,
                    average_score=round(float(row.average_score), 2) if row.average_score is not None else 0.0,
                    total_missions_completed=row.missions or 0,
                    total_tasks_completed=row.tasks or 0,
                )

        return await self.run_atomic("get_leaderboard_statistics", load)

    async def close(self):
        """Clean up Redis connection."""
        if self.redis_client:
            await self.redis_client.aclose()
