"""Leaderboard aggregates, reads and rank recalculation."""

import asyncio
from datetime import datetime

import pytest
from sqlalchemy import select

from progress_engine.database.models import LeaderboardEntry
from progress_engine.operations.leaderboard_updater import LeaderboardUpdater
from progress_engine.services.leaderboard import LeaderboardService

from tests.helpers import NOW, make_event


class FakeRedis:
    """Minimal SET NX stand-in."""

    def __init__(self):
        self.keys = {}

    async def set(self, key, value, ex=None, nx=False):
        if nx and key in self.keys:
            return None
        self.keys[key] = value
        return True

    async def aclose(self):
        pass


@pytest.fixture
async def standings(database, store, ids):
    """Three players in Store Setup: bob and carol tie on points, bob got there first."""
    game_id = ids["games"]["Store Setup"]
    updater = LeaderboardUpdater(store)

    players = {}
    for name in ("alice", "bob", "carol"):
        players[name] = await store.get_or_create_player(name)

    await updater.record_mission_completion(players["alice"], game_id, 50, datetime(2025, 3, 1, 10))
    await updater.record_mission_completion(players["carol"], game_id, 30, datetime(2025, 3, 2, 10))
    await updater.record_mission_completion(players["bob"], game_id, 30, datetime(2025, 3, 1, 9))
    await updater.record_task_completion(players["bob"], game_id, datetime(2025, 3, 1, 8))
    return game_id, players


async def test_upsert_increment_accumulates(store, standings):
    game_id, players = standings

    entry = await store.get_leaderboard_entry(players["bob"].id, game_id)

    assert entry.total_points == 30
    assert entry.completed_missions == 1
    assert entry.completed_tasks == 1
    assert entry.rank is None


async def test_concurrent_increments_are_not_lost(store, ids):
    game_id = ids["games"]["Store Setup"]
    player = await store.get_or_create_player("dave")
    updater = LeaderboardUpdater(store)

    await asyncio.gather(*(
        updater.record_mission_completion(player, game_id, 10, datetime(2025, 3, 1))
        for _ in range(5)
    ))

    entry = await store.get_leaderboard_entry(player.id, game_id)
    assert entry.total_points == 50
    assert entry.completed_missions == 5
    assert (await store.get_player(player.id)).points == 50


async def test_completion_credit_applies_once(processor, store, ids):
    first_steps = ids["missions"]["First Steps"]
    create_store = ids["tasks"]["Create store"]
    game_id = ids["games"]["Store Setup"]
    await processor.process_event(make_event("merchant-1", "store_created"))
    await processor.process_event(make_event("merchant-1", "product_created"))

    player = await store.get_or_create_player("merchant-1")
    updater = LeaderboardUpdater(store)

    assert not await updater.record_mission_completion(player, game_id, 30, NOW, mission_id=first_steps)
    assert not await updater.record_task_completion(player, game_id, NOW, task_id=create_store)

    entry = await store.get_leaderboard_entry(player.id, game_id)
    assert entry.completed_missions == 1
    assert entry.completed_tasks == 2
    assert entry.total_points == 30
    progress = await store.get_mission_progress(player.id, first_steps, "")
    assert progress.credited_at == NOW

async def test_recalculate_ranks_breaks_ties_by_earliest_update(database, standings):
    game_id, players = standings
    service = LeaderboardService(database.session_factory, redis_client=FakeRedis())

    assert await service.recalculate_ranks(game_id)

    async with database.get_session() as session:
        result = await session.execute(
            select(LeaderboardEntry.player_id, LeaderboardEntry.rank).where(LeaderboardEntry.game_id == game_id)
        )
        ranks = dict(result.all())

    # Bob's task completion moved his updated_at to 03-01 08:00, still before carol
    assert ranks[players["alice"].id] == 1
    assert ranks[players["bob"].id] == 2
    assert ranks[players["carol"].id] == 3


async def test_recalculation_is_debounced_by_lock(database, standings):
    game_id, _ = standings
    service = LeaderboardService(database.session_factory, redis_client=FakeRedis())

    assert await service.recalculate_ranks(game_id)
    assert not await service.recalculate_ranks(game_id)
    assert await service.recalculate_ranks(game_id + 1)


async def test_get_page_and_cache(database, store, standings):
    game_id, players = standings
    service = LeaderboardService(database.session_factory, cache_ttl=60, redis_client=FakeRedis())

    page = await service.get_page(game_id, page=1, page_size=2)

    assert page.total_players == 3
    assert page.total_pages == 2
    assert [(row.rank, row.display_name) for row in page.entries] == [(1, "alice"), (2, "bob")]

    second = await service.get_page(game_id, page=2, page_size=2)
    assert [(row.rank, row.player_id) for row in second.entries] == [(3, players["carol"].id)]

    # Served from cache until invalidated
    await LeaderboardUpdater(store).record_mission_completion(players["carol"], game_id, 100)
    assert await service.get_page(game_id, page=1, page_size=2) is page

    await service.invalidate_cache(game_id)
    refreshed = await service.get_page(game_id, page=1, page_size=2)
    assert refreshed.entries[0].display_name == "carol"


async def test_get_page_validates_arguments(database):
    service = LeaderboardService(database.session_factory, redis_client=FakeRedis())

    with pytest.raises(ValueError):
        await service.get_page(1, page=0)
    with pytest.raises(ValueError):
        await service.get_page(1, page_size=1000)


async def test_player_ranking_and_nearby(database, standings):
    game_id, players = standings
    service = LeaderboardService(database.session_factory, redis_client=FakeRedis())

    ranking = await service.get_player_ranking(players["bob"].id, game_id)
    assert ranking.rank == 2
    assert ranking.total_players == 3
    assert ranking.total_points == 30
    assert ranking.percentile == pytest.approx(66.7)

    nearby = await service.get_nearby_players(players["alice"].id, game_id, range_size=1)
    assert [row.player_id for row in nearby] == [players["alice"].id, players["bob"].id]

    assert await service.get_player_ranking(players["bob"].id, game_id + 1) is None
    assert await service.get_nearby_players(players["bob"].id, game_id + 1) == []


async def test_statistics(database, standings):
    game_id, _ = standings
    service = LeaderboardService(database.session_factory, redis_client=FakeRedis())

    stats = await service.get_statistics(game_id)

    assert stats.total_players == 3
    assert stats.top_score == 50
    assert stats.average_score == pytest.approx(36.67)
    assert stats.total_missions_completed == 3
    assert stats.total_tasks_completed == 1

    empty = await service.get_statistics(game_id + 1)
    assert empty.total_players == 0
    assert empty.average_score == 0.0
