"""Catalog loading and read port."""

import pytest
from sqlalchemy import func, select

from progress_engine.database.catalog_loader import load_catalog
from progress_engine.database.models import Mission, Task

from tests.helpers import CATALOG


async def test_loading_twice_creates_nothing_new(database, ids):
    async with database.transaction() as session:
        stats = await load_catalog(session, CATALOG)

    assert stats["games"] == 0
    assert stats["missions"] == 0
    async with database.get_session() as session:
        assert await session.scalar(select(func.count()).select_from(Task)) == 9


async def test_prerequisite_linked_by_name(database, ids):
    async with database.get_session() as session:
        go_live = await session.get(Mission, ids["missions"]["Go Live"])
    assert go_live.prerequisite_mission_id == ids["missions"]["First Steps"]


async def test_unknown_prerequisite_is_rejected(database):
    data = {"games": [{"name": "Broken", "missions": [{"name": "Orphan", "prerequisite": "Nowhere"}]}]}

    with pytest.raises(ValueError):
        async with database.transaction() as session:
            await load_catalog(session, data)


async def test_active_tasks_ordered_and_filtered(processor, ids):
    catalog = processor.catalog

    tasks = await catalog.get_active_tasks_by_event_type("theme_customized")
    assert [task.id for task in tasks] == [ids["tasks"]["Holiday theme"], ids["tasks"]["VIP theme"]]

    assert await catalog.get_active_tasks_by_event_type("store_created", game_id=ids["games"]["Retired Game"]) == []

    event_type = await catalog.get_event_type_by_name("order_placed")
    assert event_type.name == "order_placed"
    assert await catalog.get_event_type_by_name("missing") is None

    mission = await catalog.get_mission(ids["missions"]["First Steps"])
    assert [task.name for task in mission.tasks] == ["Create store", "Add a product", "Upload logo"]
    rewards = await catalog.get_rewards_for_mission(mission.id)
    assert [reward.name for reward in rewards] == ["Starter badge"]
