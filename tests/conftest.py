"""Shared fixtures for progress engine tests."""

from typing import Dict

import pytest
from sqlalchemy import select

from progress_engine.database.catalog_loader import load_catalog
from progress_engine.database.database import Database
from progress_engine.database.models import Game, Mission, Reward, Task
from progress_engine.operations.event_processor import EventProcessor

from tests.helpers import CATALOG, FrozenClock


@pytest.fixture
async def database(tmp_path):
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'engine.db'}")
    await db.initialize()
    yield db
    await db.close()


@pytest.fixture
async def ids(database) -> Dict[str, Dict[str, int]]:
    """Seed the catalog and return the ids of its rows by name."""
    async with database.transaction() as session:
        await load_catalog(session, CATALOG)

    lookup = {}
    async with database.get_session() as session:
        for key, model in (("games", Game), ("missions", Mission), ("tasks", Task), ("rewards", Reward)):
            result = await session.execute(select(model.name, model.id))
            lookup[key] = {name: row_id for name, row_id in result}
    return lookup


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def processor(database, ids, clock) -> EventProcessor:
    return EventProcessor.from_database(database, clock=clock)


@pytest.fixture
def store(processor):
    return processor.progress_store
