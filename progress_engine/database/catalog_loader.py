"""
Catalog population from a JSON document.

Loads event types, reward types and games (with their missions, tasks and
rewards) into the catalog tables. Existing rows are matched by name and left
untouched, so loading the same file twice is safe.

Expected shape:
    {
      "event_types": [{"name": "product_created", "description": "..."}],
      "reward_types": [{"name": "badge"}],
      "games": [{
        "name": "Store Setup",
        "missions": [{
          "name": "First Steps", "points_required": 30,
          "prerequisite": "Other mission name",
          "tasks": [{"name": "Add a product", "event_type": "product_created",
                     "points": 10, "required_progress": 1, "is_optional": false}],
          "rewards": [{"name": "Starter badge", "reward_type": "badge",
                       "value": {"badge_id": "starter"}}]
        }]
      }]
    }
"""

import json
import logging
from typing import Any, Dict, Optional
from sqlalchemy import select

from progress_engine.constants import TargetMode
from progress_engine.database.models import EventType, Game, Mission, Reward, RewardType, Task
from progress_engine.utils.time_parser import parse_timestamp

logger = logging.getLogger(__name__)


def _optional_datetime(value):
    return parse_timestamp(value) if value else None


def _target_players(value) -> Optional[str]:
    """Catalog files may give target lists as JSON values; the column stores text."""
    if value is None or isinstance(value, str):
        return value
    return json.dumps(value)


async def _get_or_create(session, model, name: str, **fields):
    result = await session.execute(select(model).where(model.name == name))
    existing = result.scalar_one_or_none()
    if existing:
        logger.debug(f"{model.__name__} '{name}' already exists")
        return existing, False

    row = model(name=name, **fields)
    session.add(row)
    await session.flush()  # Get the ID
    return row, True


async def load_catalog(session, data: Dict[str, Any]) -> Dict[str, int]:
    """
    Load catalog rows inside the caller's transaction.

    Returns:
        Counts of created rows per catalog table
    """
    stats = {'event_types': 0, 'reward_types': 0, 'games': 0, 'missions': 0, 'tasks': 0, 'rewards': 0}

    event_types = {}
    for item in data.get('event_types', []):
        event_type, created = await _get_or_create(
            session, EventType, item['name'], description=item.get('description')
        )
        event_types[event_type.name] = event_type
        stats['event_types'] += created

    reward_types = {}
    for item in data.get('reward_types', []):
        reward_type, created = await _get_or_create(
            session, RewardType, item['name'], description=item.get('description')
        )
        reward_types[reward_type.name] = reward_type
        stats['reward_types'] += created

    # Prerequisites may point forward, so they are linked after all missions exist
    missions_by_name = {}
    pending_prerequisites = []

    for game_data in data.get('games', []):
        game, created = await _get_or_create(
            session, Game, game_data['name'],
            description=game_data.get('description'),
            is_active=game_data.get('is_active', True),
            start_date=_optional_datetime(game_data.get('start_date')),
            end_date=_optional_datetime(game_data.get('end_date')),
            target_type=game_data.get('target_type', TargetMode.ALL),
            target_players=_target_players(game_data.get('target_players')),
        )
        stats['games'] += created
        if not created:
            continue

        for mission_data in game_data.get('missions', []):
            mission = Mission(
                game_id=game.id,
                name=mission_data['name'],
                description=mission_data.get('description'),
                points_required=mission_data.get('points_required', 0),
                is_active=mission_data.get('is_active', True),
                start_date=_optional_datetime(mission_data.get('start_date')),
                end_date=_optional_datetime(mission_data.get('end_date')),
                is_recurring=mission_data.get('is_recurring', False),
                recurrence_pattern=mission_data.get('recurrence_pattern'),
                target_type=mission_data.get('target_type', TargetMode.ALL),
                target_players=_target_players(mission_data.get('target_players')),
            )
            session.add(mission)
            await session.flush()
            missions_by_name[mission.name] = mission
            stats['missions'] += 1

            if mission_data.get('prerequisite'):
                pending_prerequisites.append((mission, mission_data['prerequisite']))

            for index, task_data in enumerate(mission_data.get('tasks', [])):
                event_name = task_data['event_type']
                event_type = event_types.get(event_name)
                if event_type is None:
                    # Tasks may name event types that were not listed up front
                    event_type, created_type = await _get_or_create(session, EventType, event_name)
                    event_types[event_name] = event_type
                    stats['event_types'] += created_type

                session.add(Task(
                    mission_id=mission.id,
                    event_type_id=event_type.id,
                    name=task_data['name'],
                    description=task_data.get('description'),
                    points=task_data.get('points', 0),
                    is_optional=task_data.get('is_optional', False),
                    is_active=task_data.get('is_active', True),
                    order_index=task_data.get('order_index', index),
                    required_progress=task_data.get('required_progress', 1),
                ))
                stats['tasks'] += 1

            for reward_data in mission_data.get('rewards', []):
                type_name = reward_data['reward_type']
                reward_type = reward_types.get(type_name)
                if reward_type is None:
                    reward_type, created_type = await _get_or_create(session, RewardType, type_name)
                    reward_types[type_name] = reward_type
                    stats['reward_types'] += created_type

                session.add(Reward(
                    mission_id=mission.id,
                    reward_type_id=reward_type.id,
                    name=reward_data['name'],
                    description=reward_data.get('description'),
                    value=json.dumps(reward_data.get('value', {})),
                    expires_at=_optional_datetime(reward_data.get('expires_at')),
                ))
                stats['rewards'] += 1

        logger.info(f"Created game '{game.name}' with {len(game_data.get('missions', []))} missions")

    for mission, prerequisite_name in pending_prerequisites:
        prerequisite = missions_by_name.get(prerequisite_name)
        if prerequisite is None:
            result = await session.execute(select(Mission).where(Mission.name == prerequisite_name))
            prerequisite = result.scalars().first()
        if prerequisite is None:
            raise ValueError(f"Mission '{mission.name}' names unknown prerequisite '{prerequisite_name}'")
        mission.prerequisite_mission_id = prerequisite.id

    await session.flush()
    return stats
