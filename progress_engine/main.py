"""
Command-line entry point.

    python -m progress_engine.main init-db
    python -m progress_engine.main seed catalog.json
    python -m progress_engine.main process events.jsonl
    python -m progress_engine.main skip <player_external_id> <task_id>
    python -m progress_engine.main recalc-ranks <game_id>
"""

import argparse
import asyncio
import json
import sys

from progress_engine.config import Config
from progress_engine.database.catalog_loader import load_catalog
from progress_engine.database.database import Database
from progress_engine.operations.event_processor import EventProcessor
from progress_engine.services.leaderboard import LeaderboardService
from progress_engine.utils.logger import setup_logger

logger = setup_logger(__name__)


async def seed(db: Database, path: str) -> int:
    with open(path, encoding='utf-8') as f:
        data = json.load(f)

    async with db.transaction() as session:
        stats = await load_catalog(session, data)

    logger.info(f"Catalog loaded: {stats}")
    print(json.dumps(stats))
    return 0


async def process(db: Database, path: str) -> int:
    """Run every event of a JSON-lines file through the engine, one result per line."""
    processor = EventProcessor.from_database(db)
    failures = 0

    with open(path, encoding='utf-8') as f:
        for line_num, line in enumerate(f, 1):
            line = line.strip()
            if not line:
                continue
            try:
                payload = json.loads(line)
            except json.JSONDecodeError as e:
                logger.warning(f"Line {line_num}: invalid JSON: {e}")
                failures += 1
                continue

            result = await processor.process_event(payload)
            if not result.success:
                failures += 1
            print(json.dumps(result.to_dict()))

    return 1 if failures else 0


async def skip(db: Database, player_external_id: str, task_id: int) -> int:
    processor = EventProcessor.from_database(db)
    result = await processor.skip_task(player_external_id, task_id)
    print(json.dumps({
        'success': result.success,
        'error': result.error.value if result.error else None,
        'message': result.message,
        'pointsEarned': result.points_earned,
    }))
    return 0 if result.success else 1


async def recalc_ranks(db: Database, game_id: int) -> int:
    service = LeaderboardService(db.session_factory)
    try:
        recalculated = await service.recalculate_ranks(game_id)
    finally:
        await service.close()
    return 0 if recalculated else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='progress_engine', description='Onboarding progress engine')
    parser.add_argument('--database-url', help='Override DATABASE_URL')
    commands = parser.add_subparsers(dest='command', required=True)

    commands.add_parser('init-db', help='Create database tables')

    seed_parser = commands.add_parser('seed', help='Load a catalog JSON file')
    seed_parser.add_argument('path')

    process_parser = commands.add_parser('process', help='Process a JSON-lines file of events')
    process_parser.add_argument('path')

    skip_parser = commands.add_parser('skip', help='Skip an optional task for a player')
    skip_parser.add_argument('player_external_id')
    skip_parser.add_argument('task_id', type=int)

    recalc_parser = commands.add_parser('recalc-ranks', help='Recalculate leaderboard ranks for a game')
    recalc_parser.add_argument('game_id', type=int)

    return parser


async def main(argv=None) -> int:
    """Main entry point"""
    args = build_parser().parse_args(argv)

    if args.database_url:
        Config.DATABASE_URL = args.database_url
    Config.validate()

    db = Database()
    await db.initialize()
    try:
        if args.command == 'init-db':
            return 0
        if args.command == 'seed':
            return await seed(db, args.path)
        if args.command == 'process':
            return await process(db, args.path)
        if args.command == 'skip':
            return await skip(db, args.player_external_id, args.task_id)
        return await recalc_ranks(db, args.game_id)
    finally:
        await db.close()


def run():
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
