"""Command-line entry point and configuration."""

import json

import pytest

from progress_engine.config import Config
from progress_engine.main import main

from tests.helpers import CATALOG


def json_lines(output: str):
    return [json.loads(line) for line in output.splitlines() if line.startswith("{")]


@pytest.fixture
def database_url(tmp_path, monkeypatch):
    monkeypatch.setattr(Config, "DATABASE_URL", "sqlite:///unused.db")
    return f"sqlite:///{tmp_path / 'cli.db'}"


async def test_seed_process_and_recalc(tmp_path, database_url, capsys, monkeypatch):
    monkeypatch.setattr(Config, "REDIS_URL", "")
    catalog_path = tmp_path / "catalog.json"
    catalog_path.write_text(json.dumps(CATALOG))
    events_path = tmp_path / "events.jsonl"
    events = [
        {"playerExternalId": "m-1", "eventType": "store_created", "timestamp": "2025-03-14T12:00:00Z",
         "properties": {"event_id": "1"}},
        {"playerExternalId": "m-1", "eventType": "product_created", "timestamp": "2025-03-14T12:05:00Z",
         "properties": {"event_id": "2"}},
        {"playerExternalId": "m-1", "eventType": "product_created", "timestamp": "2025-03-14T12:05:00Z",
         "properties": {"event_id": "2"}},
    ]
    events_path.write_text("\n".join(json.dumps(event) for event in events) + "\n\n")

    assert await main(["--database-url", database_url, "init-db"]) == 0
    assert await main(["--database-url", database_url, "seed", str(catalog_path)]) == 0
    stats = json_lines(capsys.readouterr().out)[-1]
    assert stats["missions"] == 7

    assert await main(["--database-url", database_url, "process", str(events_path)]) == 0
    results = json_lines(capsys.readouterr().out)
    assert [len(result["tasksCompleted"]) for result in results] == [1, 1, 0]
    assert len(results[1]["missionsCompleted"]) == 1
    assert results[2]["duplicate"] is True

    assert await main(["--database-url", database_url, "recalc-ranks", "1"]) == 0


async def test_process_reports_failures(tmp_path, database_url, capsys):
    events_path = tmp_path / "events.jsonl"
    events_path.write_text('{"playerExternalId": "m-1", "eventType": "unknown", "timestamp": "2025-03-14"}\nnot json\n')

    assert await main(["--database-url", database_url, "process", str(events_path)]) == 1
    results = json_lines(capsys.readouterr().out)
    assert results[0]["error"] == "validation_error"


def test_async_database_url(monkeypatch):
    monkeypatch.setattr(Config, "DATABASE_URL", "sqlite:///engine.db")
    assert Config.get_async_database_url() == "sqlite+aiosqlite:///engine.db"

    monkeypatch.setattr(Config, "DATABASE_URL", "postgresql://user@db/engine")
    assert Config.get_async_database_url() == "postgresql+asyncpg://user@db/engine"


def test_validate_rejects_bad_settings(monkeypatch):
    monkeypatch.setattr(Config, "CONFLICT_MAX_RETRIES", 0)
    with pytest.raises(ValueError):
        Config.validate()
