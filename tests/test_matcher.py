"""Eligibility rules of the Matcher."""

from datetime import datetime

from progress_engine.constants import TargetMode
from progress_engine.operations.matcher import Matcher
from progress_engine.utils.audience import FilteredAudience, default_audience_strategies

from tests.helpers import NOW


async def test_inactive_game_tasks_are_ignored(processor, store, ids):
    player = await store.get_or_create_player("merchant-1")

    tasks = await processor.matcher.find_eligible_tasks("store_created", player, now=NOW)

    assert [task.id for task in tasks] == [ids["tasks"]["Create store"]]
    assert tasks[0].mission.game.name == "Store Setup"


async def test_time_window_and_audience(processor, store, ids):
    vip = await store.get_or_create_player("vip-1")
    regular = await store.get_or_create_player("merchant-1")
    matcher = processor.matcher

    assert await matcher.find_eligible_tasks("theme_customized", regular, now=NOW) == []

    current = await matcher.find_eligible_tasks("theme_customized", vip, now=NOW)
    assert [task.id for task in current] == [ids["tasks"]["VIP theme"]]

    # Before the holiday mission's end date both missions are open to the VIP
    earlier = await matcher.find_eligible_tasks("theme_customized", vip, now=datetime(2019, 12, 1))
    assert [task.id for task in earlier] == [ids["tasks"]["Holiday theme"], ids["tasks"]["VIP theme"]]


async def test_audience_strategies_are_injectable(processor, store, ids):
    player = await store.get_or_create_player("merchant-7")
    strategies = default_audience_strategies()
    matcher = Matcher(processor.catalog, store, strategies)

    tasks = await matcher.find_eligible_tasks("theme_customized", player, now=NOW)
    assert tasks == []

    strategies[TargetMode.SPECIFIC] = FilteredAudience(lambda p, criteria: p.external_id == "merchant-7")
    tasks = await matcher.find_eligible_tasks("theme_customized", player, now=NOW)
    assert [task.id for task in tasks] == [ids["tasks"]["VIP theme"]]


async def test_prerequisite_and_terminal_rows_exclude_tasks(processor, store, ids):
    player = await store.get_or_create_player("merchant-1")
    matcher = processor.matcher

    assert await matcher.find_eligible_tasks("payment_setup", player, now=NOW) == []

    await processor.process_event({
        "playerExternalId": "merchant-1", "eventType": "store_created",
        "timestamp": "2025-03-14T12:00:00Z", "properties": {"event_id": "s-1"},
    })
    assert await matcher.find_eligible_tasks("store_created", player, now=NOW) == []

    await processor.process_event({
        "playerExternalId": "merchant-1", "eventType": "product_created",
        "timestamp": "2025-03-14T12:01:00Z", "properties": {"event_id": "p-1"},
    })
    unlocked = await matcher.find_eligible_tasks("payment_setup", player, now=NOW)
    assert [task.id for task in unlocked] == [ids["tasks"]["Set up payments"]]


async def test_recurring_task_is_eligible_again_in_next_cycle(processor, store, ids):
    player = await store.get_or_create_player("merchant-1")
    matcher = processor.matcher

    await processor.process_event({
        "playerExternalId": "merchant-1", "eventType": "lesson_viewed",
        "timestamp": "2025-03-14T12:00:00Z", "properties": {"event_id": "l-1"},
    })

    assert await matcher.find_eligible_tasks("lesson_viewed", player, now=NOW) == []
    tomorrow = await matcher.find_eligible_tasks("lesson_viewed", player, now=datetime(2025, 3, 15, 8))
    assert [task.id for task in tomorrow] == [ids["tasks"]["Watch a lesson"]]
