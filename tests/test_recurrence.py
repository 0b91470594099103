"""Recurring mission cycle keys."""

from datetime import datetime
from types import SimpleNamespace

import pytest

from progress_engine.utils.recurrence import cycle_key_for, parse_recurrence_pattern

WHEN = datetime(2025, 1, 1, 9, 30)


@pytest.mark.parametrize("pattern, expected", [
    ("daily", "daily"),
    (" Weekly ", "weekly"),
    ('{"frequency": "MONTHLY"}', "monthly"),
    ('{"type": "daily"}', "daily"),
    ("every full moon", None),
    ('{"frequency": ', None),
    ("", None),
    (None, None),
])
def test_parse_recurrence_pattern(pattern, expected):
    assert parse_recurrence_pattern(pattern) == expected


@pytest.mark.parametrize("pattern, expected", [
    ("daily", "2025-01-01"),
    # 2025-01-01 falls in ISO week 1 of 2025
    ("weekly", "2025-W01"),
    ("monthly", "2025-01"),
    ("hourly", ""),
])
def test_cycle_key_for_recurring_mission(pattern, expected):
    mission = SimpleNamespace(is_recurring=True, recurrence_pattern=pattern)
    assert cycle_key_for(mission, WHEN) == expected


def test_non_recurring_mission_has_no_cycle():
    mission = SimpleNamespace(is_recurring=False, recurrence_pattern="daily")
    assert cycle_key_for(mission, WHEN) == ""


def test_weekly_cycle_uses_iso_year():
    mission = SimpleNamespace(is_recurring=True, recurrence_pattern="weekly")
    assert cycle_key_for(mission, datetime(2024, 12, 30)) == "2025-W01"
    assert cycle_key_for(mission, datetime(2024, 12, 29)) == "2024-W52"
