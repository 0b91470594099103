"""
Recurring mission cycles.

A recurring mission keeps one progress row per cycle. The cycle key is derived
from the mission's recurrence pattern and the event time, so a new day, week
or month opens fresh rows instead of resetting existing ones.
"""

import json
import logging
from datetime import datetime
from typing import Optional

from progress_engine.constants import RecurrenceConstants

logger = logging.getLogger(__name__)

FREQUENCIES = (RecurrenceConstants.DAILY, RecurrenceConstants.WEEKLY, RecurrenceConstants.MONTHLY)


def parse_recurrence_pattern(pattern: Optional[str]) -> Optional[str]:
    """
    Extract the cycle frequency from a recurrence pattern.
    
    Examples:
        "weekly" → "weekly"
        '{"frequency": "Daily"}' → "daily"
        "every full moon" → None
    """
    if not pattern or not pattern.strip():
        return None
    
    text = pattern.strip()
    if text.startswith('{'):
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            logger.warning(f"Invalid JSON recurrence pattern '{pattern}', treating as non-recurring")
            return None
        text = str(data.get('frequency') or data.get('type') or '')
    
    frequency = text.strip().lower()
    if frequency not in FREQUENCIES:
        logger.warning(f"Unknown recurrence frequency '{frequency}', treating as non-recurring")
        return None
    return frequency


def cycle_key_for(mission, now: datetime) -> str:
    """Get the cycle key of the mission's progress rows at the given time."""
    if not mission.is_recurring:
        return RecurrenceConstants.NO_CYCLE
    
    frequency = parse_recurrence_pattern(mission.recurrence_pattern)
    if frequency == RecurrenceConstants.DAILY:
        return now.strftime('%Y-%m-%d')
    if frequency == RecurrenceConstants.WEEKLY:
        iso_year, iso_week, _ = now.isocalendar()
        return f"{iso_year}-W{iso_week:02d}"
    if frequency == RecurrenceConstants.MONTHLY:
        return now.strftime('%Y-%m')
    return RecurrenceConstants.NO_CYCLE
