"""Catalog fixture data and event builders shared by the tests."""

import uuid
from datetime import datetime, timedelta
from typing import Any, Dict

NOW = datetime(2025, 3, 14, 12, 0, 0)

CATALOG: Dict[str, Any] = {
    "event_types": [
        {"name": "store_created"},
        {"name": "product_created"},
        {"name": "logo_uploaded"},
        {"name": "payment_setup"},
        {"name": "order_placed"},
        {"name": "theme_customized"},
        {"name": "lesson_viewed"},
        {"name": "never_used"},
    ],
    "reward_types": [{"name": "badge"}, {"name": "coupon"}],
    "games": [
        {
            "name": "Store Setup",
            "missions": [
                {
                    "name": "First Steps",
                    "points_required": 30,
                    "tasks": [
                        {"name": "Create store", "event_type": "store_created", "points": 10},
                        {"name": "Add a product", "event_type": "product_created", "points": 20,
                         "is_optional": True},
                        {"name": "Upload logo", "event_type": "logo_uploaded", "points": 5,
                         "is_optional": True},
                    ],
                    "rewards": [
                        {"name": "Starter badge", "reward_type": "badge", "value": {"badge_id": "starter"}},
                    ],
                },
                {
                    "name": "Go Live",
                    "points_required": 10,
                    "prerequisite": "First Steps",
                    "tasks": [
                        {"name": "Set up payments", "event_type": "payment_setup", "points": 10},
                    ],
                },
                {
                    "name": "Sales Sprint",
                    "points_required": 50,
                    "tasks": [
                        {"name": "Place orders", "event_type": "order_placed", "points": 50,
                         "required_progress": 3},
                    ],
                    "rewards": [
                        {"name": "Sales coupon", "reward_type": "coupon", "value": {"code": "SPRINT10"},
                         "expires_at": "2030-01-01T00:00:00Z"},
                    ],
                },
                {
                    "name": "Holiday Theme",
                    "points_required": 5,
                    "end_date": "2020-01-01T00:00:00Z",
                    "tasks": [
                        {"name": "Holiday theme", "event_type": "theme_customized", "points": 5},
                    ],
                },
                {
                    "name": "VIP Styling",
                    "points_required": 5,
                    "target_type": "specific",
                    "target_players": ["vip-1"],
                    "tasks": [
                        {"name": "VIP theme", "event_type": "theme_customized", "points": 5},
                    ],
                },
                {
                    "name": "Daily Lesson",
                    "points_required": 5,
                    "is_recurring": True,
                    "recurrence_pattern": "daily",
                    "tasks": [
                        {"name": "Watch a lesson", "event_type": "lesson_viewed", "points": 5},
                    ],
                },
            ],
        },
        {
            "name": "Retired Game",
            "is_active": False,
            "missions": [
                {
                    "name": "Retired Mission",
                    "points_required": 10,
                    "tasks": [
                        {"name": "Retired store task", "event_type": "store_created", "points": 10},
                    ],
                },
            ],
        },
    ],
}


class FrozenClock:
    """Callable clock the tests can move forward."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


def make_event(player: str, event_type: str, **extra) -> Dict[str, Any]:
    """Build a raw event with a unique producer event id unless one is given."""
    event = {
        "playerExternalId": player,
        "eventType": event_type,
        "timestamp": "2025-03-14T12:00:00Z",
        "properties": {"event_id": str(uuid.uuid4())},
    }
    event.update(extra)
    return event
