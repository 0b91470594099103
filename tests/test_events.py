"""Incoming event parsing and idempotency keys."""

from datetime import datetime

import pytest

from progress_engine.data_models.events import ActivityEvent
from progress_engine.utils.exceptions import ErrorKind, ValidationError
from progress_engine.utils.time_parser import parse_timestamp, within_window


def test_from_payload_accepts_both_naming_styles():
    camel = ActivityEvent.from_payload({
        "playerExternalId": "shop-1", "gameId": "3", "eventType": "order_placed",
        "timestamp": "2025-03-14T12:00:00Z", "properties": {"total": 5},
    })
    snake = ActivityEvent.from_payload({
        "player_external_id": "shop-1", "game_id": 3, "event_type": "order_placed",
        "timestamp": "2025-03-14T12:00:00", "properties": {"total": 5},
    })

    assert camel == snake
    assert camel.game_id == 3
    assert camel.timestamp == datetime(2025, 3, 14, 12, 0)


@pytest.mark.parametrize("payload", [
    {"eventType": "x", "timestamp": "2025-03-14T12:00:00Z"},
    {"playerExternalId": "  ", "eventType": "x", "timestamp": "2025-03-14T12:00:00Z"},
    {"playerExternalId": "shop-1", "timestamp": "2025-03-14T12:00:00Z"},
    {"playerExternalId": "shop-1", "eventType": "x"},
    {"playerExternalId": "shop-1", "eventType": "x", "timestamp": "not a date"},
    {"playerExternalId": "shop-1", "eventType": "x", "timestamp": "2025-03-14T12:00:00Z", "properties": [1]},
    {"playerExternalId": "shop-1", "eventType": "x", "timestamp": "2025-03-14T12:00:00Z", "gameId": "abc"},
    "not an object",
])
def test_invalid_payloads(payload):
    with pytest.raises(ValidationError) as exc_info:
        ActivityEvent.from_payload(payload)
    assert exc_info.value.kind == ErrorKind.VALIDATION_ERROR


def test_idempotency_key_precedence():
    base = {"playerExternalId": "shop-1", "eventType": "order_placed", "timestamp": "2025-03-14T12:00:00Z"}

    explicit = ActivityEvent.from_payload({**base, "idempotencyKey": "abc", "properties": {"event_id": "e1"}})
    producer = ActivityEvent.from_payload({**base, "properties": {"event_id": "e1"}})
    derived = ActivityEvent.from_payload({**base, "properties": {"b": 1, "a": 2}})
    reordered = ActivityEvent.from_payload({**base, "properties": {"a": 2, "b": 1}})
    other_player = ActivityEvent.from_payload({**base, "playerExternalId": "shop-2", "properties": {"a": 2, "b": 1}})

    assert explicit.resolve_idempotency_key() == "abc"
    assert producer.resolve_idempotency_key() == "order_placed:e1"
    assert derived.resolve_idempotency_key() == reordered.resolve_idempotency_key()
    assert len(derived.resolve_idempotency_key()) == 64
    assert derived.resolve_idempotency_key() != other_player.resolve_idempotency_key()


def test_parse_timestamp_normalizes_offsets():
    assert parse_timestamp("2025-03-14T14:00:00+02:00") == datetime(2025, 3, 14, 12, 0)
    with pytest.raises(ValueError):
        parse_timestamp("")


def test_within_window():
    now = datetime(2025, 3, 14)
    assert within_window(None, None, now)
    assert within_window(datetime(2025, 1, 1), datetime(2025, 12, 31), now)
    assert not within_window(datetime(2025, 4, 1), None, now)
    assert not within_window(None, datetime(2025, 3, 1), now)
