"""
Incoming activity event.

Events arrive already parsed from the analytics transport. Both the camelCase
wire names and snake_case names are accepted.
"""

import hashlib
import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from progress_engine.utils.exceptions import ValidationError
from progress_engine.utils.time_parser import parse_timestamp


def _first(payload: Dict[str, Any], *names):
    for name in names:
        if payload.get(name) is not None:
            return payload[name]
    return None


@dataclass(frozen=True)
class ActivityEvent:
    """One normalized platform action performed by a player."""
    player_external_id: str
    event_type: str
    timestamp: datetime
    properties: Dict[str, Any] = field(default_factory=dict)
    game_id: Optional[int] = None
    idempotency_key: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> 'ActivityEvent':
        """
        Build an event from a raw payload.

        Raises:
            ValidationError: Missing player id or event type, bad timestamp,
                non-object properties or non-integer game id
        """
        if not isinstance(payload, dict):
            raise ValidationError("event must be an object")

        player_id = _first(payload, 'playerExternalId', 'player_external_id', 'playerId', 'player_id')
        if player_id is None or not str(player_id).strip():
            raise ValidationError("missing player id")

        event_type = _first(payload, 'eventType', 'event_type')
        if not isinstance(event_type, str) or not event_type.strip():
            raise ValidationError("missing event type")

        raw_timestamp = payload.get('timestamp')
        if raw_timestamp is None:
            raise ValidationError("missing timestamp")
        try:
            timestamp = parse_timestamp(raw_timestamp)
        except ValueError as e:
            raise ValidationError(str(e))

        properties = payload.get('properties') or {}
        if not isinstance(properties, dict):
            raise ValidationError("properties must be an object")

        game_id = _first(payload, 'gameId', 'game_id')
        if game_id is not None:
            try:
                game_id = int(game_id)
            except (TypeError, ValueError):
                raise ValidationError(f"invalid game id: {game_id}")

        idempotency_key = _first(payload, 'idempotencyKey', 'idempotency_key')

        return cls(
            player_external_id=str(player_id).strip(),
            event_type=event_type.strip(),
            timestamp=timestamp,
            properties=properties,
            game_id=game_id,
            idempotency_key=str(idempotency_key) if idempotency_key is not None else None,
        )

    def resolve_idempotency_key(self) -> str:
        """
        Key identifying redeliveries of this event.

        An explicit key or a producer-assigned properties.event_id wins;
        otherwise the key is a digest of the event's identifying content.
        """
        if self.idempotency_key:
            return self.idempotency_key
        event_id = self.properties.get('event_id') or self.properties.get('eventId')
        if event_id is not None:
            return f"{self.event_type}:{event_id}"

        canonical = json.dumps(
            {
                'player': self.player_external_id,
                'event_type': self.event_type,
                'timestamp': self.timestamp.isoformat(),
                'properties': self.properties,
            },
            sort_keys=True,
            default=str,
        )
        return hashlib.sha256(canonical.encode('utf-8')).hexdigest()

    def to_payload(self) -> Dict[str, Any]:
        """Raw form stored in the event log."""
        return {
            'playerExternalId': self.player_external_id,
            'gameId': self.game_id,
            'eventType': self.event_type,
            'timestamp': self.timestamp.isoformat(),
            'properties': self.properties,
            'idempotencyKey': self.idempotency_key,
        }
