"""
Event log: append-only record of received events and the idempotency boundary.

Each event is stored once under its idempotency key. An invocation that
inserts the row, or re-claims an unprocessed row whose claim has gone stale,
owns the event; every other delivery of the same key is a duplicate.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional
from sqlalchemy import or_, select, update
from sqlalchemy.dialects import postgresql, sqlite

from progress_engine.config import Config
from progress_engine.database.models import EventLog
from progress_engine.services.base import BaseService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EventClaim:
    """Result of appending an event to the log."""
    entry_id: Optional[int]
    owned: bool
    # Owned by taking over an entry an earlier delivery left unprocessed
    reclaimed: bool = False
    # Not owned because the entry was already processed
    processed: bool = False


class EventLogStore(BaseService):
    """Event log append/claim/mark-processed operations."""

    def __init__(self, session_factory, dialect_name: str = 'sqlite', claim_timeout: Optional[int] = None,
                 **kwargs):
        super().__init__(session_factory, **kwargs)
        self.dialect_name = dialect_name
        self.claim_timeout = claim_timeout or Config.EVENT_CLAIM_TIMEOUT_SECONDS

    def _insert(self, model):
        if self.dialect_name == 'postgresql':
            return postgresql.insert(model)
        return sqlite.insert(model)

    async def append(self, player_id: int, idempotency_key: str, payload: dict, now: datetime,
                     game_id: Optional[int] = None, event_type_id: Optional[int] = None) -> EventClaim:
        """
        Append the event and claim it for this invocation.

        Returns an owned claim when the entry is new, or when an earlier
        delivery left it unprocessed and its claim expired. Processed entries
        and entries under a live claim come back as not owned; processed tells
        the two apart.
        """
        async def append_and_claim():
            async with self.get_session() as session:
                inserted = await session.execute(
                    self._insert(EventLog).values(
                        player_id=player_id,
                        game_id=game_id,
                        event_type_id=event_type_id,
                        idempotency_key=idempotency_key,
                        payload=json.dumps(payload, sort_keys=True, default=str),
                        processed=False,
                        claimed_at=now,
                        created_at=now,
                    )
                    .on_conflict_do_nothing(index_elements=['idempotency_key'])
                    .returning(EventLog.id)
                )
                entry_id = inserted.scalar_one_or_none()
                if entry_id is not None:
                    return EventClaim(entry_id=entry_id, owned=True)

                stale_before = now - timedelta(seconds=self.claim_timeout)
                reclaimed = await session.execute(
                    update(EventLog)
                    .where(
                        EventLog.idempotency_key == idempotency_key,
                        EventLog.processed == False,
                        or_(EventLog.claimed_at.is_(None), EventLog.claimed_at < stale_before),
                    )
                    .values(claimed_at=now)
                    .returning(EventLog.id)
                    .execution_options(synchronize_session=False)
                )
                entry_id = reclaimed.scalar_one_or_none()
                if entry_id is not None:
                    logger.info(f"Re-claimed unprocessed event {idempotency_key[:12]}")
                    return EventClaim(entry_id=entry_id, owned=True, reclaimed=True)

                processed = await session.scalar(
                    select(EventLog.processed).where(EventLog.idempotency_key == idempotency_key)
                )
                return EventClaim(entry_id=None, owned=False, processed=bool(processed))

        return await self.run_atomic("append_event", append_and_claim)

    async def mark_processed(self, entry_id: int, now: datetime) -> None:
        async def mark():
            async with self.get_session() as session:
                await session.execute(
                    update(EventLog)
                    .where(EventLog.id == entry_id)
                    .values(processed=True, processed_at=now)
                    .execution_options(synchronize_session=False)
                )

        await self.run_atomic("mark_event_processed", mark)

    async def release(self, entry_id: int) -> None:
        """Drop the claim on an entry whose processing failed so a retry may own it."""
        async def clear():
            async with self.get_session() as session:
                await session.execute(
                    update(EventLog)
                    .where(EventLog.id == entry_id, EventLog.processed == False)
                    .values(claimed_at=None)
                    .execution_options(synchronize_session=False)
                )

        await self.run_atomic("release_event", clear)

