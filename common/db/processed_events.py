from datetime import datetime, timezone
from typing import Optional

from msgspec import msgpack, Struct

from common.db.redis_db import RedisDB
from common.kafka.envelope import AppEvent


class ProcessedEvent(Struct):
    event_id: str
    processed_at: str
    # the event emitted as a result, re-emitted verbatim on duplicate delivery
    outcome: Optional[AppEvent] = None


class ProcessedEventLedger:
    """Write-once record of the event ids one service has applied."""

    def __init__(self, db: RedisDB):
        self.db = db

    def key(self, event_id: str) -> str:
        return self.db.key("processed", event_id)

    async def get(self, event_id: str) -> Optional[ProcessedEvent]:
        return await self.db.get(self.key(event_id), ProcessedEvent)

    async def is_processed(self, event_id: str) -> bool:
        return await self.db.exists(self.key(event_id))

    def record_for(self, event_id: str, outcome: Optional[AppEvent] = None) -> dict[str, bytes]:
        """The raw write for a record, to be committed with the business mutation."""
        record = ProcessedEvent(
            event_id=event_id,
            processed_at=datetime.now(timezone.utc).isoformat(),
            outcome=outcome,
        )
        return {self.key(event_id): msgpack.encode(record)}

    async def mark_processed(self, event_id: str, outcome: Optional[AppEvent] = None) -> bool:
        record = ProcessedEvent(
            event_id=event_id,
            processed_at=datetime.now(timezone.utc).isoformat(),
            outcome=outcome,
        )
        return await self.db.insert(self.key(event_id), record)
