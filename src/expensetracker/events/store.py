"""Event store — append-only audit trail.

Learn: Every identity state change (registration, provider linking,
password reset, invitation acceptance) appends an event in the same
transaction as the change. If the change rolls back, so does its event.

The request id bound by RequestIdMiddleware is copied into each event's
metadata, so an audit row can be matched to the log lines of the request
that produced it. Event data never holds secrets: no passwords, hashes,
or token values, only ids.
"""

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from expensetracker.db.models import Event


def _request_context() -> dict:
    request_id = structlog.contextvars.get_contextvars().get("request_id")
    return {"request_id": request_id} if request_id else {}


class EventStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def append(
        self,
        stream_id: str,
        event_type: str,
        data: dict,
        metadata: dict | None = None,
    ) -> Event:
        """Stage an event in the caller's transaction (flushed, not committed)."""
        event = Event(
            stream_id=stream_id,
            type=event_type,
            data=data,
            meta={**_request_context(), **(metadata or {})},
        )
        self.db.add(event)
        await self.db.flush()
        return event

    async def read_stream(self, stream_id: str, limit: int = 100) -> list[Event]:
        """History of one subject, e.g. "user:<uuid>", oldest first."""
        result = await self.db.execute(
            select(Event)
            .where(Event.stream_id == stream_id)
            .order_by(Event.id)
            .limit(limit)
        )
        return list(result.scalars().all())
