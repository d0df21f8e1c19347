"""Event Log: append-only, ordered facts about campaigns and leads.

Events are inserted and never updated or deleted. Ordering is the event id
(insert order), so "latest" means highest id, independent of clock skew.
"""

import logging
from typing import Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from .events import EventPayload, check_payload, parse_event_payload
from .models import Event, EventType


logger = logging.getLogger(__name__)


async def append_event(
    session: AsyncSession,
    campaign_id: str,
    event_type: EventType,
    payload: EventPayload,
    lead_id: Optional[str] = None,
) -> Event:
    """Append an event in the caller's transaction.

    Args:
        session: Session whose transaction the event joins.
        campaign_id: Owning campaign.
        event_type: Event type.
        payload: Payload model matching ``event_type``.
        lead_id: Lead the event is about, if any.

    Returns:
        The flushed Event row (id assigned).

    Raises:
        TypeError: If ``payload`` is not the variant for ``event_type``.
    """
    check_payload(event_type, payload)
    event = Event(
        campaign_id=campaign_id,
        lead_id=lead_id,
        type=event_type,
        event_metadata=payload.to_metadata(),
    )
    session.add(event)
    await session.flush()
    logger.debug(
        "Appended event %s (id=%s, campaign=%s, lead=%s)",
        event_type.value,
        event.id,
        campaign_id,
        lead_id,
    )
    return event


async def latest_event(
    session: AsyncSession,
    lead_id: str,
    event_type: EventType,
) -> Optional[Event]:
    """Return the most recent event of ``event_type`` for a lead."""
    result = await session.execute(
        select(Event)
        .where(Event.lead_id == lead_id, Event.type == event_type)
        .order_by(Event.id.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def latest_payload(
    session: AsyncSession,
    lead_id: str,
    event_type: EventType,
) -> Optional[EventPayload]:
    """Return the typed payload of the latest ``event_type`` event for a lead.

    Returns:
        The parsed payload, or None if the lead has no such event.
    """
    event = await latest_event(session, lead_id, event_type)
    if event is None:
        return None
    return parse_event_payload(event_type, event.event_metadata)


async def list_events(
    session: AsyncSession,
    campaign_id: Optional[str] = None,
    lead_id: Optional[str] = None,
    event_types: Optional[Sequence[EventType]] = None,
    limit: Optional[int] = None,
) -> list[Event]:
    """List events in append order, filtered by campaign, lead and/or type."""
    query = select(Event)
    if campaign_id is not None:
        query = query.where(Event.campaign_id == campaign_id)
    if lead_id is not None:
        query = query.where(Event.lead_id == lead_id)
    if event_types:
        query = query.where(Event.type.in_(list(event_types)))
    query = query.order_by(Event.id.asc())
    if limit is not None:
        query = query.limit(limit)
    result = await session.execute(query)
    return list(result.scalars().all())


async def count_events(
    session: AsyncSession,
    lead_id: str,
    event_type: EventType,
) -> int:
    """Count events of ``event_type`` recorded for a lead."""
    result = await session.execute(
        select(func.count())
        .select_from(Event)
        .where(Event.lead_id == lead_id, Event.type == event_type)
    )
    return int(result.scalar_one())
