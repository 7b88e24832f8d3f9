"""
Event operations and the grace-period write gate
"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional

from ..core.client import ApiClient
from ..core.models import Event
from ..core.protocol import ApiQuery

logger = logging.getLogger(__name__)


async def list_events(
    client: ApiClient,
    show_past_events: bool = False,
    now: Optional[datetime] = None,
) -> List[Event]:
    """Active events, ordered by start date; past events hidden unless requested"""
    response = await client.call("Event", "get", ApiQuery(
        select=list(Event.EVENT_FIELDS),
        where=[["is_active", "=", True]],
        order_by={"start_date": "ASC"},
        limit=0,
    ))

    events = [Event.from_record(record) for record in response.values]

    if not show_past_events:
        now = now or datetime.now()
        events = [e for e in events if e.end_date is None or e.end_date >= now]

    return events


async def get_event(client: ApiClient, event_id: int) -> Optional[Event]:
    response = await client.call("Event", "get", ApiQuery(
        select=list(Event.EVENT_FIELDS),
        where=[["id", "=", event_id]],
        limit=1,
    ))
    return Event.from_record(response.first) if response.first else None


def is_event_writable(event: Optional[Event], grace_minutes: int, now: Optional[datetime] = None) -> bool:
    """
    Check-ins stay writable until `grace_minutes` after the event ends.

    Events without an end date never close.
    """
    if event is None or event.end_date is None:
        return True
    now = now or datetime.now()
    return now <= event.end_date + timedelta(minutes=grace_minutes)
