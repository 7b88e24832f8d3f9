"""
Participant operations

Logical Participant reads and writes expressed once, in APIv4 terms; the
connection's ProtocolAdapter takes care of the wire differences.
"""

import logging
from typing import List, Union

from ..core.client import ApiClient
from ..core.errors import NotFound
from ..core.models import Participant
from ..core.protocol import ApiQuery

logger = logging.getLogger(__name__)

ParticipantCode = Union[str, int]


def normalize_code(code: ParticipantCode) -> Union[str, int]:
    """Scanned codes are participant ids; numeric strings become ints"""
    if isinstance(code, int):
        return code
    code = str(code).strip()
    return int(code) if code.isdigit() else code


async def lookup_participant(client: ApiClient, code: ParticipantCode, event_id: int) -> Participant:
    """
    Fetch the participant a scanned code refers to, within one event.

    Raises:
        NotFound: no participant with that id is registered for the event
    """
    response = await client.call("Participant", "get", ApiQuery(
        select=list(Participant.PARTICIPANT_FIELDS),
        where=[["id", "=", normalize_code(code)], ["event_id", "=", event_id]],
        limit=1,
    ))

    if not response.values:
        raise NotFound(f"Participant {code} not found for event {event_id}")

    return Participant.from_record(response.values[0])


async def list_participants(client: ApiClient, event_id: int) -> List[Participant]:
    """All participants of an event (no limit)"""
    response = await client.call("Participant", "get", ApiQuery(
        select=list(Participant.PARTICIPANT_FIELDS),
        where=[["event_id", "=", event_id]],
        limit=0,
    ))

    participants = []
    for record in response.values:
        try:
            participants.append(Participant.from_record(record))
        except ValueError as e:
            logger.warning(f"Skipping malformed participant record: {e}")
    return participants


async def set_status(client: ApiClient, participant_id: int, status_id: int) -> None:
    """Write a participant status"""
    await client.call("Participant", "update", ApiQuery(
        where=[["id", "=", participant_id]],
        values={"status_id": status_id},
    ))
    logger.info(f"Participant {participant_id} status set to {status_id}")


async def register_participant(
    client: ApiClient,
    contact_id: int,
    event_id: int,
    status_id: int,
) -> Participant:
    """Register an existing contact for an event"""
    response = await client.call("Participant", "create", ApiQuery(
        values={"contact_id": contact_id, "event_id": event_id, "status_id": status_id},
    ))

    record = response.first if isinstance(response.first, dict) else {}
    return Participant.from_record({
        "contact_id": contact_id,
        "status_id": status_id,
        **record,
    })
