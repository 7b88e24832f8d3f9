"""
Domain records

Normalized views over backend records. APIv4 flattens joined fields
(`contact_id.display_name`), APIv3 returns them under their plain names;
both spellings are accepted here so no caller needs to know which API
answered.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, Mapping, Optional


def _first(record: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = record.get(key)
        if value not in (None, ""):
            return value
    return None


def _as_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class Participant:
    """
    Event participant.

    `status_id` is opaque; only the configured Attended id means anything
    to the check-in flow.
    """
    id: int
    display_name: str = ""
    email: str = ""
    status_id: Optional[int] = None
    contact_id: Optional[int] = None
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    PARTICIPANT_FIELDS = ["id", "status_id", "contact_id", "contact_id.display_name", "contact_id.email"]

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Participant":
        participant_id = _as_int(_first(record, "id", "participant_id"))
        if participant_id is None:
            raise ValueError(f"Participant record without id: {dict(record)!r}")

        return cls(
            id=participant_id,
            display_name=_first(record, "contact_id.display_name", "display_name", "sort_name") or "",
            email=_first(record, "contact_id.email", "email") or "",
            status_id=_as_int(_first(record, "status_id", "participant_status_id")),
            contact_id=_as_int(record.get("contact_id")),
            raw=dict(record),
        )

    def is_attended(self, attended_status: int) -> bool:
        return self.status_id == attended_status

    def with_status(self, status_id: int) -> "Participant":
        return replace(self, status_id=status_id)


@dataclass(frozen=True)
class Event:
    """CiviCRM event summary"""
    id: int
    title: str = ""
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    EVENT_FIELDS = ["id", "title", "start_date", "end_date"]

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Event":
        event_id = _as_int(_first(record, "id", "event_id"))
        if event_id is None:
            raise ValueError(f"Event record without id: {dict(record)!r}")

        return cls(
            id=event_id,
            title=_first(record, "title", "event_title") or "",
            start_date=parse_datetime(_first(record, "start_date", "event_start_date")),
            end_date=parse_datetime(_first(record, "end_date", "event_end_date")),
        )


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse CiviCRM's `YYYY-MM-DD HH:MM:SS` (or ISO) date strings"""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("T", " ").strip())
    except ValueError:
        return None
