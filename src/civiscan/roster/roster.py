"""
Event Roster

In-memory participant list for one event, kept in step with the backend.

Manual toggles are optimistic: the local status flips immediately, the
backend write runs concurrently, and a failed write rolls the participant
back to its pre-flip status before the error surfaces. Only one write per
participant is in flight at a time; a toggle arriving meanwhile is refused,
so every rollback restores a status the backend actually holds.

A background poll replaces the whole list at a fixed interval. A poll
result is only trusted if no write was in flight at any point while it
was running; otherwise it may predate the write and is dropped. The first
poll started after a write completes is authoritative.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from ..config.schema import StatusConfig
from ..core.client import ApiClient
from ..core.errors import CiviScanError, EventClosed, NotFound, WriteInProgress
from ..core.models import Participant
from ..core.signals import SignalBus
from ..scanner.feedback import FeedbackKind, Notifier
from ..services.participants import list_participants, set_status

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RosterStats:
    total: int
    attended: int

    @property
    def remaining(self) -> int:
        return self.total - self.attended


class Roster:
    """
    Participant roster with optimistic updates and polling.

    Example:
        roster = Roster(client, event_id=7)
        await roster.refresh()
        roster.start_polling()
        await roster.toggle(1042)
        ...
        await roster.close()
    """

    def __init__(
        self,
        client: ApiClient,
        event_id: int,
        statuses: Optional[StatusConfig] = None,
        poll_interval: float = 30.0,
        can_write: Optional[Callable[[], bool]] = None,
        notifier: Optional[Notifier] = None,
    ):
        self.client = client
        self.event_id = event_id
        self.statuses = statuses or StatusConfig()
        self.poll_interval = poll_interval
        self.can_write = can_write
        self.notifier = notifier

        self.updated = SignalBus("roster_updated")

        self._participants: List[Participant] = []
        self._inflight_writes = 0
        # Pre-flip record per participant whose write is in flight
        self._pending: Dict[int, Participant] = {}
        # Bumped when a write starts and when it finishes
        self._write_epoch = 0
        self._closed = False
        self._poll_task: Optional[asyncio.Task] = None

    @property
    def participants(self) -> List[Participant]:
        return list(self._participants)

    def get(self, participant_id: int) -> Optional[Participant]:
        for participant in self._participants:
            if participant.id == participant_id:
                return participant
        return None

    def stats(self) -> RosterStats:
        attended = sum(1 for p in self._participants if p.is_attended(self.statuses.attended))
        return RosterStats(total=len(self._participants), attended=attended)

    # =========================================================================
    # Refresh
    # =========================================================================

    async def refresh(self) -> bool:
        """
        Refetch the full list. Returns True if the result was applied,
        False if it was discarded as possibly stale.
        """
        epoch = self._write_epoch
        writes_at_start = self._inflight_writes

        fetched = await list_participants(self.client, self.event_id)

        if self._closed:
            return False

        if writes_at_start or self._inflight_writes or epoch != self._write_epoch:
            logger.debug("Discarding roster poll that overlapped a write")
            return False

        self._participants = fetched
        self.updated.emit()
        return True

    async def run_polling(self) -> None:
        """Refresh every `poll_interval` seconds until closed"""
        while not self._closed:
            await asyncio.sleep(self.poll_interval)
            if self._closed:
                break
            try:
                await self.refresh()
            except CiviScanError as e:
                logger.error(f"Error fetching participants: {e}")

    def start_polling(self) -> asyncio.Task:
        if self._poll_task is None or self._poll_task.done():
            self._poll_task = asyncio.get_running_loop().create_task(self.run_polling())
        return self._poll_task

    async def close(self) -> None:
        """Stop polling; results still in flight are discarded"""
        self._closed = True
        if self._poll_task is not None and not self._poll_task.done():
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
        self._poll_task = None

    # =========================================================================
    # Optimistic toggle
    # =========================================================================

    async def toggle(self, participant_id: int) -> Participant:
        """
        Flip a participant between Attended and Registered.

        Returns the participant as now displayed.

        Raises:
            EventClosed: the event no longer accepts changes
            NotFound: participant is not on this roster
            WriteInProgress: this participant's previous toggle is still being written
            CiviScanError: the backend write failed (local state rolled back)
        """
        if self.can_write is not None and not self.can_write():
            raise EventClosed("Event is closed for changes")

        current = self.get(participant_id)
        if current is None:
            raise NotFound(f"Participant {participant_id} is not on this roster")

        if participant_id in self._pending:
            raise WriteInProgress(f"Participant {participant_id} is still being updated")

        self._feedback(FeedbackKind.CLICK)

        new_status = (
            self.statuses.registered
            if current.is_attended(self.statuses.attended)
            else self.statuses.attended
        )

        self._pending[participant_id] = current
        self._replace(current.with_status(new_status))
        self._inflight_writes += 1
        self._write_epoch += 1

        try:
            await set_status(self.client, participant_id, new_status)
        except Exception as e:
            logger.error(f"Error updating status of participant {participant_id}: {e}")
            self._replace(current)
            raise
        finally:
            del self._pending[participant_id]
            self._inflight_writes -= 1
            self._write_epoch += 1

        return self.get(participant_id) or current.with_status(new_status)

    def _feedback(self, kind: FeedbackKind) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier.notify(kind)
        except Exception as e:
            logger.warning(f"Feedback '{kind.value}' failed: {e}")

    def _replace(self, participant: Participant) -> None:
        for position, existing in enumerate(self._participants):
            if existing.id == participant.id:
                self._participants[position] = participant
                self.updated.emit()
                return
