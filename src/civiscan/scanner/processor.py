"""
Scan Processor

State machine between the camera and the backend:

    SCANNING --code--> PROCESSING --+--> CONFIRMING --confirm--> PROCESSING --> SUCCESS | ERROR
                                    +--> ALREADY_ATTENDED
                                    +--> SUCCESS | ERROR        (auto-validate)
                                    +--> ERROR                  (not found, API failure)

    Any outcome state --reset()--> SCANNING

Only one lookup+write cycle is ever in flight: a code is accepted only in
SCANNING, and the state leaves SCANNING before the first await. Codes
arriving within the debounce window of the last accepted code are dropped,
which absorbs the same code being decoded on consecutive frames.

Nothing raises out of the processor: every failure lands in ERROR with a
reason string for the operator.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from ..core.client import ApiClient
from ..core.errors import CiviScanError, EventClosed
from ..core.models import Participant
from ..core.signals import SignalBus
from ..services.participants import lookup_participant, set_status
from .feedback import FeedbackKind, LoggingNotifier, Notifier

logger = logging.getLogger(__name__)


def _current_task() -> Optional[asyncio.Task]:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


class ScanState(str, Enum):
    SCANNING = "scanning"
    PROCESSING = "processing"
    CONFIRMING = "confirming"
    ALREADY_ATTENDED = "already_attended"
    SUCCESS = "success"
    ERROR = "error"


OUTCOME_STATES = frozenset({
    ScanState.CONFIRMING,
    ScanState.ALREADY_ATTENDED,
    ScanState.SUCCESS,
    ScanState.ERROR,
})


@dataclass(frozen=True)
class ScanEvent:
    """A decoded code and when it was observed (clock seconds)"""
    raw_code: str
    observed_at: float


class ScanProcessor:
    """
    Drives one scanner view for one event.

    Args:
        client: API client of the current connection
        event_id: event the scanned participants must belong to
        notifier: receives success / warning / error feedback
        camera: optional object with pause() / resume()
        auto_validate: check in without operator confirmation
        debounce_ms: minimum gap between accepted codes
        attended_status: status id meaning "attended"
        already_attended_reset_ms: in auto-validate mode, return to SCANNING
            this long after showing ALREADY_ATTENDED; None keeps it manual
        can_write: returns False once the event no longer accepts check-ins
        clock: monotonic time source in seconds
    """

    def __init__(
        self,
        client: ApiClient,
        event_id: int,
        notifier: Optional[Notifier] = None,
        camera=None,
        auto_validate: bool = False,
        debounce_ms: int = 3000,
        attended_status: int = 2,
        already_attended_reset_ms: Optional[int] = None,
        can_write: Optional[Callable[[], bool]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.event_id = event_id
        self.notifier = notifier or LoggingNotifier()
        self.camera = camera
        self.auto_validate = auto_validate
        self.debounce_ms = debounce_ms
        self.attended_status = attended_status
        self.already_attended_reset_ms = already_attended_reset_ms
        self.can_write = can_write
        self.clock = clock

        self.transitions = SignalBus("scan_state")

        self._state = ScanState.SCANNING
        self._participant: Optional[Participant] = None
        self._error: Optional[str] = None
        self._last_accepted: Optional[ScanEvent] = None
        # Bumped on reset/close; results from an older cycle are discarded
        self._cycle = 0
        self._closed = False
        self._task: Optional[asyncio.Task] = None
        self._auto_reset: Optional[asyncio.Task] = None

    # =========================================================================
    # State
    # =========================================================================

    @property
    def state(self) -> ScanState:
        return self._state

    @property
    def participant(self) -> Optional[Participant]:
        return self._participant

    @property
    def error(self) -> Optional[str]:
        return self._error

    def _transition(self, new_state: ScanState) -> None:
        old_state = self._state
        self._state = new_state
        logger.debug(f"Scan state {old_state.value} -> {new_state.value}")
        self.transitions.emit(old_state, new_state)

    def _feedback(self, kind: FeedbackKind) -> None:
        try:
            self.notifier.notify(kind)
        except Exception as e:
            logger.warning(f"Feedback '{kind.value}' failed: {e}")

    # =========================================================================
    # Input
    # =========================================================================

    def on_decoded(self, raw_code: str) -> Optional[asyncio.Task]:
        """
        Camera callback. Schedules processing of `raw_code` on the running
        loop and returns the task, or None if the code was dropped.
        """
        if not self._accept(raw_code):
            return None
        self._task = asyncio.get_running_loop().create_task(self._process(self._cycle))
        return self._task

    async def submit(self, raw_code: str) -> bool:
        """Accept and fully process a code. Returns False if it was dropped."""
        if not self._accept(raw_code):
            return False
        await self._process(self._cycle)
        return True

    def _accept(self, raw_code: str) -> bool:
        if self._closed or self._state != ScanState.SCANNING:
            logger.debug(f"Dropping code while {self._state.value}")
            return False

        now = self.clock()
        last = self._last_accepted
        if last is not None and (now - last.observed_at) * 1000 < self.debounce_ms:
            logger.debug("Dropping code inside debounce window")
            return False

        code = (raw_code or "").strip()
        self._last_accepted = ScanEvent(raw_code=code, observed_at=now)
        self._participant = None
        self._error = None
        self._transition(ScanState.PROCESSING)
        if self.camera is not None:
            self.camera.pause()
        return True

    # =========================================================================
    # Processing
    # =========================================================================

    async def _process(self, cycle: int) -> None:
        code = self._last_accepted.raw_code

        try:
            participant = await lookup_participant(self.client, code, self.event_id)
        except Exception as e:
            if self._stale(cycle):
                return
            self._fail(e)
            return

        if self._stale(cycle):
            return

        self._participant = participant

        if participant.is_attended(self.attended_status):
            logger.info(f"Participant {participant.id} already checked in")
            self._transition(ScanState.ALREADY_ATTENDED)
            self._feedback(FeedbackKind.WARNING)
            self._schedule_auto_reset()
            return

        if self.auto_validate:
            await self._write(participant, cycle)
        else:
            self._transition(ScanState.CONFIRMING)

    async def confirm(self) -> bool:
        """Operator approval of the participant shown in CONFIRMING"""
        if self._state != ScanState.CONFIRMING or self._participant is None:
            logger.debug(f"Ignoring confirm while {self._state.value}")
            return False

        self._transition(ScanState.PROCESSING)
        await self._write(self._participant, self._cycle)
        return True

    async def _write(self, participant: Participant, cycle: int) -> None:
        if self.can_write is not None and not self.can_write():
            self._fail(EventClosed("Event is closed for check-in"))
            return

        try:
            await set_status(self.client, participant.id, self.attended_status)
        except Exception as e:
            if self._stale(cycle):
                return
            self._fail(e)
            return

        if self._stale(cycle):
            return

        self._participant = participant.with_status(self.attended_status)
        logger.info(f"Participant {participant.id} checked in")
        self._transition(ScanState.SUCCESS)
        self._feedback(FeedbackKind.SUCCESS)

    def _fail(self, error: Exception) -> None:
        if isinstance(error, CiviScanError):
            reason = error.message
            logger.error(f"Scan failed: {reason}")
        else:
            reason = str(error) or type(error).__name__
            logger.exception(f"Unexpected scan failure: {reason}")

        self._error = reason
        self._transition(ScanState.ERROR)
        self._feedback(FeedbackKind.ERROR)

    def _stale(self, cycle: int) -> bool:
        return self._closed or cycle != self._cycle

    def _schedule_auto_reset(self) -> None:
        if not self.auto_validate or self.already_attended_reset_ms is None:
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return

        self._auto_reset = loop.create_task(self._auto_reset_after(self._cycle))

    async def _auto_reset_after(self, cycle: int) -> None:
        await asyncio.sleep(self.already_attended_reset_ms / 1000)
        if not self._stale(cycle) and self._state == ScanState.ALREADY_ATTENDED:
            self.reset()

    # =========================================================================
    # Operator controls
    # =========================================================================

    def cancel(self) -> bool:
        """Decline the participant shown in CONFIRMING"""
        if self._state != ScanState.CONFIRMING:
            return False
        return self.reset()

    def reset(self) -> bool:
        """
        Return to SCANNING from an outcome state, clearing the held
        participant and error and resuming the camera.
        """
        if self._state not in OUTCOME_STATES:
            logger.debug(f"Ignoring reset while {self._state.value}")
            return False

        self._cycle += 1
        self._participant = None
        self._error = None
        if self._auto_reset is not None and self._auto_reset is not _current_task():
            self._auto_reset.cancel()
        self._auto_reset = None

        self._transition(ScanState.SCANNING)
        if self.camera is not None:
            self.camera.resume()
        return True

    def set_auto_validate(self, enabled: bool) -> None:
        self.auto_validate = enabled

    async def close(self) -> None:
        """Abandon in-flight work without surfacing its result"""
        self._closed = True
        self._cycle += 1

        for task in (self._task, self._auto_reset):
            if task is not None and not task.done() and task is not asyncio.current_task():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        self._task = None
        self._auto_reset = None
