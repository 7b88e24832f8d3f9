"""
Test the scan processor state machine

The API client is replaced by an AsyncMock whose `call` answers lookups
from an in-memory record and records writes.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from civiscan.core.errors import NetworkError
from civiscan.core.protocol import ApiResponse
from civiscan.scanner import FeedbackKind, LoggingNotifier, Notifier, ScanProcessor, ScanState


def participant_record(participant_id=1042, status_id=1):
    return {
        "id": participant_id,
        "status_id": status_id,
        "contact_id": 5,
        "contact_id.display_name": "Ada Lovelace",
        "contact_id.email": "ada@example.org",
    }


class FakeBackend:
    """Stands in for ApiClient.call"""

    def __init__(self, records=None):
        self.records = [participant_record()] if records is None else records
        self.lookups = []
        self.updates = []
        self.gate = None

    async def call(self, entity, action, query=None):
        if self.gate is not None:
            await self.gate.wait()
        if action == "get":
            self.lookups.append(query)
            return ApiResponse(values=list(self.records))
        self.updates.append(query)
        return ApiResponse(values=[])


class TestScanProcessor:
    """Tests for ScanProcessor"""

    def setup_method(self):
        self.now = 100.0
        self.backend = FakeBackend()
        self.client = MagicMock()
        self.client.call = AsyncMock(side_effect=self.backend.call)
        self.notifier = MagicMock()
        self.camera = MagicMock()
        self.transitions = []

    def make_processor(self, **kwargs):
        processor = ScanProcessor(
            self.client,
            event_id=7,
            notifier=self.notifier,
            camera=self.camera,
            clock=lambda: self.now,
            **kwargs,
        )
        processor.transitions.subscribe(lambda old, new: self.transitions.append(new))
        return processor

    def feedback(self):
        return [c.args[0] for c in self.notifier.notify.call_args_list]

    # =========================================================================
    # Manual confirmation
    # =========================================================================

    @pytest.mark.asyncio
    async def test_confirm_flow(self):
        """Registered participant: confirm, then update to Attended"""
        processor = self.make_processor()

        assert await processor.submit("1042") is True

        assert self.transitions == [ScanState.PROCESSING, ScanState.CONFIRMING]
        assert processor.participant.id == 1042
        assert processor.participant.display_name == "Ada Lovelace"
        assert self.backend.updates == []
        lookup = self.backend.lookups[0]
        assert lookup.where == [["id", "=", 1042], ["event_id", "=", 7]]
        assert lookup.limit == 1

        assert await processor.confirm() is True

        assert processor.state == ScanState.SUCCESS
        assert processor.participant.status_id == 2
        update = self.backend.updates[0]
        assert update.where == [["id", "=", 1042]]
        assert update.values == {"status_id": 2}
        assert self.feedback() == [FeedbackKind.SUCCESS]
        self.camera.pause.assert_called_once()

    @pytest.mark.asyncio
    async def test_already_attended(self):
        """Attended participant: no write at all"""
        self.backend.records = [participant_record(status_id=2)]
        processor = self.make_processor()

        await processor.submit("1042")

        assert processor.state == ScanState.ALREADY_ATTENDED
        assert self.backend.updates == []
        assert self.feedback() == [FeedbackKind.WARNING]

    @pytest.mark.asyncio
    async def test_already_attended_also_with_auto_validate(self):
        self.backend.records = [participant_record(status_id=2)]
        processor = self.make_processor(auto_validate=True)

        await processor.submit("1042")

        assert processor.state == ScanState.ALREADY_ATTENDED
        assert self.backend.updates == []

    @pytest.mark.asyncio
    async def test_cancel(self):
        processor = self.make_processor()
        await processor.submit("1042")

        assert processor.cancel() is True

        assert processor.state == ScanState.SCANNING
        assert processor.participant is None
        assert self.backend.updates == []
        self.camera.resume.assert_called_once()

    @pytest.mark.asyncio
    async def test_confirm_outside_confirming(self):
        processor = self.make_processor()
        assert await processor.confirm() is False
        assert self.backend.updates == []

    @pytest.mark.asyncio
    async def test_custom_attended_status(self):
        processor = self.make_processor(attended_status=9)
        await processor.submit("1042")
        await processor.confirm()

        assert self.backend.updates[0].values == {"status_id": 9}

    # =========================================================================
    # Auto-validate
    # =========================================================================

    @pytest.mark.asyncio
    async def test_auto_validate(self):
        """No confirmation step: straight to Success"""
        processor = self.make_processor(auto_validate=True)

        await processor.submit("1042")

        assert self.transitions == [ScanState.PROCESSING, ScanState.SUCCESS]
        assert len(self.backend.updates) == 1

    @pytest.mark.asyncio
    async def test_set_auto_validate(self):
        processor = self.make_processor()
        processor.set_auto_validate(True)

        await processor.submit("1042")

        assert processor.state == ScanState.SUCCESS

    @pytest.mark.asyncio
    async def test_auto_reset_after_already_attended(self):
        self.backend.records = [participant_record(status_id=2)]
        processor = self.make_processor(auto_validate=True, already_attended_reset_ms=10)

        await processor.submit("1042")
        assert processor.state == ScanState.ALREADY_ATTENDED

        await asyncio.sleep(0.05)

        assert processor.state == ScanState.SCANNING
        await processor.close()

    @pytest.mark.asyncio
    async def test_no_auto_reset_in_manual_mode(self):
        self.backend.records = [participant_record(status_id=2)]
        processor = self.make_processor(already_attended_reset_ms=10)

        await processor.submit("1042")
        await asyncio.sleep(0.05)

        assert processor.state == ScanState.ALREADY_ATTENDED

    @pytest.mark.asyncio
    async def test_event_closed_blocks_write(self):
        processor = self.make_processor(auto_validate=True, can_write=lambda: False)

        await processor.submit("1042")

        assert processor.state == ScanState.ERROR
        assert "closed" in processor.error
        assert self.backend.updates == []

    # =========================================================================
    # Errors
    # =========================================================================

    @pytest.mark.asyncio
    async def test_not_found(self):
        self.backend.records = []
        processor = self.make_processor()

        await processor.submit("999")

        assert processor.state == ScanState.ERROR
        assert "not found" in processor.error
        assert self.feedback() == [FeedbackKind.ERROR]

    @pytest.mark.asyncio
    async def test_lookup_network_error(self):
        self.client.call = AsyncMock(side_effect=NetworkError("Connection error: refused"))
        processor = self.make_processor()

        await processor.submit("1042")

        assert processor.state == ScanState.ERROR
        assert processor.error == "Connection error: refused"

    @pytest.mark.asyncio
    async def test_write_failure(self):
        processor = self.make_processor()
        await processor.submit("1042")
        self.client.call = AsyncMock(side_effect=NetworkError("timeout"))

        await processor.confirm()

        assert processor.state == ScanState.ERROR
        assert processor.error == "timeout"

    @pytest.mark.asyncio
    async def test_unexpected_exception_lands_in_error(self):
        self.client.call = AsyncMock(side_effect=RuntimeError("bad payload"))
        processor = self.make_processor()

        await processor.submit("1042")

        assert processor.state == ScanState.ERROR
        assert processor.error == "bad payload"

    @pytest.mark.asyncio
    async def test_notifier_failure_does_not_break_flow(self):
        self.notifier.notify.side_effect = RuntimeError("no audio device")
        processor = self.make_processor(auto_validate=True)

        await processor.submit("1042")

        assert processor.state == ScanState.SUCCESS

    # =========================================================================
    # Gating
    # =========================================================================

    @pytest.mark.asyncio
    async def test_codes_dropped_while_not_scanning(self):
        processor = self.make_processor()
        await processor.submit("1042")
        self.now += 10

        assert await processor.submit("1043") is False
        assert len(self.backend.lookups) == 1

    @pytest.mark.asyncio
    async def test_debounce(self):
        """Codes within 3000 ms of the last accepted code are dropped"""
        processor = self.make_processor()
        await processor.submit("1042")
        processor.cancel()

        self.now += 2.9
        assert await processor.submit("1042") is False

        self.now += 0.2
        assert await processor.submit("1042") is True
        assert len(self.backend.lookups) == 2

    @pytest.mark.asyncio
    async def test_reset_round_trip(self):
        processor = self.make_processor(auto_validate=True)
        await processor.submit("1042")

        assert processor.reset() is True

        assert processor.state == ScanState.SCANNING
        assert processor.participant is None
        assert processor.error is None
        self.camera.resume.assert_called_once()

    def test_reset_from_scanning(self):
        processor = self.make_processor()
        assert processor.reset() is False
        assert self.transitions == []

    @pytest.mark.asyncio
    async def test_on_decoded_schedules_task(self):
        processor = self.make_processor()

        task = processor.on_decoded("1042")
        assert processor.state == ScanState.PROCESSING
        await task

        assert processor.state == ScanState.CONFIRMING
        assert processor.on_decoded("1043") is None

    @pytest.mark.asyncio
    async def test_close_discards_inflight_result(self):
        self.backend.gate = asyncio.Event()
        processor = self.make_processor()

        processor.on_decoded("1042")
        await asyncio.sleep(0)
        await processor.close()
        self.backend.gate.set()
        await asyncio.sleep(0)

        assert processor.state == ScanState.PROCESSING
        assert processor.participant is None
        assert self.transitions == [ScanState.PROCESSING]
        assert processor.on_decoded("1042") is None


class TestNotifier:
    """Tests for feedback sinks"""

    def test_base_requires_notify(self):
        with pytest.raises(TypeError):
            Notifier()

    def test_subclass_with_notify(self):
        kinds = []

        class Recording(Notifier):
            def notify(self, kind):
                kinds.append(kind)

        Recording().notify(FeedbackKind.CLICK)
        LoggingNotifier().notify(FeedbackKind.SUCCESS)

        assert kinds == [FeedbackKind.CLICK]
