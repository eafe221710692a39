"""
Tests for the print orchestrator state machine.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, call

import pytest

from orchestrator.print_orchestrator import PrintOrchestrator, sanitize_job_name
from printer_poller.models import PrinterState


def printing(filename="a.gcode", layer=None, total=None, progress=None, state="printing"):
    return PrinterState(
        state=state,
        filename=filename,
        current_layer=layer,
        total_layers=total,
        progress_percent=progress,
    )


@pytest.fixture
def orchestrator(settings, timelapse, stream, clock):
    return PrintOrchestrator(settings, timelapse, stream, clock=clock)


class TestSanitizeJobName:
    """Folder-safe job names."""

    def test_replaces_invalid_characters(self):
        now = datetime(2026, 1, 2, tzinfo=timezone.utc)
        assert sanitize_job_name('part:v2/"x".gcode', now) == "part_v2__x_.gcode"

    def test_empty_name_uses_timestamp(self):
        now = datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        assert sanitize_job_name("", now) == "printing_20260102_030405"
        assert sanitize_job_name(None, now) == "printing_20260102_030405"


class TestStart:
    """Starting sessions and broadcasts."""

    @pytest.mark.asyncio
    async def test_idle_printer_starts_nothing(self, orchestrator, timelapse, stream):
        await orchestrator.handle_state_change(PrinterState(state="idle"))

        timelapse.start.assert_not_awaited()
        stream.start_broadcast.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_print_starts_session_and_broadcast(self, orchestrator, timelapse, stream):
        await orchestrator.handle_state_change(printing(layer=1, total=100, progress=1.0))

        timelapse.start.assert_awaited_once_with("a.gcode", "a.gcode")
        stream.start_broadcast.assert_awaited_once()
        assert orchestrator.active_session == "a.gcode"
        assert orchestrator.active_job_filename == "a.gcode"
        assert orchestrator.session_jobs == {"a.gcode": "a.gcode"}

    @pytest.mark.asyncio
    async def test_progress_is_forwarded(self, orchestrator, timelapse):
        await orchestrator.handle_state_change(printing(layer=1, total=100))
        await orchestrator.handle_state_change(printing(layer=2, total=100))

        assert timelapse.notify_progress.call_args_list[-1] == call("a.gcode", 2, 100)
        timelapse.notify_printer_state.assert_called()

    @pytest.mark.asyncio
    async def test_auto_broadcast_disabled(self, orchestrator, settings, timelapse, stream):
        settings.set_value("YouTube:LiveBroadcast:Enabled", False)

        await orchestrator.handle_state_change(printing())

        timelapse.start.assert_awaited_once()
        stream.start_broadcast.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_existing_broadcast_is_kept(self, orchestrator, stream):
        stream.is_broadcasting = True

        await orchestrator.handle_state_change(printing())

        stream.start_broadcast.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_empty_filename_gets_timestamp_name(self, orchestrator, timelapse):
        await orchestrator.handle_state_change(printing(filename=""))

        timelapse.start.assert_awaited_once_with("printing_20260102_030405", None)

    @pytest.mark.asyncio
    async def test_failed_session_start(self, orchestrator, timelapse, stream):
        timelapse.start.side_effect = None
        timelapse.start.return_value = None

        await orchestrator.handle_state_change(printing())

        assert orchestrator.active_session is None
        stream.start_broadcast.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_errors_do_not_escape(self, orchestrator, timelapse):
        timelapse.start.side_effect = RuntimeError("disk full")

        await orchestrator.handle_state_change(printing())

        assert orchestrator.active_session is None

    @pytest.mark.asyncio
    async def test_print_first_seen_at_last_layer_is_finalized_without_broadcast(
        self, orchestrator, timelapse, stream
    ):
        await orchestrator.handle_state_change(printing(layer=99, total=100, progress=98.7))

        timelapse.start.assert_awaited_once_with("a.gcode", "a.gcode")
        timelapse.stop.assert_awaited_once_with("a.gcode")
        stream.start_broadcast.assert_not_awaited()
        assert orchestrator.active_session is None
        assert orchestrator.active_job_filename is None
        assert orchestrator.timelapse_finalized_for_job == "a.gcode"
        assert orchestrator.session_jobs == {}

    @pytest.mark.asyncio
    async def test_nameless_print_at_last_layer_is_not_restarted(self, orchestrator, timelapse, clock):
        await orchestrator.handle_state_change(printing(filename="", layer=99, total=100))
        clock.advance(seconds=5)
        await orchestrator.handle_state_change(printing(filename="", layer=100, total=100))

        timelapse.start.assert_awaited_once()
        timelapse.stop.assert_awaited_once()


class TestLastLayer:
    """Early finalize near the end of a print."""

    @pytest.mark.asyncio
    async def test_last_layer_finalizes_in_background(self, orchestrator, timelapse, stream):
        await orchestrator.handle_state_change(printing(layer=1, total=100, progress=1.0))
        await orchestrator.handle_state_change(printing(layer=99, total=100, progress=50.0))
        await orchestrator.wait_for_background()

        timelapse.stop.assert_awaited_once_with("a.gcode")
        assert orchestrator.last_layer_triggered is True
        assert orchestrator.active_session is None
        assert orchestrator.active_job_filename is None
        assert orchestrator.timelapse_finalized_for_job == "a.gcode"
        assert orchestrator.session_jobs == {}
        stream.stop_broadcast.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_remaining_time_triggers(self, orchestrator, timelapse):
        await orchestrator.handle_state_change(printing(layer=1, total=100))
        await orchestrator.handle_state_change(
            PrinterState(state="printing", filename="a.gcode", remaining=timedelta(seconds=20))
        )
        await orchestrator.wait_for_background()

        timelapse.stop.assert_awaited_once_with("a.gcode")

    @pytest.mark.asyncio
    async def test_completion_after_last_layer_does_not_finalize_again(self, orchestrator, timelapse):
        await orchestrator.handle_state_change(printing(layer=1, total=100, progress=1.0))
        await orchestrator.handle_state_change(printing(layer=99, total=100, progress=98.7))
        await orchestrator.handle_state_change(printing(state="complete", progress=100.0))
        await orchestrator.wait_for_background()

        timelapse.stop.assert_awaited_once()
        assert orchestrator.timelapse_finalized_for_job == "a.gcode"

    @pytest.mark.asyncio
    async def test_same_job_is_not_restarted(self, orchestrator, timelapse):
        await orchestrator.handle_state_change(printing(layer=1, total=100))
        await orchestrator.handle_state_change(printing(layer=99, total=100))
        await orchestrator.wait_for_background()

        await orchestrator.handle_state_change(printing(layer=100, total=100))

        timelapse.start.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_new_job_clears_marker(self, orchestrator, timelapse):
        await orchestrator.handle_state_change(printing(layer=1, total=100))
        await orchestrator.handle_state_change(printing(layer=99, total=100))
        await orchestrator.wait_for_background()

        await orchestrator.handle_state_change(printing(filename="b.gcode", layer=1, total=50))

        assert timelapse.start.await_count == 2
        assert orchestrator.active_session == "b.gcode"
        assert orchestrator.timelapse_finalized_for_job is None


class TestFinalize:
    """Finalize conditions."""

    @pytest.mark.asyncio
    async def test_job_change_finalizes_then_starts_new(self, orchestrator, timelapse, stream):
        await orchestrator.handle_state_change(printing(layer=5, total=100))
        await orchestrator.handle_state_change(printing(filename="b.gcode", layer=1, total=200))

        timelapse.stop.assert_awaited_once_with("a.gcode")
        assert timelapse.start.await_args_list[-1] == call("b.gcode", "b.gcode")
        assert orchestrator.active_session == "b.gcode"
        stream.stop_broadcast.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_filename_case_is_ignored(self, orchestrator, timelapse):
        await orchestrator.handle_state_change(printing(filename="A.GCODE", layer=5, total=100))
        await orchestrator.handle_state_change(printing(filename="a.gcode", layer=6, total=100))

        timelapse.stop.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_idle_delay(self, orchestrator, timelapse, stream, clock):
        await orchestrator.handle_state_change(printing(layer=5, total=100))

        clock.advance(seconds=1)
        await orchestrator.handle_state_change(printing(state="idle"))
        timelapse.stop.assert_not_awaited()

        clock.advance(seconds=25)
        await orchestrator.handle_state_change(printing(state="idle"))

        timelapse.stop.assert_awaited_once_with("a.gcode")
        stream.stop_broadcast.assert_awaited_once()
        assert orchestrator.active_session is None
        assert orchestrator.idle_state_since is None

    @pytest.mark.asyncio
    async def test_missing_job_grace(self, orchestrator, timelapse, clock):
        await orchestrator.handle_state_change(printing(layer=5, total=100))

        for minutes in (1, 5, 5):
            clock.advance(minutes=minutes)
            await orchestrator.handle_state_change(PrinterState(state="unknown", filename=""))
            if minutes == 1:
                assert orchestrator.job_missing_since == clock.now

        timelapse.stop.assert_awaited_once_with("a.gcode")

    @pytest.mark.asyncio
    async def test_offline_grace(self, orchestrator, timelapse, stream, clock):
        await orchestrator.handle_state_change(printing(layer=10, total=100))

        clock.advance(minutes=11)
        await orchestrator.handle_state_change(PrinterState(state="unknown", filename=""))

        timelapse.stop.assert_awaited_once_with("a.gcode")
        stream.stop_broadcast.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_short_outage_keeps_session(self, orchestrator, timelapse, clock):
        await orchestrator.handle_state_change(printing(layer=10, total=100))

        clock.advance(minutes=2)
        await orchestrator.handle_state_change(PrinterState(state="unknown", filename=""))

        timelapse.stop.assert_not_awaited()
        assert orchestrator.active_session == "a.gcode"

    @pytest.mark.asyncio
    async def test_end_stream_after_print_disabled(self, orchestrator, settings, stream, clock):
        settings.set_value("YouTube:LiveBroadcast:EndStreamAfterPrint", False)
        await orchestrator.handle_state_change(printing(layer=10, total=100))

        await orchestrator.handle_state_change(printing(state="complete", progress=100.0))

        stream.stop_broadcast.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_long_nameless_print_keeps_one_session(self, orchestrator, timelapse, stream, clock):
        for _ in range(39):
            await orchestrator.handle_state_change(printing(filename=""))
            clock.advance(minutes=1)
        await orchestrator.wait_for_background()

        timelapse.start.assert_awaited_once_with("printing_20260102_030405", None)
        timelapse.stop.assert_not_awaited()
        stream.start_broadcast.assert_awaited_once()
        stream.stop_broadcast.assert_not_awaited()
        assert orchestrator.active_session == "printing_20260102_030405"

    @pytest.mark.asyncio
    async def test_nameless_print_still_finalizes_on_completion(self, orchestrator, timelapse, clock):
        for _ in range(15):
            await orchestrator.handle_state_change(printing(filename=""))
            clock.advance(minutes=1)

        await orchestrator.handle_state_change(printing(filename="", state="complete", progress=100.0))

        timelapse.stop.assert_awaited_once_with("printing_20260102_030405")
        assert orchestrator.active_session is None

    @pytest.mark.asyncio
    async def test_video_is_handed_to_uploader(self, settings, timelapse, stream, clock):
        uploader = AsyncMock()
        timelapse.stop.return_value = "/videos/a.mp4"
        orchestrator = PrintOrchestrator(settings, timelapse, stream, video_uploader=uploader, clock=clock)

        await orchestrator.handle_state_change(printing(layer=10, total=100))
        await orchestrator.handle_state_change(printing(state="complete", progress=100.0))

        uploader.assert_awaited_once_with("/videos/a.mp4", "a.gcode")

    @pytest.mark.asyncio
    async def test_status(self, orchestrator):
        await orchestrator.handle_state_change(printing(layer=10, total=100))

        status = orchestrator.get_status()

        assert status["active_session"] == "a.gcode"
        assert status["last_state"] == "printing"
        assert status["pending_finalizations"] == []
