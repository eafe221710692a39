"""
Print orchestrator.

Consumes printer state events and drives the timelapse sessions and the
print broadcast. All timing decisions compare event timestamps; there are
no timers here. Events are handled one at a time; the only work that
outlives an event is the background finalize started at the last layer.
"""

import asyncio
import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Dict, Optional, Set

from printer_poller.models import PrinterState

logger = logging.getLogger(__name__)

PROGRESS_COMPLETE_PERCENT = 99.0
_PATH_INVALID = re.compile(r'[<>:"/\\|?*\x00-\x1f]')

VideoUploader = Callable[[str, Optional[str]], Awaitable[None]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _same_job(a: Optional[str], b: Optional[str]) -> bool:
    return (a or "").lower() == (b or "").lower()


def sanitize_job_name(filename: Optional[str], now: datetime) -> str:
    """Job name safe for use as a folder name."""
    cleaned = _PATH_INVALID.sub("_", (filename or "").strip())
    if not cleaned.strip("_ "):
        return f"printing_{now:%Y%m%d_%H%M%S}"
    return cleaned


class PrintOrchestrator:
    """
    State machine driving timelapse and broadcast from printer events.

    Features:
    - One active timelapse session, mapped to the job it belongs to
    - Early finalize at the last layer (background)
    - Finalize on job change, completion, idle delay, missing job or offline grace
    - Automatic broadcast start with a new print; optional stop after it
    """

    def __init__(
        self,
        settings,
        timelapse,
        stream,
        video_uploader: Optional[VideoUploader] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        """
        Initialize print orchestrator.

        Args:
            settings: Application settings (``shared.config.Settings``)
            timelapse: Timelapse manager
            stream: Stream orchestrator
            video_uploader: Optional coroutine receiving (video_path, job_filename)
            clock: Source of the current UTC time
        """
        self.settings = settings
        self.timelapse = timelapse
        self.stream = stream
        self.video_uploader = video_uploader
        self._clock = clock

        self.last_printer_state: Optional[PrinterState] = None
        self.last_info_seen_at: Optional[datetime] = None
        self.last_printing_seen_at: Optional[datetime] = None
        self.idle_state_since: Optional[datetime] = None
        self.job_missing_since: Optional[datetime] = None
        self.waiting_for_resume_logged = False

        self.active_session: Optional[str] = None
        self.active_job_filename: Optional[str] = None
        self.timelapse_finalized_for_job: Optional[str] = None
        self.last_layer_triggered = False
        self.session_jobs: Dict[str, Optional[str]] = {}

        self._finalizing: Set[str] = set()
        self._background: Set[asyncio.Task] = set()
        self._event_lock = asyncio.Lock()

    @property
    def _tl(self):
        return self.settings.timelapse

    async def handle_state_change(self, state: PrinterState) -> None:
        """Handle one printer state event. Never raises."""
        async with self._event_lock:
            try:
                await self._process(state)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error handling printer state change: {e}", exc_info=True)

    async def _process(self, state: PrinterState) -> None:
        now = self._clock()
        previous_info_seen_at = self.last_info_seen_at
        self.last_info_seen_at = now
        self.last_printer_state = state

        printing = state.is_actively_printing
        if printing:
            self.last_printing_seen_at = now
            self.idle_state_since = None
            self.waiting_for_resume_logged = False
        elif state.is_done and self.idle_state_since is None:
            self.idle_state_since = now

        filename = state.filename if state.has_filename else None

        if (
            self.timelapse_finalized_for_job
            and filename
            and not _same_job(filename, self.timelapse_finalized_for_job)
        ):
            logger.debug(
                f"Clearing finalized marker for {self.timelapse_finalized_for_job}; new job {filename}"
            )
            self.timelapse_finalized_for_job = None

        if self.active_session is not None:
            if filename is None:
                if self.job_missing_since is None:
                    self.job_missing_since = now
            else:
                self.job_missing_since = None

            if not self.active_job_filename and filename:
                self.active_job_filename = filename
                self.session_jobs[self.active_session] = filename
        else:
            self.job_missing_since = None

        force_finalize = bool(
            printing
            and self.active_session is not None
            and filename
            and self.active_job_filename
            and not _same_job(filename, self.active_job_filename)
        )
        if force_finalize:
            logger.info(
                f"Job changed while timelapse active: {self.active_job_filename} -> {filename}. "
                f"Finalizing {self.active_session}"
            )

        if self.active_session is not None:
            self._forward_progress(self.active_session, state)

        self._check_last_layer(state)

        # A running print keeps its session until the job changes or the last layer fires.
        if not (printing and self.active_session is not None and not force_finalize):
            await self._evaluate_finalization(state, now, previous_info_seen_at, force_finalize)

        if (
            printing
            and self.active_session is None
            and (filename is None or not _same_job(filename, self.timelapse_finalized_for_job))
            and not (filename is None and self.last_layer_triggered and self._last_layer_reached(state))
        ):
            await self._start_print_stream(state, filename, now)

    def _forward_progress(self, session_id: str, state: PrinterState) -> None:
        try:
            self.timelapse.notify_progress(session_id, state.current_layer, state.total_layers)
            self.timelapse.notify_printer_state(session_id, state.state)
        except Exception as e:
            logger.error(f"Failed to notify timelapse of progress: {e}", exc_info=True)

    def _layers_complete(self, state: PrinterState) -> bool:
        if state.current_layer is None or not state.total_layers:
            return False
        offset = max(self._tl.last_layer_offset, 0)
        return state.current_layer >= max(0, state.total_layers - offset)

    def _last_layer_reached(self, state: PrinterState) -> bool:
        by_time = state.remaining is not None and state.remaining <= timedelta(
            seconds=self._tl.last_layer_remaining_seconds
        )
        by_progress = (
            state.progress_percent is not None
            and state.progress_percent >= self._tl.last_layer_progress_percent
        )
        return by_time or by_progress or self._layers_complete(state)

    def _check_last_layer(self, state: PrinterState) -> None:
        if (
            not state.is_actively_printing
            or self.active_session is None
            or self.last_layer_triggered
            or not self._last_layer_reached(state)
        ):
            return

        session_id = self.active_session
        logger.info(f"Last layer detected, finalizing timelapse {session_id}")
        self.last_layer_triggered = True
        self._finalizing.add(session_id)
        self._spawn(self._finalize_session(session_id))

        self.timelapse_finalized_for_job = self.active_job_filename
        self.active_session = None
        self.active_job_filename = None

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def wait_for_background(self) -> None:
        """Wait for background finalizations to complete."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def _evaluate_finalization(
        self,
        state: PrinterState,
        now: datetime,
        previous_info_seen_at: Optional[datetime],
        force_finalize: bool,
    ) -> None:
        grace = self._tl.offline_grace_period
        layers_complete = self._layers_complete(state)
        progress_complete = (
            state.progress_percent is not None and state.progress_percent >= PROGRESS_COMPLETE_PERCENT
        )
        idle_met = (
            self.idle_state_since is not None
            and now - self.idle_state_since >= self._tl.idle_finalize_delay
        )
        job_missing_met = self.job_missing_since is not None and now - self.job_missing_since >= grace
        offline_met = (
            self.last_printing_seen_at is not None
            and previous_info_seen_at is not None
            and now - self.last_printing_seen_at >= grace
            and now - previous_info_seen_at >= grace
        )

        should_finalize = (
            force_finalize
            or layers_complete
            or progress_complete
            or idle_met
            or job_missing_met
            or offline_met
        )
        if not should_finalize:
            if not self.waiting_for_resume_logged:
                logger.debug(
                    f"Holding timelapse (state={state.state.value}, progress={state.progress_percent})"
                )
                self.waiting_for_resume_logged = True
            return

        self.waiting_for_resume_logged = False
        job_label = state.filename or self.active_session or "(unknown)"
        if force_finalize:
            logger.info(f"Finalizing timelapse before new job: {job_label}")
        else:
            logger.info(f"Print finished: {job_label}")
            await self._maybe_stop_broadcast()

        if self.active_session is not None:
            session_id = self.active_session
            self._finalizing.add(session_id)
            await self._finalize_session(session_id)
        elif self.last_printer_state is not None and self.last_printer_state.has_filename:
            job = self.last_printer_state.filename
            for session_id in [
                s
                for s, j in self.session_jobs.items()
                if j and _same_job(j, job) and s not in self._finalizing
            ]:
                logger.debug(f"Finalizing mapped session {session_id} for job {job}")
                self._finalizing.add(session_id)
                await self._finalize_session(session_id)

        self.active_session = None
        self.active_job_filename = None
        self.job_missing_since = None
        self.idle_state_since = None
        self.last_printing_seen_at = None

    async def _maybe_stop_broadcast(self) -> None:
        if not self.stream.is_broadcasting:
            return
        if not self.settings.get_value("YouTube:LiveBroadcast:EndStreamAfterPrint"):
            logger.info("Leaving broadcast running (EndStreamAfterPrint=false)")
            return
        try:
            ok, message = await self.stream.stop_broadcast()
            if ok:
                logger.info("Broadcast stopped after print")
            else:
                logger.warning(f"Error stopping broadcast: {message}")
        except Exception as e:
            logger.error(f"Error stopping broadcast: {e}", exc_info=True)

    async def _finalize_session(self, session_id: str) -> None:
        """Stop a session, record its job as finalized, hand off the video."""
        job = self.session_jobs.get(session_id)
        try:
            logger.info(f"Stopping timelapse: {session_id}")
            video_path = await self.timelapse.stop(session_id)

            if not self.timelapse_finalized_for_job and job:
                self.timelapse_finalized_for_job = job
            self.session_jobs.pop(session_id, None)

            if video_path:
                logger.info(f"Timelapse video created: {video_path}")
                if self.video_uploader is not None:
                    await self.video_uploader(video_path, job)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Failed to finalize timelapse {session_id}: {e}", exc_info=True)
        finally:
            self._finalizing.discard(session_id)

    async def _start_print_stream(self, state: PrinterState, filename: Optional[str], now: datetime) -> None:
        logger.info(f"Print started: {filename or '(unknown)'}")
        job_name_safe = sanitize_job_name(filename, now)

        session_id = await self.timelapse.start(job_name_safe, filename)
        if session_id is None:
            logger.warning("Failed to start timelapse session")
            return

        self.active_session = session_id
        self.active_job_filename = filename
        self.last_layer_triggered = False
        self.session_jobs[session_id] = filename
        logger.info(f"Timelapse session started: {session_id}")
        self._forward_progress(session_id, state)

        if self._last_layer_reached(state):
            logger.info(f"Last layer already reached, finalizing timelapse {session_id} without broadcasting")
            self.last_layer_triggered = True
            self._finalizing.add(session_id)
            await self._finalize_session(session_id)
            self.timelapse_finalized_for_job = filename or self.timelapse_finalized_for_job
            self.active_session = None
            self.active_job_filename = None
            return

        if not self.settings.get_value("YouTube:LiveBroadcast:Enabled"):
            logger.info("Auto-broadcast disabled; manual mode")
            return
        if self.stream.is_broadcasting:
            return
        try:
            ok, message, broadcast_id = await self.stream.start_broadcast()
            if ok:
                logger.info(f"Broadcast started: {broadcast_id}")
            else:
                logger.warning(f"Failed to start broadcast: {message}")
        except Exception as e:
            logger.error(f"Error starting broadcast: {e}", exc_info=True)

    def get_status(self) -> Dict:
        return {
            "active_session": self.active_session,
            "active_job_filename": self.active_job_filename,
            "timelapse_finalized_for_job": self.timelapse_finalized_for_job,
            "last_layer_triggered": self.last_layer_triggered,
            "pending_finalizations": sorted(self._finalizing),
            "last_state": self.last_printer_state.state.value if self.last_printer_state else None,
        }
