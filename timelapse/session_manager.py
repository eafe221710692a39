"""
Timelapse session manager.

A session owns a folder of numbered JPEG frames captured from the camera
snapshot URL while a print runs. Capture waits for the first layer and is
suspended while the printer is paused. Stopping a session encodes the
frames into ``<session>.mp4`` inside the session folder.
"""

import asyncio
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

import httpx

from ffmpeg_manager.command_builder import FFmpegCommandBuilder
from printer_poller.models import PrinterStatus

logger = logging.getLogger(__name__)

JPEG_MAGIC = b"\xff\xd8"
MIN_FRAMES_FOR_VIDEO = 2
_INVALID_CHARS = re.compile(r"[^\w]+")


def sanitize_session_name(name: str) -> str:
    """Folder-safe form of a job name; extension dropped, separators collapsed."""
    stem = Path(name or "").stem
    stem = stem.replace("&", "and")
    cleaned = _INVALID_CHARS.sub("_", stem).strip("_")
    cleaned = re.sub(r"_+", "_", cleaned)
    return cleaned or "unknown"


@dataclass
class TimelapseSession:
    """One running timelapse capture."""

    session_id: str
    job_filename: Optional[str]
    output_dir: Path
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    frame_count: int = 0
    current_layer: Optional[int] = None
    total_layers: Optional[int] = None
    paused: bool = False
    capture_enabled: bool = False
    stopped: bool = False
    last_capture_at: Optional[datetime] = None


class TimelapseManager:
    """
    Manages timelapse sessions.

    Features:
    - Unique session folders (timestamp suffix on collision)
    - Monotonic layer progress; capture starts at layer 1
    - Pause/resume driven by printer state
    - Frame capture loop over all active sessions
    - Video encoding with FFmpeg on stop
    """

    def __init__(
        self,
        settings,
        command_builder: Optional[FFmpegCommandBuilder] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        start_after_first_layer: bool = True,
    ):
        """
        Initialize timelapse manager.

        Args:
            settings: Timelapse settings (``shared.config.TimelapseSettings``)
            command_builder: Builds the frame-encoding command
            http_client: Client used for snapshots (created if not provided)
            start_after_first_layer: Hold capture until layer 1 is reported
        """
        self.settings = settings
        self.command_builder = command_builder or FFmpegCommandBuilder()
        self.start_after_first_layer = start_after_first_layer
        self.folder = Path(settings.folder)
        self._http_client = http_client
        self._owns_client = http_client is None
        self._sessions: Dict[str, TimelapseSession] = {}

    def _client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=10.0)
        return self._http_client

    def get_active_sessions(self) -> List[str]:
        return list(self._sessions)

    def get_session(self, session_id: str) -> Optional[TimelapseSession]:
        return self._sessions.get(session_id)

    def _unique_name(self, base: str) -> str:
        if base not in self._sessions and not (self.folder / base).exists():
            return base
        stamped = f"{base}_{datetime.now(timezone.utc).strftime('%Y%m%d_%H%M%S')}"
        candidate = stamped
        index = 1
        while candidate in self._sessions or (self.folder / candidate).exists():
            candidate = f"{stamped}_{index}"
            index += 1
        return candidate

    async def start(self, job_name_safe: str, job_filename: Optional[str] = None) -> Optional[str]:
        """
        Start a new session.

        Args:
            job_name_safe: Base name for the session folder
            job_filename: Printer job file the session belongs to

        Returns:
            Session id, or None if the folder could not be created
        """
        session_id = self._unique_name(sanitize_session_name(job_name_safe))
        output_dir = self.folder / session_id
        try:
            output_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(f"Failed to create timelapse folder {output_dir}: {e}")
            return None

        self._sessions[session_id] = TimelapseSession(
            session_id=session_id,
            job_filename=job_filename,
            output_dir=output_dir,
            capture_enabled=not self.start_after_first_layer,
        )
        logger.info(f"Started timelapse session {session_id} (job: {job_filename or 'n/a'})")
        return session_id

    def notify_progress(
        self, session_id: Optional[str], current_layer: Optional[int], total_layers: Optional[int]
    ) -> None:
        """Record layer progress; updates that move backwards are discarded."""
        session = self._sessions.get(session_id) if session_id else None
        if session is None:
            return

        if current_layer is not None:
            if session.current_layer is not None and current_layer < session.current_layer:
                logger.debug(
                    f"Ignoring non-monotonic progress for {session_id}: "
                    f"{current_layer} < {session.current_layer}"
                )
                return
            session.current_layer = current_layer
        if total_layers is not None and total_layers > 0:
            session.total_layers = total_layers

        if not session.capture_enabled and current_layer is not None and current_layer >= 1:
            session.capture_enabled = True
            logger.info(f"Starting frame capture at layer {current_layer} for session {session_id}")

    def notify_printer_state(self, session_id: Optional[str], state) -> None:
        """Pause capture while the printer is paused; resume on printing or resuming."""
        session = self._sessions.get(session_id) if session_id else None
        if session is None:
            return

        status = PrinterStatus.parse(state)
        if status == PrinterStatus.PAUSED and not session.paused:
            session.paused = True
            logger.info(f"Timelapse {session_id} paused")
        elif status in (PrinterStatus.PRINTING, PrinterStatus.RESUMING) and session.paused:
            session.paused = False
            logger.info(f"Timelapse {session_id} resumed")

    async def _fetch_snapshot(self) -> Optional[bytes]:
        response = await self._client().get(self.settings.snapshot_url)
        response.raise_for_status()
        data = response.content
        if not data.startswith(JPEG_MAGIC):
            logger.warning(f"Snapshot from {self.settings.snapshot_url} is not a JPEG")
            return None
        return data

    async def capture_once(self) -> int:
        """
        Capture one frame for every session that is capturing.

        Returns:
            Number of frames saved
        """
        sessions = [
            s for s in self._sessions.values() if not s.stopped and s.capture_enabled and not s.paused
        ]
        if not sessions:
            return 0

        try:
            frame = await self._fetch_snapshot()
        except httpx.HTTPError as e:
            logger.warning(f"Failed to fetch snapshot: {e}")
            return 0
        if frame is None:
            return 0

        saved = 0
        for session in sessions:
            if session.stopped:
                continue
            path = session.output_dir / f"frame_{session.frame_count:06d}.jpg"
            try:
                await asyncio.to_thread(path.write_bytes, frame)
            except OSError as e:
                logger.error(f"Failed to save frame for {session.session_id}: {e}")
                continue
            session.frame_count += 1
            session.last_capture_at = datetime.now(timezone.utc)
            saved += 1
        return saved

    async def run(self) -> None:
        """Capture loop; runs until cancelled."""
        interval = self.settings.capture_interval_seconds
        logger.info(f"Timelapse capture loop started (interval: {interval}s)")
        while True:
            try:
                await self.capture_once()
                await asyncio.sleep(interval)
            except asyncio.CancelledError:
                logger.info("Timelapse capture loop cancelled")
                break
            except Exception as e:
                logger.error(f"Error in timelapse capture loop: {e}", exc_info=True)
                await asyncio.sleep(interval)

    async def stop(self, session_id: str) -> Optional[str]:
        """
        Stop a session and encode its frames.

        Args:
            session_id: Session to stop

        Returns:
            Absolute path of the produced video, or None
        """
        session = self._sessions.pop(session_id, None)
        if session is None:
            logger.warning(f"Cannot stop timelapse: session '{session_id}' not found")
            return None

        session.stopped = True
        logger.info(f"Stopping timelapse session {session_id} ({session.frame_count} frames)")

        if session.frame_count < MIN_FRAMES_FOR_VIDEO:
            logger.warning(f"Not enough frames to build a video for {session_id}")
            return None

        output_path = (session.output_dir / f"{session_id}.mp4").resolve()
        return await self._encode(session, output_path)

    async def _encode(self, session: TimelapseSession, output_path: Path) -> Optional[str]:
        cmd = self.command_builder.build_timelapse_command(
            session.output_dir, output_path, fps=self.settings.output_fps
        )
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
            _, stderr = await process.communicate()
        except OSError as e:
            logger.error(f"Failed to run ffmpeg for timelapse {session.session_id}: {e}")
            return None

        if process.returncode != 0:
            tail = (stderr or b"").decode("utf-8", errors="replace").strip()[-500:]
            logger.error(f"ffmpeg exited with code {process.returncode} for {session.session_id}: {tail}")
            return None
        if not output_path.exists():
            logger.error(f"Timelapse video {output_path} was not created")
            return None

        logger.info(f"Created timelapse video: {output_path}")
        return str(output_path)

    async def stop_all(self) -> None:
        for session_id in list(self._sessions):
            await self.stop(session_id)

    async def close(self) -> None:
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
