"""
Stream orchestrator.

Couples the encoder to the YouTube broadcast: starting a broadcast creates
it, points the encoder at its ingest URL and waits for ingestion in the
background before going live. Stopping tears both down and can leave a
local-only encoder running for the mix endpoint.

Broadcast references are guarded by a plain lock that is never held across
an await: copy under the lock, act without it, reassign under it.
"""

import asyncio
import logging
import threading
from typing import Callable, Dict, Optional, Set, Tuple

from ffmpeg_manager.config import EncoderOptions, build_encoder_options
from ffmpeg_manager.process_manager import EncoderInstance, EncoderSupervisor

logger = logging.getLogger(__name__)

RECOVERY_INGESTION_TIMEOUT = 60.0
RECOVERY_INGESTION_POLLS = 6
PLAYLIST_ADD_DELAY = 2.0

OptionsFactory = Callable[[object, Optional[str]], EncoderOptions]


class StreamOrchestrator:
    """
    Broadcast and encoder policy.

    Features:
    - Idempotent broadcast start with ingestion-gated go-live
    - Stop with optional local-only encoder kept running
    - Encoder recovery reusing the current broadcast
    - End-after-song switch driven by the audio selector
    """

    def __init__(
        self,
        settings,
        supervisor: EncoderSupervisor,
        broadcast,
        options_factory: OptionsFactory = build_encoder_options,
        playlist_delay: float = PLAYLIST_ADD_DELAY,
    ):
        """
        Initialize stream orchestrator.

        Args:
            settings: Application settings (``shared.config.Settings``)
            supervisor: Encoder supervisor
            broadcast: Broadcast controller
            options_factory: Builds encoder options for a destination (None = local)
            playlist_delay: Seconds to wait before adding an ended broadcast to the playlist
        """
        self.settings = settings
        self.supervisor = supervisor
        self.broadcast = broadcast
        self.options_factory = options_factory
        self.playlist_delay = playlist_delay

        self._lock = threading.Lock()
        self._broadcast_id: Optional[str] = None
        self._rtmp_url: Optional[str] = None
        self._end_stream_after_song = False
        self._is_waiting_for_ingestion = False
        self._creating = False
        self._ingestion_task: Optional[asyncio.Task] = None
        self._background: Set[asyncio.Task] = set()

        self.restart_count = 0
        self.unexpected_exits = 0

        supervisor.add_exit_listener(self._on_encoder_exit)

    @property
    def is_broadcasting(self) -> bool:
        with self._lock:
            return self._broadcast_id is not None

    @property
    def current_broadcast_id(self) -> Optional[str]:
        with self._lock:
            return self._broadcast_id

    @property
    def current_rtmp_url(self) -> Optional[str]:
        with self._lock:
            return self._rtmp_url

    @property
    def is_waiting_for_ingestion(self) -> bool:
        with self._lock:
            return self._is_waiting_for_ingestion

    @property
    def end_stream_after_song(self) -> bool:
        with self._lock:
            return self._end_stream_after_song

    def set_end_stream_after_song(self, enabled: bool) -> None:
        with self._lock:
            self._end_stream_after_song = enabled
        logger.info(f"End stream after current song: {enabled}")

    def _set_broadcast(self, broadcast_id: Optional[str], rtmp_url: Optional[str]) -> None:
        with self._lock:
            self._broadcast_id = broadcast_id
            self._rtmp_url = rtmp_url

    async def _start_encoder(self, destination_url: Optional[str]) -> EncoderInstance:
        options = self.options_factory(self.settings, destination_url)
        return await self.supervisor.start(options)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def wait_for_background(self) -> None:
        """Wait for go-live and playlist tasks to complete."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def start_broadcast(self) -> Tuple[bool, str, Optional[str]]:
        """
        Start a YouTube broadcast and stream the camera to it.

        Returns:
            Tuple of (success, message, broadcast id)
        """
        with self._lock:
            if self._broadcast_id is not None:
                return True, "Broadcast already active", self._broadcast_id
            if self._creating:
                return False, "Another broadcast creation is in progress", None
            self._creating = True

        try:
            oauth = self.settings.youtube.oauth
            if not oauth.client_id or not oauth.client_secret:
                logger.warning("YouTube OAuth not configured")
                return False, "YouTube OAuth not configured", None

            if not await self.broadcast.authenticate():
                return False, "YouTube authentication failed", None

            handle = await self.broadcast.create_live_broadcast()
            if handle is None:
                return False, "Failed to create YouTube broadcast", None

            self._set_broadcast(handle.broadcast_id, handle.rtmp_url)
            try:
                await self._start_encoder(handle.rtmp_url)
            except Exception as e:
                logger.error(f"Failed to start encoder for broadcast {handle.broadcast_id}: {e}", exc_info=True)
                self._set_broadcast(None, None)
                await self.broadcast.end_broadcast(handle.broadcast_id)
                return False, f"Failed to start stream: {e}", None

            live = self.settings.youtube.live_broadcast
            task = self._spawn(
                self._go_live(
                    handle.broadcast_id,
                    live.ingestion_timeout_seconds,
                    live.ingestion_poll_count,
                    post_welcome=True,
                )
            )
            with self._lock:
                self._ingestion_task = task

            logger.info(f"Broadcast {handle.broadcast_id} started, waiting for ingestion")
            return True, "Broadcast started", handle.broadcast_id
        except Exception as e:
            logger.error(f"Error starting broadcast: {e}", exc_info=True)
            return False, f"Failed to start stream: {e}", None
        finally:
            with self._lock:
                self._creating = False

    async def _go_live(self, broadcast_id: str, timeout: float, polls: int, post_welcome: bool) -> bool:
        with self._lock:
            self._is_waiting_for_ingestion = True
        try:
            ok = await self.broadcast.transition_to_live_when_ready(broadcast_id, timeout, polls)
        except asyncio.CancelledError:
            logger.info(f"Go-live for broadcast {broadcast_id} cancelled")
            raise
        finally:
            with self._lock:
                self._is_waiting_for_ingestion = False

        if not ok:
            logger.warning(f"Broadcast {broadcast_id} did not go live")
            return False

        message = self.settings.youtube.live_broadcast.welcome_message
        if post_welcome and message:
            await self.broadcast.post_chat_message(broadcast_id, message)
        return True

    def _take_broadcast(self) -> Tuple[Optional[str], Optional[asyncio.Task]]:
        with self._lock:
            broadcast_id = self._broadcast_id
            task = self._ingestion_task
            self._broadcast_id = None
            self._rtmp_url = None
            self._ingestion_task = None
            self._end_stream_after_song = False
        return broadcast_id, task

    async def stop_broadcast(self) -> Tuple[bool, str]:
        """
        Stop the encoder and end the current broadcast.

        The broadcast is ended even when stopping the encoder fails.

        Returns:
            Tuple of (success, message)
        """
        try:
            broadcast_id, task = self._take_broadcast()
            if task is not None and not task.done() and task is not asyncio.current_task():
                task.cancel()

            stop_error = None
            try:
                await self.supervisor.stop()
            except Exception as e:
                logger.error(f"Failed to stop encoder: {e}", exc_info=True)
                stop_error = e

            if broadcast_id is None:
                if stop_error is not None:
                    return False, f"Error stopping stream: {stop_error}"
                return True, "Stream stopped (no broadcast was active)"

            if not await self.broadcast.end_broadcast(broadcast_id):
                return False, "Error ending broadcast"

            if self.settings.youtube.playlist.name:
                self._spawn(self._add_to_playlist(broadcast_id))
            if stop_error is not None:
                return False, f"Broadcast ended but stopping stream failed: {stop_error}"
            logger.info(f"Broadcast {broadcast_id} and stream stopped")
            return True, "Broadcast and stream stopped"
        except Exception as e:
            logger.error(f"Error stopping broadcast: {e}", exc_info=True)
            return False, f"Error stopping broadcast: {e}"

    async def _add_to_playlist(self, broadcast_id: str) -> None:
        playlist = self.settings.youtube.playlist
        await asyncio.sleep(self.playlist_delay)
        playlist_id = await self.broadcast.ensure_playlist(playlist.name, playlist.privacy)
        if playlist_id:
            await self.broadcast.add_to_playlist(playlist_id, broadcast_id)

    async def stop_broadcast_keep_local(self) -> Tuple[bool, str]:
        """Stop the broadcast, then restart the encoder without a destination."""
        result = await self.stop_broadcast()
        try:
            await self._start_encoder(None)
        except Exception as e:
            logger.error(f"Failed to restart local encoder: {e}", exc_info=True)
        return result

    async def start_local_stream(self) -> bool:
        """Start a local-only encoder feeding the mix endpoint."""
        if not self.settings.get_value("Stream:Local:Enabled"):
            logger.info("Local stream disabled")
            return False
        try:
            await self._start_encoder(None)
            return True
        except Exception as e:
            logger.error(f"Failed to start local stream: {e}", exc_info=True)
            return False

    async def stop_stream(self) -> None:
        await self.supervisor.stop()

    async def ensure_healthy(self) -> bool:
        """
        Restart the encoder if it is not running.

        The current destination is reused, so a running broadcast keeps its
        id. If ingestion does not resume, the broadcast is stopped and a
        local-only encoder is kept.

        Returns:
            True if the encoder is (again) running and, when broadcasting, live
        """
        if self.supervisor.is_running():
            return True

        with self._lock:
            broadcast_id = self._broadcast_id
            rtmp_url = self._rtmp_url

        logger.warning(f"Encoder not running, restarting (destination: {'rtmp' if rtmp_url else 'local'})")
        try:
            await self._start_encoder(rtmp_url)
            self.restart_count += 1
        except Exception as e:
            logger.error(f"Encoder restart failed: {e}", exc_info=True)
            if broadcast_id is not None:
                await self.stop_broadcast_keep_local()
            return False

        if broadcast_id is None:
            return True

        if await self._go_live(
            broadcast_id, RECOVERY_INGESTION_TIMEOUT, RECOVERY_INGESTION_POLLS, post_welcome=False
        ):
            return True

        if self.current_broadcast_id == broadcast_id:
            logger.error(f"No ingestion after restart for broadcast {broadcast_id}, keeping local stream only")
            await self.stop_broadcast_keep_local()
        return False

    async def on_track_finished(self) -> None:
        """Stop the broadcast if end-after-song was requested."""
        with self._lock:
            if not self._end_stream_after_song:
                return
            self._end_stream_after_song = False

        logger.info("Track finished with end-after-song set, stopping broadcast")
        ok, message = await self.stop_broadcast()
        if not ok:
            logger.warning(f"Stop after song failed: {message}")

    async def _on_encoder_exit(self, instance: EncoderInstance) -> None:
        if instance.stop_requested:
            return
        self.unexpected_exits += 1
        logger.warning(
            f"Encoder {instance.pid} exited unexpectedly (code {instance.returncode}, "
            f"broadcasting: {self.is_broadcasting})"
        )

    async def close(self) -> None:
        """Cancel background tasks and stop the encoder."""
        for task in list(self._background):
            task.cancel()
        await asyncio.gather(*list(self._background), return_exceptions=True)
        await self.supervisor.stop()

    def get_status(self) -> Dict:
        with self._lock:
            status = {
                "broadcast_id": self._broadcast_id,
                "broadcasting": self._broadcast_id is not None,
                "waiting_for_ingestion": self._is_waiting_for_ingestion,
                "end_stream_after_song": self._end_stream_after_song,
            }
        status["encoder_running"] = self.supervisor.is_running()
        status["restart_count"] = self.restart_count
        status["unexpected_exits"] = self.unexpected_exits
        return status
