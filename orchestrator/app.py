"""
Print streamer service entrypoint.

Builds every component from the settings, wires them together and runs the
background loops until SIGINT or SIGTERM:

    python -m orchestrator.app --config appsettings.json --log-level DEBUG

The service does not play audio itself. Whatever plays the audio feed asks
``app.audio.try_get_next()`` for each track and calls
``app.audio.notify_track_finished()`` when one ends; that call is what lets
end-after-song stop the broadcast.
"""

import argparse
import asyncio
import logging
import signal
import sys
from typing import List, Optional

from audio_selector import AudioSelector
from ffmpeg_manager import EncoderSupervisor
from logging_module import LoggingConfig, setup_logging
from monitoring import BroadcastHealthMonitor, MixFlagWatcher, MonitoringConfig
from orchestrator.print_orchestrator import PrintOrchestrator
from orchestrator.stream_orchestrator import StreamOrchestrator
from printer_poller import PrinterPoller
from shared.config import Settings, load_settings
from timelapse import TimelapseManager
from youtube_broadcast import (
    BroadcastController,
    BroadcastStore,
    FileTokenProvider,
    YouTubeApiClient,
    YouTubeApiConfig,
    YouTubePollingManager,
)

logger = logging.getLogger(__name__)


class PrintStreamerApp:
    """
    Owns the component graph and its background tasks.

    Wiring:
    - Printer poller events go to the print orchestrator
    - Track-finished notifications from the external audio player go to the
      stream orchestrator through the audio selector
    - Local encoder starts are reported to the mix-flag watcher
    """

    def __init__(
        self,
        settings: Settings,
        monitoring_config: Optional[MonitoringConfig] = None,
        api_config: Optional[YouTubeApiConfig] = None,
    ):
        self.settings = settings
        self.monitoring_config = monitoring_config or MonitoringConfig.from_env()
        self.monitoring_config.validate()
        api_config = api_config or YouTubeApiConfig()

        youtube = settings.youtube
        self.polling = YouTubePollingManager(youtube.polling, retry_base_delay=api_config.retry_base_delay)
        self.api = YouTubeApiClient(
            FileTokenProvider(youtube.oauth.token_file), self.polling, config=api_config
        )
        self.broadcast = BroadcastController(
            self.api,
            BroadcastStore(youtube.reuse.store_file),
            youtube,
            self.polling,
            context=api_config.broadcast_context,
        )

        self.supervisor = EncoderSupervisor()
        self.stream = StreamOrchestrator(settings, self.supervisor, self.broadcast)
        self.timelapse = TimelapseManager(settings.timelapse)
        self.prints = PrintOrchestrator(settings, self.timelapse, self.stream)
        self.poller = PrinterPoller.from_settings(settings.printer)
        self.audio = AudioSelector(settings.audio.folder)
        self.health = BroadcastHealthMonitor(self.stream, self.monitoring_config)
        self.mix_watcher = MixFlagWatcher(settings, self.stream, self.monitoring_config)

        self.poller.subscribe(self.prints.handle_state_change)
        self.audio.add_track_finished_listener(self.stream.on_track_finished)
        self.supervisor.add_start_listener(self.mix_watcher.on_encoder_started)

        self._tasks: List[asyncio.Task] = []

    async def start(self) -> None:
        """Start the local stream and the background loops."""
        await self.stream.start_local_stream()

        self._tasks = [
            asyncio.create_task(self.poller.run(), name="printer-poller"),
            asyncio.create_task(self.timelapse.run(), name="timelapse-capture"),
            asyncio.create_task(self.health.run(), name="health-monitor"),
            asyncio.create_task(self.mix_watcher.run(), name="mix-watcher"),
        ]
        logger.info("Print streamer started")

    async def shutdown(self) -> None:
        """Cancel the loops, finish pending work and stop the encoder."""
        logger.info("Shutting down print streamer")
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

        await self.prints.wait_for_background()
        await self.stream.close()
        await self.supervisor.cleanup()
        await self.timelapse.stop_all()
        await self.timelapse.close()
        await self.poller.close()
        await self.broadcast.aclose()
        logger.info("Print streamer stopped")

    async def run_until(self, stop_event: asyncio.Event) -> None:
        await self.start()
        try:
            await stop_event.wait()
        finally:
            await self.shutdown()


async def run_app(settings: Settings) -> None:
    app = PrintStreamerApp(settings)
    stop_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows event loops have no signal handlers; Ctrl+C still cancels asyncio.run
            pass

    await app.run_until(stop_event)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Stream a 3D printer camera to YouTube and record per-print timelapses"
    )
    parser.add_argument(
        "--config",
        help="JSON settings file (default: $PRINTSTREAMER_CONFIG_FILE or appsettings.json)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        type=str.upper,
        help="Override LOG_LEVEL",
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    """Console entrypoint."""
    args = parse_args(argv)

    logging_config = LoggingConfig.from_env()
    if args.log_level:
        logging_config.log_level = args.log_level
    setup_logging(logging_config)

    try:
        settings = load_settings(args.config)
    except Exception as e:
        logger.error(f"Failed to load settings: {e}", exc_info=True)
        return 1

    try:
        asyncio.run(run_app(settings))
    except KeyboardInterrupt:
        logger.info("Interrupted")
    return 0


if __name__ == "__main__":
    sys.exit(main())
