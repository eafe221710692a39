"""Mix-flag watcher.

Polls the ``Stream:Mix:Enabled`` setting. When it flips from enabled to
disabled the mix encoder's whole process tree is killed and the stream is
stopped, ending the broadcast if one is active. Later ticks verify that the
killed process is really gone.
"""

import asyncio
import logging
from typing import Callable, Optional

import psutil

from ffmpeg_manager.process_manager import EncoderInstance, kill_process_tree
from monitoring.config import MonitoringConfig

logger = logging.getLogger(__name__)

MIX_ENABLED_KEY = "Stream:Mix:Enabled"


class MixFlagWatcher:
    """Reacts to the mix feature flag being switched off."""

    def __init__(
        self,
        settings,
        stream,
        config: Optional[MonitoringConfig] = None,
        kill_tree: Callable[[int, float], bool] = kill_process_tree,
        pid_exists: Callable[[int], bool] = psutil.pid_exists,
    ):
        """Initialize mix-flag watcher.

        Args:
            settings: Application settings providing ``get_value``
            stream: Stream orchestrator
            config: Monitoring configuration
            kill_tree: Kills a process tree (pid, timeout)
            pid_exists: Liveness check used to verify a kill
        """
        if config is None:
            from monitoring.config import get_config

            config = get_config()

        self.settings = settings
        self.stream = stream
        self.config = config
        self._kill_tree = kill_tree
        self._pid_exists = pid_exists

        self._last_enabled: Optional[bool] = None
        self._mix_pid: Optional[int] = None
        self._verify_pid: Optional[int] = None
        self.disable_count = 0

    @property
    def mix_pid(self) -> Optional[int]:
        return self._mix_pid

    def register_mix_process(self, pid: Optional[int]) -> None:
        """Track the PID of the process producing the mix."""
        self._mix_pid = pid
        logger.debug(f"Tracking mix process {pid}")

    def on_encoder_started(self, instance: EncoderInstance) -> None:
        """Encoder start listener; the single encoder slot carries the mix."""
        self.register_mix_process(instance.pid)

    async def check_once(self) -> bool:
        """Read the flag once.

        Returns:
            True if a true-to-false transition was handled
        """
        enabled = bool(self.settings.get_value(MIX_ENABLED_KEY))
        previous = self._last_enabled
        self._last_enabled = enabled

        if not enabled and self._verify_pid is not None and previous is False:
            await self._verify_killed()

        if previous is None or previous == enabled:
            return False

        if enabled:
            logger.info("Mix enabled")
            return False

        await self._handle_disabled()
        return True

    async def _handle_disabled(self) -> None:
        self.disable_count += 1
        pid = self._mix_pid
        logger.warning(f"Mix disabled, stopping mix process {pid if pid else '(none tracked)'}")

        if pid is not None:
            await asyncio.to_thread(self._kill_tree, pid, self.config.kill_timeout)
            self._mix_pid = None
            self._verify_pid = pid

        if self.stream.is_broadcasting:
            ok, message = await self.stream.stop_broadcast()
            if not ok:
                logger.warning(f"Stopping broadcast after mix disable failed: {message}")
        else:
            await self.stream.stop_stream()

    async def _verify_killed(self) -> None:
        pid = self._verify_pid
        if self._pid_exists(pid):
            logger.warning(f"Mix process {pid} still alive, killing again")
            await asyncio.to_thread(self._kill_tree, pid, self.config.kill_timeout)
            return
        logger.debug(f"Mix process {pid} confirmed gone")
        self._verify_pid = None

    async def run(self) -> None:
        """Poll the flag until cancelled."""
        logger.info(f"Mix-flag watcher started (interval: {self.config.mix_watch_interval}s)")
        while True:
            try:
                await self.check_once()
                await asyncio.sleep(self.config.mix_watch_interval)
            except asyncio.CancelledError:
                logger.info("Mix-flag watcher cancelled")
                break
            except Exception as e:
                logger.error(f"Error in mix-flag watcher: {e}", exc_info=True)
                await asyncio.sleep(self.config.mix_watch_interval)
