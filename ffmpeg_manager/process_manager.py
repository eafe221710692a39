"""
Encoder process supervisor.

Owns the single active FFmpeg child process. Starting a new encoder always
completes the stop of the previous one first; every instance carries an
``exited`` future that resolves with its return code.
"""

import asyncio
import logging
import signal
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional

import psutil

from ffmpeg_manager.command_builder import FFmpegCommandBuilder
from ffmpeg_manager.config import EncoderOptions, FFmpegConfig
from ffmpeg_manager.log_parser import FFmpegLogParser

logger = logging.getLogger(__name__)

OUTPUT_CHUNK_SIZE = 64 * 1024


class ProcessState(str, Enum):
    """Encoder process states."""

    RUNNING = "running"
    STOPPING = "stopping"
    EXITED = "exited"


@dataclass
class EncoderInstance:
    """One launched encoder process."""

    pid: int
    options: EncoderOptions
    process: asyncio.subprocess.Process
    exited: asyncio.Future
    started_at: datetime = field(default_factory=datetime.now)
    state: ProcessState = ProcessState.RUNNING
    stop_requested: bool = False
    log_parser: FFmpegLogParser = field(default_factory=FFmpegLogParser)
    tasks: List[asyncio.Task] = field(default_factory=list)

    @property
    def returncode(self) -> Optional[int]:
        if self.exited.done() and not self.exited.cancelled():
            return self.exited.result()
        return None

    def cancel(self) -> None:
        """Ask the encoder to finish; FFmpeg flushes its output on SIGINT."""
        self.stop_requested = True
        self.state = ProcessState.STOPPING
        if self.exited.done():
            return
        try:
            self.process.send_signal(signal.SIGINT)
        except ProcessLookupError:
            pass


ExitListener = Callable[[EncoderInstance], Awaitable[None]]
StartListener = Callable[[EncoderInstance], None]
OutputSink = Callable[[bytes], None]


def kill_process_tree(pid: int, timeout: float = 3.0) -> bool:
    """
    Kill a process and all of its descendants.

    Args:
        pid: Root process id
        timeout: Seconds to wait for the processes to disappear

    Returns:
        True if no process of the tree is left alive
    """
    try:
        parent = psutil.Process(pid)
    except psutil.NoSuchProcess:
        return True

    try:
        procs = parent.children(recursive=True)
    except psutil.NoSuchProcess:
        procs = []
    procs.append(parent)

    for proc in procs:
        try:
            proc.kill()
        except psutil.NoSuchProcess:
            pass
        except psutil.AccessDenied:
            logger.error(f"Access denied killing process {proc.pid}")

    _, alive = psutil.wait_procs(procs, timeout=timeout)
    if alive:
        logger.error(f"Processes still alive after kill: {[p.pid for p in alive]}")
    return not alive


class EncoderSupervisor:
    """
    Manages the encoder process lifecycle.

    Features:
    - At most one encoder instance; start swaps the slot and stops the old one
    - Graceful stop (SIGINT), then kill of the whole process tree after a timeout
    - Exit watcher per instance with stderr classification
    - Exit and start listeners; an exit never raises into the supervisor
    """

    def __init__(
        self,
        config: Optional[FFmpegConfig] = None,
        command_builder: Optional[FFmpegCommandBuilder] = None,
    ):
        """
        Initialize encoder supervisor.

        Args:
            config: Encoder configuration (creates default if not provided)
            command_builder: Command builder instance (creates default if not provided)
        """
        if config is None:
            from ffmpeg_manager.config import get_config

            config = get_config()

        self.config = config
        self.command_builder = command_builder or FFmpegCommandBuilder(config)

        # Slot; never held across an await
        self._slot_lock = threading.Lock()
        self._current: Optional[EncoderInstance] = None
        # Serializes start/stop transitions
        self._transition_lock = asyncio.Lock()

        self._exit_listeners: List[ExitListener] = []
        self._start_listeners: List[StartListener] = []
        self._output_sink: Optional[OutputSink] = None
        self.start_count = 0

        logger.info("Encoder supervisor initialized")

    def add_exit_listener(self, listener: ExitListener) -> None:
        self._exit_listeners.append(listener)

    def add_start_listener(self, listener: StartListener) -> None:
        self._start_listeners.append(listener)

    def set_output_sink(self, sink: Optional[OutputSink]) -> None:
        """Receive MJPEG bytes from local (pipe) instances."""
        self._output_sink = sink

    @property
    def current(self) -> Optional[EncoderInstance]:
        with self._slot_lock:
            return self._current

    def is_running(self) -> bool:
        """
        Check if an encoder is currently running.

        Returns:
            True if an instance exists and its exit future is not complete
        """
        instance = self.current
        return instance is not None and not instance.exited.done()

    async def start(self, options: EncoderOptions) -> EncoderInstance:
        """
        Start a new encoder, stopping the current one first.

        Args:
            options: Options of the new instance

        Returns:
            The launched instance

        Raises:
            ValueError: If the options cannot produce a command
            OSError: If the process cannot be spawned
        """
        async with self._transition_lock:
            with self._slot_lock:
                old = self._current
                self._current = None

            if old is not None:
                await self._stop_instance(old)

            cmd = self.command_builder.build_command(options)
            target = "local pipe" if options.is_local else "RTMP"
            logger.info(f"Starting encoder ({target}) from {options.source_url}")

            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE if options.is_local else asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
            )

            instance = EncoderInstance(
                pid=process.pid,
                options=options,
                process=process,
                exited=asyncio.get_running_loop().create_future(),
                log_parser=FFmpegLogParser(tail_size=self.config.stderr_tail_lines),
            )
            with self._slot_lock:
                self._current = instance
            self.start_count += 1

            instance.tasks.append(asyncio.create_task(self._watch(instance)))
            if options.is_local and process.stdout is not None:
                instance.tasks.append(asyncio.create_task(self._drain_output(instance)))

            logger.info(f"Encoder started (PID: {instance.pid})")

        for listener in list(self._start_listeners):
            try:
                listener(instance)
            except Exception as e:
                logger.error(f"Encoder start listener failed: {e}", exc_info=True)

        return instance

    async def stop(self) -> None:
        """Stop the current encoder, if any."""
        async with self._transition_lock:
            with self._slot_lock:
                old = self._current
                self._current = None

            if old is None:
                logger.debug("No encoder to stop")
                return
            await self._stop_instance(old)

    async def _stop_instance(self, instance: EncoderInstance) -> None:
        if instance.exited.done():
            return

        logger.info(f"Stopping encoder (PID: {instance.pid})")
        instance.cancel()
        try:
            await asyncio.wait_for(asyncio.shield(instance.exited), timeout=self.config.stop_timeout)
            return
        except asyncio.TimeoutError:
            logger.warning(
                f"Encoder {instance.pid} did not exit within {self.config.stop_timeout}s, killing process tree"
            )

        await asyncio.to_thread(kill_process_tree, instance.pid)
        try:
            await asyncio.wait_for(asyncio.shield(instance.exited), timeout=self.config.stop_timeout)
        except asyncio.TimeoutError:
            logger.error(f"Encoder {instance.pid} still not reaped after kill")

    async def _read_stderr(self, instance: EncoderInstance) -> None:
        stream = instance.process.stderr
        if stream is None:
            return
        while True:
            raw = await stream.readline()
            if not raw:
                break
            error = instance.log_parser.parse_line(raw.decode("utf-8", errors="replace"))
            if error is not None:
                logger.warning(f"FFmpeg {error.error_type.value}: {error.message}")

    async def _drain_output(self, instance: EncoderInstance) -> None:
        stream = instance.process.stdout
        try:
            while True:
                chunk = await stream.read(OUTPUT_CHUNK_SIZE)
                if not chunk:
                    break
                sink = self._output_sink
                if sink is not None:
                    sink(chunk)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Error reading encoder output: {e}", exc_info=True)

    async def _watch(self, instance: EncoderInstance) -> None:
        """Wait for the process to exit, resolve its future, notify listeners."""
        returncode: Optional[int] = None
        try:
            try:
                await self._read_stderr(instance)
            except Exception as e:
                logger.debug(f"Error reading encoder stderr: {e}")
            returncode = await instance.process.wait()
        except asyncio.CancelledError:
            logger.info(f"Exit watcher for encoder {instance.pid} cancelled")
            raise
        finally:
            instance.state = ProcessState.EXITED
            if not instance.exited.done():
                instance.exited.set_result(returncode)

        if instance.stop_requested:
            logger.info(f"Encoder {instance.pid} exited with code {returncode}")
        else:
            last = instance.log_parser.last_error
            detail = f"; last error: {last.message}" if last else ""
            logger.warning(f"Encoder {instance.pid} exited unexpectedly with code {returncode}{detail}")

        for listener in list(self._exit_listeners):
            try:
                await listener(instance)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Encoder exit listener failed: {e}", exc_info=True)

    async def cleanup(self) -> None:
        """Stop the encoder and wait for its helper tasks."""
        logger.info("Cleaning up encoder supervisor")
        instance = self.current
        await self.stop()
        if instance is not None:
            for task in instance.tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*instance.tasks, return_exceptions=True)
        logger.info("Cleanup complete")

    def get_status(self) -> Dict:
        """
        Get current status of the encoder.

        Returns:
            Dictionary with process status information
        """
        instance = self.current
        if instance is None:
            return {
                "running": False,
                "pid": None,
                "destination": None,
                "uptime_seconds": 0,
                "start_count": self.start_count,
            }

        return {
            "running": not instance.exited.done(),
            "state": instance.state.value,
            "pid": instance.pid,
            "destination": "rtmp" if not instance.options.is_local else "local",
            "uptime_seconds": (datetime.now() - instance.started_at).total_seconds(),
            "returncode": instance.returncode,
            "start_count": self.start_count,
            "recent_errors": [e.message for e in instance.log_parser.get_recent_errors(5)],
        }
