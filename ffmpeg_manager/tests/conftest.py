"""
Pytest configuration and fixtures for encoder tests.
"""

import asyncio
from typing import List, Optional

import pytest

from ffmpeg_manager.command_builder import FFmpegCommandBuilder
from ffmpeg_manager.config import EncoderOptions, FFmpegConfig, OverlayOptions


class FakeStream:
    """Minimal asyncio StreamReader stand-in."""

    def __init__(self, lines: Optional[List[bytes]] = None):
        self._lines = list(lines or [])

    async def readline(self) -> bytes:
        await asyncio.sleep(0)
        return self._lines.pop(0) if self._lines else b""

    async def read(self, n: int = -1) -> bytes:
        return await self.readline()


class FakeProcess:
    """Stand-in for asyncio.subprocess.Process."""

    def __init__(self, pid: int = 4321, exit_on_signal: bool = True, stderr_lines=None):
        self.pid = pid
        self.exit_on_signal = exit_on_signal
        self.stdout = FakeStream()
        self.stderr = FakeStream(stderr_lines)
        self.returncode: Optional[int] = None
        self.signals: List[int] = []
        self._exit = asyncio.Event()

    def send_signal(self, sig: int) -> None:
        self.signals.append(sig)
        if self.exit_on_signal:
            self.finish(255)

    def finish(self, code: int) -> None:
        self.returncode = code
        self._exit.set()

    async def wait(self) -> int:
        await self._exit.wait()
        return self.returncode


@pytest.fixture
def test_config() -> FFmpegConfig:
    """Create a test configuration."""
    return FFmpegConfig(
        ffmpeg_binary="ffmpeg",
        log_level="error",
        stop_timeout=0.05,
    )


@pytest.fixture
def command_builder(test_config: FFmpegConfig) -> FFmpegCommandBuilder:
    """Create a command builder for testing."""
    return FFmpegCommandBuilder(test_config)


@pytest.fixture
def rtmp_options() -> EncoderOptions:
    return EncoderOptions(
        source_url="http://camera.local/stream",
        destination_url="rtmp://a.rtmp.youtube.com/live2/secret-key",
        target_fps=30,
        bitrate_kbps=2500,
    )


@pytest.fixture
def local_options() -> EncoderOptions:
    return EncoderOptions(source_url="http://camera.local/stream", target_fps=15)


@pytest.fixture
def overlay_options(tmp_path) -> OverlayOptions:
    text_file = tmp_path / "overlay.txt"
    text_file.write_text("Printing benchy\nLayer 3/120")
    return OverlayOptions(text_file=str(text_file), banner_fraction=0.0)


@pytest.fixture
def process_factory():
    """Factory for fake encoder processes."""
    return FakeProcess
