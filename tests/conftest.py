"""
Pytest configuration and shared fixtures for the integration tests.

The encoder, the broadcast platform and the timelapse encoder are replaced by
in-memory fakes; the orchestrators, monitors and settings are the real ones.
"""

import os
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import List, Optional

import pytest

from orchestrator.print_orchestrator import PrintOrchestrator
from orchestrator.stream_orchestrator import StreamOrchestrator
from shared.config import Settings
from youtube_broadcast.controller import BroadcastHandle


class FakeSupervisor:
    """Single-slot encoder without processes."""

    def __init__(self):
        self.starts: List = []
        self.stop_count = 0
        self.current = None
        self._running = False
        self._exit_listeners = []
        self._start_listeners = []

    def add_exit_listener(self, listener) -> None:
        self._exit_listeners.append(listener)

    def add_start_listener(self, listener) -> None:
        self._start_listeners.append(listener)

    def is_running(self) -> bool:
        return self._running

    @property
    def destinations(self) -> List[Optional[str]]:
        return [options.destination_url for options in self.starts]

    async def start(self, options):
        self.starts.append(options)
        self.current = SimpleNamespace(
            pid=4000 + len(self.starts), options=options, stop_requested=False, returncode=None
        )
        self._running = True
        for listener in self._start_listeners:
            listener(self.current)
        return self.current

    async def stop(self) -> None:
        self.stop_count += 1
        if self.current is not None:
            self.current.stop_requested = True
        self._running = False

    async def crash(self, returncode: int = 1) -> None:
        """Let the current encoder exit on its own."""
        self._running = False
        self.current.returncode = returncode
        for listener in self._exit_listeners:
            await listener(self.current)


class FakeBroadcastController:
    """Broadcast platform that accepts every request."""

    def __init__(self):
        self.created: List[str] = []
        self.ended: List[str] = []
        self.went_live: List[tuple] = []
        self.chat: List[tuple] = []
        self.creation_in_progress = False

    async def authenticate(self) -> bool:
        return True

    async def create_live_broadcast(self) -> BroadcastHandle:
        broadcast_id = f"b{len(self.created) + 1}"
        self.created.append(broadcast_id)
        return BroadcastHandle(broadcast_id, "rtmp://a.rtmp.youtube.com/live2", f"key-{broadcast_id}")

    async def transition_to_live_when_ready(self, broadcast_id, timeout, poll_count) -> bool:
        self.went_live.append((broadcast_id, timeout, poll_count))
        return True

    async def end_broadcast(self, broadcast_id) -> bool:
        self.ended.append(broadcast_id)
        return True

    async def post_chat_message(self, broadcast_id, text) -> bool:
        self.chat.append((broadcast_id, text))
        return True

    async def ensure_playlist(self, name, privacy) -> Optional[str]:
        return "pl-1"

    async def add_to_playlist(self, playlist_id, video_id) -> bool:
        return True


class FakeTimelapse:
    """Session bookkeeping without capture or encoding."""

    def __init__(self):
        self.starts: List[tuple] = []
        self.stops: List[str] = []
        self.active: List[str] = []

    async def start(self, job_name_safe, job_filename=None) -> str:
        self.starts.append((job_name_safe, job_filename))
        self.active.append(job_name_safe)
        return job_name_safe

    async def stop(self, session_id) -> Optional[str]:
        self.stops.append(session_id)
        if session_id in self.active:
            self.active.remove(session_id)
        return None

    def notify_progress(self, session_id, current_layer, total_layers) -> None:
        pass

    def notify_printer_state(self, session_id, state) -> None:
        pass


class StepClock:
    """UTC clock moved by hand."""

    def __init__(self):
        self.now = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def settings(monkeypatch, tmp_path) -> Settings:
    """Default settings with OAuth configured, isolated from the environment."""
    for key in list(os.environ):
        if key.startswith("PRINTSTREAMER_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("PRINTSTREAMER_CONFIG_FILE", str(tmp_path / "appsettings.json"))

    settings = Settings()
    settings.youtube.oauth.client_id = "client-id"
    settings.youtube.oauth.client_secret = "client-secret"
    return settings


@pytest.fixture
def system(settings):
    """Real orchestrators wired to fakes."""
    supervisor = FakeSupervisor()
    broadcast = FakeBroadcastController()
    timelapse = FakeTimelapse()
    clock = StepClock()
    stream = StreamOrchestrator(settings, supervisor, broadcast, playlist_delay=0)
    prints = PrintOrchestrator(settings, timelapse, stream, clock=clock)
    return SimpleNamespace(
        settings=settings,
        supervisor=supervisor,
        broadcast=broadcast,
        timelapse=timelapse,
        clock=clock,
        stream=stream,
        prints=prints,
    )
