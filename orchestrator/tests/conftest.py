"""
Pytest configuration and fixtures for orchestrator tests.
"""

import os
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from shared.config import Settings
from youtube_broadcast.controller import BroadcastHandle

RTMP_URL = "rtmp://a.rtmp.youtube.com/live2/key-1"


class StepClock:
    """UTC clock moved by hand."""

    def __init__(self, start: datetime = datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)):
        self.now = start

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
def clock() -> StepClock:
    return StepClock()


@pytest.fixture
def timelapse():
    """Timelapse manager double; session ids equal the job name."""
    manager = MagicMock()
    manager.start = AsyncMock(side_effect=lambda name, filename=None: name)
    manager.stop = AsyncMock(return_value=None)
    return manager


@pytest.fixture
def stream():
    """Stream orchestrator double that tracks the broadcasting flag."""
    fake = MagicMock()
    fake.is_broadcasting = False

    async def start_broadcast():
        fake.is_broadcasting = True
        return True, "Broadcast started", "b1"

    async def stop_broadcast():
        fake.is_broadcasting = False
        return True, "Broadcast and stream stopped"

    fake.start_broadcast = AsyncMock(side_effect=start_broadcast)
    fake.stop_broadcast = AsyncMock(side_effect=stop_broadcast)
    return fake


@pytest.fixture
def supervisor():
    """Encoder supervisor double."""
    fake = MagicMock()
    fake.is_running.return_value = True
    fake.start = AsyncMock()
    fake.stop = AsyncMock()
    return fake


@pytest.fixture
def broadcast():
    """Broadcast controller double handing out broadcast b1."""
    fake = MagicMock()
    fake.authenticate = AsyncMock(return_value=True)
    fake.create_live_broadcast = AsyncMock(
        return_value=BroadcastHandle("b1", "rtmp://a.rtmp.youtube.com/live2", "key-1")
    )
    fake.transition_to_live_when_ready = AsyncMock(return_value=True)
    fake.end_broadcast = AsyncMock(return_value=True)
    fake.post_chat_message = AsyncMock(return_value=True)
    fake.ensure_playlist = AsyncMock(return_value="pl-1")
    fake.add_to_playlist = AsyncMock(return_value=True)
    return fake
