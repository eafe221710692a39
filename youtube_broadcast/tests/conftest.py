"""
Pytest configuration and fixtures for YouTube broadcast tests.
"""

import json
import random

import pytest

from shared.config import PollingSettings, YouTubeSettings
from youtube_broadcast.broadcast_store import BroadcastStore
from youtube_broadcast.polling_manager import YouTubePollingManager


class FakeClock:
    """Manual monotonic clock whose sleep advances time instantly."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def polling_settings() -> PollingSettings:
    """Polling settings without jitter so intervals are exact."""
    return PollingSettings(max_jitter_seconds=0)


@pytest.fixture
def make_polling_manager(clock):
    def factory(settings: PollingSettings = None, **kwargs) -> YouTubePollingManager:
        return YouTubePollingManager(
            settings or PollingSettings(max_jitter_seconds=0),
            retry_base_delay=kwargs.pop("retry_base_delay", 1.0),
            clock=clock,
            sleep=clock.sleep,
            rng=kwargs.pop("rng", random.Random(7)),
        )

    return factory


@pytest.fixture
def polling_manager(make_polling_manager, polling_settings) -> YouTubePollingManager:
    return make_polling_manager(polling_settings)


@pytest.fixture
def store(tmp_path) -> BroadcastStore:
    return BroadcastStore(str(tmp_path / "reuse.json"))


@pytest.fixture
def youtube_settings() -> YouTubeSettings:
    return YouTubeSettings()


@pytest.fixture
def token_file(tmp_path):
    path = tmp_path / "token.json"
    path.write_text(json.dumps({"access_token": "test-token"}), encoding="utf-8")
    return path
