"""
YouTube Broadcast

Live broadcast lifecycle on YouTube: creation with reuse, ingestion-gated
transition to live, teardown, playlist and chat housekeeping. All API
traffic is rate limited and cached by a shared polling manager.
"""

__version__ = "1.0.0"

from youtube_broadcast.api_client import FileTokenProvider, YouTubeApiClient
from youtube_broadcast.broadcast_store import BroadcastRecord, BroadcastStore
from youtube_broadcast.config import YouTubeApiConfig
from youtube_broadcast.controller import BroadcastController, BroadcastHandle
from youtube_broadcast.errors import PlatformApiError, PlatformAuthError
from youtube_broadcast.polling_manager import PollingStats, YouTubePollingManager

__all__ = [
    "BroadcastController",
    "BroadcastHandle",
    "BroadcastRecord",
    "BroadcastStore",
    "FileTokenProvider",
    "PlatformApiError",
    "PlatformAuthError",
    "PollingStats",
    "YouTubeApiClient",
    "YouTubeApiConfig",
    "YouTubePollingManager",
]
