"""
Broadcast controller.

Creates and tears down YouTube live broadcasts, reusing a recent broadcast
for the same context when the platform still reports it usable, and
handles the post-broadcast housekeeping (playlist, chat).
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from youtube_broadcast.api_client import YouTubeApiClient
from youtube_broadcast.broadcast_store import BroadcastRecord, BroadcastStore
from youtube_broadcast.errors import PlatformApiError
from youtube_broadcast.polling_manager import YouTubePollingManager

logger = logging.getLogger(__name__)

UNUSABLE_LIFECYCLES = frozenset(["complete", "revoked"])
REUSABLE_PRIVACY = frozenset(["unlisted", "private"])
ENDED_REASONS = frozenset(["redundantTransition"])


@dataclass(frozen=True)
class BroadcastHandle:
    """Identifiers of a created (or reused) broadcast."""

    broadcast_id: str
    ingest_address: str
    stream_key: str

    @property
    def rtmp_url(self) -> str:
        return f"{self.ingest_address}/{self.stream_key}"


class BroadcastController:
    """
    Owns YouTube broadcast lifecycle calls.

    All calls are idempotent for a given broadcast id and route through the
    shared polling manager via the API client.
    """

    def __init__(
        self,
        api: YouTubeApiClient,
        store: BroadcastStore,
        youtube_settings,
        polling_manager: YouTubePollingManager,
        context: str = "print",
    ):
        """
        Initialize broadcast controller.

        Args:
            api: YouTube API client
            store: Persistent broadcast records
            youtube_settings: ``shared.config.YouTubeSettings``
            polling_manager: Shared polling manager (used for ingestion polls)
            context: Store key for reusable broadcasts
        """
        self.api = api
        self.store = store
        self.settings = youtube_settings
        self.polling_manager = polling_manager
        self.context = context
        self._create_lock = asyncio.Lock()

    @property
    def creation_in_progress(self) -> bool:
        return self._create_lock.locked()

    async def authenticate(self) -> bool:
        return await self.api.authenticate()

    async def create_live_broadcast(self) -> Optional[BroadcastHandle]:
        """
        Create a broadcast, or reuse the stored one for this context.

        Returns:
            BroadcastHandle, or None if the platform calls failed
        """
        async with self._create_lock:
            try:
                reused = await self._try_reuse()
                if reused is not None:
                    return reused
                return await self._create_fresh()
            except PlatformApiError as e:
                logger.error(f"Failed to create YouTube broadcast: {e}")
                return None

    async def _try_reuse(self) -> Optional[BroadcastHandle]:
        reuse = self.settings.reuse
        if not reuse.enabled:
            return None

        record = self.store.get(self.context)
        if record is None:
            return None
        if record.is_expired():
            logger.info(f"Stored broadcast {record.broadcast_id} expired, creating a new one")
            self.store.remove(self.context)
            return None

        broadcast = await self.api.get_broadcast(record.broadcast_id, use_cache=False)
        reason = self._unusable_reason(broadcast)
        if reason is not None:
            logger.info(f"Not reusing broadcast {record.broadcast_id}: {reason}")
            self.store.remove(self.context)
            return None

        logger.info(f"Reusing broadcast {record.broadcast_id} for context '{self.context}'")
        return BroadcastHandle(
            broadcast_id=record.broadcast_id,
            ingest_address=record.ingest_address,
            stream_key=record.stream_key,
        )

    def _unusable_reason(self, broadcast: Optional[Dict[str, Any]]) -> Optional[str]:
        if broadcast is None:
            return "not found"
        status = broadcast.get("status", {})
        lifecycle = status.get("lifeCycleStatus", "")
        if lifecycle in UNUSABLE_LIFECYCLES:
            return f"lifecycle is {lifecycle}"
        privacy = status.get("privacyStatus", "")
        if self.settings.reuse.only_unlisted_or_private_for_reuse and privacy not in REUSABLE_PRIVACY:
            return f"privacy is {privacy}"
        return None

    async def _create_fresh(self) -> BroadcastHandle:
        live = self.settings.live_broadcast
        broadcast = await self.api.insert_broadcast(live.title, live.privacy)
        stream = await self.api.insert_stream(live.title)
        await self.api.bind_broadcast(broadcast["id"], stream["id"])

        ingestion = stream.get("cdn", {}).get("ingestionInfo", {})
        handle = BroadcastHandle(
            broadcast_id=broadcast["id"],
            ingest_address=ingestion.get("ingestionAddress", ""),
            stream_key=ingestion.get("streamName", ""),
        )
        logger.info(f"Created YouTube broadcast {handle.broadcast_id} (stream {stream['id']})")

        self.store.save(
            BroadcastRecord(
                broadcast_id=handle.broadcast_id,
                rtmp_url=handle.rtmp_url,
                stream_key=handle.stream_key,
                context=self.context,
                created_at_utc=datetime.now(timezone.utc),
                ttl_minutes=self.settings.reuse.ttl_minutes,
            )
        )
        return handle

    async def transition_to_live_when_ready(
        self, broadcast_id: str, timeout: float, poll_count: int
    ) -> bool:
        """
        Wait for ingestion to become active, then go live.

        Args:
            broadcast_id: Broadcast to transition
            timeout: Total time to wait for ingestion (seconds)
            poll_count: Number of status polls spread over the timeout

        Returns:
            True once the broadcast is live
        """
        try:
            broadcast = await self.api.get_broadcast(broadcast_id, use_cache=False)
            if broadcast is None:
                logger.error(f"Broadcast {broadcast_id} not found")
                return False
            if broadcast.get("status", {}).get("lifeCycleStatus") == "live":
                return True
            stream_id = broadcast.get("contentDetails", {}).get("boundStreamId")
            if not stream_id:
                logger.error(f"Broadcast {broadcast_id} has no bound stream")
                return False

            ready, _ = await self.polling_manager.poll_until(
                lambda: self.api.get_stream(stream_id, use_cache=False),
                lambda stream: stream is not None
                and stream.get("status", {}).get("streamStatus") == "active",
                timeout=timeout,
                max_attempts=poll_count,
                context=f"ingestion {broadcast_id}",
            )
            if not ready:
                logger.warning(f"No ingestion detected for broadcast {broadcast_id} within {timeout:.0f}s")
                return False

            await self.api.transition_broadcast(broadcast_id, "live")
            logger.info(f"Broadcast {broadcast_id} is live")
            return True
        except PlatformApiError as e:
            logger.error(f"Failed to transition broadcast {broadcast_id} to live: {e}")
            return False

    async def end_broadcast(self, broadcast_id: str) -> bool:
        """
        Transition a broadcast to complete.

        Already-ended broadcasts count as success. The stored record for the
        broadcast is dropped so it is not reused.

        Returns:
            True if the broadcast is ended
        """
        record = self.store.get(self.context)
        if record is not None and record.broadcast_id == broadcast_id:
            self.store.remove(self.context)

        try:
            await self.api.transition_broadcast(broadcast_id, "complete")
            logger.info(f"Ended broadcast {broadcast_id}")
            return True
        except PlatformApiError as e:
            if e.reason in ENDED_REASONS:
                logger.info(f"Broadcast {broadcast_id} already ended")
                return True
            error = e

        try:
            broadcast = await self.api.get_broadcast(broadcast_id, use_cache=False)
        except PlatformApiError as e:
            logger.error(f"Error ending broadcast {broadcast_id}: {error}; status lookup failed: {e}")
            return False
        lifecycle = (broadcast or {}).get("status", {}).get("lifeCycleStatus")
        if broadcast is None or lifecycle in UNUSABLE_LIFECYCLES:
            logger.info(f"Broadcast {broadcast_id} already ended")
            return True
        logger.error(f"Error ending broadcast {broadcast_id}: {error}")
        return False

    async def ensure_playlist(self, name: str, privacy: str) -> Optional[str]:
        """
        Find a playlist by name (case-insensitive) or create it.

        Returns:
            Playlist id, or None on failure
        """
        try:
            for playlist in await self.api.list_playlists():
                if playlist.get("snippet", {}).get("title", "").lower() == name.lower():
                    return playlist["id"]
            created = await self.api.insert_playlist(name, privacy)
            logger.info(f"Created playlist '{name}' ({created.get('id')})")
            return created.get("id")
        except PlatformApiError as e:
            logger.error(f"Failed to ensure playlist '{name}': {e}")
            return None

    async def add_to_playlist(self, playlist_id: str, video_id: str) -> bool:
        try:
            if video_id in await self.api.list_playlist_items(playlist_id):
                logger.info(f"Video {video_id} already in playlist {playlist_id}")
                return True
            await self.api.insert_playlist_item(playlist_id, video_id)
            logger.info(f"Added video {video_id} to playlist {playlist_id}")
            return True
        except PlatformApiError as e:
            logger.error(f"Failed to add video {video_id} to playlist {playlist_id}: {e}")
            return False

    async def post_chat_message(self, broadcast_id: str, text: str) -> bool:
        """Post a message to the broadcast's live chat."""
        try:
            broadcast = await self.api.get_broadcast(broadcast_id)
            chat_id = (broadcast or {}).get("snippet", {}).get("liveChatId")
            if not chat_id:
                logger.warning(f"Broadcast {broadcast_id} has no live chat")
                return False
            await self.api.insert_chat_message(chat_id, text)
            return True
        except PlatformApiError as e:
            logger.error(f"Failed to post chat message to {broadcast_id}: {e}")
            return False

    async def aclose(self) -> None:
        await self.api.aclose()
