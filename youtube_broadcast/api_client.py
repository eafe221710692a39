"""
Minimal YouTube Data API v3 client.

Only the endpoints the broadcast controller needs are implemented. Access
tokens are read from a token file kept fresh by an external OAuth helper;
this client never runs an OAuth flow itself. Every request goes through
the shared :class:`YouTubePollingManager`.
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx

from youtube_broadcast.config import YouTubeApiConfig
from youtube_broadcast.errors import PlatformApiError, PlatformAuthError
from youtube_broadcast.polling_manager import YouTubePollingManager

logger = logging.getLogger(__name__)

AUTH_REASONS = frozenset(["authError", "unauthorized", "forbidden", "insufficientPermissions"])
MAX_PAGE_SIZE = 50


class FileTokenProvider:
    """Reads an OAuth access token from a JSON token file."""

    def __init__(self, token_file: str):
        self.token_file = Path(token_file)

    def get_access_token(self) -> str:
        """
        Get the current access token.

        Returns:
            Access token string

        Raises:
            PlatformAuthError: If the file is missing, unreadable or has no token
        """
        try:
            data = json.loads(self.token_file.read_text(encoding="utf-8"))
        except FileNotFoundError:
            raise PlatformAuthError(f"Token file not found: {self.token_file}")
        except (OSError, ValueError) as e:
            raise PlatformAuthError(f"Token file unreadable: {e}")

        token = None
        if isinstance(data, dict):
            token = data.get("access_token") or data.get("token")
        if not token:
            raise PlatformAuthError(f"No access token in {self.token_file}")
        return token


class YouTubeApiClient:
    """
    Async YouTube Data API client.

    Requests are retried and rate limited by the polling manager; HTTP
    failures are converted to PlatformApiError / PlatformAuthError.
    """

    def __init__(
        self,
        token_provider: FileTokenProvider,
        polling_manager: YouTubePollingManager,
        config: Optional[YouTubeApiConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the client.

        Args:
            token_provider: Source of access tokens
            polling_manager: Shared rate limiter / cache
            config: Transport configuration (defaults from environment)
            transport: Optional httpx transport (used by tests)
        """
        self.config = config or YouTubeApiConfig()
        self.token_provider = token_provider
        self.polling_manager = polling_manager
        self._client = httpx.AsyncClient(
            base_url=self.config.api_base_url.rstrip("/"),
            timeout=self.config.request_timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _send(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        body: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        token = self.token_provider.get_access_token()
        try:
            response = await self._client.request(
                method,
                path,
                params=params,
                json=body,
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.RequestError as e:
            raise PlatformApiError(f"{method} {path} failed: {e}")

        if response.status_code >= 400:
            raise self._to_error(method, path, response)
        if response.status_code == 204 or not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            raise PlatformApiError(f"{method} {path} returned invalid JSON", response.status_code)

    @staticmethod
    def _to_error(method: str, path: str, response: httpx.Response) -> PlatformApiError:
        reason = None
        message = response.reason_phrase
        try:
            error = response.json().get("error", {})
            message = error.get("message") or message
            errors = error.get("errors") or []
            if errors:
                reason = errors[0].get("reason")
        except (ValueError, AttributeError):
            pass

        text = f"{method} {path}: {message}"
        if response.status_code == 401 or (response.status_code == 403 and reason in AUTH_REASONS):
            return PlatformAuthError(text, response.status_code, reason)
        return PlatformApiError(text, response.status_code, reason)

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        body: Optional[Dict[str, Any]] = None,
        use_cache: bool = False,
    ) -> Dict[str, Any]:
        cache_key = None
        if use_cache and method == "GET":
            query = "&".join(f"{k}={v}" for k, v in sorted((params or {}).items()))
            cache_key = f"GET {path}?{query}"
        return await self.polling_manager.execute(
            lambda: self._send(method, path, params, body), cache_key=cache_key
        )

    async def authenticate(self) -> bool:
        """
        Verify that the stored credentials are accepted.

        Returns:
            True if a cheap authenticated request succeeds
        """
        try:
            await self._request("GET", "/channels", {"part": "id", "mine": "true"})
            return True
        except PlatformAuthError as e:
            logger.error(f"YouTube authentication failed: {e}")
            return False

    async def insert_broadcast(self, title: str, privacy: str) -> Dict[str, Any]:
        body = {
            "snippet": {
                "title": title,
                "scheduledStartTime": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            },
            "status": {"privacyStatus": privacy, "selfDeclaredMadeForKids": False},
            "contentDetails": {
                "enableAutoStart": False,
                "enableAutoStop": False,
                "monitorStream": {"enableMonitorStream": False},
            },
        }
        return await self._request(
            "POST", "/liveBroadcasts", {"part": "snippet,status,contentDetails"}, body
        )

    async def insert_stream(self, title: str) -> Dict[str, Any]:
        body = {
            "snippet": {"title": title},
            "cdn": {"ingestionType": "rtmp", "resolution": "variable", "frameRate": "variable"},
            "contentDetails": {"isReusable": False},
        }
        return await self._request("POST", "/liveStreams", {"part": "snippet,cdn,contentDetails,status"}, body)

    async def bind_broadcast(self, broadcast_id: str, stream_id: str) -> Dict[str, Any]:
        params = {"id": broadcast_id, "streamId": stream_id, "part": "id,contentDetails"}
        return await self._request("POST", "/liveBroadcasts/bind", params)

    async def get_broadcast(self, broadcast_id: str, use_cache: bool = True) -> Optional[Dict[str, Any]]:
        """Broadcast resource, or None if the platform does not know the id."""
        data = await self._request(
            "GET",
            "/liveBroadcasts",
            {"part": "id,snippet,status,contentDetails", "id": broadcast_id},
            use_cache=use_cache,
        )
        items = data.get("items") or []
        return items[0] if items else None

    async def get_stream(self, stream_id: str, use_cache: bool = True) -> Optional[Dict[str, Any]]:
        data = await self._request(
            "GET", "/liveStreams", {"part": "id,cdn,status", "id": stream_id}, use_cache=use_cache
        )
        items = data.get("items") or []
        return items[0] if items else None

    async def transition_broadcast(self, broadcast_id: str, status: str) -> Dict[str, Any]:
        params = {"broadcastStatus": status, "id": broadcast_id, "part": "id,status"}
        return await self._request("POST", "/liveBroadcasts/transition", params)

    async def _paginate(self, path: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        items: List[Dict[str, Any]] = []
        page_token = None
        while True:
            page_params = dict(params, maxResults=MAX_PAGE_SIZE)
            if page_token:
                page_params["pageToken"] = page_token
            data = await self._request("GET", path, page_params)
            items.extend(data.get("items") or [])
            page_token = data.get("nextPageToken")
            if not page_token:
                return items

    async def list_playlists(self) -> List[Dict[str, Any]]:
        return await self._paginate("/playlists", {"part": "id,snippet,status", "mine": "true"})

    async def insert_playlist(self, name: str, privacy: str) -> Dict[str, Any]:
        body = {"snippet": {"title": name}, "status": {"privacyStatus": privacy}}
        return await self._request("POST", "/playlists", {"part": "snippet,status"}, body)

    async def list_playlist_items(self, playlist_id: str) -> List[str]:
        """Video ids contained in a playlist."""
        items = await self._paginate(
            "/playlistItems", {"part": "contentDetails", "playlistId": playlist_id}
        )
        return [
            item.get("contentDetails", {}).get("videoId")
            for item in items
            if item.get("contentDetails", {}).get("videoId")
        ]

    async def insert_playlist_item(self, playlist_id: str, video_id: str) -> Dict[str, Any]:
        body = {
            "snippet": {
                "playlistId": playlist_id,
                "resourceId": {"kind": "youtube#video", "videoId": video_id},
            }
        }
        return await self._request("POST", "/playlistItems", {"part": "snippet"}, body)

    async def insert_chat_message(self, live_chat_id: str, text: str) -> Dict[str, Any]:
        body = {
            "snippet": {
                "liveChatId": live_chat_id,
                "type": "textMessageEvent",
                "textMessageDetails": {"messageText": text},
            }
        }
        return await self._request("POST", "/liveChat/messages", {"part": "snippet"}, body)
