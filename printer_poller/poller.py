"""
Printer status poller.

Queries the printer's HTTP status endpoint on a fixed interval, builds a
PrinterState and hands it to subscribers whenever it differs from the last
emitted snapshot. Unreachable printers produce an ``unknown`` snapshot with
an empty filename so downstream offline timers keep running.
"""

import asyncio
import logging
from datetime import timedelta
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

import aiohttp

from printer_poller.models import PrinterState, PrinterStatus

logger = logging.getLogger(__name__)

StateSubscriber = Callable[[PrinterState], Awaitable[None]]


def _to_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def normalize_progress(value: Any) -> Optional[float]:
    """
    Convert a progress value to a percentage.

    Floats in [0, 1] are fractions; anything else is already a percentage.
    The result is clamped to [0, 100].
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if isinstance(value, float) and 0.0 <= number <= 1.0:
        number *= 100.0
    return min(max(number, 0.0), 100.0)


def _parse_moonraker(status: Mapping[str, Any]) -> PrinterState:
    print_stats = status.get("print_stats") or {}
    info = print_stats.get("info") or {}
    display = status.get("display_status") or {}
    sdcard = status.get("virtual_sdcard") or {}

    raw_progress = display.get("progress")
    if raw_progress is None:
        raw_progress = sdcard.get("progress")
    progress = normalize_progress(float(raw_progress)) if raw_progress is not None else None

    remaining = None
    duration = print_stats.get("print_duration")
    if duration and progress and 0 < progress < 100:
        total = float(duration) / (progress / 100.0)
        remaining = timedelta(seconds=max(total - float(duration), 0.0))

    return PrinterState(
        state=PrinterStatus.parse(print_stats.get("state")),
        filename=print_stats.get("filename") or "",
        progress_percent=progress,
        current_layer=_to_int(info.get("current_layer")),
        total_layers=_to_int(info.get("total_layer")),
        remaining=remaining,
    )


def parse_printer_status(data: Mapping[str, Any]) -> PrinterState:
    """
    Build a PrinterState from a status response.

    Accepts the flat shape (``state``, ``filename``, ``progress``,
    ``current_layer``, ``total_layers``, ``remaining_seconds``) and the
    Moonraker ``printer/objects/query`` shape.

    Args:
        data: Decoded JSON response

    Returns:
        PrinterState: Parsed snapshot
    """
    result = data.get("result")
    if isinstance(result, Mapping) and isinstance(result.get("status"), Mapping):
        return _parse_moonraker(result["status"])

    remaining = None
    remaining_seconds = data.get("remaining_seconds")
    if remaining_seconds is not None:
        try:
            remaining = timedelta(seconds=max(float(remaining_seconds), 0.0))
        except (TypeError, ValueError):
            remaining = None

    return PrinterState(
        state=PrinterStatus.parse(data.get("state")),
        filename=data.get("filename") or "",
        progress_percent=normalize_progress(data.get("progress")),
        current_layer=_to_int(data.get("current_layer")),
        total_layers=_to_int(data.get("total_layers")),
        remaining=remaining,
    )


class PrinterPoller:
    """
    Single producer of PrinterState events.

    Features:
    - Fixed-interval polling of the printer status endpoint
    - Change detection on state, filename, layer and progress
    - Subscribe/unsubscribe interface; subscribers are awaited in order so
      events reach them one at a time
    - Failures reported as an ``unknown`` snapshot
    """

    def __init__(
        self,
        status_url: str,
        poll_interval: float = 5.0,
        request_timeout: float = 10.0,
        headers: Optional[Dict[str, str]] = None,
    ):
        """
        Initialize printer poller.

        Args:
            status_url: Printer status endpoint
            poll_interval: Seconds between polls
            request_timeout: Per-request timeout in seconds
            headers: Extra request headers (e.g. an API key)
        """
        self.status_url = status_url
        self.poll_interval = poll_interval
        self.request_timeout = request_timeout
        self.headers = headers or {}

        self._subscribers: List[StateSubscriber] = []
        self._last_emitted: Optional[PrinterState] = None
        self._session: Optional[aiohttp.ClientSession] = None

        logger.info(f"PrinterPoller initialized for {status_url} (interval={poll_interval}s)")

    @classmethod
    def from_settings(cls, printer_settings) -> "PrinterPoller":
        return cls(
            status_url=printer_settings.status_url,
            poll_interval=printer_settings.poll_interval_seconds,
            request_timeout=printer_settings.request_timeout_seconds,
        )

    @property
    def last_state(self) -> Optional[PrinterState]:
        return self._last_emitted

    def subscribe(self, callback: StateSubscriber) -> Callable[[], None]:
        """
        Register a subscriber for state changes.

        Args:
            callback: Async callable receiving each new PrinterState

        Returns:
            Callable that removes the subscription
        """
        if callback not in self._subscribers:
            self._subscribers.append(callback)
        return lambda: self.unsubscribe(callback)

    def unsubscribe(self, callback: StateSubscriber) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.request_timeout)
            )
        return self._session

    async def _fetch_status(self) -> Dict[str, Any]:
        session = await self._get_session()
        async with session.get(self.status_url, headers=self.headers) as response:
            response.raise_for_status()
            return await response.json(content_type=None)

    async def fetch_state(self) -> PrinterState:
        """
        Query the printer once.

        Returns:
            PrinterState: Parsed snapshot, or an unknown snapshot on failure
        """
        try:
            data = await self._fetch_status()
            if not isinstance(data, Mapping):
                logger.warning("Printer status response is not a JSON object")
                return PrinterState.unknown()
            return parse_printer_status(data)
        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError:
            logger.warning("Printer status request timed out")
        except aiohttp.ClientError as e:
            logger.warning(f"Printer status request failed: {e}")
        except Exception as e:
            logger.error(f"Unexpected error reading printer status: {e}", exc_info=True)
        return PrinterState.unknown()

    async def _emit(self, state: PrinterState) -> None:
        for callback in list(self._subscribers):
            try:
                await callback(state)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Printer state subscriber failed: {e}", exc_info=True)

    async def poll_once(self) -> Optional[PrinterState]:
        """
        Poll once and emit if the snapshot changed.

        Returns:
            The emitted state, or None if nothing changed
        """
        state = await self.fetch_state()
        if not state.differs_from(self._last_emitted):
            return None

        previous = self._last_emitted
        self._last_emitted = state
        logger.info(
            f"Printer state: {previous.state.value if previous else 'none'} -> "
            f"{state.state.value} (file={state.filename or '-'}, "
            f"layer={state.current_layer}/{state.total_layers}, "
            f"progress={state.progress_percent})"
        )
        await self._emit(state)
        return state

    async def run(self) -> None:
        """Poll until cancelled."""
        logger.info("Printer poller started")
        try:
            while True:
                try:
                    await self.poll_once()
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.error(f"Error in printer poll loop: {e}", exc_info=True)
                await asyncio.sleep(self.poll_interval)
        except asyncio.CancelledError:
            logger.info("Printer poller cancelled")
        finally:
            await self.close()

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
