"""
Audio track selection.

Holds the audio library found on disk, a FIFO of explicitly requested
tracks and a rotation position, and decides which file the audio feed
plays next. The last selected track is written to ``last_played.txt``
inside the library folder so playback resumes where it left off.
"""

import asyncio
import logging
import random
import threading
from collections import deque
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Deque, List, Optional

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = frozenset([".mp3", ".aac", ".m4a", ".wav", ".flac", ".ogg", ".opus"])
LAST_PLAYED_FILE = "last_played.txt"

TrackFinishedListener = Callable[[], Awaitable[None]]


class RepeatMode(str, Enum):
    """Repeat behaviour once the rotation runs out."""

    NONE = "none"
    ONE = "one"
    ALL = "all"


class AudioSelector:
    """
    Chooses the next audio track on demand.

    Selection order for :meth:`try_get_next`:
    1. Shuffle: random pick from the library
    2. Queue: oldest requested track
    3. Repeat one: the current track again
    4. Rotation: the next track by name, wrapping only with repeat all
    """

    def __init__(
        self,
        folder: str,
        repeat: RepeatMode = RepeatMode.ALL,
        shuffle: bool = False,
        rng: Optional[random.Random] = None,
    ):
        """
        Initialize audio selector.

        Args:
            folder: Library folder
            repeat: Repeat mode
            shuffle: Pick randomly instead of in rotation
            rng: Random source (for tests)
        """
        self.folder = Path(folder)
        self.repeat = RepeatMode(repeat)
        self.shuffle = shuffle
        self._rng = rng or random.Random()

        self._lock = threading.Lock()
        self._library: List[Path] = []
        self._queue: Deque[Path] = deque()
        self._rotation_index = -1
        self._current: Optional[Path] = None
        self._listeners: List[TrackFinishedListener] = []

        self.rescan()
        self._restore_last_played()

        logger.info(
            f"AudioSelector initialized with {len(self._library)} tracks from {self.folder}"
        )

    @property
    def library(self) -> List[Path]:
        with self._lock:
            return list(self._library)

    @property
    def queue(self) -> List[Path]:
        with self._lock:
            return list(self._queue)

    @property
    def current(self) -> Optional[Path]:
        return self._current

    def rescan(self) -> int:
        """
        Re-read the library folder.

        Returns:
            Number of tracks found
        """
        tracks: List[Path] = []
        try:
            if self.folder.is_dir():
                tracks = [
                    p
                    for p in self.folder.iterdir()
                    if p.is_file() and p.suffix.lower() in SUPPORTED_EXTENSIONS
                ]
        except OSError as e:
            logger.error(f"Failed to scan audio folder {self.folder}: {e}")

        tracks.sort(key=lambda p: p.name.casefold())
        with self._lock:
            self._library = tracks
            if self._current in tracks:
                self._rotation_index = tracks.index(self._current)
            elif self._rotation_index >= len(tracks):
                self._rotation_index = -1
        logger.debug(f"Audio library scan found {len(tracks)} tracks")
        return len(tracks)

    def _find(self, name: str) -> Optional[Path]:
        wanted = name.casefold()
        for track in self._library:
            if track.name.casefold() == wanted or track.stem.casefold() == wanted:
                return track
        return None

    def enqueue(self, name: str) -> bool:
        """
        Request a track by file name.

        Returns:
            True if the track exists and was queued
        """
        with self._lock:
            track = self._find(name)
            if track is None:
                logger.warning(f"Cannot enqueue unknown track '{name}'")
                return False
            self._queue.append(track)
        logger.info(f"Queued track {track.name}")
        return True

    def clear_queue(self) -> None:
        with self._lock:
            self._queue.clear()

    def set_shuffle(self, enabled: bool) -> None:
        self.shuffle = enabled
        logger.info(f"Shuffle {'enabled' if enabled else 'disabled'}")

    def set_repeat(self, mode: RepeatMode) -> None:
        self.repeat = RepeatMode(mode)
        logger.info(f"Repeat mode set to {self.repeat.value}")

    def select_by_name(self, name: str) -> Optional[Path]:
        """
        Make a track current and align the rotation with it.

        Returns:
            The selected track, or None if not found
        """
        with self._lock:
            track = self._find(name)
            if track is None:
                return None
            self._set_current(track)
        self._persist(track)
        return track

    def _set_current(self, track: Path) -> None:
        # caller holds the lock
        self._current = track
        if track in self._library:
            self._rotation_index = self._library.index(track)

    def try_get_next(self) -> Optional[Path]:
        """
        Choose the next track.

        Returns:
            Path of the next track, or None when nothing can play
        """
        with self._lock:
            selected: Optional[Path] = None

            if self.shuffle and self._library:
                selected = self._rng.choice(self._library)
            elif self._queue:
                selected = self._queue.popleft()
            elif self.repeat == RepeatMode.ONE and self._current is not None:
                selected = self._current
            elif self._library:
                index = self._rotation_index + 1
                if index >= len(self._library):
                    if self.repeat != RepeatMode.ALL:
                        return None
                    index = 0
                selected = self._library[index]

            if selected is None:
                return None
            self._set_current(selected)

        self._persist(selected)
        return selected

    def _state_file(self) -> Path:
        return self.folder / LAST_PLAYED_FILE

    def _persist(self, track: Path) -> None:
        try:
            self._state_file().write_text(str(track), encoding="utf-8")
        except OSError as e:
            logger.warning(f"Could not save last played track: {e}")

    def _restore_last_played(self) -> None:
        restored: Optional[Path] = None
        try:
            path = self._state_file()
            if path.is_file():
                restored = Path(path.read_text(encoding="utf-8").strip())
        except OSError as e:
            logger.warning(f"Could not read last played track: {e}")

        with self._lock:
            if restored is not None and restored in self._library:
                self._set_current(restored)
                logger.info(f"Restored last played track {restored.name}")
                return
            if not self._library:
                return
            seed = self._rng.choice(self._library)
            self._set_current(seed)
        logger.info(f"No valid last played track, starting from {seed.name}")

    def add_track_finished_listener(self, listener: TrackFinishedListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_track_finished_listener(self, listener: TrackFinishedListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def notify_track_finished(self) -> None:
        """Tell listeners that the current track finished playing."""
        finished = self._current.name if self._current else None
        logger.debug(f"Track finished: {finished}")
        for listener in list(self._listeners):
            try:
                await listener()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Track finished listener failed: {e}", exc_info=True)
