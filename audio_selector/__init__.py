"""
Audio Selector

Picks the next track from the audio library and notifies listeners when a
track finishes.
"""

from audio_selector.selector import AudioSelector, RepeatMode, SUPPORTED_EXTENSIONS

__all__ = ["AudioSelector", "RepeatMode", "SUPPORTED_EXTENSIONS"]
