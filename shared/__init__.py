"""Shared settings for the print streamer services."""

from shared.config import Settings, load_settings

__all__ = ["Settings", "load_settings"]
