"""
Timelapse

Per-print frame capture sessions and their encoding into a video.
"""

__version__ = "1.0.0"

from timelapse.session_manager import TimelapseManager, TimelapseSession, sanitize_session_name

__all__ = ["TimelapseManager", "TimelapseSession", "sanitize_session_name"]
