"""
Encoder Supervisor

FFmpeg process lifecycle for the camera stream: command construction,
a single supervised encoder instance with graceful stop and process-tree
kill, and stderr classification.
"""

__version__ = "1.0.0"

from ffmpeg_manager.command_builder import FFmpegCommandBuilder
from ffmpeg_manager.config import (
    EncoderOptions,
    FFmpegConfig,
    OverlayOptions,
    build_encoder_options,
)
from ffmpeg_manager.log_parser import FFmpegLogParser
from ffmpeg_manager.process_manager import (
    EncoderInstance,
    EncoderSupervisor,
    kill_process_tree,
)

__all__ = [
    "EncoderInstance",
    "EncoderOptions",
    "EncoderSupervisor",
    "FFmpegCommandBuilder",
    "FFmpegConfig",
    "FFmpegLogParser",
    "OverlayOptions",
    "build_encoder_options",
    "kill_process_tree",
]
