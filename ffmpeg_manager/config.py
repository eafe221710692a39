"""
Encoder configuration.

``FFmpegConfig`` carries process-level options read from the environment;
``EncoderOptions`` is the immutable description of one encoder instance,
derived from application settings by :func:`build_encoder_options`.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from pydantic import ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

VALID_LOG_LEVELS = [
    "quiet",
    "panic",
    "fatal",
    "error",
    "warning",
    "info",
    "verbose",
    "debug",
    "trace",
]

DEFAULT_FONT_FILE = "/usr/share/fonts/truetype/dejavu/DejaVuSansMono.ttf"
DEFAULT_AUDIO_API_URL = "http://127.0.0.1:8080/api/audio/stream"


@dataclass(frozen=True)
class OverlayOptions:
    """Text overlay drawn over the camera image."""

    text_file: str
    font_file: str = DEFAULT_FONT_FILE
    font_size: int = 22
    font_color: str = "white"
    box: bool = True
    box_color: str = "black@0.4"
    box_border_w: int = 2
    x: str = "0"
    y: str = "40"
    banner_fraction: float = 0.2


@dataclass(frozen=True)
class EncoderOptions:
    """Everything one encoder instance needs; never changed after start."""

    source_url: str
    destination_url: Optional[str] = None
    target_fps: int = 30
    bitrate_kbps: int = 2500
    overlay: Optional[OverlayOptions] = None
    audio_url: Optional[str] = None

    @property
    def is_local(self) -> bool:
        """True when the output goes to the local MJPEG pipe instead of RTMP."""
        return not self.destination_url


class FFmpegConfig(BaseSettings):
    """Encoder process configuration from environment variables."""

    ffmpeg_binary: str = Field(
        default="ffmpeg",
        description="Path to FFmpeg binary",
    )

    log_level: str = Field(
        default="error",
        description="FFmpeg log level (quiet, panic, fatal, error, warning, info, verbose, debug, trace)",
    )

    # Output geometry
    scale: str = Field(default="640:480", description="Output size as width:height")
    video_preset: str = Field(default="veryfast", description="x264 preset")

    audio_bitrate: str = Field(default="128k")
    audio_sample_rate: int = Field(default=44100)

    mjpeg_quality: int = Field(
        default=5,
        description="MJPEG quality for the local pipe output (2 best, 31 worst)",
        ge=2,
        le=31,
    )

    # Process management
    stop_timeout: float = Field(
        default=5.0,
        description="Seconds to wait for a graceful exit before killing the process tree",
        gt=0.0,
        le=60.0,
    )

    stderr_tail_lines: int = Field(
        default=50,
        description="Number of stderr lines kept per instance",
        ge=1,
        le=1000,
    )

    model_config = ConfigDict(
        env_prefix="FFMPEG_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("log_level")
    @classmethod
    def fallback_log_level(cls, value: str) -> str:
        level = (value or "").lower()
        if level not in VALID_LOG_LEVELS:
            logger.warning(f"Unknown FFmpeg log level '{value}', using 'error'")
            return "error"
        return level


def get_config() -> FFmpegConfig:
    """
    Get encoder configuration from environment variables.

    Returns:
        FFmpegConfig: Configuration instance
    """
    return FFmpegConfig()


def build_encoder_options(settings, destination_url: Optional[str]) -> EncoderOptions:
    """
    Derive encoder options from application settings.

    A local instance (no destination) always reads the camera, since its MJPEG
    output is what the mix endpoint serves. An RTMP instance reads the mix
    endpoint while mix is enabled, adding the local audio stream when the
    audio API stream is enabled; otherwise it reads the camera. The overlay
    is drawn by the encoder only while mix is disabled.

    Args:
        settings: Application settings (``shared.config.Settings``)
        destination_url: RTMP URL, or None for the local MJPEG pipe

    Returns:
        EncoderOptions: Options for the next encoder instance
    """
    stream = settings.stream
    mix_enabled = stream.mix.enabled

    destination_url = destination_url or None
    source = stream.mix.url if (mix_enabled and destination_url) else stream.source

    audio_url: Optional[str] = stream.audio.url or None
    if destination_url is None:
        audio_url = None
    elif (
        audio_url is None
        and mix_enabled
        and stream.audio.use_api_stream
        and settings.audio.enabled
    ):
        audio_url = DEFAULT_AUDIO_API_URL

    overlay: Optional[OverlayOptions] = None
    if not mix_enabled and settings.overlay.enabled:
        o = settings.overlay
        overlay = OverlayOptions(
            text_file=o.text_file,
            font_file=o.font_file or DEFAULT_FONT_FILE,
            font_size=o.font_size,
            font_color=o.font_color or "white",
            box=o.box,
            box_color=o.box_color or "black@0.4",
            box_border_w=o.box_border_w,
            x=o.x or "0",
            y=o.y or "40",
            banner_fraction=o.banner_fraction,
        )

    return EncoderOptions(
        source_url=source,
        destination_url=destination_url,
        target_fps=stream.target_fps if stream.target_fps > 0 else 30,
        bitrate_kbps=stream.bitrate_kbps if stream.bitrate_kbps > 0 else 2500,
        overlay=overlay,
        audio_url=audio_url,
    )
