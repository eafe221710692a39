"""
FFmpeg command builder.

Constructs encoder commands for the camera stream (RTMP or local MJPEG
pipe output) and for encoding timelapse frames into a video.
"""

import logging
from pathlib import Path
from typing import List, Optional

from ffmpeg_manager.config import EncoderOptions, FFmpegConfig, OverlayOptions

logger = logging.getLogger(__name__)

MIN_OVERLAY_FONT_SIZE = 12
# ascent/descent allowance for the banner height
BANNER_EXTRA_PX = 6
DEFAULT_PAD_TOP = 20


def escape_filter_value(value: str) -> str:
    """Escape a value for use inside single quotes in a filter graph."""
    return (value or "").replace("\\", "\\\\").replace("'", "\\'")


def count_overlay_lines(text_file: str) -> int:
    """Number of lines currently in the overlay text file (at least 1)."""
    try:
        text = Path(text_file).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        return 1
    return max(1, len(text.split("\n"))) if text else 1


class FFmpegCommandBuilder:
    """
    Builds FFmpeg commands for the camera encoder.

    The camera is read as HTTP MJPEG with reconnects. Audio comes from the
    configured audio URL or, when none is given, a silent source so the
    platform always sees an audio track.
    """

    def __init__(self, config: Optional[FFmpegConfig] = None):
        """
        Initialize command builder.

        Args:
            config: Encoder configuration (defaults from environment)
        """
        self.config = config or FFmpegConfig()

    def build_command(self, options: EncoderOptions) -> List[str]:
        """
        Build complete FFmpeg command for one encoder instance.

        Args:
            options: Encoder options

        Returns:
            List of command arguments for subprocess

        Raises:
            ValueError: If the source URL is empty
        """
        if not options.source_url or not options.source_url.strip():
            raise ValueError("source_url cannot be empty")

        cmd = [self.config.ffmpeg_binary]

        # Global options
        cmd.extend(self._build_global_options())

        # Camera input
        cmd.extend(self._build_video_input(options.source_url))

        if options.is_local:
            cmd.extend(["-map", "0:v:0"])
            cmd.extend(["-vf", self._build_video_filters(options)])
            cmd.extend(self._build_local_output(options))
        else:
            cmd.extend(self._build_audio_input(options.audio_url))
            cmd.extend(["-map", "0:v:0", "-map", "1:a:0"])
            cmd.extend(["-vf", self._build_video_filters(options)])
            cmd.extend(self._build_video_encoding(options))
            cmd.extend(self._build_audio_encoding())
            cmd.extend(self._build_rtmp_output(options.destination_url))

        logger.debug(f"Built FFmpeg command: {self.redact(cmd)}")
        return cmd

    def _build_global_options(self) -> List[str]:
        return [
            "-hide_banner",
            "-nostats",
            "-loglevel",
            self.config.log_level,
            "-nostdin",
            "-err_detect",
            "ignore_err",
        ]

    def _build_video_input(self, source_url: str) -> List[str]:
        """Build HTTP MJPEG input options."""
        return [
            "-reconnect",
            "1",
            "-reconnect_streamed",
            "1",
            "-reconnect_delay_max",
            "2",
            "-fflags",
            "+genpts",
            "-f",
            "mjpeg",
            "-use_wallclock_as_timestamps",
            "1",
            "-i",
            source_url,
        ]

    def _build_audio_input(self, audio_url: Optional[str]) -> List[str]:
        """Build audio input options; silence when no URL is given."""
        if audio_url:
            return ["-reconnect", "1", "-reconnect_streamed", "1", "-i", audio_url]
        return [
            "-f",
            "lavfi",
            "-i",
            f"anullsrc=channel_layout=stereo:sample_rate={self.config.audio_sample_rate}",
        ]

    def _build_video_filters(self, options: EncoderOptions) -> str:
        filters = ["format=yuv420p", f"scale={self.config.scale}"]
        if options.overlay is not None and options.overlay.text_file:
            filters.extend(self._build_overlay_filters(options.overlay))
        return ",".join(filters)

    def _build_overlay_filters(self, overlay: OverlayOptions) -> List[str]:
        """Build drawbox banner and drawtext filters for the overlay."""
        filters = []
        font_size = overlay.font_size if overlay.font_size > 0 else 22
        border_w = max(overlay.box_border_w, 0)

        if overlay.box:
            try:
                pad_top = int(overlay.y)
            except (TypeError, ValueError):
                pad_top = DEFAULT_PAD_TOP
            lines = count_overlay_lines(overlay.text_file)
            box_h = pad_top + max(font_size, MIN_OVERLAY_FONT_SIZE) * lines + border_w + BANNER_EXTRA_PX
            height = str(box_h)
            if overlay.banner_fraction > 0:
                height = f"'max({box_h},ih*{overlay.banner_fraction:g})'"
            filters.append(
                f"drawbox=x=0:y=0:w=iw:h={height}:color={overlay.box_color}:t=fill"
            )

        font = escape_filter_value(overlay.font_file)
        text = escape_filter_value(overlay.text_file)
        filters.append(
            f"drawtext=fontfile='{font}':textfile='{text}':reload=1:expansion=none"
            f":fontsize={font_size}:fontcolor={overlay.font_color}"
            f":x={overlay.x}:y={overlay.y}"
        )
        return filters

    def _build_video_encoding(self, options: EncoderOptions) -> List[str]:
        """Build x264 options tuned for low-latency live output."""
        fps = options.target_fps
        gop = max(2, fps * 2)
        bitrate = options.bitrate_kbps
        return [
            "-color_range",
            "tv",
            "-c:v",
            "libx264",
            "-preset",
            self.config.video_preset,
            "-tune",
            "zerolatency",
            "-profile:v",
            "baseline",
            "-pix_fmt",
            "yuv420p",
            "-r",
            str(fps),
            "-g",
            str(gop),
            "-keyint_min",
            str(gop),
            "-b:v",
            f"{bitrate}k",
            "-maxrate",
            f"{bitrate}k",
            "-bufsize",
            f"{bitrate * 2}k",
        ]

    def _build_audio_encoding(self) -> List[str]:
        return [
            "-c:a",
            "aac",
            "-b:a",
            self.config.audio_bitrate,
            "-ar",
            str(self.config.audio_sample_rate),
            "-ac",
            "2",
        ]

    def _build_rtmp_output(self, destination_url: str) -> List[str]:
        return ["-flvflags", "no_duration_filesize", "-f", "flv", destination_url]

    def _build_local_output(self, options: EncoderOptions) -> List[str]:
        """MJPEG-over-pipe output consumed by the mix endpoint."""
        return [
            "-an",
            "-r",
            str(options.target_fps),
            "-c:v",
            "mjpeg",
            "-q:v",
            str(self.config.mjpeg_quality),
            "-f",
            "mpjpeg",
            "pipe:1",
        ]

    def build_timelapse_command(
        self, frames_dir: Path, output_path: Path, fps: int = 30
    ) -> List[str]:
        """
        Build the command that encodes numbered JPEG frames into an MP4.

        Args:
            frames_dir: Folder holding ``frame_NNNNNN.jpg`` files
            output_path: Target video file
            fps: Output frame rate

        Returns:
            List of command arguments for subprocess
        """
        return [
            self.config.ffmpeg_binary,
            "-hide_banner",
            "-nostats",
            "-loglevel",
            self.config.log_level,
            "-y",
            "-framerate",
            str(fps),
            "-i",
            str(Path(frames_dir) / "frame_%06d.jpg"),
            "-c:v",
            "libx264",
            "-preset",
            self.config.video_preset,
            "-pix_fmt",
            "yuv420p",
            "-movflags",
            "+faststart",
            str(output_path),
        ]

    @staticmethod
    def redact(cmd: List[str]) -> str:
        """Command as a string with the RTMP stream key hidden."""
        parts = []
        for arg in cmd:
            if arg.startswith("rtmp://") or arg.startswith("rtmps://"):
                base, _, _ = arg.rpartition("/")
                parts.append(f"{base}/***")
            else:
                parts.append(arg)
        return " ".join(parts)
