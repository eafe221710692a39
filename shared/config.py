"""Application settings for the print streamer.

Settings are grouped in sections that mirror the keys used by the JSON
settings file (``Stream:Mix:Enabled``, ``YouTube:OAuth:ClientId`` ...).
Values are loaded, highest priority first, from constructor arguments,
``PRINTSTREAMER_`` environment variables (nested with ``__``), ``.env``
and finally the JSON file named by ``PRINTSTREAMER_CONFIG_FILE``.

Components that react to runtime changes read values by colon path through
:meth:`Settings.get_value`, so a toggle made through :meth:`Settings.set_value`
is picked up on the next read.
"""

import json
import logging
import os
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple, Type

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.fields import FieldInfo
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

logger = logging.getLogger(__name__)

CONFIG_FILE_ENV = "PRINTSTREAMER_CONFIG_FILE"
DEFAULT_CONFIG_FILE = "appsettings.json"

MAX_BANNER_FRACTION = 0.6


def _normalize_key(name: str) -> str:
    return name.replace("_", "").replace("-", "").lower()


class _Section(BaseModel):
    """Base for settings sections; assignments are validated."""

    model_config = ConfigDict(validate_assignment=True, extra="ignore")


class StreamMixSettings(_Section):
    enabled: bool = True
    url: str = Field(
        default="http://127.0.0.1:8080/stream/mix",
        description="Local mix endpoint used as encoder source while mix is enabled",
    )


class StreamAudioSettings(_Section):
    use_api_stream: bool = True
    url: str = ""


class StreamLocalSettings(_Section):
    enabled: bool = True


class StreamSettings(_Section):
    source: str = Field(
        default="http://127.0.0.1/webcam/?action=stream",
        description="Camera MJPEG URL",
    )
    target_fps: int = Field(default=30, ge=1, le=60)
    bitrate_kbps: int = Field(default=2500, ge=100, le=20000)
    mix: StreamMixSettings = Field(default_factory=StreamMixSettings)
    audio: StreamAudioSettings = Field(default_factory=StreamAudioSettings)
    local: StreamLocalSettings = Field(default_factory=StreamLocalSettings)


class OverlaySettings(_Section):
    enabled: bool = False
    text_file: str = "overlay/overlay.txt"
    font_file: str = "/usr/share/fonts/truetype/dejavu/DejaVuSansMono.ttf"
    font_size: int = Field(default=22, ge=6, le=200)
    font_color: str = "white"
    box: bool = True
    box_color: str = "black@0.4"
    box_border_w: int = Field(default=2, ge=0)
    x: str = "0"
    y: str = "40"
    banner_fraction: float = 0.2

    @field_validator("banner_fraction")
    @classmethod
    def clamp_banner_fraction(cls, value: float) -> float:
        return min(max(value, 0.0), MAX_BANNER_FRACTION)


class AudioSettings(_Section):
    folder: str = "audio"
    enabled: bool = True


class OAuthSettings(_Section):
    client_id: str = ""
    client_secret: str = ""
    token_file: str = "youtube_token.json"


class LiveBroadcastSettings(_Section):
    enabled: bool = Field(default=True, description="Start a broadcast automatically for each print")
    end_stream_after_print: bool = True
    welcome_message: str = ""
    title: str = "3D Print Live"
    privacy: str = "unlisted"
    ingestion_timeout_seconds: float = Field(default=120.0, gt=0)
    ingestion_poll_count: int = Field(default=5, ge=1)


class PlaylistSettings(_Section):
    name: str = ""
    privacy: str = "unlisted"


class PollingSettings(_Section):
    enabled: bool = True
    base_interval_seconds: float = Field(default=15.0, gt=0)
    min_interval_seconds: float = Field(default=10.0, ge=0)
    max_interval_seconds: float = Field(default=60.0, gt=0)
    idle_threshold_minutes: float = Field(default=5.0, ge=0)
    backoff_multiplier: float = Field(default=1.5, ge=1.0)
    max_jitter_seconds: float = Field(default=5.0, ge=0)
    requests_per_minute: int = Field(default=100, ge=1)
    cache_duration_seconds: float = Field(default=5.0, ge=0)
    max_retries: int = Field(default=3, ge=0, le=10)


class ReuseSettings(_Section):
    enabled: bool = True
    store_file: str = "youtube_reuse_store.json"
    ttl_minutes: int = Field(default=1440, ge=1)
    only_unlisted_or_private_for_reuse: bool = True


class YouTubeSettings(_Section):
    oauth: OAuthSettings = Field(default_factory=OAuthSettings)
    live_broadcast: LiveBroadcastSettings = Field(default_factory=LiveBroadcastSettings)
    playlist: PlaylistSettings = Field(default_factory=PlaylistSettings)
    polling: PollingSettings = Field(default_factory=PollingSettings)
    reuse: ReuseSettings = Field(default_factory=ReuseSettings)


class TimelapseSettings(_Section):
    offline_grace_period: timedelta = timedelta(minutes=10)
    idle_finalize_delay: timedelta = timedelta(seconds=20)
    last_layer_offset: int = Field(default=1, ge=0)
    last_layer_remaining_seconds: float = Field(default=30.0, ge=0)
    last_layer_progress_percent: float = Field(default=98.5, ge=0, le=100)
    folder: str = "timelapse"
    snapshot_url: str = "http://127.0.0.1/webcam/?action=snapshot"
    capture_interval_seconds: float = Field(default=10.0, gt=0)
    output_fps: int = Field(default=30, ge=1, le=120)


class PrinterSettings(_Section):
    status_url: str = Field(
        default=(
            "http://127.0.0.1:7125/printer/objects/query"
            "?print_stats&display_status&virtual_sdcard"
        ),
        description="Printer status endpoint",
    )
    poll_interval_seconds: float = Field(default=5.0, gt=0)
    request_timeout_seconds: float = Field(default=10.0, gt=0)


def _to_field_names(model: Type[BaseModel], data: Mapping[str, Any]) -> Dict[str, Any]:
    """Map PascalCase settings-file keys onto the model's field names."""
    lookup = {_normalize_key(name): name for name in model.model_fields}
    result: Dict[str, Any] = {}
    for key, value in data.items():
        name = lookup.get(_normalize_key(key))
        if name is None:
            logger.debug(f"Ignoring unknown settings key '{key}' for {model.__name__}")
            continue
        annotation = model.model_fields[name].annotation
        if (
            isinstance(value, Mapping)
            and isinstance(annotation, type)
            and issubclass(annotation, BaseModel)
        ):
            value = _to_field_names(annotation, value)
        result[name] = value
    return result


class JsonFileSettingsSource(PydanticBaseSettingsSource):
    """Settings source reading the JSON settings file, if present."""

    def __init__(self, settings_cls: Type[BaseSettings], path: Optional[str] = None):
        super().__init__(settings_cls)
        self.path = Path(path or os.getenv(CONFIG_FILE_ENV, DEFAULT_CONFIG_FILE))
        self._data = self._load()

    def _load(self) -> Dict[str, Any]:
        if not self.path.is_file():
            return {}
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.error(f"Failed to read settings file {self.path}: {e}")
            return {}
        if not isinstance(raw, dict):
            logger.error(f"Settings file {self.path} must contain a JSON object")
            return {}
        return _to_field_names(self.settings_cls, raw)

    def get_field_value(self, field: FieldInfo, field_name: str) -> Tuple[Any, str, bool]:
        return self._data.get(field_name), field_name, False

    def __call__(self) -> Dict[str, Any]:
        return dict(self._data)


class Settings(BaseSettings):
    """All settings of the print streamer."""

    stream: StreamSettings = Field(default_factory=StreamSettings)
    overlay: OverlaySettings = Field(default_factory=OverlaySettings)
    audio: AudioSettings = Field(default_factory=AudioSettings)
    youtube: YouTubeSettings = Field(default_factory=YouTubeSettings)
    timelapse: TimelapseSettings = Field(default_factory=TimelapseSettings)
    printer: PrinterSettings = Field(default_factory=PrinterSettings)

    model_config = SettingsConfigDict(
        env_prefix="PRINTSTREAMER_",
        env_nested_delimiter="__",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        validate_assignment=True,
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            JsonFileSettingsSource(settings_cls),
            file_secret_settings,
        )

    def _resolve(self, key: str) -> Tuple[BaseModel, str]:
        segments = [s for s in key.split(":") if s]
        if not segments:
            raise KeyError(key)

        node: BaseModel = self
        for i, segment in enumerate(segments):
            lookup = {_normalize_key(name): name for name in type(node).model_fields}
            name = lookup.get(_normalize_key(segment))
            if name is None:
                raise KeyError(key)
            if i == len(segments) - 1:
                return node, name
            child = getattr(node, name)
            if not isinstance(child, BaseModel):
                raise KeyError(key)
            node = child
        raise KeyError(key)

    def get_value(self, key: str) -> Any:
        """
        Read a setting by its colon path.

        Args:
            key: Path such as ``"Stream:Mix:Enabled"``; segments match field
                names case-insensitively, ignoring underscores

        Returns:
            The current value

        Raises:
            KeyError: If the path does not name a setting
        """
        node, name = self._resolve(key)
        return getattr(node, name)

    def set_value(self, key: str, value: Any) -> None:
        """
        Change a setting by its colon path. The value is validated and
        coerced ("false" becomes False for a bool setting).

        Raises:
            KeyError: If the path does not name a setting
            pydantic.ValidationError: If the value is invalid
        """
        node, name = self._resolve(key)
        setattr(node, name, value)
        logger.info(f"Setting '{key}' changed")


def load_settings(config_file: Optional[str] = None) -> Settings:
    """
    Load settings, optionally from an explicit settings file.

    Args:
        config_file: JSON settings file; defaults to ``PRINTSTREAMER_CONFIG_FILE``
            or ``appsettings.json``

    Returns:
        Settings: Loaded settings
    """
    if config_file:
        os.environ[CONFIG_FILE_ENV] = config_file
    settings = Settings()
    logger.info("Settings loaded")
    return settings
