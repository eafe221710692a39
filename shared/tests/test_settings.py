"""Tests for the settings tree and colon-path access."""

import json
from datetime import timedelta

import pytest
from pydantic import ValidationError

from shared.config import Settings, load_settings


class TestDefaults:
    """Default values of the settings tree."""

    def test_stream_defaults(self):
        settings = Settings()

        assert settings.stream.target_fps == 30
        assert settings.stream.bitrate_kbps == 2500
        assert settings.stream.mix.enabled is True
        assert settings.stream.mix.url == "http://127.0.0.1:8080/stream/mix"

    def test_overlay_defaults(self):
        settings = Settings()

        assert settings.overlay.enabled is False
        assert settings.overlay.font_size == 22
        assert settings.overlay.box_color == "black@0.4"
        assert settings.overlay.banner_fraction == 0.2

    def test_timelapse_defaults(self):
        settings = Settings()

        assert settings.timelapse.offline_grace_period == timedelta(minutes=10)
        assert settings.timelapse.idle_finalize_delay == timedelta(seconds=20)
        assert settings.timelapse.last_layer_offset == 1
        assert settings.timelapse.last_layer_remaining_seconds == 30
        assert settings.timelapse.last_layer_progress_percent == 98.5

    def test_polling_defaults(self):
        polling = Settings().youtube.polling

        assert polling.requests_per_minute == 100
        assert polling.cache_duration_seconds == 5
        assert polling.backoff_multiplier == 1.5
        assert polling.max_jitter_seconds == 5

    def test_banner_fraction_is_clamped(self):
        settings = Settings(overlay={"banner_fraction": 0.9})

        assert settings.overlay.banner_fraction == 0.6


class TestSources:
    """Environment and settings-file loading."""

    def test_nested_environment_variable(self, monkeypatch):
        monkeypatch.setenv("PRINTSTREAMER_STREAM__MIX__ENABLED", "false")
        monkeypatch.setenv("PRINTSTREAMER_YOUTUBE__OAUTH__CLIENT_ID", "abc")

        settings = Settings()

        assert settings.stream.mix.enabled is False
        assert settings.youtube.oauth.client_id == "abc"

    def test_json_file_with_pascal_case_keys(self, isolated_settings):
        path = isolated_settings / "custom.json"
        path.write_text(
            json.dumps(
                {
                    "Stream": {"Source": "http://cam/stream", "Mix": {"Enabled": False}},
                    "YouTube": {"OAuth": {"ClientId": "id", "ClientSecret": "secret"}},
                    "Timelapse": {"OfflineGracePeriod": "00:05:00"},
                    "Unrelated": {"Key": 1},
                }
            )
        )

        settings = load_settings(str(path))

        assert settings.stream.source == "http://cam/stream"
        assert settings.stream.mix.enabled is False
        assert settings.youtube.oauth.client_secret == "secret"
        assert settings.timelapse.offline_grace_period == timedelta(minutes=5)

    def test_environment_overrides_file(self, isolated_settings, monkeypatch):
        path = isolated_settings / "appsettings.json"
        path.write_text(json.dumps({"Stream": {"TargetFps": 15}}))
        monkeypatch.setenv("PRINTSTREAMER_STREAM__TARGET_FPS", "25")

        settings = Settings()

        assert settings.stream.target_fps == 25

    def test_invalid_json_file_is_ignored(self, isolated_settings):
        (isolated_settings / "appsettings.json").write_text("{not json")

        settings = Settings()

        assert settings.stream.target_fps == 30


class TestColonPathAccess:
    """get_value / set_value by colon path."""

    def test_get_value(self):
        settings = Settings()

        assert settings.get_value("Stream:Mix:Enabled") is True
        assert settings.get_value("YouTube:Polling:BaseIntervalSeconds") == 15
        assert settings.get_value("youtube:liveBroadcast:endStreamAfterPrint") is True

    def test_set_value_coerces(self):
        settings = Settings()

        settings.set_value("Stream:Mix:Enabled", "false")

        assert settings.stream.mix.enabled is False
        assert settings.get_value("Stream:Mix:Enabled") is False

    def test_set_value_validates(self):
        settings = Settings()

        with pytest.raises(ValidationError):
            settings.set_value("Stream:TargetFps", 500)

    def test_unknown_key(self):
        settings = Settings()

        with pytest.raises(KeyError):
            settings.get_value("Stream:Nope")

        with pytest.raises(KeyError):
            settings.get_value("Stream:TargetFps:Deeper")
