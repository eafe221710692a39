"""Tests for monitoring configuration."""

import pytest

from monitoring.config import MonitoringConfig, get_config


class TestMonitoringConfig:
    """Test cases for MonitoringConfig."""

    def test_default_config(self):
        """Test default configuration values."""
        config = MonitoringConfig()

        assert config.health_check_interval == 10.0
        assert config.max_not_running_checks == 3
        assert config.mix_watch_interval == 2.0
        assert config.enable_auto_recovery is True

    def test_from_env(self, monkeypatch):
        """Test configuration from environment variables."""
        monkeypatch.setenv("HEALTH_CHECK_INTERVAL", "5.0")
        monkeypatch.setenv("MAX_NOT_RUNNING_CHECKS", "4")
        monkeypatch.setenv("ENABLE_AUTO_RECOVERY", "false")
        monkeypatch.setenv("MIX_WATCH_INTERVAL", "1.5")

        config = MonitoringConfig.from_env()

        assert config.health_check_interval == 5.0
        assert config.max_not_running_checks == 4
        assert config.enable_auto_recovery is False
        assert config.mix_watch_interval == 1.5

    def test_validate_invalid_interval(self):
        """Test validation with invalid interval."""
        config = MonitoringConfig(health_check_interval=-1.0)

        with pytest.raises(ValueError, match="Invalid health_check_interval"):
            config.validate()

    def test_validate_invalid_check_count(self):
        """Test validation with a zero failure threshold."""
        config = MonitoringConfig(max_not_running_checks=0)

        with pytest.raises(ValueError, match="Invalid max_not_running_checks"):
            config.validate()

    def test_validate_invalid_mix_interval(self):
        config = MonitoringConfig(mix_watch_interval=0)

        with pytest.raises(ValueError, match="Invalid mix_watch_interval"):
            config.validate()

    def test_get_config(self, monkeypatch):
        """Test get_config reads and validates the environment."""
        monkeypatch.setenv("HEALTH_CHECK_INTERVAL", "0")

        with pytest.raises(ValueError):
            get_config()
