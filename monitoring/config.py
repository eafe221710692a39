"""Configuration for monitoring module."""

import os
from dataclasses import dataclass


@dataclass
class MonitoringConfig:
    """Configuration for the broadcast health monitor and mix-flag watcher."""

    # Health monitor
    health_check_interval: float = 10.0  # seconds
    max_not_running_checks: int = 3
    enable_auto_recovery: bool = True
    history_size: int = 50

    # Mix-flag watcher
    mix_watch_interval: float = 2.0  # seconds
    kill_timeout: float = 3.0  # seconds to wait for a killed process tree

    @classmethod
    def from_env(cls) -> "MonitoringConfig":
        """Create configuration from environment variables.

        Returns:
            MonitoringConfig instance
        """
        return cls(
            health_check_interval=float(os.getenv("HEALTH_CHECK_INTERVAL", "10.0")),
            max_not_running_checks=int(os.getenv("MAX_NOT_RUNNING_CHECKS", "3")),
            enable_auto_recovery=os.getenv("ENABLE_AUTO_RECOVERY", "true").lower() == "true",
            history_size=int(os.getenv("RECOVERY_HISTORY_SIZE", "50")),
            mix_watch_interval=float(os.getenv("MIX_WATCH_INTERVAL", "2.0")),
            kill_timeout=float(os.getenv("MIX_KILL_TIMEOUT", "3.0")),
        )

    def validate(self) -> None:
        """Validate configuration values.

        Raises:
            ValueError: If configuration is invalid
        """
        if self.health_check_interval <= 0:
            raise ValueError(f"Invalid health_check_interval: {self.health_check_interval}")

        if self.max_not_running_checks < 1:
            raise ValueError(f"Invalid max_not_running_checks: {self.max_not_running_checks}")

        if self.mix_watch_interval <= 0:
            raise ValueError(f"Invalid mix_watch_interval: {self.mix_watch_interval}")

        if self.kill_timeout < 0:
            raise ValueError(f"Invalid kill_timeout: {self.kill_timeout}")


def get_config() -> MonitoringConfig:
    """Get monitoring configuration from environment.

    Returns:
        MonitoringConfig instance
    """
    config = MonitoringConfig.from_env()
    config.validate()
    return config
