"""Monitoring module.

Provides the broadcast health monitor and the mix-flag watcher.
"""

from .config import MonitoringConfig, get_config
from .health_monitor import BroadcastHealthMonitor, HealthCheckResult, RecoveryAttempt
from .mix_watcher import MIX_ENABLED_KEY, MixFlagWatcher

__all__ = [
    "MonitoringConfig",
    "get_config",
    "BroadcastHealthMonitor",
    "HealthCheckResult",
    "RecoveryAttempt",
    "MixFlagWatcher",
    "MIX_ENABLED_KEY",
]

__version__ = "1.0.0"
