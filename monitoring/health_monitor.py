"""Broadcast health monitor.

Watches the encoder while a broadcast is active and restarts it through the
stream orchestrator after repeated failed checks. The restart reuses the
current broadcast; no new broadcast is created.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Deque, Optional

from monitoring.config import MonitoringConfig

logger = logging.getLogger(__name__)


class HealthCheckResult(str, Enum):
    """Outcome of a single health check."""

    NOT_BROADCASTING = "not_broadcasting"
    HEALTHY = "healthy"
    NOT_RUNNING = "not_running"
    RECOVERED = "recovered"
    RECOVERY_FAILED = "recovery_failed"


@dataclass
class RecoveryAttempt:
    """Record of a recovery attempt."""

    timestamp: datetime
    broadcast_id: Optional[str]
    success: bool
    error_message: Optional[str] = None


class BroadcastHealthMonitor:
    """Periodic encoder check while broadcasting.

    Features:
    - Consecutive not-running counter, reset on any healthy check
    - One recovery attempt per window of failed checks
    - Recovery history and statistics
    """

    def __init__(self, stream, config: Optional[MonitoringConfig] = None):
        """Initialize health monitor.

        Args:
            stream: Stream orchestrator to observe and recover
            config: Monitoring configuration
        """
        if config is None:
            from monitoring.config import get_config

            config = get_config()

        self.stream = stream
        self.config = config

        self._not_running_count = 0
        self._checks = 0
        self._history: Deque[RecoveryAttempt] = deque(maxlen=config.history_size)

        logger.info(
            f"Broadcast health monitor initialized (interval: {config.health_check_interval}s, "
            f"threshold: {config.max_not_running_checks})"
        )

    @property
    def not_running_count(self) -> int:
        return self._not_running_count

    async def check_once(self) -> HealthCheckResult:
        """Run one health check.

        Returns:
            HealthCheckResult for this check
        """
        self._checks += 1

        if not self.stream.is_broadcasting:
            self._not_running_count = 0
            return HealthCheckResult.NOT_BROADCASTING

        if self.stream.supervisor.is_running():
            if self._not_running_count:
                logger.info("Encoder running again")
            self._not_running_count = 0
            return HealthCheckResult.HEALTHY

        self._not_running_count += 1
        logger.warning(
            f"Encoder not running while broadcasting "
            f"({self._not_running_count}/{self.config.max_not_running_checks})"
        )
        if self._not_running_count < self.config.max_not_running_checks:
            return HealthCheckResult.NOT_RUNNING

        self._not_running_count = 0
        if not self.config.enable_auto_recovery:
            logger.info("Auto-recovery disabled, not restarting encoder")
            return HealthCheckResult.NOT_RUNNING

        return await self._recover()

    async def _recover(self) -> HealthCheckResult:
        broadcast_id = self.stream.current_broadcast_id
        logger.warning(f"Restarting encoder for broadcast {broadcast_id}")

        error_message = None
        try:
            success = await self.stream.ensure_healthy()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Encoder recovery failed: {e}", exc_info=True)
            success = False
            error_message = str(e)

        self._history.append(
            RecoveryAttempt(
                timestamp=datetime.now(),
                broadcast_id=broadcast_id,
                success=success,
                error_message=error_message,
            )
        )
        if success:
            logger.info(f"Encoder recovered for broadcast {broadcast_id}")
            return HealthCheckResult.RECOVERED
        return HealthCheckResult.RECOVERY_FAILED

    async def run(self) -> None:
        """Check periodically until cancelled."""
        logger.info("Broadcast health monitor started")
        while True:
            try:
                await asyncio.sleep(self.config.health_check_interval)
                await self.check_once()
            except asyncio.CancelledError:
                logger.info("Broadcast health monitor cancelled")
                break
            except Exception as e:
                logger.error(f"Error in health monitor loop: {e}", exc_info=True)

    def get_stats(self) -> dict:
        """Get health monitor statistics.

        Returns:
            Dictionary with check and recovery counters
        """
        return {
            "checks": self._checks,
            "not_running_count": self._not_running_count,
            "recovery_attempts": len(self._history),
            "successful_recoveries": sum(1 for a in self._history if a.success),
            "auto_recovery_enabled": self.config.enable_auto_recovery,
        }

    def get_recovery_history(self, limit: int = 10) -> list[dict]:
        """Get recent recovery history, newest first.

        Args:
            limit: Maximum number of attempts to return

        Returns:
            List of recovery attempts
        """
        recent = list(self._history)[-limit:] if limit > 0 else list(self._history)

        return [
            {
                "timestamp": attempt.timestamp.isoformat(),
                "broadcast_id": attempt.broadcast_id,
                "success": attempt.success,
                "error_message": attempt.error_message,
            }
            for attempt in reversed(recent)
        ]
