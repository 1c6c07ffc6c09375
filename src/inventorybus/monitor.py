"""
Periodic broker health check.

Automatic reconnection stops after ``max_reconnect_attempts``. The monitor
is the path back from there: every ``interval`` seconds it makes one connect
attempt if the manager is neither connected nor connecting.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from inventorybus.exceptions import BrokerError

if TYPE_CHECKING:
    from inventorybus.connection import ConnectionManager

logger = logging.getLogger(__name__)


class HealthMonitor:
    """
    Runs ``check()`` on a fixed interval in a background task.

    Args:
        manager: The connection manager to watch
        interval: Seconds between checks. Defaults to the manager's
            ``health_check_interval``.
    """

    def __init__(
        self,
        manager: ConnectionManager,
        interval: float | None = None,
    ) -> None:
        self._manager = manager
        self._interval = manager.config.health_check_interval if interval is None else interval
        if self._interval <= 0:
            raise ValueError(f"interval must be positive, got {self._interval}")
        self._task: asyncio.Task[None] | None = None
        self._checks = 0

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def checks_run(self) -> int:
        return self._checks

    async def check(self) -> bool:
        """
        Connect if the manager is idle and disconnected.

        Returns:
            True if a connect attempt was made.
        """
        self._checks += 1
        manager = self._manager
        if manager.is_shutdown or manager.is_connected or manager.is_connecting:
            return False

        logger.info(
            "Broker connection is down, attempting to connect",
            extra={
                "reconnect_attempts": manager.state.reconnect_attempts,
                "last_error": manager.state.last_error,
            },
        )
        try:
            await manager.connect()
        except BrokerError as e:
            logger.warning(
                f"Health check connect failed: {e}",
                extra={"error": str(e), "error_type": type(e).__name__},
            )
        return True

    def start(self) -> None:
        """Start the background loop. Calling it twice has no effect."""
        if self.is_running:
            return
        self._task = asyncio.get_running_loop().create_task(
            self._run(),
            name="inventorybus-health-monitor",
        )
        logger.debug(
            "Health monitor started",
            extra={"interval_seconds": self._interval},
        )

    async def stop(self) -> None:
        """Cancel the background loop and wait for it to finish."""
        if self._task is None:
            return

        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        finally:
            self._task = None

        logger.debug("Health monitor stopped", extra={"checks_run": self._checks})

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self.check()
            except Exception as e:
                logger.warning(
                    "Error in health monitor loop",
                    exc_info=True,
                    extra={"error": str(e)},
                )


__all__ = ["HealthMonitor"]
