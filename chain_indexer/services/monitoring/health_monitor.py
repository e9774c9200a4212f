"""
Health monitor.

Periodic checks of the RPC pool, snapshot storage, indexing sessions and
notification delivery, with bounded history and alert lists.
"""

import asyncio
import contextlib
from collections import deque
from typing import TYPE_CHECKING, Any

from loguru import logger

from chain_indexer.config.constants import (
    HEALTH_ALERTS_LIMIT,
    HEALTH_HISTORY_LIMIT,
    HEALTH_MONITOR_INTERVAL,
)
from chain_indexer.models.enums import HealthStatus, SessionStatus
from chain_indexer.services.indexer.notifications import ProgressNotifier
from chain_indexer.services.indexer.rpc_endpoint_pool import RPCEndpointPool
from chain_indexer.services.monitoring.metrics_collector import MetricsCollector
from chain_indexer.services.storage.snapshot_store import SnapshotStore
from chain_indexer.utils.circuit_breaker import CircuitBreakerRegistry
from chain_indexer.utils.datetime_utils import to_iso, utc_now
from chain_indexer.utils.security import mask_url

if TYPE_CHECKING:
    from chain_indexer.services.indexer.indexer_manager import IndexerManager

_SEVERITY = {
    HealthStatus.HEALTHY: 0,
    HealthStatus.DEGRADED: 1,
    HealthStatus.UNHEALTHY: 2,
}


def _worst(statuses: list[HealthStatus]) -> HealthStatus:
    return max(statuses, key=_SEVERITY.__getitem__, default=HealthStatus.HEALTHY)


class HealthMonitor:
    """
    System health checks.

    Features:
    - RPC pool, storage, session and notification checks
    - Health history (last 100 checks)
    - Alerts for non-healthy checks (last 50)
    """

    def __init__(
        self,
        pool: RPCEndpointPool,
        manager: "IndexerManager | None" = None,
        snapshot_store: SnapshotStore | None = None,
        notifier: ProgressNotifier | None = None,
        metrics: MetricsCollector | None = None,
        breakers: CircuitBreakerRegistry | None = None,
        interval: float = HEALTH_MONITOR_INTERVAL,
        history_limit: int = HEALTH_HISTORY_LIMIT,
        alerts_limit: int = HEALTH_ALERTS_LIMIT,
    ) -> None:
        self.pool = pool
        self.manager = manager
        self.snapshot_store = snapshot_store
        self.notifier = notifier
        self.metrics = metrics
        self.breakers = breakers
        self.interval = interval

        self._history: deque[dict[str, Any]] = deque(maxlen=history_limit)
        self._alerts: deque[dict[str, Any]] = deque(maxlen=alerts_limit)
        self._current: dict[str, Any] | None = None
        self._task: asyncio.Task | None = None

    async def _check_storage(self) -> dict[str, Any]:
        if self.snapshot_store is None:
            return {"status": str(HealthStatus.HEALTHY), "configured": False}
        try:
            result = await self.snapshot_store.check_health()
        except Exception as e:
            logger.error(f"[HealthMonitor] Storage check failed: {e}")
            return {"status": str(HealthStatus.UNHEALTHY), "error": str(e)}
        status = HealthStatus.HEALTHY if result.get("healthy") else HealthStatus.UNHEALTHY
        return {"status": str(status), **result}

    def _check_indexer(self) -> dict[str, Any]:
        if self.manager is None:
            return {"status": str(HealthStatus.HEALTHY), "configured": False}

        counts = self.manager.get_session_counts()
        failed = counts.get(str(SessionStatus.FAILED), 0)
        status = HealthStatus.HEALTHY
        if failed or self.manager.is_shutting_down:
            status = HealthStatus.DEGRADED
        return {
            "status": str(status),
            "sessions": counts,
            "active": len(self.manager.get_active_indexers()),
            "shutting_down": self.manager.is_shutting_down,
        }

    def _check_notifications(self) -> dict[str, Any]:
        if self.notifier is None:
            return {"status": str(HealthStatus.HEALTHY), "configured": False}
        stats = self.notifier.get_stats()
        status = HealthStatus.HEALTHY if stats["running"] else HealthStatus.DEGRADED
        return {"status": str(status), **stats}

    async def perform_health_check(self) -> dict[str, Any]:
        """
        Run every component check once.

        Returns:
            Dict with overall status, timestamp and per-component results
        """
        components = {
            "rpc": self.pool.check_rpc_health(),
            "storage": await self._check_storage(),
            "indexer": self._check_indexer(),
            "notifications": self._check_notifications(),
        }
        overall = _worst([HealthStatus(c["status"]) for c in components.values()])

        result = {
            "status": str(overall),
            "timestamp": to_iso(utc_now()),
            "components": components,
        }
        self._current = result
        self._history.append(result)

        if overall != HealthStatus.HEALTHY:
            failing = [
                name for name, c in components.items()
                if c["status"] != str(HealthStatus.HEALTHY)
            ]
            self._alerts.append({
                "status": str(overall),
                "components": failing,
                "timestamp": result["timestamp"],
            })
            logger.warning(f"[HealthMonitor] System {overall}: {', '.join(failing)}")

        return result

    async def _monitor_loop(self) -> None:
        while True:
            try:
                await self.perform_health_check()
            except Exception as e:
                logger.error(f"[HealthMonitor] Health check failed: {e}")
            await asyncio.sleep(self.interval)

    def start_monitoring(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.create_task(self._monitor_loop(), name="health-monitor")
        logger.info(f"[HealthMonitor] Monitoring started (every {self.interval}s)")

    async def stop_monitoring(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("[HealthMonitor] Monitoring stopped")

    def get_current_health(self) -> dict[str, Any] | None:
        return self._current

    def get_health_history(self, limit: int | None = None) -> list[dict[str, Any]]:
        history = list(self._history)
        return history[-limit:] if limit else history

    def get_alerts(self, limit: int | None = None) -> list[dict[str, Any]]:
        alerts = list(self._alerts)
        return alerts[-limit:] if limit else alerts

    async def get_detailed_health(self) -> dict[str, Any]:
        current = await self.perform_health_check()
        return {
            **current,
            "rpc_endpoints": self.pool.get_status(),
            "metrics": self.metrics.get_metrics() if self.metrics else None,
            "circuit_breakers": [
                {
                    "name": mask_url(state.name) if "://" in state.name else state.name,
                    "state": str(state.state),
                    "failure_count": state.failure_count,
                }
                for state in (self.breakers.get_states() if self.breakers else [])
            ],
            "recent_alerts": self.get_alerts(limit=10),
        }
