"""
Health check server.

Provides HTTP endpoints for health checks, metrics and session status.
"""

import asyncio

from aiohttp import web
from loguru import logger

from chain_indexer.services.indexer.indexer_manager import IndexerManager
from chain_indexer.services.monitoring.health_monitor import HealthMonitor
from chain_indexer.services.monitoring.metrics_collector import MetricsCollector

MONITOR_KEY = web.AppKey("monitor", HealthMonitor)
MANAGER_KEY = web.AppKey("manager", IndexerManager)
METRICS_KEY = web.AppKey("metrics", MetricsCollector)


async def health_handler(request: web.Request) -> web.Response:
    """
    Health check endpoint.

    Query:
        detailed: Non-empty to include endpoints, metrics and breaker states

    Returns:
        JSON response with component health; 503 when unhealthy
    """
    monitor = request.app[MONITOR_KEY]
    try:
        if request.query.get("detailed"):
            health = await monitor.get_detailed_health()
        else:
            health = await monitor.perform_health_check()
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        return web.json_response({"status": "unhealthy", "error": str(e)}, status=503)

    status = 503 if health["status"] == "unhealthy" else 200
    return web.json_response(health, status=status)


async def readiness_handler(request: web.Request) -> web.Response:
    """
    Readiness check endpoint.

    Returns:
        JSON response indicating if new sessions are accepted
    """
    manager = request.app[MANAGER_KEY]
    if manager.is_shutting_down:
        return web.json_response({"status": "not_ready", "ready": False}, status=503)
    return web.json_response({"status": "ready", "ready": True})


async def liveness_handler(request: web.Request) -> web.Response:
    """Liveness check endpoint."""
    return web.json_response({"status": "alive", "alive": True})


async def metrics_handler(request: web.Request) -> web.Response:
    metrics = request.app[METRICS_KEY]
    return web.json_response(metrics.get_metrics())


async def sessions_handler(request: web.Request) -> web.Response:
    manager = request.app[MANAGER_KEY]
    user_id = request.query.get("user_id")
    if user_id:
        status = manager.get_indexing_status(user_id)
        if status is None:
            return web.json_response({"error": f"No session for {user_id}"}, status=404)
        return web.json_response(status)
    return web.json_response({"sessions": manager.get_active_indexers()})


def create_health_app(
    monitor: HealthMonitor,
    manager: IndexerManager,
    metrics: MetricsCollector,
) -> web.Application:
    """Build the aiohttp application."""
    app = web.Application()
    app[MONITOR_KEY] = monitor
    app[MANAGER_KEY] = manager
    app[METRICS_KEY] = metrics
    app.router.add_get("/health", health_handler)
    app.router.add_get("/readiness", readiness_handler)
    app.router.add_get("/liveness", liveness_handler)
    app.router.add_get("/metrics", metrics_handler)
    app.router.add_get("/sessions", sessions_handler)
    return app


async def start_health_server(
    app: web.Application,
    host: str = "0.0.0.0",
    port: int = 8080,
) -> web.AppRunner:
    """
    Start health check server.

    Args:
        app: Application from create_health_app
        host: Host to bind to
        port: Port to bind to

    Returns:
        AppRunner for cleanup
    """
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()

    logger.info(f"Health check server started on {host}:{port}")
    logger.info(f"  - Health: http://{host}:{port}/health")
    logger.info(f"  - Metrics: http://{host}:{port}/metrics")
    logger.info(f"  - Sessions: http://{host}:{port}/sessions")
    return runner


async def stop_health_server(
    runner: web.AppRunner,
    timeout: int = 5,
) -> None:
    """
    Stop health check server gracefully.

    Args:
        runner: AppRunner to cleanup
        timeout: Maximum time to wait for cleanup in seconds
    """
    logger.info("Stopping health check server...")
    try:
        await asyncio.wait_for(runner.cleanup(), timeout=timeout)
        logger.info("Health check server stopped successfully")
    except TimeoutError:
        logger.warning(f"Health check server cleanup timed out after {timeout}s")
