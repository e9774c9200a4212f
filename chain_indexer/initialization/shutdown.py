"""
Initialization - Shutdown Module.

Graceful shutdown of sessions, monitors and connections.
"""

from aiohttp import web
from loguru import logger

from chain_indexer.health_server import stop_health_server
from chain_indexer.initialization.services import IndexerServices


async def shutdown_handler(
    services: IndexerServices,
    runner: web.AppRunner | None = None,
    timeout: float | None = None,
) -> None:
    """Handle graceful shutdown."""
    logger.info("Graceful shutdown initiated...")

    # Sessions first: pause, persist, stop
    try:
        await services.manager.shutdown(timeout)
    except Exception as e:
        logger.warning(f"Error shutting down indexer manager: {e}")

    try:
        await services.monitor.stop_monitoring()
    except Exception as e:
        logger.warning(f"Error stopping health monitor: {e}")

    try:
        await services.explorer.close()
    except Exception as e:
        logger.warning(f"Error closing explorer client: {e}")

    if runner is not None:
        await stop_health_server(runner)

    if services.engine is not None:
        try:
            await services.engine.dispose()
            logger.info("Database connections closed")
        except Exception as e:
            logger.warning(f"Error closing database: {e}")

    logger.info("Graceful shutdown complete")
