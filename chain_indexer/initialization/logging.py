"""
Initialization - Logging Module.

Configures loguru sinks with rotation and retention policies.
"""

import sys
from pathlib import Path

from loguru import logger

from chain_indexer.config.settings import Settings


def setup_logging(app_settings: Settings) -> None:
    """Configure logger with console output and rotated log files."""
    logger.remove()
    logger.add(sys.stderr, level=app_settings.log_level)

    log_dir = Path(app_settings.log_dir)
    logger.add(
        log_dir / "indexer.log",
        rotation="1 day",
        retention="7 days",
        level=app_settings.log_level,
        encoding="utf-8",
    )
    logger.add(
        log_dir / "errors.log",
        rotation="1 day",
        retention="30 days",
        level="ERROR",
        encoding="utf-8",
        backtrace=True,
    )

    logger.info(f"Starting chain indexer ({app_settings.environment})...")
