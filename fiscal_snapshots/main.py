"""
Fiscal snapshot engine - process wiring.

This module assembles the engine from configuration:
- Logging (JSON or plain text)
- The SQLite database and its schema
- The SnapshotService facade

Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - The schema is created before the service is handed out
    - Logging is configured once per process

How to change safely:
    - New components are wired in build_service, never at import time
"""

from __future__ import annotations

import logging

import json_log_formatter

from .config import ServiceConfig
from .service import SnapshotService
from .store import Database

logger = logging.getLogger(__name__)


def setup_logging(config: ServiceConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Service configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]


async def build_service(config: ServiceConfig) -> SnapshotService:
    """Create the database schema and return a ready service.

    Args:
        config: Service configuration
    """
    config.log_config()

    db = Database(
        config.storage.db_path,
        wal_mode=config.storage.wal_mode,
        busy_timeout_ms=config.storage.busy_timeout_ms,
    )
    await db.initialize()
    return SnapshotService(db, config.snapshot)
