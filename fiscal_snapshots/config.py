"""
Configuration management for the fiscal snapshot engine.

All configuration is done via environment variables.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - Retention and page-size limits are validated before use

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Keep defaults in sync with the schedule request model limits
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass(frozen=True)
class StorageConfig:
    """SQLite storage configuration.

    Attributes:
        db_path: Path of the SQLite database file
        wal_mode: SQLite WAL mode enabled
        busy_timeout_ms: SQLite busy timeout in milliseconds
    """

    db_path: str = "./fiscal_snapshots.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables."""
        return cls(
            db_path=os.getenv("SNAPSHOT_DB_PATH", "./fiscal_snapshots.db"),
            wal_mode=_env_bool("SQLITE_WAL_MODE", "true"),
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
        )


@dataclass(frozen=True)
class SnapshotConfig:
    """Snapshot behaviour defaults.

    Attributes:
        default_retention_count: Scheduled snapshots kept per book
        default_auto_tags: Tags applied to schedule-created snapshots
        page_size: Default page size for listings
        max_page_size: Upper bound for a requested page size
        pre_rollback_default: Whether rollback takes a safety snapshot by default
    """

    default_retention_count: int = 12
    default_auto_tags: tuple[str, ...] = ("auto",)
    page_size: int = 50
    max_page_size: int = 500
    pre_rollback_default: bool = True

    @classmethod
    def from_env(cls) -> SnapshotConfig:
        """Load configuration from environment variables."""
        tags = os.getenv("SNAPSHOT_DEFAULT_AUTO_TAGS", "auto")
        return cls(
            default_retention_count=int(os.getenv("SNAPSHOT_DEFAULT_RETENTION", "12")),
            default_auto_tags=tuple(t.strip().lower() for t in tags.split(",") if t.strip()),
            page_size=int(os.getenv("SNAPSHOT_PAGE_SIZE", "50")),
            max_page_size=int(os.getenv("SNAPSHOT_MAX_PAGE_SIZE", "500")),
            pre_rollback_default=_env_bool("SNAPSHOT_PRE_ROLLBACK_DEFAULT", "true"),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class ServiceConfig:
    """Complete service configuration.

    Attributes:
        storage: SQLite storage configuration
        snapshot: Snapshot behaviour defaults
        observability: Logging configuration
    """

    storage: StorageConfig = field(default_factory=StorageConfig)
    snapshot: SnapshotConfig = field(default_factory=SnapshotConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ServiceConfig:
        """Load complete configuration from environment variables.

        Raises:
            ValueError: If configuration is invalid.
        """
        config = cls(
            storage=StorageConfig.from_env(),
            snapshot=SnapshotConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )
        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if not self.storage.db_path:
            raise ValueError("SNAPSHOT_DB_PATH must not be empty")
        if not 1 <= self.snapshot.default_retention_count <= 100:
            raise ValueError("SNAPSHOT_DEFAULT_RETENTION must be between 1 and 100")
        if self.snapshot.page_size < 1:
            raise ValueError("SNAPSHOT_PAGE_SIZE must be positive")
        if self.snapshot.max_page_size < self.snapshot.page_size:
            raise ValueError("SNAPSHOT_MAX_PAGE_SIZE must be >= SNAPSHOT_PAGE_SIZE")
        if self.observability.log_format not in ("json", "text"):
            raise ValueError(
                f"Invalid LOG_FORMAT '{self.observability.log_format}'. Must be one of: json, text"
            )

        db_dir = os.path.dirname(os.path.abspath(self.storage.db_path))
        if not os.path.exists(db_dir):
            logger.warning(
                f"Database directory does not exist: {db_dir}. It will be created on first write."
            )

    def log_config(self) -> None:
        """Log configuration summary."""
        logger.info(
            "Service configuration loaded",
            extra={
                "db_path": self.storage.db_path,
                "wal_mode": self.storage.wal_mode,
                "default_retention_count": self.snapshot.default_retention_count,
                "default_auto_tags": list(self.snapshot.default_auto_tags),
                "log_level": self.observability.log_level,
            },
        )
