"""
Unit tests for configuration loading and validation.
"""

import pytest

from fiscal_snapshots.config import (
    ObservabilityConfig,
    ServiceConfig,
    SnapshotConfig,
    StorageConfig,
)


class TestFromEnv:
    """Tests for environment loading."""

    def test_defaults(self, monkeypatch):
        for name in (
            "SNAPSHOT_DB_PATH",
            "SNAPSHOT_DEFAULT_RETENTION",
            "SNAPSHOT_DEFAULT_AUTO_TAGS",
            "LOG_FORMAT",
        ):
            monkeypatch.delenv(name, raising=False)

        config = ServiceConfig.from_env()

        assert config.storage.db_path == "./fiscal_snapshots.db"
        assert config.snapshot.default_retention_count == 12
        assert config.snapshot.default_auto_tags == ("auto",)
        assert config.snapshot.page_size == 50
        assert config.observability.log_format == "json"

    def test_overrides(self, monkeypatch, tmp_path):
        monkeypatch.setenv("SNAPSHOT_DB_PATH", str(tmp_path / "books.db"))
        monkeypatch.setenv("SQLITE_WAL_MODE", "false")
        monkeypatch.setenv("SNAPSHOT_DEFAULT_RETENTION", "4")
        monkeypatch.setenv("SNAPSHOT_DEFAULT_AUTO_TAGS", "Auto, Nightly ,")
        monkeypatch.setenv("SNAPSHOT_PRE_ROLLBACK_DEFAULT", "false")

        config = ServiceConfig.from_env()

        assert config.storage.db_path.endswith("books.db")
        assert config.storage.wal_mode is False
        assert config.snapshot.default_retention_count == 4
        assert config.snapshot.default_auto_tags == ("auto", "nightly")
        assert config.snapshot.pre_rollback_default is False


class TestValidate:
    """Tests for ServiceConfig.validate."""

    def test_valid_default(self):
        ServiceConfig().validate()

    def test_retention_out_of_range(self):
        config = ServiceConfig(snapshot=SnapshotConfig(default_retention_count=0))
        with pytest.raises(ValueError, match="SNAPSHOT_DEFAULT_RETENTION"):
            config.validate()

    def test_max_page_size_below_page_size(self):
        config = ServiceConfig(snapshot=SnapshotConfig(page_size=100, max_page_size=10))
        with pytest.raises(ValueError, match="SNAPSHOT_MAX_PAGE_SIZE"):
            config.validate()

    def test_unknown_log_format(self):
        config = ServiceConfig(observability=ObservabilityConfig(log_format="xml"))
        with pytest.raises(ValueError, match="LOG_FORMAT"):
            config.validate()

    def test_empty_db_path(self):
        config = ServiceConfig(storage=StorageConfig(db_path=""))
        with pytest.raises(ValueError):
            config.validate()
