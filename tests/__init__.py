"""
Fiscal Snapshots Test Suite.

This package contains:
- unit/: Unit tests (pure logic, no database)
- integration/: Integration tests (SQLite-backed flows)
"""
