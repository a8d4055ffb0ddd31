"""
Error types for the fiscal snapshot engine.

This module defines all exception types raised by the engine:
- SnapshotError: Base exception
- NotFoundError: Book, snapshot or transaction absent
- ProtectedResourceError: Deleting a protected snapshot
- ValidationError: Malformed request payload or unsupported option
- PersistenceError: Underlying SQLite failure

Invariants:
    - All errors inherit from SnapshotError
    - Every error carries a status_code a transport layer can surface as-is
    - PersistenceError keeps the storage message intact
"""

from __future__ import annotations

from typing import Any


class SnapshotError(Exception):
    """Base exception for all snapshot engine errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
        status_code: HTTP-style status for transport layers
    """

    status_code = 500

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "SNAPSHOT_ERROR"
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Serialize for an error response body."""
        return {"error": self.message, "error_code": self.code, "details": self.details}


class NotFoundError(SnapshotError):
    """Resource not found.

    Raised when:
    - Fiscal book doesn't exist
    - Snapshot doesn't exist
    - Snapshot transaction doesn't exist
    """

    status_code = 404

    def __init__(self, message: str, resource_type: str, resource_id: str) -> None:
        super().__init__(
            message,
            code="NOT_FOUND",
            details={"resource_type": resource_type, "resource_id": resource_id},
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class ProtectedResourceError(SnapshotError):
    """Attempt to delete a protected snapshot.

    Protection must be removed explicitly before deletion.
    """

    status_code = 400

    def __init__(self, snapshot_id: str) -> None:
        super().__init__(
            "Cannot delete a protected snapshot. Remove protection first.",
            code="PROTECTED_RESOURCE",
            details={"snapshot_id": snapshot_id},
        )
        self.snapshot_id = snapshot_id


class ValidationError(SnapshotError):
    """Request validation failed.

    Raised when:
    - Tags payload is not a list of strings
    - Protection flag is not a boolean
    - Annotation content is missing
    - Export format is unsupported
    - Schedule configuration is out of range
    """

    status_code = 400

    def __init__(
        self,
        message: str,
        field_name: str | None = None,
        errors: list[str] | None = None,
    ) -> None:
        super().__init__(
            message,
            code="VALIDATION_ERROR",
            details={"field": field_name, "errors": errors or []},
        )
        self.field_name = field_name
        self.errors = errors or []


class PersistenceError(SnapshotError):
    """Underlying storage failure. The storage message is passed through."""

    status_code = 500

    def __init__(self, message: str, operation: str | None = None) -> None:
        super().__init__(message, code="PERSISTENCE_ERROR", details={"operation": operation})
        self.operation = operation
