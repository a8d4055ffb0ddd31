"""
Domain model for fiscal books and their snapshots.

Fiscal books and their live transactions are owned by the ledger; snapshots,
snapshot transactions and schedules are owned by the snapshot engine.

Invariants:
    - Denormalized copies (FiscalBookData, TransactionData) never alias the
      live entities they were taken from; use copy() when handing them on
    - Tags are normalized to trimmed lower-case strings without duplicates
    - Timestamps are timezone-aware and persisted as UTC
"""

from __future__ import annotations

import copy as _copy
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime | None) -> str | None:
    """Serialize a datetime for storage (UTC, fixed microsecond precision)."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_timestamp(value: Any) -> datetime | None:
    """Parse a stored timestamp. Naive values are taken as UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def normalize_tags(tags: list[str] | tuple[str, ...] | None) -> list[str]:
    """Trim and lower-case tags, dropping empties and duplicates."""
    normalized: list[str] = []
    for tag in tags or ():
        value = str(tag).strip().lower()
        if value and value not in normalized:
            normalized.append(value)
    return normalized


class CreationSource(Enum):
    """How a snapshot came to exist."""

    MANUAL = "manual"
    SCHEDULED = "scheduled"
    BEFORE_STATUS_CHANGE = "before-status-change"


class ScheduleFrequency(Enum):
    """Supported schedule frequencies."""

    WEEKLY = "weekly"
    MONTHLY = "monthly"
    BEFORE_STATUS_CHANGE = "before-status-change"


class BookStatus(Enum):
    """Fiscal book lifecycle status."""

    OPEN = "open"
    CLOSED = "closed"
    IN_REVIEW = "in-review"
    ARCHIVED = "archived"


@dataclass
class TransactionData:
    """Business fields of a ledger transaction.

    Used both for live transactions and for the denormalized copies held by
    snapshot transactions.
    """

    transaction_date: datetime | None = None
    transaction_period: str | None = None
    transaction_source: str | None = None
    transaction_value: str | None = None
    transaction_name: str | None = None
    transaction_description: str | None = None
    transaction_fiscal_note: str | None = None
    transaction_id: str | None = None
    transaction_status: str | None = None
    transaction_location: str | None = None
    transaction_type: str | None = None
    transaction_installments: str | None = None
    installments: dict[str, Any] | None = None
    transaction_category: str | None = None
    freight_value: str | None = None
    payment_method: str | None = None
    items: list[dict[str, Any]] = field(default_factory=list)
    company_name: str | None = None
    company_seller_name: str | None = None
    company_cnpj: str | None = None
    company_id: str | None = None

    def copy(self) -> TransactionData:
        """Deep copy with no shared mutable state."""
        return _copy.deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["transaction_date"] = format_timestamp(self.transaction_date)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TransactionData:
        known = {f.name for f in fields(cls)}
        values = {k: _copy.deepcopy(v) for k, v in data.items() if k in known}
        values["transaction_date"] = parse_timestamp(values.get("transaction_date"))
        if values.get("items") is None:
            values["items"] = []
        return cls(**values)


@dataclass
class Transaction:
    """A live transaction linked to a fiscal book."""

    id: str
    fiscal_book_id: str
    data: TransactionData
    created_at: datetime


@dataclass
class FiscalBookData:
    """Descriptive fields of a fiscal book."""

    book_name: str = ""
    book_type: str = "other"
    book_period: str = ""
    reference: str | None = None
    status: str = BookStatus.OPEN.value
    fiscal_data: dict[str, Any] = field(default_factory=dict)
    company_id: str | None = None
    notes: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    closed_at: datetime | None = None

    def copy(self) -> FiscalBookData:
        return _copy.deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        for key in ("created_at", "updated_at", "closed_at"):
            data[key] = format_timestamp(getattr(self, key))
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FiscalBookData:
        known = {f.name for f in fields(cls)}
        values = {k: _copy.deepcopy(v) for k, v in data.items() if k in known}
        for key in ("created_at", "updated_at", "closed_at"):
            values[key] = parse_timestamp(values.get(key))
        if values.get("fiscal_data") is None:
            values["fiscal_data"] = {}
        return cls(**values)


@dataclass
class FiscalBook:
    """A fiscal book header."""

    id: str
    data: FiscalBookData

    @property
    def status(self) -> str:
        return self.data.status


@dataclass
class Annotation:
    """A free-form note attached to a snapshot or snapshot transaction."""

    content: str
    created_by: str = "system"
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "content": self.content,
            "created_by": self.created_by,
            "created_at": format_timestamp(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Annotation:
        return cls(
            content=data["content"],
            created_by=data.get("created_by") or "system",
            created_at=parse_timestamp(data.get("created_at")) or utc_now(),
        )


@dataclass(frozen=True)
class SnapshotStatistics:
    """Aggregates computed once, at capture time."""

    transaction_count: int = 0
    total_income: float = 0.0
    total_expenses: float = 0.0
    net_amount: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SnapshotStatistics:
        return cls(
            transaction_count=int(data.get("transaction_count", 0)),
            total_income=float(data.get("total_income", 0.0)),
            total_expenses=float(data.get("total_expenses", 0.0)),
            net_amount=float(data.get("net_amount", 0.0)),
        )


@dataclass
class FiscalBookSnapshot:
    """Immutable snapshot header.

    Only tags, is_protected and annotations change after creation.
    """

    id: str
    original_fiscal_book_id: str
    snapshot_name: str
    snapshot_description: str | None
    creation_source: CreationSource
    fiscal_book_data: FiscalBookData
    statistics: SnapshotStatistics
    created_at: datetime
    tags: list[str] = field(default_factory=list)
    is_protected: bool = False
    annotations: list[Annotation] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "original_fiscal_book_id": self.original_fiscal_book_id,
            "snapshot_name": self.snapshot_name,
            "snapshot_description": self.snapshot_description,
            "creation_source": self.creation_source.value,
            "tags": list(self.tags),
            "is_protected": self.is_protected,
            "annotations": [a.to_dict() for a in self.annotations],
            "fiscal_book_data": self.fiscal_book_data.to_dict(),
            "statistics": self.statistics.to_dict(),
            "created_at": format_timestamp(self.created_at),
        }


@dataclass
class SnapshotTransaction:
    """Denormalized copy of one transaction as it was at capture time."""

    id: str
    snapshot_id: str
    original_transaction_id: str | None
    transaction_data: TransactionData
    copied_at: datetime
    annotations: list[Annotation] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "snapshot_id": self.snapshot_id,
            "original_transaction_id": self.original_transaction_id,
            "transaction_data": self.transaction_data.to_dict(),
            "annotations": [a.to_dict() for a in self.annotations],
            "copied_at": format_timestamp(self.copied_at),
        }


@dataclass
class SnapshotSchedule:
    """Automatic snapshot configuration for one fiscal book."""

    fiscal_book_id: str
    enabled: bool = False
    frequency: ScheduleFrequency = ScheduleFrequency.MONTHLY
    day_of_week: int | None = None
    day_of_month: int | None = 1
    retention_count: int = 12
    auto_tags: list[str] = field(default_factory=lambda: ["auto"])
    last_executed_at: datetime | None = None
    next_execution_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def state(self) -> str:
        """One of disabled, enabled-weekly, enabled-monthly, enabled-event."""
        if not self.enabled:
            return "disabled"
        if self.frequency is ScheduleFrequency.WEEKLY:
            return "enabled-weekly"
        if self.frequency is ScheduleFrequency.MONTHLY:
            return "enabled-monthly"
        return "enabled-event"

    def to_dict(self) -> dict[str, Any]:
        return {
            "fiscal_book_id": self.fiscal_book_id,
            "enabled": self.enabled,
            "frequency": self.frequency.value,
            "day_of_week": self.day_of_week,
            "day_of_month": self.day_of_month,
            "retention_count": self.retention_count,
            "auto_tags": list(self.auto_tags),
            "last_executed_at": format_timestamp(self.last_executed_at),
            "next_execution_at": format_timestamp(self.next_execution_at),
            "created_at": format_timestamp(self.created_at),
            "updated_at": format_timestamp(self.updated_at),
        }
