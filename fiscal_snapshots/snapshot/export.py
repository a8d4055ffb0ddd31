"""
Snapshot export to JSON and CSV.

JSON carries the full header and every transaction copy. CSV carries one
row per transaction copy with a fixed column set.
"""

from __future__ import annotations

import csv
import io
import json
import logging
from dataclasses import dataclass
from datetime import timezone
from typing import Any

from ..errors import NotFoundError, ValidationError
from ..models import FiscalBookSnapshot, SnapshotTransaction
from ..store import SnapshotStore

logger = logging.getLogger(__name__)

CSV_HEADER = [
    "Date",
    "Name",
    "Description",
    "Value",
    "Type",
    "Status",
    "Category",
    "Payment Method",
    "Company",
]

CONTENT_TYPES = {
    "json": "application/json",
    "csv": "text/csv",
}


@dataclass
class ExportResult:
    """A rendered export.

    Attributes:
        format: "json" or "csv"
        content_type: MIME type of data
        data: Rendered document
        file_name: Suggested download name
    """

    format: str
    content_type: str
    data: str
    file_name: str


def build_export_document(
    snapshot: FiscalBookSnapshot,
    transactions: list[SnapshotTransaction],
) -> dict[str, Any]:
    """Structured dump of a snapshot and its transaction copies."""
    return {
        "snapshot": {
            "id": snapshot.id,
            "name": snapshot.snapshot_name,
            "description": snapshot.snapshot_description,
            "created_at": snapshot.to_dict()["created_at"],
            "creation_source": snapshot.creation_source.value,
            "tags": list(snapshot.tags),
            "is_protected": snapshot.is_protected,
            "fiscal_book_data": snapshot.fiscal_book_data.to_dict(),
            "statistics": snapshot.statistics.to_dict(),
            "annotations": [a.to_dict() for a in snapshot.annotations],
        },
        "transactions": [
            {
                **st.transaction_data.to_dict(),
                "annotations": [a.to_dict() for a in st.annotations],
            }
            for st in transactions
        ],
    }


def render_csv(transactions: list[SnapshotTransaction]) -> str:
    """Render transaction copies as CSV.

    The header row is written as-is; every data cell is double-quoted with
    embedded quotes doubled. Lines are separated by a single newline.
    """
    buffer = io.StringIO()
    csv.writer(buffer, lineterminator="\n").writerow(CSV_HEADER)

    rows = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    for st in transactions:
        data = st.transaction_data
        date = ""
        if data.transaction_date is not None:
            date = data.transaction_date.astimezone(timezone.utc).date().isoformat()
        rows.writerow(
            [
                date,
                data.transaction_name or "",
                data.transaction_description or "",
                data.transaction_value or "",
                data.transaction_type or "",
                data.transaction_status or "",
                data.transaction_category or "",
                data.payment_method or "",
                data.company_name or "",
            ]
        )

    return buffer.getvalue().rstrip("\n")


class SnapshotExporter:
    """Renders snapshots for download.

    Example:
        >>> exporter = SnapshotExporter(store)
        >>> result = await exporter.export(snapshot_id, "csv")
        >>> result.file_name
        'snapshot-Month end-2024-01-31.csv'
    """

    def __init__(self, store: SnapshotStore) -> None:
        self.store = store

    async def export(self, snapshot_id: str, format: str = "json") -> ExportResult:
        """Export a snapshot.

        Raises:
            ValidationError: If the format is not json or csv
            NotFoundError: If the snapshot doesn't exist
        """
        format = (format or "json").lower()
        if format not in CONTENT_TYPES:
            raise ValidationError(
                f"Unsupported export format '{format}'. Must be one of: json, csv",
                field_name="format",
            )

        snapshot = await self.store.get_snapshot(snapshot_id)
        if snapshot is None:
            raise NotFoundError("Snapshot not found", "snapshot", snapshot_id)

        transactions = await self.store.get_snapshot_transactions(snapshot_id)

        if format == "json":
            data = json.dumps(build_export_document(snapshot, transactions), indent=2)
        else:
            data = render_csv(transactions)

        created = snapshot.created_at.astimezone(timezone.utc).date().isoformat()
        logger.debug(
            "Exported snapshot",
            extra={"snapshot_id": snapshot_id, "format": format, "rows": len(transactions)},
        )
        return ExportResult(
            format=format,
            content_type=CONTENT_TYPES[format],
            data=data,
            file_name=f"snapshot-{snapshot.snapshot_name}-{created}.{format}",
        )
