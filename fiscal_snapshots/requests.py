"""
Request models for snapshot operations.

Each model enumerates exactly the fields an operation accepts. Snapshot
headers are immutable apart from tags, protection and annotations, so there
is no generic update model.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, StrictBool, StrictStr, field_validator, model_validator

from .models import ScheduleFrequency


class CreateSnapshotRequest(BaseModel):
    """Request to capture a snapshot manually."""

    name: StrictStr | None = Field(None, description="Snapshot name")
    description: StrictStr | None = Field(None, description="Snapshot description")
    tags: list[StrictStr] = Field(default_factory=list, description="Snapshot tags")


class SnapshotMetadataUpdate(BaseModel):
    """Mutable snapshot header fields."""

    tags: list[StrictStr] | None = Field(None, description="Replacement tag list")
    is_protected: StrictBool | None = Field(None, description="Protection flag")


class SnapshotListQuery(BaseModel):
    """Filter for listing snapshots.

    Tags may be a list or a comma-separated string ("audit,q1").
    """

    tags: list[StrictStr] | None = Field(None, description="Tags every snapshot must carry")

    @field_validator("tags", mode="before")
    @classmethod
    def split_tag_string(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [tag for tag in value.split(",") if tag.strip()]
        return value


class AnnotationRequest(BaseModel):
    """Request to annotate a snapshot or snapshot transaction."""

    content: StrictStr = Field(..., min_length=1, description="Annotation text")
    created_by: StrictStr = Field("system", description="Annotation author")

    @field_validator("content")
    @classmethod
    def content_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Annotation content is required")
        return value


class PageRequest(BaseModel):
    """Pagination parameters."""

    limit: int | None = Field(None, ge=1, description="Page size")
    skip: int = Field(0, ge=0, description="Entities to skip")


class ScheduleUpdateRequest(BaseModel):
    """Request to create or replace a book's snapshot schedule."""

    enabled: StrictBool = Field(True, description="Enable scheduling")
    frequency: ScheduleFrequency = Field(
        ScheduleFrequency.MONTHLY, description="weekly, monthly or before-status-change"
    )
    day_of_week: int | None = Field(None, ge=0, le=6, description="0 = Sunday, weekly only")
    day_of_month: int | None = Field(None, ge=1, le=31, description="Monthly only")
    retention_count: int | None = Field(None, ge=1, le=100, description="Scheduled snapshots kept")
    auto_tags: list[StrictStr] | None = Field(None, description="Tags for automatic snapshots")

    @model_validator(mode="after")
    def weekly_needs_weekday(self) -> ScheduleUpdateRequest:
        if self.frequency is ScheduleFrequency.WEEKLY and self.day_of_week is None:
            raise ValueError("day_of_week is required for weekly schedules")
        return self


class CloneOverrides(BaseModel):
    """Descriptive fields overriding the snapshot's values in a clone."""

    book_name: StrictStr | None = Field(None, description="New book name")
    book_type: StrictStr | None = Field(None, description="New book type")
    book_period: StrictStr | None = Field(None, description="New book period")
    reference: StrictStr | None = Field(None, description="New book reference")
    fiscal_data: dict[str, Any] | None = Field(None, description="New fiscal data")
    company_id: StrictStr | None = Field(None, description="New owning company")
    notes: StrictStr | None = Field(None, description="New notes")


class RollbackRequest(BaseModel):
    """Request to roll a book back to a snapshot."""

    create_pre_rollback_snapshot: StrictBool | None = Field(
        None, description="Capture a safety snapshot first (service default if omitted)"
    )
