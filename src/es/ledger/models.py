"""SQLModel models for the enrollment-sync database.

StudentDocument: one row per normalized email, holding student info and the
    student's course records as JSON documents.
SyncRun: one row per pipeline run, for operator visibility.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    """Return current UTC time (timezone-aware)."""
    return datetime.now(UTC)


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class SyncTrigger(str, Enum):
    """What started a sync run."""

    TIMER = "timer"
    MANUAL = "manual"  # HTTP trigger
    CLI = "cli"


class SyncStatus(str, Enum):
    """Status of a sync run."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class SyncRun(SQLModel, table=True):
    """Track individual sync runs with their window and summary counts."""

    __tablename__ = "sync_run"

    id: int | None = Field(default=None, primary_key=True)
    started_at: datetime = Field(default_factory=_utcnow)
    completed_at: datetime | None = Field(default=None)
    trigger: SyncTrigger = Field(default=SyncTrigger.TIMER)
    window_start: datetime | None = Field(default=None)
    window_end: datetime | None = Field(default=None)
    status: SyncStatus = Field(default=SyncStatus.RUNNING)
    error_message: str | None = Field(default=None)

    # Summary counts
    orders_fetched: int = Field(default=0)
    courses_mapped: int = Field(default=0)
    persisted_count: int = Field(default=0)
    created_count: int = Field(default=0)
    merged_count: int = Field(default=0)
    invalid_count: int = Field(default=0)

    def mark_completed(
        self,
        orders_fetched: int = 0,
        courses_mapped: int = 0,
        persisted_count: int = 0,
        created_count: int = 0,
        merged_count: int = 0,
        invalid_count: int = 0,
    ) -> None:
        """Mark the sync run as completed with counts."""
        self.completed_at = _utcnow()
        self.status = SyncStatus.COMPLETED
        self.orders_fetched = orders_fetched
        self.courses_mapped = courses_mapped
        self.persisted_count = persisted_count
        self.created_count = created_count
        self.merged_count = merged_count
        self.invalid_count = invalid_count

    def mark_failed(self, error_message: str) -> None:
        """Mark the sync run as failed with error message."""
        self.completed_at = _utcnow()
        self.status = SyncStatus.FAILED
        self.error_message = error_message

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "started_at": _isoformat(self.started_at),
            "completed_at": _isoformat(self.completed_at),
            "trigger": self.trigger.value,
            "window_start": _isoformat(self.window_start),
            "window_end": _isoformat(self.window_end),
            "status": self.status.value,
            "error_message": self.error_message,
            "orders_fetched": self.orders_fetched,
            "courses_mapped": self.courses_mapped,
            "persisted_count": self.persisted_count,
            "created_count": self.created_count,
            "merged_count": self.merged_count,
            "invalid_count": self.invalid_count,
        }


class StudentDocument(SQLModel, table=True):
    """Per-student aggregate keyed by normalized email.

    ``customer_email`` is the lookup field used by earlier document shapes;
    it is still written so both lookup paths resolve the same row.
    ``version`` is the optimistic concurrency token checked by merges.
    """

    __tablename__ = "student_document"

    id: int | None = Field(default=None, primary_key=True)
    email: str = Field(unique=True, index=True)
    customer_email: str | None = Field(default=None, index=True)
    student_info: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    courses: list[dict[str, Any]] = Field(
        default_factory=list, sa_column=Column(JSON, nullable=False)
    )
    synced: bool = Field(default=True)
    version: int = Field(default=1)
    created_at: datetime = Field(default_factory=_utcnow)
    last_synced_at: datetime = Field(default_factory=_utcnow)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "email": self.email,
            "customer_email": self.customer_email,
            "student_info": self.student_info,
            "courses": self.courses,
            "synced": self.synced,
            "version": self.version,
            "created_at": _isoformat(self.created_at),
            "last_synced_at": _isoformat(self.last_synced_at),
        }
