"""
GenerationRecord model.

One row per app-generation attempt. The orchestrator reads the source
location from it and writes the preview deployment triple
(instance id, URL, expiration) back once a deploy succeeds.
"""
from datetime import datetime
from enum import Enum
from uuid import uuid4

from sqlalchemy import String, DateTime, Text, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class GenerationStatus(str, Enum):
    PENDING = "PENDING"
    GENERATING = "GENERATING"
    COMPLETE = "COMPLETE"
    FAILED = "FAILED"


TERMINAL_STATUSES = frozenset({GenerationStatus.COMPLETE.value, GenerationStatus.FAILED.value})


class PreviewKind(str, Enum):
    DRAFT = "draft"  # Expires after the draft TTL, eligible for cleanup
    STORE = "store"  # Attached to a published listing, never expires


class GenerationRecord(Base):
    __tablename__ = "generated_apps"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    status: Mapped[str] = mapped_column(String(20), default=GenerationStatus.PENDING.value)

    # Source location: local workspace path (cached) and/or remote archive
    source_dir: Mapped[str | None] = mapped_column(Text, nullable=True)
    upload_blob_url: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Preview deployment triple, set and cleared together
    preview_instance_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    preview_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    preview_expires_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    screenshot: Mapped[str | None] = mapped_column(Text, nullable=True)  # data: URL
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    app_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("apps.id"), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def has_preview(self) -> bool:
        return self.preview_instance_id is not None

    def clear_preview(self) -> None:
        """Drop the preview triple. Source location is left alone."""
        self.preview_instance_id = None
        self.preview_url = None
        self.preview_expires_at = None

    def __repr__(self) -> str:
        return f"<GenerationRecord {self.id} status={self.status} preview={self.preview_instance_id}>"
