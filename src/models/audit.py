"""Append-only trail of SystemEvents (session lifecycle, evidence, persistence)."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, String
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from src.models.base import Base, RecordMixin


class AuditLog(RecordMixin, Base):
    __tablename__ = "audit_log"

    event_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, unique=True)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # Channel user id; NULL for events with no reporter (enrichment, dashboard edits)
    user_id: Mapped[str | None] = mapped_column(String(100), index=True)
    report_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), index=True)
    source_platform: Mapped[str | None] = mapped_column(String(20))
    source_module: Mapped[str | None] = mapped_column(String(100))

    data: Mapped[dict[str, Any] | None] = mapped_column(JSONB)

    def __repr__(self) -> str:
        return f"<AuditLog {self.event_type} user={self.user_id} report={self.report_id}>"
