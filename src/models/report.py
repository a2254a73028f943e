"""Report model: one finalized incident report.

Written once by the intake flow (or the app submission endpoint). The only
later write is the viewer-side priority edit.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Float, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from src.models.base import Base, RecordMixin


class Report(RecordMixin, Base):
    """A persisted incident report."""

    __tablename__ = "reports"
    __table_args__ = (Index("ix_reports_created_at_desc", "created_at"),)

    # Classification (nullable: the buffered intake mode does not collect them)
    type: Mapped[str | None] = mapped_column(String(20))
    priority: Mapped[str | None] = mapped_column(String(10), comment="high/medium/low, NULL = unidentified")

    # Description
    text: Mapped[str | None] = mapped_column(Text)

    # Social-media / news evidence and its scraped preview
    source_url: Mapped[str | None] = mapped_column(Text)
    og_title: Mapped[str | None] = mapped_column(Text)
    og_description: Mapped[str | None] = mapped_column(Text)
    og_image: Mapped[str | None] = mapped_column(Text)
    og_site: Mapped[str | None] = mapped_column(String(255))

    # Directly uploaded evidence (Media Store URLs)
    evidence_image_url: Mapped[str | None] = mapped_column(Text)
    evidence_voice_url: Mapped[str | None] = mapped_column(Text)

    # Location
    reporter_lat: Mapped[float] = mapped_column(Float, nullable=False)
    reporter_lng: Mapped[float] = mapped_column(Float, nullable=False)
    location_name: Mapped[str | None] = mapped_column(Text)

    # Provenance
    source_platform: Mapped[str] = mapped_column(String(20), nullable=False)
    reporter_name: Mapped[str | None] = mapped_column(String(255))

    # Viewer-side priority edit
    priority_updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    def __repr__(self) -> str:
        return f"<Report id={self.id} type={self.type} priority={self.priority} platform={self.source_platform}>"
