"""Pydantic schemas for the mobile-app report API."""

from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, HttpUrl, field_validator

from src.models.enums import IncidentType, Priority


class ReportSubmission(BaseModel):
    """Body of POST /api/reports, mirroring the app's report form."""

    type: IncidentType
    priority: Priority
    text: str = Field(min_length=1, max_length=5000)
    source_url: HttpUrl | None = None
    reporter_lat: float = Field(ge=-90, le=90)
    reporter_lng: float = Field(ge=-180, le=180)
    location_name: str | None = Field(default=None, max_length=500)
    reporter_name: str | None = Field(default=None, max_length=255)

    @field_validator("text")
    @classmethod
    def text_not_blank(cls, v: str) -> str:
        """Reject whitespace-only descriptions."""
        stripped = v.strip()
        if not stripped:
            msg = "text must not be blank"
            raise ValueError(msg)
        return stripped

    @field_validator("location_name", "reporter_name")
    @classmethod
    def blank_to_none(cls, v: str | None) -> str | None:
        if v is None:
            return None
        return v.strip() or None


class PriorityUpdate(BaseModel):
    """Body of PATCH /api/reports/{id}/priority. ``null`` clears the priority."""

    priority: Priority | None


class ReportRead(BaseModel):
    """A stored report as returned to the dashboard and map."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    type: str | None
    priority: str | None
    text: str | None
    source_url: str | None
    og_title: str | None
    og_description: str | None
    og_image: str | None
    og_site: str | None
    evidence_image_url: str | None
    evidence_voice_url: str | None
    reporter_lat: float
    reporter_lng: float
    location_name: str | None
    source_platform: str
    reporter_name: str | None
    created_at: datetime
    priority_updated_at: datetime | None
