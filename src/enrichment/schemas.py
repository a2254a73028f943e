"""Pydantic schemas for enrichment results (page previews, nearby places)."""

from __future__ import annotations

from pydantic import BaseModel, field_validator


class PageMetadata(BaseModel):
    """Open Graph style preview of a reporter-supplied link."""

    title: str | None = None
    description: str | None = None
    image: str | None = None
    site_name: str | None = None

    @field_validator("title", "description", "site_name")
    @classmethod
    def collapse_whitespace(cls, v: str | None) -> str | None:
        """Collapse runs of whitespace; blank strings become None."""
        if v is None:
            return None
        collapsed = " ".join(v.split())
        return collapsed or None

    @property
    def is_empty(self) -> bool:
        return not (self.title or self.description or self.image)


class NearbyPlace(BaseModel):
    """A place returned by the nearby-places lookup (shelters, hospitals...)."""

    name: str
    address: str | None = None
    latitude: float
    longitude: float
    place_id: str | None = None
