"""Report construction: the one place a draft becomes a Report row.

Both intake modes and the app submission endpoint go through
``build_report``, so optional-field defaults live here and nowhere else.
"""

from __future__ import annotations

from dataclasses import dataclass

from src.enrichment.schemas import PageMetadata
from src.models.enums import IncidentType, Priority
from src.models.report import Report


class IncompleteReportError(ValueError):
    """The draft does not satisfy the completion predicate."""

    def __init__(self, missing: list[str]) -> None:
        self.missing = missing
        super().__init__(f"Report is missing: {', '.join(missing)}")


@dataclass
class ReportDraft:
    """A partially built report. Everything is optional until validated."""

    type: IncidentType | None = None
    priority: Priority | None = None
    priority_chosen: bool = False  # True also when the reporter skipped (priority stays None)
    text: str | None = None
    source_url: str | None = None
    metadata: PageMetadata | None = None
    evidence_image_url: str | None = None
    evidence_voice_url: str | None = None
    reporter_lat: float | None = None
    reporter_lng: float | None = None
    location_name: str | None = None

    @property
    def has_evidence(self) -> bool:
        return bool(self.source_url or self.evidence_image_url or self.evidence_voice_url)

    @property
    def has_location(self) -> bool:
        return self.reporter_lat is not None and self.reporter_lng is not None


def missing_fields(draft: ReportDraft, *, strict: bool = True) -> list[str]:
    """Names of required fields the draft lacks.

    Strict (gated intake, app form): type, priority, text, at least one
    evidence item and coordinates. Relaxed (buffered intake): coordinates only.
    """
    missing: list[str] = []
    if strict:
        if draft.type is None:
            missing.append("type")
        if not draft.priority_chosen:
            missing.append("priority")
        if not (draft.text and draft.text.strip()):
            missing.append("text")
        if not draft.has_evidence:
            missing.append("evidence")
    if not draft.has_location:
        missing.append("location")
    return missing


def build_report(
    draft: ReportDraft,
    source_platform: str,
    *,
    strict: bool = True,
    reporter_name: str | None = None,
) -> Report:
    """Turn a draft into an unsaved Report.

    Raises:
        IncompleteReportError: If the completion predicate is not met.
    """
    missing = missing_fields(draft, strict=strict)
    if missing:
        raise IncompleteReportError(missing)

    metadata = draft.metadata or PageMetadata()
    text = draft.text.strip() if draft.text else None

    return Report(
        type=draft.type.value if draft.type else None,
        priority=draft.priority.value if draft.priority else None,
        text=text or None,
        source_url=draft.source_url,
        og_title=metadata.title,
        og_description=metadata.description,
        og_image=metadata.image,
        og_site=metadata.site_name,
        evidence_image_url=draft.evidence_image_url,
        evidence_voice_url=draft.evidence_voice_url,
        reporter_lat=draft.reporter_lat,
        reporter_lng=draft.reporter_lng,
        location_name=draft.location_name,
        source_platform=source_platform,
        reporter_name=reporter_name,
    )
