"""Mobile-app adapter: REST endpoints for the report form, dashboard and map.

The app submits a complete report in one request (source_platform="app"),
so it skips the conversational flow but goes through the same
enrichment and the same Report construction step.
"""

from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, HTTPException, Query

from src.admin.events import emit
from src.db.engine import redis_client
from src.enrichment.geocoding import geocoding_client
from src.enrichment.schemas import NearbyPlace
from src.enrichment.service import lookup_page_metadata
from src.models.enums import SourcePlatform
from src.reports.builder import IncompleteReportError, ReportDraft, build_report
from src.reports.store import DEFAULT_LIST_LIMIT, ReportNotFoundError, ReportStoreError, report_store
from src.schemas.events import EventType, SystemEvent
from src.schemas.report import PriorityUpdate, ReportRead, ReportSubmission

logger = logging.getLogger(__name__)

app_router = APIRouter(prefix="/api", tags=["app"])


@app_router.post("/reports", response_model=ReportRead, status_code=201)
async def submit_report(submission: ReportSubmission) -> ReportRead:
    """Create a report from the app's form."""
    draft = ReportDraft(
        type=submission.type,
        priority=submission.priority,
        priority_chosen=True,
        text=submission.text,
        reporter_lat=submission.reporter_lat,
        reporter_lng=submission.reporter_lng,
        location_name=submission.location_name,
    )

    if submission.source_url is not None:
        draft.source_url = str(submission.source_url)
        draft.metadata = await lookup_page_metadata(draft.source_url, redis_client)

    if draft.location_name is None:
        draft.location_name = await geocoding_client.reverse_geocode(
            submission.reporter_lat, submission.reporter_lng
        )

    try:
        # The form has no evidence step; the description is its evidence
        report = build_report(draft, SourcePlatform.APP.value, strict=False, reporter_name=submission.reporter_name)
    except IncompleteReportError as exc:
        raise HTTPException(status_code=422, detail=f"Missing: {', '.join(exc.missing)}") from exc

    try:
        report = await report_store.create(report)
    except ReportStoreError as exc:
        raise HTTPException(status_code=503, detail="Unable to submit your report. Please try again.") from exc

    await emit(SystemEvent(
        event_type=EventType.REPORT_PERSISTED,
        report_id=report.id,
        source_platform=SourcePlatform.APP.value,
        data={"type": report.type, "priority": report.priority, "has_url": report.source_url is not None},
        source_module="channels.app",
    ))
    return ReportRead.model_validate(report)


@app_router.get("/reports", response_model=list[ReportRead])
async def list_reports(limit: int = Query(DEFAULT_LIST_LIMIT, ge=1, le=1000)) -> list[ReportRead]:
    """Newest reports first (dashboard list)."""
    try:
        reports = await report_store.list_recent(limit)
    except ReportStoreError as exc:
        raise HTTPException(status_code=503, detail="Unable to load incident reports.") from exc
    return [ReportRead.model_validate(r) for r in reports]


@app_router.get("/reports/map", response_model=list[ReportRead])
async def list_map_reports(limit: int = Query(DEFAULT_LIST_LIMIT, ge=1, le=1000)) -> list[ReportRead]:
    """Newest reports that can be placed on the map."""
    try:
        reports = await report_store.list_mappable(limit)
    except ReportStoreError as exc:
        raise HTTPException(status_code=503, detail="Unable to load incident reports.") from exc
    return [ReportRead.model_validate(r) for r in reports]


@app_router.patch("/reports/{report_id}/priority", response_model=ReportRead)
async def update_report_priority(report_id: uuid.UUID, body: PriorityUpdate) -> ReportRead:
    """Responder-side priority edit."""
    try:
        report = await report_store.update_priority(report_id, body.priority)
    except ReportNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Report not found.") from exc
    except ReportStoreError as exc:
        raise HTTPException(status_code=503, detail="Failed to update priority. Please try again.") from exc
    return ReportRead.model_validate(report)


@app_router.get("/places/nearby", response_model=list[NearbyPlace])
async def nearby_places(
    lat: float = Query(ge=-90, le=90),
    lng: float = Query(ge=-180, le=180),
    kind: str = Query("shelter", min_length=1, max_length=50),
) -> list[NearbyPlace]:
    """Nearby shelters (or another place kind) around a point."""
    return await geocoding_client.nearby_places(lat, lng, keyword=kind)
