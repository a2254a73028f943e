"""Wires an intake engine to the production collaborators."""

from __future__ import annotations

import logging
from datetime import timedelta

from src.config import settings
from src.conversation.buffered import BufferedIntakeEngine
from src.conversation.engine import IntakeEngine
from src.conversation.session_store import SessionStore
from src.db.engine import redis_client
from src.enrichment.audio import transcode_voice
from src.enrichment.geocoding import geocoding_client
from src.enrichment.schemas import PageMetadata
from src.enrichment.service import lookup_page_metadata
from src.media.uploader import media_uploader
from src.reports.store import report_store

logger = logging.getLogger(__name__)


async def _cached_metadata(url: str) -> PageMetadata | None:
    return await lookup_page_metadata(url, redis_client)


def create_intake_engine(mode: str | None = None, source_platform: str = "telegram") -> IntakeEngine:
    """Build the engine for ``mode`` ("gated" or "buffered"; default from settings)."""
    mode = mode or settings.intake.intake_mode
    engine_cls = BufferedIntakeEngine if mode == "buffered" else IntakeEngine

    store = SessionStore(ttl=timedelta(seconds=settings.intake.session_ttl_seconds))
    engine = engine_cls(
        store,
        report_store,
        media_uploader,
        lookup_metadata=_cached_metadata,
        reverse_geocode=geocoding_client.reverse_geocode,
        transcode=transcode_voice,
        source_platform=source_platform,
    )
    logger.info("Intake engine created (mode=%s, platform=%s)", mode, source_platform)
    return engine
