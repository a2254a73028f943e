"""Report Store client: create and query rows in the ``reports`` table.

Intake only ever calls ``create``. The list queries feed the dashboard
and map; ``update_priority`` is the viewer-side edit.
"""

from __future__ import annotations

import logging
import math
import uuid
from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.admin.events import emit
from src.db.engine import async_session_factory
from src.models.enums import Priority
from src.models.report import Report
from src.schemas.events import EventType, SystemEvent

logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT = 200

# asyncpg connection failures (refused, reset, timed out) surface as OSError
_STORE_ERRORS = (SQLAlchemyError, OSError)


class ReportStoreError(Exception):
    """A Report Store read or write failed."""


class ReportNotFoundError(ReportStoreError):
    """No report with the requested id."""


class ReportStore:
    """Thin async persistence/query interface over ``reports``."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def create(self, report: Report) -> Report:
        """Insert one report in its own transaction and return it with id/created_at set.

        Raises:
            ReportStoreError: If the insert fails. Nothing is written in that case.
        """
        try:
            async with self._session_factory() as db:
                db.add(report)
                await db.commit()
                await db.refresh(report)
        except _STORE_ERRORS as exc:
            logger.exception("Failed to persist report from %s", report.source_platform)
            msg = "Report could not be saved"
            raise ReportStoreError(msg) from exc

        logger.info("Report %s persisted (platform=%s)", report.id, report.source_platform)
        return report

    async def list_recent(self, limit: int = DEFAULT_LIST_LIMIT) -> list[Report]:
        """Newest reports first."""
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    select(Report).order_by(Report.created_at.desc()).limit(limit)
                )
                return list(result.scalars().all())
        except _STORE_ERRORS as exc:
            logger.exception("Failed to list reports")
            msg = "Reports could not be loaded"
            raise ReportStoreError(msg) from exc

    async def list_mappable(self, limit: int = DEFAULT_LIST_LIMIT) -> list[Report]:
        """Newest reports that have finite coordinates (safe to place on a map)."""
        reports = await self.list_recent(limit)
        return [
            r for r in reports
            if r.reporter_lat is not None
            and r.reporter_lng is not None
            and math.isfinite(r.reporter_lat)
            and math.isfinite(r.reporter_lng)
        ]

    async def update_priority(self, report_id: uuid.UUID, priority: Priority | None) -> Report:
        """Set a report's priority from the dashboard.

        Raises:
            ReportNotFoundError: Unknown id.
            ReportStoreError: Any database failure.
        """
        try:
            async with self._session_factory() as db:
                report = await db.get(Report, report_id)
                if report is None:
                    msg = f"Report {report_id} not found"
                    raise ReportNotFoundError(msg)
                previous = report.priority
                report.priority = priority.value if priority else None
                report.priority_updated_at = datetime.now(UTC)
                await db.commit()
                await db.refresh(report)
        except _STORE_ERRORS as exc:
            logger.exception("Failed to update priority of report %s", report_id)
            msg = "Priority could not be updated"
            raise ReportStoreError(msg) from exc

        await emit(SystemEvent(
            event_type=EventType.REPORT_PRIORITY_CHANGED,
            report_id=report.id,
            data={"from": previous, "to": report.priority},
            source_module="reports.store",
        ))
        return report


# Module-level singleton
report_store = ReportStore(async_session_factory)
