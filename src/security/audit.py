"""Audit subscriber: every SystemEvent becomes one audit_log row.

Runs on the event worker, off the reply path. A failed write is logged
with the event id and dropped.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError

from src.db.engine import async_session_factory
from src.models.audit import AuditLog
from src.schemas.events import SystemEvent

logger = logging.getLogger(__name__)


def to_audit_row(event: SystemEvent) -> AuditLog:
    return AuditLog(
        event_id=event.id,
        event_type=event.event_type.value,
        occurred_at=event.timestamp,
        user_id=event.user_id,
        report_id=event.report_id,
        source_platform=event.source_platform,
        source_module=event.source_module,
        data=event.data or None,
    )


async def audit_on_event(event: SystemEvent) -> None:
    try:
        async with async_session_factory() as db:
            db.add(to_audit_row(event))
            await db.commit()
    except (SQLAlchemyError, OSError):
        logger.exception("Audit write failed for %s event %s", event.event_type.value, event.id)
