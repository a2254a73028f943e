"""Event vocabulary published on the in-process event bus."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class EventType(str, Enum):
    """Dotted names: ``<subject>.<what happened>``."""

    SESSION_STARTED = "session.started"
    SESSION_STATE_CHANGED = "session.state_changed"
    SESSION_CANCELLED = "session.cancelled"
    SESSION_EXPIRED = "session.expired"

    MESSAGE_RECEIVED = "message.received"

    EVIDENCE_CAPTURED = "evidence.captured"
    EVIDENCE_FAILED = "evidence.failed"
    ENRICHMENT_DEGRADED = "enrichment.degraded"

    REPORT_PERSISTED = "report.persisted"
    REPORT_PERSIST_FAILED = "report.persist_failed"
    REPORT_PRIORITY_CHANGED = "report.priority_changed"

    SYSTEM_ERROR = "system.error"


class SystemEvent(BaseModel):
    """One immutable occurrence. ``data`` must stay JSON-serialisable (it lands in JSONB)."""

    model_config = ConfigDict(frozen=True)

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    event_type: EventType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))

    user_id: str | None = None
    report_id: uuid.UUID | None = None
    source_platform: str | None = None

    data: dict[str, Any] = Field(default_factory=dict)
    source_module: str | None = None
