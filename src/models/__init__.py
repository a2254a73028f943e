"""SQLAlchemy ORM models for the incident report service.

Import all models here so Alembic and Base.metadata.create_all() discover them.
"""

from __future__ import annotations

from src.models.audit import AuditLog
from src.models.base import Base
from src.models.enums import EvidenceKind, IncidentType, IntakeState, Priority, SourcePlatform
from src.models.report import Report

__all__ = [
    # Base
    "Base",
    # Models
    "Report",
    "AuditLog",
    # Enums
    "IncidentType",
    "Priority",
    "IntakeState",
    "SourcePlatform",
    "EvidenceKind",
]
