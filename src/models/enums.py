"""Domain enums used across SQLAlchemy models and Pydantic schemas.

All enums use str mixin for JSON serialization and plain string columns.
"""

from __future__ import annotations

from enum import Enum


class IncidentType(str, Enum):
    """Closed category set for a report."""

    FIRE = "fire"
    ACCIDENT = "accident"
    FLOOD = "flood"
    COLLAPSE = "collapse"
    OTHER = "other"


class Priority(str, Enum):
    """Reporter-assigned severity. "Unidentified" is stored as NULL."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class IntakeState(str, Enum):
    """Intake conversation states, in flow order."""

    IDLE = "idle"
    TYPE = "type"
    SEVERITY = "severity"
    EVIDENCE = "evidence"
    DETAILS = "details"
    LOCATION = "location"


class SourcePlatform(str, Enum):
    """Front-end that produced a report."""

    TELEGRAM = "telegram"
    APP = "app"


class EvidenceKind(str, Enum):
    """Evidence items collectable in the EVIDENCE state."""

    URL = "url"
    IMAGE = "image"
    VOICE = "voice"
