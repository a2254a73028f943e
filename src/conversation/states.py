"""Intake FSM state definitions and transition map.

The flow is linear: IDLE → TYPE → SEVERITY → EVIDENCE → DETAILS → LOCATION,
and persisting the report returns the reporter to IDLE. Which inputs a
state accepts lives in the engine's dispatch table; this module only
decides where a successful step leads.
"""

from __future__ import annotations

from src.models.enums import IntakeState

# Transition map: {current_state: {trigger_name: next_state}}
TRANSITIONS: dict[IntakeState, dict[str, IntakeState]] = {
    IntakeState.IDLE: {
        "start": IntakeState.TYPE,
    },
    IntakeState.TYPE: {
        "type_selected": IntakeState.SEVERITY,
    },
    IntakeState.SEVERITY: {
        "severity_selected": IntakeState.EVIDENCE,
    },
    IntakeState.EVIDENCE: {
        "evidence_done": IntakeState.DETAILS,
    },
    IntakeState.DETAILS: {
        "details_given": IntakeState.LOCATION,
    },
    IntakeState.LOCATION: {
        "report_persisted": IntakeState.IDLE,
    },
}

# Valid from every state: /start resets, /cancel and TTL expiry abandon
UNIVERSAL_TRANSITIONS: dict[str, IntakeState] = {
    "start": IntakeState.TYPE,
    "cancel": IntakeState.IDLE,
    "expired": IntakeState.IDLE,
}

# States in which a Session exists
ACTIVE_STATES: set[IntakeState] = {s for s in IntakeState if s != IntakeState.IDLE}
