"""User-facing intake prompts, errors and inline keyboards.

Every rejection names exactly what the bot is waiting for.
"""

from __future__ import annotations

from src.conversation.inputs import Reply
from src.models.enums import IncidentType, IntakeState, Priority

# ── Keyboards ────────────────────────────────────────────────────────

TYPE_PAYLOAD_PREFIX = "type_"
SEVERITY_PAYLOAD_PREFIX = "sev_"
SEVERITY_SKIP = "sev_skip"

TYPE_LABELS: dict[IncidentType, str] = {
    IncidentType.FIRE: "🔥 Fire",
    IncidentType.ACCIDENT: "🚗 Accident",
    IncidentType.FLOOD: "🌊 Flood",
    IncidentType.COLLAPSE: "🏗️ Collapse",
    IncidentType.OTHER: "❓ Other",
}

SEVERITY_LABELS: dict[Priority, str] = {
    Priority.HIGH: "🔴 High",
    Priority.MEDIUM: "🟠 Medium",
    Priority.LOW: "🟢 Low",
}

TYPE_KEYBOARD: list[list[tuple[str, str]]] = [
    [(TYPE_LABELS[IncidentType.FIRE], "type_fire"), (TYPE_LABELS[IncidentType.ACCIDENT], "type_accident")],
    [(TYPE_LABELS[IncidentType.FLOOD], "type_flood"), (TYPE_LABELS[IncidentType.COLLAPSE], "type_collapse")],
    [(TYPE_LABELS[IncidentType.OTHER], "type_other")],
]

SEVERITY_KEYBOARD: list[list[tuple[str, str]]] = [
    [
        (SEVERITY_LABELS[Priority.HIGH], "sev_high"),
        (SEVERITY_LABELS[Priority.MEDIUM], "sev_medium"),
        (SEVERITY_LABELS[Priority.LOW], "sev_low"),
    ],
    [("⚪ Not sure / skip", SEVERITY_SKIP)],
]

# ── Step prompts ─────────────────────────────────────────────────────

TYPE_PROMPT = "🚨 New incident report.\n\nWhat kind of incident is it? Choose one of the buttons below."

SEVERITY_PROMPT = "How severe is it? Choose a level, or skip if you are not sure."

EVIDENCE_PROMPT = (
    "📎 Now send evidence. Any of these, in any order:\n"
    "• a link to a social-media or news post\n"
    "• a photo\n"
    "• a voice message\n\n"
    "Send /done when you have finished."
)

DETAILS_PROMPT = "✍️ Describe what is happening in a short message."

LOCATION_PROMPT = "📍 Finally, share the location of the incident (attach → Location)."

# ── Acknowledgements ─────────────────────────────────────────────────

LINK_SAVED = "🔗 Link saved."
LINK_SAVED_WITH_TITLE = "🔗 Link saved: {title}"
PHOTO_SAVED = "📷 Photo saved."
VOICE_SAVED = "🎙️ Voice message saved."
EVIDENCE_MORE = "Send more evidence, or /done to continue."

REPORT_SAVED = "✅ Thank you. Your report has been submitted and is now visible to responders."
REPORT_CANCELLED = "Report cancelled. Send /start to begin a new one."
NOTHING_TO_CANCEL = "There is no report in progress. Send /start to report an incident."

# ── Rejections and failures ──────────────────────────────────────────

NO_SESSION = "There is no report in progress. Send /start to report an incident."
TYPE_REJECTED = "Please pick the incident type using one of the buttons."
SEVERITY_REJECTED = "Please pick a severity using one of the buttons (or skip)."
EVIDENCE_GUIDANCE = (
    "I can only take a link, a photo or a voice message here. "
    "Send one of those, or /done when you have finished."
)
EVIDENCE_REQUIRED = (
    "⚠️ Please send at least one piece of evidence first: "
    "a link, a photo or a voice message."
)
DETAILS_REJECTED = "⚠️ The description can't be empty. Please describe what is happening in a text message."
LOCATION_REJECTED = "📍 I need the incident location. Please share it with the attach → Location button."
ATTACHMENT_NOT_SAVED = "ℹ️ Evidence is already closed for this report, so that attachment was not saved."

PHOTO_FAILED = "⚠️ Sorry, your photo could not be saved. Please send it again."
VOICE_FAILED = "⚠️ Sorry, your voice message could not be processed. Please send it again."
REPORT_FAILED = (
    "⚠️ Your report could not be saved right now. Nothing was lost: "
    "send your location again or /retry in a moment."
)

# ── Buffered (legacy) mode ───────────────────────────────────────────

BUFFERED_WELCOME = (
    "🚨 Tell me what is happening. Send a description and/or a link, "
    "then share your location to submit the report."
)
BUFFERED_NOTED = "📝 Noted. Send more details, or share your location to submit."
BUFFERED_UNSUPPORTED = "Only text, links and your location are accepted. Share your location to submit."

HELP_TEXT = (
    "I collect incident reports for responders.\n\n"
    "Commands:\n"
    "/start - begin a new report\n"
    "/done - finish adding evidence\n"
    "/retry - try saving your report again\n"
    "/cancel - discard the report in progress\n"
    "/help - show this message"
)


def reprompt(state: IntakeState) -> Reply:
    """The rejection reply for an input the current state does not accept."""
    if state == IntakeState.TYPE:
        return Reply(TYPE_REJECTED, keyboard=TYPE_KEYBOARD)
    if state == IntakeState.SEVERITY:
        return Reply(SEVERITY_REJECTED, keyboard=SEVERITY_KEYBOARD)
    if state == IntakeState.EVIDENCE:
        return Reply(EVIDENCE_GUIDANCE)
    if state == IntakeState.DETAILS:
        return Reply(DETAILS_REJECTED)
    if state == IntakeState.LOCATION:
        return Reply(LOCATION_REJECTED, request_location=True)
    return Reply(NO_SESSION)


def step_prompt(state: IntakeState) -> Reply:
    """The prompt shown on entering ``state``."""
    if state == IntakeState.TYPE:
        return Reply(TYPE_PROMPT, keyboard=TYPE_KEYBOARD)
    if state == IntakeState.SEVERITY:
        return Reply(SEVERITY_PROMPT, keyboard=SEVERITY_KEYBOARD)
    if state == IntakeState.EVIDENCE:
        return Reply(EVIDENCE_PROMPT)
    if state == IntakeState.DETAILS:
        return Reply(DETAILS_PROMPT)
    if state == IntakeState.LOCATION:
        return Reply(LOCATION_PROMPT, request_location=True)
    return Reply(NO_SESSION)
