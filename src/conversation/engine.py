"""Intake orchestrator: runs the gated incident-report conversation.

Receives channel-independent inputs, validates them against the
reporter's current state, calls the enrichers and the Media Store, moves
the FSM forward and, once the report is complete, writes it to the
Report Store.

Ordering: every input for a user runs under that user's slot in the
KeyedSerializer, so a second message waits until the first one's uploads
and lookups have finished. /cancel is the exception: it runs immediately,
and any handler still awaiting an external call drops its result because
its session is no longer the current one.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Awaitable, Callable

from src.admin.events import emit
from src.conversation import messages
from src.conversation.fsm import FSM
from src.conversation.inputs import (
    ButtonPress,
    Cancel,
    Command,
    InputKind,
    IntakeInput,
    LocationMessage,
    PhotoMessage,
    Reply,
    StartIntake,
    TextMessage,
    VoiceMessage,
)
from src.conversation.serializer import KeyedSerializer
from src.conversation.session_store import IntakeSession, SessionStore
from src.enrichment.audio import TranscodeError, source_extension
from src.enrichment.schemas import PageMetadata
from src.media.uploader import IMAGE_FOLDER, VOICE_FOLDER, MediaUploader, UploadError, evidence_path
from src.models.enums import EvidenceKind, IncidentType, IntakeState, Priority
from src.reports.builder import IncompleteReportError, build_report
from src.reports.store import ReportStore, ReportStoreError
from src.schemas.events import EventType, SystemEvent

logger = logging.getLogger(__name__)

MetadataLookup = Callable[[str], Awaitable[PageMetadata | None]]
Geocoder = Callable[[float, float], Awaitable[str]]
Transcoder = Callable[[bytes, str], Awaitable[bytes]]
InputLoader = Callable[[], Awaitable[IntakeInput | None]]

URL_PATTERN = re.compile(r"https?://[^\s<>\"']+", re.IGNORECASE)

# Text accepted as the end-of-evidence command when typed instead of tapped
_DONE_WORDS = {"/done", "done"}
_RETRY_WORDS = {"/retry", "retry"}

# (state, input kind) → handler method name. Pairs not listed are rejected
# with the state's re-prompt and change nothing.
DISPATCH: dict[tuple[IntakeState, InputKind], str] = {
    (IntakeState.TYPE, InputKind.BUTTON): "_on_type_button",
    (IntakeState.SEVERITY, InputKind.BUTTON): "_on_severity_button",
    (IntakeState.EVIDENCE, InputKind.TEXT): "_on_evidence_text",
    (IntakeState.EVIDENCE, InputKind.PHOTO): "_on_evidence_photo",
    (IntakeState.EVIDENCE, InputKind.VOICE): "_on_evidence_voice",
    (IntakeState.EVIDENCE, InputKind.COMMAND): "_on_evidence_command",
    (IntakeState.DETAILS, InputKind.TEXT): "_on_details_text",
    (IntakeState.DETAILS, InputKind.PHOTO): "_on_details_caption",
    (IntakeState.DETAILS, InputKind.VOICE): "_on_details_caption",
    (IntakeState.LOCATION, InputKind.LOCATION): "_on_location",
    (IntakeState.LOCATION, InputKind.TEXT): "_on_location_text",
    (IntakeState.LOCATION, InputKind.COMMAND): "_on_location_command",
}


def extract_url(text: str) -> str | None:
    """First http(s) URL in ``text``, trailing punctuation stripped."""
    match = URL_PATTERN.search(text)
    if match is None:
        return None
    return match.group(0).rstrip(".,;:!?)]}")


def parse_type_payload(payload: str) -> IncidentType | None:
    if not payload.startswith(messages.TYPE_PAYLOAD_PREFIX):
        return None
    try:
        return IncidentType(payload.removeprefix(messages.TYPE_PAYLOAD_PREFIX))
    except ValueError:
        return None


def parse_severity_payload(payload: str) -> tuple[bool, Priority | None]:
    """(valid, priority). ``sev_skip`` is valid with priority None (unidentified)."""
    if payload == messages.SEVERITY_SKIP:
        return True, None
    if not payload.startswith(messages.SEVERITY_PAYLOAD_PREFIX):
        return False, None
    try:
        return True, Priority(payload.removeprefix(messages.SEVERITY_PAYLOAD_PREFIX))
    except ValueError:
        return False, None


class IntakeEngine:
    """Gated intake: TYPE → SEVERITY → EVIDENCE → DETAILS → LOCATION → persisted."""

    strict_reports = True

    def __init__(
        self,
        store: SessionStore,
        reports: ReportStore,
        uploader: MediaUploader,
        *,
        lookup_metadata: MetadataLookup,
        reverse_geocode: Geocoder,
        transcode: Transcoder,
        source_platform: str = "telegram",
    ) -> None:
        self.store = store
        self.reports = reports
        self.uploader = uploader
        self.lookup_metadata = lookup_metadata
        self.reverse_geocode = reverse_geocode
        self.transcode = transcode
        self.source_platform = source_platform
        self.serializer = KeyedSerializer()

    # ── Entry points ─────────────────────────────────────────────────

    async def handle(self, event: IntakeInput) -> list[Reply]:
        """Process one input and return the replies to send back."""
        if isinstance(event, Cancel):
            await self._received(event)
            return await self.cancel(event.user_id)

        async def _ready() -> IntakeInput:
            return event

        return await self.handle_deferred(event.user_id, _ready)

    async def handle_deferred(self, user_id: str, load: InputLoader) -> list[Reply]:
        """Reserve the user's slot first, then build the input with ``load``.

        Channel adapters use this for attachments so the download happens
        inside the slot and a photo sent before a text is still handled
        first. ``load`` returning None means "nothing to process".
        """
        async with self.serializer.hold(user_id):
            event = await load()
            if event is None:
                return []
            await self._received(event)
            return await self._dispatch(event)

    async def cancel(self, user_id: str) -> list[Reply]:
        """Discard the user's session immediately, even if an upload is in flight."""
        session = self.store.delete(user_id)
        if session is None:
            return [Reply(messages.NOTHING_TO_CANCEL)]

        fsm = FSM(user_id, session.state, self.source_platform)
        await fsm.transition("cancel")
        await emit(SystemEvent(
            event_type=EventType.SESSION_CANCELLED,
            user_id=user_id,
            source_platform=self.source_platform,
            data={"state": session.state.value, "in_flight": self.serializer.busy(user_id)},
            source_module="conversation.engine",
        ))
        logger.info("Intake cancelled by user %s in state %s", user_id, session.state.value)
        return [Reply(messages.REPORT_CANCELLED)]

    # ── Dispatch ─────────────────────────────────────────────────────

    async def _received(self, event: IntakeInput) -> None:
        session = self.store.get(event.user_id)
        await emit(SystemEvent(
            event_type=EventType.MESSAGE_RECEIVED,
            user_id=event.user_id,
            source_platform=self.source_platform,
            data={
                "kind": event.kind.value,
                "state": session.state.value if session else IntakeState.IDLE.value,
            },
            source_module="conversation.engine",
        ))

    async def _dispatch(self, event: IntakeInput) -> list[Reply]:
        if isinstance(event, StartIntake):
            return await self._start(event.user_id)
        if isinstance(event, Cancel):
            return await self.cancel(event.user_id)

        session = self.store.get(event.user_id)
        if session is None:
            return [Reply(messages.NO_SESSION)]

        self.store.touch(session)
        handler_name = DISPATCH.get((session.state, event.kind))
        if handler_name is None:
            logger.debug(
                "Rejected %s input in state %s (user=%s)",
                event.kind.value,
                session.state.value,
                event.user_id,
            )
            return [messages.reprompt(session.state)]

        handler: Callable[[IntakeSession, IntakeInput], Awaitable[list[Reply]]] = getattr(self, handler_name)
        return await handler(session, event)

    async def _advance(self, session: IntakeSession, trigger: str) -> Reply:
        """Fire ``trigger`` on the session's FSM and return the next step's prompt."""
        fsm = FSM(session.user_id, session.state, self.source_platform)
        session.state = await fsm.transition(trigger)
        return messages.step_prompt(session.state)

    async def _start(self, user_id: str) -> list[Reply]:
        previous = self.store.get(user_id)
        session = self.store.new(user_id, self.source_platform)
        fsm = FSM(user_id, previous.state if previous else IntakeState.IDLE, self.source_platform)
        session.state = await fsm.transition("start")

        await emit(SystemEvent(
            event_type=EventType.SESSION_STARTED,
            user_id=user_id,
            source_platform=self.source_platform,
            data={"replaced_state": previous.state.value if previous else None},
            source_module="conversation.engine",
        ))
        return [messages.step_prompt(session.state)]

    # ── TYPE / SEVERITY ──────────────────────────────────────────────

    async def _on_type_button(self, session: IntakeSession, event: ButtonPress) -> list[Reply]:
        incident_type = parse_type_payload(event.payload)
        if incident_type is None:
            return [messages.reprompt(session.state)]
        session.fields.type = incident_type
        return [await self._advance(session, "type_selected")]

    async def _on_severity_button(self, session: IntakeSession, event: ButtonPress) -> list[Reply]:
        valid, priority = parse_severity_payload(event.payload)
        if not valid:
            return [messages.reprompt(session.state)]
        session.fields.priority = priority
        session.fields.priority_chosen = True
        return [await self._advance(session, "severity_selected")]

    # ── EVIDENCE ─────────────────────────────────────────────────────

    async def _on_evidence_text(self, session: IntakeSession, event: TextMessage) -> list[Reply]:
        stripped = event.text.strip()
        if stripped.lower() in _DONE_WORDS:
            return await self._finish_evidence(session)

        url = extract_url(stripped)
        if url is None:
            return [messages.reprompt(session.state)]

        metadata = await self.lookup_metadata(url)
        if not self.store.is_current(session, IntakeState.EVIDENCE):
            logger.info("Dropping link metadata for %s: session changed while fetching", session.user_id)
            return []

        # Last link wins, preview included (a failed fetch clears the old preview)
        session.fields.source_url = url
        session.fields.metadata = metadata
        await self._captured(session, EvidenceKind.URL, has_metadata=metadata is not None)

        ack = messages.LINK_SAVED
        if metadata is not None and metadata.title:
            ack = messages.LINK_SAVED_WITH_TITLE.format(title=metadata.title)
        return [Reply(f"{ack}\n{messages.EVIDENCE_MORE}")]

    async def _on_evidence_photo(self, session: IntakeSession, event: PhotoMessage) -> list[Reply]:
        path = evidence_path(IMAGE_FOLDER, session.user_id, "jpg")
        try:
            url = await self.uploader.upload(event.data, path, "image/jpeg")
        except UploadError as exc:
            await self._evidence_failed(session, EvidenceKind.IMAGE, exc)
            return [Reply(messages.PHOTO_FAILED)]

        if not self.store.is_current(session, IntakeState.EVIDENCE):
            logger.info("Dropping photo upload for %s: session changed while uploading", session.user_id)
            return []

        session.fields.evidence_image_url = url
        await self._captured(session, EvidenceKind.IMAGE)
        return [Reply(f"{messages.PHOTO_SAVED}\n{messages.EVIDENCE_MORE}")]

    async def _on_evidence_voice(self, session: IntakeSession, event: VoiceMessage) -> list[Reply]:
        path = evidence_path(VOICE_FOLDER, session.user_id, "mp3")
        try:
            mp3 = await self.transcode(event.data, source_extension(event.mime_type))
            url = await self.uploader.upload(mp3, path, "audio/mpeg")
        except (TranscodeError, UploadError) as exc:
            await self._evidence_failed(session, EvidenceKind.VOICE, exc)
            return [Reply(messages.VOICE_FAILED)]

        if not self.store.is_current(session, IntakeState.EVIDENCE):
            logger.info("Dropping voice upload for %s: session changed while uploading", session.user_id)
            return []

        session.fields.evidence_voice_url = url
        await self._captured(session, EvidenceKind.VOICE)
        return [Reply(f"{messages.VOICE_SAVED}\n{messages.EVIDENCE_MORE}")]

    async def _on_evidence_command(self, session: IntakeSession, event: Command) -> list[Reply]:
        if event.name.lstrip("/").lower() == "done":
            return await self._finish_evidence(session)
        return [messages.reprompt(session.state)]

    async def _finish_evidence(self, session: IntakeSession) -> list[Reply]:
        if not session.fields.has_evidence:
            return [Reply(messages.EVIDENCE_REQUIRED)]
        return [await self._advance(session, "evidence_done")]

    async def _captured(self, session: IntakeSession, kind: EvidenceKind, **data: object) -> None:
        await emit(SystemEvent(
            event_type=EventType.EVIDENCE_CAPTURED,
            user_id=session.user_id,
            source_platform=self.source_platform,
            data={"kind": kind.value, **data},
            source_module="conversation.engine",
        ))

    async def _evidence_failed(self, session: IntakeSession, kind: EvidenceKind, exc: Exception) -> None:
        logger.warning("Evidence %s failed for user %s: %s", kind.value, session.user_id, exc)
        await emit(SystemEvent(
            event_type=EventType.EVIDENCE_FAILED,
            user_id=session.user_id,
            source_platform=self.source_platform,
            data={"kind": kind.value, "error": type(exc).__name__},
            source_module="conversation.engine",
        ))

    # ── DETAILS ──────────────────────────────────────────────────────

    async def _on_details_text(self, session: IntakeSession, event: TextMessage) -> list[Reply]:
        return await self._set_details(session, event.text)

    async def _on_details_caption(
        self,
        session: IntakeSession,
        event: PhotoMessage | VoiceMessage,
    ) -> list[Reply]:
        """An attachment sent in DETAILS counts only for its caption; the file is dropped."""
        logger.info("Ignoring %s attachment in DETAILS (user=%s)", event.kind.value, session.user_id)
        return [Reply(messages.ATTACHMENT_NOT_SAVED), *await self._set_details(session, event.caption or "")]

    async def _set_details(self, session: IntakeSession, text: str) -> list[Reply]:
        description = text.strip()
        if not description:
            return [messages.reprompt(session.state)]
        session.fields.text = description
        return [await self._advance(session, "details_given")]

    # ── LOCATION ─────────────────────────────────────────────────────

    async def _on_location(self, session: IntakeSession, event: LocationMessage) -> list[Reply]:
        location_name = await self.reverse_geocode(event.latitude, event.longitude)
        if not self.store.is_current(session, IntakeState.LOCATION):
            logger.info("Dropping location for %s: session changed while geocoding", session.user_id)
            return []

        session.fields.reporter_lat = event.latitude
        session.fields.reporter_lng = event.longitude
        session.fields.location_name = location_name
        return await self._persist(session)

    async def _on_location_text(self, session: IntakeSession, event: TextMessage) -> list[Reply]:
        if event.text.strip().lower() in _RETRY_WORDS:
            return await self._retry(session)
        return [messages.reprompt(session.state)]

    async def _on_location_command(self, session: IntakeSession, event: Command) -> list[Reply]:
        if event.name.lstrip("/").lower() == "retry":
            return await self._retry(session)
        return [messages.reprompt(session.state)]

    async def _retry(self, session: IntakeSession) -> list[Reply]:
        """Re-attempt persistence with the location from a previous failed attempt."""
        if not session.fields.has_location:
            return [messages.reprompt(session.state)]
        return await self._persist(session)

    async def _persist(self, session: IntakeSession) -> list[Reply]:
        try:
            report = build_report(session.fields, self.source_platform, strict=self.strict_reports)
        except IncompleteReportError as exc:
            # Unreachable through the FSM; reported rather than silently dropped
            logger.error("Incomplete report for user %s: %s", session.user_id, exc.missing)
            return [messages.reprompt(session.state)]

        try:
            report = await self.reports.create(report)
        except ReportStoreError as exc:
            await emit(SystemEvent(
                event_type=EventType.REPORT_PERSIST_FAILED,
                user_id=session.user_id,
                source_platform=self.source_platform,
                data={"error": str(exc)},
                source_module="conversation.engine",
            ))
            # Session kept in LOCATION so the reporter can retry without starting over
            return [Reply(messages.REPORT_FAILED, request_location=True)]

        if self.store.is_current(session):
            self.store.delete(session.user_id)
        await self._advance(session, "report_persisted")

        await emit(SystemEvent(
            event_type=EventType.REPORT_PERSISTED,
            user_id=session.user_id,
            report_id=report.id,
            source_platform=self.source_platform,
            data={
                "type": report.type,
                "priority": report.priority,
                "has_url": report.source_url is not None,
                "has_image": report.evidence_image_url is not None,
                "has_voice": report.evidence_voice_url is not None,
            },
            source_module="conversation.engine",
        ))
        return [Reply(messages.REPORT_SAVED)]
