"""Tests for the gated intake engine.

Covers: full flows (link, photo, voice, skipped severity), rejected inputs,
the /done evidence gate, last-link-wins, enrichment and upload failures,
store failure + /retry, per-user ordering, /cancel during an in-flight
lookup, and isolation between reporters.

The Report Store, Media Store and enrichers are mocks; the session store
and serializer are real.
"""

from __future__ import annotations

import asyncio
import dataclasses
import uuid
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from src.conversation import messages
from src.conversation.engine import (
    DISPATCH,
    IntakeEngine,
    extract_url,
    parse_severity_payload,
    parse_type_payload,
)
from src.conversation.inputs import (
    ButtonPress,
    Cancel,
    Command,
    LocationMessage,
    PhotoMessage,
    StartIntake,
    TextMessage,
    VoiceMessage,
)
from src.conversation.session_store import SessionStore
from src.enrichment.audio import TranscodeError
from src.enrichment.schemas import PageMetadata
from src.media.uploader import UploadError
from src.models.enums import IncidentType, IntakeState, Priority
from src.reports.store import ReportStoreError
from src.schemas.events import EventType

USER = "1001"
OTHER = "2002"


# ── Helpers ──────────────────────────────────────────────────────────


def _saved(report):
    report.id = uuid.uuid4()
    return report


def _make_engine(**overrides) -> IntakeEngine:
    reports = MagicMock()
    reports.create = AsyncMock(side_effect=_saved)
    uploader = MagicMock()
    uploader.upload = AsyncMock(side_effect=lambda data, path, content_type: f"https://media.test/{path}")

    collaborators = {
        "lookup_metadata": AsyncMock(return_value=PageMetadata(title="Warehouse fire", site_name="News")),
        "reverse_geocode": AsyncMock(return_value="1 Main St, Springfield"),
        "transcode": AsyncMock(return_value=b"ID3fake-mp3"),
    }
    collaborators.update(overrides)

    return IntakeEngine(
        SessionStore(ttl=timedelta(minutes=5)),
        reports,
        uploader,
        **collaborators,
    )


async def _advance_to(engine: IntakeEngine, state: IntakeState, user_id: str = USER) -> None:
    """Drive a reporter through the flow up to ``state``."""
    await engine.handle(StartIntake(user_id))
    if state == IntakeState.TYPE:
        return
    await engine.handle(ButtonPress(user_id, "type_fire"))
    if state == IntakeState.SEVERITY:
        return
    await engine.handle(ButtonPress(user_id, "sev_high"))
    if state == IntakeState.EVIDENCE:
        return
    await engine.handle(TextMessage(user_id, "https://news.test/fire"))
    await engine.handle(Command(user_id, "done"))
    if state == IntakeState.DETAILS:
        return
    await engine.handle(TextMessage(user_id, "Smoke coming from the warehouse roof"))


def _state(engine: IntakeEngine, user_id: str = USER) -> IntakeState | None:
    session = engine.store.get(user_id)
    return session.state if session else None


# ── Payload parsing ──────────────────────────────────────────────────


class TestPayloadParsing:
    def test_type_payload(self):
        assert parse_type_payload("type_flood") == IncidentType.FLOOD
        assert parse_type_payload("type_meteor") is None
        assert parse_type_payload("sev_high") is None

    def test_severity_payload(self):
        assert parse_severity_payload("sev_low") == (True, Priority.LOW)
        assert parse_severity_payload("sev_skip") == (True, None)
        assert parse_severity_payload("sev_extreme") == (False, None)
        assert parse_severity_payload("type_fire") == (False, None)

    def test_extract_url_strips_trailing_punctuation(self):
        assert extract_url("see https://example.com/a?b=1.") == "https://example.com/a?b=1"
        assert extract_url("(http://x.test/path)") == "http://x.test/path"
        assert extract_url("no link here") is None

    def test_dispatch_never_accepts_location_before_location_step(self):
        for state in (IntakeState.TYPE, IntakeState.SEVERITY, IntakeState.EVIDENCE, IntakeState.DETAILS):
            assert all(kind.value != "location" for s, kind in DISPATCH if s == state)


# ── Full flows ───────────────────────────────────────────────────────


class TestHappyPaths:
    @pytest.mark.asyncio
    async def test_link_flow_persists_enriched_report(self):
        engine = _make_engine()

        replies = await engine.handle(StartIntake(USER))
        assert replies[0].text == messages.TYPE_PROMPT
        assert replies[0].keyboard == messages.TYPE_KEYBOARD

        replies = await engine.handle(ButtonPress(USER, "type_fire"))
        assert replies[0].text == messages.SEVERITY_PROMPT

        replies = await engine.handle(ButtonPress(USER, "sev_high"))
        assert replies[0].text == messages.EVIDENCE_PROMPT

        replies = await engine.handle(TextMessage(USER, "look https://news.test/fire"))
        assert "Warehouse fire" in replies[0].text
        engine.lookup_metadata.assert_awaited_once_with("https://news.test/fire")

        replies = await engine.handle(Command(USER, "done"))
        assert replies[0].text == messages.DETAILS_PROMPT

        replies = await engine.handle(TextMessage(USER, "  Smoke from the roof  "))
        assert replies[0].text == messages.LOCATION_PROMPT
        assert replies[0].request_location is True

        replies = await engine.handle(LocationMessage(USER, 39.78, -89.65))
        assert replies[0].text == messages.REPORT_SAVED

        report = engine.reports.create.call_args.args[0]
        assert report.type == "fire"
        assert report.priority == "high"
        assert report.text == "Smoke from the roof"
        assert report.source_url == "https://news.test/fire"
        assert report.og_title == "Warehouse fire"
        assert report.og_site == "News"
        assert report.evidence_image_url is None
        assert report.reporter_lat == 39.78
        assert report.reporter_lng == -89.65
        assert report.location_name == "1 Main St, Springfield"
        assert report.source_platform == "telegram"

        # Session is gone after persistence
        assert USER not in engine.store

    @pytest.mark.asyncio
    async def test_photo_flow_uploads_evidence(self):
        engine = _make_engine()
        await _advance_to(engine, IntakeState.SEVERITY)
        await engine.handle(ButtonPress(USER, "sev_medium"))

        replies = await engine.handle(PhotoMessage(USER, b"\xff\xd8jpeg"))
        assert replies[0].text.startswith(messages.PHOTO_SAVED)

        data, path, content_type = engine.uploader.upload.call_args.args
        assert data == b"\xff\xd8jpeg"
        assert path.startswith(f"evidence/images/{USER}_")
        assert path.endswith(".jpg")
        assert content_type == "image/jpeg"

        await engine.handle(TextMessage(USER, "/done"))
        await engine.handle(TextMessage(USER, "Car on fire"))
        await engine.handle(LocationMessage(USER, 1.0, 2.0))

        report = engine.reports.create.call_args.args[0]
        assert report.evidence_image_url == f"https://media.test/{path}"
        assert report.source_url is None
        assert report.og_title is None
        assert report.priority == "medium"

    @pytest.mark.asyncio
    async def test_voice_is_transcoded_then_uploaded(self):
        engine = _make_engine()
        await _advance_to(engine, IntakeState.EVIDENCE)

        replies = await engine.handle(VoiceMessage(USER, b"OggS-opus", mime_type="audio/ogg"))
        assert replies[0].text.startswith(messages.VOICE_SAVED)

        engine.transcode.assert_awaited_once_with(b"OggS-opus", "ogg")
        data, path, content_type = engine.uploader.upload.call_args.args
        assert data == b"ID3fake-mp3"
        assert path.startswith("evidence/voice/") and path.endswith(".mp3")
        assert content_type == "audio/mpeg"
        assert engine.store.get(USER).fields.evidence_voice_url == f"https://media.test/{path}"

    @pytest.mark.asyncio
    async def test_skipped_severity_persists_null_priority(self):
        engine = _make_engine()
        await _advance_to(engine, IntakeState.SEVERITY)

        replies = await engine.handle(ButtonPress(USER, "sev_skip"))
        assert replies[0].text == messages.EVIDENCE_PROMPT

        await engine.handle(TextMessage(USER, "https://news.test/a"))
        await engine.handle(Command(USER, "done"))
        await engine.handle(TextMessage(USER, "Flooded street"))
        await engine.handle(LocationMessage(USER, 10.0, 20.0))

        report = engine.reports.create.call_args.args[0]
        assert report.priority is None

    @pytest.mark.asyncio
    async def test_persist_emits_report_persisted(self):
        engine = _make_engine()
        await _advance_to(engine, IntakeState.LOCATION)

        with patch("src.conversation.engine.emit", new_callable=AsyncMock) as mock_emit:
            await engine.handle(LocationMessage(USER, 1.0, 2.0))

        types = [c.args[0].event_type for c in mock_emit.call_args_list]
        assert EventType.REPORT_PERSISTED in types


# ── Rejections ───────────────────────────────────────────────────────


class TestRejectedInputs:
    @pytest.mark.asyncio
    async def test_no_session_prompts_for_start(self):
        engine = _make_engine()
        replies = await engine.handle(TextMessage(USER, "hello"))
        assert replies[0].text == messages.NO_SESSION
        assert USER not in engine.store

    @pytest.mark.asyncio
    async def test_text_in_type_reprompts_with_keyboard(self):
        engine = _make_engine()
        await _advance_to(engine, IntakeState.TYPE)

        replies = await engine.handle(TextMessage(USER, "fire!"))

        assert replies[0].text == messages.TYPE_REJECTED
        assert replies[0].keyboard == messages.TYPE_KEYBOARD
        assert _state(engine) == IntakeState.TYPE
        assert engine.store.get(USER).fields.type is None

    @pytest.mark.asyncio
    async def test_unknown_button_payload_is_rejected(self):
        engine = _make_engine()
        await _advance_to(engine, IntakeState.TYPE)

        replies = await engine.handle(ButtonPress(USER, "type_meteor"))

        assert replies[0].text == messages.TYPE_REJECTED
        assert _state(engine) == IntakeState.TYPE

    @pytest.mark.asyncio
    async def test_stale_type_button_in_severity_is_rejected(self):
        engine = _make_engine()
        await _advance_to(engine, IntakeState.SEVERITY)

        replies = await engine.handle(ButtonPress(USER, "type_flood"))

        assert replies[0].text == messages.SEVERITY_REJECTED
        assert engine.store.get(USER).fields.type == IncidentType.FIRE

    @pytest.mark.asyncio
    async def test_location_before_location_step_changes_nothing(self):
        engine = _make_engine()
        await _advance_to(engine, IntakeState.EVIDENCE)

        replies = await engine.handle(LocationMessage(USER, 1.0, 2.0))

        assert replies[0].text == messages.EVIDENCE_GUIDANCE
        fields = engine.store.get(USER).fields
        assert fields.reporter_lat is None
        engine.reverse_geocode.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rejection_is_idempotent(self):
        engine = _make_engine()
        await _advance_to(engine, IntakeState.DETAILS)
        before = dataclasses.replace(engine.store.get(USER).fields)

        first = await engine.handle(LocationMessage(USER, 1.0, 2.0))
        second = await engine.handle(LocationMessage(USER, 1.0, 2.0))

        assert first == second
        assert engine.store.get(USER).fields == before
        assert _state(engine) == IntakeState.DETAILS

    @pytest.mark.asyncio
    async def test_plain_text_in_evidence_gets_guidance(self):
        engine = _make_engine()
        await _advance_to(engine, IntakeState.EVIDENCE)

        replies = await engine.handle(TextMessage(USER, "there is a fire"))

        assert replies[0].text == messages.EVIDENCE_GUIDANCE
        engine.lookup_metadata.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_blank_details_rejected(self):
        engine = _make_engine()
        await _advance_to(engine, IntakeState.DETAILS)

        replies = await engine.handle(TextMessage(USER, "   \n "))

        assert replies[0].text == messages.DETAILS_REJECTED
        assert _state(engine) == IntakeState.DETAILS

    @pytest.mark.asyncio
    async def test_caption_counts_as_details(self):
        engine = _make_engine()
        await _advance_to(engine, IntakeState.DETAILS)

        replies = await engine.handle(PhotoMessage(USER, b"jpeg", caption="Bridge collapsed"))

        assert [r.text for r in replies] == [messages.ATTACHMENT_NOT_SAVED, messages.LOCATION_PROMPT]
        assert engine.store.get(USER).fields.text == "Bridge collapsed"
        engine.uploader.upload.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_uncaptioned_voice_in_details_is_not_silently_dropped(self):
        engine = _make_engine()
        await _advance_to(engine, IntakeState.DETAILS)

        replies = await engine.handle(VoiceMessage(USER, b"OggS", mime_type="audio/ogg"))

        assert [r.text for r in replies] == [messages.ATTACHMENT_NOT_SAVED, messages.DETAILS_REJECTED]
        assert _state(engine) == IntakeState.DETAILS
        engine.transcode.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_text_in_location_reprompts_for_location(self):
        engine = _make_engine()
        await _advance_to(engine, IntakeState.LOCATION)

        replies = await engine.handle(TextMessage(USER, "Main street"))

        assert replies[0].text == messages.LOCATION_REJECTED
        assert replies[0].request_location is True
        engine.reports.create.assert_not_awaited()


# ── Evidence gate ────────────────────────────────────────────────────


class TestEvidenceGate:
    @pytest.mark.asyncio
    async def test_done_without_evidence_is_refused(self):
        engine = _make_engine()
        await _advance_to(engine, IntakeState.EVIDENCE)

        replies = await engine.handle(Command(USER, "done"))

        assert replies[0].text == messages.EVIDENCE_REQUIRED
        assert _state(engine) == IntakeState.EVIDENCE

    @pytest.mark.asyncio
    async def test_last_link_wins_including_preview(self):
        lookup = AsyncMock(side_effect=[PageMetadata(title="First"), None])
        engine = _make_engine(lookup_metadata=lookup)
        await _advance_to(engine, IntakeState.SEVERITY)
        await engine.handle(ButtonPress(USER, "sev_low"))

        await engine.handle(TextMessage(USER, "https://a.test/1"))
        replies = await engine.handle(TextMessage(USER, "https://b.test/2"))

        # Second lookup failed: link kept, old preview cleared
        assert replies[0].text.startswith(messages.LINK_SAVED)
        fields = engine.store.get(USER).fields
        assert fields.source_url == "https://b.test/2"
        assert fields.metadata is None

    @pytest.mark.asyncio
    async def test_metadata_failure_still_accepts_link(self):
        engine = _make_engine(lookup_metadata=AsyncMock(return_value=None))
        await _advance_to(engine, IntakeState.LOCATION)

        await engine.handle(LocationMessage(USER, 5.0, 6.0))

        report = engine.reports.create.call_args.args[0]
        assert report.source_url == "https://news.test/fire"
        assert report.og_title is None
        assert report.og_description is None
        assert report.og_image is None
        assert report.og_site is None

    @pytest.mark.asyncio
    async def test_upload_failure_keeps_reporter_in_evidence(self):
        engine = _make_engine()
        engine.uploader.upload = AsyncMock(side_effect=UploadError("disk full"))
        await _advance_to(engine, IntakeState.EVIDENCE)

        with patch("src.conversation.engine.emit", new_callable=AsyncMock) as mock_emit:
            replies = await engine.handle(PhotoMessage(USER, b"jpeg"))

        assert replies[0].text == messages.PHOTO_FAILED
        assert _state(engine) == IntakeState.EVIDENCE
        assert engine.store.get(USER).fields.evidence_image_url is None
        types = [c.args[0].event_type for c in mock_emit.call_args_list]
        assert EventType.EVIDENCE_FAILED in types

    @pytest.mark.asyncio
    async def test_transcode_failure_skips_upload(self):
        engine = _make_engine(transcode=AsyncMock(side_effect=TranscodeError("ffmpeg exited with 1")))
        await _advance_to(engine, IntakeState.EVIDENCE)

        replies = await engine.handle(VoiceMessage(USER, b"OggS"))

        assert replies[0].text == messages.VOICE_FAILED
        engine.uploader.upload.assert_not_awaited()
        assert not engine.store.get(USER).fields.has_evidence


# ── Persistence failure ──────────────────────────────────────────────


class TestPersistFailure:
    @pytest.mark.asyncio
    async def test_store_failure_keeps_session_then_retry_succeeds(self):
        engine = _make_engine()
        await _advance_to(engine, IntakeState.LOCATION)
        engine.reports.create = AsyncMock(side_effect=ReportStoreError("down"))

        replies = await engine.handle(LocationMessage(USER, 1.5, 2.5))
        assert replies[0].text == messages.REPORT_FAILED
        assert _state(engine) == IntakeState.LOCATION

        engine.reports.create = AsyncMock(side_effect=_saved)
        replies = await engine.handle(Command(USER, "retry"))

        assert replies[0].text == messages.REPORT_SAVED
        report = engine.reports.create.call_args.args[0]
        assert report.reporter_lat == 1.5
        assert USER not in engine.store

    @pytest.mark.asyncio
    async def test_retry_without_location_reprompts(self):
        engine = _make_engine()
        await _advance_to(engine, IntakeState.LOCATION)

        replies = await engine.handle(Command(USER, "retry"))

        assert replies[0].text == messages.LOCATION_REJECTED
        engine.reports.create.assert_not_awaited()


# ── Restart / cancel ─────────────────────────────────────────────────


class TestRestartAndCancel:
    @pytest.mark.asyncio
    async def test_start_mid_flow_discards_partial_report(self):
        engine = _make_engine()
        await _advance_to(engine, IntakeState.DETAILS)

        await engine.handle(StartIntake(USER))

        session = engine.store.get(USER)
        assert session.state == IntakeState.TYPE
        assert session.fields.type is None
        assert session.fields.source_url is None

    @pytest.mark.asyncio
    async def test_cancel_discards_session(self):
        engine = _make_engine()
        await _advance_to(engine, IntakeState.EVIDENCE)

        replies = await engine.handle(Cancel(USER))

        assert replies[0].text == messages.REPORT_CANCELLED
        assert USER not in engine.store

    @pytest.mark.asyncio
    async def test_cancel_without_session(self):
        engine = _make_engine()
        replies = await engine.handle(Cancel(USER))
        assert replies[0].text == messages.NOTHING_TO_CANCEL

    @pytest.mark.asyncio
    async def test_cancel_during_lookup_drops_late_result(self):
        called = asyncio.Event()
        release = asyncio.Event()

        async def slow_lookup(url):
            called.set()
            await release.wait()
            return PageMetadata(title="Too late")

        engine = _make_engine(lookup_metadata=slow_lookup)
        await _advance_to(engine, IntakeState.SEVERITY)
        await engine.handle(ButtonPress(USER, "sev_high"))

        pending = asyncio.create_task(engine.handle(TextMessage(USER, "https://slow.test/x")))
        await called.wait()

        replies = await engine.handle(Cancel(USER))
        assert replies[0].text == messages.REPORT_CANCELLED

        release.set()
        assert await pending == []
        assert USER not in engine.store

    @pytest.mark.asyncio
    async def test_restart_during_upload_does_not_leak_into_new_session(self):
        called = asyncio.Event()
        release = asyncio.Event()

        async def slow_upload(data, path, content_type):
            called.set()
            await release.wait()
            return "https://media.test/late.jpg"

        engine = _make_engine()
        engine.uploader.upload = slow_upload
        await _advance_to(engine, IntakeState.EVIDENCE)

        pending = asyncio.create_task(engine.handle(PhotoMessage(USER, b"jpeg")))
        await called.wait()
        await engine.handle(Cancel(USER))
        restart = asyncio.create_task(engine.handle(StartIntake(USER)))

        release.set()
        assert await pending == []
        await restart

        session = engine.store.get(USER)
        assert session.state == IntakeState.TYPE
        assert session.fields.evidence_image_url is None


# ── Ordering and isolation ───────────────────────────────────────────


class TestOrdering:
    @pytest.mark.asyncio
    async def test_slow_attachment_is_handled_before_later_command(self):
        engine = _make_engine()
        await _advance_to(engine, IntakeState.EVIDENCE)
        release = asyncio.Event()

        async def slow_download():
            await release.wait()
            return PhotoMessage(USER, b"jpeg")

        photo = asyncio.create_task(engine.handle_deferred(USER, slow_download))
        await asyncio.sleep(0)
        done = asyncio.create_task(engine.handle(Command(USER, "done")))
        await asyncio.sleep(0)

        release.set()
        photo_replies, done_replies = await asyncio.gather(photo, done)

        assert photo_replies[0].text.startswith(messages.PHOTO_SAVED)
        # /done saw the photo, so the gate opened
        assert done_replies[0].text == messages.DETAILS_PROMPT
        assert _state(engine) == IntakeState.DETAILS

    @pytest.mark.asyncio
    async def test_loader_returning_none_is_a_no_op(self):
        engine = _make_engine()
        await _advance_to(engine, IntakeState.EVIDENCE)

        async def throttled():
            return None

        assert await engine.handle_deferred(USER, throttled) == []
        assert _state(engine) == IntakeState.EVIDENCE

    @pytest.mark.asyncio
    async def test_reporters_do_not_affect_each_other(self):
        engine = _make_engine()
        await _advance_to(engine, IntakeState.LOCATION, USER)
        await _advance_to(engine, IntakeState.TYPE, OTHER)

        await engine.handle(ButtonPress(OTHER, "type_flood"))
        await engine.handle(Cancel(OTHER))
        await engine.handle(LocationMessage(USER, 3.0, 4.0))

        report = engine.reports.create.call_args.args[0]
        assert report.type == "fire"
        engine.reports.create.assert_awaited_once()
        assert OTHER not in engine.store

    @pytest.mark.asyncio
    async def test_slow_reporter_does_not_block_another(self):
        release = asyncio.Event()

        async def slow_lookup(url):
            await release.wait()
            return None

        engine = _make_engine(lookup_metadata=slow_lookup)
        await _advance_to(engine, IntakeState.SEVERITY, USER)
        await engine.handle(ButtonPress(USER, "sev_high"))
        pending = asyncio.create_task(engine.handle(TextMessage(USER, "https://slow.test")))
        await asyncio.sleep(0)

        replies = await asyncio.wait_for(engine.handle(StartIntake(OTHER)), timeout=1)
        assert replies[0].text == messages.TYPE_PROMPT

        release.set()
        await pending
