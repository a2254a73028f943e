"""Buffered (legacy) intake: the lower-friction alternative to the gated flow.

No type/severity/evidence steps and no /done gate. Text and links are
buffered per user, each new one overwriting the last, and the first
location message submits whatever is buffered. Selected with
``INTAKE_MODE=buffered``; never mixed with the gated flow.
"""

from __future__ import annotations

import logging

from src.conversation import messages
from src.conversation.engine import IntakeEngine, extract_url
from src.conversation.inputs import (
    Command,
    IntakeInput,
    LocationMessage,
    Reply,
    StartIntake,
    TextMessage,
)
from src.conversation.session_store import IntakeSession
from src.models.enums import IntakeState

logger = logging.getLogger(__name__)


class BufferedIntakeEngine(IntakeEngine):
    """Last write before the location wins."""

    strict_reports = False

    async def _dispatch(self, event: IntakeInput) -> list[Reply]:
        if isinstance(event, StartIntake):
            self.store.delete(event.user_id)
            self._buffer(event.user_id)
            return [Reply(messages.BUFFERED_WELCOME, request_location=True)]

        if isinstance(event, LocationMessage):
            return await self._submit(self._buffer(event.user_id), event)

        if isinstance(event, TextMessage) and event.text.strip():
            if event.text.strip().lower() in {"/retry", "retry"}:
                return await self._retry_buffered(event.user_id)
            self._remember_text(self._buffer(event.user_id), event.text)
            url = extract_url(event.text)
            if url is not None:
                return await self._remember_link(event.user_id, url)
            return [Reply(messages.BUFFERED_NOTED, request_location=True)]

        if isinstance(event, Command) and event.name.lstrip("/").lower() == "retry":
            return await self._retry_buffered(event.user_id)

        return [Reply(messages.BUFFERED_UNSUPPORTED, request_location=True)]

    def _buffer(self, user_id: str) -> IntakeSession:
        """The user's buffer, created on first contact (no /start needed)."""
        session = self.store.get(user_id)
        if session is None:
            session = self.store.new(user_id, self.source_platform)
            # Buffered sessions sit directly at LOCATION: any location submits
            session.state = IntakeState.LOCATION
        self.store.touch(session)
        return session

    @staticmethod
    def _remember_text(session: IntakeSession, text: str) -> None:
        url = extract_url(text)
        is_only_url = url is not None and text.strip() == url
        # A bare link clears the description; anything else replaces it
        session.fields.text = None if is_only_url else text

    async def _remember_link(self, user_id: str, url: str) -> list[Reply]:
        session = self.store.get(user_id)
        if session is None:
            return [Reply(messages.NO_SESSION)]
        metadata = await self.lookup_metadata(url)
        if not self.store.is_current(session):
            return []
        session.fields.source_url = url
        session.fields.metadata = metadata
        return [Reply(messages.BUFFERED_NOTED, request_location=True)]

    async def _submit(self, session: IntakeSession, event: LocationMessage) -> list[Reply]:
        location_name = await self.reverse_geocode(event.latitude, event.longitude)
        if not self.store.is_current(session):
            return []
        session.fields.reporter_lat = event.latitude
        session.fields.reporter_lng = event.longitude
        session.fields.location_name = location_name
        return await self._persist(session)

    async def _retry_buffered(self, user_id: str) -> list[Reply]:
        session = self.store.get(user_id)
        if session is None or not session.fields.has_location:
            return [Reply(messages.BUFFERED_NOTED, request_location=True)]
        return await self._persist(session)
