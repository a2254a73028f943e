"""In-process intake sessions keyed by channel user id.

At most one session per user. Sessions idle for longer than the TTL are
dropped by a periodic sweep; a swept session never produces a report.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from src.admin.events import emit
from src.models.enums import IntakeState
from src.reports.builder import ReportDraft
from src.schemas.events import EventType, SystemEvent

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(eq=False)
class IntakeSession:
    """One in-progress report for one user.

    Compared by identity: a handler that awaited an external call checks
    that the store still holds *this* object before writing to it.
    """

    user_id: str
    source_platform: str
    state: IntakeState = IntakeState.TYPE
    fields: ReportDraft = field(default_factory=ReportDraft)
    created_at: datetime = field(default_factory=_utcnow)
    last_activity_at: datetime = field(default_factory=_utcnow)


class SessionStore:
    """Mapping user_id → IntakeSession with TTL eviction."""

    def __init__(self, ttl: timedelta, clock: Clock = _utcnow) -> None:
        self.ttl = ttl
        self._clock = clock
        self._sessions: dict[str, IntakeSession] = {}
        self._sweeper: asyncio.Task[None] | None = None

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, user_id: object) -> bool:
        return user_id in self._sessions

    def get(self, user_id: str) -> IntakeSession | None:
        return self._sessions.get(user_id)

    def new(self, user_id: str, source_platform: str) -> IntakeSession:
        """Create a fresh session, replacing any existing one for the user."""
        now = self._clock()
        session = IntakeSession(
            user_id=user_id,
            source_platform=source_platform,
            created_at=now,
            last_activity_at=now,
        )
        self.put(user_id, session)
        return session

    def put(self, user_id: str, session: IntakeSession) -> None:
        self._sessions[user_id] = session

    def delete(self, user_id: str) -> IntakeSession | None:
        return self._sessions.pop(user_id, None)

    def is_current(self, session: IntakeSession, state: IntakeState | None = None) -> bool:
        """True if ``session`` is still the live one for its user (and in ``state``, if given)."""
        if self._sessions.get(session.user_id) is not session:
            return False
        return state is None or session.state == state

    def touch(self, session: IntakeSession) -> None:
        session.last_activity_at = self._clock()

    def sweep(self, ttl: timedelta | None = None) -> list[IntakeSession]:
        """Remove and return every session idle for longer than ``ttl``."""
        cutoff = self._clock() - (ttl if ttl is not None else self.ttl)
        expired = [s for s in self._sessions.values() if s.last_activity_at < cutoff]
        for session in expired:
            del self._sessions[session.user_id]
        return expired

    # ── Periodic sweep ───────────────────────────────────────────────

    async def sweep_and_report(self) -> int:
        """One sweep tick: evict, log, and emit an event per expired session."""
        expired = self.sweep()
        for session in expired:
            await emit(SystemEvent(
                event_type=EventType.SESSION_EXPIRED,
                user_id=session.user_id,
                source_platform=session.source_platform,
                data={"state": session.state.value},
                source_module="conversation.session_store",
            ))
        if expired:
            logger.info("Swept %d stale intake session(s)", len(expired))
        return len(expired)

    async def _sweep_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await self.sweep_and_report()
            except Exception:
                logger.exception("Session sweep failed")

    def start_sweeper(self, interval: float) -> None:
        """Start the background sweep task (idempotent)."""
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._sweep_loop(interval))
            logger.info("Session sweeper started (every %ss, ttl=%s)", interval, self.ttl)

    async def stop_sweeper(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._sweeper
        self._sweeper = None
        logger.info("Session sweeper stopped")
