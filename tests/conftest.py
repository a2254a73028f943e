"""Shared fixtures.

Every module that publishes SystemEvents gets its ``emit`` replaced with an
AsyncMock, so no test starts the background event worker on its own loop.
Tests that assert on events patch the module they care about again.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest

_EMITTING_MODULES = (
    "src.channels.app",
    "src.conversation.engine",
    "src.conversation.fsm",
    "src.conversation.session_store",
    "src.enrichment.geocoding",
    "src.enrichment.metadata",
    "src.reports.store",
)


@pytest.fixture(autouse=True)
def _silence_events():
    patchers = [patch(f"{module}.emit", new_callable=AsyncMock) for module in _EMITTING_MODULES]
    mocks = [p.start() for p in patchers]
    yield dict(zip(_EMITTING_MODULES, mocks, strict=True))
    for p in patchers:
        p.stop()
