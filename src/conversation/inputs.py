"""Channel-independent input alphabet and outbound replies for the intake engine.

Channel adapters translate transport updates into one of the input
variants below; the engine answers with a list of Reply objects that the
adapter renders (plain text, optionally with an inline choice keyboard).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import ClassVar


class InputKind(str, Enum):
    """Tag of an inbound event, used as the column key of the transition table."""

    START = "start"
    BUTTON = "button"
    TEXT = "text"
    PHOTO = "photo"
    VOICE = "voice"
    LOCATION = "location"
    COMMAND = "command"
    CANCEL = "cancel"


@dataclass(frozen=True)
class StartIntake:
    user_id: str
    kind: ClassVar[InputKind] = InputKind.START


@dataclass(frozen=True)
class ButtonPress:
    user_id: str
    payload: str
    kind: ClassVar[InputKind] = InputKind.BUTTON


@dataclass(frozen=True)
class TextMessage:
    user_id: str
    text: str
    kind: ClassVar[InputKind] = InputKind.TEXT


@dataclass(frozen=True)
class PhotoMessage:
    """A photo attachment, already downloaded from the channel."""

    user_id: str
    data: bytes
    caption: str | None = None
    kind: ClassVar[InputKind] = InputKind.PHOTO


@dataclass(frozen=True)
class VoiceMessage:
    """A voice memo or audio attachment, already downloaded from the channel."""

    user_id: str
    data: bytes
    mime_type: str = "audio/ogg"
    caption: str | None = None
    kind: ClassVar[InputKind] = InputKind.VOICE


@dataclass(frozen=True)
class LocationMessage:
    user_id: str
    latitude: float
    longitude: float
    kind: ClassVar[InputKind] = InputKind.LOCATION


@dataclass(frozen=True)
class Command:
    """A slash command other than start/cancel (``done``, ``retry``)."""

    user_id: str
    name: str
    kind: ClassVar[InputKind] = InputKind.COMMAND


@dataclass(frozen=True)
class Cancel:
    user_id: str
    kind: ClassVar[InputKind] = InputKind.CANCEL


IntakeInput = (
    StartIntake
    | ButtonPress
    | TextMessage
    | PhotoMessage
    | VoiceMessage
    | LocationMessage
    | Command
    | Cancel
)


@dataclass(frozen=True)
class Reply:
    """One outbound message. ``keyboard`` rows are (label, payload) pairs."""

    text: str
    keyboard: list[list[tuple[str, str]]] = field(default_factory=list)
    request_location: bool = False
