"""Intake state machine.

Handlers decide whether a step succeeded; this module alone decides where
the reporter goes next, and publishes every move as an event.
"""

from __future__ import annotations

import logging

from src.admin.events import emit
from src.conversation.states import TRANSITIONS, UNIVERSAL_TRANSITIONS
from src.models.enums import IntakeState
from src.schemas.events import EventType, SystemEvent

logger = logging.getLogger(__name__)


class InvalidTransitionError(ValueError):
    """The trigger does not leave the current state."""


def resolve(state: IntakeState, trigger: str) -> IntakeState:
    """Target state of ``trigger`` fired in ``state``.

    Raises:
        InvalidTransitionError: If neither the state nor the universal map knows it.
    """
    target = TRANSITIONS.get(state, {}).get(trigger) or UNIVERSAL_TRANSITIONS.get(trigger)
    if target is None:
        msg = f"No transition {state.value} --{trigger}--> (valid: {valid_triggers(state)})"
        raise InvalidTransitionError(msg)
    return target


def valid_triggers(state: IntakeState) -> list[str]:
    own = list(TRANSITIONS.get(state, {}))
    return own + [t for t in UNIVERSAL_TRANSITIONS if t not in own]


class FSM:
    """One reporter's position in the flow."""

    def __init__(
        self,
        user_id: str,
        initial_state: IntakeState = IntakeState.IDLE,
        source_platform: str | None = None,
    ) -> None:
        self.user_id = user_id
        self.current_state = initial_state
        self.source_platform = source_platform

    @property
    def is_idle(self) -> bool:
        return self.current_state == IntakeState.IDLE

    def can_transition(self, trigger: str) -> bool:
        return trigger in valid_triggers(self.current_state)

    def get_valid_triggers(self) -> list[str]:
        return valid_triggers(self.current_state)

    async def transition(self, trigger: str) -> IntakeState:
        """Move to the trigger's target state and emit SESSION_STATE_CHANGED."""
        source = self.current_state
        self.current_state = resolve(source, trigger)

        logger.info("%s --%s--> %s (user=%s)", source.value, trigger, self.current_state.value, self.user_id)
        await emit(SystemEvent(
            event_type=EventType.SESSION_STATE_CHANGED,
            user_id=self.user_id,
            source_platform=self.source_platform,
            data={"from_state": source.value, "to_state": self.current_state.value, "trigger": trigger},
            source_module="conversation.fsm",
        ))
        return self.current_state
