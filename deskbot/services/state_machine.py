"""Handoff status of a persisted conversation (bot vs. human staff)."""

from enum import Enum


class HandoffStatus(str, Enum):
    BOT_ACTIVE = "bot_active"
    HANDOFF_ACTIVE = "handoff_active"
    HANDOFF_CLOSED = "handoff_closed"


VALID_TRANSITIONS = {
    HandoffStatus.BOT_ACTIVE: [HandoffStatus.HANDOFF_ACTIVE],
    HandoffStatus.HANDOFF_ACTIVE: [HandoffStatus.HANDOFF_CLOSED, HandoffStatus.BOT_ACTIVE],
    HandoffStatus.HANDOFF_CLOSED: [HandoffStatus.HANDOFF_ACTIVE, HandoffStatus.BOT_ACTIVE],
}


class InvalidTransitionError(Exception):
    def __init__(self, from_status: HandoffStatus, to_status: HandoffStatus):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"Invalid handoff transition: {from_status.value} -> {to_status.value}")


def can_transition(from_status: HandoffStatus, to_status: HandoffStatus) -> bool:
    return to_status in VALID_TRANSITIONS.get(from_status, [])


def transition(from_status: HandoffStatus, to_status: HandoffStatus) -> HandoffStatus:
    """Raises InvalidTransitionError if not allowed."""
    if not can_transition(from_status, to_status):
        raise InvalidTransitionError(from_status, to_status)
    return to_status


def start_handoff(current: HandoffStatus) -> HandoffStatus:
    return transition(current, HandoffStatus.HANDOFF_ACTIVE)


def close_handoff(current: HandoffStatus) -> HandoffStatus:
    return transition(current, HandoffStatus.HANDOFF_CLOSED)


def reopen(current: HandoffStatus) -> HandoffStatus:
    """Hand the conversation back to the bot."""
    return transition(current, HandoffStatus.BOT_ACTIVE)
