"""
Command status state machine.

    pending -> processing -> completed | failed

Skipping straight from pending to a terminal state is allowed (the executor
may finish a command without reporting `processing`). Nothing moves back.
"""

from typing import Dict, FrozenSet, Union

from ..core.errors import CommandValidationError, IllegalTransitionError
from .models import CommandStatus

TERMINAL_STATUSES: FrozenSet[CommandStatus] = frozenset({
    CommandStatus.COMPLETED,
    CommandStatus.FAILED,
})

_TRANSITIONS: Dict[CommandStatus, FrozenSet[CommandStatus]] = {
    CommandStatus.PENDING: frozenset({
        CommandStatus.PROCESSING,
        CommandStatus.COMPLETED,
        CommandStatus.FAILED,
    }),
    CommandStatus.PROCESSING: TERMINAL_STATUSES,
    CommandStatus.COMPLETED: frozenset(),
    CommandStatus.FAILED: frozenset(),
}


def parse_status(value: Union[str, CommandStatus]) -> CommandStatus:
    try:
        return CommandStatus(value)
    except ValueError:
        raise CommandValidationError(f"Unknown status '{value}'", field="status") from None


def can_transition(current: Union[str, CommandStatus], target: Union[str, CommandStatus]) -> bool:
    return parse_status(target) in _TRANSITIONS[parse_status(current)]


def advance_status(current: Union[str, CommandStatus], target: Union[str, CommandStatus]) -> CommandStatus:
    """
    Return the target status if the move is forward.

    Raises:
        IllegalTransitionError: regression, repeat, or leaving a terminal state
    """
    current_status = parse_status(current)
    target_status = parse_status(target)
    if target_status not in _TRANSITIONS[current_status]:
        raise IllegalTransitionError(current_status.value, target_status.value)
    return target_status


def is_terminal(status: Union[str, CommandStatus]) -> bool:
    return parse_status(status) in TERMINAL_STATUSES
