"""
Light Command Relay

Envelope models and the status state machine shared by both command
queues (buffered document store and low-latency realtime store).
"""

from .models import (
    CommandEnvelope,
    CommandKind,
    CommandStatus,
    DeliveryPath,
    THEMES,
    build_envelope,
    validate_parameters,
)
from .state import advance_status, can_transition, is_terminal, TERMINAL_STATUSES

__all__ = [
    "CommandEnvelope",
    "CommandKind",
    "CommandStatus",
    "DeliveryPath",
    "THEMES",
    "build_envelope",
    "validate_parameters",
    "advance_status",
    "can_transition",
    "is_terminal",
    "TERMINAL_STATUSES",
]
