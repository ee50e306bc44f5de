"""
Relay error taxonomy.

Every error raised by the command relay derives from RelayError and carries
the HTTP status code the API layer should answer with.

- CommandValidationError: malformed command, rejected before any write
- AuthError: no authenticated caller, rejected before any write
- StoreError: queue backend failure (network, database, timeout)
- IllegalTransitionError: status update that would move backwards
- PartialCleanupFailure: a sweep stopped mid-batch
"""

from typing import Optional


class RelayError(Exception):
    """Base class for all relay errors"""
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class CommandValidationError(RelayError):
    """Command parameters violate the schema for their command kind"""
    status_code = 422

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class AuthError(RelayError):
    """Operation requires an authenticated caller"""
    status_code = 401


class StoreError(RelayError):
    """Queue backend read/write/delete failed"""
    status_code = 502


class CommandNotFoundError(StoreError):
    status_code = 404

    def __init__(self, command_id: str):
        super().__init__(f"Command {command_id} not found")
        self.command_id = command_id


class IllegalTransitionError(RelayError):
    """Status transition would regress or leave a terminal state"""
    status_code = 409

    def __init__(self, current: str, target: str):
        super().__init__(f"Illegal status transition {current} -> {target}")
        self.current = current
        self.target = target


class PartialCleanupFailure(RelayError):
    """
    A sweep failed partway through its batch.

    Envelopes deleted before the failure stay deleted; the rest are left
    for the next scheduled sweep.
    """

    def __init__(self, message: str, deleted: int = 0, remaining: int = 0):
        super().__init__(message)
        self.deleted = deleted
        self.remaining = remaining
