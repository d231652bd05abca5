"""
Error taxonomy for trip tracking and reminders.

Structural errors (InvalidTransition, SessionNotTrackable, NotFound) are
returned to the calling client. Send failures are recorded per recipient
and never propagated past the notification dispatcher.
"""

from typing import Optional


class ShuttleError(Exception):
    """Base class for all domain errors."""


class NotFound(ShuttleError):
    def __init__(self, kind: str, identifier: str) -> None:
        self.kind = kind
        self.identifier = str(identifier)
        super().__init__(f"{kind} '{identifier}' not found")


class InvalidTransition(ShuttleError):
    """Raised when a status change is not allowed from the stored state."""

    def __init__(self, current: str, requested: str, reason: Optional[str] = None) -> None:
        self.current = current
        self.requested = requested
        self.reason = reason
        message = f"Cannot transition from {current} to {requested}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class SessionNotTrackable(ShuttleError):
    def __init__(self, session_id: str, status: str) -> None:
        self.session_id = str(session_id)
        self.status = status
        super().__init__(f"Tracking session '{session_id}' does not accept locations while {status}")


class GatewayUnavailable(ShuttleError):
    """The messaging gateway cannot be reached for a whole batch."""

    def __init__(self, reason: str, sent: int = 0, failed: int = 0) -> None:
        self.reason = reason
        self.sent = sent
        self.failed = failed
        super().__init__(f"Messaging gateway unavailable: {reason}")


class SendFailure(ShuttleError):
    classification = "unknown"

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


class TransientSendFailure(SendFailure):
    classification = "transient"


class PermanentSendFailure(SendFailure):
    classification = "permanent"
