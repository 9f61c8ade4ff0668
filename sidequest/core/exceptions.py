"""Exception hierarchy for the Sidequest engine.

All errors derive from ``ValueError`` so callers that only distinguish
"bad request" from "server error" keep working; the HTTP layer maps the
subclasses to 400/404/409.
"""

from typing import Optional


class SidequestError(ValueError):
    """Base exception for all engine errors."""


class TicketValidationError(SidequestError):
    """Raised when a change violates hierarchy or input constraints.

    ``relationship`` names the offending pair when the failure is a
    parent/child type mismatch, e.g. ``("SUBTASK", "STORY")``.
    """

    def __init__(self, message: str, relationship: Optional[tuple] = None):
        super().__init__(message)
        self.relationship = relationship


class NotFoundError(SidequestError):
    """Raised when a quest, ticket or session does not exist in scope."""


class ConflictError(SidequestError):
    """Raised when the requested transition conflicts with current state."""

    def __init__(self, message: str, existing_id: Optional[str] = None):
        super().__init__(message)
        self.existing_id = existing_id
