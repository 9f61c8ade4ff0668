"""Sidequest-related enums."""

from enum import Enum


class TicketType(str, Enum):
    """Enum for ticket hierarchy types."""
    EPIC = "EPIC"
    STORY = "STORY"
    TASK = "TASK"
    TEST = "TEST"
    SUBTASK = "SUBTASK"


class TicketStatus(str, Enum):
    """Enum for ticket lifecycle status."""
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    SKIPPED = "SKIPPED"


class Priority(str, Enum):
    """Enum for ticket priority."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"


class QuestStatus(str, Enum):
    """Enum for quest lifecycle status."""
    PLANNING = "PLANNING"
    READY = "READY"
    IN_PROGRESS = "IN_PROGRESS"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"
    ARCHIVED = "ARCHIVED"


class SessionStatus(str, Enum):
    """Enum for implementation session status."""
    IMPLEMENTING = "IMPLEMENTING"
    AWAITING_REVIEW = "AWAITING_REVIEW"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"


class SprintStrategy(str, Enum):
    """Enum for sprint organization strategies."""
    BALANCED = "balanced"
    PRIORITY_FIRST = "priority_first"
    DEPENDENCY_AWARE = "dependency_aware"


class AdvanceAction(str, Enum):
    """Enum for decisions taken on the current session ticket."""
    APPROVE = "approve"
    MODIFY = "modify"
    SKIP = "skip"


class ContextLinkKind(str, Enum):
    """Enum for cross-reference kinds attached to external tasks."""
    REPO = "repo"
    DOC = "doc"
    FEATURE = "feature"


# Sessions in these states block a new session from starting
OPEN_SESSION_STATUSES = (
    SessionStatus.IMPLEMENTING.value,
    SessionStatus.AWAITING_REVIEW.value,
    SessionStatus.PAUSED.value,
)

# Sessions in these states can advance or pause
ACTIVE_SESSION_STATUSES = (
    SessionStatus.IMPLEMENTING.value,
    SessionStatus.AWAITING_REVIEW.value,
)

HIGH_PRIORITIES = (Priority.HIGH.value, Priority.URGENT.value)
