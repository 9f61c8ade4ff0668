from sidequest.c1_sidequest_enums.sidequest_enums import (
    TicketType,
    TicketStatus,
    Priority,
    QuestStatus,
    SessionStatus,
    SprintStrategy,
    AdvanceAction,
    ContextLinkKind,
    OPEN_SESSION_STATUSES,
    ACTIVE_SESSION_STATUSES,
    HIGH_PRIORITIES,
)

__all__ = [
    "TicketType",
    "TicketStatus",
    "Priority",
    "QuestStatus",
    "SessionStatus",
    "SprintStrategy",
    "AdvanceAction",
    "ContextLinkKind",
    "OPEN_SESSION_STATUSES",
    "ACTIVE_SESSION_STATUSES",
    "HIGH_PRIORITIES",
]
