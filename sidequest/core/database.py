"""Database models and session helpers for Sidequest.

Compatibility shim that re-exports every model from the c1 layer so
services can import them from one place.
"""

from sidequest.c1_database_session.base import Base
from sidequest.c1_database_session.database_manager import DatabaseManager, get_db

from sidequest.c1_ticket_models.ticket import Project, Quest, Ticket, TicketHistory  # noqa: E402
from sidequest.c1_session_models.session import ImplementationSession  # noqa: E402
from sidequest.c1_task_models.task import (  # noqa: E402
    ProjectCounter,
    ExternalSprint,
    ExternalTask,
    TaskRepoLink,
    TaskDocLink,
    TaskFeatureLink,
)

__all__ = [
    "Base",
    "DatabaseManager",
    "get_db",
    "Project",
    "Quest",
    "Ticket",
    "TicketHistory",
    "ImplementationSession",
    "ProjectCounter",
    "ExternalSprint",
    "ExternalTask",
    "TaskRepoLink",
    "TaskDocLink",
    "TaskFeatureLink",
]
