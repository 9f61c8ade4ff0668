"""Implementation session model for Sidequest."""

from datetime import datetime
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, Boolean

from sidequest.c1_database_session.base import Base


class ImplementationSession(Base):
    """Walks a quest's approved backlog one ticket at a time."""

    __tablename__ = "sidequest_implementation_sessions"

    id = Column(String, primary_key=True)  # Format: session-{uuid}
    quest_id = Column(String, ForeignKey("sidequests.id"), nullable=False)
    project_id = Column(String, ForeignKey("projects.id"), nullable=False)

    status = Column(String(30), nullable=False)  # IMPLEMENTING, AWAITING_REVIEW, PAUSED, COMPLETED
    current_ticket_id = Column(String, ForeignKey("sidequest_tickets.id"))
    auto_advance = Column(Boolean, default=True, nullable=False)

    # Monotonic counters
    tickets_implemented = Column(Integer, default=0, nullable=False)
    tickets_skipped = Column(Integer, default=0, nullable=False)

    started_by = Column(String)
    started_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    completed_at = Column(DateTime)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
