"""Quest and ticket models for Sidequest."""

from datetime import datetime
from sqlalchemy import Column, String, Text, Integer, DateTime, ForeignKey, JSON
from sqlalchemy.orm import relationship

from sidequest.c1_database_session.base import Base


class Project(Base):
    """Project that owns quests and the external task board."""

    __tablename__ = "projects"

    id = Column(String, primary_key=True)
    name = Column(String(200), nullable=False)
    key = Column(String(20))  # Task key prefix, e.g. "APP" -> APP-12

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    quests = relationship("Quest", back_populates="project")


class Quest(Base):
    """A sidequest: a scoped body of work planned as a ticket tree."""

    __tablename__ = "sidequests"

    id = Column(String, primary_key=True)  # Format: sq-{uuid}
    project_id = Column(String, ForeignKey("projects.id"), nullable=False)

    title = Column(String(500), nullable=False)
    description = Column(Text)
    status = Column(String(30), nullable=False, default="PLANNING")

    # Progress
    current_ticket_id = Column(String)
    total_tickets = Column(Integer, default=0, nullable=False)
    completed_tickets = Column(Integer, default=0, nullable=False)

    created_by = Column(String)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    project = relationship("Project", back_populates="quests")


class Ticket(Base):
    """A typed work item in a quest's ticket tree."""

    __tablename__ = "sidequest_tickets"

    id = Column(String, primary_key=True)  # Format: ticket-{uuid}
    quest_id = Column(String, ForeignKey("sidequests.id"), nullable=False)
    project_id = Column(String, ForeignKey("projects.id"), nullable=False)

    # Core Fields
    title = Column(String(500), nullable=False)
    description = Column(Text)
    ticket_type = Column(String(20), nullable=False)  # EPIC, STORY, TASK, TEST, SUBTASK
    hierarchy_level = Column(Integer, nullable=False)  # Derived from ticket_type
    status = Column(String(30), nullable=False, default="PENDING")
    priority = Column(String(20))  # LOW, MEDIUM, HIGH, URGENT
    story_points = Column(Integer)  # 1..13, estimated from type when absent
    acceptance_criteria = Column(JSON)  # Ordered list of strings

    # Tree placement
    parent_ticket_id = Column(String, ForeignKey("sidequest_tickets.id"))
    sort_order = Column(Integer, nullable=False, default=0)
    sprint_group = Column(Integer)

    # Context references (treated as sets)
    linked_repo_ids = Column(JSON)
    linked_doc_ids = Column(JSON)
    linked_feature_ids = Column(JSON)

    # Approval and implementation
    approved_at = Column(DateTime)
    approved_by = Column(String)
    implementation_result = Column(JSON)
    external_task_id = Column(String)  # Set once by finalization

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    history = relationship("TicketHistory", back_populates="ticket", cascade="all, delete-orphan")


class TicketHistory(Base):
    """Track changes to sidequest tickets for audit trail."""

    __tablename__ = "sidequest_ticket_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    ticket_id = Column(
        String, ForeignKey("sidequest_tickets.id", ondelete="CASCADE"), nullable=False
    )
    changed_by = Column(String)

    # Change Information
    change_type = Column(String(50), nullable=False)  # created, status_changed, field_updated, moved, approved
    field_name = Column(String(100))
    old_value = Column(Text)
    new_value = Column(Text)

    # Context
    change_description = Column(Text)
    change_metadata = Column(JSON)

    changed_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    ticket = relationship("Ticket", back_populates="history")
