"""External task-board models written by the finalization pipeline."""

from datetime import datetime
from sqlalchemy import Column, String, Text, Integer, DateTime, ForeignKey, JSON, UniqueConstraint

from sidequest.c1_database_session.base import Base


class ProjectCounter(Base):
    """Per-project monotonic counter for task keys."""

    __tablename__ = "project_counters"

    project_id = Column(String, ForeignKey("projects.id"), primary_key=True)
    task_counter = Column(Integer, default=0, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class ExternalSprint(Base):
    """Sprint container on the external task board."""

    __tablename__ = "sprints"

    id = Column(String, primary_key=True)  # Format: sprint-{uuid}
    project_id = Column(String, ForeignKey("projects.id"), nullable=False)
    name = Column(String(200), nullable=False)
    goal = Column(Text)
    status = Column(String(30), default="PLANNED", nullable=False)
    created_by = Column(String)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class ExternalTask(Base):
    """Task created on the external task board from a ticket."""

    __tablename__ = "tasks"

    id = Column(String, primary_key=True)  # Format: task-{uuid}
    project_id = Column(String, ForeignKey("projects.id"), nullable=False)
    key = Column(String(50), nullable=False)  # e.g. SQ-42

    title = Column(String(500), nullable=False)
    description = Column(Text)
    type = Column(String(20), nullable=False)
    status = Column(String(30), default="TODO", nullable=False)
    priority = Column(String(20), default="MEDIUM", nullable=False)
    story_points = Column(Integer)
    labels = Column(JSON)
    rank = Column(Integer)

    sprint_id = Column(String, ForeignKey("sprints.id"))
    parent_task_id = Column(String, ForeignKey("tasks.id"))
    assignee_id = Column(String)
    reporter_id = Column(String)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class TaskRepoLink(Base):
    """Cross-reference from a task to a repository."""

    __tablename__ = "task_repo_links"

    id = Column(Integer, primary_key=True, autoincrement=True)
    task_id = Column(String, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False)
    repo_id = Column(String, nullable=False)

    __table_args__ = (UniqueConstraint("task_id", "repo_id", name="uq_task_repo"),)


class TaskDocLink(Base):
    """Cross-reference from a task to a document."""

    __tablename__ = "task_doc_links"

    id = Column(Integer, primary_key=True, autoincrement=True)
    task_id = Column(String, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False)
    doc_id = Column(String, nullable=False)

    __table_args__ = (UniqueConstraint("task_id", "doc_id", name="uq_task_doc"),)


class TaskFeatureLink(Base):
    """Cross-reference from a task to a feature."""

    __tablename__ = "task_feature_links"

    id = Column(Integer, primary_key=True, autoincrement=True)
    task_id = Column(String, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False)
    feature_id = Column(String, nullable=False)

    __table_args__ = (UniqueConstraint("task_id", "feature_id", name="uq_task_feature"),)
