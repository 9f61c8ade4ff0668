"""Collaborators that materialize tickets as tracked work.

``ExternalTaskSink`` creates tasks, sprints and cross-references on an
external board; ``SequenceCounter`` hands out per-project task numbers.
The database implementations write into the caller's session and never
commit.
"""

import uuid
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from sidequest.c1_sidequest_enums import ContextLinkKind
from sidequest.core.database import (
    ExternalSprint,
    ExternalTask,
    ProjectCounter,
    TaskDocLink,
    TaskFeatureLink,
    TaskRepoLink,
)

logger = logging.getLogger(__name__)


class ExternalTaskSink(ABC):
    """Destination for finalized tickets."""

    @abstractmethod
    def create_task(self, fields: Dict[str, Any]) -> str:
        """Create a task and return its id."""
        pass

    @abstractmethod
    def create_sprint(self, project_id: str, name: str, goal: Optional[str], created_by: Optional[str] = None) -> str:
        """Create a sprint container and return its id."""
        pass

    @abstractmethod
    def link_context(self, task_id: str, kind: str, ref_id: str) -> None:
        """Attach a repo, doc or feature reference to a task.

        Raises on failure, including duplicate links.
        """
        pass


class SequenceCounter(ABC):
    """Per-project monotonic counter."""

    @abstractmethod
    def next_key(self, project_id: str) -> int:
        """Reserve and return the next number for ``project_id``."""
        pass


class DatabaseTaskSink(ExternalTaskSink):
    """Writes tasks into the local ``tasks``/``sprints`` tables."""

    _LINK_MODELS = {
        ContextLinkKind.REPO.value: (TaskRepoLink, "repo_id"),
        ContextLinkKind.DOC.value: (TaskDocLink, "doc_id"),
        ContextLinkKind.FEATURE.value: (TaskFeatureLink, "feature_id"),
    }

    def __init__(self, db: Session):
        self.db = db

    def create_task(self, fields: Dict[str, Any]) -> str:
        task = ExternalTask(id=f"task-{uuid.uuid4()}", **fields)
        self.db.add(task)
        self.db.flush()
        return task.id

    def create_sprint(self, project_id: str, name: str, goal: Optional[str], created_by: Optional[str] = None) -> str:
        sprint = ExternalSprint(
            id=f"sprint-{uuid.uuid4()}",
            project_id=project_id,
            name=name,
            goal=goal,
            status="PLANNED",
            created_by=created_by,
        )
        self.db.add(sprint)
        self.db.flush()
        return sprint.id

    def link_context(self, task_id: str, kind: str, ref_id: str) -> None:
        kind = getattr(kind, "value", kind)
        if kind not in self._LINK_MODELS:
            raise ValueError(f"Unknown link kind '{kind}'")
        model, column = self._LINK_MODELS[kind]
        self.db.add(model(task_id=task_id, **{column: ref_id}))
        self.db.flush()


class DatabaseSequenceCounter(SequenceCounter):
    """Counter stored in ``project_counters``; locks the row where supported."""

    def __init__(self, db: Session):
        self.db = db

    def next_key(self, project_id: str) -> int:
        counter = (
            self.db.query(ProjectCounter)
            .filter(ProjectCounter.project_id == project_id)
            .with_for_update()
            .first()
        )
        if counter is None:
            counter = ProjectCounter(project_id=project_id, task_counter=0)
            self.db.add(counter)
        counter.task_counter += 1
        self.db.flush()
        return counter.task_counter
