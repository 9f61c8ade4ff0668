"""Quest lookups shared by the ticket, session and finalization services."""

import uuid
import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from sidequest.c1_sidequest_enums import QuestStatus
from sidequest.core.database import get_db, Project, Quest
from sidequest.core.exceptions import NotFoundError, TicketValidationError

logger = logging.getLogger(__name__)


def require_quest(db: Session, quest_id: str) -> Quest:
    quest = db.query(Quest).filter(Quest.id == quest_id).first()
    if quest is None:
        raise NotFoundError(f"Sidequest not found: {quest_id}")
    return quest


def quest_to_dict(quest: Quest) -> Dict[str, Any]:
    return {
        "id": quest.id,
        "project_id": quest.project_id,
        "title": quest.title,
        "description": quest.description,
        "status": quest.status,
        "current_ticket_id": quest.current_ticket_id,
        "total_tickets": quest.total_tickets,
        "completed_tickets": quest.completed_tickets,
        "created_by": quest.created_by,
        "created_at": quest.created_at.isoformat() if quest.created_at else None,
        "updated_at": quest.updated_at.isoformat() if quest.updated_at else None,
    }


class QuestService:
    """Create and read quests."""

    @staticmethod
    def create_quest(
        project_id: str,
        title: str,
        description: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> Dict[str, Any]:
        if not title or not title.strip():
            raise TicketValidationError("Quest title is required")

        with get_db() as db:
            project = db.query(Project).filter(Project.id == project_id).first()
            if project is None:
                raise NotFoundError(f"Project not found: {project_id}")

            quest = Quest(
                id=f"sq-{uuid.uuid4()}",
                project_id=project_id,
                title=title.strip(),
                description=description,
                status=QuestStatus.PLANNING.value,
                created_by=created_by,
            )
            db.add(quest)
            db.flush()
            logger.info(f"[QUEST_SERVICE] Created quest {quest.id} in project {project_id}")
            return quest_to_dict(quest)

    @staticmethod
    def get_quest(quest_id: str) -> Dict[str, Any]:
        with get_db() as db:
            return quest_to_dict(require_quest(db, quest_id))
