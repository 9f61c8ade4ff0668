"""Session-bound repository for sidequest tickets."""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import func
from sqlalchemy.orm import Session

from sidequest.c1_sidequest_enums import TicketStatus
from sidequest.core.database import Ticket
from sidequest.core.exceptions import NotFoundError

logger = logging.getLogger(__name__)

IMPLEMENTABLE_STATUSES = (TicketStatus.APPROVED.value, TicketStatus.IN_PROGRESS.value)


def ticket_to_dict(ticket: Ticket) -> Dict[str, Any]:
    """Serialize a ticket row for API responses."""
    return {
        "id": ticket.id,
        "quest_id": ticket.quest_id,
        "project_id": ticket.project_id,
        "parent_ticket_id": ticket.parent_ticket_id,
        "ticket_type": ticket.ticket_type,
        "hierarchy_level": ticket.hierarchy_level,
        "title": ticket.title,
        "description": ticket.description,
        "acceptance_criteria": list(ticket.acceptance_criteria or []),
        "priority": ticket.priority,
        "story_points": ticket.story_points,
        "status": ticket.status,
        "sort_order": ticket.sort_order,
        "sprint_group": ticket.sprint_group,
        "linked_repo_ids": list(ticket.linked_repo_ids or []),
        "linked_doc_ids": list(ticket.linked_doc_ids or []),
        "linked_feature_ids": list(ticket.linked_feature_ids or []),
        "approved_at": ticket.approved_at.isoformat() if ticket.approved_at else None,
        "approved_by": ticket.approved_by,
        "implementation_result": ticket.implementation_result,
        "external_task_id": ticket.external_task_id,
        "created_at": ticket.created_at.isoformat() if ticket.created_at else None,
        "updated_at": ticket.updated_at.isoformat() if ticket.updated_at else None,
    }


class TicketRepository:
    """CRUD and tree queries over tickets inside one database session.

    The repository never commits; the caller owns the transaction.
    """

    def __init__(self, db: Session):
        self.db = db

    def create(self, ticket: Ticket) -> Ticket:
        self.db.add(ticket)
        self.db.flush()
        return ticket

    def get(self, ticket_id: str, quest_id: Optional[str] = None) -> Optional[Ticket]:
        query = self.db.query(Ticket).filter(Ticket.id == ticket_id)
        if quest_id is not None:
            query = query.filter(Ticket.quest_id == quest_id)
        return query.first()

    def require(self, ticket_id: str, quest_id: Optional[str] = None) -> Ticket:
        ticket = self.get(ticket_id, quest_id)
        if ticket is None:
            raise NotFoundError(f"Ticket not found: {ticket_id}")
        return ticket

    def update(self, ticket: Ticket, **fields) -> Ticket:
        for name, value in fields.items():
            setattr(ticket, name, value)
        ticket.updated_at = datetime.utcnow()
        self.db.flush()
        return ticket

    def delete(self, ticket: Ticket) -> None:
        self.db.delete(ticket)
        self.db.flush()

    def list_by_quest(self, quest_id: str) -> List[Ticket]:
        return (
            self.db.query(Ticket)
            .filter(Ticket.quest_id == quest_id)
            .order_by(Ticket.hierarchy_level, Ticket.sort_order, Ticket.created_at, Ticket.id)
            .all()
        )

    def list_children(self, quest_id: str, parent_id: Optional[str]) -> List[Ticket]:
        """Siblings under ``parent_id`` (roots when ``None``) in sort order."""
        query = self.db.query(Ticket).filter(Ticket.quest_id == quest_id)
        if parent_id is None:
            query = query.filter(Ticket.parent_ticket_id.is_(None))
        else:
            query = query.filter(Ticket.parent_ticket_id == parent_id)
        return query.order_by(Ticket.sort_order, Ticket.created_at, Ticket.id).all()

    def list_by_status(self, quest_id: str, statuses: Sequence[str]) -> List[Ticket]:
        return (
            self.db.query(Ticket)
            .filter(Ticket.quest_id == quest_id, Ticket.status.in_(list(statuses)))
            .order_by(Ticket.hierarchy_level, Ticket.sort_order, Ticket.created_at, Ticket.id)
            .all()
        )

    def next_implementable(self, quest_id: str, exclude_ticket_id: Optional[str] = None) -> Optional[Ticket]:
        """First eligible ticket in implementation order.

        Eligible: APPROVED or IN_PROGRESS with an external task reference.
        Ordered by hierarchy level, sprint group (nulls last), sort order.
        """
        query = self.db.query(Ticket).filter(
            Ticket.quest_id == quest_id,
            Ticket.status.in_(IMPLEMENTABLE_STATUSES),
            Ticket.external_task_id.isnot(None),
        )
        if exclude_ticket_id is not None:
            query = query.filter(Ticket.id != exclude_ticket_id)
        return query.order_by(
            Ticket.hierarchy_level,
            Ticket.sprint_group.is_(None),
            Ticket.sprint_group,
            Ticket.sort_order,
            Ticket.created_at,
            Ticket.id,
        ).first()

    def next_sort_order(self, quest_id: str, parent_id: Optional[str]) -> int:
        """One past the highest sibling sort order, or 0 with no siblings."""
        query = self.db.query(func.max(Ticket.sort_order)).filter(Ticket.quest_id == quest_id)
        if parent_id is None:
            query = query.filter(Ticket.parent_ticket_id.is_(None))
        else:
            query = query.filter(Ticket.parent_ticket_id == parent_id)
        current_max = query.scalar()
        return 0 if current_max is None else current_max + 1

    def descendant_ids(self, quest_id: str, ticket_id: str) -> List[str]:
        """Breadth-first descendant ids; a visited set guards against cycles."""
        visited = {ticket_id}
        frontier = [ticket_id]
        ordered: List[str] = []
        while frontier:
            rows = (
                self.db.query(Ticket.id)
                .filter(Ticket.quest_id == quest_id, Ticket.parent_ticket_id.in_(frontier))
                .order_by(Ticket.sort_order, Ticket.id)
                .all()
            )
            frontier = []
            for (child_id,) in rows:
                if child_id in visited:
                    logger.warning(f"[TICKET_STORE] Cycle detected at ticket {child_id}")
                    continue
                visited.add(child_id)
                ordered.append(child_id)
                frontier.append(child_id)
        return ordered

    def renumber(self, siblings: Sequence[Ticket], start: int = 0, skip: Optional[int] = None) -> None:
        """Assign dense sort orders to ``siblings``, leaving ``skip`` free."""
        position = start
        for sibling in siblings:
            if position == skip:
                position += 1
            if sibling.sort_order != position:
                sibling.sort_order = position
                sibling.updated_at = datetime.utcnow()
            position += 1
        self.db.flush()
