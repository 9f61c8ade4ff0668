"""Service layer for building and editing a quest's ticket tree."""

import uuid
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sidequest.c1_sidequest_enums import (
    OPEN_SESSION_STATUSES,
    Priority,
    QuestStatus,
    SessionStatus,
    TicketStatus,
)
from sidequest.c2_hierarchy_service import HierarchyValidator
from sidequest.c2_ticket_service.history_service import TicketHistoryService
from sidequest.c2_ticket_service.quest_service import require_quest
from sidequest.c2_ticket_service.ticket_store import TicketRepository, ticket_to_dict
from sidequest.c2_ticket_service.ticket_tree import build_forest
from sidequest.core.concurrency import quest_locks
from sidequest.core.database import get_db, ImplementationSession, Quest, Ticket
from sidequest.core.exceptions import TicketValidationError

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = (
    "title",
    "description",
    "acceptance_criteria",
    "priority",
    "story_points",
    "sprint_group",
    "status",
    "ticket_type",
    "linked_repo_ids",
    "linked_doc_ids",
    "linked_feature_ids",
)

_LINK_FIELDS = ("linked_repo_ids", "linked_doc_ids", "linked_feature_ids")


def _dedupe(values: Optional[List[str]]) -> List[str]:
    """Keep first occurrence of each id; link lists behave as sets."""
    return list(dict.fromkeys(values or []))


def _validate_fields(priority=None, story_points=None, sprint_group=None, status=None) -> None:
    if priority is not None and priority not in {p.value for p in Priority}:
        raise TicketValidationError(f"Invalid priority '{priority}'")
    for name, value in (("story_points", story_points), ("sprint_group", sprint_group)):
        if value is not None and (isinstance(value, bool) or not isinstance(value, int)):
            raise TicketValidationError(f"{name} must be an integer, got {value!r}")
    HierarchyValidator.validate_story_points(story_points)
    if sprint_group is not None and sprint_group < 1:
        raise TicketValidationError(f"sprint_group must be >= 1, got {sprint_group}")
    if status is not None and status not in {s.value for s in TicketStatus}:
        raise TicketValidationError(f"Invalid status '{status}'")


class TicketService:
    """Service for ticket tree operations within a quest."""

    @staticmethod
    async def create_ticket(
        quest_id: str,
        title: str,
        ticket_type: str,
        parent_ticket_id: Optional[str] = None,
        description: Optional[str] = None,
        acceptance_criteria: Optional[List[str]] = None,
        priority: Optional[str] = None,
        story_points: Optional[int] = None,
        sprint_group: Optional[int] = None,
        linked_repo_ids: Optional[List[str]] = None,
        linked_doc_ids: Optional[List[str]] = None,
        linked_feature_ids: Optional[List[str]] = None,
        created_by: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Create a PENDING ticket at the end of its sibling group.

        Args:
            quest_id: Quest the ticket belongs to
            title: Short title
            ticket_type: EPIC, STORY, TASK, TEST or SUBTASK
            parent_ticket_id: Parent in the same quest (required unless EPIC)
            description: Longer description
            acceptance_criteria: Ordered list of criteria
            priority: LOW, MEDIUM, HIGH or URGENT
            story_points: 1..13
            sprint_group: Sprint label, >= 1
            linked_repo_ids: Repositories to carry into finalization
            linked_doc_ids: Documents to carry into finalization
            linked_feature_ids: Features to carry into finalization
            created_by: Identity of the caller

        Returns:
            Dictionary with the created ticket

        Raises:
            NotFoundError: If the quest does not exist
            TicketValidationError: If the parent or any field is invalid
        """
        if not title or not title.strip():
            raise TicketValidationError("Ticket title is required")
        level = HierarchyValidator.level_of(ticket_type)
        _validate_fields(priority=priority, story_points=story_points, sprint_group=sprint_group)

        async with quest_locks.hold(quest_id):
            with get_db() as db:
                quest = require_quest(db, quest_id)
                repo = TicketRepository(db)

                parent_type = None
                if parent_ticket_id:
                    parent = repo.get(parent_ticket_id, quest_id)
                    if parent is None:
                        raise TicketValidationError(f"Parent ticket not found: {parent_ticket_id}")
                    parent_type = parent.ticket_type
                HierarchyValidator.ensure_parent(ticket_type, parent_type)

                ticket = Ticket(
                    id=f"ticket-{uuid.uuid4()}",
                    quest_id=quest_id,
                    project_id=quest.project_id,
                    title=title.strip(),
                    description=description,
                    ticket_type=str(getattr(ticket_type, "value", ticket_type)),
                    hierarchy_level=level,
                    status=TicketStatus.PENDING.value,
                    priority=priority,
                    story_points=story_points,
                    sprint_group=sprint_group,
                    acceptance_criteria=list(acceptance_criteria or []),
                    parent_ticket_id=parent_ticket_id or None,
                    sort_order=repo.next_sort_order(quest_id, parent_ticket_id or None),
                    linked_repo_ids=_dedupe(linked_repo_ids),
                    linked_doc_ids=_dedupe(linked_doc_ids),
                    linked_feature_ids=_dedupe(linked_feature_ids),
                )
                repo.create(ticket)
                TicketHistoryService.record_change(db, ticket.id, created_by, "created")

                logger.info(
                    f"[TICKET_SERVICE] Created {ticket.ticket_type} {ticket.id} "
                    f"under {parent_ticket_id or 'root'} at position {ticket.sort_order}"
                )
                return {"success": True, "ticket": ticket_to_dict(ticket)}

    @staticmethod
    def get_ticket(ticket_id: str, quest_id: Optional[str] = None, include_history: bool = False) -> Dict[str, Any]:
        with get_db() as db:
            ticket = TicketRepository(db).require(ticket_id, quest_id)
            data = ticket_to_dict(ticket)
            if include_history:
                data["history"] = TicketHistoryService.get_history(db, ticket_id)
            return data

    @staticmethod
    def list_tickets(quest_id: str) -> Dict[str, Any]:
        """Flat ticket list plus the nested tree for a quest."""
        with get_db() as db:
            require_quest(db, quest_id)
            tickets = [ticket_to_dict(t) for t in TicketRepository(db).list_by_quest(quest_id)]

        forest = build_forest(tickets)
        return {
            "quest_id": quest_id,
            "tickets": tickets,
            "tree": forest.to_list(),
            "total_count": len(tickets),
        }

    @staticmethod
    async def update_ticket(
        quest_id: str,
        ticket_id: str,
        updates: Dict[str, Any],
        changed_by: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Update ticket fields, including a validated type change.

        A type change is checked against the current parent and every child
        before anything is written; a violation rejects the whole update.
        """
        unknown = [name for name in updates if name not in UPDATABLE_FIELDS]
        if unknown:
            raise TicketValidationError(f"Fields cannot be updated: {unknown}")
        if "title" in updates and not (updates["title"] or "").strip():
            raise TicketValidationError("Ticket title is required")
        _validate_fields(
            priority=updates.get("priority"),
            story_points=updates.get("story_points"),
            sprint_group=updates.get("sprint_group"),
            status=updates.get("status"),
        )

        async with quest_locks.hold(quest_id):
            with get_db() as db:
                repo = TicketRepository(db)
                ticket = repo.require(ticket_id, quest_id)

                changes: Dict[str, Any] = {}
                for name, value in updates.items():
                    if name in _LINK_FIELDS:
                        value = _dedupe(value)
                    if name == "ticket_type":
                        value = str(getattr(value, "value", value))
                    if getattr(ticket, name) != value:
                        changes[name] = value

                if "ticket_type" in changes:
                    parent_type = None
                    if ticket.parent_ticket_id:
                        parent = repo.get(ticket.parent_ticket_id)
                        parent_type = parent.ticket_type if parent else None
                    child_types = [c.ticket_type for c in repo.list_children(quest_id, ticket.id)]
                    HierarchyValidator.ensure_retype(
                        ticket.ticket_type, changes["ticket_type"], parent_type, child_types
                    )
                    changes["hierarchy_level"] = HierarchyValidator.level_of(changes["ticket_type"])

                for name, value in changes.items():
                    if name == "hierarchy_level":
                        continue
                    old_value = getattr(ticket, name)
                    if name == "status":
                        TicketHistoryService.record_status_transition(
                            db, ticket.id, changed_by, old_value, value
                        )
                    else:
                        TicketHistoryService.record_change(
                            db, ticket.id, changed_by, "field_updated",
                            old_value=old_value, new_value=value, field_name=name,
                        )

                fields_updated = sorted(k for k in changes if k != "hierarchy_level")
                if changes.get("status") == TicketStatus.APPROVED.value:
                    changes["approved_at"] = datetime.utcnow()
                    changes["approved_by"] = changed_by

                if changes:
                    repo.update(ticket, **changes)
                    logger.info(f"[TICKET_SERVICE] Updated {ticket_id}: {fields_updated}")

                return {
                    "success": True,
                    "ticket": ticket_to_dict(ticket),
                    "fields_updated": fields_updated,
                }

    @staticmethod
    async def reorder_ticket(
        quest_id: str,
        ticket_id: str,
        new_parent_id: Optional[str],
        new_sort_order: int,
        changed_by: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Move a ticket to a parent and position.

        Destination siblings are renumbered densely around the requested
        slot. A slot past the end is clamped to the end. When the parent
        changes, the old sibling group is compacted.

        Raises:
            TicketValidationError: On a negative slot, unknown parent, a move
                under the ticket's own subtree, or a hierarchy violation
        """
        if new_sort_order is None or new_sort_order < 0:
            raise TicketValidationError(f"new_sort_order must be >= 0, got {new_sort_order}")
        new_parent_id = new_parent_id or None

        async with quest_locks.hold(quest_id):
            with get_db() as db:
                repo = TicketRepository(db)
                ticket = repo.require(ticket_id, quest_id)

                parent_type = None
                if new_parent_id is not None:
                    if new_parent_id == ticket.id or new_parent_id in repo.descendant_ids(quest_id, ticket.id):
                        raise TicketValidationError("Cannot move a ticket under itself or its descendants")
                    parent = repo.get(new_parent_id, quest_id)
                    if parent is None:
                        raise TicketValidationError(f"Parent ticket not found: {new_parent_id}")
                    parent_type = parent.ticket_type
                HierarchyValidator.ensure_parent(ticket.ticket_type, parent_type)

                old_parent_id = ticket.parent_ticket_id
                old_sort_order = ticket.sort_order

                siblings = [s for s in repo.list_children(quest_id, new_parent_id) if s.id != ticket.id]
                slot = min(new_sort_order, len(siblings))
                repo.renumber(siblings, skip=slot)

                if old_parent_id != new_parent_id:
                    previous = [s for s in repo.list_children(quest_id, old_parent_id) if s.id != ticket.id]
                    repo.renumber(previous)

                repo.update(ticket, parent_ticket_id=new_parent_id, sort_order=slot)
                TicketHistoryService.record_change(
                    db, ticket.id, changed_by, "moved",
                    old_value={"parent_ticket_id": old_parent_id, "sort_order": old_sort_order},
                    new_value={"parent_ticket_id": new_parent_id, "sort_order": slot},
                )

                logger.info(
                    f"[TICKET_SERVICE] Moved {ticket_id} to {new_parent_id or 'root'} position {slot}"
                )
                return {"success": True, "ticket": ticket_to_dict(ticket)}

    @staticmethod
    def _repoint_open_session(db, repo: TicketRepository, quest: Optional[Quest], doomed_ids: List[str]) -> None:
        """Move an open session off a deleted current ticket, or complete it."""
        if quest is None:
            return
        session = (
            db.query(ImplementationSession)
            .filter(
                ImplementationSession.quest_id == quest.id,
                ImplementationSession.status.in_(OPEN_SESSION_STATUSES),
                ImplementationSession.current_ticket_id.in_(doomed_ids),
            )
            .first()
        )
        if session is None:
            return

        now = datetime.utcnow()
        next_ticket = repo.next_implementable(quest.id)
        if next_ticket is not None:
            if next_ticket.status != TicketStatus.IN_PROGRESS.value:
                TicketHistoryService.record_status_transition(
                    db, next_ticket.id, None, next_ticket.status, TicketStatus.IN_PROGRESS.value,
                    metadata={"session_id": session.id, "reason": "current ticket deleted"},
                )
                next_ticket.status = TicketStatus.IN_PROGRESS.value
                next_ticket.updated_at = now
            session.current_ticket_id = next_ticket.id
            quest.current_ticket_id = next_ticket.id
            logger.info(f"[TICKET_SERVICE] Session {session.id} moved to {next_ticket.id} after delete")
        else:
            session.current_ticket_id = None
            session.status = SessionStatus.COMPLETED.value
            session.completed_at = session.completed_at or now
            quest.status = QuestStatus.COMPLETED.value
            quest.current_ticket_id = None
            logger.info(f"[TICKET_SERVICE] Session {session.id} completed; nothing left after delete")
        session.updated_at = now
        quest.updated_at = now
        db.flush()

    @staticmethod
    async def delete_ticket(quest_id: str, ticket_id: str) -> Dict[str, Any]:
        """Delete a ticket and all of its descendants, then compact its siblings."""
        async with quest_locks.hold(quest_id):
            with get_db() as db:
                repo = TicketRepository(db)
                ticket = repo.require(ticket_id, quest_id)
                parent_id = ticket.parent_ticket_id

                doomed_ids = [ticket.id] + repo.descendant_ids(quest_id, ticket.id)
                doomed = (
                    db.query(Ticket)
                    .filter(Ticket.id.in_(doomed_ids))
                    .order_by(Ticket.hierarchy_level.desc())
                    .all()
                )
                # Children before parents so the self-reference never dangles
                for row in doomed:
                    db.delete(row)
                    db.flush()

                repo.renumber(repo.list_children(quest_id, parent_id))

                quest = db.query(Quest).filter(Quest.id == quest_id).first()
                if quest is not None and quest.current_ticket_id in doomed_ids:
                    quest.current_ticket_id = None
                    quest.updated_at = datetime.utcnow()
                TicketService._repoint_open_session(db, repo, quest, doomed_ids)

                logger.info(f"[TICKET_SERVICE] Deleted {len(doomed_ids)} ticket(s) rooted at {ticket_id}")
                return {"success": True, "deleted_ids": doomed_ids, "deleted_count": len(doomed_ids)}
