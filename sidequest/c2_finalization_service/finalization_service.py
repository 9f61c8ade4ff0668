"""Finalization: turn a quest's planned tickets into external tasks."""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from sidequest.c1_sidequest_enums import ContextLinkKind, QuestStatus, TicketStatus
from sidequest.c2_finalization_service.task_sink import (
    DatabaseSequenceCounter,
    DatabaseTaskSink,
    ExternalTaskSink,
    SequenceCounter,
)
from sidequest.c2_ticket_service.history_service import TicketHistoryService
from sidequest.c2_ticket_service.quest_service import require_quest
from sidequest.c2_ticket_service.ticket_store import TicketRepository
from sidequest.core.concurrency import quest_locks
from sidequest.core.database import get_db, Project, Ticket
from sidequest.core.exceptions import TicketValidationError

logger = logging.getLogger(__name__)

DEFAULT_KEY_PREFIX = "SQ"
FINALIZABLE_QUEST_STATUSES = (QuestStatus.PLANNING.value, QuestStatus.READY.value)
FINALIZABLE_TICKET_STATUSES = (TicketStatus.APPROVED.value, TicketStatus.PENDING.value)

TICKET_TYPE_TO_TASK_TYPE = {
    "EPIC": "EPIC",
    "STORY": "STORY",
    "TASK": "TASK",
    "SUBTASK": "SUBTASK",
}


def build_task_description(ticket: Ticket) -> str:
    """Ticket description followed by an acceptance-criteria checklist."""
    description = ticket.description or ""
    criteria = ticket.acceptance_criteria or []
    if criteria:
        description += "\n\n## Acceptance Criteria\n"
        description += "\n".join(f"- [ ] {item}" for item in criteria)
    return description


def quest_label(quest_id: str) -> str:
    short_id = quest_id[3:] if quest_id.startswith("sq-") else quest_id
    return f"sq-{short_id[:8]}"


class FinalizationService:
    """Create external tasks (and optionally a sprint) for a quest's tickets."""

    @staticmethod
    async def finalize_plan(
        quest_id: str,
        created_by: Optional[str] = None,
        create_sprint: bool = True,
        sprint_name: Optional[str] = None,
        sprint_goal: Optional[str] = None,
        default_assignee_id: Optional[str] = None,
        task_sink_factory: Callable[[Session], ExternalTaskSink] = DatabaseTaskSink,
        counter_factory: Callable[[Session], SequenceCounter] = DatabaseSequenceCounter,
    ) -> Dict[str, Any]:
        """
        Materialize APPROVED and PENDING tickets as external tasks.

        Tickets are processed parents first (hierarchy level, then sort
        order) so each task can point at its parent's task. Each ticket is
        committed on its own; a failure is reported in ``errors`` and the
        run continues. Tickets that already carry an external task are not
        re-created. PENDING tickets are promoted to APPROVED.

        Returns:
            Dictionary with tasks_created, sprint_id, tasks and errors

        Raises:
            NotFoundError: If the quest does not exist
            TicketValidationError: If the quest is not PLANNING/READY or has
                no tickets to finalize
        """
        async with quest_locks.hold(quest_id):
            with get_db() as db:
                quest = require_quest(db, quest_id)
                if quest.status not in FINALIZABLE_QUEST_STATUSES:
                    raise TicketValidationError(
                        f"Sidequest must be PLANNING or READY to finalize, is {quest.status}"
                    )

                tickets = TicketRepository(db).list_by_status(quest_id, FINALIZABLE_TICKET_STATUSES)
                if not tickets:
                    raise TicketValidationError("No tickets to finalize")

                project_id = quest.project_id
                quest_title = quest.title
                project = db.query(Project).filter(Project.id == project_id).first()
                key_prefix = (project.key if project and project.key else None) or DEFAULT_KEY_PREFIX

                sink = task_sink_factory(db)
                counter = counter_factory(db)

                sprint_id = None
                if create_sprint:
                    try:
                        sprint_id = sink.create_sprint(
                            project_id,
                            sprint_name or f"{quest_title} Sprint",
                            sprint_goal or f"Implement {quest_title}",
                            created_by,
                        )
                        db.commit()
                    except Exception as e:
                        db.rollback()
                        sprint_id = None
                        logger.warning(f"[FINALIZE] Sprint creation failed, continuing without one: {e}")

                # Snapshot before per-ticket commits and rollbacks expire the rows
                plan = [
                    {
                        "id": t.id,
                        "title": t.title,
                        "parent_ticket_id": t.parent_ticket_id,
                        "external_task_id": t.external_task_id,
                        "links": [
                            (ContextLinkKind.REPO.value, list(t.linked_repo_ids or [])),
                            (ContextLinkKind.DOC.value, list(t.linked_doc_ids or [])),
                            (ContextLinkKind.FEATURE.value, list(t.linked_feature_ids or [])),
                        ],
                    }
                    for t in tickets
                ]
                total_tickets = len(plan)

                task_map: Dict[str, str] = {}
                created: List[Dict[str, Any]] = []
                errors: List[str] = []

                for item in plan:
                    if item["external_task_id"]:
                        task_map[item["id"]] = item["external_task_id"]
                        continue

                    try:
                        ticket = db.query(Ticket).filter(Ticket.id == item["id"]).one()
                        number = counter.next_key(project_id)
                        key = f"{key_prefix}-{number}"
                        task_id = sink.create_task(
                            {
                                "project_id": project_id,
                                "key": key,
                                "title": ticket.title,
                                "description": build_task_description(ticket),
                                "type": TICKET_TYPE_TO_TASK_TYPE.get(ticket.ticket_type, "TASK"),
                                "status": "TODO",
                                "priority": ticket.priority or "MEDIUM",
                                "story_points": ticket.story_points,
                                "sprint_id": sprint_id,
                                "parent_task_id": task_map.get(ticket.parent_ticket_id),
                                "labels": ["sidequest", quest_label(quest_id)],
                                "rank": len(created) + 1,
                                "assignee_id": default_assignee_id,
                                "reporter_id": created_by,
                            }
                        )

                        previous_status = ticket.status
                        ticket.external_task_id = task_id
                        ticket.status = TicketStatus.APPROVED.value
                        ticket.updated_at = datetime.utcnow()
                        if previous_status != TicketStatus.APPROVED.value:
                            TicketHistoryService.record_status_transition(
                                db, ticket.id, created_by, previous_status, TicketStatus.APPROVED.value,
                                metadata={"finalized_as": key},
                            )
                        db.commit()
                    except Exception as e:
                        db.rollback()
                        logger.error(f"[FINALIZE] Failed to create task for {item['id']}: {e}")
                        errors.append(f"Failed to create task for \"{item['title']}\": {e}")
                        continue

                    task_map[item["id"]] = task_id
                    created.append({"ticket_id": item["id"], "task_id": task_id, "key": key})
                    FinalizationService._link_context(db, sink, task_id, item["links"])

                quest = require_quest(db, quest_id)
                quest.status = QuestStatus.READY.value
                quest.total_tickets = total_tickets
                quest.updated_at = datetime.utcnow()

                logger.info(
                    f"[FINALIZE] {quest_id}: {len(created)} task(s) created, "
                    f"{len(errors)} error(s), sprint {sprint_id}"
                )
                return {
                    "success": True,
                    "tasks_created": len(created),
                    "sprint_id": sprint_id,
                    "tasks": created,
                    "errors": errors,
                }

    @staticmethod
    def _link_context(db: Session, sink: ExternalTaskSink, task_id: str, links) -> None:
        """Best-effort cross-references; duplicates and failures are logged only."""
        for kind, ref_ids in links:
            for ref_id in ref_ids:
                try:
                    sink.link_context(task_id, kind, ref_id)
                    db.commit()
                except Exception as e:
                    db.rollback()
                    logger.warning(f"[FINALIZE] Could not link {kind} {ref_id} to {task_id}: {e}")
