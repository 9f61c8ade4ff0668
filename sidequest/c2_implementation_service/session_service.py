"""Implementation session: walks approved tickets one at a time."""

import uuid
import logging
from datetime import datetime
from typing import Any, Dict, Optional, Sequence

from sqlalchemy.orm import Session

from sidequest.c1_sidequest_enums import (
    ACTIVE_SESSION_STATUSES,
    OPEN_SESSION_STATUSES,
    AdvanceAction,
    QuestStatus,
    SessionStatus,
    TicketStatus,
)
from sidequest.c2_ticket_service.history_service import TicketHistoryService
from sidequest.c2_ticket_service.quest_service import require_quest
from sidequest.c2_ticket_service.ticket_store import (
    IMPLEMENTABLE_STATUSES as ELIGIBLE_TICKET_STATUSES,
    TicketRepository,
    ticket_to_dict,
)
from sidequest.core.concurrency import quest_locks
from sidequest.core.database import get_db, ImplementationSession, Ticket
from sidequest.core.exceptions import ConflictError, NotFoundError, TicketValidationError

logger = logging.getLogger(__name__)

STARTABLE_QUEST_STATUSES = (QuestStatus.READY.value, QuestStatus.IN_PROGRESS.value)
MODIFIABLE_FIELDS = ("title", "description", "acceptance_criteria")


def session_to_dict(session: ImplementationSession) -> Dict[str, Any]:
    return {
        "id": session.id,
        "quest_id": session.quest_id,
        "project_id": session.project_id,
        "status": session.status,
        "current_ticket_id": session.current_ticket_id,
        "auto_advance": session.auto_advance,
        "tickets_implemented": session.tickets_implemented,
        "tickets_skipped": session.tickets_skipped,
        "started_by": session.started_by,
        "started_at": session.started_at.isoformat() if session.started_at else None,
        "completed_at": session.completed_at.isoformat() if session.completed_at else None,
    }


def _status_while_running(session: ImplementationSession) -> str:
    if session.auto_advance:
        return SessionStatus.IMPLEMENTING.value
    return SessionStatus.AWAITING_REVIEW.value


class ImplementationSessionService:
    """Start, advance, pause and resume a quest's implementation session."""

    @staticmethod
    def find_next_ticket(db: Session, quest_id: str, exclude_ticket_id: Optional[str] = None) -> Optional[Ticket]:
        """First eligible ticket in implementation order, see ``TicketRepository.next_implementable``."""
        return TicketRepository(db).next_implementable(quest_id, exclude_ticket_id)

    @staticmethod
    def _latest_session(
        db: Session, quest_id: str, statuses: Optional[Sequence[str]] = None
    ) -> Optional[ImplementationSession]:
        query = db.query(ImplementationSession).filter(ImplementationSession.quest_id == quest_id)
        if statuses is not None:
            query = query.filter(ImplementationSession.status.in_(list(statuses)))
        return query.order_by(ImplementationSession.started_at.desc()).first()

    @staticmethod
    def _mark_in_progress(db: Session, ticket: Ticket, changed_by: Optional[str]) -> None:
        if ticket.status == TicketStatus.IN_PROGRESS.value:
            return
        TicketHistoryService.record_status_transition(
            db, ticket.id, changed_by, ticket.status, TicketStatus.IN_PROGRESS.value
        )
        ticket.status = TicketStatus.IN_PROGRESS.value
        ticket.updated_at = datetime.utcnow()

    @staticmethod
    async def start_session(
        quest_id: str,
        started_by: Optional[str] = None,
        auto_advance: bool = True,
        start_from_ticket_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Open a session on the first eligible ticket.

        Raises:
            ConflictError: If the quest already has an open session
            TicketValidationError: If the quest is not READY/IN_PROGRESS or
                nothing is eligible to implement
            NotFoundError: If the quest or start ticket does not exist
        """
        async with quest_locks.hold(quest_id):
            with get_db() as db:
                quest = require_quest(db, quest_id)

                existing = ImplementationSessionService._latest_session(db, quest_id, OPEN_SESSION_STATUSES)
                if existing is not None:
                    raise ConflictError(
                        "An implementation session is already active", existing_id=existing.id
                    )

                if quest.status not in STARTABLE_QUEST_STATUSES:
                    raise TicketValidationError(
                        f"Sidequest must be READY or IN_PROGRESS to implement, is {quest.status}"
                    )

                if start_from_ticket_id:
                    ticket = TicketRepository(db).require(start_from_ticket_id, quest_id)
                    if ticket.status not in ELIGIBLE_TICKET_STATUSES:
                        raise TicketValidationError(
                            f"Ticket {ticket.id} is {ticket.status} and cannot be implemented"
                        )
                else:
                    ticket = ImplementationSessionService.find_next_ticket(db, quest_id)
                    if ticket is None:
                        raise TicketValidationError("No approved tickets with tasks found to implement")

                session = ImplementationSession(
                    id=f"session-{uuid.uuid4()}",
                    quest_id=quest_id,
                    project_id=quest.project_id,
                    status=SessionStatus.IMPLEMENTING.value,
                    current_ticket_id=ticket.id,
                    auto_advance=auto_advance,
                    tickets_implemented=0,
                    tickets_skipped=0,
                    started_by=started_by,
                    started_at=datetime.utcnow(),
                )
                db.add(session)

                quest.status = QuestStatus.IN_PROGRESS.value
                quest.current_ticket_id = ticket.id
                ImplementationSessionService._mark_in_progress(db, ticket, started_by)
                db.flush()

                logger.info(f"[SESSION] Started {session.id} for {quest_id} on ticket {ticket.id}")
                return {
                    "success": True,
                    "session": session_to_dict(session),
                    "current_ticket": ticket_to_dict(ticket),
                }

    @staticmethod
    async def advance(
        quest_id: str,
        action: str,
        modifications: Optional[Dict[str, Any]] = None,
        implementation_result: Optional[Dict[str, Any]] = None,
        changed_by: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Apply a decision to the current ticket and move to the next one.

        ``modify`` edits the current ticket and stays on it. ``approve`` and
        ``skip`` finish it; the finished ticket's status is committed before
        the session and next ticket are written, so a later failure leaves
        the finished ticket finished.

        Returns:
            Dictionary with session, previous_ticket (id/title/action),
            next_ticket and is_complete

        Raises:
            NotFoundError: If there is no active session or current ticket
            TicketValidationError: On an unknown action or modification field
        """
        valid_actions = {a.value for a in AdvanceAction}
        action = getattr(action, "value", action)
        if action not in valid_actions:
            raise TicketValidationError(f"Invalid action '{action}'. Allowed: {sorted(valid_actions)}")

        async with quest_locks.hold(quest_id):
            with get_db() as db:
                session = ImplementationSessionService._latest_session(db, quest_id, ACTIVE_SESSION_STATUSES)
                if session is None or not session.current_ticket_id:
                    raise NotFoundError(f"No active implementation session for {quest_id}")
                repo = TicketRepository(db)
                ticket = repo.get(session.current_ticket_id, quest_id)
                if ticket is None:
                    raise NotFoundError(f"Current ticket not found: {session.current_ticket_id}")

                if action == AdvanceAction.MODIFY.value:
                    return ImplementationSessionService._modify(db, repo, session, ticket, modifications, changed_by)

                now = datetime.utcnow()
                previous = {"id": ticket.id, "title": ticket.title, "action": action}
                old_status = ticket.status
                if action == AdvanceAction.APPROVE.value:
                    ticket.status = TicketStatus.COMPLETED.value
                    ticket.implementation_result = {
                        **(implementation_result or {}),
                        "completed_at": now.isoformat(),
                    }
                else:
                    ticket.status = TicketStatus.SKIPPED.value
                ticket.updated_at = now
                TicketHistoryService.record_status_transition(
                    db, ticket.id, changed_by, old_status, ticket.status,
                    metadata={"session_id": session.id, "action": action},
                )
                # Finished ticket is durable before any advancement write
                db.commit()

                if action == AdvanceAction.APPROVE.value:
                    session.tickets_implemented += 1
                else:
                    session.tickets_skipped += 1

                quest = require_quest(db, quest_id)
                next_ticket = ImplementationSessionService.find_next_ticket(db, quest_id, ticket.id)
                if next_ticket is not None:
                    ImplementationSessionService._mark_in_progress(db, next_ticket, changed_by)
                    session.current_ticket_id = next_ticket.id
                    session.status = _status_while_running(session)
                    quest.current_ticket_id = next_ticket.id
                else:
                    session.current_ticket_id = None
                    session.status = SessionStatus.COMPLETED.value
                    if session.completed_at is None:
                        session.completed_at = now
                    quest.status = QuestStatus.COMPLETED.value
                    quest.current_ticket_id = None
                quest.completed_tickets = session.tickets_implemented
                session.updated_at = now
                db.flush()

                is_complete = next_ticket is None
                logger.info(
                    f"[SESSION] {action} {ticket.id}; "
                    + ("session complete" if is_complete else f"next ticket {next_ticket.id}")
                )
                return {
                    "success": True,
                    "session": session_to_dict(session),
                    "previous_ticket": previous,
                    "next_ticket": ticket_to_dict(next_ticket) if next_ticket else None,
                    "is_complete": is_complete,
                }

    @staticmethod
    def _modify(db, repo, session, ticket, modifications, changed_by) -> Dict[str, Any]:
        modifications = modifications or {}
        unknown = [name for name in modifications if name not in MODIFIABLE_FIELDS]
        if unknown:
            raise TicketValidationError(f"Fields cannot be modified during implementation: {unknown}")

        changes = {name: value for name, value in modifications.items() if value is not None}
        if "title" in changes and not str(changes["title"]).strip():
            raise TicketValidationError("Ticket title is required")
        for name, value in changes.items():
            TicketHistoryService.record_change(
                db, ticket.id, changed_by, "field_updated",
                old_value=getattr(ticket, name), new_value=value, field_name=name,
            )
        if changes:
            repo.update(ticket, **changes)

        logger.info(f"[SESSION] Modified {ticket.id}: {sorted(changes)}")
        return {
            "success": True,
            "session": session_to_dict(session),
            "ticket": ticket_to_dict(ticket),
            "previous_ticket": None,
            "next_ticket": None,
            "is_complete": False,
        }

    @staticmethod
    async def pause_session(quest_id: str) -> Dict[str, Any]:
        async with quest_locks.hold(quest_id):
            with get_db() as db:
                session = ImplementationSessionService._latest_session(db, quest_id, ACTIVE_SESSION_STATUSES)
                if session is None:
                    raise NotFoundError(f"No active implementation session for {quest_id}")
                quest = require_quest(db, quest_id)

                session.status = SessionStatus.PAUSED.value
                session.updated_at = datetime.utcnow()
                quest.status = QuestStatus.PAUSED.value
                db.flush()

                logger.info(f"[SESSION] Paused {session.id}")
                return {"success": True, "session": session_to_dict(session)}

    @staticmethod
    async def resume_session(quest_id: str) -> Dict[str, Any]:
        async with quest_locks.hold(quest_id):
            with get_db() as db:
                session = ImplementationSessionService._latest_session(
                    db, quest_id, (SessionStatus.PAUSED.value,)
                )
                if session is None:
                    raise NotFoundError(f"No paused implementation session for {quest_id}")
                quest = require_quest(db, quest_id)

                session.status = _status_while_running(session)
                session.updated_at = datetime.utcnow()
                quest.status = QuestStatus.IN_PROGRESS.value
                db.flush()

                logger.info(f"[SESSION] Resumed {session.id} as {session.status}")
                return {"success": True, "session": session_to_dict(session)}

    @staticmethod
    def get_session(quest_id: str) -> Dict[str, Any]:
        """Most recent session of the quest with its current ticket, if any."""
        with get_db() as db:
            require_quest(db, quest_id)
            session = ImplementationSessionService._latest_session(db, quest_id)
            if session is None:
                return {"session": None, "current_ticket": None}
            current = None
            if session.current_ticket_id:
                ticket = TicketRepository(db).get(session.current_ticket_id, quest_id)
                current = ticket_to_dict(ticket) if ticket else None
            return {"session": session_to_dict(session), "current_ticket": current}
