"""Approval workflow for sidequest tickets."""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from sidequest.c1_sidequest_enums import TicketStatus
from sidequest.c2_ticket_service.history_service import TicketHistoryService
from sidequest.c2_ticket_service.ticket_store import TicketRepository, ticket_to_dict
from sidequest.core.concurrency import quest_locks
from sidequest.core.database import get_db, Ticket
from sidequest.core.exceptions import ConflictError

logger = logging.getLogger(__name__)

_NOT_REAPPROVABLE = (TicketStatus.APPROVED.value, TicketStatus.COMPLETED.value)


class ApprovalService:
    """Approve a ticket and optionally its pending descendants."""

    @staticmethod
    async def approve_ticket(
        quest_id: str,
        ticket_id: str,
        approved_by: Optional[str],
        cascade_to_descendants: bool = False,
    ) -> Dict[str, Any]:
        """
        Approve a ticket.

        Re-approving an APPROVED or COMPLETED ticket is an error, not a no-op.
        With cascade, every PENDING descendant gets the same approver and
        timestamp; descendants in any other status are left alone.

        Returns:
            Dictionary with the approved ticket and approved_children_count

        Raises:
            NotFoundError: If the ticket is not in the quest
            ConflictError: If the ticket is already APPROVED or COMPLETED
        """
        async with quest_locks.hold(quest_id):
            with get_db() as db:
                repo = TicketRepository(db)
                ticket = repo.require(ticket_id, quest_id)
                if ticket.status in _NOT_REAPPROVABLE:
                    raise ConflictError(f"Ticket is already {ticket.status.lower()}", existing_id=ticket.id)

                now = datetime.utcnow()
                previous_status = ticket.status
                repo.update(ticket, status=TicketStatus.APPROVED.value, approved_at=now, approved_by=approved_by)
                TicketHistoryService.record_status_transition(
                    db, ticket.id, approved_by, previous_status, TicketStatus.APPROVED.value
                )

                approved_children = 0
                if cascade_to_descendants:
                    descendant_ids = repo.descendant_ids(quest_id, ticket.id)
                    if descendant_ids:
                        pending = (
                            db.query(Ticket)
                            .filter(
                                Ticket.id.in_(descendant_ids),
                                Ticket.status == TicketStatus.PENDING.value,
                            )
                            .all()
                        )
                        for child in pending:
                            child.status = TicketStatus.APPROVED.value
                            child.approved_at = now
                            child.approved_by = approved_by
                            child.updated_at = now
                            TicketHistoryService.record_status_transition(
                                db, child.id, approved_by,
                                TicketStatus.PENDING.value, TicketStatus.APPROVED.value,
                                metadata={"cascaded_from": ticket.id},
                            )
                        approved_children = len(pending)

                logger.info(
                    f"[APPROVAL] {ticket_id} approved by {approved_by}; "
                    f"{approved_children} descendant(s) cascaded"
                )
                return {
                    "success": True,
                    "ticket": ticket_to_dict(ticket),
                    "approved_children_count": approved_children,
                }
