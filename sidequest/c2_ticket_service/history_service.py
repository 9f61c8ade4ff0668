"""Service layer for recording the ticket audit trail."""

import json
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from sidequest.core.database import TicketHistory


class TicketHistoryService:
    """Writes history rows inside the caller's transaction."""

    @staticmethod
    def record_change(
        db: Session,
        ticket_id: str,
        changed_by: Optional[str],
        change_type: str,
        old_value: Any = None,
        new_value: Any = None,
        field_name: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> TicketHistory:
        """
        Record any change to a ticket.

        Args:
            db: Database session owned by the caller
            ticket_id: ID of the ticket
            changed_by: Identity of the user making the change
            change_type: created, status_changed, field_updated, moved, approved, implemented
            old_value: Previous value (non-strings are stored as JSON)
            new_value: New value (non-strings are stored as JSON)
            field_name: Field that changed, for field_updated entries
            metadata: Additional context as dictionary

        Returns:
            The pending history row
        """
        entry = TicketHistory(
            ticket_id=ticket_id,
            changed_by=changed_by,
            change_type=change_type,
            field_name=field_name,
            old_value=TicketHistoryService._encode(old_value),
            new_value=TicketHistoryService._encode(new_value),
            change_description=TicketHistoryService._generate_description(
                change_type, field_name, old_value, new_value
            ),
            change_metadata=metadata,
            changed_at=datetime.utcnow(),
        )
        db.add(entry)
        return entry

    @staticmethod
    def record_status_transition(
        db: Session,
        ticket_id: str,
        changed_by: Optional[str],
        from_status: str,
        to_status: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> TicketHistory:
        return TicketHistoryService.record_change(
            db,
            ticket_id,
            changed_by,
            "status_changed",
            old_value=from_status,
            new_value=to_status,
            field_name="status",
            metadata=metadata,
        )

    @staticmethod
    def get_history(db: Session, ticket_id: str) -> List[Dict[str, Any]]:
        rows = (
            db.query(TicketHistory)
            .filter(TicketHistory.ticket_id == ticket_id)
            .order_by(TicketHistory.changed_at, TicketHistory.id)
            .all()
        )
        return [
            {
                "change_type": row.change_type,
                "field_name": row.field_name,
                "old_value": row.old_value,
                "new_value": row.new_value,
                "change_description": row.change_description,
                "changed_by": row.changed_by,
                "changed_at": row.changed_at.isoformat(),
            }
            for row in rows
        ]

    @staticmethod
    def _encode(value: Any) -> Optional[str]:
        if value is None or isinstance(value, str):
            return value
        return json.dumps(value, default=str)

    @staticmethod
    def _generate_description(
        change_type: str, field_name: Optional[str], old_value: Any, new_value: Any
    ) -> str:
        if change_type == "created":
            return "Ticket created"
        if change_type == "status_changed":
            return f"Status changed from '{old_value}' to '{new_value}'"
        if change_type == "field_updated":
            return f"Field '{field_name}' updated"
        if change_type == "moved":
            return f"Moved from {old_value} to {new_value}"
        if change_type == "approved":
            return "Ticket approved"
        return f"Change: {change_type}"
