"""Tests for ticket approval and cascading to descendants."""

import pytest

from sidequest.c2_approval_service import ApprovalService
from sidequest.core.database import get_db, TicketHistory
from sidequest.core.exceptions import ConflictError, NotFoundError
from tests.fixtures.factories import add_ticket, load_ticket


@pytest.mark.asyncio
async def test_approve_single_ticket(quest_id):
    epic = add_ticket(quest_id, "EPIC")
    story = add_ticket(quest_id, "STORY", parent_id=epic)

    result = await ApprovalService.approve_ticket(quest_id, epic, "reviewer-1")

    assert result["approved_children_count"] == 0
    ticket = load_ticket(epic)
    assert ticket.status == "APPROVED"
    assert ticket.approved_by == "reviewer-1"
    assert ticket.approved_at is not None
    assert load_ticket(story).status == "PENDING"


@pytest.mark.asyncio
async def test_cascade_only_touches_pending_descendants(quest_id):
    epic = add_ticket(quest_id, "EPIC")
    story_a = add_ticket(quest_id, "STORY", parent_id=epic)
    story_b = add_ticket(quest_id, "STORY", parent_id=epic, status="COMPLETED")
    task_a = add_ticket(quest_id, "TASK", parent_id=story_a)
    task_b = add_ticket(quest_id, "TASK", parent_id=story_b, status="SKIPPED")
    subtask = add_ticket(quest_id, "SUBTASK", parent_id=task_a)

    result = await ApprovalService.approve_ticket(quest_id, epic, "reviewer-1", cascade_to_descendants=True)

    assert result["approved_children_count"] == 3
    epic_row = load_ticket(epic)
    for ticket_id in (story_a, task_a, subtask):
        row = load_ticket(ticket_id)
        assert row.status == "APPROVED"
        assert row.approved_by == "reviewer-1"
        assert row.approved_at == epic_row.approved_at
    assert load_ticket(story_b).status == "COMPLETED"
    assert load_ticket(task_b).status == "SKIPPED"


@pytest.mark.asyncio
@pytest.mark.parametrize("status", ["APPROVED", "COMPLETED"])
async def test_reapproval_is_a_conflict(quest_id, status):
    epic = add_ticket(quest_id, "EPIC", status=status)

    with pytest.raises(ConflictError):
        await ApprovalService.approve_ticket(quest_id, epic, "reviewer-1")

    assert load_ticket(epic).status == status


@pytest.mark.asyncio
async def test_approving_skipped_ticket_is_allowed(quest_id):
    epic = add_ticket(quest_id, "EPIC", status="SKIPPED")

    await ApprovalService.approve_ticket(quest_id, epic, "reviewer-1")

    assert load_ticket(epic).status == "APPROVED"


@pytest.mark.asyncio
async def test_approval_writes_history(quest_id):
    epic = add_ticket(quest_id, "EPIC")
    add_ticket(quest_id, "STORY", parent_id=epic)

    await ApprovalService.approve_ticket(quest_id, epic, "reviewer-1", cascade_to_descendants=True)

    with get_db() as db:
        rows = db.query(TicketHistory).filter(TicketHistory.change_type == "status_changed").all()
        assert len(rows) == 2
        assert {row.new_value for row in rows} == {"APPROVED"}


@pytest.mark.asyncio
async def test_missing_ticket(quest_id):
    with pytest.raises(NotFoundError):
        await ApprovalService.approve_ticket(quest_id, "ticket-missing", "reviewer-1")
