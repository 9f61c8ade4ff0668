"""Tests for ticket creation, editing, reordering and deletion."""

import pytest

from sidequest.c2_implementation_service import ImplementationSessionService
from sidequest.c2_ticket_service import QuestService, TicketService
from sidequest.c2_ticket_service.ticket_store import TicketRepository
from sidequest.core.database import get_db, Ticket, TicketHistory
from sidequest.core.exceptions import NotFoundError, TicketValidationError
from tests.fixtures.factories import add_quest, add_ticket, load_ticket


def _sibling_orders(quest_id, parent_id):
    with get_db() as db:
        return [(t.id, t.sort_order) for t in TicketRepository(db).list_children(quest_id, parent_id)]


class TestCreateTicket:
    @pytest.mark.asyncio
    async def test_create_root_epic(self, quest_id):
        result = await TicketService.create_ticket(quest_id, "Theme engine", "EPIC", created_by="user-1")

        ticket = result["ticket"]
        assert result["success"] is True
        assert ticket["status"] == "PENDING"
        assert ticket["hierarchy_level"] == 1
        assert ticket["sort_order"] == 0
        assert ticket["parent_ticket_id"] is None

    @pytest.mark.asyncio
    async def test_sort_order_appends_to_siblings(self, quest_id):
        epic = (await TicketService.create_ticket(quest_id, "Epic", "EPIC"))["ticket"]
        first = await TicketService.create_ticket(quest_id, "A", "STORY", parent_ticket_id=epic["id"])
        second = await TicketService.create_ticket(quest_id, "B", "STORY", parent_ticket_id=epic["id"])

        assert first["ticket"]["sort_order"] == 0
        assert second["ticket"]["sort_order"] == 1

    @pytest.mark.asyncio
    async def test_story_requires_parent(self, quest_id):
        with pytest.raises(TicketValidationError, match="requires a parent"):
            await TicketService.create_ticket(quest_id, "Orphan", "STORY")

    @pytest.mark.asyncio
    async def test_parent_must_be_in_same_quest(self, project_id, quest_id):
        other_quest = add_quest(project_id)
        foreign_epic = add_ticket(other_quest, "EPIC")

        with pytest.raises(TicketValidationError, match="Parent ticket not found"):
            await TicketService.create_ticket(quest_id, "Story", "STORY", parent_ticket_id=foreign_epic)

    @pytest.mark.asyncio
    async def test_subtask_under_story_rejected(self, quest_id):
        epic = add_ticket(quest_id, "EPIC")
        story = add_ticket(quest_id, "STORY", parent_id=epic)

        with pytest.raises(TicketValidationError, match="SUBTASK cannot be a child of STORY"):
            await TicketService.create_ticket(quest_id, "Sub", "SUBTASK", parent_ticket_id=story)

        with get_db() as db:
            assert db.query(Ticket).filter(Ticket.quest_id == quest_id).count() == 2

    @pytest.mark.asyncio
    async def test_invalid_points_rejected(self, quest_id):
        with pytest.raises(TicketValidationError):
            await TicketService.create_ticket(quest_id, "Epic", "EPIC", story_points=21)

    @pytest.mark.asyncio
    async def test_unknown_quest(self, db_path):
        with pytest.raises(NotFoundError):
            await TicketService.create_ticket("sq-missing", "Epic", "EPIC")

    @pytest.mark.asyncio
    async def test_link_ids_deduplicated(self, quest_id):
        result = await TicketService.create_ticket(
            quest_id, "Epic", "EPIC", linked_repo_ids=["r1", "r2", "r1"]
        )
        assert result["ticket"]["linked_repo_ids"] == ["r1", "r2"]


class TestUpdateTicket:
    @pytest.mark.asyncio
    async def test_update_fields_records_history(self, quest_id):
        epic = add_ticket(quest_id, "EPIC", title="Old")

        result = await TicketService.update_ticket(
            quest_id, epic, {"title": "New", "priority": "HIGH"}, changed_by="user-1"
        )

        assert result["fields_updated"] == ["priority", "title"]
        assert result["ticket"]["title"] == "New"
        with get_db() as db:
            rows = db.query(TicketHistory).filter(TicketHistory.ticket_id == epic).all()
            assert {row.field_name for row in rows} == {"title", "priority"}

    @pytest.mark.asyncio
    async def test_retype_recomputes_level(self, quest_id):
        epic = add_ticket(quest_id, "EPIC")
        story = add_ticket(quest_id, "STORY", parent_id=epic)
        task = add_ticket(quest_id, "TASK", parent_id=story)
        add_ticket(quest_id, "SUBTASK", parent_id=task)

        result = await TicketService.update_ticket(quest_id, task, {"ticket_type": "TEST"})

        assert result["ticket"]["ticket_type"] == "TEST"
        assert result["ticket"]["hierarchy_level"] == 3

    @pytest.mark.asyncio
    async def test_retype_rejected_by_child_leaves_ticket_unchanged(self, quest_id):
        epic = add_ticket(quest_id, "EPIC")
        story = add_ticket(quest_id, "STORY", parent_id=epic)
        add_ticket(quest_id, "TASK", parent_id=story)

        with pytest.raises(TicketValidationError) as exc_info:
            await TicketService.update_ticket(quest_id, story, {"ticket_type": "TASK", "title": "Renamed"})

        assert exc_info.value.relationship is not None
        ticket = load_ticket(story)
        assert ticket.ticket_type == "STORY"
        assert ticket.hierarchy_level == 2
        assert ticket.title != "Renamed"

    @pytest.mark.asyncio
    async def test_retype_subtask_to_epic_under_task_rejected(self, quest_id):
        epic = add_ticket(quest_id, "EPIC")
        story = add_ticket(quest_id, "STORY", parent_id=epic)
        task = add_ticket(quest_id, "TASK", parent_id=story)
        subtask = add_ticket(quest_id, "SUBTASK", parent_id=task)

        with pytest.raises(TicketValidationError) as exc_info:
            await TicketService.update_ticket(quest_id, subtask, {"ticket_type": "EPIC"})

        assert exc_info.value.relationship == ("EPIC", "TASK")
        assert load_ticket(subtask).ticket_type == "SUBTASK"

    @pytest.mark.asyncio
    async def test_unknown_field_rejected(self, quest_id):
        epic = add_ticket(quest_id, "EPIC")
        with pytest.raises(TicketValidationError):
            await TicketService.update_ticket(quest_id, epic, {"quest_id": "elsewhere"})


class TestReorderTicket:
    @pytest.mark.asyncio
    async def test_move_within_siblings_is_dense(self, quest_id):
        epic = add_ticket(quest_id, "EPIC")
        a = add_ticket(quest_id, "STORY", parent_id=epic)
        b = add_ticket(quest_id, "STORY", parent_id=epic)
        c = add_ticket(quest_id, "STORY", parent_id=epic)

        await TicketService.reorder_ticket(quest_id, c, epic, 0)

        assert _sibling_orders(quest_id, epic) == [(c, 0), (a, 1), (b, 2)]

    @pytest.mark.asyncio
    async def test_move_to_new_parent_compacts_both_groups(self, quest_id):
        epic1 = add_ticket(quest_id, "EPIC")
        epic2 = add_ticket(quest_id, "EPIC")
        a = add_ticket(quest_id, "STORY", parent_id=epic1)
        b = add_ticket(quest_id, "STORY", parent_id=epic1)
        c = add_ticket(quest_id, "STORY", parent_id=epic1)
        x = add_ticket(quest_id, "STORY", parent_id=epic2)
        y = add_ticket(quest_id, "STORY", parent_id=epic2)

        result = await TicketService.reorder_ticket(quest_id, b, epic2, 1)

        assert result["ticket"]["parent_ticket_id"] == epic2
        assert _sibling_orders(quest_id, epic2) == [(x, 0), (b, 1), (y, 2)]
        assert _sibling_orders(quest_id, epic1) == [(a, 0), (c, 1)]

    @pytest.mark.asyncio
    async def test_slot_past_end_is_clamped(self, quest_id):
        epic = add_ticket(quest_id, "EPIC")
        a = add_ticket(quest_id, "STORY", parent_id=epic)
        b = add_ticket(quest_id, "STORY", parent_id=epic)

        await TicketService.reorder_ticket(quest_id, a, epic, 10)

        assert _sibling_orders(quest_id, epic) == [(b, 0), (a, 1)]

    @pytest.mark.asyncio
    async def test_non_epic_to_root_rejected_without_changes(self, quest_id):
        epic = add_ticket(quest_id, "EPIC")
        story = add_ticket(quest_id, "STORY", parent_id=epic)
        before = _sibling_orders(quest_id, epic)

        with pytest.raises(TicketValidationError):
            await TicketService.reorder_ticket(quest_id, story, None, 0)

        assert _sibling_orders(quest_id, epic) == before
        assert load_ticket(story).parent_ticket_id == epic

    @pytest.mark.asyncio
    async def test_move_under_own_descendant_rejected(self, quest_id):
        epic = add_ticket(quest_id, "EPIC")
        story = add_ticket(quest_id, "STORY", parent_id=epic)
        task = add_ticket(quest_id, "TASK", parent_id=story)

        with pytest.raises(TicketValidationError):
            await TicketService.reorder_ticket(quest_id, story, task, 0)

    @pytest.mark.asyncio
    async def test_negative_slot_rejected(self, quest_id):
        epic = add_ticket(quest_id, "EPIC")
        with pytest.raises(TicketValidationError):
            await TicketService.reorder_ticket(quest_id, epic, None, -1)


class TestDeleteTicket:
    @pytest.mark.asyncio
    async def test_delete_cascades_and_compacts(self, quest_id):
        epic = add_ticket(quest_id, "EPIC")
        a = add_ticket(quest_id, "STORY", parent_id=epic)
        b = add_ticket(quest_id, "STORY", parent_id=epic)
        c = add_ticket(quest_id, "STORY", parent_id=epic)
        task = add_ticket(quest_id, "TASK", parent_id=b)
        add_ticket(quest_id, "SUBTASK", parent_id=task)

        result = await TicketService.delete_ticket(quest_id, b)

        assert result["deleted_count"] == 3
        assert _sibling_orders(quest_id, epic) == [(a, 0), (c, 1)]
        listing = TicketService.list_tickets(quest_id)
        assert listing["total_count"] == 3

    @pytest.mark.asyncio
    async def test_delete_missing_ticket(self, quest_id):
        with pytest.raises(NotFoundError):
            await TicketService.delete_ticket(quest_id, "ticket-missing")


def test_list_tickets_returns_tree(quest_id):
    epic = add_ticket(quest_id, "EPIC")
    story = add_ticket(quest_id, "STORY", parent_id=epic)
    add_ticket(quest_id, "TASK", parent_id=story)

    listing = TicketService.list_tickets(quest_id)

    assert listing["total_count"] == 3
    assert len(listing["tree"]) == 1
    assert listing["tree"][0]["children"][0]["id"] == story
    assert len(listing["tree"][0]["children"][0]["children"]) == 1


def test_get_ticket_with_history(quest_id):
    epic = add_ticket(quest_id, "EPIC")
    data = TicketService.get_ticket(epic, quest_id, include_history=True)
    assert data["id"] == epic
    assert data["history"] == []


class TestDeleteDuringImplementation:
    @pytest.mark.asyncio
    async def test_deleting_current_ticket_moves_session_on(self, project_id):
        quest = add_quest(project_id, status="READY")
        first = add_ticket(quest, "EPIC", status="APPROVED", external_task_id="task-1")
        second = add_ticket(quest, "EPIC", status="APPROVED", external_task_id="task-2")
        await ImplementationSessionService.start_session(quest)

        await TicketService.delete_ticket(quest, first)

        state = ImplementationSessionService.get_session(quest)
        assert state["session"]["status"] == "IMPLEMENTING"
        assert state["session"]["current_ticket_id"] == second
        assert state["current_ticket"]["status"] == "IN_PROGRESS"
        result = await ImplementationSessionService.advance(quest, "approve")
        assert result["is_complete"] is True

    @pytest.mark.asyncio
    async def test_deleting_last_current_ticket_completes_session(self, project_id):
        quest = add_quest(project_id, status="READY")
        only = add_ticket(quest, "EPIC", status="APPROVED", external_task_id="task-1")
        await ImplementationSessionService.start_session(quest)

        await TicketService.delete_ticket(quest, only)

        session = ImplementationSessionService.get_session(quest)["session"]
        assert session["status"] == "COMPLETED"
        assert session["current_ticket_id"] is None
        assert QuestService.get_quest(quest)["status"] == "COMPLETED"


class TestUpdateValidation:
    @pytest.mark.asyncio
    async def test_approving_through_update_stamps_approver(self, quest_id):
        epic = add_ticket(quest_id, "EPIC")

        result = await TicketService.update_ticket(quest_id, epic, {"status": "APPROVED"}, changed_by="reviewer-1")

        assert result["fields_updated"] == ["status"]
        ticket = load_ticket(epic)
        assert ticket.status == "APPROVED"
        assert ticket.approved_by == "reviewer-1"
        assert ticket.approved_at is not None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("updates", [{"story_points": "5"}, {"sprint_group": "x"}, {"story_points": True}])
    async def test_non_integer_numbers_rejected(self, quest_id, updates):
        epic = add_ticket(quest_id, "EPIC")
        with pytest.raises(TicketValidationError, match="must be an integer"):
            await TicketService.update_ticket(quest_id, epic, updates)
