"""Tests for sprint partitioning and persistence of sprint groups."""

import pytest

from sidequest.c2_sprint_planner import (
    SprintPlanService,
    finalize_sprints,
    plan_fallback,
    project_ticket,
    sanitize_oracle_plan,
)
from sidequest.core.config import get_settings
from sidequest.core.exceptions import NotFoundError, TicketValidationError
from tests.fixtures.factories import add_ticket, load_ticket


def _t(ticket_id, ticket_type="TASK", points=None, priority=None, parent=None):
    return {
        "id": ticket_id,
        "ticket_type": ticket_type,
        "story_points": points,
        "priority": priority,
        "parent_ticket_id": parent,
        "title": f"Ticket {ticket_id}",
        "description": "x" * 500,
        "status": "APPROVED",
    }


def _all_ids(sprints):
    return [ticket_id for sprint in sprints for ticket_id in sprint["ticket_ids"]]


class TestFallback:
    def test_three_tickets_fit_one_sprint(self):
        tickets = [_t("e", "EPIC", 5), _t("s", "STORY", 3), _t("t", "TASK", 2)]

        sprints = finalize_sprints(plan_fallback(tickets, "balanced", 10, 10), tickets)

        assert len(sprints) == 1
        assert sprints[0]["ticket_ids"] == ["e", "s", "t"]
        assert sprints[0]["total_points"] == 10
        assert sprints[0]["theme"] == "Sprint 1"

    def test_closes_sprint_on_point_limit(self):
        tickets = [_t(f"t{i}", points=3) for i in range(4)]

        sprints = plan_fallback(tickets, "balanced", 6, 10)

        assert [s["ticket_ids"] for s in sprints] == [["t0", "t1"], ["t2", "t3"]]
        assert [s["sprint_number"] for s in sprints] == [1, 2]

    def test_closes_sprint_on_count_limit(self):
        tickets = [_t(f"t{i}", "SUBTASK") for i in range(7)]

        sprints = plan_fallback(tickets, "balanced", 100, 3)

        assert [len(s["ticket_ids"]) for s in sprints] == [3, 3, 1]

    def test_oversized_ticket_sits_alone(self):
        tickets = [_t("small", points=2), _t("huge", "EPIC", None), _t("tail", points=2)]

        sprints = plan_fallback(tickets, "balanced", 5, 10)

        assert sprints[0]["ticket_ids"] == ["huge"]
        assert sprints[1]["ticket_ids"] == ["small", "tail"]

    def test_priority_first_orders_by_priority_then_type(self):
        tickets = [
            _t("low-epic", "EPIC", 1, "LOW"),
            _t("urgent-task", "TASK", 1, "URGENT"),
            _t("high-story", "STORY", 1, "HIGH"),
            _t("unset-task", "TASK", 1, None),
        ]

        sprints = plan_fallback(tickets, "priority_first", 100, 50)

        assert _all_ids(sprints) == ["urgent-task", "high-story", "unset-task", "low-epic"]

    def test_dependency_aware_matches_balanced(self):
        tickets = [_t("t", "TASK", 1), _t("e", "EPIC", 1), _t("s", "STORY", 1), _t("x", "SUBTASK", 1)]

        balanced = plan_fallback(tickets, "balanced", 20, 10)
        dependency = plan_fallback(tickets, "dependency_aware", 20, 10)

        assert _all_ids(balanced) == ["e", "s", "t", "x"]
        assert _all_ids(dependency) == _all_ids(balanced)

    def test_never_drops_a_ticket(self):
        tickets = [_t(f"t{i}", "TASK", (i % 13) + 1) for i in range(40)]

        sprints = plan_fallback(tickets, "balanced", 10, 4)

        assert sorted(_all_ids(sprints)) == sorted(t["id"] for t in tickets)
        assert all(len(s["ticket_ids"]) <= 4 for s in sprints)


class TestSanitizeOraclePlan:
    def test_drops_unknown_and_duplicate_ids(self):
        tickets = [_t("a"), _t("b"), _t("c")]
        raw = {
            "sprints": [
                {"sprint_number": 1, "theme": "Core", "ticket_ids": ["a", "ghost", "b"]},
                {"sprint_number": 2, "ticket_ids": ["b", "c"], "rationale": "rest"},
            ]
        }

        sprints = sanitize_oracle_plan(raw, tickets, 10)

        assert sprints[0]["ticket_ids"] == ["a", "b"]
        assert sprints[0]["theme"] == "Core"
        assert sprints[1]["ticket_ids"] == ["c"]
        assert sprints[1]["theme"] == "Sprint 2"
        assert sprints[1]["rationale"] == "rest"

    def test_leftovers_fill_last_sprint_then_new_sprint(self):
        tickets = [_t(x) for x in "abcde"]
        raw = {"sprints": [{"ticket_ids": ["a"]}, {"ticket_ids": ["b", "c"]}]}

        sprints = sanitize_oracle_plan(raw, tickets, 3)

        assert sprints[1]["ticket_ids"] == ["b", "c", "d"]
        assert sprints[2]["ticket_ids"] == ["e"]
        assert sprints[2]["theme"] == "Additional work"
        assert sorted(_all_ids(sprints)) == list("abcde")

    def test_empty_sprints_dropped_and_renumbered(self):
        tickets = [_t("a"), _t("b")]
        raw = {"sprints": [{"ticket_ids": ["ghost"]}, {"sprint_number": 7, "ticket_ids": ["a", "b"]}]}

        sprints = sanitize_oracle_plan(raw, tickets, 10)

        assert len(sprints) == 1
        assert sprints[0]["sprint_number"] == 1

    @pytest.mark.parametrize(
        "raw",
        [None, "not json", {}, {"sprints": "nope"}, {"sprints": []}, {"sprints": [{"ticket_ids": ["ghost"]}]}],
    )
    def test_unusable_response(self, raw):
        assert sanitize_oracle_plan(raw, [_t("a")], 10) is None


def test_projection_truncates_and_defaults():
    projected = project_ticket(_t("a", "STORY", None, None, parent="e"))

    assert projected["type"] == "STORY"
    assert projected["priority"] == "MEDIUM"
    assert projected["story_points"] == 5
    assert len(projected["description"]) == 200
    assert projected["parent_id"] == "e"


def test_priority_ticket_count():
    tickets = [_t("a", priority="HIGH"), _t("b", priority="URGENT"), _t("c", priority="LOW")]
    sprints = finalize_sprints([{"sprint_number": 1, "ticket_ids": ["a", "b", "c"]}], tickets)
    assert sprints[0]["priority_tickets"] == 2
    assert sprints[0]["total_points"] == 9


class TestOrganizeSprints:
    @pytest.mark.asyncio
    async def test_fallback_persists_sprint_groups(self, quest_id):
        epic = add_ticket(quest_id, "EPIC", status="APPROVED", story_points=5, external_task_id="task-1")
        story = add_ticket(quest_id, "STORY", parent_id=epic, status="APPROVED", story_points=3, external_task_id="task-2")
        task = add_ticket(quest_id, "TASK", parent_id=story, status="APPROVED", story_points=2, external_task_id="task-3")

        result = await SprintPlanService.organize_sprints(
            quest_id, strategy="balanced", max_points_per_sprint=10, max_tickets_per_sprint=10, oracle=None
        )

        assert result["used_ai"] is False
        assert result["fallback_used"] is True
        assert result["total_sprints"] == 1
        assert result["sprint_groups"][0]["total_points"] == 10
        assert result["errors"] == []
        for ticket_id in (epic, story, task):
            assert load_ticket(ticket_id).sprint_group == 1

    @pytest.mark.asyncio
    async def test_oracle_plan_is_sanitized(self, quest_id, mock_llm_provider):
        epic = add_ticket(quest_id, "EPIC")
        story = add_ticket(quest_id, "STORY", parent_id=epic)
        task = add_ticket(quest_id, "TASK", parent_id=story)
        mock_llm_provider.response = {
            "sprints": [
                {"sprint_number": 1, "theme": "Foundations", "ticket_ids": [epic, "made-up"], "total_points": 99},
                {"sprint_number": 2, "theme": "Build", "ticket_ids": [epic, story]},
            ]
        }

        result = await SprintPlanService.organize_sprints(quest_id, oracle=mock_llm_provider)

        assert mock_llm_provider.call_count == 1
        assert mock_llm_provider.last_request["quest_context"]["title"] == "Dark mode"
        assert result["used_ai"] is True
        groups = result["sprint_groups"]
        assert groups[0]["ticket_ids"] == [epic]
        assert groups[0]["total_points"] == 13
        assert groups[1]["ticket_ids"] == [story, task]
        assert load_ticket(task).sprint_group == 2

    @pytest.mark.asyncio
    async def test_oracle_error_falls_back(self, quest_id, mock_llm_provider):
        add_ticket(quest_id, "EPIC")
        mock_llm_provider.error = RuntimeError("boom")

        result = await SprintPlanService.organize_sprints(quest_id, oracle=mock_llm_provider)

        assert result["used_ai"] is False
        assert result["total_sprints"] == 1

    @pytest.mark.asyncio
    async def test_oracle_timeout_falls_back(self, quest_id, mock_llm_provider, monkeypatch):
        add_ticket(quest_id, "EPIC")
        monkeypatch.setattr(get_settings().planner, "oracle_timeout_seconds", 0.05)
        mock_llm_provider.delay_seconds = 1.0

        result = await SprintPlanService.organize_sprints(quest_id, oracle=mock_llm_provider)

        assert result["fallback_used"] is True

    @pytest.mark.asyncio
    async def test_configured_oracle_absent_uses_fallback(self, quest_id):
        add_ticket(quest_id, "EPIC")

        result = await SprintPlanService.organize_sprints(quest_id)

        assert result["used_ai"] is False

    @pytest.mark.asyncio
    async def test_empty_quest_rejected(self, quest_id):
        with pytest.raises(TicketValidationError, match="No tickets"):
            await SprintPlanService.organize_sprints(quest_id, oracle=None)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("points,count", [(4, 10), (101, 10), (20, 2), (20, 51)])
    async def test_constraints_validated(self, quest_id, points, count):
        add_ticket(quest_id, "EPIC")
        with pytest.raises(TicketValidationError):
            await SprintPlanService.organize_sprints(
                quest_id, max_points_per_sprint=points, max_tickets_per_sprint=count, oracle=None
            )

    @pytest.mark.asyncio
    async def test_unknown_quest(self, db_path):
        with pytest.raises(NotFoundError):
            await SprintPlanService.organize_sprints("sq-missing", oracle=None)


def test_failed_sprint_group_write_is_reported(quest_id):
    kept = add_ticket(quest_id, "EPIC")
    sprints = [{"sprint_number": 1, "ticket_ids": [kept, "ticket-deleted-meanwhile"]}]

    errors = SprintPlanService._persist_sprint_groups(quest_id, sprints)

    assert errors == ["ticket-deleted-meanwhile: ticket no longer exists"]
    assert load_ticket(kept).sprint_group == 1


@pytest.mark.asyncio
async def test_partial_write_failure_still_succeeds(quest_id, monkeypatch):
    epic = add_ticket(quest_id, "EPIC")
    story = add_ticket(quest_id, "STORY", parent_id=epic)
    original = SprintPlanService._persist_sprint_groups

    def persist_with_stale_id(qid, sprints):
        sprints[0]["ticket_ids"].append("ticket-deleted-meanwhile")
        return original(qid, sprints)

    monkeypatch.setattr(SprintPlanService, "_persist_sprint_groups", staticmethod(persist_with_stale_id))

    result = await SprintPlanService.organize_sprints(quest_id, oracle=None)

    assert result["success"] is True
    assert len(result["errors"]) == 1
    assert load_ticket(story).sprint_group == 1
