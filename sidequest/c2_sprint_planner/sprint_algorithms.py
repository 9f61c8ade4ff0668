"""Pure sprint partitioning: oracle sanitizing and the greedy fallback.

Tickets are plain dicts with at least ``id``, ``ticket_type``, ``priority``
and ``story_points``.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

from sidequest.c1_sidequest_enums import SprintStrategy, HIGH_PRIORITIES
from sidequest.c2_hierarchy_service import HierarchyValidator

logger = logging.getLogger(__name__)

PRIORITY_RANK = {"URGENT": 0, "HIGH": 1, "MEDIUM": 2, "LOW": 3}
TYPE_RANK = {"EPIC": 0, "STORY": 1, "TASK": 2, "TEST": 2, "SUBTASK": 3}
DEFAULT_RANK = 2

PROJECTION_TEXT_LIMIT = 200
LEFTOVER_THEME = "Additional work"


def project_ticket(ticket: Dict[str, Any]) -> Dict[str, Any]:
    """Compact view of a ticket handed to the advisory oracle."""
    return {
        "id": ticket["id"],
        "type": ticket["ticket_type"],
        "title": (ticket.get("title") or "")[:PROJECTION_TEXT_LIMIT],
        "description": (ticket.get("description") or "")[:PROJECTION_TEXT_LIMIT],
        "priority": ticket.get("priority") or "MEDIUM",
        "story_points": HierarchyValidator.effective_points(ticket),
        "parent_id": ticket.get("parent_ticket_id"),
        "status": ticket.get("status"),
    }


def _sprint(number: int, ticket_ids: List[str], theme: Optional[str] = None, rationale: Optional[str] = None):
    return {
        "sprint_number": number,
        "theme": theme or f"Sprint {number}",
        "ticket_ids": ticket_ids,
        "total_points": 0,
        "rationale": rationale,
    }


def plan_fallback(
    tickets: Sequence[Dict[str, Any]],
    strategy: str,
    max_points: int,
    max_tickets: int,
) -> List[Dict[str, Any]]:
    """Deterministic greedy bin-packing.

    ``priority_first`` orders by priority rank then type rank; every other
    strategy orders by type rank alone. A sprint closes when the next ticket
    would push it past either limit. A ticket larger than ``max_points``
    sits alone in its sprint.
    """
    if strategy == SprintStrategy.PRIORITY_FIRST.value:
        def key(t):
            return (
                PRIORITY_RANK.get(t.get("priority") or "MEDIUM", DEFAULT_RANK),
                TYPE_RANK.get(t["ticket_type"], DEFAULT_RANK),
            )
        rationale = "Ordered by priority, then ticket type"
    else:
        def key(t):
            return TYPE_RANK.get(t["ticket_type"], DEFAULT_RANK)
        rationale = "Ordered by ticket type, parents first"

    sprints: List[Dict[str, Any]] = []
    current: List[str] = []
    points = 0
    for ticket in sorted(tickets, key=key):
        ticket_points = HierarchyValidator.effective_points(ticket)
        if current and (len(current) >= max_tickets or points + ticket_points > max_points):
            sprints.append(_sprint(len(sprints) + 1, current, rationale=rationale))
            current, points = [], 0
        current.append(ticket["id"])
        points += ticket_points

    if current:
        sprints.append(_sprint(len(sprints) + 1, current, rationale=rationale))
    return sprints


def sanitize_oracle_plan(
    raw: Any,
    tickets: Sequence[Dict[str, Any]],
    max_tickets: int,
) -> Optional[List[Dict[str, Any]]]:
    """Turn an untrusted oracle response into a valid partition.

    Unknown ids are dropped, the first sprint to claim an id keeps it,
    sprints left empty are dropped and the rest renumbered in response
    order. Input tickets nobody claimed fill the last sprint up to
    ``max_tickets``; the remainder forms one trailing sprint.

    Returns ``None`` when the response holds no usable sprint at all.
    """
    if not isinstance(raw, dict) or not isinstance(raw.get("sprints"), list):
        return None

    known_ids = [t["id"] for t in tickets]
    known = set(known_ids)
    assigned = set()
    sprints: List[Dict[str, Any]] = []

    for entry in raw["sprints"]:
        if not isinstance(entry, dict) or not isinstance(entry.get("ticket_ids"), list):
            continue
        kept = []
        for ticket_id in entry["ticket_ids"]:
            if not isinstance(ticket_id, str) or ticket_id not in known or ticket_id in assigned:
                continue
            assigned.add(ticket_id)
            kept.append(ticket_id)
        if not kept:
            continue
        theme = entry.get("theme") if isinstance(entry.get("theme"), str) else None
        rationale = entry.get("rationale") if isinstance(entry.get("rationale"), str) else None
        sprints.append(_sprint(len(sprints) + 1, kept, theme=theme, rationale=rationale))

    if not sprints:
        return None

    leftovers = [ticket_id for ticket_id in known_ids if ticket_id not in assigned]
    if leftovers:
        last = sprints[-1]
        room = max(max_tickets - len(last["ticket_ids"]), 0)
        last["ticket_ids"].extend(leftovers[:room])
        remainder = leftovers[room:]
        if remainder:
            sprints.append(_sprint(len(sprints) + 1, remainder, theme=LEFTOVER_THEME))
        logger.info(f"[SPRINT_PLANNER] Placed {len(leftovers)} ticket(s) the oracle left out")

    return sprints


def finalize_sprints(sprints: List[Dict[str, Any]], tickets: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Recompute point totals and count high-priority tickets per sprint."""
    by_id = {t["id"]: t for t in tickets}
    for sprint in sprints:
        members = [by_id[ticket_id] for ticket_id in sprint["ticket_ids"]]
        sprint["total_points"] = sum(HierarchyValidator.effective_points(t) for t in members)
        sprint["priority_tickets"] = sum(1 for t in members if t.get("priority") in HIGH_PRIORITIES)
    return sprints
