"""Service that partitions a quest's tickets into sprints."""

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sidequest.c1_sidequest_enums import SprintStrategy
from sidequest.c2_sprint_planner.sprint_algorithms import (
    finalize_sprints,
    plan_fallback,
    project_ticket,
    sanitize_oracle_plan,
)
from sidequest.c2_ticket_service.quest_service import require_quest
from sidequest.c2_ticket_service.ticket_store import TicketRepository, ticket_to_dict
from sidequest.core.concurrency import quest_locks, run_with_timeout
from sidequest.core.config import get_settings
from sidequest.core.database import get_db, Ticket
from sidequest.core.exceptions import TicketValidationError
from sidequest.interfaces.llm_interface import LLMProviderInterface, get_llm_provider

logger = logging.getLogger(__name__)

MIN_POINTS_PER_SPRINT, MAX_POINTS_PER_SPRINT = 5, 100
MIN_TICKETS_PER_SPRINT, MAX_TICKETS_PER_SPRINT = 3, 50

# Marks "no oracle passed in": resolve one from settings
_DEFAULT_ORACLE = object()


class SprintPlanService:
    """Organize tickets into sprints and persist each ticket's sprint group."""

    @staticmethod
    def _validate(strategy: str, max_points: int, max_tickets: int) -> None:
        if strategy not in {s.value for s in SprintStrategy}:
            raise TicketValidationError(f"Invalid strategy '{strategy}'")
        if not MIN_POINTS_PER_SPRINT <= max_points <= MAX_POINTS_PER_SPRINT:
            raise TicketValidationError(
                f"max_points_per_sprint must be between {MIN_POINTS_PER_SPRINT} "
                f"and {MAX_POINTS_PER_SPRINT}, got {max_points}"
            )
        if not MIN_TICKETS_PER_SPRINT <= max_tickets <= MAX_TICKETS_PER_SPRINT:
            raise TicketValidationError(
                f"max_tickets_per_sprint must be between {MIN_TICKETS_PER_SPRINT} "
                f"and {MAX_TICKETS_PER_SPRINT}, got {max_tickets}"
            )

    @staticmethod
    async def _ask_oracle(
        oracle: LLMProviderInterface,
        tickets: List[Dict[str, Any]],
        strategy: str,
        constraints: Dict[str, int],
        quest_context: Dict[str, Any],
        timeout_seconds: float,
    ) -> Optional[List[Dict[str, Any]]]:
        """Return a sanitized oracle partition, or None to fall back."""
        try:
            raw = await run_with_timeout(
                oracle.suggest_sprint_plan(
                    [project_ticket(t) for t in tickets], strategy, constraints, quest_context
                ),
                timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(f"[SPRINT_PLANNER] Oracle timed out after {timeout_seconds}s, using fallback")
            return None
        except Exception as e:
            logger.warning(f"[SPRINT_PLANNER] Oracle failed, using fallback: {e}")
            return None

        sprints = sanitize_oracle_plan(raw, tickets, constraints["max_tickets_per_sprint"])
        if sprints is None:
            logger.warning("[SPRINT_PLANNER] Oracle returned no usable sprints, using fallback")
        return sprints

    @staticmethod
    async def organize_sprints(
        quest_id: str,
        strategy: Optional[str] = None,
        max_points_per_sprint: Optional[int] = None,
        max_tickets_per_sprint: Optional[int] = None,
        oracle: Any = _DEFAULT_ORACLE,
    ) -> Dict[str, Any]:
        """
        Partition every ticket of a quest into ordered sprints.

        Args:
            quest_id: Quest whose tickets are organized
            strategy: balanced, priority_first or dependency_aware
            max_points_per_sprint: Point budget per sprint (5..100)
            max_tickets_per_sprint: Ticket budget per sprint (3..50)
            oracle: Advisory oracle; defaults to the configured provider,
                ``None`` forces the deterministic algorithm

        Returns:
            Dictionary with sprint_groups, total_sprints, strategy_used,
            used_ai, fallback_used and per-ticket write errors

        Raises:
            NotFoundError: If the quest does not exist
            TicketValidationError: On bad constraints or an empty quest
        """
        planner_config = get_settings().planner
        strategy = strategy or planner_config.default_strategy
        max_points = max_points_per_sprint or planner_config.default_max_points_per_sprint
        max_tickets = max_tickets_per_sprint or planner_config.default_max_tickets_per_sprint
        SprintPlanService._validate(strategy, max_points, max_tickets)
        constraints = {"max_points_per_sprint": max_points, "max_tickets_per_sprint": max_tickets}

        if oracle is _DEFAULT_ORACLE:
            oracle = get_llm_provider() if planner_config.use_oracle else None

        async with quest_locks.hold(quest_id):
            with get_db() as db:
                quest = require_quest(db, quest_id)
                quest_context = {"title": quest.title, "description": quest.description}
                tickets = [ticket_to_dict(t) for t in TicketRepository(db).list_by_quest(quest_id)]

            if not tickets:
                raise TicketValidationError("No tickets to organize")

            logger.info(
                f"[SPRINT_PLANNER] Organizing {len(tickets)} tickets for {quest_id} "
                f"(strategy={strategy}, max_points={max_points}, max_tickets={max_tickets})"
            )

            sprints = None
            if oracle is not None:
                sprints = await SprintPlanService._ask_oracle(
                    oracle, tickets, strategy, constraints, quest_context,
                    planner_config.oracle_timeout_seconds,
                )
            used_ai = sprints is not None
            if sprints is None:
                sprints = plan_fallback(tickets, strategy, max_points, max_tickets)
            finalize_sprints(sprints, tickets)

            errors = SprintPlanService._persist_sprint_groups(quest_id, sprints)

        logger.info(
            f"[SPRINT_PLANNER] {len(sprints)} sprint(s) for {quest_id}, used_ai={used_ai}, "
            f"{len(errors)} write error(s)"
        )
        return {
            "success": True,
            "sprint_groups": sprints,
            "total_sprints": len(sprints),
            "strategy_used": strategy,
            "used_ai": used_ai,
            "fallback_used": not used_ai,
            "errors": errors,
        }

    @staticmethod
    def _persist_sprint_groups(quest_id: str, sprints: List[Dict[str, Any]]) -> List[str]:
        """Write sprint_group per ticket; each write commits on its own."""
        errors: List[str] = []
        with get_db() as db:
            for sprint in sprints:
                for ticket_id in sprint["ticket_ids"]:
                    try:
                        updated = (
                            db.query(Ticket)
                            .filter(Ticket.id == ticket_id, Ticket.quest_id == quest_id)
                            .update(
                                {"sprint_group": sprint["sprint_number"], "updated_at": datetime.utcnow()},
                                synchronize_session=False,
                            )
                        )
                        if not updated:
                            raise LookupError("ticket no longer exists")
                        db.commit()
                    except Exception as e:
                        db.rollback()
                        logger.error(f"[SPRINT_PLANNER] Failed to set sprint group on {ticket_id}: {e}")
                        errors.append(f"{ticket_id}: {e}")
        return errors
