from sidequest.c2_sprint_planner.sprint_service import SprintPlanService
from sidequest.c2_sprint_planner.sprint_algorithms import (
    finalize_sprints,
    plan_fallback,
    project_ticket,
    sanitize_oracle_plan,
)

__all__ = [
    "SprintPlanService",
    "finalize_sprints",
    "plan_fallback",
    "project_ticket",
    "sanitize_oracle_plan",
]
